import uuid
from datetime import datetime

from sqlalchemy import (
    create_engine,
    Column,
    String,
    BigInteger,
    DateTime,
    Index,
    Text,
)
from sqlalchemy.orm import declarative_base, sessionmaker

from . import config

SQLALCHEMY_DATABASE_URL = config.DATABASE_URL

# SQLAlchemy expects the "postgresql" scheme; handle old "postgres" URLs too
if SQLALCHEMY_DATABASE_URL.startswith("postgres://"):
    SQLALCHEMY_DATABASE_URL = "postgresql://" + SQLALCHEMY_DATABASE_URL[len("postgres://"):]


def make_engine(url: str = SQLALCHEMY_DATABASE_URL):
    return create_engine(
        url,
        connect_args={"check_same_thread": False} if url.startswith("sqlite") else {},
    )


engine = make_engine()
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


class ElectionRecord(Base):
    """Off-chain metadata document for one election."""

    __tablename__ = "elections"
    id = Column(String, primary_key=True, default=lambda: uuid.uuid4().hex)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    status = Column(String, nullable=False, default="active")
    external_url = Column(String, nullable=True)
    end_date = Column(DateTime, nullable=True)
    banner_image = Column(String, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    # linkage to the chain; absent for documents created without a contract
    election_id = Column(BigInteger, nullable=True, index=True)
    transaction_hash = Column(String, nullable=True, unique=True)

    __table_args__ = (
        Index("idx_status", "status"),
    )
