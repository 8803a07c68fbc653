# packages/voting/metadata.py
import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from web3 import Web3

from .contract import ContractGateway
from .db import Base, ElectionRecord, SessionLocal
from .schemas import UpdateElectionSchema

logger = logging.getLogger(__name__)


class MetadataStore:
    """Election metadata documents, keyed by a document id.

    The store is independent of the chain: nothing here is rolled back when
    an on-chain call fails, or the other way round.
    """

    def __init__(self, session_factory=SessionLocal):
        self.session_factory = session_factory

    def create_all(self) -> None:
        Base.metadata.create_all(bind=self.session_factory.kw["bind"])

    def add(self, **fields) -> ElectionRecord:
        db = self.session_factory()
        try:
            record = ElectionRecord(**fields)
            db.add(record)
            db.commit()
            db.refresh(record)
            return record
        except SQLAlchemyError:
            db.rollback()
            raise
        finally:
            db.close()

    def get(self, doc_id: str) -> Optional[ElectionRecord]:
        db = self.session_factory()
        try:
            return db.get(ElectionRecord, doc_id)
        finally:
            db.close()

    def find_by_transaction(self, tx_hash: str) -> Optional[ElectionRecord]:
        db = self.session_factory()
        try:
            return db.query(ElectionRecord).filter_by(transaction_hash=tx_hash).first()
        finally:
            db.close()

    def list(self) -> List[ElectionRecord]:
        db = self.session_factory()
        try:
            return db.query(ElectionRecord).order_by(ElectionRecord.created_at.desc()).all()
        finally:
            db.close()

    def update(self, doc_id: str, payload: UpdateElectionSchema) -> Optional[ElectionRecord]:
        db = self.session_factory()
        try:
            record = db.get(ElectionRecord, doc_id)
            if record is None:
                return None
            for key, value in payload.model_dump(exclude_unset=True).items():
                setattr(record, key, value)
            db.commit()
            db.refresh(record)
            return record
        finally:
            db.close()

    def mark_ended(self, doc_id: str) -> Optional[ElectionRecord]:
        return self.update(doc_id, UpdateElectionSchema(status="ended"))

    def delete(self, doc_id: str) -> bool:
        db = self.session_factory()
        try:
            deleted = db.query(ElectionRecord).filter_by(id=doc_id).delete()
            db.commit()
            return bool(deleted)
        finally:
            db.close()


def record_created_election(
    store: MetadataStore,
    gateway: ContractGateway,
    receipt,
    title: str,
    description: str,
    external_url: Optional[str] = None,
    end_date: Optional[datetime] = None,
    banner_image: Optional[str] = None,
) -> Optional[ElectionRecord]:
    """Write the metadata document for a confirmed createElection receipt.

    Best effort and safe to retry: the document is keyed by transaction hash,
    so a second call for the same receipt returns the existing document.
    Returns None (after logging) if the write fails.
    """
    tx_hash = receipt["transactionHash"]
    if isinstance(tx_hash, (bytes, bytearray)):
        tx_hash = Web3.to_hex(tx_hash)

    try:
        existing = store.find_by_transaction(tx_hash)
    except SQLAlchemyError as exc:
        logger.error(f"Metadata lookup for {tx_hash} failed: {exc}")
        return None
    if existing is not None:
        return existing

    try:
        election_id = gateway.election_id_from_receipt(receipt)
    except Exception as exc:
        logger.warning(f"Could not parse ElectionCreated from {tx_hash}: {exc}")
        election_id = None
    if election_id is None:
        logger.warning(f"No ElectionCreated event in {tx_hash}; storing document without chain id")

    try:
        return store.add(
            title=title,
            description=description,
            external_url=external_url or None,
            end_date=end_date,
            banner_image=banner_image,
            status="active",
            election_id=election_id,
            transaction_hash=tx_hash,
        )
    except IntegrityError:
        # a concurrent retry won the insert
        return store.find_by_transaction(tx_hash)
    except SQLAlchemyError as exc:
        logger.error(f"Metadata write for {tx_hash} failed: {exc}")
        return None
