from datetime import datetime
from decimal import Decimal
from typing import Literal, Optional, List

from pydantic import BaseModel, Field, model_validator

ElectionStatus = Literal["active", "ended", "upcoming"]
NotificationLevel = Literal["success", "info", "warning", "error"]


# --- Wallet / transaction lifecycle ---

class ConnectionState(BaseModel):
    address: Optional[str] = None
    chain_id: Optional[int] = None
    connected: bool = False
    connecting: bool = False
    balance: Optional[Decimal] = None

    @model_validator(mode="after")
    def _connected_has_identity(self):
        if self.connected and (self.address is None or self.chain_id is None):
            raise ValueError("a connected state requires both address and chain_id")
        return self


class TransactionState(BaseModel):
    pending: bool = False
    succeeded: bool = False
    failed: bool = False
    tx_hash: Optional[str] = None
    error_message: Optional[str] = None
    reason: Optional[str] = None

    @model_validator(mode="after")
    def _single_terminal_state(self):
        if self.succeeded and self.failed:
            raise ValueError("a transaction cannot both succeed and fail")
        return self

    @property
    def idle(self) -> bool:
        return not (self.pending or self.succeeded or self.failed)


class Notification(BaseModel):
    level: NotificationLevel
    title: str
    description: str = ""
    created_at: datetime = Field(default_factory=datetime.utcnow)


# --- Elections ---

class ElectionSchema(BaseModel):
    """An election as the contract reports it."""
    election_id: int
    title: str
    description: str
    end_time: int
    is_active: bool
    total_votes: int


class ElectionSummary(BaseModel):
    id: str
    election_id: Optional[int] = None
    title: str
    description: Optional[str] = None
    status: ElectionStatus = "active"
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    banner_image: Optional[str] = None
    external_url: Optional[str] = None
    total_votes: int = 0

    class Config:
        from_attributes = True


class ElectionDetails(BaseModel):
    election: ElectionSummary
    voters: List[str] = []
    total_votes: int = 0
    has_voted: bool = False


class CatalogSnapshot(BaseModel):
    elections: List[ElectionSummary]
    total_votes: int = 0
    total_voters: int = 0
    demo: bool = False


class CreateElectionSchema(BaseModel):
    title: str = Field(..., example="Community Treasury Allocation")
    description: str = Field("", example="Describe what voters are deciding on")
    end_time: Optional[int] = Field(None, example=1767225600)
    external_url: Optional[str] = None
    banner_image: Optional[str] = None


class UpdateElectionSchema(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    status: Optional[ElectionStatus] = Field(None, example="ended")
    external_url: Optional[str] = None
    banner_image: Optional[str] = None
    end_date: Optional[datetime] = None


class ElectionRecordSchema(BaseModel):
    id: str
    title: str
    description: Optional[str] = None
    status: str
    external_url: Optional[str] = None
    end_date: Optional[datetime] = None
    banner_image: Optional[str] = None
    created_at: datetime
    election_id: Optional[int] = None
    transaction_hash: Optional[str] = None

    class Config:
        from_attributes = True
