# packages/voting/transactions.py
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional, Tuple

from .connection import ConnectionManager
from .contract import CallResult, ContractGateway
from .errors import (
    AlreadyVoted,
    NotConfigured,
    SignerRequired,
    ValidationFailed,
    WalletError,
    normalize_error,
)
from .notifications import Notifier
from .schemas import ElectionSchema, TransactionState

logger = logging.getLogger(__name__)

DEFAULT_DESCRIPTION = "No description provided"


def clean_election_text(title: str, description: Optional[str]) -> Tuple[str, str]:
    """Title and description exactly as they are written on-chain."""
    return (title or "").strip(), (description or "").strip() or DEFAULT_DESCRIPTION


@dataclass
class Outcome:
    """One write invocation: its own TransactionState plus the value or error."""

    state: TransactionState = field(default_factory=TransactionState)
    value: Any = None
    error: Optional[WalletError] = None

    @property
    def ok(self) -> bool:
        return self.state.succeeded


class TransactionCoordinator:
    """Runs on-chain calls through Idle -> Pending -> Succeeded | Failed.

    Every invocation tracks its own ``Outcome``, so overlapping calls never
    see each other's hash or error. ``state`` mirrors the most recent
    transition of any invocation. Guards (configuration, signer, parameter
    validation) reject a call before it leaves Idle. Every terminal
    transition is reported through the notifier.
    """

    def __init__(
        self,
        connection: ConnectionManager,
        gateway: ContractGateway,
        notifier: Notifier,
        clock: Callable[[], float] = time.time,
    ):
        self.connection = connection
        self.gateway = gateway
        self.notifier = notifier
        self.clock = clock
        self.state = TransactionState()

    def reset(self) -> None:
        self.state = TransactionState()

    # -- lifecycle -----------------------------------------------------------

    def _begin(self) -> Outcome:
        outcome = Outcome()
        self.state = outcome.state
        return outcome

    def _transition(self, outcome: Outcome, state: TransactionState) -> None:
        outcome.state = state
        self.state = state

    def _succeed(self, outcome: Outcome, value: Any, title: str, description: str) -> Outcome:
        outcome.value = value
        self._transition(outcome, TransactionState(succeeded=True, tx_hash=outcome.state.tx_hash))
        self.notifier.success(title, description)
        return outcome

    def _fail(self, outcome: Outcome, error: WalletError, title: str) -> Outcome:
        outcome.error = error
        self._transition(outcome, TransactionState(
            failed=True,
            tx_hash=outcome.state.tx_hash,
            error_message=error.message,
            reason=error.kind,
        ))
        self.notifier.error(title, error.message)
        return outcome

    def _reject(self, outcome: Outcome, error: WalletError, title: Optional[str] = None) -> Outcome:
        # rejected before submission: the state stays idle
        outcome.error = error
        self.notifier.failure(error, title)
        return outcome

    def _guard(self, action: str) -> Optional[WalletError]:
        if not self.gateway.is_configured():
            return NotConfigured()
        if self.connection.signer is None or not self.connection.state.connected:
            return SignerRequired(f"Please connect your wallet to {action}.")
        return None

    async def _submit(self, outcome: Outcome, fn_name: str, *args, submitted: str) -> CallResult:
        """Send, notify submission, then wait for the receipt."""
        signer = self.connection.signer
        self._transition(outcome, TransactionState(pending=True))
        sent = await self.gateway.send(signer, fn_name, *args)
        if not sent.ok:
            return sent
        self._transition(outcome, TransactionState(pending=True, tx_hash=sent.value))
        self.notifier.success("Transaction Submitted", submitted)
        return await self.gateway.confirm(signer, sent.value)

    # -- writes --------------------------------------------------------------

    async def submit_vote(self, election_id: int) -> Outcome:
        outcome = self._begin()
        error = self._guard("vote")
        if error is not None:
            return self._reject(outcome, error)
        signer = self.connection.signer

        try:
            already = await self.gateway.get_handle(signer).call("hasVoted", election_id, signer.address)
        except Exception as exc:
            return self._fail(outcome, normalize_error(exc, "Failed to cast vote"), "Vote Failed")
        if already:
            error = AlreadyVoted()
            return self._fail(outcome, error, error.title)

        result = await self._submit(
            outcome, "vote", election_id,
            submitted="Your vote transaction has been submitted to the blockchain.",
        )
        if not result.ok:
            return self._fail(outcome, result.error, "Vote Failed")
        return self._succeed(
            outcome,
            result.value,
            "Vote Cast Successfully!",
            "Your vote has been recorded on the blockchain.",
        )

    async def vote(self, election_id: int) -> bool:
        return (await self.submit_vote(election_id)).ok

    async def submit_create_election(self, title: str, description: str, end_time: int) -> Outcome:
        """Create an election on-chain; the outcome's value is the confirmed receipt.

        Writing the off-chain metadata document is the caller's job and is a
        separate step; see ``metadata.record_created_election``.
        """
        outcome = self._begin()
        error = self._guard("create an election")
        if error is not None:
            return self._reject(outcome, error)

        title, description = clean_election_text(title, description)
        if not title:
            return self._reject(outcome, ValidationFailed("Election title cannot be empty."), "Invalid Title")
        if not end_time or int(end_time) <= int(self.clock()):
            return self._reject(outcome, ValidationFailed("End time must be in the future."), "Invalid End Time")

        result = await self._submit(
            outcome, "createElection", title, description, int(end_time),
            submitted="Election creation transaction submitted to blockchain.",
        )
        if not result.ok:
            return self._fail(outcome, result.error, "Creation Failed")
        return self._succeed(
            outcome,
            result.value,
            "Election Created!",
            "Your election has been successfully created on the blockchain.",
        )

    async def create_election(self, title: str, description: str, end_time: int):
        """Return the confirmed receipt, or None if the call was rejected or failed."""
        outcome = await self.submit_create_election(title, description, end_time)
        return outcome.value if outcome.ok else None

    async def submit_end_election(self, election_id: int) -> Outcome:
        outcome = self._begin()
        error = self._guard("end an election")
        if error is not None:
            return self._reject(outcome, error)
        result = await self._submit(
            outcome, "endElection", election_id,
            submitted="Election end transaction submitted to blockchain.",
        )
        if not result.ok:
            return self._fail(outcome, result.error, "End Election Failed")
        return self._succeed(outcome, result.value, "Election Ended", "The election has been closed on the blockchain.")

    async def end_election(self, election_id: int) -> bool:
        return (await self.submit_end_election(election_id)).ok

    # -- reads (degrade to defaults) ----------------------------------------

    async def get_total_votes(self, election_id: int) -> int:
        if not self.gateway.is_configured():
            return 0
        try:
            return int(await self.gateway.get_handle().call("getTotalVotes", election_id))
        except Exception as exc:
            logger.error(f"Error getting total votes: {exc}")
            return 0

    async def has_user_voted(self, election_id: int, address: str) -> bool:
        if not self.gateway.is_configured():
            return False
        try:
            return bool(await self.gateway.get_handle().call("hasVoted", election_id, address))
        except Exception as exc:
            logger.error(f"Error checking if user voted: {exc}")
            return False

    async def get_voters(self, election_id: int) -> List[str]:
        if not self.gateway.is_configured():
            return []
        try:
            return list(await self.gateway.get_handle().call("getVoters", election_id))
        except Exception as exc:
            logger.error(f"Error getting voters: {exc}")
            return []

    async def get_election(self, election_id: int) -> Optional[ElectionSchema]:
        if not self.gateway.is_configured():
            return None
        try:
            title, description, end_time, is_active, total = await self.gateway.get_handle().call(
                "getElection", election_id
            )
        except Exception as exc:
            logger.error(f"Error getting election: {exc}")
            return None
        return ElectionSchema(
            election_id=election_id,
            title=title,
            description=description,
            end_time=int(end_time),
            is_active=bool(is_active),
            total_votes=int(total),
        )

    async def get_election_count(self) -> int:
        if not self.gateway.is_configured():
            return 0
        try:
            return int(await self.gateway.get_handle().call("getElectionCount"))
        except Exception as exc:
            logger.error(f"Error getting election count: {exc}")
            return 0
