# packages/voting/contract.py
import logging
from dataclasses import dataclass
from typing import Any, Optional

from web3 import AsyncWeb3, AsyncHTTPProvider, Web3
from web3.logs import DISCARD

from . import config
from .errors import ChainCallFailed, NotConfigured, SignerRequired, WalletError, normalize_error
from .wallet import Signer

logger = logging.getLogger(__name__)


def _fn(name, inputs, outputs=(), mutability="view"):
    return {
        "type": "function",
        "name": name,
        "inputs": [{"name": n, "type": t, "internalType": t} for n, t in inputs],
        "outputs": [{"name": n, "type": t, "internalType": t} for n, t in outputs],
        "stateMutability": mutability,
    }


_ELECTION_TUPLE = {
    "name": "",
    "type": "tuple[]",
    "internalType": "struct VotingSystem.Election[]",
    "components": [
        {"name": "id", "type": "uint256", "internalType": "uint256"},
        {"name": "title", "type": "string", "internalType": "string"},
        {"name": "description", "type": "string", "internalType": "string"},
        {"name": "endTime", "type": "uint256", "internalType": "uint256"},
        {"name": "isActive", "type": "bool", "internalType": "bool"},
        {"name": "totalVotes", "type": "uint256", "internalType": "uint256"},
    ],
}

VOTING_ABI = [
    # Election management
    _fn(
        "createElection",
        [("_title", "string"), ("_description", "string"), ("_endTime", "uint256")],
        [("", "uint256")],
        "nonpayable",
    ),
    _fn(
        "getElection",
        [("electionId", "uint256")],
        [
            ("title", "string"),
            ("description", "string"),
            ("endTime", "uint256"),
            ("isActive", "bool"),
            ("totalVotes", "uint256"),
        ],
    ),
    _fn("getElectionCount", [], [("", "uint256")]),
    {
        "type": "function",
        "name": "getAllElections",
        "inputs": [],
        "outputs": [_ELECTION_TUPLE],
        "stateMutability": "view",
    },
    # Voting
    _fn("vote", [("electionId", "uint256")], mutability="nonpayable"),
    _fn("hasVoted", [("electionId", "uint256"), ("voter", "address")], [("", "bool")]),
    _fn("getTotalVotes", [("electionId", "uint256")], [("", "uint256")]),
    _fn("getVoters", [("electionId", "uint256")], [("", "address[]")]),
    # Admin
    _fn("endElection", [("electionId", "uint256")], mutability="nonpayable"),
    _fn("owner", [], [("", "address")]),
    # Events
    {
        "type": "event",
        "name": "ElectionCreated",
        "anonymous": False,
        "inputs": [
            {"name": "electionId", "type": "uint256", "indexed": True, "internalType": "uint256"},
            {"name": "title", "type": "string", "indexed": False, "internalType": "string"},
            {"name": "creator", "type": "address", "indexed": False, "internalType": "address"},
        ],
    },
    {
        "type": "event",
        "name": "Voted",
        "anonymous": False,
        "inputs": [
            {"name": "electionId", "type": "uint256", "indexed": True, "internalType": "uint256"},
            {"name": "voter", "type": "address", "indexed": True, "internalType": "address"},
        ],
    },
]


@dataclass
class CallResult:
    """Outcome of a gateway write: either ``value`` or a normalized ``error``."""
    value: Any = None
    error: Optional[WalletError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class ContractHandle:
    """The voting contract bound to a connection (signer or read-only)."""

    def __init__(self, contract, signer: Optional[Signer] = None):
        self.contract = contract
        self.signer = signer

    async def call(self, fn_name: str, *args):
        return await getattr(self.contract.functions, fn_name)(*args).call()

    async def send(self, fn_name: str, *args) -> str:
        """Submit a state-changing call and return the transaction hash."""
        if self.signer is None:
            raise SignerRequired()
        fn = getattr(self.contract.functions, fn_name)(*args)
        w3 = self.signer.w3
        sender = self.signer.address
        if self.signer.account is not None:
            tx = await fn.build_transaction({
                "from": sender,
                "nonce": await w3.eth.get_transaction_count(sender),
                "chainId": await w3.eth.chain_id,
            })
            signed = self.signer.account.sign_transaction(tx)
            tx_hash = await w3.eth.send_raw_transaction(signed.raw_transaction)
        else:
            tx_hash = await fn.transact({"from": sender})
        return Web3.to_hex(tx_hash)

    async def wait(self, tx_hash: str):
        w3 = self.signer.w3 if self.signer is not None else self.contract.w3
        receipt = await w3.eth.wait_for_transaction_receipt(tx_hash)
        if receipt["status"] != 1:
            raise ChainCallFailed(f"On-chain transaction reverted. Tx hash: {tx_hash}")
        return receipt

    def election_id_from_receipt(self, receipt) -> Optional[int]:
        events = self.contract.events.ElectionCreated().process_receipt(receipt, errors=DISCARD)
        if not events:
            return None
        return int(events[0]["args"]["electionId"])


class ContractGateway:
    """Builds handles to the deployed voting contract.

    Write operations never raise: they return a ``CallResult`` whose error is
    ``NotConfigured`` when no contract address is set.
    """

    def __init__(self, address: str = config.CONTRACT_ADDRESS, rpc_url: str = config.RPC_URL, w3: Optional[AsyncWeb3] = None):
        self.address = address or ""
        self.rpc_url = rpc_url or ""
        self._w3 = w3

    def is_configured(self) -> bool:
        return self.address != "" and self.rpc_url != ""

    @property
    def default_w3(self) -> AsyncWeb3:
        if self._w3 is None:
            self._w3 = AsyncWeb3(AsyncHTTPProvider(self.rpc_url))
        return self._w3

    def get_handle(self, signer: Optional[Signer] = None) -> ContractHandle:
        if not self.is_configured():
            raise NotConfigured()
        w3 = signer.w3 if signer is not None else self.default_w3
        contract = w3.eth.contract(address=Web3.to_checksum_address(self.address), abi=VOTING_ABI)
        return ContractHandle(contract, signer)

    async def send(self, signer: Optional[Signer], fn_name: str, *args) -> CallResult:
        try:
            return CallResult(value=await self.get_handle(signer).send(fn_name, *args))
        except Exception as exc:
            error = normalize_error(exc)
            logger.error(f"{fn_name} submission failed: {error.message}")
            return CallResult(error=error)

    async def confirm(self, signer: Optional[Signer], tx_hash: str) -> CallResult:
        try:
            return CallResult(value=await self.get_handle(signer).wait(tx_hash))
        except Exception as exc:
            error = normalize_error(exc)
            logger.error(f"Confirmation of {tx_hash} failed: {error.message}")
            return CallResult(error=error)

    async def transact(self, signer: Optional[Signer], fn_name: str, *args) -> CallResult:
        sent = await self.send(signer, fn_name, *args)
        if not sent.ok:
            return sent
        return await self.confirm(signer, sent.value)

    async def vote(self, signer: Optional[Signer], election_id: int) -> CallResult:
        return await self.transact(signer, "vote", election_id)

    async def create_election(self, signer: Optional[Signer], title: str, description: str, end_time: int) -> CallResult:
        return await self.transact(signer, "createElection", title, description, end_time)

    async def end_election(self, signer: Optional[Signer], election_id: int) -> CallResult:
        return await self.transact(signer, "endElection", election_id)

    def election_id_from_receipt(self, receipt) -> Optional[int]:
        if not self.is_configured():
            return None
        return self.get_handle().election_id_from_receipt(receipt)
