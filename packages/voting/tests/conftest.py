# packages/voting/tests/conftest.py
import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from voting.connection import ConnectionManager
from voting.contract import ContractGateway
from voting.db import Base, make_engine
from voting.metadata import MetadataStore
from voting.notifications import Notifier
from voting.schemas import ConnectionState
from voting.transactions import TransactionCoordinator
from voting.wallet import Signer, WalletProvider
from sqlalchemy.orm import sessionmaker

SEPOLIA = 11155111
ALICE = "0x1234567890123456789012345678901234567890"
CONTRACT = "0x" + "a" * 40
NOW = 1_700_000_000


class FakeWalletProvider(WalletProvider):
    """In-memory EIP-1193 wallet. ``granted`` is what eth_requestAccounts approves."""

    def __init__(self, accounts=None, granted=None, chain_id=SEPOLIA, balance=2 * 10**18,
                 request_error=None, switch_error=None, delay=0.0):
        super().__init__()
        self.accounts = list(accounts or [])
        self.granted = list(granted if granted is not None else [ALICE])
        self.chain_id = chain_id
        self.balance = balance
        self.request_error = request_error
        self.switch_error = switch_error
        self.delay = delay
        self.calls = []

    async def request(self, method, params=None):
        self.calls.append(method)
        if self.delay:
            await asyncio.sleep(self.delay)
        if method == "eth_accounts":
            return list(self.accounts)
        if method == "eth_requestAccounts":
            if self.request_error is not None:
                raise self.request_error
            self.accounts = list(self.granted)
            return list(self.accounts)
        if method == "eth_chainId":
            return hex(self.chain_id)
        if method == "eth_getBalance":
            return hex(self.balance)
        if method == "wallet_switchEthereumChain":
            if self.switch_error is not None:
                raise self.switch_error
            self.chain_id = int(params[0]["chainId"], 16)
            return None
        raise AssertionError(f"unexpected method {method}")

    def signer(self, address):
        return Signer(address=address, w3=MagicMock())


@pytest.fixture
def notifier():
    return Notifier()


@pytest.fixture
def provider():
    return FakeWalletProvider()


@pytest.fixture
def manager(provider, notifier):
    return ConnectionManager(provider, notifier, busy_retry_delay=0)


@pytest.fixture
def connected(manager, provider):
    """A manager already holding a Sepolia connection for ALICE."""
    provider.accounts = [ALICE]
    manager._set_state(
        ConnectionState(address=ALICE, chain_id=SEPOLIA, connected=True, balance=2),
        provider.signer(ALICE),
    )
    return manager


@pytest.fixture
def handle():
    h = MagicMock()
    h.call = AsyncMock(return_value=False)
    h.send = AsyncMock(return_value="0x" + "cc" * 32)
    h.wait = AsyncMock(return_value={"status": 1, "transactionHash": b"\xcc" * 32, "logs": []})
    h.election_id_from_receipt = MagicMock(return_value=7)
    return h


@pytest.fixture
def gateway(handle, monkeypatch):
    gw = ContractGateway(address=CONTRACT, rpc_url="http://localhost:8545")
    monkeypatch.setattr(gw, "get_handle", lambda signer=None: handle)
    return gw


@pytest.fixture
def coordinator(connected, gateway, notifier):
    return TransactionCoordinator(connected, gateway, notifier, clock=lambda: NOW)


@pytest.fixture
def store(tmp_path):
    engine = make_engine(f"sqlite:///{tmp_path}/elections.db")
    Base.metadata.create_all(bind=engine)
    return MetadataStore(sessionmaker(autocommit=False, autoflush=False, bind=engine))


def titles(notifier):
    return [n.title for n in notifier.history]
