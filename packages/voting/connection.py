# packages/voting/connection.py
import asyncio
import logging
from typing import Any, Optional

from web3 import Web3

from . import config
from .errors import (
    AlreadyConnecting,
    ChainCallFailed,
    ProviderRpcError,
    ProviderUnavailable,
    REQUEST_PENDING_CODE,
    WrongNetwork,
    normalize_error,
)
from .notifications import Notifier
from .schemas import ConnectionState
from .wallet import Signer, WalletProvider

logger = logging.getLogger(__name__)


def _as_int(value: Any) -> int:
    if isinstance(value, str):
        return int(value, 16) if value.startswith("0x") else int(value)
    return int(value)


def short_address(address: str) -> str:
    return f"{address[:6]}...{address[-4:]}"


class ConnectionManager:
    """Owns the single wallet connection.

    Only this class mutates ``state``; everything else reads snapshots of it,
    either directly or through ``subscribe()``. At most one ``connect()`` is
    in flight: the attempt holds ``_attempt`` until it finishes, and an
    attempt whose token was cleared by ``disconnect()`` or
    ``reset_connection_state()`` discards its result.
    """

    def __init__(
        self,
        provider: Optional[WalletProvider],
        notifier: Notifier,
        required_chain_id: int = config.REQUIRED_CHAIN_ID,
        busy_retry_delay: float = config.WALLET_BUSY_RETRY_DELAY,
    ):
        self.provider = provider
        self.notifier = notifier
        self.required_chain_id = required_chain_id
        self.busy_retry_delay = busy_retry_delay
        self.state = ConnectionState()
        self.signer: Optional[Signer] = None
        self._attempt: Optional[object] = None
        self._subscribers: list[asyncio.Queue] = []

    @property
    def is_wrong_network(self) -> bool:
        return self.state.chain_id is not None and self.state.chain_id != self.required_chain_id

    # -- state channel -------------------------------------------------------

    def subscribe(self) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue()
        self._subscribers.append(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        if queue in self._subscribers:
            self._subscribers.remove(queue)

    def _set_state(self, state: ConnectionState, signer: Optional[Signer] = None) -> None:
        self.state = state
        self.signer = signer if state.connected else None
        for queue in self._subscribers:
            queue.put_nowait(state.model_copy())

    # -- provider events -----------------------------------------------------

    def attach(self) -> None:
        if self.provider is None:
            return
        self.provider.on("accountsChanged", self._on_wallet_event)
        self.provider.on("chainChanged", self._on_wallet_event)

    def detach(self) -> None:
        if self.provider is None:
            return
        self.provider.remove_listener("accountsChanged", self._on_wallet_event)
        self.provider.remove_listener("chainChanged", self._on_wallet_event)

    async def _on_wallet_event(self, _payload: Any) -> None:
        await self.check_connection()

    # -- operations ----------------------------------------------------------

    async def check_connection(self) -> ConnectionState:
        """Re-derive the whole state from the currently authorized accounts.

        Never prompts the wallet and never notifies.
        """
        if self.provider is None:
            return self.state
        try:
            accounts = await self.provider.request("eth_accounts")
            if not accounts:
                if self.state != ConnectionState():
                    self._set_state(ConnectionState())
                return self.state
            address = Web3.to_checksum_address(accounts[0])
            chain_id = await self._chain_id()
            balance = await self._balance(address)
        except Exception as exc:
            logger.error(f"Error checking wallet connection: {exc}")
            return self.state
        self._set_state(
            ConnectionState(
                address=address,
                chain_id=chain_id,
                connected=True,
                connecting=self._attempt is not None,
                balance=balance,
            ),
            self.provider.signer(address),
        )
        return self.state

    async def connect(self) -> bool:
        if self.provider is None:
            self.notifier.failure(ProviderUnavailable())
            return False
        if self._attempt is not None:
            self.notifier.failure(AlreadyConnecting())
            return False

        token = self._attempt = object()
        self._set_state(self.state.model_copy(update={"connecting": True}), self.signer)
        try:
            state = await self._connect()
        except Exception as exc:
            error = normalize_error(exc, "Failed to connect wallet. Please try again.")
            logger.error(f"Error connecting wallet: {error.message}")
            if self._attempt is token:
                self._attempt = None
                self._set_state(self.state.model_copy(update={"connecting": False}), self.signer)
            self.notifier.failure(error, "Connection Failed")
            return False

        if self._attempt is not token:
            logger.info("Connection attempt superseded; discarding result")
            return False
        self._attempt = None
        self._set_state(state, self.provider.signer(state.address))
        self.notifier.success("Wallet Connected", f"Connected to {short_address(state.address)}")
        return True

    async def _connect(self) -> ConnectionState:
        accounts = await self._authorized_accounts()
        if not accounts:
            self.notifier.info("Connect Wallet", "Please approve the connection request in your wallet.")
            accounts = await self._request_accounts()
        if not accounts:
            raise ChainCallFailed("No wallet accounts found. Please make sure the wallet is unlocked and try again.")

        address = Web3.to_checksum_address(accounts[0])
        chain_id = await self._chain_id()
        balance = await self._balance(address)

        if chain_id != self.required_chain_id:
            self.notifier.failure(WrongNetwork())
            try:
                await self.provider.request(
                    "wallet_switchEthereumChain", [{"chainId": hex(self.required_chain_id)}]
                )
                chain_id = await self._chain_id()
            except Exception as exc:
                # the connection still goes through on the wrong chain
                logger.warning(f"Failed to switch network: {exc}")

        return ConnectionState(address=address, chain_id=chain_id, connected=True, balance=balance)

    async def _authorized_accounts(self) -> list:
        try:
            return list(await self.provider.request("eth_accounts") or [])
        except Exception as exc:
            logger.info(f"Could not get current accounts: {exc}")
            return []

    async def _request_accounts(self) -> list:
        try:
            return list(await self.provider.request("eth_requestAccounts") or [])
        except ProviderRpcError as exc:
            if exc.code != REQUEST_PENDING_CODE:
                raise normalize_error(exc) from exc
        self.notifier.warning(
            "Wallet Busy", "The wallet is processing another request. Please complete it first."
        )
        await asyncio.sleep(self.busy_retry_delay)
        accounts = await self._authorized_accounts()
        if not accounts:
            raise ChainCallFailed(
                "Wallet connection is busy. Please close any pending wallet prompts and try again."
            )
        return accounts

    async def _chain_id(self) -> int:
        return _as_int(await self.provider.request("eth_chainId"))

    async def _balance(self, address: str):
        wei = _as_int(await self.provider.request("eth_getBalance", [address, "latest"]))
        return Web3.from_wei(wei, "ether")

    def disconnect(self) -> None:
        self._attempt = None
        self._set_state(ConnectionState())
        self.notifier.info("Wallet Disconnected", "Your wallet has been disconnected.")

    def reset_connection_state(self) -> None:
        self._attempt = None
        self._set_state(self.state.model_copy(update={"connecting": False}), self.signer)
        self.notifier.info(
            "Connection State Reset", "Connection state has been reset. You can try connecting again."
        )

