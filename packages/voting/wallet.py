# packages/voting/wallet.py
import asyncio
import inspect
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from eth_account import Account
from eth_account.signers.local import LocalAccount
from web3 import AsyncWeb3, AsyncHTTPProvider, Web3

from . import config
from .errors import ProviderRpcError

logger = logging.getLogger(__name__)

Handler = Callable[[Any], Optional[Awaitable[None]]]

UNSUPPORTED_METHOD_CODE = 4200
UNRECOGNIZED_CHAIN_CODE = 4902


@dataclass
class Signer:
    """An authorized identity able to submit state-changing calls.

    When ``account`` is set transactions are signed locally, otherwise the
    node behind ``w3`` is asked to sign for ``address``.
    """
    address: str
    w3: AsyncWeb3
    account: Optional[LocalAccount] = None


class WalletProvider:
    """EIP-1193 style wallet: ``request`` plus account/chain change events."""

    def __init__(self):
        self._listeners: dict[str, list[Handler]] = {}

    async def request(self, method: str, params: Optional[list] = None) -> Any:
        raise NotImplementedError

    def signer(self, address: str) -> Signer:
        raise NotImplementedError

    def on(self, event: str, handler: Handler) -> None:
        self._listeners.setdefault(event, []).append(handler)

    def remove_listener(self, event: str, handler: Handler) -> None:
        handlers = self._listeners.get(event, [])
        if handler in handlers:
            handlers.remove(handler)

    async def emit(self, event: str, payload: Any) -> None:
        for handler in list(self._listeners.get(event, [])):
            result = handler(payload)
            if inspect.isawaitable(result):
                await result


class RpcWalletProvider(WalletProvider):
    """Wallet backed by a JSON-RPC node and, optionally, a local private key.

    With a local key the key's address is the only authorized account and
    network switching is not possible. Without one, account requests are
    answered by the node's unlocked accounts.
    """

    def __init__(self, rpc_url: str = config.WALLET_RPC_URL, private_key: Optional[str] = config.WALLET_PRIVATE_KEY):
        super().__init__()
        self.w3 = AsyncWeb3(AsyncHTTPProvider(rpc_url))
        self.account: Optional[LocalAccount] = Account.from_key(private_key) if private_key else None
        self._watch_task: Optional[asyncio.Task] = None

    async def request(self, method: str, params: Optional[list] = None) -> Any:
        if method in ("eth_accounts", "eth_requestAccounts"):
            if self.account is not None:
                return [self.account.address]
            method = "eth_accounts"
        if method == "wallet_switchEthereumChain":
            return await self._switch_chain(params or [])
        response = await self.w3.provider.make_request(method, params or [])
        if response.get("error"):
            err = response["error"]
            if isinstance(err, dict):
                raise ProviderRpcError(err.get("code", -32603), err.get("message", "RPC error"), err.get("data"))
            raise ProviderRpcError(-32603, str(err))
        return response.get("result")

    async def _switch_chain(self, params: list) -> None:
        wanted = int(params[0]["chainId"], 16) if params else None
        current = await self.w3.eth.chain_id
        if wanted == current:
            return None
        raise ProviderRpcError(
            UNRECOGNIZED_CHAIN_CODE,
            f"Provider is bound to chain {current}; cannot switch to {wanted}",
        )

    def signer(self, address: str) -> Signer:
        account = None
        if self.account is not None and self.account.address == Web3.to_checksum_address(address):
            account = self.account
        return Signer(address=Web3.to_checksum_address(address), w3=self.w3, account=account)

    async def watch(self, interval: float = config.WALLET_POLL_INTERVAL) -> None:
        """Poll the node and emit ``accountsChanged`` / ``chainChanged`` on change."""
        accounts = await self.request("eth_accounts")
        chain_id = await self.request("eth_chainId")
        while True:
            await asyncio.sleep(interval)
            try:
                new_accounts = await self.request("eth_accounts")
                new_chain_id = await self.request("eth_chainId")
            except Exception as exc:
                logger.warning(f"Wallet poll failed: {exc}")
                continue
            if new_accounts != accounts:
                accounts = new_accounts
                await self.emit("accountsChanged", accounts)
            if new_chain_id != chain_id:
                chain_id = new_chain_id
                await self.emit("chainChanged", chain_id)

    def start_watching(self, interval: float = config.WALLET_POLL_INTERVAL) -> asyncio.Task:
        if self._watch_task is None or self._watch_task.done():
            self._watch_task = asyncio.create_task(self.watch(interval))
        return self._watch_task

    def stop_watching(self) -> None:
        if self._watch_task is not None:
            self._watch_task.cancel()
            self._watch_task = None
