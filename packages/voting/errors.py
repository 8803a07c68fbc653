# packages/voting/errors.py
from typing import Any, Optional

from web3.exceptions import TimeExhausted

# EIP-1193 provider error codes
USER_REJECTED_CODE = 4001
REQUEST_PENDING_CODE = -32002

REVERT_PREFIX = "execution reverted: "


class WalletError(Exception):
    """Base class for every failure surfaced to callers of this package.

    ``kind`` is a stable identifier (used as ``TransactionState.reason``),
    ``title`` is the notification headline and ``message`` the user-facing
    description.
    """

    kind = "ChainCallFailed"
    title = "Transaction Failed"
    default_message = "The request could not be completed."
    transient = False

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ProviderUnavailable(WalletError):
    kind = "ProviderUnavailable"
    title = "Wallet Required"
    default_message = "No wallet provider is available. Configure a wallet to continue."


class AlreadyConnecting(WalletError):
    kind = "AlreadyConnecting"
    title = "Connection in Progress"
    default_message = "Please wait for the current connection attempt to complete."
    transient = True


class UserRejected(WalletError):
    kind = "UserRejected"
    title = "Request Rejected"
    default_message = "The request was rejected in the wallet."


class WrongNetwork(WalletError):
    kind = "WrongNetwork"
    title = "Wrong Network"
    default_message = "Please switch to the Sepolia testnet."
    transient = True


class NotConfigured(WalletError):
    kind = "NotConfigured"
    title = "Contract Not Configured"
    default_message = "Smart contract address is not configured. Running in demo mode."
    transient = True


class SignerRequired(WalletError):
    kind = "SignerRequired"
    title = "Wallet Not Connected"
    default_message = "Please connect your wallet to continue."


class AlreadyVoted(WalletError):
    kind = "AlreadyVoted"
    title = "Already Voted"
    default_message = "You have already voted in this election."


class ValidationFailed(WalletError):
    kind = "ValidationFailed"
    title = "Invalid Election"
    default_message = "The election parameters are invalid."


class ChainCallFailed(WalletError):
    pass


class ProviderRpcError(Exception):
    """Error raised by a wallet provider request, carrying the RPC error code."""

    def __init__(self, code: int, message: str, data: Any = None):
        self.code = code
        self.message = message
        self.data = data
        super().__init__(f"{message} (code {code})")


def _message_from_payload(payload: Any) -> Optional[str]:
    if isinstance(payload, dict):
        for key in ("reason", "message"):
            if payload.get(key):
                return str(payload[key])
        return _message_from_payload(payload.get("data")) or _message_from_payload(payload.get("error"))
    if isinstance(payload, str) and payload:
        return payload
    return None


def extract_reason(exc: BaseException) -> Optional[str]:
    """Best-effort human readable reason from a provider or revert error."""
    reason = getattr(exc, "reason", None)
    if reason:
        return str(reason)
    message = getattr(exc, "message", None)
    if isinstance(message, str) and message:
        return message
    rpc_response = getattr(exc, "rpc_response", None)
    if rpc_response:
        found = _message_from_payload(rpc_response)
        if found:
            return found
    if exc.args:
        return _message_from_payload(exc.args[0]) or str(exc.args[0])
    return None


def _error_code(exc: BaseException) -> Optional[int]:
    code = getattr(exc, "code", None)
    if isinstance(code, int):
        return code
    if exc.args and isinstance(exc.args[0], dict):
        code = exc.args[0].get("code")
        if isinstance(code, int):
            return code
    return None


def normalize_error(exc: BaseException, fallback: str = "Transaction failed") -> WalletError:
    """Map any provider, web3 or revert failure onto a WalletError."""
    if isinstance(exc, WalletError):
        return exc
    code = _error_code(exc)
    if code == USER_REJECTED_CODE:
        return UserRejected()
    if code == REQUEST_PENDING_CODE:
        return ChainCallFailed(
            "The wallet is already processing a request. Please check it and try again."
        )
    if isinstance(exc, TimeExhausted):
        return ChainCallFailed("Timed out waiting for the transaction to be confirmed.")
    reason = extract_reason(exc)
    if reason and reason.startswith(REVERT_PREFIX):
        reason = reason[len(REVERT_PREFIX):]
    return ChainCallFailed(reason or fallback)
