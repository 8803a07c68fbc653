from web3.exceptions import ContractLogicError, TimeExhausted

from voting.errors import (
    AlreadyVoted,
    ChainCallFailed,
    ProviderRpcError,
    UserRejected,
    normalize_error,
)


class _Reverted(Exception):
    def __init__(self, reason):
        super().__init__("call reverted")
        self.reason = reason


def test_wallet_errors_pass_through():
    err = AlreadyVoted()
    assert normalize_error(err) is err


def test_user_rejection_code():
    assert isinstance(normalize_error(ProviderRpcError(4001, "User rejected")), UserRejected)
    assert isinstance(normalize_error(ValueError({"code": 4001, "message": "denied"})), UserRejected)


def test_pending_request_code():
    err = normalize_error(ProviderRpcError(-32002, "Already processing"))
    assert isinstance(err, ChainCallFailed)
    assert "already processing" in err.message


def test_reason_attribute_wins():
    assert normalize_error(_Reverted("Not the owner")).message == "Not the owner"


def test_nested_rpc_payload():
    exc = ValueError({"code": -32603, "message": "", "data": {"message": "execution reverted: Already voted"}})
    assert normalize_error(exc).message == "Already voted"


def test_timeout():
    assert "Timed out" in normalize_error(TimeExhausted("120s")).message


def test_fallback_message():
    assert normalize_error(RuntimeError(), "Failed to cast vote").message == "Failed to cast vote"
    assert normalize_error(RuntimeError(), "Failed to cast vote").kind == "ChainCallFailed"


def test_contract_logic_error_message():
    err = normalize_error(ContractLogicError("execution reverted: Only owner can end election"))
    assert err.message == "Only owner can end election"
