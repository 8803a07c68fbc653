# packages/voting/tests/test_contract.py
from unittest.mock import AsyncMock, MagicMock

import pytest
from eth_account import Account

from voting.contract import VOTING_ABI, ContractGateway, ContractHandle
from voting.errors import ChainCallFailed, NotConfigured, SignerRequired
from voting.wallet import Signer

from .conftest import ALICE, CONTRACT, SEPOLIA


async def _value(v):
    return v


def test_is_configured():
    assert ContractGateway(address=CONTRACT, rpc_url="http://localhost:8545").is_configured() is True
    assert ContractGateway(address="", rpc_url="http://localhost:8545").is_configured() is False
    assert ContractGateway(address=CONTRACT, rpc_url="").is_configured() is False


def test_get_handle_requires_configuration():
    with pytest.raises(NotConfigured):
        ContractGateway(address="").get_handle()


def test_abi_covers_contract_surface():
    names = {entry["name"] for entry in VOTING_ABI}
    assert {
        "createElection", "getElection", "getElectionCount", "getAllElections",
        "vote", "hasVoted", "getTotalVotes", "getVoters", "endElection", "owner",
        "ElectionCreated", "Voted",
    } <= names


def test_get_handle_binds_fixed_address():
    gateway = ContractGateway(address=CONTRACT, rpc_url="http://localhost:8545")
    handle = gateway.get_handle()
    assert handle.signer is None
    assert handle.contract.address.lower() == CONTRACT
    assert hasattr(handle.contract.functions, "vote")


@pytest.mark.asyncio
async def test_writes_in_demo_mode_return_not_configured():
    gateway = ContractGateway(address="")
    signer = Signer(address=ALICE, w3=MagicMock())

    for result in (
        await gateway.vote(signer, 1),
        await gateway.create_election(signer, "Title", "Desc", 2_000_000_000),
        await gateway.end_election(signer, 1),
        await gateway.send(signer, "vote", 1),
        await gateway.confirm(signer, "0x00"),
    ):
        assert result.ok is False
        assert isinstance(result.error, NotConfigured)


@pytest.mark.asyncio
async def test_write_without_signer_is_reported():
    gateway = ContractGateway(address=CONTRACT, rpc_url="http://localhost:8545")
    result = await gateway.vote(None, 1)
    assert isinstance(result.error, SignerRequired)


@pytest.mark.asyncio
async def test_handle_send_signs_locally():
    account = Account.create()
    tx = {
        "to": ALICE,
        "value": 0,
        "gas": 100_000,
        "gasPrice": 10**9,
        "nonce": 3,
        "chainId": SEPOLIA,
        "data": "0x0121b93f",
    }
    w3 = MagicMock()
    w3.eth.get_transaction_count = AsyncMock(return_value=3)
    w3.eth.chain_id = _value(SEPOLIA)
    w3.eth.send_raw_transaction = AsyncMock(return_value=b"\x11" * 32)
    contract = MagicMock()
    contract.functions.vote.return_value.build_transaction = AsyncMock(return_value=tx)

    handle = ContractHandle(contract, Signer(address=account.address, w3=w3, account=account))
    tx_hash = await handle.send("vote", 1)

    assert tx_hash == "0x" + "11" * 32
    contract.functions.vote.assert_called_once_with(1)
    params = contract.functions.vote.return_value.build_transaction.await_args.args[0]
    assert params == {"from": account.address, "nonce": 3, "chainId": SEPOLIA}
    raw = w3.eth.send_raw_transaction.await_args.args[0]
    assert raw == account.sign_transaction(tx).raw_transaction


@pytest.mark.asyncio
async def test_handle_send_through_node_account():
    w3 = MagicMock()
    contract = MagicMock()
    contract.functions.vote.return_value.transact = AsyncMock(return_value=b"\x22" * 32)

    handle = ContractHandle(contract, Signer(address=ALICE, w3=w3))
    assert await handle.send("vote", 2) == "0x" + "22" * 32
    contract.functions.vote.return_value.transact.assert_awaited_once_with({"from": ALICE})


@pytest.mark.asyncio
async def test_handle_send_requires_signer():
    with pytest.raises(SignerRequired):
        await ContractHandle(MagicMock()).send("vote", 1)


@pytest.mark.asyncio
async def test_wait_raises_on_reverted_receipt():
    w3 = MagicMock()
    w3.eth.wait_for_transaction_receipt = AsyncMock(return_value={"status": 0})
    handle = ContractHandle(MagicMock(), Signer(address=ALICE, w3=w3))
    with pytest.raises(ChainCallFailed):
        await handle.wait("0xabc")


def test_election_id_from_receipt():
    contract = MagicMock()
    contract.events.ElectionCreated.return_value.process_receipt.return_value = [
        {"args": {"electionId": 7, "title": "T", "creator": ALICE}}
    ]
    assert ContractHandle(contract).election_id_from_receipt({"logs": []}) == 7

    contract.events.ElectionCreated.return_value.process_receipt.return_value = []
    assert ContractHandle(contract).election_id_from_receipt({"logs": []}) is None
