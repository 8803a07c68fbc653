# packages/voting/tests/test_main.py
import pytest
from fastapi.testclient import TestClient
from jose import jwt

from voting import config
from voting.catalog import ElectionCatalog
from voting.connection import ConnectionManager
from voting.contract import ContractGateway
from voting.main import (
    app,
    get_catalog,
    get_connection,
    get_coordinator,
    get_notifier,
    get_store,
)
from voting.transactions import DEFAULT_DESCRIPTION, TransactionCoordinator

from .conftest import ALICE, NOW, SEPOLIA

TEST_SECRET = "test-secret"


def _token(role="admin"):
    return jwt.encode({"email": "admin@example.com", "role": role}, TEST_SECRET, algorithm="HS256")


def _auth(role="admin"):
    return {"Authorization": f"Bearer {_token(role)}"}


@pytest.fixture
def client(monkeypatch, connected, coordinator, store, gateway, notifier):
    monkeypatch.setattr(config, "JWT_SECRET", TEST_SECRET)
    app.dependency_overrides[get_connection] = lambda: connected
    app.dependency_overrides[get_coordinator] = lambda: coordinator
    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_catalog] = lambda: ElectionCatalog(ContractGateway(address=""), store)
    app.dependency_overrides[get_notifier] = lambda: notifier
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_wallet_status(client):
    resp = client.get("/wallet")
    assert resp.status_code == 200
    data = resp.json()
    assert data["connected"] is True
    assert data["address"] == ALICE
    assert data["chain_id"] == SEPOLIA
    assert data["is_wrong_network"] is False


def test_wallet_disconnect_and_reconnect(client, provider):
    data = client.post("/wallet/disconnect").json()
    assert data["connected"] is False
    assert data["address"] is None

    provider.accounts = []
    resp = client.post("/wallet/connect")
    assert resp.status_code == 200
    assert resp.json()["ok"] is True
    assert resp.json()["address"] == ALICE
    assert "eth_requestAccounts" in provider.calls


def test_wallet_reset_clears_connecting(client, connected):
    connected._attempt = object()
    data = client.post("/wallet/reset").json()
    assert data["connecting"] is False
    assert connected._attempt is None


def test_vote(client, handle):
    resp = client.post("/elections/3/vote")
    assert resp.status_code == 200
    assert resp.json() == {"ok": True, "transaction_hash": "0x" + "cc" * 32}
    assert client.get("/transaction").json()["succeeded"] is True


def test_vote_twice_is_conflict(client, handle):
    handle.call.return_value = True
    resp = client.post("/elections/3/vote")
    assert resp.status_code == 409
    handle.send.assert_not_awaited()


def test_vote_revert_is_bad_gateway(client, handle):
    handle.wait.side_effect = ValueError({"message": "execution reverted: Election has ended"})
    resp = client.post("/elections/3/vote")
    assert resp.status_code == 502
    assert resp.json()["detail"] == "Election has ended"


def test_vote_in_demo_mode(client, connected, notifier):
    demo = TransactionCoordinator(connected, ContractGateway(address=""), notifier)
    app.dependency_overrides[get_coordinator] = lambda: demo
    resp = client.post("/elections/3/vote")
    assert resp.status_code == 503


def test_vote_without_wallet(client, provider, gateway, notifier):
    idle = ConnectionManager(provider, notifier)
    app.dependency_overrides[get_coordinator] = lambda: TransactionCoordinator(idle, gateway, notifier)
    resp = client.post("/elections/3/vote")
    assert resp.status_code == 409
    assert "connect your wallet" in resp.json()["detail"]


def test_create_election_requires_admin(client):
    body = {"title": "Treasury", "end_time": NOW + 3600}
    assert client.post("/elections", json=body).status_code == 401
    assert client.post("/elections", json=body, headers=_auth("voter")).status_code == 403


def test_create_election_saves_metadata(client, handle, store):
    body = {
        "title": "Treasury",
        "description": "Allocate funds",
        "end_time": NOW + 3600,
        "external_url": "https://forum.example/t/1",
    }
    resp = client.post("/elections", json=body, headers=_auth())
    assert resp.status_code == 201, resp.text

    data = resp.json()
    assert data["transaction_hash"] == "0x" + "cc" * 32
    assert data["metadata_saved"] is True
    assert data["record"]["election_id"] == 7
    assert data["record"]["external_url"] == "https://forum.example/t/1"
    handle.send.assert_awaited_once_with("createElection", "Treasury", "Allocate funds", NOW + 3600)
    assert len(store.list()) == 1


def test_create_election_invalid_title(client, handle):
    resp = client.post("/elections", json={"title": " ", "end_time": NOW + 3600}, headers=_auth())
    assert resp.status_code == 422
    handle.send.assert_not_awaited()


def test_end_election_on_chain(client, handle, store):
    record = store.add(title="Council", election_id=4)
    resp = client.post(f"/elections/{record.id}/end?on_chain=true", headers=_auth())
    assert resp.status_code == 200
    assert resp.json()["status"] == "ended"
    handle.send.assert_awaited_once_with("endElection", 4)


def test_end_unknown_election(client):
    assert client.post("/elections/missing/end", headers=_auth()).status_code == 404


def test_delete_election(client, store):
    record = store.add(title="Council")
    assert client.delete(f"/elections/{record.id}", headers=_auth()).status_code == 204
    assert client.delete(f"/elections/{record.id}", headers=_auth()).status_code == 404


def test_list_and_search_elections(client):
    data = client.get("/elections").json()
    assert data["demo"] is True
    assert len(data["elections"]) == 4

    data = client.get("/elections", params={"q": "treasury"}).json()
    assert [e["id"] for e in data["elections"]] == ["1"]


def test_election_details(client):
    data = client.get("/elections/blockchain-0").json()
    assert data["election"]["id"] == "1"
    assert data["total_votes"] == 4


def test_notifications_listing(client):
    client.post("/wallet/disconnect")
    data = client.get("/notifications").json()
    assert data[-1]["title"] == "Wallet Disconnected"


def test_event_channel_sends_connection_snapshot(client):
    with client.websocket_connect("/ws/events") as ws:
        message = ws.receive_json()
        assert message["type"] == "connection"
        assert message["data"]["address"] == ALICE


def test_create_election_stores_on_chain_text(client, handle, store):
    body = {"title": "  Treasury  ", "description": "   ", "end_time": NOW + 3600}
    resp = client.post("/elections", json=body, headers=_auth())
    assert resp.status_code == 201, resp.text

    handle.send.assert_awaited_once_with("createElection", "Treasury", DEFAULT_DESCRIPTION, NOW + 3600)
    record = store.list()[0]
    assert record.title == "Treasury"
    assert record.description == DEFAULT_DESCRIPTION


def test_update_election(client, store, notifier):
    record = store.add(title="Council", description="Elect members")
    body = {"title": "Council 2025", "external_url": "https://forum.example/t/2", "status": "upcoming"}

    resp = client.patch(f"/elections/{record.id}", json=body, headers=_auth())
    assert resp.status_code == 200
    data = resp.json()
    assert data["title"] == "Council 2025"
    assert data["description"] == "Elect members"
    assert data["status"] == "upcoming"
    assert store.get(record.id).external_url == "https://forum.example/t/2"
    assert notifier.history[-1].title == "Saved!"


def test_update_election_requires_admin_and_document(client, store):
    record = store.add(title="Council")
    assert client.patch(f"/elections/{record.id}", json={"title": "x"}, headers=_auth("voter")).status_code == 403
    assert client.patch("/elections/missing", json={"title": "x"}, headers=_auth()).status_code == 404
    assert client.patch(f"/elections/{record.id}", json={"status": "archived"}, headers=_auth()).status_code == 422
