# packages/voting/main.py

import asyncio
import logging
from datetime import datetime
from typing import Optional

from fastapi import FastAPI, HTTPException, Depends, Header, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from jose import jwt, JWTError
import sentry_sdk
from sentry_sdk.integrations.asgi import SentryAsgiMiddleware
from prometheus_fastapi_instrumentator import Instrumentator

from . import config
from .catalog import ElectionCatalog, search
from .connection import ConnectionManager
from .contract import ContractGateway
from .errors import AlreadyVoted, NotConfigured, SignerRequired
from .metadata import MetadataStore, record_created_election
from .notifications import Notifier
from .schemas import (
    CatalogSnapshot,
    CreateElectionSchema,
    ElectionDetails,
    ElectionRecordSchema,
    Notification,
    TransactionState,
    UpdateElectionSchema,
)
from .transactions import Outcome, TransactionCoordinator, clean_election_text
from .wallet import RpcWalletProvider

config.configure_logging()
logger = logging.getLogger(__name__)

sentry_sdk.init(dsn=config.SENTRY_DSN)

app = FastAPI()
app.add_middleware(SentryAsgiMiddleware)

Instrumentator().instrument(app).expose(app)

LOCAL_MODE = "localhost" in config.FRONTEND_ORIGIN

app.add_middleware(
    CORSMiddleware,
    allow_origins=[config.FRONTEND_ORIGIN],
    allow_origin_regex=".*" if LOCAL_MODE else None,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# -----------------------------------------------------------------------------
# One wallet connection and one coordinator per process.
# -----------------------------------------------------------------------------
notifier = Notifier(push=bool(config.PUSH_CHANNEL))
provider = RpcWalletProvider() if config.WALLET_RPC_URL else None
connection = ConnectionManager(provider, notifier)
gateway = ContractGateway()
coordinator = TransactionCoordinator(connection, gateway, notifier)
store = MetadataStore()
catalog = ElectionCatalog(gateway, store)

if not gateway.is_configured():
    logger.warning("CONTRACT_ADDRESS is not set; serving demo data")


@app.on_event("startup")
async def startup():
    store.create_all()
    connection.attach()
    await connection.check_connection()
    if provider is not None:
        provider.start_watching()


@app.on_event("shutdown")
async def shutdown():
    connection.detach()
    if provider is not None:
        provider.stop_watching()


def get_connection() -> ConnectionManager:
    return connection


def get_coordinator() -> TransactionCoordinator:
    return coordinator


def get_store() -> MetadataStore:
    return store


def get_catalog() -> ElectionCatalog:
    return catalog


def get_notifier() -> Notifier:
    return notifier


def get_current_user(authorization: str = Header(None)) -> dict:
    """Decodes the JWT and returns the claims payload."""
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Missing or invalid Authorization header")
    token = authorization.split()[1]
    try:
        return jwt.decode(token, config.JWT_SECRET, algorithms=["HS256"])
    except JWTError as e:
        raise HTTPException(status_code=401, detail=f"Invalid token: {e}")


def require_admin_role(user: dict = Depends(get_current_user)):
    """A dependency that ensures the user has the 'admin' role."""
    roles = user.get("roles")
    role = user.get("role")
    has_admin = False
    if isinstance(roles, list):
        has_admin = "admin" in roles
    elif isinstance(role, str):
        has_admin = role == "admin"
    if not has_admin:
        raise HTTPException(status_code=403, detail="Insufficient permissions. Admin role required.")
    return user


def _wallet_payload(conn: ConnectionManager) -> dict:
    return {
        **conn.state.model_dump(mode="json"),
        "is_wrong_network": conn.is_wrong_network,
        "required_chain_id": conn.required_chain_id,
    }


def _rejection(outcome: Outcome) -> HTTPException:
    """Translate a rejected or failed coordinator call into an HTTP error."""
    error = outcome.error
    detail = error.message if error is not None else "Request failed"
    if isinstance(error, NotConfigured):
        return HTTPException(status_code=503, detail=detail)
    if isinstance(error, SignerRequired):
        return HTTPException(status_code=409, detail=detail)
    if outcome.state.failed:
        status = 409 if outcome.state.reason == AlreadyVoted.kind else 502
        return HTTPException(status_code=status, detail=outcome.state.error_message)
    return HTTPException(status_code=422, detail=detail)


# --- wallet -------------------------------------------------------------------

@app.get("/wallet")
def wallet_status(conn: ConnectionManager = Depends(get_connection)):
    return _wallet_payload(conn)


@app.post("/wallet/connect")
async def wallet_connect(conn: ConnectionManager = Depends(get_connection)):
    ok = await conn.connect()
    return {"ok": ok, **_wallet_payload(conn)}


@app.post("/wallet/disconnect")
def wallet_disconnect(conn: ConnectionManager = Depends(get_connection)):
    conn.disconnect()
    return _wallet_payload(conn)


@app.post("/wallet/reset")
def wallet_reset(conn: ConnectionManager = Depends(get_connection)):
    conn.reset_connection_state()
    return _wallet_payload(conn)


@app.get("/transaction", response_model=TransactionState)
def transaction_status(coord: TransactionCoordinator = Depends(get_coordinator)):
    return coord.state


@app.get("/notifications", response_model=list[Notification])
def list_notifications(n: Notifier = Depends(get_notifier)):
    return list(n.history)


# --- elections ----------------------------------------------------------------

@app.get("/elections", response_model=CatalogSnapshot)
async def list_elections(q: Optional[str] = None, cat: ElectionCatalog = Depends(get_catalog)):
    snapshot = await cat.list_elections()
    if q:
        snapshot.elections = search(snapshot.elections, q)
    return snapshot


@app.get("/elections/{key}", response_model=ElectionDetails)
async def get_election(key: str, address: Optional[str] = None, cat: ElectionCatalog = Depends(get_catalog)):
    return await cat.get_details(key, address)


@app.post("/elections", status_code=201)
async def create_election(
    payload: CreateElectionSchema,
    coord: TransactionCoordinator = Depends(get_coordinator),
    docs: MetadataStore = Depends(get_store),
    n: Notifier = Depends(get_notifier),
    admin_user: dict = Depends(require_admin_role),
):
    logger.info(f"Admin user '{admin_user.get('email')}' is creating an election.")
    end_time = payload.end_time
    if end_time is None:
        # default to 30 days from now
        end_time = int(coord.clock()) + 30 * 24 * 60 * 60

    outcome = await coord.submit_create_election(payload.title, payload.description, end_time)
    if not outcome.ok:
        raise _rejection(outcome)

    # separate step: the chain write above stands even if this fails
    title, description = clean_election_text(payload.title, payload.description)
    record = record_created_election(
        docs,
        coord.gateway,
        outcome.value,
        title=title,
        description=description,
        external_url=payload.external_url,
        end_date=datetime.utcfromtimestamp(end_time) if payload.end_time else None,
        banner_image=payload.banner_image,
    )
    if record is None:
        n.warning("Metadata Not Saved", "The election is on-chain but its details could not be stored.")
    else:
        n.success("Election Created!", "Your election is now live and ready for voting.")
    return {
        "transaction_hash": outcome.state.tx_hash,
        "metadata_saved": record is not None,
        "record": ElectionRecordSchema.model_validate(record).model_dump(mode="json") if record else None,
    }


@app.post("/elections/{election_id}/vote")
async def vote(election_id: int, coord: TransactionCoordinator = Depends(get_coordinator)):
    outcome = await coord.submit_vote(election_id)
    if not outcome.ok:
        raise _rejection(outcome)
    return {"ok": True, "transaction_hash": outcome.state.tx_hash}


@app.patch("/elections/{doc_id}", response_model=ElectionRecordSchema)
def update_election(
    doc_id: str,
    payload: UpdateElectionSchema,
    docs: MetadataStore = Depends(get_store),
    n: Notifier = Depends(get_notifier),
    admin_user: dict = Depends(require_admin_role),
):
    record = docs.update(doc_id, payload)
    if record is None:
        raise HTTPException(404, "election not found")
    n.success("Saved!", "Election has been updated successfully.")
    return record


@app.post("/elections/{doc_id}/end", response_model=ElectionRecordSchema)
async def end_election(
    doc_id: str,
    on_chain: bool = False,
    coord: TransactionCoordinator = Depends(get_coordinator),
    docs: MetadataStore = Depends(get_store),
    n: Notifier = Depends(get_notifier),
    admin_user: dict = Depends(require_admin_role),
):
    record = docs.get(doc_id)
    if record is None:
        raise HTTPException(404, "election not found")
    if on_chain and record.election_id is not None:
        outcome = await coord.submit_end_election(record.election_id)
        if not outcome.ok:
            raise _rejection(outcome)
    record = docs.mark_ended(doc_id)
    n.success("Election Archived", "The election has been marked as ended.")
    return record


@app.delete("/elections/{doc_id}", status_code=204)
def delete_election(
    doc_id: str,
    docs: MetadataStore = Depends(get_store),
    n: Notifier = Depends(get_notifier),
    admin_user: dict = Depends(require_admin_role),
):
    if not docs.delete(doc_id):
        raise HTTPException(404, "election not found")
    n.success("Election Deleted", "The election has been permanently deleted.")


# --- event channel ------------------------------------------------------------

@app.websocket("/ws/events")
async def ws_events(websocket: WebSocket):
    await websocket.accept()
    conn = app.dependency_overrides.get(get_connection, get_connection)()
    n = app.dependency_overrides.get(get_notifier, get_notifier)()
    states = conn.subscribe()
    notes = n.subscribe()
    await websocket.send_json({"type": "connection", "data": _wallet_payload(conn)})
    receiver = asyncio.ensure_future(websocket.receive_text())
    waiting = set()
    try:
        while True:
            state_get = asyncio.ensure_future(states.get())
            note_get = asyncio.ensure_future(notes.get())
            waiting = {state_get, note_get}
            done, pending = await asyncio.wait({receiver, *waiting}, return_when=asyncio.FIRST_COMPLETED)
            for fut in pending - {receiver}:
                fut.cancel()
            if receiver in done:
                # inbound frames are ignored; a closed socket raises here
                receiver.result()
                receiver = asyncio.ensure_future(websocket.receive_text())
            if state_get in done:
                await websocket.send_json({"type": "connection", "data": _wallet_payload(conn)})
            if note_get in done:
                await websocket.send_json({"type": "notification", "data": note_get.result().model_dump(mode="json")})
    except WebSocketDisconnect:
        logger.info("Event channel client disconnected")
    finally:
        receiver.cancel()
        for fut in waiting:
            fut.cancel()
        conn.unsubscribe(states)
        n.unsubscribe(notes)
