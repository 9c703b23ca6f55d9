"""
Room HTTP endpoints — the secret-store procedures.

Routes:
  POST /api/session                               — Guest session (token for the other routes)
  GET  /api/games                                 — Online game catalog
  GET  /api/games/{slug}                          — One catalog entry
  POST /api/rooms/{room_id}/join                  — Create-or-join, upsert membership
  GET  /api/rooms/{room_id}/state                 — Stored public snapshot (members only)
  PUT  /api/rooms/{room_id}/state                 — Persist snapshot (host, or leader while proposing)
  POST /api/rooms/{room_id}/roles/deal            — Host deals secret roles
  GET  /api/rooms/{room_id}/roles/me              — Caller's own role
  GET  /api/rooms/{room_id}/roles/spies           — Fellow spies (empty for the resistance)
  GET  /api/rooms/{room_id}/roles                 — Every role, host only, finished games only
  POST /api/rooms/{room_id}/votes                 — Cast or change a ballot
  POST /api/rooms/{room_id}/votes/finalize        — Host: aggregate counts, purge ballots
  POST /api/rooms/{room_id}/mission-cards         — Submit a mission card
  POST /api/rooms/{room_id}/mission-cards/finalize — Host: fail count, purge cards

Every route resolves the caller from the session token; no body carries a
caller id. Store refusals map to HTTP codes in `store_error_handler`.
"""
import logging
import uuid
from typing import Any, Dict, List

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse

from engines.registry import catalog, get_engine
from models.api import (
    CastVoteRequest,
    DealRolesRequest,
    DealRolesResponse,
    FinalizeMissionRequest,
    FinalizeMissionResponse,
    FinalizeVoteRequest,
    FinalizeVoteResponse,
    GameInfo,
    JoinRoomRequest,
    MissionCardRequest,
    MyRoleResponse,
    PublicStateBody,
    SessionRequest,
    SessionResponse,
)
from models.room import Identity
from services.firestore_service import get_firestore_service
from services.identity import IdentityRegistry, current_identity, get_identity_registry
from services.secret_store import (
    InvalidRequest,
    JoinResult,
    PermissionDenied,
    QuorumNotMet,
    RoleInfo,
    RoomNotFound,
    SecretStore,
    SpyInfo,
    StoreError,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["rooms"])


def get_secret_store(request: Request) -> SecretStore:
    """Built on first use so missing GCP credentials never block startup."""
    store = getattr(request.app.state, "store", None)
    if store is None:
        store = SecretStore(get_firestore_service())
        request.app.state.store = store
    return store


async def store_error_handler(request: Request, exc: StoreError) -> JSONResponse:
    if isinstance(exc, QuorumNotMet):
        return JSONResponse(status_code=409, content={
            "detail": str(exc),
            "code": "QUORUM_NOT_MET",
            "received": exc.received,
            "expected": exc.expected,
            "retryable": True,
        })
    if isinstance(exc, RoomNotFound):
        status = 404
    elif isinstance(exc, PermissionDenied):
        status = 403
    elif isinstance(exc, InvalidRequest):
        status = 400
    else:
        status = 500
    if status >= 500:
        logger.error(f"Unhandled store error on {request.url.path}: {exc}")
    return JSONResponse(status_code=status, content={"detail": str(exc)})


# ── Session & catalog ─────────────────────────────────────────────────────────

@router.post("/session", response_model=SessionResponse, status_code=201)
async def create_session(
    body: SessionRequest,
    registry: IdentityRegistry = Depends(get_identity_registry),
):
    identity = Identity(
        user_id=str(uuid.uuid4()),
        display_name=body.display_name.strip() or "Guest",
        credits=body.credits,
    )
    token = registry.issue(identity)
    logger.info(f"Session opened for {identity.user_id} ({identity.display_name})")
    return SessionResponse(
        token=token,
        user_id=identity.user_id,
        display_name=identity.display_name,
        credits=identity.credits,
    )


@router.get("/games", response_model=List[GameInfo])
async def list_games():
    return catalog()


@router.get("/games/{slug}", response_model=GameInfo)
async def get_game(slug: str):
    try:
        engine = get_engine(slug)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Unknown game: {slug}")
    return next(g for g in catalog() if g.slug == engine.slug)


# ── Membership & public state ─────────────────────────────────────────────────

@router.post("/rooms/{room_id}/join", response_model=JoinResult)
async def join_room(
    room_id: str,
    body: JoinRoomRequest,
    identity: Identity = Depends(current_identity),
    store: SecretStore = Depends(get_secret_store),
):
    result = await store.join_room(identity, room_id, body.name, body.credits)
    logger.info(f"[{room_id}] {identity.user_id} joined (host {result.host_id})")
    return result


@router.get("/rooms/{room_id}/state")
async def get_public_state(
    room_id: str,
    identity: Identity = Depends(current_identity),
    store: SecretStore = Depends(get_secret_store),
) -> Dict[str, Any]:
    return await store.get_public_state(identity, room_id)


@router.put("/rooms/{room_id}/state", status_code=204)
async def save_public_state(
    room_id: str,
    body: PublicStateBody,
    identity: Identity = Depends(current_identity),
    store: SecretStore = Depends(get_secret_store),
):
    await store.save_public_state(identity, room_id, body.public_state)


# ── Roles ─────────────────────────────────────────────────────────────────────

@router.post("/rooms/{room_id}/roles/deal", response_model=DealRolesResponse)
async def deal_roles(
    room_id: str,
    body: DealRolesRequest,
    identity: Identity = Depends(current_identity),
    store: SecretStore = Depends(get_secret_store),
):
    return DealRolesResponse(**await store.deal_roles(identity, room_id, body.player_ids))


@router.get("/rooms/{room_id}/roles/me", response_model=MyRoleResponse)
async def get_my_role(
    room_id: str,
    identity: Identity = Depends(current_identity),
    store: SecretStore = Depends(get_secret_store),
):
    return MyRoleResponse(role=await store.get_my_role(identity, room_id))


@router.get("/rooms/{room_id}/roles/spies", response_model=List[SpyInfo])
async def get_spies(
    room_id: str,
    identity: Identity = Depends(current_identity),
    store: SecretStore = Depends(get_secret_store),
):
    return await store.get_spies(identity, room_id)


@router.get("/rooms/{room_id}/roles", response_model=List[RoleInfo])
async def reveal_roles(
    room_id: str,
    identity: Identity = Depends(current_identity),
    store: SecretStore = Depends(get_secret_store),
):
    return await store.reveal_roles(identity, room_id)


# ── Votes ─────────────────────────────────────────────────────────────────────

@router.post("/rooms/{room_id}/votes", status_code=204)
async def cast_vote(
    room_id: str,
    body: CastVoteRequest,
    identity: Identity = Depends(current_identity),
    store: SecretStore = Depends(get_secret_store),
):
    await store.cast_vote(identity, room_id, body.mission, body.proposal, body.vote)


@router.post("/rooms/{room_id}/votes/finalize", response_model=FinalizeVoteResponse)
async def finalize_vote(
    room_id: str,
    body: FinalizeVoteRequest,
    identity: Identity = Depends(current_identity),
    store: SecretStore = Depends(get_secret_store),
):
    counts = await store.finalize_vote(identity, room_id, body.mission, body.proposal)
    return FinalizeVoteResponse(approve=counts.approve, reject=counts.reject)


# ── Mission cards ─────────────────────────────────────────────────────────────

@router.post("/rooms/{room_id}/mission-cards", status_code=204)
async def submit_mission_card(
    room_id: str,
    body: MissionCardRequest,
    identity: Identity = Depends(current_identity),
    store: SecretStore = Depends(get_secret_store),
):
    await store.submit_mission_card(identity, room_id, body.mission, body.card.value)


@router.post("/rooms/{room_id}/mission-cards/finalize", response_model=FinalizeMissionResponse)
async def finalize_mission(
    room_id: str,
    body: FinalizeMissionRequest,
    identity: Identity = Depends(current_identity),
    store: SecretStore = Depends(get_secret_store),
):
    fail_count = await store.finalize_mission(identity, room_id, body.mission)
    return FinalizeMissionResponse(fail_count=fail_count)
