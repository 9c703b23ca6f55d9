"""
SecretStore — access-controlled procedures over the Firestore room layout.

Roles, individual ballots and individual mission cards never leave this
module unfiltered. Callers always pass the verified `Identity`; no procedure
accepts a client-supplied user id for the caller.

Procedures:
  join_room           create-or-join, upsert membership
  deal_roles          host only, at least 5 players
  cast_vote           active member, overwrite allowed until finalized
  finalize_vote       host only, full quorum, returns aggregate counts, purges ballots
  submit_mission_card team member; "fail" only from a spy
  finalize_mission    host only, full quorum, returns fail count, purges cards
  get_my_role / get_spies / reveal_roles   role-scoped reads
  get_public_state / save_public_state     snapshot persistence

The stored `host_id` is fixed when the room document is created.
"""
import logging
from typing import Any, Dict, List, Optional, Sequence

from google.api_core.exceptions import AlreadyExists
from pydantic import BaseModel

from engines.deduction import assign_roles, deduction_engine
from models.deduction import MIN_PLAYERS, DeductionPhase, MissionCard, Side, VoteCounts
from models.room import Identity
from services.firestore_service import FirestoreService

logger = logging.getLogger(__name__)

# Snapshot keys a proposing leader cannot rewrite
_LEADER_FROZEN_KEYS = ("leaderId", "players", "missionTeamIds")


# ── Errors ────────────────────────────────────────────────────────────────────

class StoreError(Exception):
    """Base for every secret-store refusal."""


class RoomNotFound(StoreError):
    pass


class PermissionDenied(StoreError):
    pass


class InvalidRequest(StoreError):
    pass


class QuorumNotMet(StoreError):
    """Retryable: not every required ballot or card is in yet."""

    def __init__(self, what: str, received: int, expected: int):
        self.what = what
        self.received = received
        self.expected = expected
        super().__init__(f"waiting for {what} ({received}/{expected})")


# ── Results ───────────────────────────────────────────────────────────────────

class JoinResult(BaseModel):
    room_id: str
    host_id: str
    public_state: Dict[str, Any]


class SpyInfo(BaseModel):
    user_id: str
    name: str


class RoleInfo(BaseModel):
    user_id: str
    name: str
    role: Side


# ── Public-state readers (stored snapshots are camelCase wire dicts) ──────────

def _active_ids(public_state: Dict[str, Any]) -> List[str]:
    return [
        p["id"] for p in public_state.get("players", [])
        if not p.get("isSpectator", False)
    ]


def _mission_team(public_state: Dict[str, Any]) -> List[str]:
    return list(public_state.get("missionTeamIds", []))


def _clean_name(name: Optional[str]) -> str:
    name = (name or "").strip()
    return name or "Guest"


class SecretStore:
    def __init__(self, fs: FirestoreService):
        self.fs = fs

    # ── Guards ────────────────────────────────────────────────────────────────

    async def _room(self, room_id: str) -> Dict[str, Any]:
        room = await self.fs.get_room(room_id)
        if room is None:
            raise RoomNotFound(f"room not found: {room_id}")
        return room

    async def _member_room(self, identity: Identity, room_id: str) -> Dict[str, Any]:
        room = await self._room(room_id)
        if room["host_id"] != identity.user_id and not await self.fs.get_member(room_id, identity.user_id):
            raise PermissionDenied("not in room")
        return room

    async def _host_room(self, identity: Identity, room_id: str) -> Dict[str, Any]:
        room = await self._room(room_id)
        if room["host_id"] != identity.user_id:
            raise PermissionDenied("only the host can do that")
        return room

    async def _role_of(self, room_id: str, user_id: str) -> Side:
        role = await self.fs.get_role(room_id, user_id)
        if role is None:
            raise InvalidRequest("role not dealt")
        return Side(role)

    # ── Membership ────────────────────────────────────────────────────────────

    async def join_room(
        self,
        identity: Identity,
        room_id: str,
        name: Optional[str] = None,
        credits: Optional[int] = None,
    ) -> JoinResult:
        room = await self.fs.get_room(room_id)
        if room is None:
            lobby = deduction_engine.initial_state(room_id, identity.user_id)
            try:
                room = await self.fs.create_room(room_id, identity.user_id, lobby.to_wire())
                logger.info(f"[{room_id}] room created by {identity.user_id}")
            except AlreadyExists:
                # lost the creation race; join the winner's room
                room = await self._room(room_id)

        await self.fs.upsert_member(
            room_id,
            identity.user_id,
            _clean_name(name if name is not None else identity.display_name),
            max(0, credits if credits is not None else identity.credits),
        )
        return JoinResult(room_id=room_id, host_id=room["host_id"], public_state=room["public_state"])

    # ── Roles ─────────────────────────────────────────────────────────────────

    async def deal_roles(self, identity: Identity, room_id: str, player_ids: Sequence[str]) -> Dict[str, int]:
        await self._host_room(identity, room_id)
        ids = list(dict.fromkeys(player_ids))
        if len(ids) < MIN_PLAYERS:
            raise InvalidRequest(f"need at least {MIN_PLAYERS} players")
        members = {m["user_id"] for m in await self.fs.get_members(room_id)}
        unknown = [pid for pid in ids if pid not in members]
        if unknown:
            raise InvalidRequest(f"not in room: {', '.join(unknown)}")

        roles = assign_roles(ids, room_id)
        await self.fs.replace_roles(room_id, {pid: side.value for pid, side in roles.items()})
        spies = sum(1 for side in roles.values() if side == Side.SPY)
        logger.info(f"[{room_id}] roles dealt to {len(roles)} players ({spies} spies)")
        return {"players": len(roles), "spies": spies}

    async def get_my_role(self, identity: Identity, room_id: str) -> Side:
        await self._member_room(identity, room_id)
        return await self._role_of(room_id, identity.user_id)

    async def get_spies(self, identity: Identity, room_id: str) -> List[SpyInfo]:
        """Fellow spies for a spy; an empty list for everyone else."""
        await self._member_room(identity, room_id)
        if await self._role_of(room_id, identity.user_id) != Side.SPY:
            return []
        roles = await self.fs.get_roles(room_id)
        names = {m["user_id"]: m.get("name", "Guest") for m in await self.fs.get_members(room_id)}
        return [
            SpyInfo(user_id=uid, name=names.get(uid, "Guest"))
            for uid, role in roles.items() if role == Side.SPY.value
        ]

    async def reveal_roles(self, identity: Identity, room_id: str) -> List[RoleInfo]:
        room = await self._host_room(identity, room_id)
        if room["public_state"].get("phase") != DeductionPhase.FINISHED.value:
            raise PermissionDenied("game not finished")
        roles = await self.fs.get_roles(room_id)
        members = await self.fs.get_members(room_id)
        return [
            RoleInfo(user_id=m["user_id"], name=m.get("name", "Guest"), role=Side(roles[m["user_id"]]))
            for m in members if m["user_id"] in roles
        ]

    # ── Votes ─────────────────────────────────────────────────────────────────

    async def cast_vote(self, identity: Identity, room_id: str, mission: int, proposal: int, vote: bool):
        room = await self._member_room(identity, room_id)
        if identity.user_id not in _active_ids(room["public_state"]):
            raise PermissionDenied("spectators do not vote")
        await self.fs.set_ballot(room_id, mission, proposal, identity.user_id, bool(vote))
        logger.debug(f"[{room_id}] ballot in for mission {mission} proposal {proposal}")

    async def finalize_vote(self, identity: Identity, room_id: str, mission: int, proposal: int) -> VoteCounts:
        room = await self._host_room(identity, room_id)
        expected = _active_ids(room["public_state"])
        if not expected:
            raise InvalidRequest("no players")
        ballots = await self.fs.get_ballots(room_id, mission, proposal)
        counted = {uid: v for uid, v in ballots.items() if uid in expected}
        if len(counted) != len(expected):
            raise QuorumNotMet("votes", len(counted), len(expected))

        approve = sum(1 for v in counted.values() if v)
        counts = VoteCounts(approve=approve, reject=len(counted) - approve)
        await self.fs.clear_ballots(room_id, mission, proposal)
        logger.info(f"[{room_id}] vote {mission}-{proposal} finalized: {counts.approve}/{counts.reject}")
        return counts

    # ── Mission cards ─────────────────────────────────────────────────────────

    async def submit_mission_card(self, identity: Identity, room_id: str, mission: int, card: str):
        room = await self._member_room(identity, room_id)
        try:
            card_value = MissionCard(card)
        except ValueError:
            raise InvalidRequest(f"invalid card: {card!r}")
        role = await self._role_of(room_id, identity.user_id)
        if identity.user_id not in _mission_team(room["public_state"]):
            raise PermissionDenied("not on mission team")
        if card_value == MissionCard.FAIL and role != Side.SPY:
            raise PermissionDenied("only spies may submit fail")
        await self.fs.set_card(room_id, mission, identity.user_id, card_value.value)
        logger.debug(f"[{room_id}] mission {mission} card in")

    async def finalize_mission(self, identity: Identity, room_id: str, mission: int) -> int:
        room = await self._host_room(identity, room_id)
        team = _mission_team(room["public_state"])
        if not team:
            raise InvalidRequest("no mission team")
        cards = await self.fs.get_cards(room_id, mission)
        counted = {uid: c for uid, c in cards.items() if uid in team}
        if len(counted) != len(team):
            raise QuorumNotMet("mission cards", len(counted), len(team))

        fail_count = sum(1 for c in counted.values() if c == MissionCard.FAIL.value)
        await self.fs.clear_cards(room_id, mission)
        logger.info(f"[{room_id}] mission {mission} finalized: {fail_count} fail(s)")
        return fail_count

    # ── Public snapshot ───────────────────────────────────────────────────────

    async def get_public_state(self, identity: Identity, room_id: str) -> Dict[str, Any]:
        room = await self._member_room(identity, room_id)
        return room["public_state"]

    async def save_public_state(self, identity: Identity, room_id: str, public_state: Dict[str, Any]):
        """Host at any time; the current leader only while proposing."""
        room = await self._member_room(identity, room_id)
        if public_state.get("roomId", room_id) != room_id:
            raise InvalidRequest("room id mismatch")
        if public_state.get("hostId", room["host_id"]) != room["host_id"]:
            raise InvalidRequest("host_id is immutable")
        if identity.user_id != room["host_id"]:
            # Leadership is read from the stored snapshot, never from the write itself
            stored = room.get("public_state") or {}
            if not (
                stored.get("phase") == DeductionPhase.PROPOSING.value
                and stored.get("leaderId") == identity.user_id
            ):
                raise PermissionDenied("only the host (or the leader while proposing) may write the room state")
            changed = [k for k in _LEADER_FROZEN_KEYS if public_state.get(k) != stored.get(k)]
            if changed:
                raise PermissionDenied(f"leader may not change {', '.join(changed)}")
        await self.fs.set_public_state(room_id, public_state)
