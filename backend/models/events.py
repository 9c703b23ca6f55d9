"""
Intent events — client requests for a state change.

Intents travel on the room's command topic. Only the peer whose local state
names it as host reduces them; everyone else drops them. The relay stamps the
verified sender onto `actor_id`, so a client can never act as someone else.

Wire shape: {"type": "<intent>", "actorId": "...", ...fields}
"""
from typing import Annotated, Any, Dict, Literal, Optional, Tuple, Union

from pydantic import Field, TypeAdapter

from models.room import WireModel


class Intent(WireModel):
    actor_id: str = ""

    def with_actor(self, actor_id: str) -> "Intent":
        if self.actor_id == actor_id:
            return self
        return self.model_copy(update={"actor_id": actor_id})


# ── Room lifecycle (every engine) ─────────────────────────────────────────────

class JoinRoom(Intent):
    type: Literal["join"] = "join"
    name: str = "Guest"
    credits: int = 0


class LeaveRoom(Intent):
    """Remove `player_id` from the roster (self-removal, or any player by the host)."""
    type: Literal["leave"] = "leave"
    player_id: str


class StartGame(Intent):
    type: Literal["start"] = "start"
    seed: Optional[str] = None


class Restart(Intent):
    type: Literal["restart"] = "restart"


# ── Battle engine ─────────────────────────────────────────────────────────────

class Flip(Intent):
    type: Literal["flip-ready"] = "flip-ready"


# ── Deduction engine ──────────────────────────────────────────────────────────

class AcknowledgeRole(Intent):
    type: Literal["ack-role"] = "ack-role"


class ProposeTeam(Intent):
    type: Literal["propose"] = "propose"
    team_ids: Tuple[str, ...] = ()


class VotesRevealed(Intent):
    """Host folds the secret store's vote aggregate into the public state."""
    type: Literal["votes-revealed"] = "votes-revealed"
    approve: int
    reject: int


class MissionFinalized(Intent):
    """Host folds the secret store's fail count into the public state."""
    type: Literal["mission-finalized"] = "mission-finalized"
    fail_count: int


class Advance(Intent):
    type: Literal["advance"] = "advance"


GameIntent = Annotated[
    Union[
        JoinRoom,
        LeaveRoom,
        StartGame,
        Restart,
        Flip,
        AcknowledgeRole,
        ProposeTeam,
        VotesRevealed,
        MissionFinalized,
        Advance,
    ],
    Field(discriminator="type"),
]

_intent_adapter: TypeAdapter = TypeAdapter(GameIntent)


def parse_intent(payload: Dict[str, Any]) -> Intent:
    """Raises pydantic.ValidationError on unknown or malformed intents."""
    return _intent_adapter.validate_python(payload)
