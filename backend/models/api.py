from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from models.deduction import MissionCard, Side


# ── Request / Response models ─────────────────────────────────────────────────

class GameInfo(BaseModel):
    slug: str
    name: str
    description: str
    min_players: int
    max_players: int
    rules: List[str] = []


class SessionRequest(BaseModel):
    display_name: str = "Guest"
    credits: int = Field(default=0, ge=0)


class SessionResponse(BaseModel):
    token: str
    user_id: str
    display_name: str
    credits: int


class JoinRoomRequest(BaseModel):
    name: Optional[str] = None
    credits: Optional[int] = None


class DealRolesRequest(BaseModel):
    player_ids: List[str]


class DealRolesResponse(BaseModel):
    players: int
    spies: int


class MyRoleResponse(BaseModel):
    role: Side


class CastVoteRequest(BaseModel):
    mission: int = Field(ge=1)
    proposal: int = Field(ge=1)
    vote: bool


class FinalizeVoteRequest(BaseModel):
    mission: int = Field(ge=1)
    proposal: int = Field(ge=1)


class FinalizeVoteResponse(BaseModel):
    approve: int
    reject: int


class MissionCardRequest(BaseModel):
    mission: int = Field(ge=1)
    card: MissionCard


class FinalizeMissionRequest(BaseModel):
    mission: int = Field(ge=1)


class FinalizeMissionResponse(BaseModel):
    fail_count: int


class PublicStateBody(BaseModel):
    public_state: Dict[str, Any]
