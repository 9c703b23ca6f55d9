"""
Shared room models.

Every replicated room state is a frozen pydantic model that travels as a full
camelCase JSON snapshot. Reducers build new instances with `model_copy`; no
field is ever mutated in place, so "nothing happened" is detectable with an
identity check (`next is state`).
"""
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class WireModel(BaseModel):
    """Base for everything that crosses the relay."""

    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class Identity(WireModel):
    """Stable identity handed over by the auth collaborator."""

    user_id: str
    display_name: str = "Guest"
    credits: int = 0


class ConnectionStatus(str, Enum):
    CONNECTING = "connecting"
    ONLINE = "online"
    OFFLINE = "offline"


class RoomPlayer(WireModel):
    id: str
    name: str
    credits: int = 0


class RoomState(WireModel):
    """
    Fields every engine shares. Subclasses declare `phase` and `players`
    with their own enum / player types.
    """

    room_id: str
    host_id: str
    round: int = 0

    def get_player(self, player_id: str) -> Optional[RoomPlayer]:
        for p in self.players:
            if p.id == player_id:
                return p
        return None

    def has_player(self, player_id: str) -> bool:
        return self.get_player(player_id) is not None

    @property
    def player_ids(self) -> List[str]:
        return [p.id for p in self.players]


def next_host_id(players, host_id: str, removed_id: str) -> str:
    """Host hand-off on removal: the first remaining roster member takes over."""
    if host_id != removed_id:
        return host_id
    return players[0].id if players else host_id


def rotate(ids: List[str], current: Optional[str]) -> Optional[str]:
    """Round-robin successor of `current` in `ids` (first id if absent)."""
    if not ids:
        return None
    if current in ids:
        return ids[(ids.index(current) + 1) % len(ids)]
    return ids[0]
