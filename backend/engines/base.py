"""
GameEngine — the state-machine contract every room game implements.

`reduce(state, intent) -> state` is pure: no I/O, no hidden randomness (seeds
travel inside intents or derive from the state), never mutates its input.
Illegal intents (wrong phase, wrong actor, unknown player, duplicates) return
the input object itself, so callers skip re-broadcasting with `next is state`.

Each engine maps every member of its phase enum to a transition rule; a phase
without a rule is rejected when the engine is constructed.
"""
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Callable, Dict, Generic, Type, TypeVar

from models.events import Intent, JoinRoom, LeaveRoom, Restart
from models.room import RoomState

S = TypeVar("S", bound=RoomState)

PhaseHandler = Callable[[Any, Intent], Any]


class GameEngine(ABC, Generic[S]):
    slug: str = ""
    name: str = ""
    description: str = ""
    rules: tuple = ()
    min_players: int = 1
    max_players: int = 1
    phase_type: Type[Enum]
    state_type: Type[S]

    def __init__(self):
        self._handlers: Dict[Enum, PhaseHandler] = self.phase_handlers()
        missing = [p.value for p in self.phase_type if p not in self._handlers]
        if missing:
            raise TypeError(
                f"{type(self).__name__} has no transition rule for phase(s): {', '.join(missing)}"
            )

    # ── Contract ───────────────────────────────────────────────────────────────

    @abstractmethod
    def initial_state(self, room_id: str, host_id: str) -> S:
        """Fresh lobby with an empty roster."""

    @abstractmethod
    def phase_handlers(self) -> Dict[Enum, PhaseHandler]:
        """One rule per phase; terminal phases map to a no-op rule."""

    @abstractmethod
    def is_terminal(self, state: S) -> bool:
        ...

    @abstractmethod
    def add_or_update_player(self, state: S, intent: JoinRoom) -> S:
        ...

    @abstractmethod
    def remove_player(self, state: S, intent: LeaveRoom) -> S:
        ...

    @abstractmethod
    def fresh_lobby(self, state: S) -> S:
        """Lobby-phase instance keeping the roster, round-scoped fields cleared."""

    # ── Reducer ────────────────────────────────────────────────────────────────

    def reduce(self, state: S, intent: Intent) -> S:
        if isinstance(intent, JoinRoom):
            return self.add_or_update_player(state, intent)
        if isinstance(intent, LeaveRoom):
            if intent.actor_id not in (state.host_id, intent.player_id):
                return state
            return self.remove_player(state, intent)
        if isinstance(intent, Restart):
            return self.restart(state, intent)
        if self.is_terminal(state):
            return state
        return self._handlers[state.phase](state, intent)

    def restart(self, state: S, intent: Restart) -> S:
        if intent.actor_id != state.host_id:
            return state
        if state.phase == self.phase_type("lobby"):
            return state
        return self.fresh_lobby(state)

    # ── Helpers ────────────────────────────────────────────────────────────────

    @staticmethod
    def ignore(state: S, intent: Intent) -> S:
        return state

    def parse_state(self, payload: Dict[str, Any]) -> S:
        return self.state_type.model_validate(payload)
