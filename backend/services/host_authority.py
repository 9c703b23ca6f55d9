"""
HostAuthority — single-writer discipline on top of a RoomChannel.

RoomPeer is one participant in a room:
  - On open it asks for the current state. If nothing shows up within its
    seed delay it writes a fresh lobby naming itself host. The creator from
    the invite flow waits almost nothing; everyone else waits a delay derived
    from a hash of room id and player id. Two peers that both seed are not
    merged: every peer keeps whichever full snapshot it saw last, and the
    loser re-joins through the winner as an ordinary intent.
  - Intents travel on the command topic. A peer reduces them only while its
    own copy of the state names it `host_id`; every other peer drops them.
    The actor of a command is always the relay-verified sender.
  - The host reduces on top of its newest write even before that write has
    echoed back, so two intents arriving back to back never resolve the same
    round twice.
  - Only the host writes snapshots naming itself host. A foreign copy of one
    that differs from the host's newest write is a stale sync reply; the host
    answers it by re-publishing its own copy instead of adopting it.
"""
import asyncio
import logging
from typing import Callable, Generic, List, Optional

from pydantic import ValidationError

from config import settings
from engines.base import GameEngine, S
from engines.rng import stable_offset
from models.events import Intent, JoinRoom, LeaveRoom, parse_intent
from models.room import ConnectionStatus, Identity
from services.channel import RoomChannel, RoomHandle
from services.relay import RoomRelay

logger = logging.getLogger(__name__)

CommitListener = Callable[[S], None]


class SeedDelayPolicy:
    """Soft leader election delays, in milliseconds."""

    def __init__(
        self,
        creator_ms: Optional[int] = None,
        base_ms: Optional[int] = None,
        spread_ms: Optional[int] = None,
    ):
        self.creator_ms = settings.seed_delay_creator_ms if creator_ms is None else creator_ms
        self.base_ms = settings.seed_delay_base_ms if base_ms is None else base_ms
        self.spread_ms = settings.seed_delay_spread_ms if spread_ms is None else spread_ms

    def delay_ms(self, room_id: str, player_id: str, is_creator: bool = False) -> int:
        if is_creator:
            return self.creator_ms
        offset = stable_offset(f"{room_id}:{player_id}", self.spread_ms) if self.spread_ms > 0 else 0
        return self.base_ms + offset

    def delay_for(self, room_id: str, player_id: str, is_creator: bool = False) -> float:
        return self.delay_ms(room_id, player_id, is_creator) / 1000.0


class RoomPeer(Generic[S]):
    def __init__(
        self,
        relay: RoomRelay,
        engine: GameEngine[S],
        identity: Identity,
        room_id: str,
        is_creator: bool = False,
        delays: Optional[SeedDelayPolicy] = None,
    ):
        self.relay = relay
        self.engine = engine
        self.identity = identity
        self.room_id = room_id
        self.is_creator = is_creator
        self.delays = delays or SeedDelayPolicy()

        self._handle: Optional[RoomHandle] = None
        self._state: Optional[S] = None
        self._head: Optional[S] = None
        self._seed_task: Optional[asyncio.Task] = None
        self._listeners: List[CommitListener] = []
        self._joined_via: Optional[str] = None
        self._auto_join = True
        self._closed = False

    # ── Properties ─────────────────────────────────────────────────────────────

    @property
    def player_id(self) -> str:
        return self.identity.user_id

    @property
    def state(self) -> Optional[S]:
        return self._state

    @property
    def is_host(self) -> bool:
        return self._state is not None and self._state.host_id == self.player_id

    @property
    def status(self) -> ConnectionStatus:
        if self._handle is None:
            return ConnectionStatus.CONNECTING
        return self._handle.status

    def on_commit(self, listener: CommitListener) -> None:
        self._listeners.append(listener)

    # ── Lifecycle ──────────────────────────────────────────────────────────────

    async def open(self) -> "RoomPeer[S]":
        if self._handle is not None:
            return self
        channel = RoomChannel(self.relay, self.player_id)
        self._handle = channel.join(self.room_id, self._on_state, on_command=self._on_command)
        delay = self.delays.delay_for(self.room_id, self.player_id, self.is_creator)
        self._seed_task = asyncio.create_task(self._seed_after(delay))
        logger.info(f"[{self.room_id}] {self.player_id} opened (seed delay {delay * 1000:.0f}ms)")
        return self

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._seed_task and not self._seed_task.done():
            self._seed_task.cancel()
        if self._handle is not None:
            self._handle.leave()
        logger.info(f"[{self.room_id}] {self.player_id} closed")

    def leave_room(self) -> None:
        """Leave the roster, then the channel. A leaving host applies its own removal."""
        self._auto_join = False
        intent = LeaveRoom(player_id=self.player_id)
        if self.is_host and self._handle is not None and not self._closed:
            self._apply(intent.with_actor(self.player_id))
        else:
            self.send(intent)
        self.close()

    async def _seed_after(self, delay: float) -> None:
        await asyncio.sleep(delay)
        if self._state is not None or self._closed:
            return
        lobby = self.engine.initial_state(self.room_id, self.player_id)
        seeded = self.engine.reduce(lobby, self._join_intent().with_actor(self.player_id))
        logger.info(f"[{self.room_id}] no state observed, {self.player_id} seeds room as host")
        self._write(seeded)

    # ── Intents ────────────────────────────────────────────────────────────────

    def send(self, intent: Intent) -> None:
        if self._handle is None or self._closed:
            logger.debug(f"[{self.room_id}] {self.player_id} not connected, {intent.type} dropped")
            return
        self._handle.send(intent.to_wire())

    def _join_intent(self) -> JoinRoom:
        return JoinRoom(name=self.identity.display_name, credits=self.identity.credits)

    def _on_command(self, payload: dict, sender: Optional[str]) -> None:
        if not self.is_host:
            return
        if not sender:
            logger.debug(f"[{self.room_id}] unsigned command dropped")
            return
        try:
            intent = parse_intent(payload).with_actor(sender)
        except ValidationError:
            logger.warning(f"[{self.room_id}] malformed intent from {sender}: {payload.get('type')!r}")
            return
        self._apply(intent)

    def _apply(self, intent: Intent) -> None:
        base = self._head if self._handle.in_flight and self._head is not None else self._state
        nxt = self.engine.reduce(base, intent)
        if nxt is base:
            logger.debug(f"[{self.room_id}] {intent.type} from {intent.actor_id} had no effect")
            return
        self._write(nxt)

    def _write(self, state: S) -> None:
        self._head = state
        self._handle.update(state.to_wire())

    # ── State ──────────────────────────────────────────────────────────────────

    def _is_stale_replay(self, state: S, sender: Optional[str]) -> bool:
        """A foreign snapshot that still names us host but is not our newest write."""
        head = self._head
        return (
            sender != self.player_id
            and head is not None
            and head.host_id == self.player_id
            and state.host_id == self.player_id
            and state.to_wire() != head.to_wire()
        )

    def _on_state(self, payload: dict, sender: Optional[str]) -> None:
        try:
            state = self.engine.parse_state(payload)
        except ValidationError:
            logger.warning(f"[{self.room_id}] unreadable state from {sender} ignored")
            return
        if self._is_stale_replay(state, sender):
            logger.debug(f"[{self.room_id}] stale snapshot from {sender}, re-asserting host state")
            self._handle.update(self._head.to_wire())
            return
        previous_host = self._state.host_id if self._state is not None else None
        self._state = state
        if not self._handle.in_flight:
            self._head = state
        if previous_host is not None and previous_host != state.host_id:
            logger.info(f"[{self.room_id}] host is now {state.host_id}")

        for listener in list(self._listeners):
            listener(state)

        if (
            self._auto_join
            and not state.has_player(self.player_id)
            and state.host_id != self.player_id
            and self._joined_via != state.host_id
        ):
            self._joined_via = state.host_id
            self.send(self._join_intent())
