"""
RoomChannel — replication of one full-state snapshot per room.

    handle = RoomChannel(relay, member_id).join(room_id, on_state, on_command)
    handle.update(state_dict)   # full snapshot to every member, self included
    handle.send(intent_dict)    # command topic, stamped with member_id
    handle.leave()              # idempotent

Joining broadcasts a `sync-request`; every member holding a last-known state
answers by re-broadcasting it, so a late joiner converges in one round trip.
`update` never applies locally: the echo of the caller's own broadcast is the
single path that commits a state. A sync reply carries the newest write even
before it echoes. `in_flight` counts own writes not yet echoed.
"""
import logging
from typing import Any, Callable, Dict, List, Optional

from models.room import ConnectionStatus
from services.relay import COMMAND_TOPIC, STATE_TOPIC, RelayMessage, RoomRelay, Subscription

logger = logging.getLogger(__name__)

EVENT_STATE = "state"
EVENT_SYNC_REQUEST = "sync-request"
EVENT_COMMAND = "command"

StateListener = Callable[[Dict[str, Any], Optional[str]], None]
CommandListener = Callable[[Dict[str, Any], Optional[str]], None]
StatusListener = Callable[[ConnectionStatus], None]


class RoomHandle:
    def __init__(
        self,
        relay: RoomRelay,
        room_id: str,
        member_id: str,
        on_state: StateListener,
        on_command: Optional[CommandListener] = None,
        on_status: Optional[StatusListener] = None,
    ):
        self.relay = relay
        self.room_id = room_id
        self.member_id = member_id
        self.status = ConnectionStatus.CONNECTING
        self.last_state: Optional[Dict[str, Any]] = None
        self.in_flight = 0
        self._on_state = on_state
        self._on_command = on_command
        self._on_status = on_status
        self._subs: List[Subscription] = []
        self._closed = False

    # ── Lifecycle ──────────────────────────────────────────────────────────────

    def _open(self) -> None:
        self._subs.append(self.relay.subscribe(
            self.room_id, STATE_TOPIC, self._handle_state,
            member_id=self.member_id, on_status=self._handle_status,
        ))
        if self._on_command is not None:
            self._subs.append(self.relay.subscribe(
                self.room_id, COMMAND_TOPIC, self._handle_command,
                member_id=self.member_id, on_status=self._handle_status,
            ))
        self._set_status(ConnectionStatus.ONLINE)
        self.relay.publish(self.room_id, STATE_TOPIC, EVENT_SYNC_REQUEST, sender=self.member_id)

    def leave(self) -> None:
        if self._closed:
            return
        self._closed = True
        for sub in self._subs:
            self.relay.unsubscribe(sub)
        self._subs.clear()
        self._set_status(ConnectionStatus.OFFLINE)
        logger.debug(f"[{self.room_id}] {self.member_id} left channel")

    @property
    def closed(self) -> bool:
        return self._closed

    # ── Sending ────────────────────────────────────────────────────────────────

    def update(self, state: Dict[str, Any]) -> None:
        if self._closed:
            return
        self.last_state = state
        if self.relay.publish(self.room_id, STATE_TOPIC, EVENT_STATE, state, sender=self.member_id):
            self.in_flight += 1

    def send(self, command: Dict[str, Any]) -> None:
        if self._closed:
            return
        self.relay.publish(self.room_id, COMMAND_TOPIC, EVENT_COMMAND, command, sender=self.member_id)

    # ── Receiving ──────────────────────────────────────────────────────────────

    def _handle_state(self, message: RelayMessage) -> None:
        if message.event == EVENT_SYNC_REQUEST:
            if message.sender != self.member_id and self.last_state is not None:
                self.relay.publish(
                    self.room_id, STATE_TOPIC, EVENT_STATE, self.last_state, sender=self.member_id,
                )
                self.in_flight += 1
            return
        if message.event != EVENT_STATE or not isinstance(message.payload, dict):
            return
        if message.sender == self.member_id and self.in_flight:
            self.in_flight -= 1
        self.last_state = message.payload
        self._on_state(message.payload, message.sender)

    def _handle_command(self, message: RelayMessage) -> None:
        if not isinstance(message.payload, dict):
            return
        self._on_command(message.payload, message.sender)

    def _handle_status(self, status: ConnectionStatus) -> None:
        # A relay-side drop: subscriptions are already gone, leave() stays safe
        for sub in self._subs:
            self.relay.unsubscribe(sub)
        self._set_status(status)

    def _set_status(self, status: ConnectionStatus) -> None:
        if self.status == status:
            return
        self.status = status
        if self._on_status:
            self._on_status(status)


class RoomChannel:
    """Joins rooms on a relay on behalf of one member."""

    def __init__(self, relay: RoomRelay, member_id: str):
        self.relay = relay
        self.member_id = member_id

    def join(
        self,
        room_id: str,
        on_state: StateListener,
        on_command: Optional[CommandListener] = None,
        on_status: Optional[StatusListener] = None,
    ) -> RoomHandle:
        handle = RoomHandle(self.relay, room_id, self.member_id, on_state, on_command, on_status)
        handle._open()
        logger.debug(f"[{room_id}] {self.member_id} joined channel")
        return handle
