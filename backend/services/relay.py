"""
RoomRelay — in-process broadcast substrate for rooms.

Members subscribe to a (room, topic) pair and receive every message published
there, including their own. Delivery is scheduled on the running event loop,
FIFO per subscriber, never inline in the publisher's call stack, so a listener
that publishes in response cannot re-enter another listener.

No retries and no history: a member that misses a broadcast converges on the
next full snapshot or by asking for one (`sync-request`).

The relay is an explicit service with a lifecycle (`RoomRelay()` … `dispose()`);
the app owns one per process, tests create as many isolated ones as they need.
"""
import asyncio
import itertools
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from models.room import ConnectionStatus

logger = logging.getLogger(__name__)

STATE_TOPIC = "state"
COMMAND_TOPIC = "command"


@dataclass(frozen=True)
class RelayMessage:
    room_id: str
    topic: str
    event: str
    payload: Any
    sender: Optional[str] = None


Listener = Callable[[RelayMessage], None]
StatusListener = Callable[[ConnectionStatus], None]


@dataclass(eq=False)
class Subscription:
    """Token returned by `subscribe`; pass it back to `unsubscribe`."""
    token: int
    room_id: str
    topic: str
    member_id: Optional[str]
    listener: Listener
    on_status: Optional[StatusListener] = None
    status: ConnectionStatus = ConnectionStatus.ONLINE
    active: bool = field(default=True)


class RoomRelay:
    def __init__(self):
        # {(room_id, topic): {token: Subscription}}
        self._topics: Dict[Tuple[str, str], Dict[int, Subscription]] = {}
        self._tokens = itertools.count(1)
        self._pending = 0
        self._disposed = False

    # ── Lifecycle ──────────────────────────────────────────────────────────────

    @property
    def disposed(self) -> bool:
        return self._disposed

    def dispose(self) -> None:
        """Drop every subscription; members see their status flip to offline."""
        if self._disposed:
            return
        self._disposed = True
        for sub in [s for subs in self._topics.values() for s in subs.values()]:
            self._drop(sub)
        self._topics.clear()
        logger.info("Relay disposed")

    # ── Membership ─────────────────────────────────────────────────────────────

    def subscribe(
        self,
        room_id: str,
        topic: str,
        listener: Listener,
        member_id: Optional[str] = None,
        on_status: Optional[StatusListener] = None,
    ) -> Subscription:
        if self._disposed:
            raise RuntimeError("relay has been disposed")
        sub = Subscription(
            token=next(self._tokens),
            room_id=room_id,
            topic=topic,
            member_id=member_id,
            listener=listener,
            on_status=on_status,
        )
        self._topics.setdefault((room_id, topic), {})[sub.token] = sub
        logger.debug(f"[{room_id}] {member_id or '?'} subscribed to {topic} ({self.count(room_id, topic)} total)")
        return sub

    def unsubscribe(self, sub: Subscription) -> None:
        """Idempotent; safe from any cleanup path."""
        if not sub.active:
            return
        sub.active = False
        key = (sub.room_id, sub.topic)
        subs = self._topics.get(key, {})
        subs.pop(sub.token, None)
        if not subs:
            self._topics.pop(key, None)

    def drop_member(self, room_id: str, member_id: str) -> int:
        """Transport fault: cut every subscription of a member in a room."""
        targets = [
            sub
            for (rid, _topic), subs in self._topics.items() if rid == room_id
            for sub in subs.values() if sub.member_id == member_id
        ]
        for sub in targets:
            self._drop(sub)
        if targets:
            logger.warning(f"[{room_id}] {member_id} dropped from relay")
        return len(targets)

    def count(self, room_id: str, topic: str = STATE_TOPIC) -> int:
        return len(self._topics.get((room_id, topic), {}))

    def members(self, room_id: str, topic: str = STATE_TOPIC) -> List[str]:
        return [
            s.member_id for s in self._topics.get((room_id, topic), {}).values()
            if s.member_id is not None
        ]

    # ── Sending ────────────────────────────────────────────────────────────────

    def publish(
        self,
        room_id: str,
        topic: str,
        event: str,
        payload: Any = None,
        sender: Optional[str] = None,
    ) -> int:
        """Fan out to every current subscriber (self included). Returns the fan-out size."""
        if self._disposed:
            logger.debug(f"[{room_id}] publish on disposed relay ignored ({topic}/{event})")
            return 0
        loop = asyncio.get_running_loop()
        message = RelayMessage(room_id=room_id, topic=topic, event=event, payload=payload, sender=sender)
        targets = list(self._topics.get((room_id, topic), {}).values())
        for sub in targets:
            self._pending += 1
            loop.call_soon(self._deliver, sub, message)
        return len(targets)

    def _deliver(self, sub: Subscription, message: RelayMessage) -> None:
        self._pending -= 1
        if not sub.active:
            return
        try:
            sub.listener(message)
        except Exception:
            logger.exception(
                "[%s] listener for %s failed on %s/%s",
                message.room_id, sub.member_id, message.topic, message.event,
            )

    async def settle(self, max_rounds: int = 10_000) -> None:
        """Yield to the loop until no delivery is pending."""
        rounds = 0
        while self._pending and rounds < max_rounds:
            await asyncio.sleep(0)
            rounds += 1

    def _drop(self, sub: Subscription) -> None:
        self.unsubscribe(sub)
        sub.status = ConnectionStatus.OFFLINE
        if sub.on_status:
            try:
                sub.on_status(ConnectionStatus.OFFLINE)
            except Exception:
                logger.exception("[%s] status listener failed", sub.room_id)
