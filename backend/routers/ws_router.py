"""
WebSocket relay — browser peers on the room relay.

URL: /ws/{room_id}?token={session_token}

The server never reduces game state here; it only forwards. Each socket is a
relay member subscribed to the room's `state` and `command` topics.

Client → server message types:
  ping          — keep-alive heartbeat → responds with "pong"
  state         — full snapshot broadcast ({"type": "state", "payload": {...}})
  sync-request  — ask every member holding state to rebroadcast it
  command       — intent for the host ({"type": "command", "payload": {"type": "flip-ready", ...}})

Server → client:
  connected     — private, carries the caller's playerId
  state / sync-request / command — relayed, with "sender" set to the verified
                  member id; command payloads get `actorId` overwritten with it
  error         — PARSE_ERROR / UNKNOWN_TYPE; the connection stays open
"""
import asyncio
import json
import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect

from services.channel import EVENT_COMMAND, EVENT_STATE, EVENT_SYNC_REQUEST
from services.relay import COMMAND_TOPIC, STATE_TOPIC, RelayMessage, RoomRelay, Subscription

logger = logging.getLogger(__name__)

router = APIRouter()

_CLOSED = object()


class SocketMember:
    """
    One WebSocket bridged onto the relay.
    Relay delivery is synchronous, so outgoing frames go through a queue that a
    writer task drains; a failed send drops the member.
    """

    def __init__(self, relay: RoomRelay, room_id: str, member_id: str, ws: WebSocket):
        self.relay = relay
        self.room_id = room_id
        self.member_id = member_id
        self.ws = ws
        self._outbox: asyncio.Queue = asyncio.Queue()
        self._subs: List[Subscription] = []
        self._writer: Optional[asyncio.Task] = None

    # ── Lifecycle ──────────────────────────────────────────────────────────────

    def attach(self) -> None:
        for topic in (STATE_TOPIC, COMMAND_TOPIC):
            self._subs.append(self.relay.subscribe(
                self.room_id, topic, self._on_message,
                member_id=self.member_id, on_status=self._on_status,
            ))
        self._writer = asyncio.create_task(self._drain())
        logger.debug(
            f"[{self.room_id}] {self.member_id} connected ({self.relay.count(self.room_id)} total)"
        )

    async def detach(self) -> None:
        for sub in self._subs:
            self.relay.unsubscribe(sub)
        self._subs.clear()
        if self._writer and not self._writer.done():
            self._writer.cancel()
            try:
                await self._writer
            except asyncio.CancelledError:
                pass

    # ── Outgoing ───────────────────────────────────────────────────────────────

    def send(self, message: Dict[str, Any]) -> None:
        self._outbox.put_nowait(message)

    def _on_message(self, message: RelayMessage) -> None:
        self.send({"type": message.event, "payload": message.payload, "sender": message.sender})

    def _on_status(self, status) -> None:
        self._outbox.put_nowait(_CLOSED)

    async def _drain(self) -> None:
        while True:
            message = await self._outbox.get()
            if message is _CLOSED:
                await self.ws.close(code=1011, reason="Relay connection lost")
                return
            try:
                await self.ws.send_json(message)
            except Exception as exc:
                logger.warning(f"[{self.room_id}] send to {self.member_id} failed: {exc}")
                for sub in self._subs:
                    self.relay.unsubscribe(sub)
                return

    # ── Incoming ───────────────────────────────────────────────────────────────

    def handle(self, data: Dict[str, Any]) -> None:
        msg_type = data.get("type", "")
        payload = data.get("payload")

        if msg_type == "ping":
            self.send({"type": "pong"})
        elif msg_type == EVENT_STATE:
            if not isinstance(payload, dict):
                self._error("state payload must be an object", "PARSE_ERROR")
                return
            self.relay.publish(self.room_id, STATE_TOPIC, EVENT_STATE, payload, sender=self.member_id)
        elif msg_type == EVENT_SYNC_REQUEST:
            self.relay.publish(self.room_id, STATE_TOPIC, EVENT_SYNC_REQUEST, sender=self.member_id)
        elif msg_type == EVENT_COMMAND:
            if not isinstance(payload, dict):
                self._error("command payload must be an object", "PARSE_ERROR")
                return
            stamped = {**payload, "actorId": self.member_id}
            self.relay.publish(self.room_id, COMMAND_TOPIC, EVENT_COMMAND, stamped, sender=self.member_id)
        else:
            self._error(f"Unknown message type: {msg_type!r}", "UNKNOWN_TYPE")

    def _error(self, text: str, code: str) -> None:
        self.send({"type": "error", "message": text, "code": code})


@router.websocket("/ws/{room_id}")
async def websocket_endpoint(
    ws: WebSocket,
    room_id: str,
    token: str = Query("", description="Session token from POST /api/session"),
):
    identity = ws.app.state.identities.resolve(token)
    if identity is None:
        await ws.close(code=4401, reason="Authentication required")
        return

    relay: RoomRelay = ws.app.state.relay
    await ws.accept()
    member = SocketMember(relay, room_id, identity.user_id, ws)
    member.attach()
    member.send({"type": "connected", "playerId": identity.user_id, "roomId": room_id})

    # ── Message loop ───────────────────────────────────────────────────────────
    try:
        while True:
            raw = await ws.receive_text()
            try:
                data = json.loads(raw)
            except json.JSONDecodeError:
                member.send({"type": "error", "message": "Invalid JSON", "code": "PARSE_ERROR"})
                continue
            if not isinstance(data, dict):
                member.send({"type": "error", "message": "Expected an object", "code": "PARSE_ERROR"})
                continue
            member.handle(data)
    except WebSocketDisconnect:
        pass
    finally:
        await member.detach()
        logger.debug(f"[{room_id}] {identity.user_id} disconnected")
