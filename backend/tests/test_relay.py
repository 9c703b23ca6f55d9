"""
RoomRelay and RoomChannel: scheduled delivery, self-delivery, late-join
resync and idempotent cleanup.
"""
import asyncio

import pytest

from models.room import ConnectionStatus
from services.channel import RoomChannel
from services.relay import COMMAND_TOPIC, STATE_TOPIC, RoomRelay


# ── Relay ─────────────────────────────────────────────────────────────────────

def test_delivery_is_scheduled_and_fifo():
    async def scenario():
        relay = RoomRelay()
        seen = []
        relay.subscribe("r1", STATE_TOPIC, lambda m: seen.append(m.payload), member_id="a")
        for n in (1, 2, 3):
            relay.publish("r1", STATE_TOPIC, "state", n, sender="a")
        assert seen == []
        await relay.settle()
        return seen

    assert asyncio.run(scenario()) == [1, 2, 3]


def test_topics_and_rooms_are_isolated():
    async def scenario():
        relay = RoomRelay()
        seen = []
        relay.subscribe("r1", STATE_TOPIC, lambda m: seen.append(("r1", m.topic)))
        relay.subscribe("r2", STATE_TOPIC, lambda m: seen.append(("r2", m.topic)))
        relay.publish("r1", COMMAND_TOPIC, "command", {})
        relay.publish("r1", STATE_TOPIC, "state", {})
        await relay.settle()
        return seen

    assert asyncio.run(scenario()) == [("r1", STATE_TOPIC)]


def test_unsubscribe_is_idempotent_and_cancels_pending_delivery():
    async def scenario():
        relay = RoomRelay()
        seen = []
        sub = relay.subscribe("r1", STATE_TOPIC, lambda m: seen.append(m.payload))
        relay.publish("r1", STATE_TOPIC, "state", "late")
        relay.unsubscribe(sub)
        relay.unsubscribe(sub)
        await relay.settle()
        return seen, relay.count("r1")

    assert asyncio.run(scenario()) == ([], 0)


def test_failing_listener_does_not_block_others():
    async def scenario():
        relay = RoomRelay()
        seen = []

        def boom(message):
            raise RuntimeError("listener bug")

        relay.subscribe("r1", STATE_TOPIC, boom)
        relay.subscribe("r1", STATE_TOPIC, lambda m: seen.append(m.payload))
        relay.publish("r1", STATE_TOPIC, "state", "ok")
        await relay.settle()
        return seen

    assert asyncio.run(scenario()) == ["ok"]


def test_dispose_drops_everyone():
    async def scenario():
        relay = RoomRelay()
        statuses = []
        relay.subscribe("r1", STATE_TOPIC, lambda m: None, member_id="a", on_status=statuses.append)
        relay.dispose()
        relay.dispose()
        sent = relay.publish("r1", STATE_TOPIC, "state", {})
        with pytest.raises(RuntimeError):
            relay.subscribe("r1", STATE_TOPIC, lambda m: None)
        return statuses, sent

    assert asyncio.run(scenario()) == ([ConnectionStatus.OFFLINE], 0)


# ── Channel ───────────────────────────────────────────────────────────────────

def test_update_commits_through_self_delivery():
    async def scenario():
        relay = RoomRelay()
        seen = []
        handle = RoomChannel(relay, "a").join("r1", lambda s, sender: seen.append((s, sender)))
        await relay.settle()
        handle.update({"round": 1})
        in_flight_before = handle.in_flight
        await relay.settle()
        return seen, in_flight_before, handle.in_flight, handle.last_state

    seen, before, after, last = asyncio.run(scenario())
    assert seen == [({"round": 1}, "a")]
    assert (before, after) == (1, 0)
    assert last == {"round": 1}


def test_late_joiner_receives_current_state():
    async def scenario():
        relay = RoomRelay()
        first = RoomChannel(relay, "a").join("r1", lambda s, sender: None)
        first.update({"round": 7})
        await relay.settle()

        late_seen = []
        RoomChannel(relay, "b").join("r1", lambda s, sender: late_seen.append((s, sender)))
        await relay.settle()
        return late_seen

    assert asyncio.run(scenario()) == [({"round": 7}, "a")]


def test_sync_reply_carries_a_write_that_has_not_echoed_yet():
    async def scenario():
        relay = RoomRelay()
        first = RoomChannel(relay, "a").join("r1", lambda s, sender: None)
        first.update({"round": 1})
        await relay.settle()

        late_seen = []
        # the sync request reaches "a" before the echo of its newer write
        RoomChannel(relay, "b").join("r1", lambda s, sender: late_seen.append(s))
        first.update({"round": 2})
        await relay.settle()
        return first.last_state, first.in_flight, late_seen

    last, in_flight, late_seen = asyncio.run(scenario())
    assert last == {"round": 2}
    assert in_flight == 0
    assert late_seen == [{"round": 2}, {"round": 2}]


def test_joiner_without_state_answers_nobody():
    async def scenario():
        relay = RoomRelay()
        seen = []
        RoomChannel(relay, "a").join("r1", lambda s, sender: seen.append(s))
        RoomChannel(relay, "b").join("r1", lambda s, sender: seen.append(s))
        await relay.settle()
        return seen

    assert asyncio.run(scenario()) == []


def test_commands_reach_every_member_with_sender():
    async def scenario():
        relay = RoomRelay()
        got = []
        RoomChannel(relay, "host").join("r1", lambda s, sender: None, on_command=lambda c, sender: got.append((c, sender)))
        guest = RoomChannel(relay, "guest").join("r1", lambda s, sender: None)
        guest.send({"type": "flip-ready"})
        await relay.settle()
        return got

    assert asyncio.run(scenario()) == [({"type": "flip-ready"}, "guest")]


def test_leave_is_idempotent_and_silences_the_handle():
    async def scenario():
        relay = RoomRelay()
        seen = []
        statuses = []
        handle = RoomChannel(relay, "a").join("r1", lambda s, sender: seen.append(s), on_status=statuses.append)
        other = RoomChannel(relay, "b").join("r1", lambda s, sender: None)
        handle.leave()
        handle.leave()
        other.update({"round": 2})
        handle.update({"round": 3})
        await relay.settle()
        return seen, statuses, handle.status

    seen, statuses, status = asyncio.run(scenario())
    assert seen == []
    assert statuses == [ConnectionStatus.ONLINE, ConnectionStatus.OFFLINE]
    assert status == ConnectionStatus.OFFLINE


def test_transport_drop_goes_offline():
    async def scenario():
        relay = RoomRelay()
        handle = RoomChannel(relay, "a").join("r1", lambda s, sender: None, on_command=lambda c, sender: None)
        dropped = relay.drop_member("r1", "a")
        status = handle.status
        handle.leave()
        return dropped, status, relay.count("r1", STATE_TOPIC), relay.count("r1", COMMAND_TOPIC)

    assert asyncio.run(scenario()) == (2, ConnectionStatus.OFFLINE, 0, 0)
