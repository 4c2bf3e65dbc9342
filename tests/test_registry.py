import asyncio

import pytest

from session_service.registry import RoomState, SessionConnection, SessionGrant, SessionRegistry

from conftest import FakeChannel, frames


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def connect(session_id, participant_id, role="client"):
    return SessionConnection(session_id, participant_id, role, FakeChannel())


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def registry(clock):
    return SessionRegistry(idle_timeout=7200, clock=clock)


async def test_room_states_follow_joins_and_leaves(registry):
    assert registry.state_of("s-1") is RoomState.NO_PARTICIPANTS

    a = connect("s-1", "client-1")
    b = connect("s-1", "provider-1", "provider")

    await registry.register(a)
    assert registry.state_of("s-1") is RoomState.ONE_JOINED
    await registry.register(b)
    assert registry.state_of("s-1") is RoomState.BOTH_JOINED

    await registry.deregister(b)
    assert registry.state_of("s-1") is RoomState.ONE_JOINED
    await registry.deregister(a)
    assert registry.state_of("s-1") is RoomState.NO_PARTICIPANTS


async def test_presence_frames(registry):
    a = connect("s-1", "client-1")
    b = connect("s-1", "provider-1", "provider")

    await registry.register(a)
    assert frames(a) == [{"type": "session-joined", "sessionId": "s-1", "participantId": "client-1", "participants": []}]

    await registry.register(b)
    assert frames(b)[0]["participants"] == [{"participantId": "client-1", "role": "client"}]
    assert frames(a) == [
        {"type": "participant-joined", "sessionId": "s-1", "participantId": "provider-1", "role": "provider"}
    ]

    await registry.deregister(b)
    assert frames(a) == [
        {"type": "participant-left", "sessionId": "s-1", "participantId": "provider-1", "role": "provider"}
    ]


async def test_rejoin_replaces_previous_connection(registry):
    old = connect("s-1", "client-1")
    new = connect("s-1", "client-1")

    await registry.register(old)
    replaced = await registry.register(new)

    assert replaced is old
    assert old.closed
    assert registry.participants("s-1") == [("client-1", "client")]

    # the stale socket going away must not evict the new one
    assert await registry.deregister(old) is False
    assert registry.state_of("s-1") is RoomState.ONE_JOINED


async def test_fan_out_skips_sender_and_requires_membership(registry):
    a = connect("s-1", "client-1")
    b = connect("s-1", "provider-1", "provider")
    await registry.register(a)
    await registry.register(b)
    frames(a)
    frames(b)

    assert await registry.fan_out("s-1", {"type": "offer"}, "client-1") == 1
    assert frames(a) == []
    assert frames(b) == [{"type": "offer"}]

    assert await registry.fan_out("s-1", {"type": "offer"}, "stranger") is None
    assert await registry.fan_out("s-unknown", {"type": "offer"}, "client-1") is None


async def test_closed_peer_is_skipped(registry):
    a = connect("s-1", "client-1")
    b = connect("s-1", "provider-1", "provider")
    await registry.register(a)
    await registry.register(b)
    b.close()

    assert await registry.fan_out("s-1", {"type": "chat"}, "client-1") == 0


async def test_rooms_in_different_sessions_are_independent(registry):
    a = connect("s-1", "client-1")
    c = connect("s-2", "client-2")
    await registry.register(a)
    await registry.register(c)
    frames(a)
    frames(c)

    await registry.fan_out("s-1", {"type": "chat"}, "client-1")
    assert frames(c) == []
    assert len(registry) == 2


async def test_idle_rooms_are_reaped_after_timeout(registry, clock):
    registry.grant(SessionGrant("s-1", "b-1", {"client-1": "client"}))
    a = connect("s-1", "client-1")
    await registry.register(a)
    await registry.deregister(a)

    clock.now += 7200
    assert await registry.reap_idle() == []

    clock.now += 1
    assert await registry.reap_idle() == ["s-1"]
    assert len(registry) == 0
    assert registry.grant_for("s-1") is None


async def test_occupied_rooms_are_never_reaped(registry, clock):
    await registry.register(connect("s-1", "client-1"))
    clock.now += 10 * 7200
    assert await registry.reap_idle() == []
    assert registry.state_of("s-1") is RoomState.ONE_JOINED


async def test_join_after_reap_opens_a_new_room(registry, clock):
    a = connect("s-1", "client-1")
    await registry.register(a)
    await registry.deregister(a)
    clock.now += 7201
    await registry.reap_idle()

    await registry.register(connect("s-1", "client-1"))
    assert registry.state_of("s-1") is RoomState.ONE_JOINED


def test_grants_are_revoked_not_forgotten(registry):
    registry.grant(SessionGrant("s-1", "b-1", {"client-1": "client", "provider-1": "provider"}))
    registry.revoke("s-1")

    grant = registry.grant_for("s-1")
    assert grant.active is False
    assert grant.role_of("provider-1") == "provider"

    registry.revoke("unknown")
    assert registry.grant_for("unknown") is None


async def test_revoked_grants_without_rooms_are_purged(registry):
    registry.grant(SessionGrant("s-9", "b-9", {"client-1": "client"}))
    registry.revoke("s-9")
    await registry.reap_idle()
    assert registry.grant_for("s-9") is None


async def test_writer_sends_in_order_and_survives_dead_socket():
    ok = SessionConnection("s-1", "client-1", "client", FakeChannel())
    writer = asyncio.create_task(ok.run_writer())
    for n in range(3):
        ok.deliver({"n": n})
    await ok.queue.join()
    assert ok.channel.sent == [{"n": 0}, {"n": 1}, {"n": 2}]
    writer.cancel()

    dead = SessionConnection("s-1", "provider-1", "provider", FakeChannel(fail=True))
    writer = asyncio.create_task(dead.run_writer())
    dead.deliver({"n": 0})
    await dead.queue.join()
    assert dead.closed
    assert dead.deliver({"n": 1}) is False
    writer.cancel()


async def test_peer_that_stops_reading_is_cut_off():
    slow = SessionConnection("s-1", "client-1", "client", FakeChannel(), maxsize=2)
    assert slow.deliver({"n": 0})
    assert slow.deliver({"n": 1})

    assert slow.deliver({"n": 2}) is False
    assert slow.closed
    assert slow.deliver({"n": 3}) is False

    writer = asyncio.create_task(slow.run_writer())
    await slow.queue.join()
    writer.cancel()
    assert slow.channel.close_code == 1008
    assert slow.channel.sent == []


async def test_slow_peer_does_not_block_fan_out(registry):
    sender = connect("s-1", "client-1")
    slow = SessionConnection("s-1", "provider-1", "provider", FakeChannel(), maxsize=1)
    await registry.register(slow)
    await registry.register(sender)

    assert await registry.fan_out("s-1", {"type": "offer"}, "client-1") == 0
    assert slow.closed


async def test_unused_grants_expire_with_the_idle_window(registry, clock):
    registry.grant(SessionGrant("s-old", "b-1", {"client-1": "client"}))
    clock.now += 3600
    registry.grant(SessionGrant("s-new", "b-2", {"client-1": "client"}))

    clock.now += 3601
    await registry.reap_idle()
    assert registry.grant_for("s-old") is None
    assert registry.grant_for("s-new") is not None


async def test_grants_with_live_rooms_outlast_the_idle_window(registry, clock):
    registry.grant(SessionGrant("s-1", "b-1", {"client-1": "client"}))
    await registry.register(connect("s-1", "client-1"))

    clock.now += 3 * 7200
    await registry.reap_idle()
    assert registry.grant_for("s-1") is not None
