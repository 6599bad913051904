from __future__ import annotations

import asyncio

import pytest

from calls.errors import NotFoundError
from calls.state_machine import CallKind, ParticipantStatus
from conftest import drain
from signaling.registry import Connection

ALICE = "@alice:example.org"
BOB = "@bob:example.org"
CAROL = "@carol:example.org"
ROOM = "!room:example.org"


def _online(registry, user_id: str) -> Connection:
    connection = registry.attach(Connection())
    registry.register(user_id, connection.connection_id)
    return connection


async def _active_call(stack) -> str:
    call = await stack.repository.create_session(
        room_id=ROOM, call_kind=CallKind.VIDEO, initiator_id=ALICE
    )
    await stack.repository.answer(call.call_id, BOB)
    return call.call_id


def test_offer_reaches_every_device_of_target(make_stack):
    async def _run():
        stack = await make_stack()
        try:
            call_id = await _active_call(stack)
            alice = _online(stack.registry, ALICE)
            bob_phone = _online(stack.registry, BOB)
            bob_laptop = _online(stack.registry, BOB)

            offer = {"type": "offer", "sdp": "v=0"}
            delivered = await stack.relay.relay("offer", call_id, ALICE, BOB, {"offer": offer})

            assert delivered == 2
            expected = {
                "type": "webrtc-offer",
                "callId": call_id,
                "targetUserId": BOB,
                "fromUserId": ALICE,
                "offer": offer,
            }
            assert drain(bob_phone) == [expected]
            assert drain(bob_laptop) == [expected]
            assert drain(alice) == []

            events = await stack.repository.list_events(call_id)
            assert events[-1].event_type == "offer_sent"
            assert events[-1].event_metadata == {"targetUserId": BOB}
        finally:
            await stack.close()

    asyncio.run(_run())


def test_candidate_without_target_fans_out_to_room(make_stack):
    async def _run():
        stack = await make_stack()
        try:
            call_id = await _active_call(stack)
            alice = _online(stack.registry, ALICE)
            bob = _online(stack.registry, BOB)
            carol = _online(stack.registry, CAROL)
            for user_id, connection in ((ALICE, alice), (BOB, bob), (CAROL, carol)):
                stack.registry.join_room(call_id, user_id, connection.connection_id)
            before = len(await stack.repository.list_events(call_id))

            delivered = await stack.relay.relay(
                "ice_candidate", call_id, ALICE, None, {"candidate": {"candidate": "a=1"}}
            )

            assert delivered == 2
            assert drain(alice) == []
            assert drain(bob)[0]["type"] == "ice-candidate"
            assert drain(carol)[0]["fromUserId"] == ALICE
            # Candidates are not audited.
            assert len(await stack.repository.list_events(call_id)) == before
        finally:
            await stack.close()

    asyncio.run(_run())


def test_relay_to_offline_target_is_silent(make_stack):
    async def _run():
        stack = await make_stack()
        try:
            call_id = await _active_call(stack)
            alice = _online(stack.registry, ALICE)
            assert await stack.relay.relay("answer", call_id, ALICE, BOB, {"answer": {}}) == 0
            assert drain(alice) == []
        finally:
            await stack.close()

    asyncio.run(_run())


def test_join_call_room_announces_user(make_stack):
    async def _run():
        stack = await make_stack()
        try:
            call_id = await _active_call(stack)
            alice = _online(stack.registry, ALICE)
            bob = _online(stack.registry, BOB)

            await stack.relay.join_call_room(call_id, ALICE, alice.connection_id)
            await stack.relay.join_call_room(call_id, BOB, bob.connection_id)

            assert drain(alice) == [{"type": "user-joined", "userId": BOB}]
            assert drain(bob) == []
            assert stack.registry.room_members(call_id) == {ALICE, BOB}
            events = [e.event_type for e in await stack.repository.list_events(call_id)]
            assert events.count("socket_connected") == 2

            with pytest.raises(NotFoundError):
                await stack.relay.join_call_room("missing", ALICE, alice.connection_id)
            assert stack.registry.room_members("missing") == set()
        finally:
            await stack.close()

    asyncio.run(_run())


def test_leave_call_room_marks_participant_left(make_stack):
    async def _run():
        stack = await make_stack()
        try:
            call_id = await _active_call(stack)
            alice = _online(stack.registry, ALICE)
            bob = _online(stack.registry, BOB)
            await stack.relay.join_call_room(call_id, ALICE, alice.connection_id)
            await stack.relay.join_call_room(call_id, BOB, bob.connection_id)
            drain(alice)

            await stack.relay.leave_call_room(call_id, BOB)

            assert drain(alice) == [{"type": "user-left", "userId": BOB}]
            stored = await stack.repository.get_session(call_id)
            statuses = {p.user_id: p.status for p in stored.participants}
            assert statuses[BOB] is ParticipantStatus.LEFT
            events = [e.event_type for e in await stack.repository.list_events(call_id)]
            assert events[-1] == "user_left"
        finally:
            await stack.close()

    asyncio.run(_run())


def test_disconnect_leaves_rooms_only_after_last_device(make_stack):
    async def _run():
        stack = await make_stack()
        try:
            call_id = await _active_call(stack)
            alice = _online(stack.registry, ALICE)
            bob_phone = _online(stack.registry, BOB)
            bob_laptop = _online(stack.registry, BOB)
            await stack.relay.join_call_room(call_id, ALICE, alice.connection_id)
            await stack.relay.join_call_room(call_id, BOB, bob_phone.connection_id)
            drain(alice)

            await stack.relay.on_disconnect(bob_phone.connection_id)
            assert drain(alice) == []
            assert BOB in stack.registry.room_members(call_id)

            await stack.relay.on_disconnect(bob_laptop.connection_id)
            assert drain(alice) == [{"type": "user-left", "userId": BOB}]
            assert stack.registry.room_members(call_id) == {ALICE}

            stored = await stack.repository.get_session(call_id)
            statuses = {p.user_id: p.status for p in stored.participants}
            assert statuses[BOB] is ParticipantStatus.LEFT
            assert statuses[ALICE] is ParticipantStatus.JOINED
        finally:
            await stack.close()

    asyncio.run(_run())


def test_disconnect_of_unregistered_connection_is_ignored(make_stack):
    async def _run():
        stack = await make_stack()
        try:
            anonymous = stack.registry.attach(Connection())
            await stack.relay.on_disconnect(anonymous.connection_id)
            await stack.relay.on_disconnect("never-attached")
            assert anonymous.closed
        finally:
            await stack.close()

    asyncio.run(_run())


def test_call_ended_reaches_each_other_connection_once(make_stack):
    async def _run():
        stack = await make_stack()
        try:
            call_id = await _active_call(stack)
            alice = _online(stack.registry, ALICE)
            bob_phone = _online(stack.registry, BOB)
            bob_laptop = _online(stack.registry, BOB)
            stack.registry.join_room(call_id, ALICE, alice.connection_id)
            stack.registry.join_room(call_id, BOB, bob_phone.connection_id)
            stack.registry.enqueue_pending(CAROL, call_id, {"type": "incoming-call"})

            delivered = stack.relay.notify_call_ended(call_id, ALICE, extra_recipients=[BOB])

            expected = {"type": "call-ended", "callId": call_id, "endedBy": ALICE}
            assert delivered == 2
            assert drain(alice) == []
            assert drain(bob_phone) == [expected]
            assert drain(bob_laptop) == [expected]
            assert stack.registry.room_members(call_id) == set()
            assert stack.registry.pending_for(CAROL) == []
        finally:
            await stack.close()

    asyncio.run(_run())
