from __future__ import annotations

import asyncio

import pytest

from calls.errors import ValidationError
from calls.state_machine import CallKind
from conftest import FakeResolver, drain
from signaling.messages import (
    IceCandidate,
    JoinCall,
    RegisterUser,
    ToggleAudio,
    WebrtcOffer,
    parse_client_frame,
)
from signaling.registry import Connection

ALICE = "@alice:example.org"
BOB = "@bob:example.org"
ROOM = "!room:example.org"


def test_parse_client_frame_accepts_camel_case():
    message = parse_client_frame(
        '{"type": "webrtc-offer", "callId": "c1", "offer": {"sdp": "v=0"}, "targetUserId": "bob", "x": 1}'
    )
    assert isinstance(message, WebrtcOffer)
    assert message.call_id == "c1"
    assert message.target_user_id == "bob"

    candidate = parse_client_frame({"type": "ice-candidate", "callId": "c1"})
    assert isinstance(candidate, IceCandidate)
    assert candidate.candidate is None
    assert candidate.target_user_id is None


@pytest.mark.parametrize(
    "raw",
    [
        '{"type": "launch-rocket"}',
        '{"type": "register-user"}',
        '{"type": "toggle-audio", "callId": "c1", "enabled": "yes"}',
        "not json",
    ],
)
def test_parse_client_frame_rejects_bad_frames(raw):
    with pytest.raises(ValidationError) as excinfo:
        parse_client_frame(raw)
    assert excinfo.value.status_code == 400
    assert excinfo.value.detail.startswith("Invalid signaling frame")


def test_register_is_acknowledged_with_device_count(make_stack):
    async def _run():
        stack = await make_stack()
        try:
            phone = stack.registry.attach(Connection())
            laptop = stack.registry.attach(Connection())
            stack.dispatcher.submit(phone.connection_id, RegisterUser(type="register-user", user_id=BOB))
            stack.dispatcher.submit(laptop.connection_id, RegisterUser(type="register-user", user_id=BOB))
            await stack.dispatcher.drain()

            assert drain(phone) == [{"type": "registered", "userId": BOB, "devices": 1}]
            assert drain(laptop) == [{"type": "registered", "userId": BOB, "devices": 2}]
        finally:
            await stack.close()

    asyncio.run(_run())


def test_relay_before_register_yields_error_frame(make_stack):
    async def _run():
        stack = await make_stack()
        try:
            connection = stack.registry.attach(Connection())
            stack.dispatcher.submit(
                connection.connection_id,
                WebrtcOffer(type="webrtc-offer", call_id="c1", offer={}),
            )
            await stack.dispatcher.drain()

            assert drain(connection) == [
                {
                    "type": "error",
                    "request": "webrtc-offer",
                    "detail": "register-user must be sent first",
                }
            ]
        finally:
            await stack.close()

    asyncio.run(_run())


def test_join_unknown_call_yields_error_frame(make_stack):
    async def _run():
        stack = await make_stack()
        try:
            connection = stack.registry.attach(Connection())
            stack.dispatcher.submit(
                connection.connection_id,
                JoinCall(type="join-call", call_id="missing", user_id=ALICE),
            )
            await stack.dispatcher.drain()

            frames = drain(connection)
            assert frames == [{"type": "error", "request": "join-call", "detail": "Call not found"}]
            # join-call registers the connection as a side effect.
            assert stack.registry.connections_for(ALICE) == {connection.connection_id}
        finally:
            await stack.close()

    asyncio.run(_run())


def test_loop_survives_handler_crash(make_stack, monkeypatch):
    async def _run():
        stack = await make_stack()
        try:
            async def _boom(*args, **kwargs):
                raise RuntimeError("boom")

            monkeypatch.setattr(stack.relay, "join_call_room", _boom)
            connection = stack.registry.attach(Connection())
            stack.dispatcher.submit(
                connection.connection_id, JoinCall(type="join-call", call_id="c1", user_id=ALICE)
            )
            stack.dispatcher.submit(
                connection.connection_id, RegisterUser(type="register-user", user_id=ALICE)
            )
            await stack.dispatcher.drain()

            frames = drain(connection)
            assert frames[0] == {"type": "error", "request": "join-call", "detail": "Internal error"}
            assert frames[1]["type"] == "registered"
        finally:
            await stack.close()

    asyncio.run(_run())


def test_messages_are_applied_in_arrival_order(make_stack):
    async def _run():
        stack = await make_stack()
        try:
            call = await stack.repository.create_session(
                room_id=ROOM, call_kind=CallKind.VIDEO, initiator_id=ALICE
            )
            await stack.repository.answer(call.call_id, BOB)
            alice = stack.registry.attach(Connection())
            bob = stack.registry.attach(Connection())

            stack.dispatcher.submit(
                alice.connection_id, JoinCall(type="join-call", call_id=call.call_id, user_id=ALICE)
            )
            stack.dispatcher.submit(
                bob.connection_id, JoinCall(type="join-call", call_id=call.call_id, user_id=BOB)
            )
            stack.dispatcher.submit(
                bob.connection_id,
                ToggleAudio(type="toggle-audio", call_id=call.call_id, enabled=False),
            )
            stack.dispatcher.submit_disconnect(bob.connection_id)
            await stack.dispatcher.drain()

            assert drain(alice) == [
                {"type": "user-joined", "userId": BOB},
                {"type": "audio-toggled", "userId": BOB, "enabled": False},
                {"type": "user-left", "userId": BOB},
            ]
            assert drain(bob) == []
        finally:
            await stack.close()

    asyncio.run(_run())


def test_join_call_first_replays_queued_ring(make_stack):
    async def _run():
        carol_id = "@carol:example.org"
        resolver = FakeResolver(members={ROOM: [ALICE, carol_id]})
        stack = await make_stack(resolver)
        try:
            call = await stack.controller.initiate(ROOM, "video", ALICE, "token")
            assert len(stack.registry.pending_for(carol_id)) == 1

            carol = stack.registry.attach(Connection())
            stack.dispatcher.submit(
                carol.connection_id,
                JoinCall(type="join-call", call_id=call.call_id, user_id=carol_id),
            )
            await stack.dispatcher.drain()

            frames = drain(carol)
            assert [frame["type"] for frame in frames] == ["incoming-call"]
            assert frames[0]["callId"] == call.call_id
            assert stack.registry.pending_for(carol_id) == []
            assert stack.registry.room_members(call.call_id) == {carol_id}
        finally:
            await stack.close()

    asyncio.run(_run())
