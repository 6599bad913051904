"""Single consumer loop that applies inbound signaling messages in arrival order."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import TYPE_CHECKING

from calls.errors import CallError, ValidationError
from calls.state_machine import MediaKind
from signaling.messages import (
    Disconnect,
    IceCandidate,
    InboundMessage,
    JoinCall,
    LeaveCall,
    RegisterUser,
    ToggleAudio,
    ToggleVideo,
    WebrtcAnswer,
    WebrtcOffer,
    server_event,
)
from signaling.registry import ConnectionRegistry
from signaling.relay import SignalingRelay

if TYPE_CHECKING:  # pragma: no cover
    from calls.controller import CallLifecycleController

LOGGER = logging.getLogger(__name__)


class SignalingDispatcher:
    """Owns the inbound queue; one task processes every connection's messages."""

    def __init__(
        self,
        registry: ConnectionRegistry,
        relay: SignalingRelay,
        controller: CallLifecycleController,
    ) -> None:
        self._registry = registry
        self._relay = relay
        self._controller = controller
        self._queue: asyncio.Queue[tuple[str, InboundMessage]] = asyncio.Queue()
        self._task: asyncio.Task | None = None

    async def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._run(), name="signaling-dispatcher")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None

    def submit(self, connection_id: str, message: InboundMessage) -> None:
        self._queue.put_nowait((connection_id, message))

    def submit_disconnect(self, connection_id: str) -> None:
        self.submit(connection_id, Disconnect())

    async def drain(self) -> None:
        """Wait until everything submitted so far has been handled."""

        await self._queue.join()

    async def _run(self) -> None:
        while True:
            connection_id, message = await self._queue.get()
            try:
                await self.handle(connection_id, message)
            except Exception:
                LOGGER.exception("Signaling handler for %s crashed", message.type)
                self._registry.deliver(
                    connection_id, server_event("error", request=message.type, detail="Internal error")
                )
            finally:
                self._queue.task_done()

    async def handle(self, connection_id: str, message: InboundMessage) -> None:
        try:
            await self._dispatch(connection_id, message)
        except CallError as exc:
            LOGGER.warning("%s from %s failed: %s", message.type, connection_id, exc.detail)
            self._registry.deliver(
                connection_id, server_event("error", request=message.type, detail=exc.detail)
            )

    def _sender(self, connection_id: str) -> str:
        connection = self._registry.connection(connection_id)
        if connection is None or connection.user_id is None:
            raise ValidationError("register-user must be sent first")
        return connection.user_id

    async def _register(
        self, user_id: str, connection_id: str, *, acknowledge: bool = False
    ) -> None:
        """Bind the connection to the user; the first device gets queued rings replayed."""

        first = self._registry.register(user_id, connection_id)
        if acknowledge:
            self._registry.deliver(
                connection_id,
                server_event(
                    "registered",
                    userId=user_id,
                    devices=len(self._registry.connections_for(user_id)),
                ),
            )
        if first:
            await self._relay.on_register(user_id)

    async def _dispatch(self, connection_id: str, message: InboundMessage) -> None:
        if isinstance(message, Disconnect):
            await self._relay.on_disconnect(connection_id)
        elif isinstance(message, RegisterUser):
            await self._register(message.user_id, connection_id, acknowledge=True)
        elif isinstance(message, JoinCall):
            connection = self._registry.connection(connection_id)
            if connection is None or connection.user_id != message.user_id:
                await self._register(message.user_id, connection_id)
            await self._relay.join_call_room(message.call_id, message.user_id, connection_id)
        elif isinstance(message, WebrtcOffer):
            await self._relay.relay(
                "offer",
                message.call_id,
                self._sender(connection_id),
                message.target_user_id,
                {"offer": message.offer},
            )
        elif isinstance(message, WebrtcAnswer):
            await self._relay.relay(
                "answer",
                message.call_id,
                self._sender(connection_id),
                message.target_user_id,
                {"answer": message.answer},
            )
        elif isinstance(message, IceCandidate):
            await self._relay.relay(
                "ice_candidate",
                message.call_id,
                self._sender(connection_id),
                message.target_user_id,
                {"candidate": message.candidate},
            )
        elif isinstance(message, (ToggleAudio, ToggleVideo)):
            kind = MediaKind.AUDIO if isinstance(message, ToggleAudio) else MediaKind.VIDEO
            await self._controller.toggle_media(
                message.call_id, self._sender(connection_id), kind, message.enabled
            )
        elif isinstance(message, LeaveCall):
            await self._relay.leave_call_room(message.call_id, self._sender(connection_id))
        else:  # pragma: no cover
            raise ValidationError(f"Unsupported message type: {message.type}")
