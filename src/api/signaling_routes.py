"""WebSocket transport for the signaling relay.

Each socket gets a ``Connection``; inbound frames are parsed and handed to the
shared dispatcher, outbound frames are pumped from the connection's outbox.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from calls.errors import ValidationError
from signaling.dispatcher import SignalingDispatcher
from signaling.messages import parse_client_frame, server_event
from signaling.registry import Connection, ConnectionRegistry

LOGGER = logging.getLogger(__name__)

router = APIRouter(tags=["signaling"])


async def _pump_outbox(websocket: WebSocket, connection: Connection) -> None:
    while True:
        frame = await connection.outbox.get()
        try:
            await websocket.send_json(frame)
        except (WebSocketDisconnect, RuntimeError) as exc:
            LOGGER.debug("Stopped writing to %s: %s", connection.connection_id, exc)
            return


@router.websocket("/ws")
async def signaling_socket(websocket: WebSocket) -> None:
    registry: ConnectionRegistry = websocket.app.state.registry
    dispatcher: SignalingDispatcher = websocket.app.state.dispatcher

    await websocket.accept()
    connection = registry.attach(Connection())
    LOGGER.info("Client connected: %s", connection.connection_id)
    writer = asyncio.create_task(_pump_outbox(websocket, connection))

    try:
        while True:
            text = await websocket.receive_text()
            try:
                message = parse_client_frame(text)
            except ValidationError as exc:
                connection.deliver(server_event("error", detail=exc.detail))
                continue
            dispatcher.submit(connection.connection_id, message)
    except WebSocketDisconnect:
        LOGGER.info("Client disconnected: %s", connection.connection_id)
    finally:
        dispatcher.submit_disconnect(connection.connection_id)
        writer.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await writer
