"""Entry point for the call signaling service."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from api.routes import router as api_router
from api.signaling_routes import router as signaling_router
from calls.controller import CallLifecycleController
from calls.errors import CallError
from calls.ice import build_ice_servers
from config.settings import get_settings
from db.base import build_engine, build_session_factory, init_db
from db.repository import CallRepository
from integrations.base import BaseRoomResolver
from integrations.matrix_client import MatrixRoomResolver
from signaling.dispatcher import SignalingDispatcher
from signaling.registry import ConnectionRegistry
from signaling.relay import SignalingRelay

settings = get_settings()

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)


def create_app(
    *,
    resolver: BaseRoomResolver | None = None,
    database_url: str | None = None,
) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        engine = build_engine(database_url)
        await init_db(engine)

        repository = CallRepository(build_session_factory(engine))
        registry = ConnectionRegistry(
            pending_ttl_seconds=settings.pending_notification_ttl_seconds
        )
        room_resolver = resolver or MatrixRoomResolver()
        relay = SignalingRelay(
            registry, repository, room_resolver, ice_servers=build_ice_servers(settings)
        )
        controller = CallLifecycleController(
            repository, relay, room_resolver, settings=settings
        )
        dispatcher = SignalingDispatcher(registry, relay, controller)
        await dispatcher.start()

        app.state.repository = repository
        app.state.registry = registry
        app.state.relay = relay
        app.state.controller = controller
        app.state.dispatcher = dispatcher
        try:
            yield
        finally:
            await dispatcher.stop()
            registry.close()
            await engine.dispose()

    app = FastAPI(
        title="Call Signaling Service",
        description="Voice/video call lifecycle and WebRTC signaling relay for chat rooms.",
        lifespan=lifespan,
    )

    @app.exception_handler(CallError)
    async def call_error_handler(request: Request, exc: CallError) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})

    app.include_router(api_router, prefix="/api")
    app.include_router(signaling_router, prefix="/api")
    return app


app = create_app()
