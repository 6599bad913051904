from __future__ import annotations

import os
import sys
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import pytest
from fastapi.testclient import TestClient

REPO_ROOT = Path(__file__).resolve().parents[1]
SRC_PATH = REPO_ROOT / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

# Settings are cached on first import; keep the data dir out of the repo.
os.environ.setdefault("DATA_DIR", str(Path(tempfile.gettempdir()) / "call-signaling-tests"))

from calls.errors import UpstreamProtocolError  # noqa: E402
from integrations.base import BaseRoomResolver  # noqa: E402


class FakeResolver(BaseRoomResolver):
    """In-memory stand-in for the chat homeserver."""

    def __init__(
        self,
        members: dict[str, list[str]] | None = None,
        names: dict[str, str] | None = None,
    ) -> None:
        self.members = members or {}
        self.names = names or {}
        self.sent_events: list[tuple[str, str, dict[str, Any]]] = []
        self.fail_members = False
        self.fail_profiles = False
        self.fail_send = False

    async def joined_members(self, room_id: str, credential: str) -> list[str]:
        if self.fail_members:
            raise UpstreamProtocolError("homeserver unavailable")
        return list(self.members.get(room_id, []))

    async def display_name(self, user_id: str, credential: str) -> str | None:
        if self.fail_profiles:
            raise UpstreamProtocolError("profile lookup failed")
        return self.names.get(user_id)

    async def send_room_event(
        self, room_id: str, credential: str, event_type: str, content: dict[str, Any]
    ) -> None:
        if self.fail_send:
            raise UpstreamProtocolError("send failed")
        self.sent_events.append((room_id, event_type, content))


@dataclass
class Stack:
    engine: Any
    repository: Any
    registry: Any
    relay: Any
    controller: Any
    dispatcher: Any
    resolver: FakeResolver

    async def close(self) -> None:
        await self.dispatcher.stop()
        self.registry.close()
        await self.engine.dispose()


def drain(connection) -> list[dict[str, Any]]:
    """Pop every frame currently waiting in a connection's outbox."""

    frames = []
    while not connection.outbox.empty():
        frames.append(connection.outbox.get_nowait())
    return frames


@pytest.fixture()
def database_url(tmp_path: Path) -> str:
    return f"sqlite+aiosqlite:///{(tmp_path / 'calls_test.db').as_posix()}"


@pytest.fixture()
def test_settings(tmp_path: Path):
    from config.settings import Settings

    return Settings(data_dir=tmp_path, turn_urls=[], chat_events_enabled=True)


@pytest.fixture()
def make_stack(database_url: str, test_settings):
    """Return a coroutine function that wires the full service against a temp SQLite file.

    Must be awaited inside the same ``asyncio.run`` as the test body.
    """

    async def _build(resolver: FakeResolver | None = None, *, clock=None) -> Stack:
        from calls.controller import CallLifecycleController
        from calls.ice import build_ice_servers
        from db.base import build_engine, build_session_factory, init_db
        from db.repository import CallRepository
        from signaling.dispatcher import SignalingDispatcher
        from signaling.registry import ConnectionRegistry
        from signaling.relay import SignalingRelay

        resolver = resolver or FakeResolver()
        engine = build_engine(database_url)
        await init_db(engine, create_schema=True)
        repository = CallRepository(build_session_factory(engine))
        registry_kwargs: dict[str, Any] = {"pending_ttl_seconds": 90}
        if clock is not None:
            registry_kwargs["clock"] = clock
        registry = ConnectionRegistry(**registry_kwargs)
        relay = SignalingRelay(
            registry, repository, resolver, ice_servers=build_ice_servers(test_settings)
        )
        controller = CallLifecycleController(
            repository, relay, resolver, settings=test_settings
        )
        dispatcher = SignalingDispatcher(registry, relay, controller)
        await dispatcher.start()
        return Stack(engine, repository, registry, relay, controller, dispatcher, resolver)

    return _build


@pytest.fixture()
def resolver() -> FakeResolver:
    return FakeResolver(
        members={"!room:example.org": ["@alice:example.org", "@bob:example.org"]},
        names={"@alice:example.org": "Alice"},
    )


@pytest.fixture()
def app(database_url: str, resolver: FakeResolver):
    from main import create_app

    return create_app(resolver=resolver, database_url=database_url)


@pytest.fixture()
def client(app):
    with TestClient(app) as test_client:
        yield test_client
