from __future__ import annotations

from typing import Any

from config.settings import Settings, get_settings


def build_ice_servers(settings: Settings | None = None) -> list[dict[str, Any]]:
    """Public STUN servers followed by any configured TURN relays."""

    settings = settings or get_settings()
    servers: list[dict[str, Any]] = [{"urls": url} for url in settings.stun_urls]
    if settings.turn_urls:
        turn: dict[str, Any] = {"urls": list(settings.turn_urls)}
        if settings.turn_username:
            turn["username"] = settings.turn_username
        if settings.turn_credential:
            turn["credential"] = settings.turn_credential
        servers.append(turn)
    return servers
