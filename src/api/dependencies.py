"""Shared FastAPI dependencies.

Separated to avoid circular imports between route modules.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import Request

if TYPE_CHECKING:  # pragma: no cover
    from calls.controller import CallLifecycleController


def get_controller(request: Request) -> CallLifecycleController:
    return request.app.state.controller
