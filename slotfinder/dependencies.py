"""Dependency injection for FastAPI endpoints.

The shared state and settings are attached to ``app.state`` by
``create_app``; controllers receive them through these dependencies instead
of importing module globals.

Usage in controllers:
    from slotfinder.dependencies import Shared

    @router.get("/example")
    async def example(shared: Shared):
        async with shared.session() as adaptor:
            ...
"""

from typing import Annotated

from fastapi import Depends, Request

from slotfinder.config import Settings
from slotfinder.errors import ServiceUnavailableError
from slotfinder.state import SharedState


def get_shared_state(request: Request) -> SharedState:
    """Get the shared service state.

    Raises:
        ServiceUnavailableError: If the app was built without storage.
    """
    shared = getattr(request.app.state, "shared", None)
    if shared is None:
        raise ServiceUnavailableError(detail="Storage not initialized")
    return shared


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


Shared = Annotated[SharedState, Depends(get_shared_state)]
AppSettings = Annotated[Settings, Depends(get_app_settings)]
