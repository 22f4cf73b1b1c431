"""
Dependency injection for the StreamVault API.

The media router and the recording manager live on ``app.state``; they are
created by the application lifespan, or injected directly by tests.
"""

from typing import Annotated

from fastapi import Depends, Request

from streamvault.core.exceptions import StreamVaultError
from streamvault.services.media.base import BaseMediaRouter
from streamvault.services.recording.manager import RecordingSessionManager


def get_media_router(request: Request) -> BaseMediaRouter:
    """Return the application's media router.

    Raises:
        StreamVaultError: If the router has not been started yet (503).
    """
    router = getattr(request.app.state, "media_router", None)
    if router is None:
        raise StreamVaultError(
            detail="Media router not initialized",
            code="SERVICE_UNAVAILABLE",
            status_code=503,
        )
    return router


def get_recording_manager(request: Request) -> RecordingSessionManager:
    """Return the application's recording session manager."""
    manager = getattr(request.app.state, "recording_manager", None)
    if manager is None:
        raise StreamVaultError(
            detail="Recording manager not initialized",
            code="SERVICE_UNAVAILABLE",
            status_code=503,
        )
    return manager


MediaRouterDep = Annotated[BaseMediaRouter, Depends(get_media_router)]
RecordingManagerDep = Annotated[RecordingSessionManager, Depends(get_recording_manager)]
