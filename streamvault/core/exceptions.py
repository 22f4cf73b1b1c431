"""
StreamVault exception hierarchy.

All application-specific exceptions inherit from StreamVaultError,
enabling centralized error handling in the API middleware layer.
Recording-path errors are raised inside the session manager and only
ever logged; control-plane errors surface to HTTP callers.
"""

from datetime import UTC, datetime


class StreamVaultError(Exception):
    """Base exception for all StreamVault errors."""

    def __init__(
        self,
        detail: str = "An unexpected error occurred",
        code: str = "STREAMVAULT_ERROR",
        status_code: int = 500,
    ) -> None:
        self.detail = detail
        self.code = code
        self.status_code = status_code
        self.timestamp = datetime.now(UTC).isoformat()
        super().__init__(detail)


# ---------------------------------------------------------------------------
# Recording path
# ---------------------------------------------------------------------------


class CapabilityMismatchError(StreamVaultError):
    """Raised when a producer cannot be consumed under the router capabilities."""

    def __init__(self, producer_id: str) -> None:
        super().__init__(
            detail=f"Producer cannot be consumed: {producer_id}",
            code="CAPABILITY_MISMATCH",
            status_code=409,
        )


class RelayTransportError(StreamVaultError):
    """Raised when the relay transport or its consumer cannot be set up."""

    def __init__(self, detail: str = "Relay transport setup failed") -> None:
        super().__init__(detail=detail, code="RELAY_TRANSPORT_ERROR", status_code=500)


class DescriptorWriteError(StreamVaultError):
    """Raised when the session descriptor cannot be written to disk."""

    def __init__(self, path: str, reason: str = "") -> None:
        detail = f"Failed to write session descriptor {path}"
        if reason:
            detail = f"{detail}: {reason}"
        super().__init__(detail=detail, code="FILESYSTEM_ERROR", status_code=500)


class ProcessSpawnError(StreamVaultError):
    """Raised when the recorder or transcoder process fails to start."""

    def __init__(self, command: str, reason: str = "") -> None:
        detail = f"Failed to start {command}"
        if reason:
            detail = f"{detail}: {reason}"
        super().__init__(detail=detail, code="PROCESS_SPAWN_ERROR", status_code=500)


class PostConversionError(StreamVaultError):
    """Raised when the transcoder exits unsuccessfully."""

    def __init__(self, detail: str = "Post-conversion failed") -> None:
        super().__init__(detail=detail, code="POST_CONVERSION_ERROR", status_code=500)


# ---------------------------------------------------------------------------
# Control plane
# ---------------------------------------------------------------------------


class MediaRouterError(StreamVaultError):
    """Raised when the media router rejects a control-plane operation."""

    def __init__(self, detail: str = "Media router error") -> None:
        super().__init__(detail=detail, code="MEDIA_ROUTER_ERROR", status_code=500)


class TransportNotFoundError(StreamVaultError):
    """Raised when a transport ID does not exist."""

    def __init__(self, transport_id: str) -> None:
        super().__init__(
            detail=f"Transport not found: {transport_id}",
            code="TRANSPORT_NOT_FOUND",
            status_code=404,
        )


class ProducerNotFoundError(StreamVaultError):
    """Raised when a producer ID does not exist."""

    def __init__(self, producer_id: str) -> None:
        super().__init__(
            detail=f"Producer not found: {producer_id}",
            code="PRODUCER_NOT_FOUND",
            status_code=404,
        )


class UnsupportedMediaKindError(StreamVaultError):
    """Raised when a peer tries to produce anything but audio."""

    def __init__(self, kind: str) -> None:
        super().__init__(
            detail=f"Only audio is supported, got: {kind}",
            code="UNSUPPORTED_MEDIA_KIND",
            status_code=400,
        )
