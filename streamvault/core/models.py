"""
Pydantic v2 models shared by the API layer and the media/recording services.

RTP parameter models accept the camelCase field names browser clients send
(``mimeType``, ``payloadType`` ...) and serialize back to them.
"""

from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _CamelModel(BaseModel):
    """Base for models exchanged with browser clients in camelCase."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------


class HealthResponse(BaseModel):
    """GET /health response."""

    status: str = "ok"
    version: str = "0.1.0"
    timestamp: datetime


# ---------------------------------------------------------------------------
# RTP parameters
# ---------------------------------------------------------------------------


class MediaKind(StrEnum):
    """Media kinds a producer may declare. Only audio is recorded."""

    audio = "audio"
    video = "video"


class RtpCodecCapability(_CamelModel):
    """A codec the router is able to route."""

    kind: MediaKind = MediaKind.audio
    mime_type: str
    clock_rate: int
    channels: int = 1
    preferred_payload_type: int | None = None
    parameters: dict[str, Any] = Field(default_factory=dict)


class RtpCapabilities(_CamelModel):
    """Router-level capability set."""

    codecs: list[RtpCodecCapability] = Field(default_factory=list)


class RtpCodecParameters(_CamelModel):
    """A negotiated codec inside a producer's or consumer's RTP parameters."""

    mime_type: str
    payload_type: int
    clock_rate: int
    channels: int = 1
    parameters: dict[str, Any] = Field(default_factory=dict)

    @property
    def codec_name(self) -> str:
        """Codec name without the media-kind prefix ("audio/opus" -> "opus")."""
        return self.mime_type.split("/", 1)[-1]


class RtpEncodingParameters(_CamelModel):
    """A single RTP stream (synchronization source) of a producer/consumer."""

    ssrc: int


class RtpParameters(_CamelModel):
    """Codec and encoding parameters of an RTP stream."""

    codecs: list[RtpCodecParameters] = Field(min_length=1)
    encodings: list[RtpEncodingParameters] = Field(min_length=1)


# ---------------------------------------------------------------------------
# Control plane
# ---------------------------------------------------------------------------


class CreateTransportRequest(_CamelModel):
    """POST /create-transport request body."""

    peer_id: str | None = None


class TransportResponse(_CamelModel):
    """Connection parameters returned to a peer for a new transport."""

    id: str
    peer_id: str
    ip: str
    port: int


class ConnectTransportRequest(_CamelModel):
    """POST /connect-transport request body."""

    transport_id: str
    parameters: dict[str, Any] = Field(default_factory=dict)


class ConnectTransportResponse(BaseModel):
    """POST /connect-transport response."""

    connected: bool = True


class ProduceRequest(_CamelModel):
    """POST /produce request body."""

    transport_id: str
    kind: str
    rtp_parameters: RtpParameters
    peer_id: str | None = None


class ProduceResponse(BaseModel):
    """POST /produce response."""

    id: str


class ProducerInfo(_CamelModel):
    """One entry of GET /producers."""

    id: str
    peer_id: str | None = None
    kind: str
    paused: bool = False
    recording_file: str | None = None


class StopRecordingRequest(_CamelModel):
    """POST /stop-recording request body."""

    producer_id: str = Field(min_length=1)


class StopRecordingResponse(BaseModel):
    """POST /stop-recording response."""

    ok: bool = True


# ---------------------------------------------------------------------------
# Recording sessions
# ---------------------------------------------------------------------------


class SessionState(StrEnum):
    """Lifecycle states of a recording session."""

    created = "created"
    relay_ready = "relay_ready"
    descriptor_written = "descriptor_written"
    process_started = "process_started"
    streaming = "streaming"
    stopping = "stopping"
    post_processing = "post_processing"
    closed = "closed"
    failed = "failed"


class SessionInfo(_CamelModel):
    """Read-only snapshot of an active recording session."""

    producer_id: str
    peer_id: str | None = None
    state: SessionState
    output_path: str | None = None
    derived_path: str | None = None
