"""
Media control-plane endpoints.

Browser peers query capabilities, create and connect a transport, then
produce an audio stream on it. Every new producer is recorded
automatically. All media work is delegated to the configured router.
"""

import logging
import uuid

from fastapi import APIRouter

from streamvault.api.dependencies import MediaRouterDep, RecordingManagerDep
from streamvault.core.exceptions import UnsupportedMediaKindError
from streamvault.core.models import (
    ConnectTransportRequest,
    ConnectTransportResponse,
    CreateTransportRequest,
    MediaKind,
    ProduceRequest,
    ProduceResponse,
    ProducerInfo,
    RtpCapabilities,
    TransportResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["media"])


@router.get("/rtp-capabilities", response_model=RtpCapabilities)
async def get_rtp_capabilities(media_router: MediaRouterDep):
    """Codecs the router can route."""
    return media_router.rtp_capabilities


@router.post("/create-transport", response_model=TransportResponse)
async def create_transport(media_router: MediaRouterDep, body: CreateTransportRequest | None = None):
    """Create a transport for a peer; a peer ID is generated when none is given."""
    peer_id = (body.peer_id if body else None) or str(uuid.uuid4())
    params = await media_router.create_transport(peer_id)
    logger.info("[transport] id=%s peer=%s", params["id"], peer_id)
    return TransportResponse(id=params["id"], peer_id=peer_id, ip=params["ip"], port=params["port"])


@router.post("/connect-transport", response_model=ConnectTransportResponse)
async def connect_transport(body: ConnectTransportRequest, media_router: MediaRouterDep):
    """Complete a transport with the peer's connection parameters."""
    await media_router.connect_transport(body.transport_id, body.parameters)
    return ConnectTransportResponse(connected=True)


@router.delete("/transports/{transport_id}")
async def close_transport(transport_id: str, media_router: MediaRouterDep):
    """Close a peer transport; recordings of its producers are stopped."""
    media_router.close_transport(transport_id)
    return {"closed": True}


@router.post("/produce", response_model=ProduceResponse)
async def produce(
    body: ProduceRequest,
    media_router: MediaRouterDep,
    manager: RecordingManagerDep,
):
    """Create an audio producer and start recording it in the background."""
    if body.kind != MediaKind.audio:
        raise UnsupportedMediaKindError(body.kind)

    producer = await media_router.produce(
        body.transport_id,
        body.kind,
        body.rtp_parameters,
        app_data={"peerId": body.peer_id},
    )
    manager.start_session_in_background(producer)

    logger.info("[producer] id=%s peer=%s kind=%s", producer.id, body.peer_id, body.kind)
    return ProduceResponse(id=producer.id)


@router.get("/producers", response_model=list[ProducerInfo])
async def list_producers(media_router: MediaRouterDep, manager: RecordingManagerDep):
    """Live producers with the file they are being recorded to."""
    return [
        ProducerInfo(
            id=p.id,
            peer_id=p.peer_id,
            kind=p.kind,
            paused=p.paused,
            recording_file=manager.recording_file(p.id),
        )
        for p in media_router.list_producers()
    ]


@router.delete("/producers/{producer_id}")
async def close_producer(producer_id: str, media_router: MediaRouterDep):
    """Close a producer; its recording is stopped and finalized."""
    media_router.close_producer(producer_id)
    logger.info("[producer] id=%s closed by request", producer_id)
    return {"closed": True}
