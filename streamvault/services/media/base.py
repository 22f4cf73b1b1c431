"""
Abstract interfaces of the Media Routing Service.

The recording subsystem only talks to these classes, so any router
(the bundled plain-RTP router, or a bridge to an external SFU) can
be plugged in via ``create_media_router()``.
"""

import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Any

from streamvault.core.models import RtpCapabilities, RtpParameters

logger = logging.getLogger(__name__)

# Producer close events
TRANSPORT_CLOSE = "transportclose"
PRODUCER_CLOSE = "producerclose"


class BaseProducer(ABC):
    """An inbound media stream owned by the router.

    Close listeners are registered with ``on(event, callback)`` and are
    invoked synchronously, once, when the producer or its transport closes.
    """

    def __init__(
        self,
        producer_id: str,
        kind: str,
        rtp_parameters: RtpParameters,
        app_data: dict[str, Any] | None = None,
    ) -> None:
        self.id = producer_id
        self.kind = kind
        self.rtp_parameters = rtp_parameters
        self.app_data = app_data or {}
        self.paused = False
        self.closed = False
        self._listeners: dict[str, list[Callable[[], None]]] = {}

    @property
    def peer_id(self) -> str | None:
        return self.app_data.get("peerId")

    def on(self, event: str, callback: Callable[[], None]) -> None:
        """Register a callback for ``transportclose`` or ``producerclose``."""
        self._listeners.setdefault(event, []).append(callback)

    def emit(self, event: str) -> None:
        for callback in list(self._listeners.get(event, [])):
            try:
                callback()
            except Exception:
                logger.exception("Listener for %s on producer %s failed", event, self.id)


class BaseConsumer(ABC):
    """Delivery of one producer's media through a relay transport."""

    id: str
    producer_id: str
    rtp_parameters: RtpParameters
    paused: bool
    closed: bool

    @abstractmethod
    async def resume(self) -> None:
        """Start (or restart) forwarding packets."""

    @abstractmethod
    async def pause(self) -> None:
        """Stop forwarding packets without releasing the consumer."""

    @abstractmethod
    def close(self) -> None:
        """Release the consumer. Idempotent."""


class BaseRelayTransport(ABC):
    """A local endpoint that forwards RTP to a plain UDP destination."""

    id: str
    closed: bool

    @abstractmethod
    async def connect(self, ip: str, port: int) -> None:
        """Point the transport at the UDP destination ``ip:port``."""

    @abstractmethod
    async def consume(
        self,
        producer_id: str,
        rtp_capabilities: RtpCapabilities,
        paused: bool = False,
    ) -> BaseConsumer:
        """Create a consumer of ``producer_id`` on this transport."""

    @abstractmethod
    def close(self) -> None:
        """Release the transport and every consumer on it. Idempotent."""


class BaseMediaRouter(ABC):
    """Interface that every media router provider must implement."""

    @property
    @abstractmethod
    def rtp_capabilities(self) -> RtpCapabilities:
        """Codecs this router can route."""

    @abstractmethod
    async def start(self) -> None:
        """Open network listeners."""

    @abstractmethod
    async def close(self) -> None:
        """Close every transport and network listener."""

    @abstractmethod
    async def create_transport(self, peer_id: str) -> dict[str, Any]:
        """Create a transport for a peer.

        Returns:
            Connection parameters with at least ``id``, ``ip`` and ``port``.
        """

    @abstractmethod
    async def connect_transport(self, transport_id: str, parameters: dict[str, Any]) -> None:
        """Complete a peer transport with the peer's connection parameters.

        Raises:
            TransportNotFoundError: If ``transport_id`` is unknown.
        """

    @abstractmethod
    def close_transport(self, transport_id: str) -> None:
        """Close a peer transport; its producers emit ``transportclose``.

        Raises:
            TransportNotFoundError: If ``transport_id`` is unknown.
        """

    @abstractmethod
    async def produce(
        self,
        transport_id: str,
        kind: str,
        rtp_parameters: RtpParameters,
        app_data: dict[str, Any] | None = None,
    ) -> BaseProducer:
        """Create a producer for media the peer sends on ``transport_id``."""

    @abstractmethod
    def close_producer(self, producer_id: str) -> None:
        """Close a producer; it emits ``producerclose``.

        Raises:
            ProducerNotFoundError: If ``producer_id`` is unknown.
        """

    @abstractmethod
    def get_producer(self, producer_id: str) -> BaseProducer | None:
        """Look up a live producer."""

    @abstractmethod
    def list_producers(self) -> list[BaseProducer]:
        """All live producers."""

    @abstractmethod
    def can_consume(self, producer_id: str, rtp_capabilities: RtpCapabilities) -> bool:
        """Whether ``producer_id`` can be consumed under ``rtp_capabilities``."""

    @abstractmethod
    async def create_relay_transport(self, listen_ip: str) -> BaseRelayTransport:
        """Create a relay transport bound on ``listen_ip``."""
