"""
Plain-RTP media router.

Peers send unencrypted RTP to a single ingress UDP port; packets are
demultiplexed by SSRC to producers. Relay transports forward a copy of a
producer's packets to a local UDP destination, rewriting payload type and
SSRC to the consumer's negotiated values, for as long as the consumer is
not paused.

ICE/DTLS/SRTP negotiation is not performed here: this router is meant for
trusted networks and for local pipelines that already terminate WebRTC.
"""

import asyncio
import logging
import random
import struct
import time
import uuid
from dataclasses import dataclass
from typing import Any

from streamvault.core.exceptions import (
    MediaRouterError,
    ProducerNotFoundError,
    TransportNotFoundError,
)
from streamvault.core.models import (
    RtpCapabilities,
    RtpCodecCapability,
    RtpCodecParameters,
    RtpEncodingParameters,
    RtpParameters,
)
from streamvault.services.media.base import (
    PRODUCER_CLOSE,
    TRANSPORT_CLOSE,
    BaseConsumer,
    BaseMediaRouter,
    BaseProducer,
    BaseRelayTransport,
)

logger = logging.getLogger(__name__)

RTP_VERSION = 2
RTP_HEADER_SIZE = 12

# First dynamic payload type handed out to consumers
ROUTER_PAYLOAD_TYPE = 100

DEFAULT_MEDIA_CODECS = [
    RtpCodecCapability(
        mime_type="audio/opus",
        clock_rate=48000,
        channels=2,
        preferred_payload_type=ROUTER_PAYLOAD_TYPE,
    ),
]


@dataclass
class RTPHeader:
    """Parsed RTP fixed header fields"""

    version: int
    marker: bool
    payload_type: int
    sequence: int
    timestamp: int
    ssrc: int


def parse_rtp_header(data: bytes) -> RTPHeader | None:
    """Parse the 12-byte fixed RTP header, or return None for non-RTP data.

    RTCP packets (second byte 192-223) share the port under rtcp-mux
    and are rejected.
    """
    if len(data) < RTP_HEADER_SIZE:
        return None
    first, second, sequence, timestamp, ssrc = struct.unpack("!BBHII", data[:RTP_HEADER_SIZE])
    version = first >> 6
    if version != RTP_VERSION:
        return None
    if 192 <= second <= 223:
        return None
    return RTPHeader(
        version=version,
        marker=bool(second & 0x80),
        payload_type=second & 0x7F,
        sequence=sequence,
        timestamp=timestamp,
        ssrc=ssrc,
    )


def rewrite_rtp_header(data: bytes, payload_type: int, ssrc: int) -> bytes:
    """Return a copy of ``data`` with payload type and SSRC replaced."""
    packet = bytearray(data)
    packet[1] = (packet[1] & 0x80) | (payload_type & 0x7F)
    struct.pack_into("!I", packet, 8, ssrc)
    return bytes(packet)


def _codec_matches(codec: RtpCodecParameters, capability: RtpCodecCapability) -> bool:
    return (
        codec.mime_type.lower() == capability.mime_type.lower()
        and codec.clock_rate == capability.clock_rate
        and codec.channels == capability.channels
    )


class _IngressProtocol(asyncio.DatagramProtocol):
    """Feeds datagrams received on the ingress port into the router."""

    def __init__(self, router: "PlainRtpRouter") -> None:
        self._router = router

    def datagram_received(self, data: bytes, addr: tuple[str, int]) -> None:
        self._router._on_packet(data, addr)

    def error_received(self, exc: Exception) -> None:
        logger.warning("Ingress socket error: %s", exc)


class PlainTransport:
    """A peer's sending side. Holds the producers created on it."""

    def __init__(self, transport_id: str, peer_id: str) -> None:
        self.id = transport_id
        self.peer_id = peer_id
        self.remote_ip: str | None = None
        self.remote_port: int | None = None
        self.producers: dict[str, "PlainProducer"] = {}
        self.closed = False
        self.last_activity = time.monotonic()

    def touch(self) -> None:
        self.last_activity = time.monotonic()

    def idle_for(self) -> float:
        return time.monotonic() - self.last_activity

    def accepts(self, addr: tuple[str, int]) -> bool:
        if self.remote_ip is None:
            return True
        if addr[0] != self.remote_ip:
            return False
        return self.remote_port is None or addr[1] == self.remote_port


class PlainProducer(BaseProducer):
    """Producer fed by packets with a given SSRC on the ingress port."""

    def __init__(self, transport: PlainTransport, **kwargs) -> None:
        super().__init__(**kwargs)
        self.transport = transport
        self.ssrc = self.rtp_parameters.encodings[0].ssrc
        self.consumers: set[PlainConsumer] = set()

    def deliver(self, data: bytes) -> None:
        for consumer in list(self.consumers):
            consumer.forward(data)

    def close(self, event: str = PRODUCER_CLOSE) -> None:
        if self.closed:
            return
        self.closed = True
        for consumer in list(self.consumers):
            consumer.close()
        self.emit(event)


class PlainConsumer(BaseConsumer):
    """Forwards one producer's packets through a relay transport."""

    def __init__(
        self,
        producer: PlainProducer,
        transport: "PlainRelayTransport",
        rtp_parameters: RtpParameters,
        paused: bool,
    ) -> None:
        self.id = str(uuid.uuid4())
        self.producer_id = producer.id
        self.rtp_parameters = rtp_parameters
        self.paused = paused
        self.closed = False
        self.packets_forwarded = 0
        self._producer = producer
        self._transport = transport
        self._payload_type = rtp_parameters.codecs[0].payload_type
        self._ssrc = rtp_parameters.encodings[0].ssrc

    def forward(self, data: bytes) -> None:
        if self.paused or self.closed:
            return
        self._transport.send(rewrite_rtp_header(data, self._payload_type, self._ssrc))
        self.packets_forwarded += 1

    async def resume(self) -> None:
        if self.closed:
            raise MediaRouterError(f"Consumer {self.id} is closed")
        self.paused = False

    async def pause(self) -> None:
        self.paused = True

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._producer.consumers.discard(self)
        self._transport.consumers.discard(self)


class PlainRelayTransport(BaseRelayTransport):
    """UDP socket that sends consumer traffic to a connected destination."""

    def __init__(self, router: "PlainRtpRouter", endpoint: asyncio.DatagramTransport) -> None:
        self.id = str(uuid.uuid4())
        self.closed = False
        self.consumers: set[PlainConsumer] = set()
        self.destination: tuple[str, int] | None = None
        self._router = router
        self._endpoint = endpoint

    async def connect(self, ip: str, port: int) -> None:
        if self.closed:
            raise MediaRouterError(f"Relay transport {self.id} is closed")
        self.destination = (ip, port)
        logger.debug("Relay transport %s connected to %s:%s", self.id, ip, port)

    async def consume(
        self,
        producer_id: str,
        rtp_capabilities: RtpCapabilities,
        paused: bool = False,
    ) -> PlainConsumer:
        if self.closed:
            raise MediaRouterError(f"Relay transport {self.id} is closed")
        producer = self._router.get_producer(producer_id)
        if producer is None:
            raise ProducerNotFoundError(producer_id)
        source = producer.rtp_parameters.codecs[0]
        capability = next(
            (c for c in rtp_capabilities.codecs if _codec_matches(source, c)), None
        )
        if capability is None:
            raise MediaRouterError(f"Producer {producer_id} cannot be consumed")

        rtp_parameters = RtpParameters(
            codecs=[
                RtpCodecParameters(
                    mime_type=capability.mime_type,
                    payload_type=capability.preferred_payload_type or ROUTER_PAYLOAD_TYPE,
                    clock_rate=capability.clock_rate,
                    channels=capability.channels,
                    parameters=dict(source.parameters),
                )
            ],
            encodings=[RtpEncodingParameters(ssrc=random.randint(1, 0xFFFFFFFF))],
        )
        consumer = PlainConsumer(producer, self, rtp_parameters, paused)
        producer.consumers.add(consumer)
        self.consumers.add(consumer)
        return consumer

    def send(self, data: bytes) -> None:
        if self.closed or self.destination is None:
            return
        self._endpoint.sendto(data, self.destination)

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        for consumer in list(self.consumers):
            consumer.close()
        self._endpoint.close()
        self._router._relays.pop(self.id, None)


class PlainRtpRouter(BaseMediaRouter):
    """In-process router for plain RTP audio.

    Args:
        listen_ip: Address the ingress socket binds to.
        port: Ingress UDP port (0 picks an ephemeral port).
        announced_ip: Address handed to peers instead of ``listen_ip``.
        media_codecs: Codecs the router accepts (defaults to Opus 48 kHz stereo).
        idle_timeout: Seconds without an accepted packet after which a peer
            transport is closed as if the peer had hung up. 0 disables it.
    """

    def __init__(
        self,
        listen_ip: str = "0.0.0.0",
        port: int = 40000,
        announced_ip: str | None = None,
        media_codecs: list[RtpCodecCapability] | None = None,
        idle_timeout: float = 0.0,
    ) -> None:
        self.listen_ip = listen_ip
        self.port = port
        self.announced_ip = announced_ip
        self.idle_timeout = idle_timeout
        self._idle_watch: asyncio.Task | None = None
        self._capabilities = RtpCapabilities(codecs=media_codecs or DEFAULT_MEDIA_CODECS)
        self._ingress: asyncio.DatagramTransport | None = None
        self._transports: dict[str, PlainTransport] = {}
        self._producers: dict[str, PlainProducer] = {}
        self._by_ssrc: dict[int, PlainProducer] = {}
        self._relays: dict[str, PlainRelayTransport] = {}

    @property
    def rtp_capabilities(self) -> RtpCapabilities:
        return self._capabilities

    async def start(self) -> None:
        loop = asyncio.get_running_loop()
        self._ingress, _ = await loop.create_datagram_endpoint(
            lambda: _IngressProtocol(self),
            local_addr=(self.listen_ip, self.port),
        )
        self.port = self._ingress.get_extra_info("sockname")[1]
        logger.info(
            "Plain RTP router ready; UDP port=%s announcedIp=%s",
            self.port,
            self.announced_ip or "n/a",
        )
        if self.idle_timeout > 0:
            self._idle_watch = asyncio.create_task(self._watch_idle())

    async def _watch_idle(self) -> None:
        """Close peer transports that stopped sending for ``idle_timeout`` seconds."""
        interval = min(self.idle_timeout / 2, 1.0)
        while True:
            await asyncio.sleep(interval)
            self.close_idle_transports()

    def close_idle_transports(self) -> list[str]:
        """Close every transport idle for longer than ``idle_timeout``; return their IDs."""
        idle = [t.id for t in self._transports.values() if t.idle_for() > self.idle_timeout]
        for transport_id in idle:
            logger.warning(
                "Transport %s idle for more than %.1fs, closing", transport_id, self.idle_timeout
            )
            self.close_transport(transport_id)
        return idle

    async def close(self) -> None:
        if self._idle_watch is not None:
            self._idle_watch.cancel()
            try:
                await self._idle_watch
            except asyncio.CancelledError:
                pass
            self._idle_watch = None
        for transport_id in list(self._transports):
            self.close_transport(transport_id)
        for relay in list(self._relays.values()):
            relay.close()
        if self._ingress is not None:
            self._ingress.close()
            self._ingress = None

    # -- peer transports --

    async def create_transport(self, peer_id: str) -> dict[str, Any]:
        transport = PlainTransport(str(uuid.uuid4()), peer_id)
        self._transports[transport.id] = transport
        return {
            "id": transport.id,
            "ip": self.announced_ip or self.listen_ip,
            "port": self.port,
        }

    def _get_transport(self, transport_id: str) -> PlainTransport:
        transport = self._transports.get(transport_id)
        if transport is None or transport.closed:
            raise TransportNotFoundError(transport_id)
        return transport

    async def connect_transport(self, transport_id: str, parameters: dict[str, Any]) -> None:
        transport = self._get_transport(transport_id)
        transport.remote_ip = parameters.get("ip")
        transport.touch()
        port = parameters.get("port")
        transport.remote_port = int(port) if port is not None else None

    def close_transport(self, transport_id: str) -> None:
        transport = self._get_transport(transport_id)
        transport.closed = True
        del self._transports[transport_id]
        for producer in list(transport.producers.values()):
            self._forget_producer(producer)
            producer.close(TRANSPORT_CLOSE)
        logger.info("Transport %s closed (peer=%s)", transport_id, transport.peer_id)

    # -- producers --

    async def produce(
        self,
        transport_id: str,
        kind: str,
        rtp_parameters: RtpParameters,
        app_data: dict[str, Any] | None = None,
    ) -> PlainProducer:
        transport = self._get_transport(transport_id)
        ssrc = rtp_parameters.encodings[0].ssrc
        if ssrc in self._by_ssrc:
            raise MediaRouterError(f"SSRC {ssrc} is already in use")
        producer = PlainProducer(
            transport,
            producer_id=str(uuid.uuid4()),
            kind=kind,
            rtp_parameters=rtp_parameters,
            app_data=app_data,
        )
        transport.touch()
        transport.producers[producer.id] = producer
        self._producers[producer.id] = producer
        self._by_ssrc[ssrc] = producer
        return producer

    def close_producer(self, producer_id: str) -> None:
        producer = self._producers.get(producer_id)
        if producer is None:
            raise ProducerNotFoundError(producer_id)
        self._forget_producer(producer)
        producer.transport.producers.pop(producer.id, None)
        producer.close(PRODUCER_CLOSE)

    def _forget_producer(self, producer: PlainProducer) -> None:
        self._producers.pop(producer.id, None)
        self._by_ssrc.pop(producer.ssrc, None)

    def get_producer(self, producer_id: str) -> PlainProducer | None:
        return self._producers.get(producer_id)

    def list_producers(self) -> list[PlainProducer]:
        return list(self._producers.values())

    def can_consume(self, producer_id: str, rtp_capabilities: RtpCapabilities) -> bool:
        producer = self._producers.get(producer_id)
        if producer is None:
            return False
        source = producer.rtp_parameters.codecs[0]
        return any(_codec_matches(source, c) for c in rtp_capabilities.codecs)

    # -- relays --

    async def create_relay_transport(self, listen_ip: str) -> PlainRelayTransport:
        loop = asyncio.get_running_loop()
        try:
            endpoint, _ = await loop.create_datagram_endpoint(
                asyncio.DatagramProtocol,
                local_addr=(listen_ip, 0),
            )
        except OSError as exc:
            raise MediaRouterError(f"Cannot bind relay transport on {listen_ip}: {exc}") from exc
        relay = PlainRelayTransport(self, endpoint)
        self._relays[relay.id] = relay
        return relay

    # -- packet path --

    def _on_packet(self, data: bytes, addr: tuple[str, int]) -> None:
        header = parse_rtp_header(data)
        if header is None:
            return
        producer = self._by_ssrc.get(header.ssrc)
        if producer is None or not producer.transport.accepts(addr):
            return
        producer.transport.touch()
        if not producer.paused:
            producer.deliver(data)
