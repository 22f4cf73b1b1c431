"""
Relay builder: hands a copy of a producer's RTP to a local UDP port.

For each recorded producer the router creates a relay transport pointed at
a freshly probed loopback port, plus a *paused* consumer on it. The
consumer's negotiated codec, payload type and SSRC are what the session
descriptor has to announce to the recorder process.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any

from streamvault.core.exceptions import (
    CapabilityMismatchError,
    RelayTransportError,
)
from streamvault.services.media.base import (
    BaseConsumer,
    BaseMediaRouter,
    BaseProducer,
    BaseRelayTransport,
)

logger = logging.getLogger(__name__)

RELAY_IP = "127.0.0.1"


@dataclass
class RelayParameters:
    """Where the relayed stream arrives and how it is encoded."""

    ip: str
    port: int
    payload_type: int
    codec_name: str
    clock_rate: int
    channels: int
    ssrc: int
    format_parameters: dict[str, Any] = field(default_factory=dict)


@dataclass
class Relay:
    """Relay transport, its paused consumer, and the negotiated parameters."""

    transport: BaseRelayTransport
    consumer: BaseConsumer
    parameters: RelayParameters

    def close(self) -> None:
        """Close consumer then transport. Safe to call more than once."""
        for resource in (self.consumer, self.transport):
            try:
                resource.close()
            except Exception:
                logger.warning("Failed to close %s", type(resource).__name__, exc_info=True)


async def allocate_udp_port(host: str = RELAY_IP) -> int:
    """Return a UDP port number that was free a moment ago.

    The probe socket is released before the recorder binds the port, so
    another process may grab it in between. That surfaces as a recorder
    failure and is not retried.
    """
    loop = asyncio.get_running_loop()
    probe, _ = await loop.create_datagram_endpoint(
        asyncio.DatagramProtocol,
        local_addr=(host, 0),
    )
    try:
        return probe.get_extra_info("sockname")[1]
    finally:
        probe.close()


def relay_parameters(consumer: BaseConsumer, ip: str, port: int) -> RelayParameters:
    """Derive descriptor parameters from a consumer's negotiated RTP parameters."""
    codec = consumer.rtp_parameters.codecs[0]
    encoding = consumer.rtp_parameters.encodings[0]
    return RelayParameters(
        ip=ip,
        port=port,
        payload_type=codec.payload_type,
        codec_name=codec.codec_name,
        clock_rate=codec.clock_rate,
        channels=codec.channels,
        ssrc=encoding.ssrc,
        format_parameters=dict(codec.parameters),
    )


async def build_relay(router: BaseMediaRouter, producer: BaseProducer) -> Relay:
    """Create a relay transport and a paused consumer for ``producer``.

    Capabilities are checked before anything is allocated, so a mismatch
    leaves no resources behind. Any failure after the transport exists
    closes it before re-raising.

    Raises:
        CapabilityMismatchError: The producer's codec is not routable.
        RelayTransportError: Port probe, transport or consumer creation failed.
    """
    rtp_capabilities = router.rtp_capabilities
    if not router.can_consume(producer.id, rtp_capabilities):
        raise CapabilityMismatchError(producer.id)

    transport: BaseRelayTransport | None = None
    try:
        port = await allocate_udp_port(RELAY_IP)
        transport = await router.create_relay_transport(RELAY_IP)
        await transport.connect(RELAY_IP, port)
        consumer = await transport.consume(producer.id, rtp_capabilities, paused=True)
    except Exception as exc:
        if transport is not None:
            transport.close()
        raise RelayTransportError(f"Relay setup failed for producer {producer.id}: {exc}") from exc

    parameters = relay_parameters(consumer, RELAY_IP, port)
    logger.debug(
        "Relay for producer %s -> %s:%s pt=%s ssrc=%s",
        producer.id,
        parameters.ip,
        parameters.port,
        parameters.payload_type,
        parameters.ssrc,
    )
    return Relay(transport=transport, consumer=consumer, parameters=parameters)
