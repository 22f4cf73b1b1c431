"""Shared pytest fixtures for the StreamVault test suite.

Provides settings pointing at a temporary recordings directory, a fake
``ffmpeg`` that replaces ``asyncio.create_subprocess_exec``, and a mocked
media router for exercising the recording manager without a network.
"""

import asyncio
import itertools
import signal
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

from streamvault.core.config import Settings
from streamvault.core.models import (
    RtpCapabilities,
    RtpCodecCapability,
    RtpCodecParameters,
    RtpEncodingParameters,
    RtpParameters,
)
from streamvault.services.media.base import BaseMediaRouter, BaseProducer

# ---------------------------------------------------------------------------
# Fake ffmpeg
# ---------------------------------------------------------------------------

_pids = itertools.count(1000)


class FakeProcess:
    """Stand-in for ``asyncio.subprocess.Process``.

    ``interrupt_returncode`` is the exit status after SIGINT; None means the
    process ignores SIGINT and only dies on kill().
    """

    def __init__(
        self,
        args: tuple[str, ...],
        output: Path,
        output_bytes: int,
        interrupt_returncode: int | None = 255,
    ) -> None:
        self.args = args
        self.pid = next(_pids)
        self.returncode: int | None = None
        self.signals: list[int] = []
        self.output = output
        self.output_bytes = output_bytes
        self.interrupt_returncode = interrupt_returncode
        self._exited = asyncio.Event()

    async def wait(self) -> int:
        await self._exited.wait()
        return self.returncode

    def send_signal(self, sig: int) -> None:
        self.signals.append(sig)
        if self.interrupt_returncode is not None:
            self.finish(self.interrupt_returncode)

    def kill(self) -> None:
        self.signals.append(signal.SIGKILL)
        self.finish(-signal.SIGKILL)

    def finish(self, returncode: int) -> None:
        """Exit with ``returncode`` after writing the output file."""
        if self.returncode is not None:
            return
        if self.output_bytes:
            self.output.write_bytes(b"\x00" * self.output_bytes)
        self.returncode = returncode
        self._exited.set()


class FakeFfmpeg:
    """Callable replacing ``asyncio.create_subprocess_exec``.

    Recorder invocations return a long-running ``FakeProcess`` that writes
    ``capture_bytes`` to its output when it exits. Transcoder invocations
    (recognized by ``libmp3lame``) exit immediately with
    ``transcode_returncode``.
    """

    def __init__(self) -> None:
        self.capture_bytes = 50 * 1024
        self.interrupt_returncode: int | None = 255
        self.transcode_returncode = 0
        self.spawn_error: OSError | None = None
        self.recorders: list[FakeProcess] = []
        self.transcoders: list[FakeProcess] = []
        self.descriptor_existed_at_spawn: list[bool] = []

    async def __call__(self, *args, **kwargs) -> FakeProcess:
        if self.spawn_error is not None:
            raise self.spawn_error
        output = Path(args[-1])
        if "libmp3lame" in args:
            proc = FakeProcess(args, output, output_bytes=4096)
            proc.finish(self.transcode_returncode)
            self.transcoders.append(proc)
            return proc

        descriptor = Path(args[args.index("-i") + 1])
        self.descriptor_existed_at_spawn.append(descriptor.exists())
        proc = FakeProcess(args, output, self.capture_bytes, self.interrupt_returncode)
        self.recorders.append(proc)
        return proc


@pytest.fixture
def fake_ffmpeg(monkeypatch):
    """Patch subprocess creation with a ``FakeFfmpeg``."""
    fake = FakeFfmpeg()
    monkeypatch.setattr(asyncio, "create_subprocess_exec", fake)
    return fake


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


@pytest.fixture
def record_dir(tmp_path):
    return tmp_path / "recordings"


@pytest.fixture
def settings(record_dir):
    """Settings with no settle delay and no kill escalation."""
    return Settings(
        record_dir=str(record_dir),
        recorder_settle_delay=0.0,
        recorder_stop_timeout=0.0,
        post_convert_mp3=False,
        record_format="ogg",
        keep_ogg=True,
    )


# ---------------------------------------------------------------------------
# Media fixtures
# ---------------------------------------------------------------------------

OPUS_CAPABILITY = RtpCodecCapability(
    mime_type="audio/opus", clock_rate=48000, channels=2, preferred_payload_type=100
)


def _rtp_parameters(
    payload_type: int = 111,
    ssrc: int = 1111,
    mime_type: str = "audio/opus",
) -> RtpParameters:
    return RtpParameters(
        codecs=[
            RtpCodecParameters(
                mime_type=mime_type, payload_type=payload_type, clock_rate=48000, channels=2
            )
        ],
        encodings=[RtpEncodingParameters(ssrc=ssrc)],
    )


def _producer(producer_id: str = "P1", peer_id: str | None = "peer-1") -> BaseProducer:
    return BaseProducer(
        producer_id=producer_id,
        kind="audio",
        rtp_parameters=_rtp_parameters(),
        app_data={"peerId": peer_id},
    )


@pytest.fixture
def consumer():
    """Paused consumer as a router would hand it out."""
    consumer = MagicMock()
    consumer.rtp_parameters = _rtp_parameters(payload_type=100, ssrc=424242)
    consumer.resume = AsyncMock()
    return consumer


@pytest.fixture
def relay_transport(consumer):
    transport = MagicMock()
    transport.connect = AsyncMock()
    transport.consume = AsyncMock(return_value=consumer)
    return transport


@pytest.fixture
def mock_router(relay_transport):
    """Router that can consume everything and returns ``relay_transport``."""
    router = MagicMock(spec=BaseMediaRouter)
    router.rtp_capabilities = RtpCapabilities(codecs=[OPUS_CAPABILITY])
    router.can_consume.return_value = True
    router.create_relay_transport = AsyncMock(return_value=relay_transport)
    return router


@pytest.fixture
def make_rtp_parameters():
    """Factory for single-codec, single-encoding RTP parameters."""
    return _rtp_parameters


@pytest.fixture
def make_producer():
    """Factory for standalone audio producers (``make_producer("P1", "alice")``)."""
    return _producer
