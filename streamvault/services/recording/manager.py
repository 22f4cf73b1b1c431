"""
Recording session orchestration.

For every producer the manager walks one ``RecordingSession`` through its
lifecycle::

    CREATED -> RELAY_READY -> DESCRIPTOR_WRITTEN -> PROCESS_STARTED
            -> STREAMING -> STOPPING -> POST_PROCESSING -> CLOSED

with FAILED as the alternate terminal state for setup errors. Each
transition is a separate method below. Recording is a side channel of the
media plane: nothing here raises to the caller, failures are logged.

Usage::

    manager = RecordingSessionManager(router)
    manager.start_session_in_background(producer)
    ...
    await manager.stop_session(producer.id)
    await manager.shutdown()
"""

import asyncio
import logging
from collections.abc import Coroutine
from pathlib import Path

from streamvault.core.config import Settings, get_settings
from streamvault.core.exceptions import CapabilityMismatchError, StreamVaultError
from streamvault.core.models import SessionInfo, SessionState
from streamvault.core.utils import session_basename
from streamvault.services.media.base import BaseMediaRouter, BaseProducer
from streamvault.services.recording.cleanup import CleanupCoordinator
from streamvault.services.recording.descriptor import remove_descriptor, write_descriptor
from streamvault.services.recording.postprocess import transcode_to_mp3
from streamvault.services.recording.process import (
    RecorderProcess,
    capture_size,
    classify_capture,
)
from streamvault.services.recording.relay import build_relay
from streamvault.services.recording.session import RecordingSession, SessionRegistry

logger = logging.getLogger(__name__)


class _SetupCancelled(Exception):
    """A stop request arrived before the recorder process was started."""


class RecordingSessionManager:
    """Owns the registry of active recordings and drives their lifecycle.

    Args:
        router: Media router that owns the producers being recorded.
        settings: Recording configuration (defaults to ``get_settings()``).
    """

    def __init__(self, router: BaseMediaRouter, settings: Settings | None = None) -> None:
        self._router = router
        self._settings = settings or get_settings()
        self.record_dir = Path(self._settings.record_dir)
        self.record_dir.mkdir(parents=True, exist_ok=True)
        self.registry = SessionRegistry()
        self.cleanup = CleanupCoordinator(self.stop_session)
        self._tasks: set[asyncio.Task] = set()

    def _track(self, coro: Coroutine) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    def start_session_in_background(self, producer: BaseProducer) -> asyncio.Task:
        """Schedule ``start_session`` without waiting for it."""
        return self._track(self.start_session(producer))

    async def start_session(self, producer: BaseProducer) -> RecordingSession | None:
        """Start recording ``producer`` unless it is already being recorded.

        Returns once media is flowing to the recorder (or setup failed);
        the rest of the lifecycle runs in a background task.

        Returns:
            The new session, or None if one already existed.
        """
        session = await self.registry.reserve(producer.id, producer.peer_id)
        if session is None:
            logger.debug("Producer %s is already being recorded", producer.id)
            return None
        self.cleanup.watch(producer)

        try:
            await self._setup(session, producer)
        except Exception as exc:
            await self._abort(session, exc)
            return session

        if session.stop_requested:
            if session.state is SessionState.process_started:
                self._enter_stopping(session, interrupt=True)
            return session

        try:
            await self._start_streaming(session)
        except Exception:
            logger.exception("Failed to resume media for producer %s", producer.id)
            self._request_stop(session)
        return session

    async def stop_session(self, producer_id: str) -> None:
        """Stop recording ``producer_id``. No-op if it is not being recorded."""
        session = self.registry.get(producer_id)
        if session is None:
            return
        self._request_stop(session)

    def list_sessions(self) -> list[SessionInfo]:
        """Snapshot of all active sessions."""
        return self.registry.snapshot()

    def get_session(self, producer_id: str) -> RecordingSession | None:
        return self.registry.get(producer_id)

    def recording_file(self, producer_id: str) -> str | None:
        """Current raw output path of a producer's recording, if any."""
        session = self.registry.get(producer_id)
        if session is None or session.output_path is None:
            return None
        return str(session.output_path)

    async def shutdown(self) -> None:
        """Stop every session and wait until all of them are closed."""
        sessions = self.registry.sessions()
        for session in sessions:
            self._request_stop(session)
        if sessions:
            logger.info("Waiting for %d recording(s) to finish", len(sessions))
            await asyncio.gather(*(s.wait_closed() for s in sessions))
        await self.cleanup.drain()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    # ------------------------------------------------------------------
    # Setup: CREATED -> PROCESS_STARTED
    # ------------------------------------------------------------------

    async def _setup(self, session: RecordingSession, producer: BaseProducer) -> None:
        await self._build_relay(session, producer)
        self._raise_if_stopped(session)
        self._write_descriptor(session)
        self._raise_if_stopped(session)
        await self._spawn_recorder(session)

    @staticmethod
    def _raise_if_stopped(session: RecordingSession) -> None:
        if session.stop_requested:
            raise _SetupCancelled(session.producer_id)

    async def _build_relay(self, session: RecordingSession, producer: BaseProducer) -> None:
        """CREATED -> RELAY_READY"""
        session.relay = await build_relay(self._router, producer)
        session.transition(SessionState.relay_ready)

    def _write_descriptor(self, session: RecordingSession) -> None:
        """RELAY_READY -> DESCRIPTOR_WRITTEN"""
        base = session_basename(session.peer_id, session.producer_id)
        session.descriptor_path = self.record_dir / f"{base}.sdp"
        session.output_path = self.record_dir / f"{base}.ogg"
        write_descriptor(session.descriptor_path, session.relay.parameters)
        session.transition(SessionState.descriptor_written)

    async def _spawn_recorder(self, session: RecordingSession) -> None:
        """DESCRIPTOR_WRITTEN -> PROCESS_STARTED"""
        recorder = RecorderProcess(
            session.descriptor_path,
            session.output_path,
            ffmpeg_binary=self._settings.ffmpeg_binary,
        )
        await recorder.spawn()
        session.recorder = recorder
        session.transition(SessionState.process_started)
        self._track(self._supervise(session))

    async def _abort(self, session: RecordingSession, exc: Exception) -> None:
        """Release whatever setup allocated; end in CLOSED (stopped) or FAILED."""
        session.release_relay()
        remove_descriptor(session.descriptor_path)

        if isinstance(exc, _SetupCancelled):
            logger.info(
                "[record] producer=%s stopped before the recorder started", session.producer_id
            )
            session.transition(SessionState.stopping)
            final_state = SessionState.closed
        else:
            if isinstance(exc, CapabilityMismatchError):
                logger.warning("[record] cannot consume producer %s", session.producer_id)
            elif isinstance(exc, StreamVaultError):
                logger.error(
                    "[record] start failed for producer=%s: %s", session.producer_id, exc.detail
                )
            else:
                logger.error(
                    "[record] start error for producer=%s", session.producer_id, exc_info=exc
                )
            final_state = SessionState.failed

        await self.registry.release(session)
        session.transition(final_state)

    # ------------------------------------------------------------------
    # PROCESS_STARTED -> STREAMING -> STOPPING
    # ------------------------------------------------------------------

    async def _start_streaming(self, session: RecordingSession) -> None:
        """PROCESS_STARTED -> STREAMING after the recorder had time to bind its socket."""
        await asyncio.sleep(self._settings.recorder_settle_delay)
        if session.stop_requested:
            return
        await session.relay.consumer.resume()
        if session.stop_requested:
            return
        session.transition(SessionState.streaming)
        logger.info("[record] started for producer=%s -> %s", session.producer_id, session.output_path)

    def _request_stop(self, session: RecordingSession) -> None:
        if session.stop_requested or session.is_terminal:
            return
        session.stop_requested = True
        if session.recorder is None:
            # Setup is still running; it checks the flag before its next step.
            logger.info("[record] stop requested during setup for producer=%s", session.producer_id)
            return
        self._enter_stopping(session, interrupt=True)

    def _enter_stopping(self, session: RecordingSession, interrupt: bool) -> None:
        """-> STOPPING: close consumer and relay, then ask the recorder to finish."""
        session.transition(SessionState.stopping)
        session.release_relay()
        if interrupt and session.recorder is not None:
            session.recorder.interrupt(self._settings.recorder_stop_timeout)
        logger.info("[record] stopping producer=%s", session.producer_id)

    # ------------------------------------------------------------------
    # Recorder exit: STOPPING -> POST_PROCESSING -> CLOSED
    # ------------------------------------------------------------------

    async def _supervise(self, session: RecordingSession) -> None:
        try:
            status = await session.recorder.wait()
            session.exit_status = status
            logger.info("[ffmpeg] exit %s file=%s", status, session.output_path)
            if not status.stopped_cleanly:
                logger.warning(
                    "Recorder for producer %s exited abnormally (%s)", session.producer_id, status
                )
            session.stop_requested = True
            if session.state is not SessionState.stopping:
                logger.warning(
                    "Recorder for producer %s exited without a stop request", session.producer_id
                )
                self._enter_stopping(session, interrupt=False)
            await self._post_process(session)
        except Exception:
            logger.exception("Recording supervision failed for producer %s", session.producer_id)
        finally:
            await self._close(session)

    async def _post_process(self, session: RecordingSession) -> None:
        """STOPPING -> POST_PROCESSING when the capture is usable and conversion is on."""
        settings = self._settings
        if not classify_capture(session.exit_status, session.output_path, settings.min_capture_bytes):
            logger.warning(
                "[record] capture for producer=%s unusable (%s, %d bytes); skipping post-processing",
                session.producer_id,
                session.exit_status,
                capture_size(session.output_path),
            )
            return
        if not settings.post_conversion_enabled:
            return

        session.transition(SessionState.post_processing)
        try:
            session.derived_path = await transcode_to_mp3(
                session.output_path,
                bitrate=settings.record_bitrate,
                sample_rate=settings.mp3_sample_rate,
                channels=settings.mp3_channels,
                keep_raw=settings.keep_ogg,
                ffmpeg_binary=settings.ffmpeg_binary,
            )
        except StreamVaultError as exc:
            logger.error(
                "[post] mp3 convert failed for producer=%s: %s (raw kept at %s)",
                session.producer_id,
                exc.detail,
                session.output_path,
            )

    async def _close(self, session: RecordingSession) -> None:
        """-> CLOSED: drop the descriptor and unregister the session."""
        remove_descriptor(session.descriptor_path)
        if session.state not in (SessionState.stopping, SessionState.post_processing):
            self._enter_stopping(session, interrupt=True)
        await self.registry.release(session)
        session.transition(SessionState.closed)
        logger.info("[record] closed producer=%s", session.producer_id)
