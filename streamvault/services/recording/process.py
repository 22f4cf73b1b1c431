"""
Recorder process supervision.

The recorder is an ffmpeg process that opens the session descriptor,
receives the relayed RTP and copies the Opus payload into an Ogg file
without re-encoding. It is stopped with SIGINT so that ffmpeg finalizes
the container; if it ignores the signal for ``stop_timeout`` seconds it
is killed.
"""

import asyncio
import logging
import signal
from dataclasses import dataclass
from pathlib import Path

from streamvault.core.exceptions import ProcessSpawnError

logger = logging.getLogger(__name__)

STOP_SIGNAL = signal.SIGINT

# ffmpeg exits with 255 after handling SIGINT
RECORDER_CLEAN_EXIT_CODES = frozenset({0, 255})


@dataclass(frozen=True)
class ExitStatus:
    """How a process terminated, as reported by ``asyncio``.

    A negative ``returncode`` means the process was killed by that signal.
    """

    returncode: int | None

    @property
    def code(self) -> int | None:
        if self.returncode is None or self.returncode < 0:
            return None
        return self.returncode

    @property
    def exit_signal(self) -> signal.Signals | None:
        if self.returncode is None or self.returncode >= 0:
            return None
        try:
            return signal.Signals(-self.returncode)
        except ValueError:
            return None

    @property
    def stopped_cleanly(self) -> bool:
        """Clean success, or a stop caused by our own interrupt."""
        return self.code in RECORDER_CLEAN_EXIT_CODES or self.exit_signal == STOP_SIGNAL

    def __str__(self) -> str:
        sig = self.exit_signal
        return f"code={self.code} signal={sig.name if sig else None}"


def build_recorder_command(
    ffmpeg_binary: str,
    descriptor_path: Path,
    output_path: Path,
) -> list[str]:
    """ffmpeg arguments to capture the described stream with codec copy."""
    return [
        ffmpeg_binary,
        "-hide_banner",
        "-loglevel", "warning",
        "-protocol_whitelist", "file,udp,rtp",
        "-i", str(descriptor_path),
        "-c", "copy",
        str(output_path),
    ]


def capture_size(path: Path | None) -> int:
    """Size of the capture file in bytes, 0 if it does not exist."""
    if path is None:
        return 0
    try:
        return path.stat().st_size
    except OSError:
        return 0


def classify_capture(status: ExitStatus, output_path: Path, min_bytes: int) -> bool:
    """Decide whether a finished capture is worth keeping and converting.

    A file larger than ``min_bytes`` is usable whatever the exit status.
    Below that, only a clean exit code 0 with a non-empty file counts; an
    interrupted recorder that wrote just a container header does not.

    Note that exit code 255 and death by SIGINT count as a clean stop in
    ``ExitStatus.stopped_cleanly`` but not here: a small file produced by
    an interrupted recorder is unusable.
    """
    size = capture_size(output_path)
    if size > min_bytes:
        return True
    return status.code == 0 and size > 0


class RecorderProcess:
    """Owns one recorder subprocess.

    Args:
        descriptor_path: SDP file the recorder opens.
        output_path: Raw capture file the recorder writes.
        ffmpeg_binary: Executable to run.
    """

    def __init__(
        self,
        descriptor_path: Path,
        output_path: Path,
        ffmpeg_binary: str = "ffmpeg",
    ) -> None:
        self.descriptor_path = descriptor_path
        self.output_path = output_path
        self._command = build_recorder_command(ffmpeg_binary, descriptor_path, output_path)
        self._process: asyncio.subprocess.Process | None = None
        self._watchdog: asyncio.Task | None = None
        self.exit_status: ExitStatus | None = None

    @property
    def pid(self) -> int | None:
        return self._process.pid if self._process else None

    @property
    def running(self) -> bool:
        return self._process is not None and self._process.returncode is None

    async def spawn(self) -> None:
        """Start the recorder with stdout/stderr inherited.

        Raises:
            ProcessSpawnError: If the executable cannot be started.
        """
        try:
            self._process = await asyncio.create_subprocess_exec(
                *self._command,
                stdin=asyncio.subprocess.DEVNULL,
            )
        except OSError as exc:
            raise ProcessSpawnError(self._command[0], str(exc)) from exc
        logger.info("Recorder started pid=%s -> %s", self._process.pid, self.output_path)

    async def wait(self) -> ExitStatus:
        """Wait for the recorder to exit and return its status."""
        if self._process is None:
            raise RuntimeError("Recorder process was never spawned")
        returncode = await self._process.wait()
        if self._watchdog is not None:
            self._watchdog.cancel()
            self._watchdog = None
        self.exit_status = ExitStatus(returncode)
        return self.exit_status

    def interrupt(self, stop_timeout: float = 0.0) -> None:
        """Send SIGINT; kill the process if it is still alive after ``stop_timeout``.

        A ``stop_timeout`` of 0 never escalates.
        """
        if not self.running:
            return
        try:
            self._process.send_signal(STOP_SIGNAL)
        except ProcessLookupError:
            return
        logger.info("Sent %s to recorder pid=%s", STOP_SIGNAL.name, self._process.pid)
        if stop_timeout > 0 and self._watchdog is None:
            self._watchdog = asyncio.create_task(self._kill_after(stop_timeout))

    async def _kill_after(self, timeout: float) -> None:
        try:
            await asyncio.wait_for(self._process.wait(), timeout=timeout)
        except TimeoutError:
            logger.warning(
                "Recorder pid=%s ignored %s for %.1fs, killing",
                self._process.pid,
                STOP_SIGNAL.name,
                timeout,
            )
            try:
                self._process.kill()
            except ProcessLookupError:
                pass
