"""Unit tests for recorder process supervision and capture classification."""

import asyncio
import signal
from pathlib import Path

import pytest

from streamvault.core.exceptions import ProcessSpawnError
from streamvault.services.recording.process import (
    ExitStatus,
    RecorderProcess,
    build_recorder_command,
    capture_size,
    classify_capture,
)

# ---------------------------------------------------------------------------
# ExitStatus
# ---------------------------------------------------------------------------


class TestExitStatus:
    def test_clean_exit(self):
        status = ExitStatus(0)
        assert status.code == 0
        assert status.exit_signal is None
        assert status.stopped_cleanly
        assert str(status) == "code=0 signal=None"

    def test_ffmpeg_interrupt_code(self):
        assert ExitStatus(255).stopped_cleanly

    def test_killed_by_sigint(self):
        status = ExitStatus(-signal.SIGINT)
        assert status.code is None
        assert status.exit_signal is signal.SIGINT
        assert status.stopped_cleanly
        assert str(status) == "code=None signal=SIGINT"

    def test_killed_by_sigkill_is_not_clean(self):
        status = ExitStatus(-signal.SIGKILL)
        assert status.exit_signal is signal.SIGKILL
        assert not status.stopped_cleanly

    def test_error_code_is_not_clean(self):
        assert not ExitStatus(1).stopped_cleanly


# ---------------------------------------------------------------------------
# classify_capture
# ---------------------------------------------------------------------------


class TestClassifyCapture:
    def _capture(self, tmp_path: Path, size: int) -> Path:
        path = tmp_path / "capture.ogg"
        path.write_bytes(b"\x00" * size)
        return path

    def test_interrupted_with_header_only_is_unusable(self, tmp_path):
        path = self._capture(tmp_path, 2 * 1024)
        assert not classify_capture(ExitStatus(-signal.SIGINT), path, 8192)
        assert not classify_capture(ExitStatus(255), path, 8192)

    @pytest.mark.parametrize("returncode", [255, -signal.SIGINT])
    def test_clean_stop_below_threshold_is_still_unusable(self, tmp_path, returncode):
        path = self._capture(tmp_path, 4 * 1024)
        status = ExitStatus(returncode)
        assert status.stopped_cleanly
        assert not classify_capture(status, path, 8192)

    def test_large_capture_is_usable_whatever_the_exit(self, tmp_path):
        path = self._capture(tmp_path, 50 * 1024)
        assert classify_capture(ExitStatus(0), path, 8192)
        assert classify_capture(ExitStatus(255), path, 8192)
        assert classify_capture(ExitStatus(1), path, 8192)

    def test_small_capture_with_clean_exit_is_usable(self, tmp_path):
        path = self._capture(tmp_path, 100)
        assert classify_capture(ExitStatus(0), path, 8192)

    def test_empty_capture_is_unusable(self, tmp_path):
        path = self._capture(tmp_path, 0)
        assert not classify_capture(ExitStatus(0), path, 8192)

    def test_missing_capture_is_unusable(self, tmp_path):
        assert not classify_capture(ExitStatus(0), tmp_path / "nope.ogg", 8192)

    def test_threshold_is_exclusive(self, tmp_path):
        path = self._capture(tmp_path, 8192)
        assert not classify_capture(ExitStatus(255), path, 8192)


def test_capture_size(tmp_path):
    path = tmp_path / "a.ogg"
    path.write_bytes(b"abc")
    assert capture_size(path) == 3
    assert capture_size(tmp_path / "missing.ogg") == 0
    assert capture_size(None) == 0


def test_build_recorder_command():
    cmd = build_recorder_command("ffmpeg", Path("/r/s.sdp"), Path("/r/s.ogg"))
    assert cmd[0] == "ffmpeg"
    assert cmd[cmd.index("-protocol_whitelist") + 1] == "file,udp,rtp"
    assert cmd[cmd.index("-i") + 1] == "/r/s.sdp"
    assert cmd[cmd.index("-c") + 1] == "copy"
    assert cmd[-1] == "/r/s.ogg"


# ---------------------------------------------------------------------------
# RecorderProcess
# ---------------------------------------------------------------------------


class TestRecorderProcess:
    async def test_spawn_missing_binary_raises(self, tmp_path):
        recorder = RecorderProcess(
            tmp_path / "s.sdp",
            tmp_path / "s.ogg",
            ffmpeg_binary=str(tmp_path / "no-such-ffmpeg"),
        )
        with pytest.raises(ProcessSpawnError):
            await recorder.spawn()
        assert recorder.pid is None
        assert not recorder.running

    async def test_wait_before_spawn_raises(self, tmp_path):
        recorder = RecorderProcess(tmp_path / "s.sdp", tmp_path / "s.ogg")
        with pytest.raises(RuntimeError):
            await recorder.wait()

    async def test_interrupt_sends_sigint(self, tmp_path, fake_ffmpeg):
        recorder = RecorderProcess(tmp_path / "s.sdp", tmp_path / "s.ogg")
        await recorder.spawn()
        assert recorder.running

        recorder.interrupt()
        status = await recorder.wait()

        assert fake_ffmpeg.recorders[0].signals == [signal.SIGINT]
        assert status.code == 255
        assert recorder.exit_status == status
        assert not recorder.running

    async def test_interrupt_after_exit_is_noop(self, tmp_path, fake_ffmpeg):
        recorder = RecorderProcess(tmp_path / "s.sdp", tmp_path / "s.ogg")
        await recorder.spawn()
        fake_ffmpeg.recorders[0].finish(0)
        await recorder.wait()

        recorder.interrupt(stop_timeout=1.0)
        assert fake_ffmpeg.recorders[0].signals == []

    async def test_ignored_interrupt_escalates_to_kill(self, tmp_path, fake_ffmpeg):
        fake_ffmpeg.interrupt_returncode = None
        recorder = RecorderProcess(tmp_path / "s.sdp", tmp_path / "s.ogg")
        await recorder.spawn()

        recorder.interrupt(stop_timeout=0.01)
        status = await asyncio.wait_for(recorder.wait(), timeout=1.0)

        assert fake_ffmpeg.recorders[0].signals == [signal.SIGINT, signal.SIGKILL]
        assert status.exit_signal is signal.SIGKILL

    async def test_zero_timeout_never_kills(self, tmp_path, fake_ffmpeg):
        fake_ffmpeg.interrupt_returncode = None
        recorder = RecorderProcess(tmp_path / "s.sdp", tmp_path / "s.ogg")
        await recorder.spawn()

        recorder.interrupt(stop_timeout=0)
        await asyncio.sleep(0.05)

        assert fake_ffmpeg.recorders[0].signals == [signal.SIGINT]
        assert recorder.running
        fake_ffmpeg.recorders[0].finish(0)
        await recorder.wait()
