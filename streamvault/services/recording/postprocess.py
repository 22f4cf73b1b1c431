"""
Post-conversion of raw Ogg/Opus captures to MP3.

Runs after the recorder has exited. A failed conversion leaves the raw
capture in place and removes any partial MP3.
"""

import asyncio
import logging
from pathlib import Path

from streamvault.core.exceptions import PostConversionError, ProcessSpawnError

logger = logging.getLogger(__name__)

DEFAULT_BITRATE = "160k"
DEFAULT_SAMPLE_RATE = 44100  # 44.1 kHz plays everywhere
DEFAULT_CHANNELS = 2


def derived_path_for(raw_path: Path) -> Path:
    """MP3 path next to the raw capture (``x.ogg`` -> ``x.mp3``)."""
    return raw_path.with_suffix(".mp3")


def build_transcode_command(
    ffmpeg_binary: str,
    raw_path: Path,
    mp3_path: Path,
    bitrate: str = DEFAULT_BITRATE,
    sample_rate: int = DEFAULT_SAMPLE_RATE,
    channels: int = DEFAULT_CHANNELS,
) -> list[str]:
    return [
        ffmpeg_binary,
        "-hide_banner",
        "-loglevel", "warning",
        "-i", str(raw_path),
        "-vn",
        "-c:a", "libmp3lame",
        "-b:a", bitrate,
        "-ar", str(sample_rate),
        "-ac", str(channels),
        str(mp3_path),
    ]


async def transcode_to_mp3(
    raw_path: Path,
    bitrate: str = DEFAULT_BITRATE,
    sample_rate: int = DEFAULT_SAMPLE_RATE,
    channels: int = DEFAULT_CHANNELS,
    keep_raw: bool = True,
    ffmpeg_binary: str = "ffmpeg",
) -> Path:
    """Convert ``raw_path`` to MP3 and optionally delete the raw file.

    Args:
        raw_path: Finished Ogg/Opus capture.
        bitrate: Target MP3 bitrate, e.g. "160k".
        sample_rate: Target sample rate in Hz.
        channels: Target channel count.
        keep_raw: Keep ``raw_path`` after a successful conversion.
        ffmpeg_binary: Executable to run.

    Returns:
        Path of the MP3 file.

    Raises:
        ProcessSpawnError: If the transcoder cannot be started.
        PostConversionError: If the transcoder exits non-zero.
    """
    mp3_path = derived_path_for(raw_path)
    command = build_transcode_command(
        ffmpeg_binary, raw_path, mp3_path, bitrate, sample_rate, channels
    )
    try:
        process = await asyncio.create_subprocess_exec(
            *command,
            stdin=asyncio.subprocess.DEVNULL,
        )
    except OSError as exc:
        raise ProcessSpawnError(command[0], str(exc)) from exc

    returncode = await process.wait()
    logger.info("[post] mp3 exit code=%s -> %s", returncode, mp3_path)

    if returncode != 0:
        mp3_path.unlink(missing_ok=True)
        raise PostConversionError(
            f"Transcoder exited with code {returncode} for {raw_path}"
        )

    if not keep_raw:
        try:
            raw_path.unlink(missing_ok=True)
        except OSError:
            logger.warning("Could not remove raw capture %s", raw_path, exc_info=True)
    return mp3_path
