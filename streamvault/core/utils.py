"""Shared utility functions for StreamVault."""

import re
from datetime import datetime

_UNSAFE_FILENAME_CHARS = re.compile(r"[^A-Za-z0-9._-]")


def capture_timestamp(now: datetime | None = None) -> str:
    """Local wall-clock timestamp used in artifact names (``YYYYMMDD_HHMMSS``)."""
    return (now or datetime.now()).strftime("%Y%m%d_%H%M%S")


def safe_filename_part(value: str | None, fallback: str = "unknown") -> str:
    """Reduce a client-supplied ID to a single path component.

    >>> safe_filename_part("team/alice")
    'team_alice'
    >>> safe_filename_part("..")
    'unknown'
    """
    cleaned = _UNSAFE_FILENAME_CHARS.sub("_", value or "")
    if cleaned.strip(".") == "":
        return fallback
    return cleaned


def session_basename(peer_id: str | None, producer_id: str, now: datetime | None = None) -> str:
    """Deterministic per-session file stem shared by descriptor and artifacts.

    >>> session_basename("alice", "p1", datetime(2024, 5, 1, 9, 30, 0))
    '20240501_093000_peer-alice_prod-p1'
    """
    peer = safe_filename_part(peer_id)
    producer = safe_filename_part(producer_id)
    return f"{capture_timestamp(now)}_peer-{peer}_prod-{producer}"
