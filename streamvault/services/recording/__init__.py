"""
Recording module - per-producer capture sessions.
"""

from streamvault.services.recording.cleanup import CleanupCoordinator
from streamvault.services.recording.manager import RecordingSessionManager
from streamvault.services.recording.session import RecordingSession, SessionRegistry

__all__ = [
    "CleanupCoordinator",
    "RecordingSession",
    "RecordingSessionManager",
    "SessionRegistry",
]
