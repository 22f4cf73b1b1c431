"""
Recording session state and the registry of active sessions.

A ``RecordingSession`` only records what has been allocated for one
producer and which lifecycle state it is in; the work of moving it
between states lives in ``RecordingSessionManager``.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from pathlib import Path

from streamvault.core.models import SessionInfo, SessionState
from streamvault.services.recording.process import ExitStatus, RecorderProcess
from streamvault.services.recording.relay import Relay

logger = logging.getLogger(__name__)

TERMINAL_STATES = frozenset({SessionState.closed, SessionState.failed})

# Allowed transitions; FAILED is additionally reachable from every non-terminal state.
_TRANSITIONS: dict[SessionState, frozenset[SessionState]] = {
    SessionState.created: frozenset({SessionState.relay_ready, SessionState.stopping}),
    SessionState.relay_ready: frozenset({SessionState.descriptor_written, SessionState.stopping}),
    SessionState.descriptor_written: frozenset(
        {SessionState.process_started, SessionState.stopping}
    ),
    SessionState.process_started: frozenset({SessionState.streaming, SessionState.stopping}),
    SessionState.streaming: frozenset({SessionState.stopping}),
    SessionState.stopping: frozenset({SessionState.post_processing, SessionState.closed}),
    SessionState.post_processing: frozenset({SessionState.closed}),
    SessionState.closed: frozenset(),
    SessionState.failed: frozenset(),
}


@dataclass(eq=False)
class RecordingSession:
    """Everything one producer's recording owns."""

    producer_id: str
    peer_id: str | None = None
    state: SessionState = SessionState.created
    relay: Relay | None = None
    recorder: RecorderProcess | None = None
    descriptor_path: Path | None = None
    output_path: Path | None = None
    derived_path: Path | None = None
    exit_status: ExitStatus | None = None
    stop_requested: bool = False
    closed: asyncio.Event = field(default_factory=asyncio.Event)

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def transition(self, new_state: SessionState) -> None:
        """Move to ``new_state``.

        Raises:
            ValueError: If the transition is not part of the lifecycle.
        """
        allowed = _TRANSITIONS[self.state]
        if new_state not in allowed and not (
            new_state is SessionState.failed and not self.is_terminal
        ):
            raise ValueError(
                f"Invalid session transition {self.state} -> {new_state} "
                f"for producer {self.producer_id}"
            )
        logger.info("Session %s: %s -> %s", self.producer_id, self.state, new_state)
        self.state = new_state
        if self.is_terminal:
            self.closed.set()

    def release_relay(self) -> None:
        """Close the consumer and relay transport, once."""
        if self.relay is not None:
            self.relay.close()
            self.relay = None

    async def wait_closed(self) -> None:
        await self.closed.wait()

    def snapshot(self) -> SessionInfo:
        return SessionInfo(
            producer_id=self.producer_id,
            peer_id=self.peer_id,
            state=self.state,
            output_path=str(self.output_path) if self.output_path else None,
            derived_path=str(self.derived_path) if self.derived_path else None,
        )


class SessionRegistry:
    """Active sessions keyed by producer ID.

    Insertion and removal go through an ``asyncio.Lock`` so a producer can
    never have two sessions, even when start calls race.
    """

    def __init__(self) -> None:
        self._sessions: dict[str, RecordingSession] = {}
        self._lock = asyncio.Lock()

    async def reserve(self, producer_id: str, peer_id: str | None = None) -> RecordingSession | None:
        """Insert a new CREATED session, or return None if one already exists."""
        async with self._lock:
            if producer_id in self._sessions:
                return None
            session = RecordingSession(producer_id=producer_id, peer_id=peer_id)
            self._sessions[producer_id] = session
            return session

    async def release(self, session: RecordingSession) -> None:
        """Remove ``session`` if it is still the one registered for its producer."""
        async with self._lock:
            if self._sessions.get(session.producer_id) is session:
                del self._sessions[session.producer_id]

    def get(self, producer_id: str) -> RecordingSession | None:
        return self._sessions.get(producer_id)

    def sessions(self) -> list[RecordingSession]:
        return list(self._sessions.values())

    def snapshot(self) -> list[SessionInfo]:
        return [s.snapshot() for s in self._sessions.values()]

    def __contains__(self, producer_id: object) -> bool:
        return producer_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)
