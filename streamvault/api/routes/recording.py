"""
Recording REST endpoints.

Read-only view of active recording sessions plus the explicit stop
operation. Stopping is asynchronous: the session disappears from the list
once the recorder has exited and post-processing is done.
"""

from fastapi import APIRouter

from streamvault.api.dependencies import RecordingManagerDep
from streamvault.core.models import SessionInfo, StopRecordingRequest, StopRecordingResponse

router = APIRouter(tags=["recordings"])


@router.get("/recordings", response_model=list[SessionInfo])
async def list_recordings(manager: RecordingManagerDep):
    """All active recording sessions."""
    return manager.list_sessions()


@router.post("/stop-recording", response_model=StopRecordingResponse)
async def stop_recording(body: StopRecordingRequest, manager: RecordingManagerDep):
    """Stop recording a producer. Unknown producers are ignored."""
    await manager.stop_session(body.producer_id)
    return StopRecordingResponse(ok=True)
