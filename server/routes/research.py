"""Research endpoints: submit a query, follow its event stream, read its history."""

import uuid

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, status
from fastapi.responses import StreamingResponse

from models.session import Session
from orchestrator.broadcast import BroadcastChannel
from orchestrator.pipeline import ResearchPipeline
from server.dependencies import get_api_key, get_channel, get_pipeline
from server.schemas.requests import ResearchRequest
from server.schemas.responses import ResearchAcceptedDTO, SessionEventsDTO
from server.utils import is_terminal_event, to_ndjson
from utils.logger import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/v1", tags=["Research"])


async def _run_research(pipeline: ResearchPipeline, query: str, session: Session) -> None:
    # Failures are already on the session's channel as progress{failed}
    try:
        await pipeline.run(query, session)
    except Exception as e:
        logger.error(
            f"Background research run failed: {e}",
            extra={"extra_fields": {**session.log_fields(), "error_type": type(e).__name__}},
        )


def _require_session(channel: BroadcastChannel, session_id: str) -> None:
    if not channel.has_session(session_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Unknown session")


@router.post("/research", response_model=ResearchAcceptedDTO, status_code=status.HTTP_202_ACCEPTED)
async def submit_research(
    request: ResearchRequest,
    background_tasks: BackgroundTasks,
    pipeline: ResearchPipeline = Depends(get_pipeline),
    channel: BroadcastChannel = Depends(get_channel),
    api_key: str = Depends(get_api_key),
):
    """Accept a research query and run it in the background."""
    session = Session(
        session_id=request.session_id or str(uuid.uuid4()),
        user_id=request.user_id or "anonymous",
    )
    if channel.has_session(session.session_id):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Session id already in use")

    channel.open_session(session.session_id)
    background_tasks.add_task(_run_research, pipeline, request.query, session)
    logger.info("Research accepted", extra={"extra_fields": session.log_fields()})
    return ResearchAcceptedDTO(session_id=session.session_id)


@router.get("/research/{session_id}/stream")
async def stream_research(
    session_id: str,
    channel: BroadcastChannel = Depends(get_channel),
    api_key: str = Depends(get_api_key),
):
    """Stream a session's events as NDJSON: history first, then live, until the run ends."""
    _require_session(channel, session_id)
    subscription = channel.subscribe(session_id, replay=True)

    async def event_stream():
        try:
            async for message in subscription:
                yield to_ndjson(message.to_dict())
                if is_terminal_event(message.event):
                    break
        finally:
            subscription.close()

    return StreamingResponse(
        event_stream(),
        media_type="application/x-ndjson",
        headers={
            "Cache-Control": "no-cache",
            "X-Accel-Buffering": "no",
        },
    )


@router.get("/research/{session_id}/events", response_model=SessionEventsDTO)
async def research_events(
    session_id: str,
    channel: BroadcastChannel = Depends(get_channel),
    api_key: str = Depends(get_api_key),
):
    """Return every event published so far for a session."""
    _require_session(channel, session_id)
    return SessionEventsDTO(
        session_id=session_id,
        events=[m.to_dict() for m in channel.history(session_id)],
        subscriber_count=channel.subscriber_count(session_id),
    )
