"""Container lifecycle and log API endpoints."""

import asyncio
import json
import logging
from collections.abc import AsyncGenerator
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.responses import JSONResponse, StreamingResponse

from app.dependencies import get_lifecycle, get_log_streamer
from app.exceptions import DockPulseError
from app.models.lifecycle import LifecycleOutcome
from app.schemas.launch import LaunchRequest
from app.services.auth import require_auth
from app.services.lifecycle import LifecycleController
from app.services.log_streamer import LogStreamer, QueueLogSink
from app.utils.error_handling import outcome_body, outcome_status, raise_for_error
from app.utils.security import sanitize_log_message

logger = logging.getLogger(__name__)

router = APIRouter()

SSE_HEARTBEAT_SECONDS = 15


def sse_data(line: str) -> str:
    """Frame one log line as an SSE message.

    SSE treats a bare CR as a line break, so each CR-separated segment of the
    line gets its own ``data:`` field and the client receives them joined by
    newlines instead of losing everything after the first CR.
    """
    fields = "".join(f"data: {part}\n" for part in line.split("\r"))
    return f"{fields}\n"


def _outcome_response(outcome: LifecycleOutcome, success_status: int = 200) -> JSONResponse:
    code = success_status if outcome.ok else outcome_status(outcome)
    return JSONResponse(status_code=code, content=outcome_body(outcome))


@router.get("")
async def list_containers(
    admin: Optional[dict] = Depends(require_auth),
    lifecycle: LifecycleController = Depends(get_lifecycle),
):
    """List running containers."""
    try:
        containers = await lifecycle.list_containers()
    except DockPulseError as e:
        raise_for_error(logger, e, "Failed to list containers")
    return [c.to_dict() for c in containers]


@router.post("")
async def launch_container(
    launch: LaunchRequest,
    admin: Optional[dict] = Depends(require_auth),
    lifecycle: LifecycleController = Depends(get_lifecycle),
):
    """Create a container from an image and start it."""
    outcome = await lifecycle.launch(launch.to_spec())
    return _outcome_response(outcome, success_status=status.HTTP_201_CREATED)


@router.post("/{container_id}/start")
async def start_container(
    container_id: str,
    admin: Optional[dict] = Depends(require_auth),
    lifecycle: LifecycleController = Depends(get_lifecycle),
):
    return _outcome_response(await lifecycle.start(container_id))


@router.post("/{container_id}/stop")
async def stop_container(
    container_id: str,
    admin: Optional[dict] = Depends(require_auth),
    lifecycle: LifecycleController = Depends(get_lifecycle),
):
    return _outcome_response(await lifecycle.stop(container_id))


@router.post("/{container_id}/restart")
async def restart_container(
    container_id: str,
    admin: Optional[dict] = Depends(require_auth),
    lifecycle: LifecycleController = Depends(get_lifecycle),
):
    return _outcome_response(await lifecycle.restart(container_id))


@router.get("/{container_id}/logs")
async def container_logs(
    container_id: str,
    admin: Optional[dict] = Depends(require_auth),
    tail: Optional[int] = Query(None, ge=1, description="Number of lines from the end"),
    streamer: LogStreamer = Depends(get_log_streamer),
):
    """Static tail of a container's logs."""
    lines = streamer.clamp_tail(tail)
    try:
        logs = await streamer.tail(container_id, lines)
    except DockPulseError as e:
        raise_for_error(
            logger, e, f"Failed to read logs for {sanitize_log_message(container_id)}"
        )
    return {"container_id": container_id, "tail": lines, "logs": logs}


@router.get("/{container_id}/logs/stream")
async def stream_container_logs(
    container_id: str,
    request: Request,
    admin: Optional[dict] = Depends(require_auth),
    tail: Optional[int] = Query(None, ge=1, description="Backlog lines before following"),
    streamer: LogStreamer = Depends(get_log_streamer),
) -> StreamingResponse:
    """Server-sent events stream of a container's log lines.

    Each log line is one message (see ``sse_data``). A final ``close`` event
    carries the reason the stream ended.
    """

    async def event_generator() -> AsyncGenerator[str]:
        # Subscribing here ties the runtime follow to a body that is actually sent
        sink = QueueLogSink()
        session = await streamer.subscribe(container_id, tail, sink)
        try:
            yield f"event: open\ndata: {json.dumps({'session_id': session.id})}\n\n"

            while True:
                if await request.is_disconnected():
                    break
                try:
                    line = await asyncio.wait_for(sink.receive(), timeout=SSE_HEARTBEAT_SECONDS)
                except TimeoutError:
                    # Heartbeat to keep the connection alive
                    yield "event: ping\ndata: {}\n\n"
                    continue
                if line is None:
                    payload = {
                        "reason": session.close_reason,
                        "error_class": sink.error.error_class if sink.error else None,
                    }
                    yield f"event: close\ndata: {json.dumps(payload)}\n\n"
                    break
                yield sse_data(line)
        finally:
            await streamer.unsubscribe(session.id)

    return StreamingResponse(event_generator(), media_type="text/event-stream")
