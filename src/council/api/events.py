"""SSE (Server-Sent Events) endpoint for live proposal snapshots."""

from __future__ import annotations

import asyncio
import json
import logging

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import StreamingResponse

from council.core.event_bus import PROPOSAL_EVENT_TYPES, EventBus

router = APIRouter(prefix="/api/events", tags=["events"])
logger = logging.getLogger(__name__)

_HEARTBEAT_INTERVAL = 15  # seconds

# Anonymous clients can hold streams open indefinitely.
_MAX_SSE_CONNECTIONS = 100
_connection_semaphore = asyncio.Semaphore(_MAX_SSE_CONNECTIONS)


def _get_bus(request: Request) -> EventBus:
    """Get the EventBus from app state."""
    return request.app.state.event_bus


@router.get("/stream")
async def sse_stream(
    request: Request,
    event_type: str | None = None,
    proposal_id: str | None = None,
) -> StreamingResponse:
    """Server-Sent Events stream of proposal snapshots.

    Query params:
        event_type: optional filter, one of the published event types
                    (e.g. "proposal.updated"). All events if omitted.
        proposal_id: optional filter, only snapshots of this proposal.

    Each event carries the full proposal document, so a client renders
    whatever it received last.

    Errors:
        400: unknown event_type value
        429: global connection limit reached
    """
    if event_type is not None and event_type not in PROPOSAL_EVENT_TYPES:
        raise HTTPException(
            status_code=400,
            detail=(
                f"Unknown event_type {event_type!r}. "
                f"Valid values: {sorted(PROPOSAL_EVENT_TYPES)}"
            ),
        )

    if _connection_semaphore.locked():
        raise HTTPException(
            status_code=429,
            detail=(
                f"Too many concurrent SSE connections "
                f"(limit: {_MAX_SSE_CONNECTIONS}). Try again later."
            ),
        )

    bus = _get_bus(request)
    snapshot_filter = (lambda data: data.get("id") == proposal_id) if proposal_id else None

    async def generate():
        async with _connection_semaphore:
            yield ": connected\n\n"

            async with bus.subscribe(event_type, snapshot_filter) as sub:
                while True:
                    if await request.is_disconnected():
                        break
                    event = await sub.get(timeout=_HEARTBEAT_INTERVAL)
                    if event is None:
                        yield ": heartbeat\n\n"
                        continue
                    data = json.dumps(event, default=str)
                    yield f"event: {event['type']}\ndata: {data}\n\n"

    return StreamingResponse(
        generate(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )


@router.get("/health")
async def events_health(request: Request) -> dict:
    """Subscriber count and SSE connection stats."""
    bus = _get_bus(request)
    return {
        "status": "ok",
        "subscribers": bus.subscriber_count,
        "active_sse_connections": _MAX_SSE_CONNECTIONS - _connection_semaphore._value,  # noqa: SLF001
        "max_sse_connections": _MAX_SSE_CONNECTIONS,
    }
