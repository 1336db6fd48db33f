"""GET /api/stream - Server-Sent Events feed of city snapshots.

The first event is the cached snapshot, or the result of a forced refresh
when the city has none yet. Later events arrive whenever the city is
refreshed by polling or by any other client. Idle periods are filled with
``: ping`` comments so proxies keep the connection open.
"""

import asyncio
import json
import logging
from typing import Any, AsyncIterator, Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import StreamingResponse

from ..config import Settings
from ..services.coordinator import Coordinator
from .dependencies import get_coordinator, get_settings, rate_limit

logger = logging.getLogger(__name__)

router = APIRouter()

STREAM_HEADERS = {
    "Cache-Control": "no-cache, no-transform",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def sse_data(payload: Any) -> str:
    return f"data: {json.dumps(payload, ensure_ascii=False)}\n\n"


async def snapshot_events(
    coordinator: Coordinator,
    city: Optional[str],
    keepalive_sec: float,
    retry_ms: int,
) -> AsyncIterator[str]:
    state, queue = coordinator.subscribe(city)
    try:
        yield f"retry: {retry_ms}\n\n"
        try:
            cached = await coordinator.prime_subscriber(state, city)
        except Exception as exc:
            logger.warning("Initial refresh for stream %s failed: %s", state.key, exc)
            yield sse_data({"error": str(exc) or "Refresh failed"})
        else:
            if cached is not None:
                yield sse_data(cached.to_json_dict())

        while True:
            try:
                snapshot = await asyncio.wait_for(queue.get(), timeout=keepalive_sec)
            except asyncio.TimeoutError:
                yield ": ping\n\n"
                continue
            yield sse_data(snapshot.to_json_dict())
    finally:
        coordinator.unsubscribe(state, queue)


@router.get("/stream", dependencies=[Depends(rate_limit("stream"))])
async def stream_weather(
    city: Optional[str] = Query(None),
    coordinator: Coordinator = Depends(get_coordinator),
    settings: Settings = Depends(get_settings),
) -> StreamingResponse:
    return StreamingResponse(
        snapshot_events(coordinator, city, settings.stream_keepalive_sec, settings.stream_retry_ms),
        media_type="text/event-stream",
        headers=STREAM_HEADERS,
    )
