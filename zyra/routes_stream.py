# zyra/routes_stream.py
from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncIterator
from enum import Enum
from typing import Any

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import StreamingResponse

from zyra.data_client import DeFiDataService
from zyra.errors import ZyraError
from zyra.routers.deps import get_data
from zyra.utils import utc_now_iso

router = APIRouter(tags=["realtime"])


class StreamType(str, Enum):
    ALL = "all"
    MARKET = "market"
    GAS = "gas"


def sse_frame(event: str, data: Any) -> str:
    """One SSE frame; each frame ends with a blank line."""
    return f"event: {event}\ndata: {json.dumps(data, default=str)}\n\n"


async def _snapshot(event: str, data: DeFiDataService) -> str:
    try:
        if event == "market":
            payload = (await data.get_market_summary()).model_dump(mode="json", by_alias=True)
        else:
            payload = (await data.get_gas_prices()).model_dump(mode="json", by_alias=True)
    except ZyraError as e:
        # the stream stays open; clients see the same envelope as the REST routes
        return sse_frame("error", {"event": event, "error": e.to_detail().model_dump(mode="json")})
    return sse_frame(event, payload)


async def realtime_events(
    request: Request,
    data: DeFiDataService,
    stream: StreamType,
    refresh_sec: float,
    max_events: int | None = None,
) -> AsyncIterator[str]:
    """
    Yields a `connection` frame, then one snapshot per selected resource every
    `refresh_sec` until the client disconnects or `max_events` snapshots were sent.
    Snapshots come from the shared cache, so many clients cost one upstream fetch per TTL.
    """
    yield sse_frame("connection", {"status": "connected", "type": stream.value, "timestamp": utc_now_iso()})

    events = ["market", "gas"] if stream is StreamType.ALL else [stream.value]
    sent = 0
    while True:
        for event in events:
            # Stop streaming if client disconnects
            if await request.is_disconnected():
                return
            yield await _snapshot(event, data)
            sent += 1
            if max_events is not None and sent >= max_events:
                return

        # Pace the stream
        await asyncio.sleep(refresh_sec)


@router.get("/api/realtime")
async def realtime(
    request: Request,
    type: StreamType = Query(StreamType.ALL),
    refresh_sec: float | None = Query(None, gt=0, le=300),
    max_events: int | None = Query(None, ge=1),
    data: DeFiDataService = Depends(get_data),
) -> StreamingResponse:
    """Server-Sent Events feed of market summaries and gas prices."""
    interval = refresh_sec or request.app.state.settings.realtime_interval_sec
    return StreamingResponse(
        realtime_events(request, data, type, interval, max_events),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
