# Load environment variables FIRST (before any other imports)
from __future__ import annotations

from dotenv import load_dotenv
load_dotenv()

import asyncio
import json
import logging
from typing import Optional

from fastapi import FastAPI, HTTPException, Request
from starlette.responses import StreamingResponse

from core.engine import get_playback_engine
from feed.socket_feed import EventFeedClient

# Silence verbose loggers
logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
logging.getLogger("websockets").setLevel(logging.WARNING)
logger = logging.getLogger("web_server")

app = FastAPI(title="Geotape")

_feed: Optional[EventFeedClient] = None


@app.on_event("startup")
async def startup_event():
    """Start the playback timers and, when configured, the event feed."""
    global _feed
    engine = get_playback_engine()
    await engine.start()

    if engine.settings.feed_url:
        _feed = EventFeedClient(
            engine.settings.feed_url,
            engine,
            reconnect_seconds=engine.settings.feed_reconnect_seconds,
        )
        await _feed.start()
    else:
        logger.warning("FEED_URL not set; events only arrive through POST /api/events")


@app.on_event("shutdown")
async def shutdown_event():
    global _feed
    if _feed:
        await _feed.stop()
        _feed = None
    await get_playback_engine().stop()


# =============================================================================
# View
# =============================================================================

@app.get("/api/view")
async def get_view():
    """Active events and visible locations at the clock position."""
    return get_playback_engine().get_view().to_dict()


@app.get("/api/view/stream")
async def view_stream():
    """
    SSE endpoint: a snapshot on connect, then one message per view change.
    Usage: const es = new EventSource('/api/view/stream');
    """
    engine = get_playback_engine()
    queue = engine.subscribe()

    async def event_generator():
        try:
            while True:
                try:
                    message = await asyncio.wait_for(queue.get(), timeout=15.0)
                    yield f"event: {message['type']}\ndata: {json.dumps(message['data'], default=str)}\n\n"
                except asyncio.TimeoutError:
                    # Send keepalive
                    yield ": keepalive\n\n"
        except asyncio.CancelledError:
            pass
        finally:
            engine.unsubscribe(queue)

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )


# =============================================================================
# Clock control
# =============================================================================

@app.get("/api/clock")
async def get_clock():
    return get_playback_engine().clock.get_state()


@app.post("/api/clock/drag/start")
async def clock_drag_start():
    """User grabbed the slider; autoplay pauses."""
    engine = get_playback_engine()
    engine.begin_drag()
    return engine.clock.get_state()


@app.post("/api/clock/drag")
async def clock_drag(ts: int):
    """Live drag position (epoch ms)."""
    engine = get_playback_engine()
    moved = engine.drag(ts)
    return {"success": moved, "clock": engine.clock.get_state()}


@app.post("/api/clock/drag/end")
async def clock_drag_end(ts: int):
    """Slider released; playback resumes from the start of that minute."""
    engine = get_playback_engine()
    engine.end_drag(ts)
    return engine.clock.get_state()


# =============================================================================
# Click / highlights
# =============================================================================

@app.post("/api/locations/{location}/click")
async def click_location(location: str):
    """Highlight the event at a location nearest to the clock."""
    event = get_playback_engine().on_location_clicked(location)
    return {"event": event.to_dict() if event else None}


@app.get("/api/highlights")
async def get_highlights():
    engine = get_playback_engine()
    engine.expire_highlights()
    return {"highlights": engine.get_highlights()}


# =============================================================================
# Ingest & stats
# =============================================================================

@app.post("/api/events")
async def post_events(request: Request):
    """Inject one decoded feed message (an event object or an array)."""
    try:
        message = await request.json()
    except json.JSONDecodeError:
        raise HTTPException(status_code=400, detail="Body must be JSON")
    if not isinstance(message, (dict, list)):
        raise HTTPException(status_code=400, detail="Body must be an object or an array")

    admitted = get_playback_engine().ingest(message)
    received = len(message) if isinstance(message, list) else 1
    return {"received": received, "admitted": len(admitted), "ids": [e.id for e in admitted]}


@app.get("/api/stats")
async def get_stats():
    stats = get_playback_engine().get_stats()
    stats["feed_client"] = _feed.get_stats() if _feed else None
    return stats


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
