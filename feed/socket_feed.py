"""
Geotape - Event Feed Client
Receives raw activity events from the relay's WebSocket and hands each
decoded message to the playback engine.

One frame is either a single event object or an array of event objects.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional, Union

import orjson
import websockets
from websockets.exceptions import ConnectionClosedError, WebSocketException

from core.errors import MalformedEvent, TransportError

logger = logging.getLogger("event_feed")


def decode_message(frame: Union[str, bytes]) -> Any:
    """Decode one frame into an event mapping or a list of them."""
    try:
        payload = orjson.loads(frame)
    except orjson.JSONDecodeError as e:
        raise MalformedEvent(f"Frame is not JSON: {e}") from e
    if not isinstance(payload, (dict, list)):
        raise MalformedEvent(f"Frame is {type(payload).__name__}, not an object or array")
    return payload


class EventFeedClient:
    """
    WebSocket consumer for the activity event relay.

    Connection failures are reported to the engine as TransportError.
    Reconnecting is this client's job, not the engine's.
    """

    def __init__(self, url: str, engine, reconnect_seconds: float = 5.0):
        self.url = url
        self.engine = engine
        self.reconnect_seconds = reconnect_seconds
        self.ws = None
        self._running = False
        self._listen_task: Optional[asyncio.Task] = None

        # Stats
        self._frames = 0
        self._dropped_frames = 0
        self._connects = 0

    async def connect(self) -> bool:
        """Establish WebSocket connection."""
        try:
            self.ws = await websockets.connect(
                self.url,
                ping_interval=30,
                ping_timeout=10,
                open_timeout=20,
            )
        except (OSError, asyncio.TimeoutError, WebSocketException) as e:
            self.ws = None
            self.engine.report_transport_error(TransportError(f"Failed to connect to {self.url}: {e}"))
            return False

        self._connects += 1
        self.engine.report_connection(True)
        logger.info(f"Connected to event feed: {self.url}")
        return True

    def handle_frame(self, frame: Union[str, bytes]) -> int:
        """Decode one frame and ingest it. Returns the number of admitted events."""
        self._frames += 1
        try:
            message = decode_message(frame)
        except MalformedEvent as e:
            self._dropped_frames += 1
            logger.debug(f"Dropped frame: {e}")
            return 0
        return len(self.engine.ingest(message))

    async def _consume(self):
        try:
            async for frame in self.ws:
                self.handle_frame(frame)
        except ConnectionClosedError as e:
            self.engine.report_transport_error(TransportError(f"Feed connection lost: {e}"))
        finally:
            self.engine.report_connection(False)
            self.ws = None

    async def listen(self):
        """
        Consume frames until stopped.
        Blocking call. Reconnects after reconnect_seconds on failure.
        """
        self._running = True
        try:
            while self._running:
                if self.ws is None and not await self.connect():
                    await asyncio.sleep(self.reconnect_seconds)
                    continue
                await self._consume()
                if self._running:
                    await asyncio.sleep(self.reconnect_seconds)
        except asyncio.CancelledError:
            pass

    async def start(self):
        if self._listen_task and not self._listen_task.done():
            return
        self._listen_task = asyncio.create_task(self.listen())

    async def stop(self):
        """Close the socket and cancel the listen task."""
        self._running = False
        if self.ws is not None:
            await self.ws.close()
            self.ws = None
        if self._listen_task:
            self._listen_task.cancel()
            try:
                await self._listen_task
            except asyncio.CancelledError:
                pass
            self._listen_task = None
        logger.info("Event feed stopped")

    def get_stats(self) -> dict:
        return {
            "url": self.url,
            "running": self._running,
            "connected": self.ws is not None,
            "connects": self._connects,
            "frames": self._frames,
            "dropped_frames": self._dropped_frames,
        }
