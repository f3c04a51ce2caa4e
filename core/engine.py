"""
Playback Engine

Single owner of the event cache, the virtual clock and the highlight queue.

Triggers (all run to completion on the event loop, never interleaved):
- inbound feed messages -> ingest()
- cleanup timer         -> sweep()
- autoplay timer        -> tick()
- user input            -> begin_drag() / drag() / end_drag() / on_location_clicked()

Every mutation re-projects the view and pushes it to subscribers.
"""

import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional, Sequence, Set

from config import EngineSettings, load_settings
from core.errors import TransportError
from core.event_index import TimeLocationIndex
from core.highlight import EphemeralHighlight, HighlightEntry
from core.models import Event, ParamFilter, Rejected, format_ms, now_ms
from core.normalizer import EventNormalizer, parse_param_filters
from core.projector import ViewProjector, ViewSnapshot
from core.virtual_clock import VirtualClock

logger = logging.getLogger("playback_engine")


class PlaybackEngine:
    """
    Real-time event cache with a time-scrubbable view.

    Responsibilities:
    - Admit feed events into the time/location index
    - Evict events that fall out of the retention window
    - Drive the virtual clock (autoplay and drag)
    - Resolve location clicks into fading highlights
    - Publish view snapshots to subscribers
    """

    def __init__(
        self,
        settings: Optional[EngineSettings] = None,
        clock: Callable[[], int] = now_ms,
    ):
        self.settings = settings or load_settings()
        self._clock = clock

        self.normalizer = EventNormalizer(
            geo_table=self.settings.geo_table,
            default_location=self.settings.default_location,
            allowed_types=self.settings.allowed_types,
            allowed_topics=self.settings.allowed_topics,
            ignored_types=self.settings.ignored_types,
        )
        self.param_filters: List[ParamFilter] = parse_param_filters(self.settings.event_filters)
        self.index = TimeLocationIndex()
        self.clock = VirtualClock(
            min_date_fn=self.min_date,
            clock=clock,
            autoplay_interval_ms=self.settings.autoplay_interval_ms,
        )
        self.projector = ViewProjector(self.normalizer.locations)
        self.highlight = EphemeralHighlight(self.settings.fade_duration_ms)

        self._view: ViewSnapshot = self.projector.project(self.index, self.clock.position)

        # Subscribers (asyncio.Queue per subscriber)
        self._subscribers: List[asyncio.Queue] = []

        # Background tasks
        self._running = False
        self._autoplay_task: Optional[asyncio.Task] = None
        self._cleanup_task: Optional[asyncio.Task] = None
        self._highlight_timers: Set[asyncio.TimerHandle] = set()

        # Stats
        self._messages = 0
        self._feed_connected = False
        self._transport_errors = 0
        self._last_transport_error: Optional[str] = None
        self._last_transport_error_ts: Optional[int] = None

        logger.info(
            f"PlaybackEngine initialized (retention={self.settings.retention_days}d, "
            f"filters={len(self.param_filters)})"
        )

    def min_date(self) -> int:
        """Earliest origin timestamp allowed in the cache right now."""
        return self._clock() - self.settings.retention_ms

    # =========================================================================
    # Feed
    # =========================================================================

    def ingest(
        self,
        message: Any,
        param_filters: Optional[Sequence[ParamFilter]] = None,
    ) -> List[Event]:
        """
        Admit one decoded feed message (an event object or a list of them).

        Returns:
            The events that passed admission, in arrival order
        """
        items = message if isinstance(message, list) else [message]
        filters = self.param_filters if param_filters is None else param_filters
        min_date = self.min_date()
        self._messages += 1

        admitted: List[Event] = []
        for raw in items:
            result = self.normalizer.normalize(raw, filters, min_date)
            if isinstance(result, Rejected):
                continue
            if self.index.insert(result):
                admitted.append(result)

        if admitted:
            logger.debug(f"Admitted {len(admitted)}/{len(items)} events")
            self._refresh()
        return admitted

    def report_connection(self, connected: bool):
        if connected != self._feed_connected:
            logger.info(f"Feed {'connected' if connected else 'disconnected'}")
        self._feed_connected = connected

    def report_transport_error(self, error: TransportError):
        """Surface a feed failure to the operator. The engine never retries."""
        self._feed_connected = False
        self._transport_errors += 1
        self._last_transport_error = str(error)
        self._last_transport_error_ts = self._clock()
        logger.error(f"Transport error: {error}")
        self._publish({
            "type": "transport_error",
            "data": {"error": str(error), "ts": self._last_transport_error_ts},
        })

    # =========================================================================
    # Cleanup
    # =========================================================================

    def sweep(self) -> List[Event]:
        """Evict expired events and drop their highlights by identity."""
        removed = self.index.evict(self.min_date())
        if removed:
            self.highlight.remove_events({e.id for e in removed})
            self._refresh()
        return removed

    # =========================================================================
    # Clock control
    # =========================================================================

    def tick(self) -> bool:
        advanced = self.clock.tick()
        if advanced:
            self._refresh()
        return advanced

    def begin_drag(self):
        self.clock.begin_drag()

    def drag(self, timestamp: int) -> bool:
        moved = self.clock.drag(timestamp)
        if moved:
            self._refresh()
        return moved

    def end_drag(self, timestamp: int):
        self.clock.end_drag(timestamp)
        self._refresh()

    # =========================================================================
    # Click / highlight
    # =========================================================================

    def on_location_clicked(self, location: str) -> Optional[Event]:
        """
        Highlight the event at a location closest in time to the clock.

        Ties go to the first event in the location bucket.
        """
        events = self.index.events_at_location(location)
        if not events:
            return None

        position = self.clock.position
        nearest: Optional[Event] = None
        min_distance = None
        for evt in events:
            distance = abs(evt.origin_timestamp - position)
            if min_distance is None or distance < min_distance:
                min_distance = distance
                nearest = evt

        self.highlight.add(nearest, self._clock())
        self._schedule_highlight_expiry()
        return nearest

    def expire_highlights(self, now: Optional[int] = None) -> List[HighlightEntry]:
        return self.highlight.expire_due(self._clock() if now is None else now)

    def _schedule_highlight_expiry(self, delay_ms: Optional[int] = None):
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running loop; highlight expiry left to the caller")
            return

        delay_ms = self.settings.fade_duration_ms if delay_ms is None else delay_ms

        def _fire():
            self._highlight_timers.discard(handle)
            now = self._clock()
            expired = self.highlight.expire_due(now)
            if expired:
                self._publish({"type": "highlights", "data": self.get_highlights()})

            # fired before the wall clock reached the front entry: re-arm
            next_expiry = self.highlight.next_expiry()
            if (
                next_expiry is not None
                and next_expiry > now
                and len(self._highlight_timers) < len(self.highlight)
            ):
                self._schedule_highlight_expiry(next_expiry - now)

        handle = loop.call_later(max(delay_ms, 0) / 1000, _fire)
        self._highlight_timers.add(handle)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self):
        """Start the autoplay and cleanup timers."""
        if self._running:
            return
        self._running = True
        self._autoplay_task = asyncio.create_task(self._autoplay_loop())
        self._cleanup_task = asyncio.create_task(self._cleanup_loop())
        logger.info("PlaybackEngine started")

    async def stop(self):
        """Cancel both timers and any pending highlight expiries."""
        self._running = False
        for task in (self._autoplay_task, self._cleanup_task):
            if task:
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._autoplay_task = None
        self._cleanup_task = None

        for handle in self._highlight_timers:
            handle.cancel()
        self._highlight_timers.clear()
        logger.info("PlaybackEngine stopped")

    @property
    def is_running(self) -> bool:
        return self._running

    async def _autoplay_loop(self):
        interval = self.settings.autoplay_interval_ms / 1000
        try:
            while self._running:
                try:
                    self.tick()
                except Exception as e:
                    logger.error(f"Autoplay tick error: {e}")
                await asyncio.sleep(interval)
        except asyncio.CancelledError:
            pass

    async def _cleanup_loop(self):
        interval = self.settings.cleanup_interval_ms / 1000
        try:
            while self._running:
                await asyncio.sleep(interval)
                try:
                    self.sweep()
                except Exception as e:
                    logger.error(f"Cleanup sweep error: {e}")
        except asyncio.CancelledError:
            pass

    # =========================================================================
    # View & subscribers
    # =========================================================================

    def _refresh(self):
        self._view = self.projector.project(self.index, self.clock.position)
        if self._subscribers:
            self._publish({"type": "view", "data": self._view.to_dict()})

    def subscribe(self) -> asyncio.Queue:
        """Create a new subscriber queue; it receives the current view first."""
        q: asyncio.Queue = asyncio.Queue(maxsize=50)
        q.put_nowait({"type": "view", "data": self._view.to_dict()})
        self._subscribers.append(q)
        return q

    def unsubscribe(self, q: asyncio.Queue):
        if q in self._subscribers:
            self._subscribers.remove(q)

    def _publish(self, message: Dict):
        """Push to all subscribers (non-blocking, drop oldest when full)."""
        for q in self._subscribers:
            if q.full():
                q.get_nowait()
            q.put_nowait(message)

    def get_view(self) -> ViewSnapshot:
        return self._view

    def get_highlights(self) -> List[Dict]:
        return [entry.to_dict() for entry in self.highlight.entries()]

    def get_stats(self) -> Dict:
        return {
            "running": self._running,
            "min_date": self.min_date(),
            "min_date_utc": format_ms(self.min_date()),
            "messages": self._messages,
            "admission": self.normalizer.get_stats(),
            "index": self.index.get_stats(),
            "clock": self.clock.get_state(),
            "highlights": len(self.highlight),
            "subscribers": len(self._subscribers),
            "feed": {
                "connected": self._feed_connected,
                "errors": self._transport_errors,
                "last_error": self._last_transport_error,
                "last_error_ts": self._last_transport_error_ts,
            },
        }


# =============================================================================
# Global accessor
# =============================================================================

_engine: Optional[PlaybackEngine] = None


def get_playback_engine() -> PlaybackEngine:
    """Get the global PlaybackEngine instance."""
    global _engine
    if _engine is None:
        _engine = PlaybackEngine()
    return _engine
