"""
Virtual Clock

Playback position for the time-scrubbable view.

States:
- PLAYING: autoplay ticks advance one virtual minute per tick
- DRAGGING: the user owns the position; ticks are no-ops

The position is always kept inside [min_date, now].
"""

import logging
from enum import Enum
from typing import Callable, Dict

from core.errors import ClockBound
from core.models import MINUTE_MS, format_ms, minute_floor, now_ms

logger = logging.getLogger("virtual_clock")


class ClockState(Enum):
    """Playback clock state."""
    PLAYING = "playing"
    DRAGGING = "dragging"


class VirtualClock:
    """
    Virtual clock driven by autoplay ticks and user drags.

    Drag positions are stored as given so live dragging stays smooth;
    the projection truncates to the minute on read. Ending a drag floors
    the position so resumed playback lines up with bucket keys.
    """

    def __init__(
        self,
        min_date_fn: Callable[[], int],
        clock: Callable[[], int] = now_ms,
        autoplay_interval_ms: int = 1000,
    ):
        self._min_date_fn = min_date_fn
        self._clock = clock
        self.autoplay_interval_ms = autoplay_interval_ms

        self.state = ClockState.PLAYING
        self._position: int = min_date_fn()

        # Stats
        self._ticks = 0
        self._clamps: Dict[str, int] = {b.value: 0 for b in ClockBound}

    @property
    def position(self) -> int:
        return self._position

    @property
    def minute(self) -> int:
        return minute_floor(self._position)

    @property
    def is_overridden(self) -> bool:
        return self.state == ClockState.DRAGGING

    def _clamp(self, target: int) -> int:
        """Keep target inside [min_date, now]."""
        now = self._clock()
        if target > now:
            self._clamps[ClockBound.OVERFLOW.value] += 1
            logger.debug(f"Clock overflow clamped: {target} -> {now}")
            return now
        min_date = self._min_date_fn()
        if target < min_date:
            self._clamps[ClockBound.UNDERFLOW.value] += 1
            logger.debug(f"Clock underflow clamped: {target} -> {min_date}")
            return min_date
        return target

    def tick(self) -> bool:
        """Advance one virtual minute, never past now. No-op while dragging."""
        if self.state == ClockState.DRAGGING:
            return False
        self._position = self._clamp(self._position + MINUTE_MS)
        self._ticks += 1
        return True

    def begin_drag(self):
        self.state = ClockState.DRAGGING

    def drag(self, timestamp: int) -> bool:
        """Move the position while dragging; the value is not truncated."""
        if self.state != ClockState.DRAGGING:
            logger.debug(f"Drag to {timestamp} ignored while {self.state.value}")
            return False
        self._position = self._clamp(int(timestamp))
        return True

    def end_drag(self, timestamp: int):
        """Resume playback from the start of the minute containing timestamp."""
        self.state = ClockState.PLAYING
        self._position = self._clamp(minute_floor(timestamp))

    def get_state(self) -> Dict:
        """Get clock state for UI."""
        return {
            "state": self.state.value,
            "position": self._position,
            "position_utc": format_ms(self._position),
            "minute": self.minute,
            "is_overridden": self.is_overridden,
            "autoplay_interval_ms": self.autoplay_interval_ms,
            "ticks": self._ticks,
            "clamps": dict(self._clamps),
        }

