"""
Ephemeral Highlight

FIFO queue of recently clicked events, each fading after a fixed duration.
Independent of the playback clock and of eviction.
"""

import logging
from collections import deque
from dataclasses import dataclass
from typing import Collection, Deque, Dict, List, Optional

from core.models import Event

logger = logging.getLogger("highlight")


@dataclass(frozen=True)
class HighlightEntry:
    event: Event
    expires_at: int

    def to_dict(self) -> Dict:
        return {"event": self.event.to_dict(), "expires_at": self.expires_at}


class EphemeralHighlight:
    """
    Clicked events awaiting fade-out.

    Entries leave strictly from the front. The owner arranges one timer per
    add() and calls expire_due() when it fires.
    """

    def __init__(self, fade_duration_ms: int = 5000):
        self.fade_duration_ms = fade_duration_ms
        self._queue: Deque[HighlightEntry] = deque()

    def add(self, event: Event, now: int) -> HighlightEntry:
        entry = HighlightEntry(event=event, expires_at=now + self.fade_duration_ms)
        self._queue.append(entry)
        return entry

    def expire_due(self, now: int) -> List[HighlightEntry]:
        """Pop entries from the front while they are due."""
        expired: List[HighlightEntry] = []
        while self._queue and self._queue[0].expires_at <= now:
            expired.append(self._queue.popleft())
        return expired

    def remove_events(self, event_ids: Collection[str]) -> int:
        """Drop entries by event identity (used after eviction)."""
        before = len(self._queue)
        self._queue = deque(e for e in self._queue if e.event.id not in event_ids)
        removed = before - len(self._queue)
        if removed:
            logger.debug(f"Dropped {removed} evicted highlights")
        return removed

    def next_expiry(self) -> Optional[int]:
        return self._queue[0].expires_at if self._queue else None

    def entries(self) -> List[HighlightEntry]:
        return list(self._queue)

    def __len__(self) -> int:
        return len(self._queue)
