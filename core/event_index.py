"""
Time/Location Index

Two synchronized views over the cached events:
- by_time: minute time key -> events in insertion order
- by_location: location key -> events in insertion order

An event is in exactly one bucket of each view, or in neither.
Empty buckets are dropped from their mapping.
"""

import logging
from typing import Dict, List, Optional, Set

from core.models import Event, minute_floor

logger = logging.getLogger("event_index")


class TimeLocationIndex:
    """
    In-memory event cache with sliding-window eviction.

    Size is bounded by the retention window only, never by count.
    """

    def __init__(self):
        self._by_time: Dict[int, List[Event]] = {}
        self._by_location: Dict[str, List[Event]] = {}
        self._by_id: Dict[str, Event] = {}

        # Stats
        self._total_inserted = 0
        self._total_evicted = 0

    # =========================================================================
    # Mutation
    # =========================================================================

    def insert(self, event: Event) -> bool:
        """Append an event to its time and location buckets."""
        if event.id in self._by_id:
            logger.warning(f"Duplicate event id ignored: {event.id}")
            return False

        self._by_time.setdefault(event.time_key, []).append(event)
        self._by_location.setdefault(event.location_key, []).append(event)
        self._by_id[event.id] = event
        self._total_inserted += 1
        return True

    def evict(self, min_date: int) -> List[Event]:
        """
        Remove every event whose time key is older than min_date.

        Time keys are scanned in ascending order and the scan stops at the
        first bucket that is still inside the window.

        Returns:
            The removed events, oldest bucket first
        """
        removed: List[Event] = []
        for time_key in sorted(self._by_time):
            if time_key >= min_date:
                break
            removed.extend(self._by_time.pop(time_key))

        if not removed:
            return removed

        removed_ids: Set[str] = {e.id for e in removed}
        for location_key in {e.location_key for e in removed}:
            bucket = self._by_location.get(location_key)
            if bucket is None:
                continue
            remaining = [e for e in bucket if e.id not in removed_ids]
            if remaining:
                self._by_location[location_key] = remaining
            else:
                del self._by_location[location_key]

        for event_id in removed_ids:
            self._by_id.pop(event_id, None)

        self._total_evicted += len(removed)
        logger.info(f"Evicted {len(removed)} events older than {min_date}")
        return removed

    # =========================================================================
    # Queries
    # =========================================================================

    def events_at_time(self, time_key: int) -> List[Event]:
        return list(self._by_time.get(time_key, ()))

    def events_at_location(self, location_key: str) -> List[Event]:
        return list(self._by_location.get(location_key, ()))

    def locations_visible_at(self, clock_position: int) -> Set[str]:
        """Locations with at least one event at or before the clock's minute."""
        minute = minute_floor(clock_position)
        return {
            location_key
            for location_key, events in self._by_location.items()
            if any(e.time_key <= minute for e in events)
        }

    def count_at_location(self, location_key: str, up_to_minute: Optional[int] = None) -> int:
        events = self._by_location.get(location_key, ())
        if up_to_minute is None:
            return len(events)
        return sum(1 for e in events if e.time_key <= up_to_minute)

    def time_keys(self) -> List[int]:
        return sorted(self._by_time)

    def locations(self) -> List[str]:
        return sorted(self._by_location)

    def __len__(self) -> int:
        return len(self._by_id)

    def __contains__(self, event_id: object) -> bool:
        return event_id in self._by_id

    def get_stats(self) -> Dict:
        keys = self.time_keys()
        return {
            "events": len(self._by_id),
            "time_buckets": len(self._by_time),
            "location_buckets": len(self._by_location),
            "oldest_time_key": keys[0] if keys else None,
            "newest_time_key": keys[-1] if keys else None,
            "total_inserted": self._total_inserted,
            "total_evicted": self._total_evicted,
        }
