"""
View Projector

Pure read over the index: which events are active at the clock's minute
and which locations are visible up to it. Never mutates the index.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Mapping

from core.event_index import TimeLocationIndex
from core.models import Event, Location, format_ms, minute_floor


@dataclass(frozen=True)
class VisibleLocation:
    """A map marker: a location with at least one event up to the clock minute."""
    location: str
    name: str
    lat: float
    lng: float
    event_count: int = 0

    def to_dict(self) -> Dict:
        return {
            "location": self.location,
            "name": self.name,
            "lat": self.lat,
            "lng": self.lng,
            "event_count": self.event_count,
        }


@dataclass
class ViewSnapshot:
    """Render inputs for one clock position."""
    position: int
    minute: int
    active_events: List[Event] = field(default_factory=list)
    visible_locations: List[VisibleLocation] = field(default_factory=list)

    def to_dict(self) -> Dict:
        return {
            "position": self.position,
            "minute": self.minute,
            "minute_utc": format_ms(self.minute),
            "active_events": [e.to_dict() for e in self.active_events],
            "visible_locations": [loc.to_dict() for loc in self.visible_locations],
        }


def project(
    index: TimeLocationIndex,
    clock_position: int,
    locations: Mapping[str, Location],
) -> ViewSnapshot:
    minute = minute_floor(clock_position)

    visible: List[VisibleLocation] = []
    for key in sorted(index.locations_visible_at(clock_position)):
        loc = locations.get(key)
        if loc is None:
            continue
        visible.append(VisibleLocation(
            location=key,
            name=loc.name,
            lat=loc.lat,
            lng=loc.lng,
            event_count=index.count_at_location(key, up_to_minute=minute),
        ))

    return ViewSnapshot(
        position=clock_position,
        minute=minute,
        active_events=index.events_at_time(minute),
        visible_locations=visible,
    )


class ViewProjector:
    """Projects the index at a clock position using a fixed geo table."""

    def __init__(self, locations: Mapping[str, Location]):
        self.locations = locations

    def project(self, index: TimeLocationIndex, clock_position: int) -> ViewSnapshot:
        return project(index, clock_position, self.locations)
