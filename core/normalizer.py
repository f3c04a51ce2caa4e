"""
Event Normalizer

Admission filtering and enrichment of raw feed payloads.

Checks, first match wins:
- type on the ignore list
- neither type nor topic on the allow lists
- URL parameter filters not all matching
- createdAt absent (or unparseable)
- createdAt older than the retention floor

Rejections are returned as values and logged at debug level.
"""

import logging
import math
import uuid
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Mapping, Sequence, Union
from urllib.parse import parse_qs

from config import LocationConfig
from core.errors import MalformedEvent
from core.models import (
    EPOCH,
    UTC,
    Event,
    Location,
    ParamFilter,
    RejectReason,
    Rejected,
    minute_floor,
    ms_to_datetime,
)

logger = logging.getLogger("normalizer")

_ONE_MS = timedelta(milliseconds=1)


def parse_created_at(value: Any) -> int:
    """
    Parse a createdAt value into epoch milliseconds.

    Accepts ISO-8601 strings (naive means UTC, trailing Z allowed),
    datetime objects and epoch-ms numbers.
    """
    if isinstance(value, bool):
        raise MalformedEvent(f"createdAt is not a timestamp: {value!r}")

    if isinstance(value, (int, float)):
        if isinstance(value, float) and not math.isfinite(value):
            raise MalformedEvent(f"createdAt is not finite: {value!r}")
        return _checked_ms(int(value))

    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(text)
        except ValueError as e:
            raise MalformedEvent(f"Unparseable createdAt: {value!r}") from e
    else:
        raise MalformedEvent(f"createdAt has unsupported type {type(value).__name__}")

    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return _checked_ms((dt - EPOCH) // _ONE_MS)


def _checked_ms(ts_ms: int) -> int:
    # the minute bucket must be renderable as a datetime
    try:
        ms_to_datetime(minute_floor(ts_ms))
    except OverflowError as e:
        raise MalformedEvent(f"createdAt out of range: {ts_ms}") from e
    return ts_ms


def parse_param_filters(query: str) -> List[ParamFilter]:
    """Turn a URL query string (a=1&a=2&b=x) into param filters, in key order."""
    query = (query or "").lstrip("?")
    parsed = parse_qs(query, keep_blank_values=True)
    return [ParamFilter(key=key, values=tuple(values)) for key, values in parsed.items()]


def resolve_locations(geo_table: Mapping[str, LocationConfig]) -> Dict[str, Location]:
    return {
        key: Location(key=key, name=entry.country, lat=entry.latitude, lng=entry.longitude)
        for key, entry in geo_table.items()
    }


def normalize(
    raw: Any,
    param_filters: Sequence[ParamFilter],
    locations: Mapping[str, Location],
    min_date: int,
    *,
    allowed_types: Iterable[str],
    allowed_topics: Iterable[str],
    ignored_types: Iterable[str],
    default_location: str,
) -> Union[Event, Rejected]:
    """Validate and enrich one raw event. Returns an Event or a Rejected."""
    if not isinstance(raw, Mapping):
        return Rejected(RejectReason.MALFORMED, f"payload is {type(raw).__name__}, not an object")

    evt_type = raw.get("type")
    topic = raw.get("topic")

    if evt_type in ignored_types:
        return Rejected(RejectReason.IGNORED_TYPE, f"type={evt_type}")

    # events the UI does not handle yet would make it look broken
    if evt_type not in allowed_types and topic not in allowed_topics:
        return Rejected(RejectReason.UNHANDLED_TYPE, f"type={evt_type}; topic={topic}")

    for param_filter in param_filters:
        if not param_filter.matches(raw):
            return Rejected(
                RejectReason.FILTERED_OUT,
                f"type={evt_type}; topic={topic}; {param_filter.key} not in {list(param_filter.values)}",
            )

    if "createdAt" not in raw or raw["createdAt"] is None:
        return Rejected(RejectReason.MISSING_CREATED_AT, f"type={evt_type}; topic={topic}")

    try:
        origin_ts = parse_created_at(raw["createdAt"])
    except MalformedEvent as e:
        return Rejected(RejectReason.MALFORMED, str(e))

    if origin_ts < min_date:
        return Rejected(RejectReason.TOO_OLD, f"timestamp={origin_ts} < min_date={min_date}")

    location_key = raw.get("location")
    if not isinstance(location_key, str) or location_key not in locations:
        location_key = default_location

    return Event(
        id=str(uuid.uuid4()),
        type=evt_type,
        topic=topic,
        location=locations[location_key],
        origin_timestamp=origin_ts,
        payload=raw,
    )


class EventNormalizer:
    """
    Admission filter bound to one configuration (lists and geo table).
    """

    def __init__(
        self,
        geo_table: Mapping[str, LocationConfig],
        default_location: str,
        allowed_types: Iterable[str] = (),
        allowed_topics: Iterable[str] = (),
        ignored_types: Iterable[str] = (),
    ):
        if default_location not in geo_table:
            raise ValueError(f"Default location {default_location!r} missing from geo table")

        self.locations = resolve_locations(geo_table)
        self.default_location = default_location
        self.allowed_types = frozenset(allowed_types)
        self.allowed_topics = frozenset(allowed_topics)
        self.ignored_types = frozenset(ignored_types)

        # Stats
        self._admitted = 0
        self._rejected: Dict[str, int] = {r.value: 0 for r in RejectReason}

    def normalize(
        self,
        raw: Any,
        param_filters: Sequence[ParamFilter],
        min_date: int,
    ) -> Union[Event, Rejected]:
        try:
            result = normalize(
                raw,
                param_filters,
                self.locations,
                min_date,
                allowed_types=self.allowed_types,
                allowed_topics=self.allowed_topics,
                ignored_types=self.ignored_types,
                default_location=self.default_location,
            )
        except TypeError as e:
            # unhashable type/topic values
            result = Rejected(RejectReason.MALFORMED, str(e))

        if isinstance(result, Rejected):
            self._rejected[result.reason.value] += 1
            logger.debug(f"Event rejected ({result.reason.value}): {result.detail}")
        else:
            self._admitted += 1
        return result

    def get_stats(self) -> Dict:
        return {
            "admitted": self._admitted,
            "rejected": dict(self._rejected),
        }
