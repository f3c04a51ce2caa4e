from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Tuple
import time
from zoneinfo import ZoneInfo

UTC = ZoneInfo("UTC")
EPOCH = datetime(1970, 1, 1, tzinfo=UTC)

MINUTE_MS = 60 * 1000


def now_ms() -> int:
    """Wall clock in epoch milliseconds."""
    return int(time.time() * 1000)


def minute_floor(ts_ms: float) -> int:
    """Truncate an epoch-ms timestamp to the start of its minute."""
    ts = int(ts_ms)
    return ts - (ts % MINUTE_MS)


def ms_to_datetime(ts_ms: int) -> datetime:
    """UTC datetime for an epoch-ms timestamp. Raises OverflowError outside datetime's range."""
    return EPOCH + timedelta(milliseconds=ts_ms)


def format_ms(ts_ms: Optional[int]) -> Optional[str]:
    if ts_ms is None:
        return None
    return ms_to_datetime(ts_ms).isoformat()


@dataclass(frozen=True)
class Location:
    """A resolved geo table entry."""
    key: str
    name: str
    lat: float
    lng: float


@dataclass(frozen=True)
class Event:
    """
    Canonical event admitted into the cache.

    Attributes:
        id: Process-unique identifier, the sole identity for removal
        type: Raw event type
        topic: Raw event topic
        location: Resolved location (always a geo table entry)
        origin_timestamp: createdAt in epoch ms
        payload: Read-only copy of the raw fields
    """
    id: str
    type: Optional[str]
    topic: Optional[str]
    location: Location
    origin_timestamp: int
    payload: Mapping[str, Any] = field(default_factory=dict, compare=False, repr=False)

    def __post_init__(self):
        object.__setattr__(self, "payload", MappingProxyType(dict(self.payload)))

    @property
    def time_key(self) -> int:
        return minute_floor(self.origin_timestamp)

    @property
    def location_key(self) -> str:
        return self.location.key

    @property
    def created_at_str(self) -> str:
        """Display string for the event minute (UTC)."""
        return ms_to_datetime(self.time_key).strftime("%m/%d/%Y %H:%M")

    def to_dict(self) -> Dict[str, Any]:
        data = dict(self.payload)
        data.update({
            "id": self.id,
            "type": self.type,
            "topic": self.topic,
            "location": self.location.key,
            "location_str": self.location.name,
            "lat": self.location.lat,
            "lng": self.location.lng,
            "timestamp": self.origin_timestamp,
            "time_key": self.time_key,
            "created_at_str": self.created_at_str,
        })
        return data


class RejectReason(Enum):
    """Why a raw event was not admitted."""
    IGNORED_TYPE = "ignored_type"
    UNHANDLED_TYPE = "unhandled_type"
    FILTERED_OUT = "filtered_out"
    MISSING_CREATED_AT = "missing_created_at"
    MALFORMED = "malformed"
    TOO_OLD = "too_old"


@dataclass(frozen=True)
class Rejected:
    reason: RejectReason
    detail: str = ""

    def __bool__(self) -> bool:
        return False


@dataclass(frozen=True)
class ParamFilter:
    """Allow-set for one raw field: the field's string form must be in values."""
    key: str
    values: Tuple[str, ...]

    def matches(self, raw: Mapping[str, Any]) -> bool:
        if self.key not in raw:
            return False
        return param_string(raw[self.key]) in self.values


def param_string(value: Any) -> str:
    """String form of a raw field as it appears in a URL query (JavaScript String())."""
    if value is None:
        return "null"
    if isinstance(value, (list, tuple)):
        # array elements that are null render empty
        return ",".join("" if item is None else param_string(item) for item in value)
    if isinstance(value, Mapping):
        return "[object Object]"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)
