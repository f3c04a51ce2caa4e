"""
Geotape - Configuration
Central configuration for the event cache, playback clock and geo table.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Tuple
import json
import logging
import os
from pathlib import Path

logger = logging.getLogger("config")


def _env_int(name: str, default: int, minimum: int = 1) -> int:
    raw = str(os.environ.get(name, "")).strip()
    if not raw:
        return int(default)
    try:
        value = int(raw)
    except ValueError:
        return int(default)
    if value < minimum:
        logger.warning(f"{name}={value} below minimum {minimum}; using {minimum}")
        return minimum
    return value


def _env_list(name: str, default: List[str]) -> List[str]:
    raw = os.environ.get(name)
    if raw is None:
        return list(default)
    return [item.strip() for item in raw.split(",") if item.strip()]


# ============================================================================
# LOCATION TABLE
# ============================================================================

@dataclass
class LocationConfig:
    """Geo table entry: display name plus coordinates."""
    key: str
    country: str
    latitude: float
    longitude: float


# Default location (Virginia, US) used for events with no known location
DEFAULT_LOCATION = "Virginia, USA"

LOCATIONS: Dict[str, LocationConfig] = {
    DEFAULT_LOCATION: LocationConfig(DEFAULT_LOCATION, DEFAULT_LOCATION, 37.926868, -78.024902),
    "USA": LocationConfig("USA", "United States", 38.0, -97.0),
    "CA": LocationConfig("CA", "Canada", 60.0, -95.0),
    "MX": LocationConfig("MX", "Mexico", 23.0, -102.0),
    "BR": LocationConfig("BR", "Brazil", -10.0, -55.0),
    "AR": LocationConfig("AR", "Argentina", -34.0, -64.0),
    "GB": LocationConfig("GB", "United Kingdom", 54.0, -2.0),
    "IE": LocationConfig("IE", "Ireland", 53.0, -8.0),
    "FR": LocationConfig("FR", "France", 46.0, 2.0),
    "DE": LocationConfig("DE", "Germany", 51.0, 9.0),
    "ES": LocationConfig("ES", "Spain", 40.0, -4.0),
    "IT": LocationConfig("IT", "Italy", 42.8333, 12.8333),
    "PL": LocationConfig("PL", "Poland", 52.0, 20.0),
    "UA": LocationConfig("UA", "Ukraine", 49.0, 32.0),
    "RU": LocationConfig("RU", "Russia", 60.0, 100.0),
    "TR": LocationConfig("TR", "Turkey", 39.0, 35.0),
    "EG": LocationConfig("EG", "Egypt", 27.0, 30.0),
    "NG": LocationConfig("NG", "Nigeria", 10.0, 8.0),
    "KE": LocationConfig("KE", "Kenya", 1.0, 38.0),
    "ZA": LocationConfig("ZA", "South Africa", -29.0, 24.0),
    "IN": LocationConfig("IN", "India", 20.0, 77.0),
    "PK": LocationConfig("PK", "Pakistan", 30.0, 70.0),
    "CN": LocationConfig("CN", "China", 35.0, 105.0),
    "JP": LocationConfig("JP", "Japan", 36.0, 138.0),
    "ID": LocationConfig("ID", "Indonesia", -5.0, 120.0),
    "PH": LocationConfig("PH", "Philippines", 13.0, 122.0),
    "AU": LocationConfig("AU", "Australia", -27.0, 133.0),
}


def load_geo_table(path: str = "") -> Dict[str, LocationConfig]:
    """
    Return the location table, optionally merged with a JSON file.

    The file maps location keys to {"country", "lat", "lng"}. The default
    location is always present in the result.
    """
    table = dict(LOCATIONS)
    if path:
        with open(Path(path), "r", encoding="utf-8") as f:
            raw = json.load(f)
        for key, entry in raw.items():
            table[key] = LocationConfig(
                key=key,
                country=str(entry.get("country") or key),
                latitude=float(entry["lat"]),
                longitude=float(entry["lng"]),
            )
        logger.info(f"Loaded {len(raw)} locations from {path}")
    table.setdefault(DEFAULT_LOCATION, LOCATIONS[DEFAULT_LOCATION])
    return table


# ============================================================================
# EVENT ADMISSION
# ============================================================================

ALLOWED_EVENT_TYPES = [
    "challenge.notification.create",
    "challenge.notification.update",
    "challenge.notification.submission",
    "member.action.profile.create",
    "member.action.profile.update",
]

ALLOWED_EVENT_TOPICS = [
    "challenge.notification.events",
    "submission.notification.create",
    "member.action.login",
]

IGNORED_EVENT_TYPES = [
    "member.action.heartbeat",
    "challenge.notification.test",
]

# ============================================================================
# CACHE & PLAYBACK
# ============================================================================

# Events are cached one more day than this, since clients sit in different
# local timezones
CACHED_EVENTS_MAX_DAYS_BACK = 7

# One virtual minute per autoplay tick
AUTOPLAY_INTERVAL_MS = 1000

CLICK_EVENT_FADE_MS = 5000

EXPIRED_EVENTS_CLEAN_INTERVAL_MS = 60 * 1000

# ============================================================================
# FEED
# ============================================================================

FEED_RECONNECT_SECONDS = 5


@dataclass(frozen=True)
class EngineSettings:
    """Snapshot of every option the playback engine reads."""
    retention_days: int = CACHED_EVENTS_MAX_DAYS_BACK + 1
    autoplay_interval_ms: int = AUTOPLAY_INTERVAL_MS
    fade_duration_ms: int = CLICK_EVENT_FADE_MS
    cleanup_interval_ms: int = EXPIRED_EVENTS_CLEAN_INTERVAL_MS
    allowed_types: Tuple[str, ...] = tuple(ALLOWED_EVENT_TYPES)
    allowed_topics: Tuple[str, ...] = tuple(ALLOWED_EVENT_TOPICS)
    ignored_types: Tuple[str, ...] = tuple(IGNORED_EVENT_TYPES)
    event_filters: str = ""
    geo_table: Dict[str, LocationConfig] = field(default_factory=lambda: dict(LOCATIONS), compare=False)
    default_location: str = DEFAULT_LOCATION
    feed_url: str = ""
    feed_reconnect_seconds: int = FEED_RECONNECT_SECONDS

    @property
    def retention_ms(self) -> int:
        return self.retention_days * 24 * 60 * 60 * 1000


def load_settings() -> EngineSettings:
    """Build settings from module defaults and environment overrides."""
    return EngineSettings(
        retention_days=_env_int("CACHED_EVENTS_MAX_DAYS_BACK", CACHED_EVENTS_MAX_DAYS_BACK, minimum=0) + 1,
        autoplay_interval_ms=_env_int("AUTOPLAY_INTERVAL_MS", AUTOPLAY_INTERVAL_MS),
        fade_duration_ms=_env_int("CLICK_EVENT_FADE_MS", CLICK_EVENT_FADE_MS),
        cleanup_interval_ms=_env_int("EXPIRED_EVENTS_CLEAN_INTERVAL_MS", EXPIRED_EVENTS_CLEAN_INTERVAL_MS),
        allowed_types=tuple(_env_list("ALLOWED_EVENT_TYPES", ALLOWED_EVENT_TYPES)),
        allowed_topics=tuple(_env_list("ALLOWED_EVENT_TOPICS", ALLOWED_EVENT_TOPICS)),
        ignored_types=tuple(_env_list("IGNORED_EVENT_TYPES", IGNORED_EVENT_TYPES)),
        event_filters=os.environ.get("EVENT_FILTERS", "").strip(),
        geo_table=load_geo_table(os.environ.get("GEO_TABLE_PATH", "").strip()),
        feed_url=os.environ.get("FEED_URL", "").strip(),
        feed_reconnect_seconds=_env_int("FEED_RECONNECT_SECONDS", FEED_RECONNECT_SECONDS),
    )
