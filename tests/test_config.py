import json
from pathlib import Path
import sys

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

import config
from config import DEFAULT_LOCATION, load_geo_table, load_settings


def test_defaults_without_environment(monkeypatch):
    for name in (
        "CACHED_EVENTS_MAX_DAYS_BACK",
        "AUTOPLAY_INTERVAL_MS",
        "ALLOWED_EVENT_TYPES",
        "EVENT_FILTERS",
        "GEO_TABLE_PATH",
        "FEED_URL",
    ):
        monkeypatch.delenv(name, raising=False)

    settings = load_settings()

    assert settings.retention_days == config.CACHED_EVENTS_MAX_DAYS_BACK + 1
    assert settings.retention_ms == 8 * 24 * 60 * 60 * 1000
    assert settings.autoplay_interval_ms == 1000
    assert settings.allowed_types == tuple(config.ALLOWED_EVENT_TYPES)
    assert settings.feed_url == ""
    assert DEFAULT_LOCATION in settings.geo_table


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("CACHED_EVENTS_MAX_DAYS_BACK", "1")
    monkeypatch.setenv("CLICK_EVENT_FADE_MS", "2500")
    monkeypatch.setenv("ALLOWED_EVENT_TYPES", "a.b, c.d ,")
    monkeypatch.setenv("IGNORED_EVENT_TYPES", "")
    monkeypatch.setenv("EVENT_FILTERS", "track=DEVELOP")
    monkeypatch.setenv("FEED_URL", "ws://relay.local/events")

    settings = load_settings()

    assert settings.retention_days == 2
    assert settings.fade_duration_ms == 2500
    assert settings.allowed_types == ("a.b", "c.d")
    assert settings.ignored_types == ()
    assert settings.event_filters == "track=DEVELOP"
    assert settings.feed_url == "ws://relay.local/events"


def test_invalid_integer_falls_back_to_default(monkeypatch):
    monkeypatch.setenv("AUTOPLAY_INTERVAL_MS", "fast")

    assert load_settings().autoplay_interval_ms == config.AUTOPLAY_INTERVAL_MS


def test_geo_table_file_is_merged(tmp_path):
    path = tmp_path / "countrydata.json"
    path.write_text(json.dumps({
        "NZ": {"country": "New Zealand", "lat": -41.0, "lng": 174.0},
        "USA": {"country": "USA (override)", "lat": 39.0, "lng": -98.0},
    }), encoding="utf-8")

    table = load_geo_table(str(path))

    assert table["NZ"].country == "New Zealand"
    assert table["USA"].latitude == 39.0
    assert table[DEFAULT_LOCATION].latitude == 37.926868
    assert "USA" in config.LOCATIONS and config.LOCATIONS["USA"].latitude == 38.0


def test_zero_days_back_keeps_one_day_of_cache(monkeypatch):
    monkeypatch.setenv("CACHED_EVENTS_MAX_DAYS_BACK", "0")

    settings = load_settings()

    assert settings.retention_days == 1
    assert settings.retention_ms == 24 * 60 * 60 * 1000


def test_intervals_keep_a_positive_floor(monkeypatch):
    monkeypatch.setenv("AUTOPLAY_INTERVAL_MS", "0")
    monkeypatch.setenv("CACHED_EVENTS_MAX_DAYS_BACK", "-3")

    settings = load_settings()

    assert settings.autoplay_interval_ms == 1
    assert settings.retention_days == 1
