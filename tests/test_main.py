import json
from pathlib import Path
import sys

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

import config
from main import inspect_capture


T = 1_770_379_200_000  # 2026-02-06 12:00:00 UTC
DAY_MS = 24 * 60 * 60 * 1000


def _write_capture(tmp_path, frames):
    path = tmp_path / "capture.ndjson"
    path.write_text("\n".join(frames) + "\n", encoding="utf-8")
    return path


def _raw(ts, location="USA"):
    return {"type": config.ALLOWED_EVENT_TYPES[0], "topic": None, "location": location, "createdAt": ts}


def _clear_env(monkeypatch):
    for name in ("ALLOWED_EVENT_TYPES", "IGNORED_EVENT_TYPES", "EVENT_FILTERS", "CACHED_EVENTS_MAX_DAYS_BACK", "GEO_TABLE_PATH"):
        monkeypatch.delenv(name, raising=False)


def test_inspect_measures_retention_from_capture(tmp_path, monkeypatch):
    _clear_env(monkeypatch)
    path = _write_capture(tmp_path, [
        json.dumps(_raw(T + 5_000)),
        json.dumps([_raw(T + 60_000, "JP"), _raw(T - 10 * DAY_MS, "GB")]),
        "{broken",
    ])

    result = inspect_capture(path, at="2026-02-06T12:00:30Z")

    assert result["stats"]["index"]["events"] == 2
    assert result["stats"]["admission"]["rejected"]["too_old"] == 1
    assert result["view"]["minute"] == T
    assert [e["location"] for e in result["view"]["active_events"]] == ["USA"]
    assert [loc["location"] for loc in result["view"]["visible_locations"]] == ["USA"]


def test_inspect_without_at_starts_at_retention_floor(tmp_path, monkeypatch):
    _clear_env(monkeypatch)
    path = _write_capture(tmp_path, [json.dumps(_raw(T))])

    result = inspect_capture(path)

    assert result["stats"]["index"]["events"] == 1
    assert result["view"]["position"] == T - 8 * DAY_MS
    assert result["view"]["active_events"] == []
