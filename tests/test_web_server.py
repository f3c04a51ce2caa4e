from pathlib import Path
import sys

import pytest
from fastapi.testclient import TestClient

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from config import EngineSettings
import core.engine as engine_module
from core.engine import PlaybackEngine
from web_server import app


T = 1_770_379_200_000  # 2026-02-06 12:00:00 UTC
NOW = T + 10 * 60_000


@pytest.fixture
def engine(monkeypatch):
    settings = EngineSettings(
        allowed_types=("challenge.create",),
        allowed_topics=(),
        ignored_types=("member.heartbeat",),
    )
    instance = PlaybackEngine(settings=settings, clock=lambda: NOW)
    monkeypatch.setattr(engine_module, "_engine", instance)
    return instance


@pytest.fixture
def client(engine):
    return TestClient(app)


def _raw(ts, location="USA", evt_type="challenge.create"):
    return {"type": evt_type, "topic": None, "location": location, "createdAt": ts}


def test_post_events_reports_admissions(client, engine):
    response = client.post("/api/events", json=[_raw(T), _raw(T, evt_type="member.heartbeat")])

    assert response.status_code == 200
    body = response.json()
    assert body["received"] == 2
    assert body["admitted"] == 1
    assert body["ids"][0] in engine.index


def test_post_events_rejects_non_object_bodies(client):
    assert client.post("/api/events", json=42).status_code == 400
    bad = client.post("/api/events", content=b"{nope", headers={"content-type": "application/json"})
    assert bad.status_code == 400


def test_drag_cycle_moves_view(client):
    client.post("/api/events", json=[_raw(T + 5_000), _raw(T + 60_000, "JP")])

    started = client.post("/api/clock/drag/start").json()
    assert started["state"] == "dragging"

    dragged = client.post("/api/clock/drag", params={"ts": T + 30_000}).json()
    assert dragged["success"] is True
    assert dragged["clock"]["position"] == T + 30_000

    view = client.get("/api/view").json()
    assert view["minute"] == T
    assert [e["location"] for e in view["active_events"]] == ["USA"]
    assert [loc["location"] for loc in view["visible_locations"]] == ["USA"]

    ended = client.post("/api/clock/drag/end", params={"ts": T + 30_000}).json()
    assert ended["state"] == "playing"
    assert ended["position"] == T


def test_click_location_highlights_nearest_event(client):
    client.post("/api/events", json=[_raw(T - 5_000), _raw(T + 2_000)])
    client.post("/api/clock/drag/start")
    client.post("/api/clock/drag/end", params={"ts": T})

    clicked = client.post("/api/locations/USA/click").json()["event"]

    assert clicked["timestamp"] == T + 2_000
    highlights = client.get("/api/highlights").json()["highlights"]
    assert [h["event"]["id"] for h in highlights] == [clicked["id"]]


def test_click_unknown_location_returns_null(client):
    assert client.post("/api/locations/Atlantis/click").json() == {"event": None}


def test_stats_and_clock_endpoints(client):
    client.post("/api/events", json=_raw(T))

    stats = client.get("/api/stats").json()
    assert stats["index"]["events"] == 1
    assert stats["feed_client"] is None

    clock = client.get("/api/clock").json()
    assert clock["state"] == "playing"
    assert clock["position"] <= NOW


def test_out_of_range_timestamp_never_reaches_render_payloads(client):
    response = client.post("/api/events", json={"type": "challenge.create", "location": "USA", "createdAt": 1e20})

    assert response.json()["admitted"] == 0
    assert client.post("/api/locations/USA/click").json() == {"event": None}
    highlights = client.get("/api/highlights")
    assert highlights.status_code == 200
    assert highlights.json() == {"highlights": []}


def test_view_stream_sends_snapshots_and_unsubscribes_on_close(engine):
    import asyncio
    import json

    import web_server

    async def scenario():
        response = await web_server.view_stream()
        stream = response.body_iterator
        first = await stream.__anext__()
        subscribers = engine.get_stats()["subscribers"]
        engine.ingest(_raw(T))
        second = await stream.__anext__()
        await stream.aclose()
        return first, second, subscribers

    first, second, subscribers = asyncio.run(scenario())

    assert subscribers == 1
    assert first.startswith("event: view\ndata: ")
    assert second.startswith("event: view\ndata: ")
    payload = json.loads(second.split("data: ", 1)[1])
    assert payload["visible_locations"] == []
    assert engine.get_stats()["subscribers"] == 0
