import asyncio
from pathlib import Path
import sys

import orjson
import pytest
from websockets.exceptions import ConnectionClosedError

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from config import EngineSettings
from core.engine import PlaybackEngine
from core.errors import MalformedEvent
import feed.socket_feed as socket_feed
from feed.socket_feed import EventFeedClient, decode_message


T = 1_770_379_200_000  # 2026-02-06 12:00:00 UTC


def _engine():
    settings = EngineSettings(allowed_types=("challenge.create",), allowed_topics=(), ignored_types=())
    return PlaybackEngine(settings=settings, clock=lambda: T + 60_000)


def _frame(*events):
    payload = events[0] if len(events) == 1 else list(events)
    return orjson.dumps(payload).decode("utf-8")


def _raw(ts, location="USA"):
    return {"type": "challenge.create", "topic": "t", "location": location, "createdAt": ts}


class _FakeSocket:
    def __init__(self, frames, error=None):
        self._frames = frames
        self._error = error

    async def _iter(self):
        for frame in self._frames:
            yield frame
        if self._error:
            raise self._error

    def __aiter__(self):
        return self._iter()

    async def close(self):
        pass


def test_decode_message_accepts_object_and_array():
    assert decode_message('{"type": "a"}') == {"type": "a"}
    assert decode_message(b'[{"type": "a"}, {"type": "b"}]') == [{"type": "a"}, {"type": "b"}]


@pytest.mark.parametrize("frame", ["not json", "42", '"text"', "null"])
def test_decode_message_rejects_other_frames(frame):
    with pytest.raises(MalformedEvent):
        decode_message(frame)


def test_handle_frame_ingests_batches_and_drops_bad_frames():
    engine = _engine()
    client = EventFeedClient("ws://relay.local/events", engine)

    assert client.handle_frame(_frame(_raw(T), _raw(T + 1_000, "GB"))) == 2
    assert client.handle_frame(_frame(_raw(T + 2_000))) == 1
    assert client.handle_frame("{broken") == 0

    stats = client.get_stats()
    assert stats["frames"] == 3
    assert stats["dropped_frames"] == 1
    assert len(engine.index) == 3


def test_connect_failure_is_reported_as_transport_error(monkeypatch):
    engine = _engine()
    client = EventFeedClient("ws://relay.local/events", engine)

    async def _refuse(*args, **kwargs):
        raise OSError("connection refused")

    monkeypatch.setattr(socket_feed.websockets, "connect", _refuse)

    assert asyncio.run(client.connect()) is False

    feed = engine.get_stats()["feed"]
    assert feed["errors"] == 1
    assert "connection refused" in feed["last_error"]


def test_connect_success_marks_feed_connected(monkeypatch):
    engine = _engine()
    client = EventFeedClient("ws://relay.local/events", engine)

    async def _accept(*args, **kwargs):
        return _FakeSocket([])

    monkeypatch.setattr(socket_feed.websockets, "connect", _accept)

    assert asyncio.run(client.connect()) is True
    assert engine.get_stats()["feed"]["connected"] is True
    assert client.get_stats()["connects"] == 1


def test_consume_ingests_until_abnormal_close():
    engine = _engine()
    client = EventFeedClient("ws://relay.local/events", engine)
    client.ws = _FakeSocket(
        [_frame(_raw(T)), _frame(_raw(T + 5_000, "JP"))],
        error=ConnectionClosedError(None, None),
    )

    asyncio.run(client._consume())

    assert len(engine.index) == 2
    assert client.ws is None
    feed = engine.get_stats()["feed"]
    assert feed["connected"] is False
    assert feed["errors"] == 1


def test_stop_cancels_listen_task(monkeypatch):
    engine = _engine()
    client = EventFeedClient("ws://relay.local/events", engine, reconnect_seconds=0.01)

    async def _refuse(*args, **kwargs):
        raise OSError("connection refused")

    monkeypatch.setattr(socket_feed.websockets, "connect", _refuse)

    async def scenario():
        await client.start()
        await asyncio.sleep(0.05)
        await client.stop()

    asyncio.run(scenario())

    assert client._listen_task is None
    assert engine.get_stats()["feed"]["errors"] >= 1
