#!/usr/bin/env python3
"""
Geotape - Main entrypoint

Usage:
    python main.py serve --host 0.0.0.0 --port 8000
    python main.py inspect --file capture.ndjson --at 2026-10-18T12:00:00Z
"""

# Load environment variables FIRST (before any other imports)
from dotenv import load_dotenv
load_dotenv()

import argparse
import json
import logging
import os
import sys
from pathlib import Path

logging.basicConfig(
    level=os.environ.get("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s | %(levelname)-7s | %(name)s | %(message)s",
    datefmt="%H:%M:%S"
)
logger = logging.getLogger("main")


def cmd_serve(args):
    """Run the HTTP/SSE server with the playback engine and feed."""
    import uvicorn
    uvicorn.run("web_server:app", host=args.host, port=args.port, log_level=args.log_level)


def _capture_clock(frames):
    """Newest parseable createdAt in a capture, so retention is measured from the capture."""
    from core.errors import MalformedEvent
    from core.models import now_ms
    from core.normalizer import parse_created_at
    from feed.socket_feed import decode_message

    newest = None
    for frame in frames:
        try:
            message = decode_message(frame)
        except MalformedEvent:
            continue
        for raw in message if isinstance(message, list) else [message]:
            if not isinstance(raw, dict) or raw.get("createdAt") is None:
                continue
            try:
                ts = parse_created_at(raw["createdAt"])
            except MalformedEvent:
                continue
            newest = ts if newest is None else max(newest, ts)
    return newest if newest is not None else now_ms()


def inspect_capture(path, at=None):
    """Replay a capture of feed frames (one per line) and return stats and the view."""
    from core.engine import PlaybackEngine
    from core.normalizer import parse_created_at
    from feed.socket_feed import EventFeedClient

    with open(Path(path), "r", encoding="utf-8") as f:
        frames = [line.strip() for line in f if line.strip()]

    capture_now = _capture_clock(frames)
    engine = PlaybackEngine(clock=lambda: capture_now)
    feed = EventFeedClient(url="", engine=engine)
    for frame in frames:
        feed.handle_frame(frame)

    if at:
        engine.begin_drag()
        engine.end_drag(parse_created_at(at))

    return {
        "stats": engine.get_stats(),
        "view": engine.get_view().to_dict(),
    }


def cmd_inspect(args):
    """Load a capture of feed frames and print the view at a time."""
    print(json.dumps(inspect_capture(args.file, args.at), indent=2, default=str))


def main():
    parser = argparse.ArgumentParser(
        description="Geotape - live geo event cache with a scrubbable clock",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    serve_parser = subparsers.add_parser("serve", help="Run the web server")
    serve_parser.add_argument("--host", default="0.0.0.0")
    serve_parser.add_argument("--port", type=int, default=8000)
    serve_parser.add_argument("--log-level", default="info")
    serve_parser.set_defaults(func=cmd_serve)

    inspect_parser = subparsers.add_parser("inspect", help="Project a capture file offline")
    inspect_parser.add_argument("--file", required=True, help="NDJSON file of feed frames")
    inspect_parser.add_argument("--at", help="Clock position (ISO-8601); default is the retention floor. \"Now\" is the newest createdAt in the capture")
    inspect_parser.set_defaults(func=cmd_inspect)

    args = parser.parse_args()

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    try:
        args.func(args)
    except KeyboardInterrupt:
        print("\nInterrupted by user")
        sys.exit(1)
    except Exception as e:
        logger.error(f"Command failed: {e}")
        if "--debug" in sys.argv:
            raise
        sys.exit(1)


if __name__ == "__main__":
    main()
