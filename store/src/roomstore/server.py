"""Command-line entry point for the room document service."""

from __future__ import annotations

import argparse
import logging
from typing import Sequence

from aiohttp import web

from .ws_transport import create_app


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Room document store (HTTP + WebSocket)")
    parser.add_argument("--host", default="127.0.0.1", help="Interface to bind (default: 127.0.0.1)")
    parser.add_argument("--port", type=int, default=8788, help="Port to bind (default: 8788)")
    parser.add_argument("--db-path", help="SQLite database path; in-memory when omitted")
    parser.add_argument(
        "--ping-interval",
        type=int,
        default=30,
        help="Seconds of WebSocket silence before a heartbeat ping (default: 30)",
    )
    parser.add_argument("--log-level", default="INFO", help="Logging level (default: INFO)")
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    app = create_app(ping_interval_s=args.ping_interval, db_path=args.db_path)
    web.run_app(app, host=args.host, port=args.port)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
