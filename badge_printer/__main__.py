"""
Command line entry point: run the Badge Printer API server.

    python -m badge_printer --host 0.0.0.0 --port 5000
"""

from __future__ import annotations

import argparse
import logging
import os
from typing import Iterable

from badge_printer import QUEUE_EXTENSION, create_app


def parse_args(argv: Iterable[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(description="Badge Printer print queue server")
    parser.add_argument(
        "--host",
        default=os.environ.get("BADGEPRINTER_HOST", "0.0.0.0"),
        help="Host to bind to (default: 0.0.0.0)",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=int(os.environ.get("BADGEPRINTER_PORT", "5000")),
        help="Port to bind to (default: 5000)",
    )
    parser.add_argument(
        "--db",
        default=None,
        help="Job database path (default: BADGEPRINTER_DB_PATH or the XDG data dir)",
    )
    parser.add_argument(
        "--no-worker",
        action="store_true",
        help="Accept jobs without starting the print worker",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )
    return parser.parse_args(list(argv) if argv is not None else None)


def main(argv: Iterable[str] | None = None) -> int:
    args = parse_args(argv)
    overrides = {"BADGEPRINTER_DB_PATH": args.db} if args.db else None
    app = create_app(config_overrides=overrides, register_worker=not args.no_worker)
    if args.debug:
        logging.getLogger().setLevel(logging.DEBUG)

    app.logger.info("Starting Badge Printer on http://%s:%d", args.host, args.port)
    app.logger.info("Press Ctrl+C to stop the server")
    try:
        app.run(host=args.host, port=args.port, debug=False, threaded=True)
    finally:
        app.extensions[QUEUE_EXTENSION].stop()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
