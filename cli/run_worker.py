#!/usr/bin/env python3
"""
CLI entrypoint for the AXP ingest worker.
"""

from __future__ import annotations
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from axp_exceptions import AxpError, ConfigError
from config import WorkerConfig
from ingest import IngestContext
from dotenv import load_dotenv
import argparse
import logging
import os
import signal
import threading


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description="Watch the WebDAV drop folder and ingest invoices"
    )
    parser.add_argument("--watch-dir", help="Watch root (defaults to WEBDAV_DIR)")
    parser.add_argument("--prefix-map", help="Prefix map JSON file")
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single scan and exit",
    )
    parser.add_argument(
        "--workers",
        type=int,
        help="Number of concurrent file jobs",
    )
    parser.add_argument(
        "--events-file",
        help="Path to JSONL file for processing events",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Use in-memory stores and do not move files.",
    )
    parser.add_argument("--log-level", help="Logging level (e.g. DEBUG)")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    load_dotenv()
    args = parse_args(argv)
    if args.dry_run:
        os.environ["DRY_RUN"] = "true"
    if args.watch_dir:
        os.environ["WEBDAV_DIR"] = args.watch_dir

    try:
        config = WorkerConfig.from_env()
        if args.prefix_map:
            config.prefix_map_path = args.prefix_map
        if args.workers:
            config.max_workers = args.workers
        if args.events_file:
            config.events_file = args.events_file
        if args.log_level:
            config.log_level = args.log_level.upper()
        config.validate()
    except ConfigError as error:
        logging.error("Configuration error: %s", error)
        return 1

    ctx = IngestContext(config)
    try:
        worker = ctx.worker
    except AxpError as error:
        ctx.logger.error("Startup failed: %s", error)
        return 1

    if args.once:
        report = worker.scan_once()
        return 1 if report.failed_files else 0

    stop_event = threading.Event()

    def _stop(signum, _frame):
        ctx.logger.info("Received signal %d, stopping after current scan", signum)
        stop_event.set()

    def _reload(_signum, _frame):
        ctx.prefix_maps.reload()

    signal.signal(signal.SIGTERM, _stop)
    signal.signal(signal.SIGINT, _stop)
    if hasattr(signal, "SIGHUP"):
        signal.signal(signal.SIGHUP, _reload)

    try:
        worker.run_forever(stop_event)
        return 0
    except KeyboardInterrupt:
        ctx.logger.warning("Worker interrupted by user.")
        return 0


if __name__ == "__main__":
    raise SystemExit(main())
