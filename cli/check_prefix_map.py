#!/usr/bin/env python3
"""
Validate a prefix map file and show where sample filenames would be routed.
"""

from __future__ import annotations
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from axp_exceptions import ConfigError, UnroutableFileError
from config import DEFAULT_PREFIX_MAP_PATH
from routing import load_prefix_map, route
from dotenv import load_dotenv
import argparse
import logging


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Check a tenant prefix map")
    parser.add_argument("--path", default=DEFAULT_PREFIX_MAP_PATH,
                        help="Prefix map JSON file")
    parser.add_argument("filenames", nargs="*", help="Filenames to route")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    load_dotenv()
    args = parse_args(argv)
    logging.basicConfig(level=logging.INFO,
                        format="%(asctime)s %(levelname)s %(message)s")
    try:
        snapshot = load_prefix_map(args.path)
    except ConfigError as error:
        logging.error("Configuration error: %s", error)
        return 1

    for prefix, tenant in sorted(snapshot.entries.items()):
        print(f"{prefix}\t{tenant.tenant_id}\t{tenant.bucket}\t{tenant.namespace or '-'}")

    unrouted = 0
    for filename in args.filenames:
        try:
            tenant = route(filename, snapshot)
        except UnroutableFileError as error:
            unrouted += 1
            print(f"{filename}\tUNROUTED\t{error}")
            continue
        print(f"{filename}\t{tenant.tenant_id}\t{tenant.bucket}")
    return 1 if unrouted else 0


if __name__ == "__main__":
    raise SystemExit(main())
