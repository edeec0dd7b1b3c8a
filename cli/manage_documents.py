#!/usr/bin/env python3
"""
Operator commands for stored documents: provider reassignment, holds and
download links.
"""

from __future__ import annotations
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from axp_exceptions import AxpError, ConfigError
from clients import get_s3
from interfaces import S3ObjectStore
from ingest import DocumentService
from store import RecordStore
from dotenv import load_dotenv
import argparse
import logging
import os


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Manage ingested documents")
    parser.add_argument("--tenant", required=True, help="Tenant id")
    sub = parser.add_subparsers(dest="command", required=True)

    reassign = sub.add_parser("reassign", help="Set the provider on documents")
    target = reassign.add_mutually_exclusive_group(required=True)
    target.add_argument("--provider", help="Provider id to assign")
    target.add_argument("--unassign", action="store_true", help="Clear the provider")
    reassign.add_argument("documents", nargs="+", help="Document ids")

    hold = sub.add_parser("hold", help="Set or clear a document hold")
    hold.add_argument("document", help="Document id")
    hold.add_argument("--state", help="Hold state; omit to clear")

    presign = sub.add_parser("presign", help="Print a download link")
    presign.add_argument("document", help="Document id")
    presign.add_argument("--ttl", type=int, help="Link lifetime in seconds")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    load_dotenv()
    args = parse_args(argv)
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO"),
        format="%(asctime)s %(levelname)s %(message)s",
    )

    database_url = os.getenv("DATABASE_URL")
    if not database_url:
        logging.error("Configuration error: DATABASE_URL not set")
        return 1

    try:
        store = RecordStore.from_url(database_url)
        if args.command == "presign":
            service = DocumentService(store, object_store=S3ObjectStore(get_s3()))
            print(service.presigned_url(args.tenant, args.document, args.ttl))
            return 0

        service = DocumentService(store)
        if args.command == "reassign":
            provider_id = None if args.unassign else args.provider
            result = service.bulk_reassign(args.tenant, args.documents, provider_id)
            for document_id in result.not_found:
                logging.warning("Document not found: %s", document_id)
            print(f"updated={len(result.updated)} not_found={len(result.not_found)}")
            return 0 if not result.not_found else 2

        document = service.set_hold(args.tenant, args.document, args.state)
        print(f"{document.id} {document.review_state}")
        return 0
    except ConfigError as error:
        logging.error("Configuration error: %s", error)
        return 1
    except AxpError as error:
        logging.error("%s failed: %s", args.command, error)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
