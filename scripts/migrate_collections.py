#!/usr/bin/env python3
"""Copy CRM collections from one Firestore project/database into another.

Document ids are preserved. Use ``--skip-existing`` to resume an interrupted
run without overwriting documents that already reached the destination.
"""

from __future__ import annotations

import argparse
import json
import logging

from plotcrm.services.bulk_sync import DEFAULT_MIGRATION_COLLECTIONS
from plotcrm.services.factories import build_bulk_synchronizer, build_customer_store
from plotcrm.settings import get_settings


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Migrate CRM collections between Firestore databases")
    parser.add_argument("--source-project", required=True, help="Project holding the legacy database.")
    parser.add_argument("--source-database", help="Source Firestore database id (default database when omitted).")
    parser.add_argument(
        "--dest-project",
        help="Destination project (defaults to storage.firestore_project).",
    )
    parser.add_argument("--dest-database", help="Destination Firestore database id.")
    parser.add_argument(
        "--collection",
        action="append",
        dest="collections",
        help="Collection to migrate; repeat for several (defaults to every CRM collection).",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Count source documents without writing.",
    )
    parser.add_argument(
        "--skip-existing",
        action="store_true",
        help="Leave documents that already exist in the destination untouched.",
    )
    parser.add_argument(
        "--report",
        help="Optional path to write a JSON summary report.",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging verbosity (defaults to runtime.log_level).",
    )
    return parser.parse_args()


def main() -> int:
    args = parse_args()
    logging.basicConfig(level=(args.log_level or get_settings().log_level).upper())

    settings = get_settings()
    bulk = build_bulk_synchronizer(
        settings=settings,
        project=args.source_project,
        database=args.source_database,
        with_index=False,
    )
    destination = build_customer_store(
        settings=settings,
        project=args.dest_project,
        database=args.dest_database,
    )

    collections = args.collections or list(DEFAULT_MIGRATION_COLLECTIONS)
    logging.info("Migrating %d collection(s)%s", len(collections), " (dry run)" if args.dry_run else "")
    summaries = bulk.migrate_collections(
        destination,
        collections,
        dry_run=args.dry_run,
        skip_existing=args.skip_existing,
    )

    for summary in summaries:
        logging.info(
            "%-22s %-8s source=%d migrated=%d skipped=%d failed_chunks=%d",
            summary.collection,
            summary.status,
            summary.source,
            summary.migrated,
            summary.skipped,
            summary.failed_chunks,
        )

    if args.report:
        logging.info("Writing report to %s", args.report)
        with open(args.report, "w", encoding="utf-8") as fh:
            json.dump([summary.as_dict() for summary in summaries], fh, indent=2, ensure_ascii=False)

    return 0 if all(summary.status == "success" for summary in summaries) else 1


if __name__ == "__main__":
    raise SystemExit(main())
