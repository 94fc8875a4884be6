#!/usr/bin/env python3
"""Backfill the Vertex AI Search customer index from Firestore.

Reads every customer document, skips soft-deleted customers, and imports the
projected index records chunk by chunk. A failing chunk is reported and the
run continues with the next chunk.

Example usage:

    python scripts/sync_index.py --apply-settings --report reports/backfill.json
    python scripts/sync_index.py --resync 3fZ8kqVx0mE1
"""

from __future__ import annotations

import argparse
import json
import logging

from plotcrm.services.bulk_sync import summarize
from plotcrm.services.factories import build_bulk_synchronizer, build_synchronizer
from plotcrm.settings import get_settings


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Sync Firestore customers into the search index")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Normalize and project every customer without writing to the index.",
    )
    parser.add_argument(
        "--max-chunks",
        type=int,
        help="Stop after this many chunks (the committed prefix stays indexed).",
    )
    parser.add_argument(
        "--apply-settings",
        action="store_true",
        help="Push searchable/retrievable/facetable attribute settings after the backfill.",
    )
    parser.add_argument(
        "--resync",
        nargs="+",
        metavar="STORAGE_KEY",
        help="Re-apply specific customers by Firestore document id instead of a full backfill.",
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


def resync(storage_keys: list[str]) -> int:
    synchronizer = build_synchronizer()
    failures = 0
    for storage_key in storage_keys:
        try:
            result = synchronizer.resync_customer(storage_key)
        except RuntimeError as exc:
            failures += 1
            logging.error("Resync failed for %s: %s", storage_key, exc)
            continue
        logging.info("Resynced %s -> %s (%s)", storage_key, result.object_id, result.operation)
    return 1 if failures else 0


def main() -> int:
    args = parse_args()
    logging.basicConfig(level=(args.log_level or get_settings().log_level).upper())

    if args.resync:
        return resync(args.resync)

    settings = get_settings()
    bulk = build_bulk_synchronizer(settings=settings)
    outcomes = []
    for outcome in bulk.backfill_index(dry_run=args.dry_run):
        outcomes.append(outcome)
        logging.info(
            "Chunk %d: %d read, %d indexed, %d skipped%s",
            outcome.index,
            outcome.source,
            outcome.migrated,
            outcome.skipped,
            f", error: {outcome.error}" if outcome.error else "",
        )
        if args.max_chunks and len(outcomes) >= args.max_chunks:
            logging.info("Stopping after %d chunk(s)", len(outcomes))
            break

    summary = summarize(settings.storage.customers_collection, outcomes, dry_run=args.dry_run)
    logging.info(
        "Backfill %s: %d indexed, %d skipped, %d failed chunk(s)",
        summary.status,
        summary.migrated,
        summary.skipped,
        summary.failed_chunks,
    )

    if args.apply_settings and not args.dry_run:
        schema = bulk.apply_index_settings()
        logging.info("Applied index settings for %d attribute(s)", len(schema["properties"]))

    if args.report:
        logging.info("Writing report to %s", args.report)
        with open(args.report, "w", encoding="utf-8") as fh:
            json.dump(summary.as_dict(), fh, indent=2, ensure_ascii=False)

    return 0 if summary.status == "success" else 1


if __name__ == "__main__":
    raise SystemExit(main())
