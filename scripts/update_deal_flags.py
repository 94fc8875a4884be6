#!/usr/bin/env python3
"""Recompute hasDeals / hasTreeBurialDeals / hasBurialPersons for every customer."""

from __future__ import annotations

import argparse
import json
import logging

from plotcrm.services.factories import build_deal_flag_updater
from plotcrm.settings import get_settings


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Refresh customer deal flags from the deal collections")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Report the flags that would change without writing to Firestore.",
    )
    parser.add_argument(
        "--no-reindex",
        action="store_true",
        help="Skip pushing changed customers to the search index.",
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

    updater = build_deal_flag_updater(reindex=not args.no_reindex)
    report = updater.refresh(dry_run=args.dry_run)
    print(json.dumps(report.as_dict(), indent=2, ensure_ascii=False))
    return 1 if report.errors else 0


if __name__ == "__main__":
    raise SystemExit(main())
