#!/usr/bin/env python
"""Compare the asset store with the catalog from the command line.

Dry-run by default (report only); pass --fix to apply corrective actions.

Usage:
    python -m scripts.verify_sync
    python -m scripts.verify_sync --verbose
    python -m scripts.verify_sync --fix
    python -m scripts.verify_sync --json
"""

import argparse
import dataclasses
import json
import sys

from config import settings
from database import get_session_local
from integrations.cloudinary_client import CloudinaryClient
from logging_config import setup_logging
from services.cleanup_queue_service import CleanupQueueService
from services.reconciler import Reconciler, VerificationReport


def build_reconciler(store=None) -> Reconciler:
    store = store or CloudinaryClient()
    queue = CleanupQueueService(store, max_attempts=settings.SCHEDULER_MAX_RETRIES)
    return Reconciler(store, queue, page_size=settings.ASSET_STORE_PAGE_SIZE)


def print_report(report: VerificationReport, verbose: bool = False) -> None:
    print(f"Store assets:    {report.cloud_count}")
    print(f"Catalog assets:  {report.db_count}")
    print(f"Listing:         {'complete' if report.listing_complete else 'INCOMPLETE'}")
    for error in report.listing_errors:
        print(f"  ! {error}")

    sections = (
        ("Missing in catalog", report.missing_in_db),
        ("Missing in store", report.missing_in_cloud),
        ("Conflicts", [c.external_id for c in report.conflicts]),
    )
    for title, ids in sections:
        print(f"{title + ':':<17}{len(ids)}")
        if verbose:
            for external_id in ids:
                print(f"  - {external_id}")

    if verbose:
        for conflict in report.conflicts:
            for field_name, diff in conflict.differences.items():
                print(
                    f"  {conflict.external_id}.{field_name}: "
                    f"catalog={diff['catalog']!r} store={diff['store']!r}"
                )

    if report.fix_results is not None:
        fixed = report.fix_results
        print("\nFixes applied:")
        print(f"  imported:  {fixed.fixed_missing_in_db}")
        print(f"  flagged:   {fixed.fixed_missing_in_cloud}")
        print(f"  updated:   {fixed.fixed_conflicts}")
        for error in fixed.fix_errors:
            print(f"  ! {error}")

    print()
    for rec in report.recommendations:
        print(f"* {rec}")


def main(argv: list[str] | None = None, reconciler: Reconciler | None = None) -> int:
    parser = argparse.ArgumentParser(description="Verify asset store / catalog sync")
    parser.add_argument("--fix", action="store_true", help="apply corrective actions")
    parser.add_argument("--verbose", "-v", action="store_true", help="list every discrepancy")
    parser.add_argument("--json", action="store_true", help="print the report as JSON")
    parser.add_argument("--debug", action="store_true", help="show sync engine debug logs")
    args = parser.parse_args(argv)
    setup_logging("DEBUG" if args.debug else "WARNING")

    reconciler = reconciler or build_reconciler()
    db = get_session_local()()
    try:
        report = reconciler.verify(db, auto_fix=args.fix, source="manual")
    finally:
        db.close()

    if args.json:
        data = dataclasses.asdict(report)
        data["is_in_sync"] = report.is_in_sync
        print(json.dumps(data, indent=2, default=str))
    else:
        print_report(report, verbose=args.verbose)

    return 0 if report.is_in_sync else 1


if __name__ == "__main__":
    sys.exit(main())
