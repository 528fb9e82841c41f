"""
Run one import ledger reconciliation pass from CLI.
"""

from __future__ import annotations

import argparse
import json
import logging
import os

from app.config import get_reconciliation_settings
from app.scheduler.jobs import run_import_reconciliation


def main() -> int:
    parser = argparse.ArgumentParser(description="Mark abandoned import batches failed.")
    parser.add_argument(
        "--stale-after-minutes",
        type=int,
        default=None,
        help="Override IMPORT_STALE_AFTER_MINUTES for this run.",
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, os.getenv("LOG_LEVEL", "INFO").strip().upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    stale_after = args.stale_after_minutes or get_reconciliation_settings().stale_after_minutes
    report = run_import_reconciliation(stale_after_minutes=stale_after)
    print(
        json.dumps(
            {
                "stale_after_minutes": stale_after,
                "marked_failed": [str(entry_id) for entry_id in report.marked_failed],
                "rollback_inconsistent": [str(entry_id) for entry_id in report.rollback_inconsistent],
            },
            indent=2,
        )
    )
    return 1 if report.rollback_inconsistent else 0


if __name__ == "__main__":
    raise SystemExit(main())
