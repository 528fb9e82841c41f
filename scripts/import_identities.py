"""
Run a bulk identity import from the command line.

    python -m scripts.import_identities student students.csv --actor registrar
    python -m scripts.import_identities staff staff.json --actor hr-admin

JSON files must hold a list of row objects. Notifications run inline after
the batch is recorded.
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from pathlib import Path

from app.domain.identity_import import BatchMeta
from app.errors import BatchSetupError
from app.services.batch_executor import InlineTaskExecutor, get_batch_executor
from app.services.identity_csv_reader import read_identity_csv
from db.repositories.errors import IdentityRepositoryError
from db.session import SessionLocal


def _load_rows(path: Path) -> tuple[list[dict], int]:
    if path.suffix.lower() == ".json":
        rows = json.loads(path.read_text(encoding="utf-8"))
        if not isinstance(rows, list):
            raise BatchSetupError("JSON import files must contain a list of row objects.")
        return rows, path.stat().st_size

    with path.open("rb") as handle:
        parsed = read_identity_csv(handle)
    return parsed.rows, parsed.size_bytes


def main() -> int:
    parser = argparse.ArgumentParser(description="Import staff or student identities from a CSV/JSON file.")
    parser.add_argument("import_type", choices=["staff", "student"])
    parser.add_argument("path", type=Path, help="CSV (with header row) or JSON list of rows.")
    parser.add_argument("--actor", required=True, help="User id recorded as the submitter.")
    parser.add_argument("--notes", default=None, help="Optional note stored on the ledger entry.")
    parser.add_argument("--show-rows", action="store_true", help="Include every row outcome in the output.")
    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, os.getenv("LOG_LEVEL", "INFO").strip().upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    try:
        rows, size_bytes = _load_rows(args.path)
        meta = BatchMeta(
            import_type=args.import_type,
            actor=args.actor,
            origin=args.path.name,
            origin_size_bytes=size_bytes,
            notes=args.notes,
            user_agent="scripts/import_identities.py",
        )
        with SessionLocal() as db:
            report = get_batch_executor().run(db=db, rows=rows, meta=meta, executor=InlineTaskExecutor())
    except (BatchSetupError, json.JSONDecodeError, OSError) as exc:
        print(f"Import rejected: {exc}", file=sys.stderr)
        return 2
    except IdentityRepositoryError as exc:
        print(f"Import failed: {exc}", file=sys.stderr)
        return 1

    payload = {
        "ledger_entry_id": str(report.ledger_entry_id),
        "status": report.status,
        "total_processed": report.total_processed,
        "success_count": report.success_count,
        "warning_count": report.warning_count,
        "failure_count": report.failure_count,
        "duration_ms": report.duration_ms,
        "rollback_available": report.rollback_available,
    }
    if args.show_rows:
        payload["rows"] = [
            {
                "row_index": row.row_index,
                "status": row.status,
                "identifier": row.identifier,
                "errors": list(row.errors),
                "warnings": list(row.warnings),
            }
            for row in report.rows
        ]
    print(json.dumps(payload, indent=2))
    return 0 if report.failure_count == 0 else 3


if __name__ == "__main__":
    raise SystemExit(main())
