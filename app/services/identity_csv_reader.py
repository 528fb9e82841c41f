"""
app/services/identity_csv_reader.py

Turns an uploaded CSV file into the row mappings the batch executor takes.

Only shape problems are raised here (encoding, missing header, malformed
CSV). Field-level checks belong to the row validator so every row still
gets its own ledger outcome.
"""

from __future__ import annotations

import csv
import io
from dataclasses import dataclass, field
from typing import IO, Any

from app.errors import BatchSetupError

REQUIRED_HEADER_ALIASES: dict[str, tuple[str, ...]] = {
    "first_name": ("firstname", "first_name", "first name"),
    "last_name": ("lastname", "last_name", "last name"),
    "email": ("email", "emailaddress", "email_address"),
}


class CSVFormatError(BatchSetupError):
    """
    Raised when the uploaded file is not a readable identity CSV.
    """


@dataclass(frozen=True)
class ParsedCSV:
    rows: list[dict[str, Any]] = field(default_factory=list)
    headers: list[str] = field(default_factory=list)
    size_bytes: int = 0
    skipped_empty_rows: int = 0


def read_identity_csv(raw_file: IO[bytes]) -> ParsedCSV:
    """
    Read a UTF-8 (optionally BOM-prefixed) CSV with a header row.

    Completely empty lines are skipped; the row cap is enforced by the
    batch executor.
    """

    raw_file.seek(0, io.SEEK_END)
    size_bytes = raw_file.tell()
    raw_file.seek(0)

    text_stream: io.TextIOWrapper | None = None
    rows: list[dict[str, Any]] = []
    skipped = 0
    try:
        text_stream = io.TextIOWrapper(raw_file, encoding="utf-8-sig", newline="")
        reader = csv.DictReader(text_stream)
        headers = [header.strip() for header in (reader.fieldnames or []) if header is not None]
        if not headers:
            raise CSVFormatError("CSV header row is missing.")
        _check_required_headers(headers)

        for raw_row in reader:
            if _is_completely_empty(raw_row):
                skipped += 1
                continue
            rows.append(
                {
                    (key or "").strip(): value
                    for key, value in raw_row.items()
                    if key is not None
                }
            )
    except UnicodeDecodeError as exc:
        raise CSVFormatError("CSV must be UTF-8 encoded.") from exc
    except csv.Error as exc:
        raise CSVFormatError(f"Invalid CSV format: {exc}") from exc
    finally:
        if text_stream is not None:
            try:
                text_stream.detach()
            except ValueError:
                pass

    return ParsedCSV(rows=rows, headers=headers, size_bytes=size_bytes, skipped_empty_rows=skipped)


def _check_required_headers(headers: list[str]) -> None:
    normalized = {header.strip().lower() for header in headers}
    missing = [
        canonical
        for canonical, aliases in REQUIRED_HEADER_ALIASES.items()
        if not normalized.intersection(aliases)
    ]
    if missing:
        raise CSVFormatError(f"CSV is missing required columns: {', '.join(missing)}.")


def _is_completely_empty(raw_row: dict[str | None, Any]) -> bool:
    for value in raw_row.values():
        if isinstance(value, list):
            if any(str(item).strip() for item in value):
                return False
        elif value is not None and str(value).strip():
            return False
    return True
