"""
app/services/identifier_allocator.py

Issues human-readable sequential identifiers such as ``2025STU001``.

Numbers come from a per-prefix counter advanced by an atomic
increment-and-fetch, never from reading the highest identifier already
issued. Two batches drawing from the same prefix at the same time each
get distinct numbers, and a number is never handed out twice.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Protocol

from sqlalchemy.orm import Session

from db.repositories.identifier_counter_repository import IdentifierCounterRepository


def build_prefix(code: str, *, year: int | None = None) -> str:
    """``build_prefix("STU", year=2025) -> "2025STU"``."""
    if year is None:
        year = datetime.now(timezone.utc).year
    return f"{year}{code.strip().upper()}"


def format_identifier(prefix: str, sequence: int, *, width: int = 3) -> str:
    """
    Zero-pad ``sequence`` to ``width`` digits. Wider numbers are kept intact
    (``2025STU1000``), so ordering stays numeric within a prefix.
    """

    return f"{prefix}{sequence:0{width}d}"


@dataclass(frozen=True)
class IdentifierBlock:
    """
    A contiguous run of reserved sequence numbers ``[start, start + size)``.
    """

    prefix: str
    start: int
    size: int
    width: int = 3

    def identifiers(self) -> list[str]:
        return [
            format_identifier(self.prefix, sequence, width=self.width)
            for sequence in range(self.start, self.start + self.size)
        ]


class IdentifierAllocator(Protocol):
    def next_identifier(self, prefix: str) -> str:
        ...

    def reserve_block(self, prefix: str, size: int) -> IdentifierBlock:
        ...


class SqlIdentifierAllocator:
    """
    Allocator backed by the ``identifier_counters`` table.

    Allocation joins the session's open transaction: the counter row stays
    locked until the caller commits, and a rollback returns the numbers.
    """

    def __init__(self, session: Session, *, width: int = 3) -> None:
        self._counters = IdentifierCounterRepository(session)
        self._width = width

    def next_identifier(self, prefix: str) -> str:
        sequence = self._counters.increment(prefix=prefix, amount=1)
        return format_identifier(prefix, sequence, width=self._width)

    def reserve_block(self, prefix: str, size: int) -> IdentifierBlock:
        start = self._counters.increment(prefix=prefix, amount=size)
        return IdentifierBlock(prefix=prefix, start=start, size=size, width=self._width)


class InMemoryIdentifierAllocator:
    """
    Process-local allocator guarded by a lock.

    Used by tests and by dry runs that must not touch the counter table.
    """

    def __init__(self, *, width: int = 3, start_values: dict[str, int] | None = None) -> None:
        self._width = width
        self._next: dict[str, int] = dict(start_values or {})
        self._lock = threading.Lock()

    def next_identifier(self, prefix: str) -> str:
        return self.reserve_block(prefix, 1).identifiers()[0]

    def reserve_block(self, prefix: str, size: int) -> IdentifierBlock:
        if size < 1:
            raise ValueError("size must be >= 1")
        with self._lock:
            start = self._next.get(prefix, 1)
            self._next[prefix] = start + size
        return IdentifierBlock(prefix=prefix, start=start, size=size, width=self._width)

    def peek(self, prefix: str) -> int:
        with self._lock:
            return self._next.get(prefix, 1)
