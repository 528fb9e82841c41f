"""
Atomic increment-and-fetch on the per-prefix identifier counters.

The UPDATE takes the counter row's write lock, so concurrent batches
allocating from the same prefix serialise on that row until their own
transaction ends. The caller controls commit/rollback: a rolled-back
transaction returns its numbers to the counter.
"""

from __future__ import annotations

from sqlalchemy import func, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from db.models.identifier_counter import IdentifierCounter
from db.models.identity import Identity
from db.repositories.errors import IdentifierAllocationError


class IdentifierCounterRepository:
    def __init__(self, session: Session) -> None:
        self._session = session

    def increment(self, *, prefix: str, amount: int = 1) -> int:
        """
        Advance ``prefix`` by ``amount`` and return the first value of the
        reserved range ``[first, first + amount)``.
        """

        if amount < 1:
            raise ValueError("amount must be >= 1")

        try:
            self._ensure_counter(prefix)
            result = self._session.execute(
                update(IdentifierCounter)
                .where(IdentifierCounter.prefix == prefix)
                .values(
                    next_value=IdentifierCounter.next_value + amount,
                    updated_at=func.now(),
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise IdentifierAllocationError(f"Identifier counter {prefix!r} could not be advanced.")

            next_value = self._session.scalar(
                select(IdentifierCounter.next_value).where(IdentifierCounter.prefix == prefix)
            )
        except SQLAlchemyError as exc:
            raise IdentifierAllocationError(f"Identifier counter {prefix!r} is unavailable: {exc}") from exc

        if next_value is None:
            raise IdentifierAllocationError(f"Identifier counter {prefix!r} vanished during allocation.")
        return int(next_value) - amount

    def peek(self, prefix: str) -> int | None:
        """Next unallocated value, or None when the prefix was never used."""
        return self._session.scalar(
            select(IdentifierCounter.next_value).where(IdentifierCounter.prefix == prefix)
        )

    def _ensure_counter(self, prefix: str) -> None:
        if self.peek(prefix) is not None:
            return

        dialect = self._session.get_bind().dialect.name
        values = {"prefix": prefix, "next_value": self._seed_value(prefix)}

        if dialect == "postgresql":
            stmt = postgresql.insert(IdentifierCounter).values(**values).on_conflict_do_nothing(
                index_elements=["prefix"]
            )
            self._session.execute(stmt)
            return
        if dialect == "sqlite":
            stmt = sqlite.insert(IdentifierCounter).values(**values).on_conflict_do_nothing(
                index_elements=["prefix"]
            )
            self._session.execute(stmt)
            return

        try:
            with self._session.begin_nested():
                self._session.add(IdentifierCounter(**values))
        except IntegrityError:
            # Created concurrently; the UPDATE below will find it.
            pass

    def _seed_value(self, prefix: str) -> int:
        """
        First value for a new counter: one past the highest numeric suffix
        already issued under ``prefix``, so identities created before the
        counter existed are never reissued.
        """

        stmt = select(Identity.identifier).where(Identity.identifier.like(f"{prefix}%"))
        highest = 0
        for identifier in self._session.scalars(stmt):
            suffix = identifier[len(prefix):]
            if suffix.isdigit():
                highest = max(highest, int(suffix))
        return highest + 1
