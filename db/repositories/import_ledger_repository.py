"""
Repository for import ledger entries and their append-only row outcomes.

The caller controls commit/rollback; this repository only flushes.
"""

from __future__ import annotations

import uuid
from collections import Counter
from datetime import datetime
from typing import Any

from sqlalchemy import Select, func, or_, select, update
from sqlalchemy.orm import Session, selectinload

from db.models.import_ledger import ImportLedgerEntry, ImportLedgerOutcome, LedgerStatus


class ImportLedgerRepository:
    def __init__(self, session: Session) -> None:
        self._session = session

    def create_entry(
        self,
        *,
        import_type: str,
        origin: str,
        origin_size_bytes: int,
        record_count: int,
        submitted_by: str,
        started_at: datetime,
        metadata_json: dict[str, Any] | None = None,
        notes: str | None = None,
    ) -> ImportLedgerEntry:
        entry = ImportLedgerEntry(
            import_type=import_type,
            origin=origin,
            origin_size_bytes=origin_size_bytes,
            record_count=record_count,
            submitted_by=submitted_by,
            status=LedgerStatus.PROCESSING,
            started_at=started_at,
            rollback_available=False,
            created_identity_ids=[],
            metadata_json=metadata_json,
            notes=notes,
        )
        self._session.add(entry)
        self._session.flush()
        return entry

    def get_entry(self, entry_id: uuid.UUID, *, with_outcomes: bool = False) -> ImportLedgerEntry | None:
        if not with_outcomes:
            return self._session.get(ImportLedgerEntry, entry_id)
        stmt = (
            select(ImportLedgerEntry)
            .where(ImportLedgerEntry.id == entry_id)
            .options(selectinload(ImportLedgerEntry.outcomes))
        )
        return self._session.scalars(stmt).first()

    def list_entries(
        self,
        *,
        limit: int = 100,
        import_type: str | None = None,
        status: str | None = None,
        submitted_by: str | None = None,
    ) -> list[ImportLedgerEntry]:
        stmt: Select[tuple[ImportLedgerEntry]] = select(ImportLedgerEntry)

        if import_type:
            stmt = stmt.where(ImportLedgerEntry.import_type == import_type)
        if status:
            stmt = stmt.where(ImportLedgerEntry.status == status)
        if submitted_by:
            stmt = stmt.where(ImportLedgerEntry.submitted_by == submitted_by)

        stmt = stmt.order_by(ImportLedgerEntry.started_at.desc()).limit(max(1, limit))
        return list(self._session.scalars(stmt).all())

    def list_processing_idle_since(self, cutoff: datetime) -> list[ImportLedgerEntry]:
        """
        Processing entries with no activity after ``cutoff``: started before
        it and with no outcome recorded after it.
        """

        last_activity = (
            select(func.max(ImportLedgerOutcome.recorded_at))
            .where(ImportLedgerOutcome.entry_id == ImportLedgerEntry.id)
            .correlate(ImportLedgerEntry)
            .scalar_subquery()
        )
        stmt = (
            select(ImportLedgerEntry)
            .where(ImportLedgerEntry.status == LedgerStatus.PROCESSING)
            .where(ImportLedgerEntry.started_at < cutoff)
            .where(or_(last_activity.is_(None), last_activity < cutoff))
            .order_by(ImportLedgerEntry.started_at)
        )
        return list(self._session.scalars(stmt).all())

    def list_rollback_inconsistent(self) -> list[ImportLedgerEntry]:
        """Entries with a recorded deletion whose availability flag was never cleared."""
        stmt = (
            select(ImportLedgerEntry)
            .where(ImportLedgerEntry.rollback_deleted_count.is_not(None))
            .where(ImportLedgerEntry.rollback_available.is_(True))
        )
        return list(self._session.scalars(stmt).all())

    def list_for_actor_since(self, *, submitted_by: str, since: datetime) -> list[ImportLedgerEntry]:
        stmt = (
            select(ImportLedgerEntry)
            .where(ImportLedgerEntry.submitted_by == submitted_by)
            .where(ImportLedgerEntry.started_at >= since)
        )
        return list(self._session.scalars(stmt).all())

    # ------------------------------------------------------------------
    # Outcomes
    # ------------------------------------------------------------------

    def add_outcome(
        self,
        *,
        entry_id: uuid.UUID,
        row_index: int,
        status: str,
        payload: dict[str, Any],
        errors: list[str],
        warnings: list[str],
        recorded_at: datetime,
        identity_id: uuid.UUID | None = None,
        identifier: str | None = None,
    ) -> ImportLedgerOutcome:
        outcome = ImportLedgerOutcome(
            entry_id=entry_id,
            row_index=row_index,
            status=status,
            payload=payload,
            errors=list(errors),
            warnings=list(warnings),
            identity_id=identity_id,
            identifier=identifier,
            recorded_at=recorded_at,
        )
        self._session.add(outcome)
        self._session.flush()
        return outcome

    def tally_outcomes(self, entry_id: uuid.UUID) -> Counter[str]:
        stmt = (
            select(ImportLedgerOutcome.status, func.count())
            .where(ImportLedgerOutcome.entry_id == entry_id)
            .group_by(ImportLedgerOutcome.status)
        )
        return Counter({status: int(count) for status, count in self._session.execute(stmt).all()})

    def created_identity_ids(self, entry_id: uuid.UUID) -> list[uuid.UUID]:
        stmt = (
            select(ImportLedgerOutcome.identity_id)
            .where(ImportLedgerOutcome.entry_id == entry_id)
            .where(ImportLedgerOutcome.identity_id.is_not(None))
            .order_by(ImportLedgerOutcome.row_index)
        )
        return list(self._session.scalars(stmt).all())

    # ------------------------------------------------------------------
    # Rollback
    # ------------------------------------------------------------------

    def claim_rollback(
        self,
        *,
        entry_id: uuid.UUID,
        rolled_back_by: str,
        rolled_back_at: datetime,
        reason: str,
    ) -> bool:
        """
        Atomically flip ``rollback_available`` from true to false.

        Returns False when another caller already claimed (or the entry was
        never eligible). The row stays locked until the caller's transaction
        ends, so a concurrent claim blocks and then sees the flag cleared.
        """

        result = self._session.execute(
            update(ImportLedgerEntry)
            .where(ImportLedgerEntry.id == entry_id)
            .where(ImportLedgerEntry.rollback_available.is_(True))
            .values(
                rollback_available=False,
                rolled_back_by=rolled_back_by,
                rolled_back_at=rolled_back_at,
                rollback_reason=reason,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def record_rollback_deleted_count(self, *, entry_id: uuid.UUID, deleted_count: int) -> None:
        self._session.execute(
            update(ImportLedgerEntry)
            .where(ImportLedgerEntry.id == entry_id)
            .values(rollback_deleted_count=deleted_count)
            .execution_options(synchronize_session=False)
        )
