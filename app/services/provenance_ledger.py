"""
app/services/provenance_ledger.py

Durable audit record of each import batch.

Lifecycle of an entry:

    open()            -> status=processing (caller commits right away so a
                         crashed batch stays visible)
    append_outcome()  -> one insert per row, never updated
    finalize()        -> counts tallied from the outcome rows, timing and
                         rollback eligibility computed, status=completed
                         (or failed when the batch aborted)

Entries left in ``processing`` by a dead process are never resumed; the
reconciliation sweep marks them failed for operator attention.

Transaction contract: nothing here commits. The batch executor and the
reconciliation job own commit/rollback.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy.orm import Session

from app.domain.identity_import import BatchMeta, ReconciliationReport, ValidationOutcome
from db.base import ensure_aware
from db.models.identity import Identity
from db.models.import_ledger import ImportLedgerEntry, ImportLedgerOutcome, LedgerStatus, RowStatus
from db.repositories.import_ledger_repository import ImportLedgerRepository

logger = logging.getLogger(__name__)

MAX_NOTES_LENGTH = 1000


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def compute_duration_ms(started_at: datetime, completed_at: datetime) -> int:
    start = ensure_aware(started_at)
    end = ensure_aware(completed_at)
    return max(0, int((end - start).total_seconds() * 1000))


def format_duration(duration_ms: int) -> str:
    """``850 -> "850ms"``, ``4200 -> "4s"``, ``125000 -> "2m 5s"``."""
    if duration_ms < 1000:
        return f"{duration_ms}ms"
    if duration_ms < 60_000:
        return f"{round(duration_ms / 1000)}s"
    minutes, remainder = divmod(duration_ms, 60_000)
    return f"{minutes}m {round(remainder / 1000)}s"


def format_size(size_bytes: int) -> str:
    if size_bytes <= 0:
        return "0 Bytes"
    units = ("Bytes", "KB", "MB", "GB")
    value = float(size_bytes)
    index = 0
    while value >= 1024 and index < len(units) - 1:
        value /= 1024
        index += 1
    return f"{round(value, 2):g} {units[index]}"


class ProvenanceLedger:
    def __init__(self, session: Session) -> None:
        self._session = session
        self._repository = ImportLedgerRepository(session)

    @property
    def repository(self) -> ImportLedgerRepository:
        return self._repository

    def open(
        self,
        meta: BatchMeta,
        *,
        record_count: int,
        metadata: dict[str, Any] | None = None,
        started_at: datetime | None = None,
    ) -> ImportLedgerEntry:
        metadata_json: dict[str, Any] = {
            "client_ip": meta.client_ip,
            "user_agent": meta.user_agent,
        }
        metadata_json.update(metadata or {})
        notes = meta.notes[:MAX_NOTES_LENGTH] if meta.notes else None

        entry = self._repository.create_entry(
            import_type=meta.import_type,
            origin=meta.origin,
            origin_size_bytes=max(0, meta.origin_size_bytes),
            record_count=record_count,
            submitted_by=meta.actor,
            started_at=started_at or _utcnow(),
            metadata_json=metadata_json,
            notes=notes,
        )
        logger.info(
            "Import ledger opened entry_id=%s import_type=%s records=%s actor=%s origin=%r",
            entry.id,
            entry.import_type,
            record_count,
            meta.actor,
            meta.origin,
        )
        return entry

    def append_outcome(
        self,
        entry: ImportLedgerEntry,
        outcome: ValidationOutcome,
        *,
        payload: dict[str, Any],
        identity: Identity | None = None,
        recorded_at: datetime | None = None,
    ) -> ImportLedgerOutcome:
        if identity is not None and outcome.status == RowStatus.FAILURE:
            raise ValueError("A failed row cannot reference a created identity.")
        return self._repository.add_outcome(
            entry_id=entry.id,
            row_index=outcome.row_index,
            status=outcome.status,
            payload=payload,
            errors=list(outcome.errors),
            warnings=list(outcome.warnings),
            identity_id=identity.id if identity is not None else None,
            identifier=identity.identifier if identity is not None else None,
            recorded_at=recorded_at or _utcnow(),
        )

    def finalize(
        self,
        entry: ImportLedgerEntry,
        *,
        status: str = LedgerStatus.COMPLETED,
        metadata: dict[str, Any] | None = None,
        reason: str | None = None,
        completed_at: datetime | None = None,
    ) -> ImportLedgerEntry:
        if status not in {LedgerStatus.COMPLETED, LedgerStatus.FAILED}:
            raise ValueError(f"Cannot finalize ledger entry with status {status!r}.")

        # Locks the entry row so a finishing batch and a reconciliation sweep
        # cannot both close it.
        self._session.refresh(entry, with_for_update=True)
        if entry.status != LedgerStatus.PROCESSING:
            logger.warning(
                "Import ledger entry already closed entry_id=%s status=%s requested=%s",
                entry.id,
                entry.status,
                status,
            )
            reason = reason or f"Batch finished after the entry was closed as {entry.status}."
            status = entry.status

        tally = self._repository.tally_outcomes(entry.id)
        created_ids = self._repository.created_identity_ids(entry.id)
        completed_at = completed_at or _utcnow()

        entry.successful_records = tally.get(RowStatus.SUCCESS, 0)
        entry.failed_records = tally.get(RowStatus.FAILURE, 0)
        entry.warning_records = tally.get(RowStatus.WARNING, 0)
        entry.total_records = entry.successful_records + entry.failed_records + entry.warning_records
        entry.created_identity_ids = [str(identity_id) for identity_id in created_ids]
        entry.rollback_available = bool(created_ids) and entry.rolled_back_at is None
        entry.status = status
        entry.completed_at = completed_at
        entry.duration_ms = compute_duration_ms(entry.started_at, completed_at)
        if metadata:
            entry.metadata_json = {**(entry.metadata_json or {}), **metadata}
        if reason:
            entry.notes = self._append_note(entry.notes, reason)

        self._session.flush()
        logger.info(
            "Import ledger finalized entry_id=%s status=%s total=%s success=%s warning=%s failed=%s duration_ms=%s",
            entry.id,
            entry.status,
            entry.total_records,
            entry.successful_records,
            entry.warning_records,
            entry.failed_records,
            entry.duration_ms,
        )
        return entry

    def mark_failed(self, entry_id: uuid.UUID, *, reason: str) -> ImportLedgerEntry | None:
        """
        Close an entry as failed, keeping whatever outcomes were recorded.
        """

        entry = self._repository.get_entry(entry_id)
        if entry is None:
            return None
        if entry.status != LedgerStatus.PROCESSING:
            return entry
        return self.finalize(entry, status=LedgerStatus.FAILED, reason=reason)

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    def find_stale(self, *, older_than: timedelta, now: datetime | None = None) -> list[ImportLedgerEntry]:
        cutoff = (now or _utcnow()) - older_than
        return self._repository.list_processing_idle_since(cutoff)

    def reconcile(self, *, older_than: timedelta, now: datetime | None = None) -> ReconciliationReport:
        """
        Mark abandoned ``processing`` entries failed and report rollbacks
        whose deletion was recorded without the availability flag cleared.
        """

        marked: list[uuid.UUID] = []
        for entry in self.find_stale(older_than=older_than, now=now):
            self.finalize(
                entry,
                status=LedgerStatus.FAILED,
                reason="Marked failed by reconciliation: batch never finalized.",
            )
            logger.warning(
                "Stale import batch marked failed entry_id=%s started_at=%s recorded_outcomes=%s/%s",
                entry.id,
                entry.started_at,
                entry.total_records,
                entry.record_count,
            )
            marked.append(entry.id)

        inconsistent = [entry.id for entry in self._repository.list_rollback_inconsistent()]
        for entry_id in inconsistent:
            logger.warning("Import rollback requires manual reconciliation entry_id=%s", entry_id)

        return ReconciliationReport(marked_failed=marked, rollback_inconsistent=inconsistent)

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    def actor_stats(self, *, submitted_by: str, days: int = 30, now: datetime | None = None) -> dict[str, Any]:
        since = (now or _utcnow()) - timedelta(days=max(1, days))
        entries = self._repository.list_for_actor_since(submitted_by=submitted_by, since=since)

        total_records = sum(entry.total_records for entry in entries)
        total_successful = sum(entry.successful_records for entry in entries)
        durations = [entry.duration_ms for entry in entries if entry.status != LedgerStatus.PROCESSING]
        return {
            "submitted_by": submitted_by,
            "days": max(1, days),
            "total_imports": len(entries),
            "total_records": total_records,
            "total_successful": total_successful,
            "total_failed": sum(entry.failed_records for entry in entries),
            "total_warnings": sum(entry.warning_records for entry in entries),
            "avg_processing_time_ms": round(sum(durations) / len(durations)) if durations else 0,
            "completed_imports": sum(1 for entry in entries if entry.status == LedgerStatus.COMPLETED),
            "failed_imports": sum(1 for entry in entries if entry.status == LedgerStatus.FAILED),
            "success_rate": round(total_successful / total_records * 100) if total_records else 0,
        }

    @staticmethod
    def _append_note(existing: str | None, note: str) -> str:
        combined = f"{existing}\n{note}" if existing else note
        return combined[-MAX_NOTES_LENGTH:]
