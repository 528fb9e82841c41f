"""
tests/test_reconciliation_job.py

The scheduled reconciliation job, run directly against the test database.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from app.domain.identity_import import BatchMeta
from app.scheduler.jobs import run_import_reconciliation
from app.services.provenance_ledger import ProvenanceLedger
from app.validators.identity_row_validator import IdentityRowValidator
from db.models.import_ledger import ImportLedgerEntry, LedgerStatus, RowStatus


class SweepingValidator(IdentityRowValidator):
    """Runs a reconciliation sweep while the batch is between rows."""

    def __init__(self, session_factory, *, at: int) -> None:
        super().__init__()
        self._session_factory = session_factory
        self._at = at
        self.reports = []

    def validate(self, *, row, row_index, reference, context):
        if row_index == self._at:
            self.reports.append(run_import_reconciliation(self._session_factory, stale_after_minutes=0))
        return super().validate(row=row, row_index=row_index, reference=reference, context=context)


def test_marks_abandoned_batches_failed(db_session: Session, session_factory) -> None:
    ledger = ProvenanceLedger(db_session)
    abandoned = ledger.open(
        BatchMeta(import_type="staff", actor="hr"),
        record_count=10,
        started_at=datetime.now(timezone.utc) - timedelta(hours=3),
    )
    db_session.commit()

    report = run_import_reconciliation(session_factory, stale_after_minutes=30)

    assert report.marked_failed == [abandoned.id]
    db_session.expire_all()
    assert db_session.get(ImportLedgerEntry, abandoned.id).status == LedgerStatus.FAILED


def test_no_stale_batches(session_factory) -> None:
    report = run_import_reconciliation(session_factory, stale_after_minutes=30)

    assert report.marked_failed == []
    assert report.rollback_inconsistent == []


def test_database_error_rolls_back_and_reports_nothing(
    db_session: Session,
    session_factory,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    ledger = ProvenanceLedger(db_session)
    entry = ledger.open(
        BatchMeta(import_type="student", actor="registrar"),
        record_count=1,
        started_at=datetime.now(timezone.utc) - timedelta(hours=3),
    )
    db_session.commit()

    def _broken_rollback_check(self):
        raise OperationalError("SELECT import_ledger_entries", {}, Exception("database is locked"))

    monkeypatch.setattr(
        "db.repositories.import_ledger_repository.ImportLedgerRepository.list_rollback_inconsistent",
        _broken_rollback_check,
    )

    report = run_import_reconciliation(session_factory, stale_after_minutes=30)

    assert report.marked_failed == []
    db_session.expire_all()
    assert db_session.get(ImportLedgerEntry, entry.id).status == LedgerStatus.PROCESSING


def test_sweep_during_a_running_batch_is_not_overwritten(
    db_session: Session,
    session_factory,
    make_executor,
) -> None:
    validator = SweepingValidator(session_factory, at=2)
    rows = [{"firstName": f"U{i}", "lastName": "T", "email": f"u{i}@college.edu"} for i in range(1, 4)]

    report = make_executor(validator=validator).run(
        db=db_session,
        rows=rows,
        meta=BatchMeta(import_type="student", actor="registrar"),
    )

    assert validator.reports[0].marked_failed == [report.ledger_entry_id]
    assert [row.status for row in report.rows] == [RowStatus.SUCCESS] * 3
    assert report.status == LedgerStatus.FAILED
    assert report.total_processed == 3
    assert report.rollback_available is True

    db_session.expire_all()
    entry = db_session.get(ImportLedgerEntry, report.ledger_entry_id)
    assert entry.status == LedgerStatus.FAILED
    assert entry.successful_records == 3
    assert len(entry.created_identity_ids) == 3
    assert "Marked failed by reconciliation" in entry.notes
    assert "Batch finished after the entry was closed as failed." in entry.notes
