"""
tests/test_batch_executor.py

Pytest tests for BatchExecutor against an in-memory SQLite database.

Coverage
--------
- The three-row reference scenario (success, in-batch duplicate, bad email)
- Row-count conservation across mixed batches
- Duplicate handling in either order and against existing identities
- A storage error or unexpected exception on one row is isolated
- Uniqueness violations surfacing at insert time
- Identifiers already held by an identity are skipped; new counters are seeded
- Setup failures write nothing
- Staff imports resolve departments and create staff profiles
- Notification failures never touch row outcomes
- A row whose failure outcome cannot be stored closes the entry as failed
"""

from __future__ import annotations

from typing import Any

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from app.domain.identity_import import BatchMeta
from app.errors import BatchSetupError, BatchTooLargeError
from app.services.credentials import verify_credential
from app.services.identifier_allocator import InMemoryIdentifierAllocator, SqlIdentifierAllocator
from app.services.provenance_ledger import ProvenanceLedger
from app.validators.identity_row_validator import IdentityRowValidator
from db.models.identifier_counter import IdentifierCounter
from db.models.identity import Identity, StaffProfile, StudentProfile
from db.models.import_ledger import ImportLedgerEntry, ImportLedgerOutcome, LedgerStatus, RowStatus
from db.repositories.identity_repository import IdentityRepository
from tests.conftest import RecordingNotificationService

EXAMPLE_ROWS = [
    {"first": "A", "last": "B", "email": "a@x.com"},
    {"first": "C", "last": "D", "email": "a@x.com"},
    {"first": "E", "last": "F", "email": "bad-email"},
]


def _meta(import_type: str = "student", actor: str = "registrar") -> BatchMeta:
    return BatchMeta(import_type=import_type, actor=actor, origin="api")


def _count(db: Session, model: Any) -> int:
    return db.scalar(select(func.count()).select_from(model))


class FailingAllocator:
    """Allocates normally, then raises a storage error on chosen calls."""

    def __init__(self, session: Session, *, fail_on: set[int]) -> None:
        self._inner = SqlIdentifierAllocator(session)
        self._fail_on = fail_on
        self.calls = 0

    def next_identifier(self, prefix: str) -> str:
        self.calls += 1
        identifier = self._inner.next_identifier(prefix)
        if self.calls in self._fail_on:
            raise OperationalError("INSERT INTO identities", {}, Exception("disk I/O error"))
        return identifier

    def reserve_block(self, prefix: str, size: int):
        return self._inner.reserve_block(prefix, size)


class ExplodingValidator(IdentityRowValidator):
    def __init__(self, *, explode_at: int) -> None:
        super().__init__()
        self._explode_at = explode_at

    def validate(self, *, row, row_index, reference, context):
        if row_index == self._explode_at:
            raise RuntimeError("validator bug")
        return super().validate(row=row, row_index=row_index, reference=reference, context=context)


class RacingValidator(IdentityRowValidator):
    """Another writer takes ``email`` just after the batch snapshot was read."""

    def __init__(self, session_factory, *, email: str, at: int) -> None:
        super().__init__()
        self._session_factory = session_factory
        self._email = email
        self._at = at

    def validate(self, *, row, row_index, reference, context):
        if row_index == self._at:
            other = self._session_factory()
            try:
                IdentityRepository(other).create_identity(
                    identifier="LEGACY001",
                    email=self._email,
                    first_name="Other",
                    last_name="Writer",
                    role="student",
                    password_hash="x",
                )
                other.commit()
            finally:
                other.close()
        return super().validate(row=row, row_index=row_index, reference=reference, context=context)


# ---------------------------------------------------------------------------
# Reference scenario
# ---------------------------------------------------------------------------


class TestReferenceScenario:
    def test_three_row_batch(self, db_session: Session, make_executor) -> None:
        report = make_executor().run(db=db_session, rows=EXAMPLE_ROWS, meta=_meta())

        assert (report.success_count, report.failure_count, report.warning_count) == (1, 2, 0)
        assert report.total_processed == 3
        assert report.status == LedgerStatus.COMPLETED
        assert report.rollback_available is True

        first, second, third = report.rows
        assert first.status == RowStatus.SUCCESS
        assert first.identifier == "2025STU001"
        assert second.status == RowStatus.FAILURE
        assert "already exists" in second.errors[0]
        assert "duplicate of row 1" in second.errors[0]
        assert third.status == RowStatus.FAILURE
        assert "Invalid email format" in third.errors[0]

        entry = db_session.get(ImportLedgerEntry, report.ledger_entry_id)
        assert entry.created_identity_ids == [str(first.identity_id)]
        assert entry.metadata_json["duplicate_emails"] == ["a@x.com"]
        assert entry.metadata_json["identifier_prefix"] == "2025STU"
        assert _count(db_session, Identity) == 1

    def test_student_profile_mirrors_identity(self, db_session: Session, make_executor) -> None:
        report = make_executor().run(db=db_session, rows=EXAMPLE_ROWS[:1], meta=_meta())

        profile = db_session.scalars(select(StudentProfile)).one()
        assert profile.identity_id == report.rows[0].identity_id
        assert profile.registration_number == "2025STU001"
        assert profile.full_name == "A B"
        assert profile.program == "Not Specified"


# ---------------------------------------------------------------------------
# Conservation and ordering
# ---------------------------------------------------------------------------


class TestRowAccounting:
    def test_every_row_gets_exactly_one_outcome(self, db_session: Session, make_executor) -> None:
        rows = [
            {"firstName": "Ok", "lastName": "One", "email": "one@college.edu"},
            {"firstName": "", "lastName": "Two", "email": "two@college.edu"},
            {"firstName": "Warn", "lastName": "Three", "email": "three@college.edu", "phone": "123"},
            {"firstName": "Dup", "lastName": "Four", "email": "one@college.edu"},
            {"firstName": "Bad", "lastName": "Five", "email": "five@", "role": "admin"},
            {"firstName": "Ok", "lastName": "Six", "email": "six@college.edu", "role": "alumni"},
        ]

        report = make_executor().run(db=db_session, rows=rows, meta=_meta())

        assert report.success_count + report.failure_count + report.warning_count == len(rows)
        assert [row.row_index for row in report.rows] == [1, 2, 3, 4, 5, 6]
        assert [row.status for row in report.rows] == [
            RowStatus.SUCCESS,
            RowStatus.FAILURE,
            RowStatus.WARNING,
            RowStatus.FAILURE,
            RowStatus.FAILURE,
            RowStatus.SUCCESS,
        ]
        outcomes = db_session.scalars(
            select(ImportLedgerOutcome).where(ImportLedgerOutcome.entry_id == report.ledger_entry_id)
        ).all()
        assert len(outcomes) == len(rows)
        assert _count(db_session, Identity) == 3
        assert [row.identifier for row in report.rows if row.identifier] == [
            "2025STU001",
            "2025STU002",
            "2025STU003",
        ]

    def test_failed_first_occurrence_does_not_block_second(self, db_session: Session, make_executor) -> None:
        rows = [
            {"firstName": "X", "lastName": "Y", "email": "same@college.edu", "department": "NOPE"},
            {"firstName": "X", "lastName": "Y", "email": "same@college.edu"},
        ]

        report = make_executor().run(db=db_session, rows=rows, meta=_meta())

        assert [row.status for row in report.rows] == [RowStatus.FAILURE, RowStatus.SUCCESS]

    def test_existing_identity_email_is_rejected(self, db_session: Session, make_executor) -> None:
        IdentityRepository(db_session).create_identity(
            identifier="2024STU001",
            email="taken@college.edu",
            first_name="Old",
            last_name="Student",
            role="student",
            password_hash="x",
        )
        db_session.commit()

        report = make_executor().run(
            db=db_session,
            rows=[{"firstName": "New", "lastName": "Student", "email": "TAKEN@college.edu"}],
            meta=_meta(),
        )

        assert report.rows[0].errors == ("User with email 'taken@college.edu' already exists.",)
        assert report.rollback_available is False


# ---------------------------------------------------------------------------
# Failure isolation
# ---------------------------------------------------------------------------


class TestFailureIsolation:
    def test_storage_error_on_row_three_is_isolated(self, db_session: Session, make_executor) -> None:
        rows = [{"firstName": f"User{i}", "lastName": "Test", "email": f"user{i}@college.edu"} for i in range(1, 6)]
        executor = make_executor(allocator_factory=lambda session: FailingAllocator(session, fail_on={3}))

        report = executor.run(db=db_session, rows=rows, meta=_meta())

        assert [row.status for row in report.rows] == [
            RowStatus.SUCCESS,
            RowStatus.SUCCESS,
            RowStatus.FAILURE,
            RowStatus.SUCCESS,
            RowStatus.SUCCESS,
        ]
        assert "disk I/O error" in report.rows[2].errors[0]
        assert [row.identifier for row in report.rows] == [
            "2025STU001",
            "2025STU002",
            None,
            "2025STU003",
            "2025STU004",
        ]
        assert _count(db_session, Identity) == 4
        assert db_session.scalar(select(Identity).where(Identity.email == "user3@college.edu")) is None

    def test_unexpected_error_on_one_row_is_isolated(self, db_session: Session, make_executor) -> None:
        rows = [{"firstName": f"U{i}", "lastName": "T", "email": f"u{i}@college.edu"} for i in range(1, 4)]
        executor = make_executor(validator=ExplodingValidator(explode_at=2))

        report = executor.run(db=db_session, rows=rows, meta=_meta())

        assert [row.status for row in report.rows] == [RowStatus.SUCCESS, RowStatus.FAILURE, RowStatus.SUCCESS]
        assert "validator bug" in report.rows[1].errors[0]
        assert [row.identifier for row in report.rows] == ["2025STU001", None, "2025STU002"]
        assert report.status == LedgerStatus.COMPLETED
        assert (report.total_processed, report.success_count, report.failure_count) == (3, 2, 1)
        assert _count(db_session, ImportLedgerOutcome) == 3
        assert _count(db_session, Identity) == 2

    def test_batch_aborts_when_failure_outcome_cannot_be_stored(
        self,
        db_session: Session,
        make_executor,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        original_append = ProvenanceLedger.append_outcome

        def _append(self, entry, outcome, **kwargs):
            if outcome.status == RowStatus.FAILURE:
                raise OperationalError("INSERT INTO import_ledger_outcomes", {}, Exception("database is locked"))
            return original_append(self, entry, outcome, **kwargs)

        monkeypatch.setattr(ProvenanceLedger, "append_outcome", _append)
        rows = [
            {"firstName": "A", "lastName": "One", "email": "a1@college.edu"},
            {"firstName": "B", "lastName": "Two", "email": "not-an-email"},
            {"firstName": "C", "lastName": "Three", "email": "c3@college.edu"},
        ]

        with pytest.raises(OperationalError):
            make_executor().run(db=db_session, rows=rows, meta=_meta())

        entry = db_session.scalars(select(ImportLedgerEntry)).one()
        assert entry.status == LedgerStatus.FAILED
        assert entry.total_records == 1
        assert entry.rollback_available is True
        assert "aborted at row 2" in entry.notes
        assert _count(db_session, Identity) == 1

    def test_email_taken_after_snapshot_becomes_failure(
        self,
        db_session: Session,
        session_factory,
        make_executor,
    ) -> None:
        validator = RacingValidator(session_factory, email="a1@college.edu", at=1)
        executor = make_executor(validator=validator)

        report = executor.run(
            db=db_session,
            rows=[
                {"firstName": "A", "lastName": "One", "email": "a1@college.edu"},
                {"firstName": "B", "lastName": "Two", "email": "b2@college.edu"},
            ],
            meta=_meta(),
        )

        assert report.rows[0].status == RowStatus.FAILURE
        assert list(report.rows[0].errors) == ["User with email 'a1@college.edu' already exists."]
        assert report.rows[1].status == RowStatus.SUCCESS
        assert report.rows[1].identifier == "2025STU001"


# ---------------------------------------------------------------------------
# Identifier collisions
# ---------------------------------------------------------------------------


def _legacy_identity(db: Session, identifier: str) -> None:
    IdentityRepository(db).create_identity(
        identifier=identifier,
        email=f"{identifier.lower()}@legacy.edu",
        first_name="Legacy",
        last_name="Row",
        role="student",
        password_hash="x",
    )


class TestIdentifierCollisions:
    ROWS = [
        {"firstName": "A", "lastName": "One", "email": "a1@college.edu"},
        {"firstName": "B", "lastName": "Two", "email": "b2@college.edu"},
    ]

    def test_identifiers_held_by_existing_identities_are_skipped(self, db_session: Session, make_executor) -> None:
        _legacy_identity(db_session, "2025STU001")
        db_session.commit()
        allocator = InMemoryIdentifierAllocator()
        executor = make_executor(allocator_factory=lambda session: allocator)

        report = executor.run(db=db_session, rows=self.ROWS, meta=_meta())

        assert [row.status for row in report.rows] == [RowStatus.SUCCESS, RowStatus.SUCCESS]
        assert [row.identifier for row in report.rows] == ["2025STU002", "2025STU003"]

    def test_reset_counter_moves_past_taken_identifiers(self, db_session: Session, make_executor) -> None:
        for number in (1, 2, 3):
            _legacy_identity(db_session, f"2025STU{number:03d}")
        db_session.add(IdentifierCounter(prefix="2025STU", next_value=1))
        db_session.commit()
        executor = make_executor()

        first = executor.run(db=db_session, rows=self.ROWS, meta=_meta())
        second = executor.run(
            db=db_session,
            rows=[{"firstName": "C", "lastName": "Three", "email": "c3@college.edu"}],
            meta=_meta(),
        )

        assert [row.identifier for row in first.rows] == ["2025STU004", "2025STU005"]
        assert [row.identifier for row in second.rows] == ["2025STU006"]
        db_session.expire_all()
        assert db_session.get(IdentifierCounter, "2025STU").next_value == 7

    def test_new_counter_starts_after_highest_existing_identifier(
        self,
        db_session: Session,
        make_executor,
    ) -> None:
        for identifier in ("2025STU007", "2025STU010", "2025STUX99", "2024STU050"):
            _legacy_identity(db_session, identifier)
        db_session.commit()

        report = make_executor().run(db=db_session, rows=self.ROWS[:1], meta=_meta())

        assert report.rows[0].identifier == "2025STU011"

    def test_prefix_with_no_free_identifier_fails_rows_not_batch(
        self,
        db_session: Session,
        make_executor,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        monkeypatch.setattr("app.services.batch_executor.MAX_IDENTIFIER_ATTEMPTS", 2)
        for number in (1, 2, 3):
            _legacy_identity(db_session, f"2025STU{number:03d}")
        db_session.commit()
        allocator = InMemoryIdentifierAllocator()
        executor = make_executor(allocator_factory=lambda session: allocator)

        report = executor.run(db=db_session, rows=self.ROWS, meta=_meta())

        assert report.rows[0].status == RowStatus.FAILURE
        assert "No free identifier" in report.rows[0].errors[0]
        assert report.rows[1].identifier == "2025STU004"


# ---------------------------------------------------------------------------
# Setup checks
# ---------------------------------------------------------------------------


class TestSetupChecks:
    @pytest.mark.parametrize("actor", ["", "   "])
    def test_missing_actor(self, db_session: Session, make_executor, actor: str) -> None:
        with pytest.raises(BatchSetupError):
            make_executor().run(db=db_session, rows=EXAMPLE_ROWS, meta=_meta(actor=actor))
        assert _count(db_session, ImportLedgerEntry) == 0

    def test_empty_batch(self, db_session: Session, make_executor) -> None:
        with pytest.raises(BatchSetupError):
            make_executor().run(db=db_session, rows=[], meta=_meta())

    def test_batch_above_cap(self, db_session: Session, make_executor) -> None:
        with pytest.raises(BatchTooLargeError) as exc_info:
            make_executor(max_batch_size=2).run(db=db_session, rows=EXAMPLE_ROWS, meta=_meta())

        assert exc_info.value.size == 3
        assert exc_info.value.limit == 2
        assert _count(db_session, ImportLedgerEntry) == 0
        assert _count(db_session, Identity) == 0

    def test_unknown_import_type(self, db_session: Session, make_executor) -> None:
        with pytest.raises(BatchSetupError):
            make_executor().run(db=db_session, rows=EXAMPLE_ROWS, meta=_meta(import_type="alumni"))


# ---------------------------------------------------------------------------
# Staff imports
# ---------------------------------------------------------------------------


class TestStaffImport:
    def test_staff_rows_resolve_department_and_profile(
        self,
        db_session: Session,
        make_executor,
        departments,
    ) -> None:
        rows = [
            {
                "firstName": "Meera",
                "lastName": "Iyer",
                "email": "meera@college.edu",
                "role": "department_hod",
                "department": "cse",
                "employeeId": "EMP100",
                "designation": "Professor",
            },
            {"firstName": "Ravi", "lastName": "K", "email": "ravi@college.edu", "department": "MECH"},
        ]

        report = make_executor().run(db=db_session, rows=rows, meta=_meta(import_type="staff"))

        assert report.rows[0].identifier == "2025STF001"
        assert report.rows[1].status == RowStatus.FAILURE
        assert "Invalid department code 'MECH'" in report.rows[1].errors[0]

        identity = db_session.get(Identity, report.rows[0].identity_id)
        assert identity.department_id == departments["CSE"].id
        assert identity.role == "department_hod"
        assert identity.created_by == "registrar"
        assert identity.import_batch_id == report.ledger_entry_id
        profile = db_session.scalars(select(StaffProfile)).one()
        assert (profile.employee_id, profile.designation, profile.department_code) == (
            "EMP100",
            "Professor",
            "CSE",
        )


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------


class TestNotifications:
    def test_each_created_identity_is_notified_with_its_credential(
        self,
        db_session: Session,
        make_executor,
        notifier: RecordingNotificationService,
    ) -> None:
        report = make_executor(notification_service=notifier).run(db=db_session, rows=EXAMPLE_ROWS, meta=_meta())

        assert [email for email, _ in notifier.sent] == ["a@x.com"]
        credential = notifier.sent[0][1]
        assert credential.startswith("Student@")
        db_session.expire_all()
        identity = db_session.get(Identity, report.rows[0].identity_id)
        assert identity.email_sent is True
        assert identity.password_hash != credential
        assert verify_credential(credential, identity.password_hash)

    def test_notification_failures_leave_outcomes_untouched(self, db_session: Session, make_executor) -> None:
        notifier = RecordingNotificationService(fail_for={"b@college.edu"}, raise_for={"c@college.edu"})
        rows = [
            {"firstName": "A", "lastName": "A", "email": "a@college.edu"},
            {"firstName": "B", "lastName": "B", "email": "b@college.edu"},
            {"firstName": "C", "lastName": "C", "email": "c@college.edu"},
        ]

        report = make_executor(notification_service=notifier).run(db=db_session, rows=rows, meta=_meta())

        assert report.success_count == 3
        assert report.failure_count == 0
        db_session.expire_all()
        sent = {
            identity.email: identity.email_sent
            for identity in db_session.scalars(select(Identity)).all()
        }
        assert sent == {"a@college.edu": True, "b@college.edu": False, "c@college.edu": False}
