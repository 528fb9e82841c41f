"""
app/services/batch_executor.py

Runs one bulk identity import batch end to end.

    setup checks      -> BatchSetupError / BatchTooLargeError, nothing written
    ledger.open()     -> committed at once so a crashed batch stays visible
    per row           -> validate, then allocate + create + append outcome
                         in one transaction; any exception is rolled back and
                         recorded as a failure outcome. The batch aborts only
                         when that failure outcome cannot be stored either.
    ledger.finalize() -> counts tallied from the recorded outcomes
    notifications     -> handed to a task executor, never touch outcomes

Transaction contract: this service owns commit/rollback. Repositories and
the ledger only flush.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping, Sequence
from dataclasses import replace
from functools import lru_cache
from typing import Any, Protocol

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.config import get_import_settings
from app.domain.identity_import import (
    BatchMeta,
    BatchRow,
    CreatedIdentity,
    ImportReport,
    NormalizedRow,
    RowReport,
    ValidationOutcome,
)
from app.errors import BatchSetupError, BatchTooLargeError
from app.services.credentials import generate_credential, hash_credential
from app.services.identifier_allocator import IdentifierAllocator, SqlIdentifierAllocator, build_prefix
from app.services.notification_service import NotificationDispatcher, get_notification_dispatcher
from app.services.provenance_ledger import ProvenanceLedger
from app.services.reference_data import (
    DatabaseReferenceDataProvider,
    ReferenceDataProvider,
    ReferenceSnapshot,
    require_import_type,
)
from app.validators.identity_row_validator import BatchValidationContext, IdentityRowValidator
from db.models.identity import Identity
from db.models.import_ledger import ImportLedgerEntry, ImportType, LedgerStatus, RowStatus
from db.repositories.errors import IdentifierAllocationError, ImportPersistenceError
from db.repositories.identity_repository import IdentityRepository

logger = logging.getLogger(__name__)

_JSON_SCALARS = (str, int, float, bool, type(None))
MAX_IDENTIFIER_ATTEMPTS = 50


class TaskExecutor(Protocol):
    def submit(self, task: Callable[..., None], *args: Any, **kwargs: Any) -> None:
        ...


class InlineTaskExecutor:
    """Runs the task immediately; used by scripts and tests."""

    def submit(self, task: Callable[..., None], *args: Any, **kwargs: Any) -> None:
        task(*args, **kwargs)


class FastAPIBackgroundTaskExecutor:
    def __init__(self, background_tasks: Any) -> None:
        self._background_tasks = background_tasks

    def submit(self, task: Callable[..., None], *args: Any, **kwargs: Any) -> None:
        self._background_tasks.add_task(task, *args, **kwargs)


class BatchExecutor:
    """
    Coordinates validation, identifier allocation, persistence and the
    provenance ledger for one batch.
    """

    def __init__(
        self,
        *,
        max_batch_size: int,
        identifier_width: int,
        identifier_codes: Mapping[str, str],
        log_row_outcomes: bool,
        validator: IdentityRowValidator | None = None,
        allocator_factory: Callable[[Session], IdentifierAllocator] | None = None,
        reference_provider_factory: Callable[[Session], ReferenceDataProvider] | None = None,
        dispatcher: NotificationDispatcher | None = None,
        year: int | None = None,
    ) -> None:
        self._max_batch_size = max(1, max_batch_size)
        self._identifier_width = max(1, identifier_width)
        self._identifier_codes = dict(identifier_codes)
        self._log_row_outcomes = log_row_outcomes
        self._validator = validator or IdentityRowValidator()
        self._allocator_factory = allocator_factory or (
            lambda session: SqlIdentifierAllocator(session, width=self._identifier_width)
        )
        self._reference_provider_factory = reference_provider_factory or DatabaseReferenceDataProvider
        self._dispatcher = dispatcher
        self._year = year

    def run(
        self,
        *,
        db: Session,
        rows: Sequence[Mapping[str, Any] | BatchRow],
        meta: BatchMeta,
        executor: TaskExecutor | None = None,
    ) -> ImportReport:
        """
        Process ``rows`` in submission order and return the batch report.

        Raises:
            BatchSetupError:        missing actor, empty batch, unknown import type.
            BatchTooLargeError:     more rows than the configured maximum.
            ImportPersistenceError: the ledger entry itself could not be written.
            Exception:              a row's failure outcome could not be stored;
                                    the entry is closed as ``failed`` first.
        """

        import_type = self._check_setup(rows=rows, meta=meta)
        meta = replace(meta, import_type=import_type, actor=meta.actor.strip())

        batch_rows = [row if isinstance(row, BatchRow) else BatchRow.from_mapping(row) for row in rows]
        identities = IdentityRepository(db)
        ledger = ProvenanceLedger(db)

        try:
            reference = self._reference_provider_factory(db).snapshot(import_type)
            context = BatchValidationContext(
                existing_emails=frozenset(identities.existing_emails(row.email for row in batch_rows if row.email)),
                existing_identifiers=frozenset(
                    identities.existing_identifiers(row.employee_id for row in batch_rows if row.employee_id)
                ),
            )
            entry = ledger.open(meta, record_count=len(batch_rows))
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            raise ImportPersistenceError("Failed to open the import ledger entry.") from exc

        prefix = build_prefix(self._identifier_codes[import_type], year=self._year)
        allocator = self._allocator_factory(db)
        reports: list[RowReport] = []
        created: list[CreatedIdentity] = []

        logger.info(
            "Import batch started entry_id=%s import_type=%s rows=%s actor=%s prefix=%s",
            entry.id,
            import_type,
            len(batch_rows),
            meta.actor,
            prefix,
        )

        row_index = 0
        try:
            for row_index, row in enumerate(batch_rows, start=1):
                report, created_identity = self._process_row(
                    db=db,
                    row=row,
                    row_index=row_index,
                    entry=entry,
                    ledger=ledger,
                    identities=identities,
                    allocator=allocator,
                    prefix=prefix,
                    reference=reference,
                    context=context,
                    meta=meta,
                )
                reports.append(report)
                if created_identity is not None:
                    created.append(created_identity)
        except Exception as exc:
            db.rollback()
            logger.exception(
                "Import batch aborted entry_id=%s at row=%s of %s",
                entry.id,
                row_index,
                len(batch_rows),
            )
            try:
                ledger.finalize(
                    entry,
                    status=LedgerStatus.FAILED,
                    reason=f"Batch aborted at row {row_index}: {exc}",
                )
                db.commit()
            except SQLAlchemyError:
                db.rollback()
                logger.exception("Could not mark aborted import batch failed entry_id=%s", entry.id)
            raise

        try:
            ledger.finalize(
                entry,
                metadata={
                    "identifier_prefix": prefix,
                    "department_codes": sorted(reference.department_codes),
                    "roles": sorted(self._roles_used(created)),
                    "duplicate_emails": list(context.duplicate_emails),
                    "duplicate_employee_ids": list(context.duplicate_employee_ids),
                },
            )
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            raise ImportPersistenceError(f"Failed to finalize import ledger entry {entry.id}.") from exc

        self._log_summary(entry=entry, reports=reports)
        self._dispatch_notifications(created=created, executor=executor)

        return ImportReport(
            ledger_entry_id=entry.id,
            import_type=import_type,
            status=entry.status,
            total_processed=entry.total_records,
            success_count=entry.successful_records,
            failure_count=entry.failed_records,
            warning_count=entry.warning_records,
            duration_ms=entry.duration_ms or 0,
            rollback_available=entry.rollback_available,
            rows=reports,
            created=created,
        )

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------

    def _check_setup(self, *, rows: Sequence[Any], meta: BatchMeta) -> str:
        if not meta.actor or not meta.actor.strip():
            raise BatchSetupError("An authenticated actor is required to submit an import.")
        if not rows:
            raise BatchSetupError("Import batch contains no rows.")
        if len(rows) > self._max_batch_size:
            raise BatchTooLargeError(size=len(rows), limit=self._max_batch_size)
        import_type = require_import_type(meta.import_type)
        if import_type not in self._identifier_codes:
            raise BatchSetupError(f"No identifier code configured for import type {import_type!r}.")
        return import_type

    # ------------------------------------------------------------------
    # Rows
    # ------------------------------------------------------------------

    def _process_row(
        self,
        *,
        db: Session,
        row: BatchRow,
        row_index: int,
        entry: ImportLedgerEntry,
        ledger: ProvenanceLedger,
        identities: IdentityRepository,
        allocator: IdentifierAllocator,
        prefix: str,
        reference: ReferenceSnapshot,
        context: BatchValidationContext,
        meta: BatchMeta,
    ) -> tuple[RowReport, CreatedIdentity | None]:
        payload = _json_safe(row.payload)
        normalized: NormalizedRow | None = None
        warnings: tuple[str, ...] = ()

        try:
            normalized, outcome = self._validator.validate(
                row=row,
                row_index=row_index,
                reference=reference,
                context=context,
            )
            warnings = outcome.warnings

            if normalized is None:
                ledger.append_outcome(entry, outcome, payload=payload)
                db.commit()
                return self._row_report(outcome, payload), None

            credential = generate_credential(meta.import_type)
            identity = self._create_identity(
                identities=identities,
                allocator=allocator,
                prefix=prefix,
                normalized=normalized,
                reference=reference,
                credential=credential,
                meta=meta,
                entry=entry,
            )
            ledger.append_outcome(entry, outcome, payload=payload, identity=identity)
            db.commit()
        except IntegrityError as exc:
            db.rollback()
            logger.warning("Row %s hit a uniqueness violation entry_id=%s: %s", row_index, entry.id, exc.orig)
            if normalized is not None:
                message = self._integrity_message(normalized, identities=identities)
            else:
                message = f"Could not record row outcome: {exc.orig}"
            failure = ValidationOutcome.failure(row_index=row_index, message=message, warnings=warnings)
            return self._record_failure(db=db, ledger=ledger, entry=entry, outcome=failure, payload=payload), None
        except Exception as exc:  # noqa: BLE001
            db.rollback()
            logger.warning("Row %s could not be processed entry_id=%s: %s", row_index, entry.id, exc)
            failure = ValidationOutcome.failure(
                row_index=row_index,
                message=f"Could not create account: {exc}",
                warnings=warnings,
            )
            return self._record_failure(db=db, ledger=ledger, entry=entry, outcome=failure, payload=payload), None

        context.register(normalized, row_index=row_index)
        created_identity = CreatedIdentity(
            identity_id=identity.id,
            identifier=identity.identifier,
            email=identity.email,
            first_name=identity.first_name,
            last_name=identity.last_name,
            role=identity.role,
            import_type=meta.import_type,
            credential=credential,
        )
        report = self._row_report(
            outcome,
            payload,
            identity_id=identity.id,
            identifier=identity.identifier,
        )
        return report, created_identity

    def _create_identity(
        self,
        *,
        identities: IdentityRepository,
        allocator: IdentifierAllocator,
        prefix: str,
        normalized: NormalizedRow,
        reference: ReferenceSnapshot,
        credential: str,
        meta: BatchMeta,
        entry: ImportLedgerEntry,
    ) -> Identity:
        identifier = self._next_free_identifier(allocator=allocator, identities=identities, prefix=prefix)
        identity = identities.create_identity(
            identifier=identifier,
            email=normalized.email,
            first_name=normalized.first_name,
            last_name=normalized.last_name,
            role=normalized.role,
            password_hash=hash_credential(credential),
            department_id=reference.department_id_for(normalized.department_code),
            employee_id=normalized.employee_id,
            designation=normalized.designation,
            phone=normalized.phone,
            created_by=meta.actor,
            import_batch_id=entry.id,
        )
        if meta.import_type == ImportType.STUDENT:
            identities.create_student_profile(identity=identity, department_code=normalized.department_code)
        else:
            identities.create_staff_profile(identity=identity, department_code=normalized.department_code)
        return identity

    @staticmethod
    def _next_free_identifier(
        *,
        allocator: IdentifierAllocator,
        identities: IdentityRepository,
        prefix: str,
    ) -> str:
        """
        Skip numbers already held by an identity (legacy rows, a reset
        counter). Skipped numbers stay consumed once the row commits.
        """

        for _ in range(MAX_IDENTIFIER_ATTEMPTS):
            identifier = allocator.next_identifier(prefix)
            if not identities.identifier_exists(identifier):
                return identifier
            logger.warning("Identifier already in use, skipping identifier=%s", identifier)
        raise IdentifierAllocationError(
            f"No free identifier under prefix {prefix!r} after {MAX_IDENTIFIER_ATTEMPTS} attempts."
        )

    def _record_failure(
        self,
        *,
        db: Session,
        ledger: ProvenanceLedger,
        entry: ImportLedgerEntry,
        outcome: ValidationOutcome,
        payload: dict[str, Any],
    ) -> RowReport:
        ledger.append_outcome(entry, outcome, payload=payload)
        db.commit()
        return self._row_report(outcome, payload)

    @staticmethod
    def _integrity_message(normalized: NormalizedRow, *, identities: IdentityRepository) -> str:
        """
        Turn a uniqueness violation raised by a concurrent writer into the
        same wording the validator uses for a known duplicate.
        """

        try:
            if identities.existing_emails([normalized.email]):
                return f"User with email {normalized.email!r} already exists."
            if normalized.employee_id and identities.existing_identifiers([normalized.employee_id]):
                return f"Employee ID {normalized.employee_id!r} already exists."
        except SQLAlchemyError as exc:
            logger.warning("Duplicate lookup after integrity error failed email=%s: %s", normalized.email, exc)
        return "Could not create account: a conflicting record already exists."

    @staticmethod
    def _row_report(
        outcome: ValidationOutcome,
        payload: dict[str, Any],
        *,
        identity_id: Any = None,
        identifier: str | None = None,
    ) -> RowReport:
        return RowReport(
            row_index=outcome.row_index,
            status=outcome.status,
            payload=payload,
            errors=outcome.errors,
            warnings=outcome.warnings,
            identity_id=identity_id,
            identifier=identifier,
        )

    @staticmethod
    def _roles_used(created: Sequence[CreatedIdentity]) -> set[str]:
        return {identity.role for identity in created}

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    def _log_summary(self, *, entry: ImportLedgerEntry, reports: Sequence[RowReport]) -> None:
        if self._log_row_outcomes:
            for report in reports:
                if report.status == RowStatus.FAILURE:
                    logger.warning(
                        "Import row failed entry_id=%s row=%s errors=%s",
                        entry.id,
                        report.row_index,
                        "; ".join(report.errors),
                    )
                elif report.status == RowStatus.WARNING:
                    logger.warning(
                        "Import row accepted with warnings entry_id=%s row=%s warnings=%s",
                        entry.id,
                        report.row_index,
                        "; ".join(report.warnings),
                    )

        logger.info(
            "Import batch finished entry_id=%s total=%s success=%s warning=%s failed=%s duration_ms=%s",
            entry.id,
            entry.total_records,
            entry.successful_records,
            entry.warning_records,
            entry.failed_records,
            entry.duration_ms,
        )

    def _dispatch_notifications(
        self,
        *,
        created: Sequence[CreatedIdentity],
        executor: TaskExecutor | None,
    ) -> None:
        if not created or self._dispatcher is None:
            return
        try:
            (executor or InlineTaskExecutor()).submit(self._dispatcher.dispatch, list(created))
        except Exception as exc:  # noqa: BLE001
            logger.warning("Notification dispatch failed for %s new accounts: %s", len(created), exc)


def _json_safe(payload: Mapping[str, Any]) -> dict[str, Any]:
    return {
        str(key): value if isinstance(value, _JSON_SCALARS) else str(value)
        for key, value in payload.items()
    }


@lru_cache(maxsize=1)
def get_batch_executor() -> BatchExecutor:
    """
    Build and cache the batch executor with env-driven settings.
    """

    settings = get_import_settings()
    return BatchExecutor(
        max_batch_size=settings.max_batch_size,
        identifier_width=settings.identifier_width,
        identifier_codes={
            ImportType.STUDENT: settings.student_code,
            ImportType.STAFF: settings.staff_code,
        },
        log_row_outcomes=settings.log_row_outcomes,
        validator=IdentityRowValidator(min_employee_id_length=settings.min_employee_id_length),
        dispatcher=get_notification_dispatcher(),
    )
