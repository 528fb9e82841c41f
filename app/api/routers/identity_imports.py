"""
app/api/routers/identity_imports.py

Bulk identity import HTTP endpoints.
"""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, Body, Depends, HTTPException, Query, UploadFile, status
from sqlalchemy.orm import Session

from app.api.dependencies import RequestContext, get_csv_upload, get_request_context
from app.domain.identity_import import BatchMeta, ImportReport
from app.errors import BatchSetupError, BatchTooLargeError, ConflictError, NotFoundError
from app.schemas.identity_import import (
    IdentityImportRequest,
    ImportReportResponse,
    ImportStatsResponse,
    LedgerEntryDetailResponse,
    LedgerEntrySummaryResponse,
    ResendNotificationResponse,
    RollbackRequest,
    RollbackResponse,
    RowOutcomeResponse,
)
from app.services.batch_executor import BatchExecutor, FastAPIBackgroundTaskExecutor, get_batch_executor
from app.services.identity_csv_reader import read_identity_csv
from app.services.notification_service import NotificationDispatcher, get_notification_dispatcher
from app.services.provenance_ledger import ProvenanceLedger, format_duration, format_size
from app.services.rollback_coordinator import RollbackCoordinator
from db.models.import_ledger import ImportLedgerEntry
from db.repositories.errors import IdentityRepositoryError
from db.session import get_db

router = APIRouter(prefix="/imports", tags=["identity-imports"])


@router.get("", response_model=list[LedgerEntrySummaryResponse])
def list_imports(
    import_type: str | None = Query(default=None),
    status_filter: str | None = Query(default=None, alias="status"),
    submitted_by: str | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=500),
    db: Session = Depends(get_db),
) -> list[LedgerEntrySummaryResponse]:
    entries = ProvenanceLedger(db).repository.list_entries(
        limit=limit,
        import_type=import_type,
        status=status_filter,
        submitted_by=submitted_by,
    )
    return [LedgerEntrySummaryResponse(**_summary_fields(entry)) for entry in entries]


@router.get("/stats", response_model=ImportStatsResponse)
def import_stats(
    days: int = Query(default=30, ge=1, le=365),
    context: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
) -> ImportStatsResponse:
    stats = ProvenanceLedger(db).actor_stats(submitted_by=context.actor, days=days)
    return ImportStatsResponse(
        **stats,
        avg_processing_time=format_duration(stats["avg_processing_time_ms"]),
    )


@router.get("/{entry_id}", response_model=LedgerEntryDetailResponse)
def get_import(entry_id: UUID, db: Session = Depends(get_db)) -> LedgerEntryDetailResponse:
    entry = ProvenanceLedger(db).repository.get_entry(entry_id, with_outcomes=True)
    if entry is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Import ledger entry not found.")

    return LedgerEntryDetailResponse(
        **_summary_fields(entry),
        record_count=entry.record_count,
        created_identity_ids=[UUID(str(value)) for value in (entry.created_identity_ids or [])],
        metadata=entry.metadata_json or {},
        outcomes=[
            RowOutcomeResponse(
                row_index=outcome.row_index,
                status=outcome.status,
                errors=list(outcome.errors or []),
                warnings=list(outcome.warnings or []),
                identity_id=outcome.identity_id,
                identifier=outcome.identifier,
                payload=outcome.payload or {},
            )
            for outcome in entry.outcomes
        ],
    )


@router.post("/{import_type}", response_model=ImportReportResponse)
def submit_import(
    import_type: str,
    background_tasks: BackgroundTasks,
    payload: IdentityImportRequest = Body(...),
    context: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
    executor: BatchExecutor = Depends(get_batch_executor),
) -> ImportReportResponse:
    """
    Import identities from a JSON array of row objects.
    """

    meta = BatchMeta(
        import_type=import_type,
        actor=context.actor,
        origin=payload.origin,
        notes=payload.notes,
        client_ip=context.client_ip,
        user_agent=context.user_agent,
    )
    report = _run_batch(
        executor=executor,
        db=db,
        rows=payload.rows,
        meta=meta,
        background_tasks=background_tasks,
    )
    return _report_response(report)


@router.post("/{import_type}/csv", response_model=ImportReportResponse)
def submit_csv_import(
    import_type: str,
    background_tasks: BackgroundTasks,
    notes: str | None = Query(default=None, max_length=1000),
    file: UploadFile = Depends(get_csv_upload),
    context: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
    executor: BatchExecutor = Depends(get_batch_executor),
) -> ImportReportResponse:
    """
    Import identities from one uploaded CSV file.
    """

    try:
        try:
            parsed = read_identity_csv(file.file)
        except BatchSetupError as exc:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

        meta = BatchMeta(
            import_type=import_type,
            actor=context.actor,
            origin=file.filename or "upload.csv",
            origin_size_bytes=parsed.size_bytes,
            notes=notes,
            client_ip=context.client_ip,
            user_agent=context.user_agent,
        )
        report = _run_batch(
            executor=executor,
            db=db,
            rows=parsed.rows,
            meta=meta,
            background_tasks=background_tasks,
        )
    finally:
        file.file.close()

    return _report_response(report)


@router.post("/{entry_id}/rollback", response_model=RollbackResponse)
def rollback_import(
    entry_id: UUID,
    payload: RollbackRequest,
    context: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
) -> RollbackResponse:
    try:
        result = RollbackCoordinator(db).rollback(entry_id=entry_id, actor=context.actor, reason=payload.reason)
    except NotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except ConflictError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except BatchSetupError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except IdentityRepositoryError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Unable to roll back the import.",
        ) from exc

    return RollbackResponse(
        ledger_entry_id=result.ledger_entry_id,
        deleted_count=result.deleted_count,
        requested_count=result.requested_count,
        rolled_back_by=result.rolled_back_by,
        rolled_back_at=result.rolled_back_at,
        reason=result.reason,
        ledger_status=result.ledger_status,
    )


@router.post(
    "/identities/{identity_id}/resend-notification",
    response_model=ResendNotificationResponse,
    dependencies=[Depends(get_request_context)],
)
def resend_notification(
    identity_id: UUID,
    db: Session = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_notification_dispatcher),
) -> ResendNotificationResponse:
    """
    Issue a new one-time credential for an imported identity and send the
    welcome notification again.
    """

    try:
        result = dispatcher.resend_welcome(db=db, identity_id=identity_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except IdentityRepositoryError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Unable to issue a new credential.",
        ) from exc

    if not result.delivered:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=f"A new credential was issued for {result.identifier} but the notification was not delivered.",
        )
    return ResendNotificationResponse(
        identity_id=result.identity_id,
        identifier=result.identifier,
        email=result.email,
        email_sent=True,
    )


def _run_batch(
    *,
    executor: BatchExecutor,
    db: Session,
    rows: list,
    meta: BatchMeta,
    background_tasks: BackgroundTasks,
) -> ImportReport:
    try:
        return executor.run(
            db=db,
            rows=rows,
            meta=meta,
            executor=FastAPIBackgroundTaskExecutor(background_tasks),
        )
    except BatchTooLargeError as exc:
        raise HTTPException(status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE, detail=str(exc)) from exc
    except BatchSetupError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except IdentityRepositoryError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Unable to record the import batch.",
        ) from exc


def _report_response(report: ImportReport) -> ImportReportResponse:
    return ImportReportResponse(
        ledger_entry_id=report.ledger_entry_id,
        import_type=report.import_type,
        status=report.status,
        total_processed=report.total_processed,
        success_count=report.success_count,
        failure_count=report.failure_count,
        warning_count=report.warning_count,
        duration_ms=report.duration_ms,
        rollback_available=report.rollback_available,
        outcomes=[
            RowOutcomeResponse(
                row_index=row.row_index,
                status=row.status,
                errors=list(row.errors),
                warnings=list(row.warnings),
                identity_id=row.identity_id,
                identifier=row.identifier,
                payload=dict(row.payload),
            )
            for row in report.rows
        ],
    )


def _summary_fields(entry: ImportLedgerEntry) -> dict:
    return {
        "id": entry.id,
        "import_type": entry.import_type,
        "origin": entry.origin,
        "origin_size": format_size(entry.origin_size_bytes or 0),
        "submitted_by": entry.submitted_by,
        "status": entry.status,
        "started_at": entry.started_at,
        "completed_at": entry.completed_at,
        "duration_ms": entry.duration_ms,
        "duration": format_duration(entry.duration_ms) if entry.duration_ms is not None else None,
        "total_records": entry.total_records,
        "successful_records": entry.successful_records,
        "failed_records": entry.failed_records,
        "warning_records": entry.warning_records,
        "success_rate": entry.success_rate,
        "rollback_available": entry.rollback_available,
        "rolled_back_by": entry.rolled_back_by,
        "rolled_back_at": entry.rolled_back_at,
        "rollback_reason": entry.rollback_reason,
        "rollback_deleted_count": entry.rollback_deleted_count,
        "notes": entry.notes,
    }
