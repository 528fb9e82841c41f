"""
app/schemas/identity_import.py

Request/response schemas for identity import endpoints.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class IdentityImportRequest(BaseModel):
    """
    JSON body for ``POST /imports/{import_type}``.
    """

    rows: list[dict[str, Any]] = Field(default_factory=list)
    origin: str = Field(default="api", max_length=255)
    notes: str | None = Field(default=None, max_length=1000)


class RollbackRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=500)


class RowOutcomeResponse(BaseModel):
    """
    API response model for one row outcome.
    """

    model_config = ConfigDict(from_attributes=True)

    row_index: int = Field(..., ge=1)
    status: str
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    identity_id: uuid.UUID | None = None
    identifier: str | None = None
    payload: dict[str, Any] = Field(default_factory=dict)


class ImportReportResponse(BaseModel):
    """
    API response model for a finished import batch.
    """

    ledger_entry_id: uuid.UUID
    import_type: str
    status: str
    total_processed: int = Field(..., ge=0)
    success_count: int = Field(..., ge=0)
    failure_count: int = Field(..., ge=0)
    warning_count: int = Field(..., ge=0)
    duration_ms: int = Field(..., ge=0)
    rollback_available: bool
    outcomes: list[RowOutcomeResponse] = Field(default_factory=list)


class LedgerEntrySummaryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    import_type: str
    origin: str
    origin_size: str
    submitted_by: str
    status: str
    started_at: datetime
    completed_at: datetime | None = None
    duration_ms: int | None = None
    duration: str | None = None
    total_records: int
    successful_records: int
    failed_records: int
    warning_records: int
    success_rate: int
    rollback_available: bool
    rolled_back_by: str | None = None
    rolled_back_at: datetime | None = None
    rollback_reason: str | None = None
    rollback_deleted_count: int | None = None
    notes: str | None = None


class LedgerEntryDetailResponse(LedgerEntrySummaryResponse):
    record_count: int
    created_identity_ids: list[uuid.UUID] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)
    outcomes: list[RowOutcomeResponse] = Field(default_factory=list)


class ImportStatsResponse(BaseModel):
    submitted_by: str
    days: int
    total_imports: int
    total_records: int
    total_successful: int
    total_failed: int
    total_warnings: int
    avg_processing_time_ms: int
    avg_processing_time: str
    completed_imports: int
    failed_imports: int
    success_rate: int


class RollbackResponse(BaseModel):
    ledger_entry_id: uuid.UUID
    deleted_count: int = Field(..., ge=0)
    requested_count: int = Field(..., ge=0)
    rolled_back_by: str
    rolled_back_at: datetime
    reason: str
    ledger_status: str
    rollback_available: bool = False


class ResendNotificationResponse(BaseModel):
    identity_id: uuid.UUID
    identifier: str
    email: str
    email_sent: bool
