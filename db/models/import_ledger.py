"""
db/models/import_ledger.py

Provenance ledger for bulk identity imports.

One ImportLedgerEntry per submitted batch, one ImportLedgerOutcome per
input row. Outcome rows are insert-only; the entry row is updated in
place while the batch runs and when it is rolled back, and is never
deleted.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from db.base import JSONType, Base, TimestampMixin


class ImportType:
    STAFF = "staff"
    STUDENT = "student"


class LedgerStatus:
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class RowStatus:
    SUCCESS = "success"
    WARNING = "warning"
    FAILURE = "failure"


class ImportLedgerEntry(Base, TimestampMixin):
    __tablename__ = "import_ledger_entries"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    import_type: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        comment="staff, student",
    )
    origin: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        comment="Uploaded file name or 'api'",
    )
    origin_size_bytes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    record_count: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        comment="Number of rows submitted",
    )
    submitted_by: Mapped[str] = mapped_column(String(120), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=LedgerStatus.PROCESSING,
    )
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    duration_ms: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    total_records: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    successful_records: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    failed_records: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    warning_records: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    rollback_available: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_identity_ids: Mapped[list[str]] = mapped_column(
        JSONType,
        nullable=False,
        default=list,
        comment="Exact identity ids created by this batch, in row order",
    )
    rolled_back_by: Mapped[str | None] = mapped_column(String(120), nullable=True)
    rolled_back_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    rollback_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    rollback_deleted_count: Mapped[int | None] = mapped_column(Integer, nullable=True)

    metadata_json: Mapped[dict[str, Any] | None] = mapped_column(
        JSONType,
        nullable=True,
        comment="Department codes, roles, duplicates, client ip, user agent",
    )
    notes: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    outcomes: Mapped[list["ImportLedgerOutcome"]] = relationship(
        "ImportLedgerOutcome",
        back_populates="entry",
        order_by="ImportLedgerOutcome.row_index",
        passive_deletes=True,
    )

    __table_args__ = (
        Index("ix_import_ledger_entries_submitted_by", "submitted_by"),
        Index("ix_import_ledger_entries_status", "status"),
        Index("ix_import_ledger_entries_import_type", "import_type"),
        Index("ix_import_ledger_entries_created_at", "created_at"),
        Index("ix_import_ledger_entries_rollback_available", "rollback_available"),
    )

    @property
    def success_rate(self) -> int:
        if self.total_records == 0:
            return 0
        return round(self.successful_records / self.total_records * 100)

    @property
    def is_rolled_back(self) -> bool:
        return self.rolled_back_at is not None

    def __repr__(self) -> str:
        return (
            f"<ImportLedgerEntry id={self.id} type={self.import_type!r} "
            f"status={self.status!r} total={self.total_records}>"
        )


class ImportLedgerOutcome(Base):
    __tablename__ = "import_ledger_outcomes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    entry_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("import_ledger_entries.id", ondelete="RESTRICT"),
        nullable=False,
    )
    row_index: Mapped[int] = mapped_column(Integer, nullable=False, comment="1-based")
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    identity_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        nullable=True,
        comment="Not a foreign key: the identity may later be rolled back",
    )
    identifier: Mapped[str | None] = mapped_column(String(32), nullable=True)
    payload: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False)
    errors: Mapped[list[str]] = mapped_column(JSONType, nullable=False, default=list)
    warnings: Mapped[list[str]] = mapped_column(JSONType, nullable=False, default=list)
    recorded_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    entry: Mapped[ImportLedgerEntry] = relationship("ImportLedgerEntry", back_populates="outcomes")

    __table_args__ = (
        UniqueConstraint("entry_id", "row_index", name="uq_import_ledger_outcomes_entry_row"),
        Index("ix_import_ledger_outcomes_status", "status"),
        Index("ix_import_ledger_outcomes_entry_recorded_at", "entry_id", "recorded_at"),
    )
