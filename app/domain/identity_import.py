"""
app/domain/identity_import.py

Domain models used by the bulk identity import flow.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Mapping

from db.models.import_ledger import RowStatus

# Accepted spellings for each canonical field, first match wins.
_FIELD_ALIASES: dict[str, tuple[str, ...]] = {
    "first_name": ("firstName", "first_name", "First Name", "firstname", "first"),
    "last_name": ("lastName", "last_name", "Last Name", "lastname", "last"),
    "email": ("email", "Email", "emailAddress", "email_address"),
    "role": ("role", "Role"),
    "department": ("department", "Department", "departmentCode", "department_code"),
    "designation": ("designation", "Designation"),
    "employee_id": ("employeeId", "employee_id", "Employee ID", "employeeID"),
    "phone": ("phone", "Phone", "phoneNumber", "phone_number", "mobile"),
}


def _pick(payload: Mapping[str, Any], aliases: tuple[str, ...]) -> str | None:
    lowered = {str(key).strip().lower(): value for key, value in payload.items()}
    for alias in aliases:
        if alias in payload:
            value = payload[alias]
        elif alias.lower() in lowered:
            value = lowered[alias.lower()]
        else:
            continue
        if value is None:
            return None
        return str(value)
    return None


@dataclass(frozen=True)
class BatchRow:
    """
    One untrusted candidate record, exactly as submitted.

    String fields are kept verbatim (untrimmed); the validator normalises.
    """

    first_name: str | None
    last_name: str | None
    email: str | None
    role: str | None = None
    department: str | None = None
    designation: str | None = None
    employee_id: str | None = None
    phone: str | None = None
    payload: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> "BatchRow":
        values = {name: _pick(payload, aliases) for name, aliases in _FIELD_ALIASES.items()}
        return cls(payload=dict(payload), **values)


@dataclass(frozen=True)
class ValidationOutcome:
    """
    Validation verdict for one row. ``row_index`` is 1-based and stable.
    """

    row_index: int
    status: str
    errors: tuple[str, ...] = ()
    warnings: tuple[str, ...] = ()

    @property
    def creates_identity(self) -> bool:
        return self.status in {RowStatus.SUCCESS, RowStatus.WARNING}

    @classmethod
    def from_messages(
        cls,
        *,
        row_index: int,
        errors: list[str],
        warnings: list[str],
    ) -> "ValidationOutcome":
        if errors:
            status = RowStatus.FAILURE
        elif warnings:
            status = RowStatus.WARNING
        else:
            status = RowStatus.SUCCESS
        return cls(row_index=row_index, status=status, errors=tuple(errors), warnings=tuple(warnings))

    @classmethod
    def failure(cls, *, row_index: int, message: str, warnings: tuple[str, ...] = ()) -> "ValidationOutcome":
        return cls(row_index=row_index, status=RowStatus.FAILURE, errors=(message,), warnings=warnings)


@dataclass(frozen=True)
class NormalizedRow:
    """
    Trimmed, case-normalised values of a row that passed validation.
    """

    first_name: str
    last_name: str
    email: str
    role: str
    department_code: str | None
    designation: str | None
    employee_id: str | None
    phone: str | None


@dataclass(frozen=True)
class BatchMeta:
    """
    Submission metadata recorded on the ledger entry.
    """

    import_type: str
    actor: str
    origin: str = "api"
    origin_size_bytes: int = 0
    notes: str | None = None
    client_ip: str | None = None
    user_agent: str | None = None


@dataclass(frozen=True)
class CreatedIdentity:
    """
    Identity created by a batch, handed to the notification dispatcher.

    ``credential`` is the one-time plain-text password; it is never
    persisted and is excluded from repr.
    """

    identity_id: uuid.UUID
    identifier: str
    email: str
    first_name: str
    last_name: str
    role: str
    import_type: str
    credential: str = field(repr=False)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"


@dataclass(frozen=True)
class RowReport:
    """
    Per-row outcome as reported back to the caller.
    """

    row_index: int
    status: str
    payload: Mapping[str, Any]
    errors: tuple[str, ...] = ()
    warnings: tuple[str, ...] = ()
    identity_id: uuid.UUID | None = None
    identifier: str | None = None


@dataclass(frozen=True)
class ImportReport:
    """
    End-of-batch summary returned to the submitter.
    """

    ledger_entry_id: uuid.UUID
    import_type: str
    status: str
    total_processed: int
    success_count: int
    failure_count: int
    warning_count: int
    duration_ms: int
    rollback_available: bool
    rows: list[RowReport] = field(default_factory=list)
    created: list[CreatedIdentity] = field(default_factory=list, repr=False)


@dataclass(frozen=True)
class RollbackResult:
    """
    Outcome of a successful batch rollback.
    """

    ledger_entry_id: uuid.UUID
    deleted_count: int
    requested_count: int
    rolled_back_by: str
    rolled_back_at: datetime
    reason: str
    ledger_status: str


@dataclass(frozen=True)
class ReconciliationReport:
    """
    Result of one out-of-band sweep over the ledger.
    """

    marked_failed: list[uuid.UUID] = field(default_factory=list)
    rollback_inconsistent: list[uuid.UUID] = field(default_factory=list)
