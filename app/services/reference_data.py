"""
app/services/reference_data.py

Department / role registry consumed by the import pipeline.

The pipeline never reads the registry row by row: it takes one
``ReferenceSnapshot`` at batch start, so a department deactivated while
a batch is running does not invalidate rows already accepted.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Mapping, Protocol

from sqlalchemy.orm import Session

from app.errors import BatchSetupError
from db.models.identity import STAFF_ROLES, STUDENT_ROLES, IdentityRole
from db.models.import_ledger import ImportType
from db.repositories.department_repository import DepartmentRepository

ROLES_BY_IMPORT_TYPE: dict[str, frozenset[str]] = {
    ImportType.STAFF: STAFF_ROLES,
    ImportType.STUDENT: STUDENT_ROLES,
}

DEFAULT_ROLE_BY_IMPORT_TYPE: dict[str, str] = {
    ImportType.STAFF: IdentityRole.OTHER_STAFF,
    ImportType.STUDENT: IdentityRole.STUDENT,
}


def require_import_type(import_type: str) -> str:
    normalized = (import_type or "").strip().lower()
    if normalized not in ROLES_BY_IMPORT_TYPE:
        raise BatchSetupError(
            f"Unknown import type {import_type!r}. Allowed: {sorted(ROLES_BY_IMPORT_TYPE)}."
        )
    return normalized


@dataclass(frozen=True)
class ReferenceSnapshot:
    """
    Immutable view of reference data for the lifetime of one batch.
    """

    import_type: str
    department_ids: Mapping[str, uuid.UUID | None]
    allowed_roles: frozenset[str]
    default_role: str
    taken_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def department_codes(self) -> frozenset[str]:
        return frozenset(self.department_ids)

    def is_valid_role(self, role: str) -> bool:
        return role in self.allowed_roles

    def department_id_for(self, code: str | None) -> uuid.UUID | None:
        if not code:
            return None
        return self.department_ids.get(code.upper())


class ReferenceDataProvider(Protocol):
    def list_active_department_codes(self) -> set[str]:
        ...

    def is_valid_role(self, role: str, import_type: str) -> bool:
        ...

    def snapshot(self, import_type: str) -> ReferenceSnapshot:
        ...


class DatabaseReferenceDataProvider:
    """
    Reference data backed by the ``departments`` table.
    """

    def __init__(self, session: Session) -> None:
        self._departments = DepartmentRepository(session)

    def list_active_department_codes(self) -> set[str]:
        return set(self._departments.active_code_map())

    def is_valid_role(self, role: str, import_type: str) -> bool:
        return role in ROLES_BY_IMPORT_TYPE.get(import_type, frozenset())

    def snapshot(self, import_type: str) -> ReferenceSnapshot:
        import_type = require_import_type(import_type)
        return ReferenceSnapshot(
            import_type=import_type,
            department_ids=dict(self._departments.active_code_map()),
            allowed_roles=ROLES_BY_IMPORT_TYPE[import_type],
            default_role=DEFAULT_ROLE_BY_IMPORT_TYPE[import_type],
        )


class StaticReferenceDataProvider:
    """
    Fixed department codes, for scripts and tests that run without a
    populated departments table. Codes map to no department row.
    """

    def __init__(self, department_codes: set[str] | frozenset[str]) -> None:
        self._codes = {code.strip().upper() for code in department_codes if code.strip()}

    def list_active_department_codes(self) -> set[str]:
        return set(self._codes)

    def is_valid_role(self, role: str, import_type: str) -> bool:
        return role in ROLES_BY_IMPORT_TYPE.get(import_type, frozenset())

    def snapshot(self, import_type: str) -> ReferenceSnapshot:
        import_type = require_import_type(import_type)
        return ReferenceSnapshot(
            import_type=import_type,
            department_ids={code: None for code in self._codes},
            allowed_roles=ROLES_BY_IMPORT_TYPE[import_type],
            default_role=DEFAULT_ROLE_BY_IMPORT_TYPE[import_type],
        )
