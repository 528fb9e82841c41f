"""
Read-only access to the department reference table.
"""

from __future__ import annotations

import uuid

from sqlalchemy import select
from sqlalchemy.orm import Session

from db.models.department import Department


class DepartmentRepository:
    def __init__(self, session: Session) -> None:
        self._session = session

    def list_active(self) -> list[Department]:
        stmt = select(Department).where(Department.is_active.is_(True)).order_by(Department.code)
        return list(self._session.scalars(stmt).all())

    def active_code_map(self) -> dict[str, uuid.UUID]:
        """Return ``{CODE: department_id}`` for every active department."""
        return {department.code.upper(): department.id for department in self.list_active()}
