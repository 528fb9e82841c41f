"""
db/models/department.py

Department reference table. The import pipeline only reads it.
"""

from __future__ import annotations

import uuid

from sqlalchemy import Boolean, Index, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from db.base import Base, TimestampMixin


class Department(Base, TimestampMixin):
    __tablename__ = "departments"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    code: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        unique=True,
        comment="Upper-case short code, e.g. CSE, ECE",
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        comment="Inactive departments are rejected by new imports",
    )

    __table_args__ = (Index("ix_departments_is_active", "is_active"),)

    def __repr__(self) -> str:
        return f"<Department code={self.code!r} active={self.is_active}>"
