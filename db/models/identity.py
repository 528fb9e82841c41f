"""
db/models/identity.py

Portal accounts and their role-specific profiles.

An identity row owns exactly one profile row; deleting the identity
(e.g. during an import rollback) removes the profile through the
ON DELETE CASCADE foreign key.
"""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, ForeignKey, Index, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from db.base import Base, TimestampMixin

if TYPE_CHECKING:
    from db.models.department import Department


class IdentityRole:
    ADMIN = "admin"
    PLACEMENT_DIRECTOR = "placement_director"
    PLACEMENT_STAFF = "placement_staff"
    DEPARTMENT_HOD = "department_hod"
    OTHER_STAFF = "other_staff"
    STUDENT = "student"
    ALUMNI = "alumni"


STAFF_ROLES: frozenset[str] = frozenset(
    {
        IdentityRole.ADMIN,
        IdentityRole.PLACEMENT_DIRECTOR,
        IdentityRole.PLACEMENT_STAFF,
        IdentityRole.DEPARTMENT_HOD,
        IdentityRole.OTHER_STAFF,
    }
)
STUDENT_ROLES: frozenset[str] = frozenset({IdentityRole.STUDENT, IdentityRole.ALUMNI})


class PlacementStatus:
    UNPLACED = "unplaced"
    PLACED = "placed"


class Identity(Base, TimestampMixin):
    __tablename__ = "identities"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    identifier: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        unique=True,
        comment="Generated human-readable id, e.g. 2025STU001",
    )
    email: Mapped[str] = mapped_column(
        String(320),
        nullable=False,
        unique=True,
        comment="Always stored lower-cased",
    )
    first_name: Mapped[str] = mapped_column(String(50), nullable=False)
    last_name: Mapped[str] = mapped_column(String(50), nullable=False)
    role: Mapped[str] = mapped_column(String(32), nullable=False)
    department_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("departments.id", ondelete="SET NULL"),
        nullable=True,
    )
    employee_id: Mapped[str | None] = mapped_column(String(50), nullable=True)
    designation: Mapped[str | None] = mapped_column(String(120), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(20), nullable=True)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    is_first_login: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    email_sent: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_by: Mapped[str | None] = mapped_column(String(120), nullable=True)
    import_batch_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        nullable=True,
        comment="Ledger entry that created this identity; informational only",
    )

    department: Mapped["Department | None"] = relationship("Department", lazy="joined")
    student_profile: Mapped["StudentProfile | None"] = relationship(
        "StudentProfile",
        back_populates="identity",
        uselist=False,
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    staff_profile: Mapped["StaffProfile | None"] = relationship(
        "StaffProfile",
        back_populates="identity",
        uselist=False,
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        Index("ix_identities_role", "role"),
        Index("ix_identities_department_id", "department_id"),
        Index("ix_identities_employee_id", "employee_id"),
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    def __repr__(self) -> str:
        return f"<Identity identifier={self.identifier!r} email={self.email!r} role={self.role!r}>"


class StudentProfile(Base, TimestampMixin):
    __tablename__ = "student_profiles"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    identity_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("identities.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    registration_number: Mapped[str] = mapped_column(String(32), nullable=False)
    full_name: Mapped[str] = mapped_column(String(120), nullable=False)
    contact_email: Mapped[str] = mapped_column(String(320), nullable=False)
    department_code: Mapped[str | None] = mapped_column(String(20), nullable=True)
    program: Mapped[str] = mapped_column(String(120), nullable=False, default="Not Specified")
    placement_status: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        default=PlacementStatus.UNPLACED,
    )

    identity: Mapped[Identity] = relationship("Identity", back_populates="student_profile")


class StaffProfile(Base, TimestampMixin):
    __tablename__ = "staff_profiles"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    identity_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("identities.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    full_name: Mapped[str] = mapped_column(String(120), nullable=False)
    employee_id: Mapped[str | None] = mapped_column(String(50), nullable=True)
    designation: Mapped[str | None] = mapped_column(String(120), nullable=True)
    department_code: Mapped[str | None] = mapped_column(String(20), nullable=True)

    identity: Mapped[Identity] = relationship("Identity", back_populates="staff_profile")
