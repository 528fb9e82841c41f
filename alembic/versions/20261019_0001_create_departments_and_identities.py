"""create departments, identities and profile tables

Revision ID: 20261019_0001
Revises:
Create Date: 2026-10-19 09:00:00
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "20261019_0001"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "departments",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("code", sa.String(length=20), nullable=False, comment="Upper-case short code, e.g. CSE, ECE"),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column(
            "is_active",
            sa.Boolean(),
            nullable=False,
            comment="Inactive departments are rejected by new imports",
        ),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("code"),
    )
    op.create_index("ix_departments_is_active", "departments", ["is_active"], unique=False)

    op.create_table(
        "identities",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column(
            "identifier",
            sa.String(length=32),
            nullable=False,
            comment="Generated human-readable id, e.g. 2025STU001",
        ),
        sa.Column("email", sa.String(length=320), nullable=False, comment="Always stored lower-cased"),
        sa.Column("first_name", sa.String(length=50), nullable=False),
        sa.Column("last_name", sa.String(length=50), nullable=False),
        sa.Column("role", sa.String(length=32), nullable=False),
        sa.Column("department_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("employee_id", sa.String(length=50), nullable=True),
        sa.Column("designation", sa.String(length=120), nullable=True),
        sa.Column("phone", sa.String(length=20), nullable=True),
        sa.Column("password_hash", sa.String(length=255), nullable=False),
        sa.Column("is_first_login", sa.Boolean(), nullable=False),
        sa.Column("email_sent", sa.Boolean(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("created_by", sa.String(length=120), nullable=True),
        sa.Column(
            "import_batch_id",
            postgresql.UUID(as_uuid=True),
            nullable=True,
            comment="Ledger entry that created this identity; informational only",
        ),
        *_timestamps(),
        sa.ForeignKeyConstraint(["department_id"], ["departments.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email"),
        sa.UniqueConstraint("identifier"),
    )
    op.create_index("ix_identities_role", "identities", ["role"], unique=False)
    op.create_index("ix_identities_department_id", "identities", ["department_id"], unique=False)
    op.create_index("ix_identities_employee_id", "identities", ["employee_id"], unique=False)

    op.create_table(
        "student_profiles",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("identity_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("registration_number", sa.String(length=32), nullable=False),
        sa.Column("full_name", sa.String(length=120), nullable=False),
        sa.Column("contact_email", sa.String(length=320), nullable=False),
        sa.Column("department_code", sa.String(length=20), nullable=True),
        sa.Column("program", sa.String(length=120), nullable=False),
        sa.Column("placement_status", sa.String(length=32), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(["identity_id"], ["identities.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("identity_id"),
    )

    op.create_table(
        "staff_profiles",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("identity_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("full_name", sa.String(length=120), nullable=False),
        sa.Column("employee_id", sa.String(length=50), nullable=True),
        sa.Column("designation", sa.String(length=120), nullable=True),
        sa.Column("department_code", sa.String(length=20), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["identity_id"], ["identities.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("identity_id"),
    )


def downgrade() -> None:
    op.drop_table("staff_profiles")
    op.drop_table("student_profiles")
    op.drop_index("ix_identities_employee_id", table_name="identities")
    op.drop_index("ix_identities_department_id", table_name="identities")
    op.drop_index("ix_identities_role", table_name="identities")
    op.drop_table("identities")
    op.drop_index("ix_departments_is_active", table_name="departments")
    op.drop_table("departments")
