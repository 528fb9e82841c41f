"""create import ledger tables

Revision ID: 20261019_0003
Revises: 20261019_0002
Create Date: 2026-10-19 09:20:00
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "20261019_0003"
down_revision = "20261019_0002"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "import_ledger_entries",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("import_type", sa.String(length=20), nullable=False, comment="staff, student"),
        sa.Column("origin", sa.String(length=255), nullable=False, comment="Uploaded file name or 'api'"),
        sa.Column("origin_size_bytes", sa.Integer(), nullable=False),
        sa.Column("record_count", sa.Integer(), nullable=False, comment="Number of rows submitted"),
        sa.Column("submitted_by", sa.String(length=120), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("duration_ms", sa.Integer(), nullable=False),
        sa.Column("total_records", sa.Integer(), nullable=False),
        sa.Column("successful_records", sa.Integer(), nullable=False),
        sa.Column("failed_records", sa.Integer(), nullable=False),
        sa.Column("warning_records", sa.Integer(), nullable=False),
        sa.Column("rollback_available", sa.Boolean(), nullable=False),
        sa.Column(
            "created_identity_ids",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            comment="Exact identity ids created by this batch, in row order",
        ),
        sa.Column("rolled_back_by", sa.String(length=120), nullable=True),
        sa.Column("rolled_back_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rollback_reason", sa.Text(), nullable=True),
        sa.Column("rollback_deleted_count", sa.Integer(), nullable=True),
        sa.Column(
            "metadata_json",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=True,
            comment="Department codes, roles, duplicates, client ip, user agent",
        ),
        sa.Column("notes", sa.String(length=1000), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_import_ledger_entries_submitted_by", "import_ledger_entries", ["submitted_by"], unique=False)
    op.create_index("ix_import_ledger_entries_status", "import_ledger_entries", ["status"], unique=False)
    op.create_index("ix_import_ledger_entries_import_type", "import_ledger_entries", ["import_type"], unique=False)
    op.create_index("ix_import_ledger_entries_created_at", "import_ledger_entries", ["created_at"], unique=False)
    op.create_index(
        "ix_import_ledger_entries_rollback_available",
        "import_ledger_entries",
        ["rollback_available"],
        unique=False,
    )

    op.create_table(
        "import_ledger_outcomes",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("entry_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("row_index", sa.Integer(), nullable=False, comment="1-based"),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column(
            "identity_id",
            postgresql.UUID(as_uuid=True),
            nullable=True,
            comment="Not a foreign key: the identity may later be rolled back",
        ),
        sa.Column("identifier", sa.String(length=32), nullable=True),
        sa.Column("payload", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column("errors", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column("warnings", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column("recorded_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["entry_id"], ["import_ledger_entries.id"], ondelete="RESTRICT"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("entry_id", "row_index", name="uq_import_ledger_outcomes_entry_row"),
    )
    op.create_index("ix_import_ledger_outcomes_status", "import_ledger_outcomes", ["status"], unique=False)
    op.create_index(
        "ix_import_ledger_outcomes_entry_recorded_at",
        "import_ledger_outcomes",
        ["entry_id", "recorded_at"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index("ix_import_ledger_outcomes_entry_recorded_at", table_name="import_ledger_outcomes")
    op.drop_index("ix_import_ledger_outcomes_status", table_name="import_ledger_outcomes")
    op.drop_table("import_ledger_outcomes")
    op.drop_index("ix_import_ledger_entries_rollback_available", table_name="import_ledger_entries")
    op.drop_index("ix_import_ledger_entries_created_at", table_name="import_ledger_entries")
    op.drop_index("ix_import_ledger_entries_import_type", table_name="import_ledger_entries")
    op.drop_index("ix_import_ledger_entries_status", table_name="import_ledger_entries")
    op.drop_index("ix_import_ledger_entries_submitted_by", table_name="import_ledger_entries")
    op.drop_table("import_ledger_entries")
