"""create identifier_counters table

Revision ID: 20261019_0002
Revises: 20261019_0001
Create Date: 2026-10-19 09:10:00
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "20261019_0002"
down_revision = "20261019_0001"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "identifier_counters",
        sa.Column("prefix", sa.String(length=32), nullable=False, comment="Year + type code, e.g. 2025STU"),
        sa.Column(
            "next_value",
            sa.BigInteger(),
            nullable=False,
            comment="Next unallocated sequence number",
        ),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.PrimaryKeyConstraint("prefix"),
    )


def downgrade() -> None:
    op.drop_table("identifier_counters")
