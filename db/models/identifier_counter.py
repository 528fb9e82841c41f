"""
db/models/identifier_counter.py

Per-prefix counters for sequential human-readable identifiers.

Rows are only ever touched through the identifier allocator's atomic
increment; nothing reads them to derive the "last" identifier.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import BigInteger, DateTime, String, func
from sqlalchemy.orm import Mapped, mapped_column

from db.base import Base


class IdentifierCounter(Base):
    __tablename__ = "identifier_counters"

    prefix: Mapped[str] = mapped_column(
        String(32),
        primary_key=True,
        comment="Year + type code, e.g. 2025STU",
    )
    next_value: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        default=1,
        comment="Next unallocated sequence number",
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    def __repr__(self) -> str:
        return f"<IdentifierCounter {self.prefix}={self.next_value}>"
