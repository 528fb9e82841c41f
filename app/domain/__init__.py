"""
app/domain package marker.
"""

from app.domain.identity_import import (
    BatchMeta,
    BatchRow,
    CreatedIdentity,
    ImportReport,
    NormalizedRow,
    ReconciliationReport,
    RollbackResult,
    RowReport,
    ValidationOutcome,
)

__all__ = [
    "BatchMeta",
    "BatchRow",
    "CreatedIdentity",
    "ImportReport",
    "NormalizedRow",
    "ReconciliationReport",
    "RollbackResult",
    "RowReport",
    "ValidationOutcome",
]
