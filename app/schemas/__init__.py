"""
app/schemas package marker.
"""

from app.schemas.identity_import import (
    IdentityImportRequest,
    ImportReportResponse,
    ImportStatsResponse,
    LedgerEntryDetailResponse,
    LedgerEntrySummaryResponse,
    RollbackRequest,
    RollbackResponse,
    RowOutcomeResponse,
)

__all__ = [
    "IdentityImportRequest",
    "ImportReportResponse",
    "ImportStatsResponse",
    "LedgerEntryDetailResponse",
    "LedgerEntrySummaryResponse",
    "RollbackRequest",
    "RollbackResponse",
    "RowOutcomeResponse",
]
