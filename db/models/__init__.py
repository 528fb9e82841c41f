"""
Model package exports.

Import all SQLAlchemy models here so metadata registration and Alembic
autogeneration work without extra imports.
"""

from db.models.department import Department
from db.models.identifier_counter import IdentifierCounter
from db.models.identity import Identity, StaffProfile, StudentProfile
from db.models.import_ledger import ImportLedgerEntry, ImportLedgerOutcome

__all__ = [
    "Department",
    "IdentifierCounter",
    "Identity",
    "StaffProfile",
    "StudentProfile",
    "ImportLedgerEntry",
    "ImportLedgerOutcome",
]
