"""
Repository layer exports.
"""

from db.repositories.department_repository import DepartmentRepository
from db.repositories.errors import (
    IdentifierAllocationError,
    IdentityRepositoryError,
    ImportPersistenceError,
)
from db.repositories.identifier_counter_repository import IdentifierCounterRepository
from db.repositories.identity_repository import IdentityRepository
from db.repositories.import_ledger_repository import ImportLedgerRepository

__all__ = [
    "DepartmentRepository",
    "IdentifierCounterRepository",
    "IdentityRepository",
    "ImportLedgerRepository",
    "IdentityRepositoryError",
    "IdentifierAllocationError",
    "ImportPersistenceError",
]
