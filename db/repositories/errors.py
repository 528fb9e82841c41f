"""
Repository-layer exceptions for identity import persistence.
"""

from __future__ import annotations


class IdentityRepositoryError(Exception):
    """Base exception for identity/ledger repository failures."""


class IdentifierAllocationError(IdentityRepositoryError):
    """Raised when the identifier counter cannot be advanced."""


class ImportPersistenceError(IdentityRepositoryError):
    """Raised when a ledger entry or identity cannot be written."""
