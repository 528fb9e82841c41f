"""
Exception taxonomy for the identity import pipeline.

Row-level validation problems are never raised; they are collected into
``ValidationOutcome.errors`` / ``.warnings``. Only the errors below cross
the service boundary.
"""

from __future__ import annotations


class IdentityImportError(Exception):
    """Base exception for import pipeline failures."""


class BatchSetupError(IdentityImportError, ValueError):
    """
    Raised before any row is processed: missing actor, empty batch,
    unknown import type.
    """


class BatchTooLargeError(BatchSetupError):
    """Raised when a batch exceeds the configured row cap."""

    def __init__(self, *, size: int, limit: int) -> None:
        super().__init__(f"Batch of {size} rows exceeds the maximum of {limit}.")
        self.size = size
        self.limit = limit


class ConflictError(IdentityImportError):
    """Raised when an operation collides with existing state (e.g. repeated rollback)."""


class NotFoundError(IdentityImportError, LookupError):
    """Raised when a referenced ledger entry or identity does not exist."""
