"""
app/services/rollback_coordinator.py

Reverses one import batch by deleting exactly the identities it created.

The claim (``rollback_available`` true -> false), the deletion of the
recorded id list and the audit fields are committed in one transaction.
Two concurrent calls cannot both win the claim: the loser sees zero rows
updated and gets ``ConflictError``.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.domain.identity_import import RollbackResult
from app.errors import BatchSetupError, ConflictError, NotFoundError
from db.repositories.errors import ImportPersistenceError
from db.repositories.identity_repository import IdentityRepository
from db.repositories.import_ledger_repository import ImportLedgerRepository

logger = logging.getLogger(__name__)

MAX_REASON_LENGTH = 500


class RollbackCoordinator:
    def __init__(self, session: Session) -> None:
        self._session = session
        self._ledger = ImportLedgerRepository(session)
        self._identities = IdentityRepository(session)

    def rollback(self, *, entry_id: uuid.UUID, actor: str, reason: str) -> RollbackResult:
        """
        Delete the identities recorded on ``entry_id`` and mark the entry
        rolled back.

        Raises:
            BatchSetupError: missing actor or reason.
            NotFoundError:   no such ledger entry.
            ConflictError:   the entry is not (or no longer) eligible.
        """

        actor = (actor or "").strip()
        reason = (reason or "").strip()
        if not actor:
            raise BatchSetupError("An authenticated actor is required to roll back an import.")
        if not reason:
            raise BatchSetupError("A rollback reason is required.")
        reason = reason[:MAX_REASON_LENGTH]

        entry = self._ledger.get_entry(entry_id)
        if entry is None:
            raise NotFoundError(f"Import ledger entry {entry_id} not found.")
        if not entry.rollback_available:
            raise ConflictError(self._not_available_message(entry_id, rolled_back=entry.is_rolled_back))

        rolled_back_at = datetime.now(timezone.utc)
        try:
            claimed = self._ledger.claim_rollback(
                entry_id=entry_id,
                rolled_back_by=actor,
                rolled_back_at=rolled_back_at,
                reason=reason,
            )
            if not claimed:
                self._session.rollback()
                raise ConflictError(self._not_available_message(entry_id, rolled_back=True))

            identity_ids = [uuid.UUID(str(value)) for value in (entry.created_identity_ids or [])]
            deleted_count = self._identities.delete_by_ids(identity_ids)
            self._ledger.record_rollback_deleted_count(entry_id=entry_id, deleted_count=deleted_count)
            self._session.commit()
        except SQLAlchemyError as exc:
            self._session.rollback()
            raise ImportPersistenceError(f"Rollback of import ledger entry {entry_id} failed.") from exc

        self._session.refresh(entry)
        if deleted_count != len(identity_ids):
            logger.warning(
                "Import rollback removed fewer identities than recorded entry_id=%s deleted=%s recorded=%s",
                entry_id,
                deleted_count,
                len(identity_ids),
            )
        logger.info(
            "Import rolled back entry_id=%s deleted=%s actor=%s reason=%r",
            entry_id,
            deleted_count,
            actor,
            reason,
        )
        return RollbackResult(
            ledger_entry_id=entry_id,
            deleted_count=deleted_count,
            requested_count=len(identity_ids),
            rolled_back_by=actor,
            rolled_back_at=rolled_back_at,
            reason=reason,
            ledger_status=entry.status,
        )

    @staticmethod
    def _not_available_message(entry_id: uuid.UUID, *, rolled_back: bool) -> str:
        if rolled_back:
            return f"Import ledger entry {entry_id} has already been rolled back."
        return f"Import ledger entry {entry_id} has no created identities to roll back."
