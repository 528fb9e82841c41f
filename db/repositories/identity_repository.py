"""
Persistence for imported identities and their profiles.

The caller controls commit/rollback; this repository only flushes.
"""

from __future__ import annotations

import uuid
from collections.abc import Iterable, Sequence

from sqlalchemy import delete, or_, select, update
from sqlalchemy.orm import Session

from db.models.identity import Identity, StaffProfile, StudentProfile

_LOOKUP_CHUNK_SIZE = 500


def _chunks(values: Sequence[str], size: int) -> Iterable[Sequence[str]]:
    for start in range(0, len(values), size):
        yield values[start : start + size]


class IdentityRepository:
    def __init__(self, session: Session) -> None:
        self._session = session

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def get(self, identity_id: uuid.UUID) -> Identity | None:
        return self._session.get(Identity, identity_id)

    def existing_emails(self, emails: Iterable[str]) -> set[str]:
        """
        Return the subset of ``emails`` (compared lower-cased) already bound
        to an identity.
        """

        candidates = sorted({email.strip().lower() for email in emails if email and email.strip()})
        found: set[str] = set()
        for chunk in _chunks(candidates, _LOOKUP_CHUNK_SIZE):
            stmt = select(Identity.email).where(Identity.email.in_(chunk))
            found.update(self._session.scalars(stmt).all())
        return found

    def existing_identifiers(self, values: Iterable[str]) -> set[str]:
        """
        Return the subset of ``values`` already used as an employee id or as
        a generated identifier.
        """

        candidates = sorted({value.strip() for value in values if value and value.strip()})
        found: set[str] = set()
        for chunk in _chunks(candidates, _LOOKUP_CHUNK_SIZE):
            stmt = select(Identity.employee_id, Identity.identifier).where(
                or_(Identity.employee_id.in_(chunk), Identity.identifier.in_(chunk))
            )
            for employee_id, identifier in self._session.execute(stmt).all():
                if employee_id in chunk:
                    found.add(employee_id)
                if identifier in chunk:
                    found.add(identifier)
        return found

    def identifier_exists(self, identifier: str) -> bool:
        stmt = select(Identity.id).where(Identity.identifier == identifier).limit(1)
        return self._session.scalar(stmt) is not None

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_identity(
        self,
        *,
        identifier: str,
        email: str,
        first_name: str,
        last_name: str,
        role: str,
        password_hash: str,
        department_id: uuid.UUID | None = None,
        employee_id: str | None = None,
        designation: str | None = None,
        phone: str | None = None,
        created_by: str | None = None,
        import_batch_id: uuid.UUID | None = None,
    ) -> Identity:
        identity = Identity(
            identifier=identifier,
            email=email.strip().lower(),
            first_name=first_name,
            last_name=last_name,
            role=role,
            password_hash=password_hash,
            department_id=department_id,
            employee_id=employee_id,
            designation=designation,
            phone=phone,
            created_by=created_by,
            import_batch_id=import_batch_id,
            is_first_login=True,
            email_sent=False,
            is_active=True,
        )
        self._session.add(identity)
        self._session.flush()
        return identity

    def create_student_profile(
        self,
        *,
        identity: Identity,
        department_code: str | None,
    ) -> StudentProfile:
        profile = StudentProfile(
            identity_id=identity.id,
            registration_number=identity.identifier,
            full_name=identity.full_name,
            contact_email=identity.email,
            department_code=department_code,
        )
        self._session.add(profile)
        self._session.flush()
        return profile

    def create_staff_profile(
        self,
        *,
        identity: Identity,
        department_code: str | None,
    ) -> StaffProfile:
        profile = StaffProfile(
            identity_id=identity.id,
            full_name=identity.full_name,
            employee_id=identity.employee_id,
            designation=identity.designation,
            department_code=department_code,
        )
        self._session.add(profile)
        self._session.flush()
        return profile

    def delete_by_ids(self, identity_ids: Sequence[uuid.UUID]) -> int:
        """
        Delete exactly the given identities and their profiles.

        Ids that no longer exist are ignored; the return value counts only
        rows actually removed.
        """

        if not identity_ids:
            return 0
        ids = list(identity_ids)
        self._session.execute(delete(StudentProfile).where(StudentProfile.identity_id.in_(ids)))
        self._session.execute(delete(StaffProfile).where(StaffProfile.identity_id.in_(ids)))
        result = self._session.execute(
            delete(Identity).where(Identity.id.in_(ids)).execution_options(synchronize_session=False)
        )
        return int(result.rowcount or 0)

    def mark_email_sent(self, identity_id: uuid.UUID) -> bool:
        result = self._session.execute(
            update(Identity)
            .where(Identity.id == identity_id)
            .values(email_sent=True)
            .execution_options(synchronize_session=False)
        )
        return bool(result.rowcount)
