"""
app/validators/identity_row_validator.py

Row-level validation for bulk identity imports.

Every rule runs on every row and all messages are collected, so the
submitter sees each problem with a row in one pass. Errors block
creation, warnings do not.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any

from app.domain.identity_import import BatchRow, NormalizedRow, ValidationOutcome
from app.services.reference_data import ReferenceSnapshot

EMAIL_PATTERN = re.compile(r"^[\w.+-]+@[A-Za-z0-9-]+(\.[A-Za-z0-9-]+)*\.[A-Za-z]{2,}$")
PHONE_PATTERN = re.compile(r"^[0-9]{10}$")
MAX_NAME_LENGTH = 50


@dataclass
class BatchValidationContext:
    """
    Identity state a batch is validated against.

    ``existing_*`` is the snapshot taken at batch start. ``accepted_*``
    grows as rows are created, which makes validation order dependent:
    a row can be rejected because an earlier row of the same batch took
    its email or employee id.
    """

    existing_emails: frozenset[str] = frozenset()
    existing_identifiers: frozenset[str] = frozenset()
    accepted_emails: dict[str, int] = field(default_factory=dict)
    accepted_employee_ids: dict[str, int] = field(default_factory=dict)
    duplicate_emails: list[str] = field(default_factory=list)
    duplicate_employee_ids: list[str] = field(default_factory=list)

    def register(self, row: NormalizedRow, *, row_index: int) -> None:
        self.accepted_emails.setdefault(row.email, row_index)
        if row.employee_id:
            self.accepted_employee_ids.setdefault(row.employee_id, row_index)

    def note_duplicate_email(self, email: str) -> None:
        if email not in self.duplicate_emails:
            self.duplicate_emails.append(email)

    def note_duplicate_employee_id(self, employee_id: str) -> None:
        if employee_id not in self.duplicate_employee_ids:
            self.duplicate_employee_ids.append(employee_id)


class IdentityRowValidator:
    """
    Validates one candidate row against reference data and known identities.
    """

    def __init__(self, *, min_employee_id_length: int = 3) -> None:
        self._min_employee_id_length = max(0, min_employee_id_length)

    def validate(
        self,
        *,
        row: BatchRow,
        row_index: int,
        reference: ReferenceSnapshot,
        context: BatchValidationContext,
    ) -> tuple[NormalizedRow | None, ValidationOutcome]:
        errors: list[str] = []
        warnings: list[str] = []

        first_name = self._parse_name(row.first_name, label="First name", errors=errors)
        last_name = self._parse_name(row.last_name, label="Last name", errors=errors)
        email = self._parse_email(row.email, errors=errors)
        department_code = self._validate_department(row.department, reference=reference, errors=errors)
        role = self._validate_role(row.role, reference=reference, errors=errors)

        phone = self._parse_optional_string(row.phone)
        if phone is not None and not PHONE_PATTERN.match(phone):
            warnings.append(f"Phone number {phone!r} should be exactly 10 digits.")

        employee_id = self._parse_optional_string(row.employee_id)
        if employee_id is not None and len(employee_id) < self._min_employee_id_length:
            warnings.append(
                f"Employee ID {employee_id!r} is shorter than {self._min_employee_id_length} characters."
            )

        self._check_duplicates(
            email=email,
            employee_id=employee_id,
            context=context,
            errors=errors,
        )

        outcome = ValidationOutcome.from_messages(row_index=row_index, errors=errors, warnings=warnings)
        if errors:
            return None, outcome

        return (
            NormalizedRow(
                first_name=first_name,
                last_name=last_name,
                email=email,
                role=role,
                department_code=department_code,
                designation=self._parse_optional_string(row.designation),
                employee_id=employee_id,
                phone=phone,
            ),
            outcome,
        )

    def _parse_name(self, value: Any, *, label: str, errors: list[str]) -> str:
        if self._is_blank(value):
            errors.append(f"{label} is required.")
            return ""
        name = str(value).strip()
        if len(name) > MAX_NAME_LENGTH:
            errors.append(f"{label} cannot exceed {MAX_NAME_LENGTH} characters.")
        return name

    def _parse_email(self, value: Any, *, errors: list[str]) -> str:
        if self._is_blank(value):
            errors.append("Email is required.")
            return ""
        email = str(value).strip().lower()
        if not EMAIL_PATTERN.match(email):
            errors.append(f"Invalid email format: {str(value).strip()!r}.")
        return email

    def _validate_department(
        self,
        value: Any,
        *,
        reference: ReferenceSnapshot,
        errors: list[str],
    ) -> str | None:
        if self._is_blank(value):
            return None
        code = str(value).strip().upper()
        if code not in reference.department_codes:
            valid = ", ".join(sorted(reference.department_codes)) or "none configured"
            errors.append(f"Invalid department code {code!r}. Valid codes: {valid}.")
        return code

    def _validate_role(
        self,
        value: Any,
        *,
        reference: ReferenceSnapshot,
        errors: list[str],
    ) -> str:
        if self._is_blank(value):
            return reference.default_role
        role = str(value).strip().lower()
        if not reference.is_valid_role(role):
            allowed = ", ".join(sorted(reference.allowed_roles))
            errors.append(
                f"Invalid role {role!r} for {reference.import_type} import. Allowed values: {allowed}."
            )
        return role

    def _check_duplicates(
        self,
        *,
        email: str,
        employee_id: str | None,
        context: BatchValidationContext,
        errors: list[str],
    ) -> None:
        if email:
            if email in context.existing_emails:
                errors.append(f"User with email {email!r} already exists.")
                context.note_duplicate_email(email)
            elif email in context.accepted_emails:
                errors.append(
                    f"User with email {email!r} already exists "
                    f"(duplicate of row {context.accepted_emails[email]} in this batch)."
                )
                context.note_duplicate_email(email)

        if employee_id:
            if employee_id in context.existing_identifiers:
                errors.append(f"Employee ID {employee_id!r} already exists.")
                context.note_duplicate_employee_id(employee_id)
            elif employee_id in context.accepted_employee_ids:
                errors.append(
                    f"Employee ID {employee_id!r} already exists "
                    f"(duplicate of row {context.accepted_employee_ids[employee_id]} in this batch)."
                )
                context.note_duplicate_employee_id(employee_id)

    def _parse_optional_string(self, value: Any) -> str | None:
        if self._is_blank(value):
            return None
        return str(value).strip()

    @staticmethod
    def _is_blank(value: Any) -> bool:
        if value is None:
            return True
        return str(value).strip() == ""
