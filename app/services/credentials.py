"""
app/services/credentials.py

One-time credentials for newly imported accounts.

The plain-text password only lives long enough to be handed to the
notification service; the identity row stores the hash.
"""

from __future__ import annotations

import secrets
import string

from passlib.context import CryptContext

from db.models.import_ledger import ImportType

_ALPHABET = string.ascii_letters + string.digits
_LABEL_BY_IMPORT_TYPE = {
    ImportType.STUDENT: "Student",
    ImportType.STAFF: "Staff",
}

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


def generate_credential(import_type: str, *, length: int = 8) -> str:
    label = _LABEL_BY_IMPORT_TYPE.get(import_type, "User")
    suffix = "".join(secrets.choice(_ALPHABET) for _ in range(length))
    return f"{label}@{suffix}"


def hash_credential(credential: str) -> str:
    return pwd_context.hash(credential)


def verify_credential(credential: str, hashed: str) -> bool:
    return pwd_context.verify(credential, hashed)
