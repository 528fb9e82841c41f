"""
tests/conftest.py

Shared fixtures: an in-memory SQLite database with the full ORM schema,
seeded departments, and a BatchExecutor factory with a fixed year.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator
from typing import Any

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

import db.models  # noqa: F401 (registers all ORM models on Base.metadata)
from app.domain.identity_import import CreatedIdentity
from app.services.batch_executor import BatchExecutor
from app.services.notification_service import NotificationDispatcher
from app.validators.identity_row_validator import IdentityRowValidator
from db.base import Base
from db.models.department import Department
from db.models.import_ledger import ImportType


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@pytest.fixture()
def engine() -> Iterator[Engine]:
    test_engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    @event.listens_for(test_engine, "connect")
    def _enable_foreign_keys(dbapi_connection, connection_record) -> None:
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    Base.metadata.create_all(test_engine)
    try:
        yield test_engine
    finally:
        Base.metadata.drop_all(test_engine)
        test_engine.dispose()


@pytest.fixture()
def session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, class_=Session, autoflush=False, expire_on_commit=False)


@pytest.fixture()
def db_session(session_factory: sessionmaker[Session]) -> Iterator[Session]:
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def departments(db_session: Session) -> dict[str, Department]:
    seeded = {
        "CSE": Department(code="CSE", name="Computer Science", is_active=True),
        "ECE": Department(code="ECE", name="Electronics", is_active=True),
        "MECH": Department(code="MECH", name="Mechanical", is_active=False),
    }
    db_session.add_all(seeded.values())
    db_session.commit()
    return seeded


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------


class RecordingNotificationService:
    """Collects notifications; optionally fails for chosen emails."""

    def __init__(self, *, fail_for: set[str] | None = None, raise_for: set[str] | None = None) -> None:
        self.sent: list[tuple[str, str]] = []
        self._fail_for = fail_for or set()
        self._raise_for = raise_for or set()

    def notify_new_identity(self, identity: CreatedIdentity, credential: str) -> bool:
        if identity.email in self._raise_for:
            raise RuntimeError("mail relay unreachable")
        if identity.email in self._fail_for:
            return False
        self.sent.append((identity.email, credential))
        return True


@pytest.fixture()
def notifier() -> RecordingNotificationService:
    return RecordingNotificationService()


# ---------------------------------------------------------------------------
# Executor
# ---------------------------------------------------------------------------


@pytest.fixture()
def make_executor(session_factory: sessionmaker[Session]) -> Callable[..., BatchExecutor]:
    def _build(
        *,
        notification_service: Any | None = None,
        **overrides: Any,
    ) -> BatchExecutor:
        options: dict[str, Any] = {
            "max_batch_size": 1000,
            "identifier_width": 3,
            "identifier_codes": {ImportType.STUDENT: "STU", ImportType.STAFF: "STF"},
            "log_row_outcomes": True,
            "validator": IdentityRowValidator(min_employee_id_length=3),
            "year": 2025,
        }
        if notification_service is not None:
            options["dispatcher"] = NotificationDispatcher(
                service=notification_service,
                session_factory=session_factory,
            )
        options.update(overrides)
        return BatchExecutor(**options)

    return _build
