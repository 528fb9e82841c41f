"""
app/services/notification_service.py

New-account notifications for imported identities.

Delivery is decoupled from the import result: the dispatcher runs after
the ledger entry is finalized, logs every failure, and never feeds back
into row outcomes. A successful delivery flips ``Identity.email_sent``.
"""

from __future__ import annotations

import logging
import time
import uuid
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Protocol

import requests
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.config import NotificationSettings, get_notification_settings
from app.domain.identity_import import CreatedIdentity
from app.errors import NotFoundError
from app.services.credentials import generate_credential, hash_credential
from db.models.identity import STUDENT_ROLES
from db.models.import_ledger import ImportType
from db.repositories.errors import ImportPersistenceError
from db.repositories.identity_repository import IdentityRepository

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}


class NotificationDeliveryError(RuntimeError):
    """
    Raised when a notification cannot be delivered after retries.
    """


class NotificationService(Protocol):
    def notify_new_identity(self, identity: CreatedIdentity, credential: str) -> bool:
        ...


class LoggingNotificationService:
    """
    Default notifier when no delivery endpoint is configured.
    """

    def notify_new_identity(self, identity: CreatedIdentity, credential: str) -> bool:
        logger.info(
            "New account ready identifier=%s email=%s role=%s (no delivery endpoint configured)",
            identity.identifier,
            identity.email,
            identity.role,
        )
        return True


class WebhookNotificationService:
    """
    POSTs a welcome message payload to an external mail/notification relay.
    """

    def __init__(
        self,
        *,
        settings: NotificationSettings,
        session: requests.Session | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if not settings.webhook_url:
            raise ValueError("WebhookNotificationService requires NOTIFY_WEBHOOK_URL.")
        self._url = settings.webhook_url
        self._portal_url = settings.portal_url
        self._session = session or requests.Session()
        self._timeout_seconds = settings.timeout_seconds
        self._max_retries = settings.max_retries
        self._backoff_initial_seconds = settings.backoff_initial_seconds
        self._backoff_multiplier = settings.backoff_multiplier
        self._sleep = sleep

    def notify_new_identity(self, identity: CreatedIdentity, credential: str) -> bool:
        payload = {
            "template": f"{identity.import_type}_welcome",
            "to": identity.email,
            "name": identity.full_name,
            "identifier": identity.identifier,
            "role": identity.role,
            "temporary_password": credential,
            "login_url": self._portal_url,
        }
        try:
            self._post(payload)
        except NotificationDeliveryError as exc:
            logger.warning(
                "Welcome notification failed identifier=%s email=%s error=%s",
                identity.identifier,
                identity.email,
                exc,
            )
            return False
        return True

    def _post(self, payload: dict[str, str]) -> requests.Response:
        """
        POST with exponential backoff on timeouts, connection errors and
        retryable status codes.
        """

        last_error: Exception | None = None
        for attempt in range(self._max_retries + 1):
            try:
                response = self._session.post(self._url, json=payload, timeout=self._timeout_seconds)
                if response.status_code in RETRYABLE_STATUS_CODES:
                    raise requests.HTTPError(
                        f"Retryable HTTP status code: {response.status_code}",
                        response=response,
                    )
                response.raise_for_status()
                return response
            except requests.HTTPError as exc:
                last_error = exc
                status_code = exc.response.status_code if exc.response is not None else None
                if status_code not in RETRYABLE_STATUS_CODES:
                    raise NotificationDeliveryError(f"non-retryable status {status_code}") from exc
            except (requests.Timeout, requests.ConnectionError) as exc:
                last_error = exc

            if attempt >= self._max_retries:
                break

            backoff_seconds = self._backoff_initial_seconds * (self._backoff_multiplier**attempt)
            logger.warning(
                "Notification retry attempt=%s/%s wait_seconds=%.2f",
                attempt + 1,
                self._max_retries,
                backoff_seconds,
            )
            self._sleep(backoff_seconds)

        raise NotificationDeliveryError("delivery failed after retries") from last_error


@dataclass(frozen=True)
class NotificationSummary:
    sent: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class ResendResult:
    identity_id: uuid.UUID
    identifier: str
    email: str
    delivered: bool


class NotificationDispatcher:
    """
    Sends one notification per created identity and records delivery.
    """

    def __init__(
        self,
        *,
        service: NotificationService,
        session_factory: Callable[[], Session] | None = None,
    ) -> None:
        self._service = service
        if session_factory is None:
            from db.session import SessionLocal

            self._session_factory = SessionLocal
        else:
            self._session_factory = session_factory

    def dispatch(self, created: Sequence[CreatedIdentity]) -> NotificationSummary:
        summary = NotificationSummary()
        for identity in created:
            if not self._deliver(identity):
                summary.failed.append(identity.identifier)
                continue

            summary.sent.append(identity.identifier)
            self._mark_email_sent(identity)

        logger.info(
            "Notification dispatch finished sent=%s failed=%s",
            len(summary.sent),
            len(summary.failed),
        )
        if summary.failed:
            logger.warning("Notifications not delivered for identifiers=%s", ", ".join(summary.failed))
        return summary

    def resend_welcome(self, *, db: Session, identity_id: uuid.UUID) -> ResendResult:
        """
        Issue a fresh one-time credential for an existing identity and send
        the welcome notification again.

        The new hash is committed before delivery, so the previous
        credential stops working even when delivery fails. ``email_sent``
        only flips to true on a confirmed delivery.

        Raises:
            NotFoundError:          unknown or deactivated identity.
            ImportPersistenceError: the new credential could not be stored.
        """

        identity = IdentityRepository(db).get(identity_id)
        if identity is None or not identity.is_active:
            raise NotFoundError(f"Identity {identity_id} not found.")

        import_type = ImportType.STUDENT if identity.role in STUDENT_ROLES else ImportType.STAFF
        credential = generate_credential(import_type)
        try:
            identity.password_hash = hash_credential(credential)
            identity.is_first_login = True
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            raise ImportPersistenceError(f"Could not store a new credential for identity {identity_id}.") from exc

        created = CreatedIdentity(
            identity_id=identity.id,
            identifier=identity.identifier,
            email=identity.email,
            first_name=identity.first_name,
            last_name=identity.last_name,
            role=identity.role,
            import_type=import_type,
            credential=credential,
        )
        delivered = self._deliver(created)
        if delivered:
            try:
                identity.email_sent = True
                db.commit()
            except SQLAlchemyError as exc:
                db.rollback()
                logger.warning("Could not record email_sent identifier=%s: %s", identity.identifier, exc)

        logger.info(
            "Welcome notification resent identifier=%s email=%s delivered=%s",
            created.identifier,
            created.email,
            delivered,
        )
        return ResendResult(
            identity_id=created.identity_id,
            identifier=created.identifier,
            email=created.email,
            delivered=delivered,
        )

    def _deliver(self, identity: CreatedIdentity) -> bool:
        try:
            return bool(self._service.notify_new_identity(identity, identity.credential))
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "Notification service raised identifier=%s email=%s: %s",
                identity.identifier,
                identity.email,
                exc,
            )
            return False

    def _mark_email_sent(self, identity: CreatedIdentity) -> None:
        db = self._session_factory()
        try:
            IdentityRepository(db).mark_email_sent(identity.identity_id)
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            logger.warning(
                "Could not record email_sent identifier=%s: %s",
                identity.identifier,
                exc,
            )
        finally:
            db.close()


@lru_cache(maxsize=1)
def get_notification_service() -> NotificationService:
    """
    Build and cache the notifier selected by environment settings.
    """

    settings = get_notification_settings()
    if settings.webhook_url:
        return WebhookNotificationService(settings=settings)
    return LoggingNotificationService()


@lru_cache(maxsize=1)
def get_notification_dispatcher() -> NotificationDispatcher:
    return NotificationDispatcher(service=get_notification_service())
