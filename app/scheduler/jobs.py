"""
app/scheduler/jobs.py

APScheduler-based background jobs for the import ledger.

Schedule
--------
  reconcile_imports: every ``IMPORT_RECONCILE_INTERVAL_MINUTES`` minutes

The reconciliation sweep marks ledger entries stuck in ``processing`` for
longer than ``IMPORT_STALE_AFTER_MINUTES`` as failed (a crashed batch is
never resumed) and reports rollbacks that need manual attention.

Lifecycle
----------
Call ``build_scheduler()`` once to get a configured ``BackgroundScheduler``.
Start it on app boot; shut it down gracefully on app shutdown.
The scheduler is wired into FastAPI via the ``lifespan`` context in main.py.
"""

from __future__ import annotations

import logging
from datetime import timedelta

from apscheduler.schedulers.background import BackgroundScheduler
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from app.config import get_reconciliation_settings
from app.domain.identity_import import ReconciliationReport
from app.services.provenance_ledger import ProvenanceLedger
from db.session import session_scope

logger = logging.getLogger(__name__)


def run_import_reconciliation(
    session_factory: sessionmaker[Session] | None = None,
    *,
    stale_after_minutes: int | None = None,
) -> ReconciliationReport:
    """
    Mark abandoned import batches failed and flag inconsistent rollbacks.
    Commits once after the sweep; rolls back on failure.
    """
    if stale_after_minutes is None:
        stale_after_minutes = get_reconciliation_settings().stale_after_minutes

    logger.info("Scheduler: reconcile_imports starting stale_after_minutes=%s", stale_after_minutes)
    try:
        with session_scope(session_factory) as db:
            report = ProvenanceLedger(db).reconcile(older_than=timedelta(minutes=stale_after_minutes))
    except SQLAlchemyError as exc:
        logger.warning("Scheduler: reconcile_imports failed: %s", exc)
        return ReconciliationReport()

    logger.info(
        "Scheduler: reconcile_imports complete marked_failed=%s rollback_inconsistent=%s",
        len(report.marked_failed),
        len(report.rollback_inconsistent),
    )
    return report


def build_scheduler() -> BackgroundScheduler:
    """
    Build and register the periodic jobs.

    Returns a configured but *not yet started* ``BackgroundScheduler``.
    The caller must call ``.start()`` and ``.shutdown(wait=True)`` at the
    appropriate lifecycle points. No job is registered when
    ``IMPORT_RECONCILE_ENABLED`` is false.
    """
    settings = get_reconciliation_settings()
    scheduler = BackgroundScheduler(timezone="UTC")

    if settings.enabled:
        scheduler.add_job(
            run_import_reconciliation,
            trigger="interval",
            minutes=settings.interval_minutes,
            kwargs={"stale_after_minutes": settings.stale_after_minutes},
            id="reconcile_imports",
            name="Import ledger reconciliation",
            replace_existing=True,
            coalesce=True,
            max_instances=1,
            misfire_grace_time=600,
        )

    return scheduler
