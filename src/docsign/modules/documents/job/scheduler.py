import logging

from apscheduler.schedulers.background import BackgroundScheduler

from docsign.config import get_settings
from docsign.database import SessionLocal
from docsign.modules.documents.services.cleanup import (
    delete_rejected_documents,
    finalize_signed_documents,
)

logger = logging.getLogger(__name__)


def _finalize_job():
    with SessionLocal() as session:
        completed = finalize_signed_documents(session)
    if completed:
        logger.info("Background finalize completed %d documents", completed)


def _cleanup_job():
    settings = get_settings()
    with SessionLocal() as session:
        delete_rejected_documents(session, settings.rejected_retention_days)


def start_background_jobs() -> BackgroundScheduler:
    settings = get_settings()
    scheduler = BackgroundScheduler()

    scheduler.add_job(
        _finalize_job, 'interval',
        seconds=settings.finalize_interval_seconds,
        id='finalize_signed_documents', max_instances=1, coalesce=True,
    )
    scheduler.add_job(
        _cleanup_job, 'interval',
        hours=settings.cleanup_interval_hours,
        id='delete_rejected_documents', max_instances=1, coalesce=True,
    )
    scheduler.start()
    logger.info("Background jobs started")
    return scheduler
