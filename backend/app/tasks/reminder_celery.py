import asyncio
import logging
from celery import shared_task

from app.core.deps import get_reminder_scheduler

logger = logging.getLogger("paynow.reminders")


@shared_task(bind=True, max_retries=0)
def check_unpaid_links_task(self):
    """
    Wrapper to run the async reminder sweep in a sync Celery worker.
    The sweep lease keeps this from overlapping with the web process loop.
    """
    try:
        report = asyncio.run(get_reminder_scheduler().check_unpaid_links())
    except Exception as exc:
        logger.error(f"Reminder sweep failed: {exc}")
        raise exc
    return {
        "processed": len(report["processed"]),
        "failed": len(report["failed"]),
        "skipped": report["skipped"],
    }
