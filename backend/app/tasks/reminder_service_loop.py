# app/tasks/reminder_service_loop.py

import asyncio
import logging

from app.core.config import settings
from app.core.deps import get_reminder_scheduler

logger = logging.getLogger("paynow.reminders")


async def reminder_loop(interval: float = None):
    """Sweep unpaid payment links forever. Overlap protection lives in the scheduler."""
    interval = interval or settings.REMINDER_CHECK_INTERVAL_SECONDS
    scheduler = get_reminder_scheduler()
    logger.info(f"🚀 Reminder loop started | every {interval}s")

    while True:
        try:
            report = await scheduler.check_unpaid_links()
            if not report["skipped"]:
                logger.info(
                    f"🔁 Reminder sweep | sent={len(report['processed'])} failed={len(report['failed'])}"
                )
        except Exception as e:
            logger.exception(f"❌ Reminder loop error: {e}")

        await asyncio.sleep(interval)
