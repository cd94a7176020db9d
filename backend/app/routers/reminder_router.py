# routers/reminder_router.py
import logging

from fastapi import APIRouter, Depends

from app.core.deps import get_reminder_scheduler
from app.models.payment_model import ManualReminderRequest
from app.services.reminder_service import ReminderScheduler

router = APIRouter(prefix="/reminders", tags=["Reminders"])
logger = logging.getLogger("paynow.reminders")


@router.post("/check")
async def check_unpaid_links(scheduler: ReminderScheduler = Depends(get_reminder_scheduler)):
    logger.info("Received request to check unpaid links")
    report = await scheduler.check_unpaid_links()
    return {"success": True, **report}


@router.post("/send")
async def send_manual_reminder(
    body: ManualReminderRequest,
    scheduler: ReminderScheduler = Depends(get_reminder_scheduler),
):
    sent = await scheduler.send_manual_reminder(body.link_id, body.phone_number, body.reminder_type)
    return {"success": True, **sent}
