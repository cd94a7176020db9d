# services/reminder_service.py
"""
Payment link reminders.

Tier ladder (first match wins):
    no reminder yet, >= 24h since creation      → first
    last was first,  >= 48h since last reminder → second
    last was second, >= 72h since last reminder → final
Nothing fires after final. Manual reminders sit outside the ladder.

A sweep never overlaps with itself: an in-process asyncio.Lock covers the
loop and the API trigger, and a lease document in `locks/reminder_sweep`
covers other workers (Celery beat, a second web instance).
"""
import asyncio
import logging
import os
import socket
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from app.core.config import settings
from app.core.errors import NotFound, ReconciliationConflict, SideEffectFailure, ValidationError
from app.core.store import DocumentStore
from app.models.paylink_model import TIER_ORDER, ReminderRecord, ReminderTier
from app.models.transaction_model import utcnow
from app.utils.phone import normalize_phone
from app.utils.sms_templates import reminder_sms

logger = logging.getLogger("paynow.reminders")

PAYMENT_LINKS = "payment_links"
REMINDERS = "reminders"
LOCKS = "locks"
SWEEP_LOCK = "reminder_sweep"

FIRST_AFTER_HOURS = 24
SECOND_AFTER_HOURS = 48
FINAL_AFTER_HOURS = 72


def as_utc(value) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if not isinstance(value, datetime):
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def hours_between(earlier: Optional[datetime], now: datetime) -> Optional[float]:
    if earlier is None:
        return None
    return (now - earlier).total_seconds() / 3600


def is_expired(link: dict, now: datetime) -> bool:
    expiry = as_utc(link.get("expiry_date"))
    return link.get("status") == "expired" or (expiry is not None and expiry <= now)


def select_tier(link: dict, now: datetime) -> Optional[ReminderTier]:
    """Which automatic tier is due for this link right now, if any."""
    last_type = link.get("last_reminder_type")
    since_creation = hours_between(as_utc(link.get("created_at")), now)
    since_last = hours_between(as_utc(link.get("last_reminder_sent")), now)

    if last_type is None:
        if since_creation is not None and since_creation >= FIRST_AFTER_HOURS:
            return ReminderTier.FIRST
        return None
    if last_type == ReminderTier.FIRST.value and since_last is not None and since_last >= SECOND_AFTER_HOURS:
        return ReminderTier.SECOND
    if last_type == ReminderTier.SECOND.value and since_last is not None and since_last >= FINAL_AFTER_HOURS:
        return ReminderTier.FINAL
    return None


def skip_reason(link: dict, now: datetime) -> Optional[str]:
    if link.get("paid"):
        return "paid"
    if is_expired(link, now):
        return "expired"
    if link.get("status") != "active":
        return "inactive"
    if not link.get("recipient_phone"):
        return "no recipient phone"
    return None


class ReminderScheduler:
    def __init__(self, store: DocumentStore, notifier, lock_timeout: Optional[timedelta] = None):
        self.store = store
        self.notifier = notifier
        self.lock_timeout = lock_timeout or timedelta(minutes=settings.REMINDER_LOCK_TIMEOUT_MINUTES)
        self.owner = f"{socket.gethostname()}:{os.getpid()}:{id(self)}"
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Sweep lease
    # ------------------------------------------------------------------
    async def _acquire_lease(self, now: datetime) -> bool:
        def fn(current: Optional[dict]) -> Optional[dict]:
            data = current or {}
            locked_at = as_utc(data.get("locked_at"))
            if data.get("locked") and locked_at and now - locked_at < self.lock_timeout:
                return None
            return {"locked": True, "locked_at": now, "owner": self.owner}

        try:
            return await self.store.mutate(LOCKS, SWEEP_LOCK, fn) is not None
        except ReconciliationConflict:
            return False

    async def _release_lease(self) -> None:
        def fn(current: Optional[dict]) -> Optional[dict]:
            if not current or current.get("owner") != self.owner:
                return None
            return {"locked": False, "locked_at": None, "owner": None}

        try:
            if await self.store.mutate(LOCKS, SWEEP_LOCK, fn) is None:
                logger.warning("Reminder sweep lease was taken over by another worker, leaving it in place")
        except Exception as e:
            logger.error(f"Could not release reminder sweep lease: {e}")

    # ------------------------------------------------------------------
    # Sweep
    # ------------------------------------------------------------------
    async def check_unpaid_links(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        skipped = {"processed": [], "failed": [], "skipped": True}
        if self._lock.locked():
            logger.info("⏭️ Reminder sweep already running in this process, skipping")
            return skipped

        async with self._lock:
            now = now or utcnow()
            if not await self._acquire_lease(now):
                logger.info("⏭️ Reminder sweep lease held elsewhere, skipping")
                return skipped
            try:
                return await self._sweep(now)
            finally:
                await self._release_lease()

    async def _sweep(self, now: datetime) -> Dict[str, Any]:
        logger.info("🔍 Checking for unpaid links that need reminders")
        links = await self.store.query(PAYMENT_LINKS, [("status", "==", "active")])

        processed: List[dict] = []
        failed: List[dict] = []
        for link in links:
            tier = None
            try:
                if skip_reason(link, now):
                    continue
                tier = select_tier(link, now)
                if tier is None:
                    continue

                phone = link["recipient_phone"]
                await self._send(link, tier, phone, now)
                processed.append({"link_id": link["id"], "reminder_type": tier.value, "recipient_phone": phone})
                logger.info(f"📨 Sent {tier.value} reminder for link {link['id']} to {phone}")
            except Exception as e:
                logger.error(f"❌ Reminder for link {link['id']} failed: {e}")
                failed.append({"link_id": link["id"], "reminder_type": tier.value if tier else None, "error": str(e)})

        logger.info(f"✅ Reminder sweep done | sent={len(processed)} failed={len(failed)}")
        return {"processed": processed, "failed": failed, "skipped": False}

    async def _send(self, link: dict, tier: ReminderTier, phone: str, now: datetime) -> None:
        await self.notifier.send_sms(phone, reminder_sms(link, tier.value))
        await self._record(link, tier, phone, now)

    async def _record(self, link: dict, tier: ReminderTier, phone: str, now: datetime) -> None:
        record = ReminderRecord(type=tier, sent_at=now, recipient_phone=phone).model_dump()
        expected_last = link.get("last_reminder_type")

        def fn(current: Optional[dict]) -> Optional[dict]:
            if current is None:
                return None
            fields = {"reminders": list(current.get("reminders") or []) + [record]}
            if tier is not ReminderTier.MANUAL:
                if current.get("last_reminder_type") != expected_last:
                    return None
                fields["last_reminder_sent"] = now
                fields["last_reminder_type"] = tier.value
            return fields

        # The link moves up the ladder first; the reminders log is only an audit trail
        if await self.store.mutate(PAYMENT_LINKS, link["id"], fn) is None:
            logger.warning(f"Link {link['id']} changed while sending {tier.value} reminder, not recorded on link")

        try:
            await self.store.add(REMINDERS, {
                "link_id": link["id"],
                "owner_uid": link.get("owner_uid"),
                "recipient_phone": phone,
                "reminder_type": tier.value,
                "sent_at": now,
                "link_description": link.get("description"),
                "link_slug": link.get("slug"),
                "amount": link.get("amount"),
                "currency": link.get("currency") or settings.DEFAULT_CURRENCY,
            })
        except Exception as e:
            logger.error(f"Could not write {tier.value} reminder log for link {link['id']}: {e}")

    # ------------------------------------------------------------------
    # Manual
    # ------------------------------------------------------------------
    async def send_manual_reminder(
        self,
        link_id: str,
        phone_number: Optional[str] = None,
        reminder_type=ReminderTier.MANUAL,
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        now = now or utcnow()
        link = await self.store.get(PAYMENT_LINKS, link_id)
        if not link:
            raise NotFound(f"Payment link {link_id} not found")

        if is_expired(link, now) or link.get("status") != "active":
            raise ValidationError(f"Payment link {link_id} is expired or inactive")
        if link.get("paid"):
            raise ValidationError(f"Payment link {link_id} has already been paid")

        try:
            tier = ReminderTier(reminder_type)
        except ValueError:
            raise ValidationError(f"Unknown reminder type '{reminder_type}'", field="reminderType")

        if tier is not ReminderTier.MANUAL:
            last = link.get("last_reminder_type")
            last_index = TIER_ORDER.index(ReminderTier(last)) if last in {t.value for t in TIER_ORDER} else -1
            if TIER_ORDER.index(tier) <= last_index:
                raise ValidationError(
                    f"Link {link_id} already received a {last} reminder; {tier.value} would go backwards",
                    field="reminderType",
                )

        raw_phone = phone_number or link.get("recipient_phone")
        if not raw_phone:
            raise ValidationError("No phone number available for this link", field="phoneNumber")
        phone = normalize_phone(raw_phone)

        try:
            await self.notifier.send_sms(phone, reminder_sms(link, tier.value))
        except Exception as e:
            logger.error(f"❌ Manual reminder for {link_id} failed: {e}")
            raise SideEffectFailure(f"Reminder SMS failed: {e}")

        await self._record(link, tier, phone, now)
        logger.info(f"📨 Manual {tier.value} reminder sent for link {link_id} to {phone}")
        return {"link_id": link_id, "reminder_type": tier.value, "recipient_phone": phone, "sent_at": now}
