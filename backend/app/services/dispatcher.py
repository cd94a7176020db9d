# services/dispatcher.py
"""
Reactions to a transaction reaching success.

Order: customer upsert, then invoice (so the receipt can link to it), then
SMS and email concurrently. Each step has its own timeout and its own failure
domain; the dispatcher itself never raises.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, List, Optional

from app.core.config import settings
from app.core.errors import SideEffectFailure
from app.core.store import DocumentStore
from app.models.transaction_model import NotificationRecord
from app.services.invoice_service import payment_method_label
from app.utils.receipt_emails import generate_receipt_content
from app.utils.sms_templates import format_amount, payment_received_sms

logger = logging.getLogger("paynow.side_effects")


@dataclass
class DispatchReport:
    transaction_id: str
    customer_updated: bool = False
    invoice_url: Optional[str] = None
    notifications: List[NotificationRecord] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)


class SideEffectDispatcher:
    def __init__(
        self,
        store: DocumentStore,
        customers,
        invoices,
        notifier,
        timeout: Optional[float] = None,
    ):
        self.store = store
        self.customers = customers
        self.invoices = invoices
        self.notifier = notifier
        self.timeout = timeout or settings.SIDE_EFFECT_TIMEOUT_SECONDS

    async def _bounded(self, step: str, coro: Awaitable[Any]) -> Any:
        try:
            return await asyncio.wait_for(coro, timeout=self.timeout)
        except asyncio.TimeoutError:
            raise SideEffectFailure(f"{step} timed out after {self.timeout}s")
        except SideEffectFailure:
            raise
        except Exception as e:
            raise SideEffectFailure(f"{step} failed: {e}")

    async def dispatch(self, transaction: dict) -> DispatchReport:
        transaction = dict(transaction)
        transaction_id = transaction["id"]
        report = DispatchReport(transaction_id=transaction_id)
        logger.info(f"📦 Running side effects for {transaction_id}")

        try:
            await self._bounded("customer upsert", self.customers.upsert_from_transaction(transaction))
            report.customer_updated = True
        except SideEffectFailure as e:
            logger.error(f"❌ [{transaction_id}] {e}")
            report.errors.append(e.message)

        try:
            url = await self._bounded("invoice", self.invoices.generate(transaction))
            report.invoice_url = url
            transaction["invoice_url"] = url
        except SideEffectFailure as e:
            logger.error(f"❌ [{transaction_id}] {e}")
            report.errors.append(e.message)
            report.notifications.append(NotificationRecord(channel="invoice", success=False, error=e.message))

        sends = []
        if transaction.get("payer_phone"):
            sends.append(self._send_sms(transaction))
        if transaction.get("payer_email"):
            sends.append(self._send_email(transaction))
        if sends:
            report.notifications.extend(await asyncio.gather(*sends))

        for record in report.notifications:
            if not record.success and record.channel != "invoice":
                report.errors.append(f"{record.channel}: {record.error}")

        if report.notifications:
            try:
                await self.store.append(
                    "transactions",
                    transaction_id,
                    "notification_history",
                    [r.model_dump() for r in report.notifications],
                )
            except Exception as e:
                logger.error(f"❌ [{transaction_id}] Could not record notification history: {e}")

        logger.info(
            f"📦 Side effects for {transaction_id} done | "
            f"customer={report.customer_updated} invoice={bool(report.invoice_url)} "
            f"sent={[r.channel for r in report.notifications if r.success]}"
        )
        return report

    async def _send_sms(self, transaction: dict) -> NotificationRecord:
        phone = transaction["payer_phone"]
        try:
            response = await self._bounded(
                "sms", self.notifier.send_sms(phone, payment_received_sms(transaction))
            )
            return NotificationRecord(channel="sms", recipient=phone, success=True, provider_response=_jsonable(response))
        except SideEffectFailure as e:
            logger.error(f"❌ [{transaction['id']}] {e}")
            return NotificationRecord(channel="sms", recipient=phone, success=False, error=e.message)

    async def _send_email(self, transaction: dict) -> NotificationRecord:
        email = transaction["payer_email"]
        completed = transaction.get("completed_at")
        html = generate_receipt_content("payment_confirmation", {
            "customer_name": transaction.get("payer_name") or "Customer",
            "amount": format_amount(transaction.get("amount"), transaction.get("currency")),
            "description": transaction.get("description") or "your order",
            "receipt_number": transaction.get("receipt_number") or "N/A",
            "payment_method": payment_method_label(transaction.get("payment_processor")),
            "transaction_id": transaction["id"],
            "date": completed.strftime("%B %d, %Y") if hasattr(completed, "strftime") else "",
            "invoice_url": transaction.get("invoice_url"),
        })
        try:
            response = await self._bounded(
                "email",
                self.notifier.send_email(email, f"Payment Confirmation - {transaction['id'][:8]}", html),
            )
            return NotificationRecord(
                channel="email", recipient=email, success=True, provider_response=_jsonable(response)
            )
        except SideEffectFailure as e:
            logger.error(f"❌ [{transaction['id']}] {e}")
            return NotificationRecord(channel="email", recipient=email, success=False, error=e.message)


def _jsonable(value: Any) -> Any:
    if value is None or isinstance(value, (str, int, float, bool, list, dict)):
        return value
    return str(value)
