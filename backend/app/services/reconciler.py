# services/reconciler.py
"""
Transaction state machine.

    pending ──► success | failed | canceled   (terminal)

Every callback, webhook and wallet capture ends up here as a NormalizedResult.
The status write is a single conditional read-modify-write on the transaction
document, so two deliveries racing for the same id cannot both see `pending`:
the loser observes the terminal status and becomes a re-delivery. Side
effects only run for the delivery that actually moved the transaction to
success.
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from app.core.errors import ReconciliationConflict
from app.core.store import DocumentStore
from app.models.transaction_model import NormalizedResult, Outcome, TransactionStatus, utcnow

logger = logging.getLogger("paynow.reconciler")

TRANSACTIONS = "transactions"

APPLIED = "applied"
REDELIVERY = "redelivery"
STALE = "stale"
NOT_FOUND = "not_found"
IGNORED = "ignored"


@dataclass
class ReconcileReport:
    transaction_id: Optional[str]
    outcome: Outcome
    action: str
    status: Optional[str] = None
    transaction: Optional[Dict[str, Any]] = None


def split_name(full_name: Optional[str]) -> Dict[str, Optional[str]]:
    parts = (full_name or "").split()
    if not parts:
        return {"first_name": None, "middle_name": None, "last_name": None}
    if len(parts) == 1:
        return {"first_name": parts[0], "middle_name": None, "last_name": None}
    return {
        "first_name": parts[0],
        "middle_name": " ".join(parts[1:-1]) or None,
        "last_name": parts[-1],
    }


def callback_snapshot(result: NormalizedResult, current: Dict[str, Any]) -> Dict[str, Any]:
    """Structured view of the delivery, with payer fields falling back to what we already had."""
    phone = result.payer_phone or current.get("payer_phone")
    name = result.payer_name or current.get("payer_name")
    return {
        "outcome": result.outcome.value,
        "result_code": result.result_code,
        "result_description": result.reason,
        "receipt_number": result.gateway_reference,
        "phone_number": phone,
        "email": result.payer_email or current.get("payer_email"),
        "transaction_date": result.transaction_date,
        "amount": result.amount if result.amount is not None else current.get("amount"),
        **split_name(name),
        "processed_at": utcnow(),
    }


class TransactionReconciler:
    def __init__(self, store: DocumentStore, dispatcher=None):
        self.store = store
        self.dispatcher = dispatcher

    def _transition(
        self, result: NormalizedResult, merchant_id: Optional[str], decision: dict, require_handle: bool
    ):
        """
        Build the pure mutation passed to store.mutate; `decision` records which branch ran.

        With `require_handle` (unsigned callbacks) a delivery that does not name
        the stored handle is treated as a mismatch.
        """

        def fn(current: Optional[dict]) -> Optional[dict]:
            if current is None:
                decision["action"] = NOT_FOUND
                return None

            if merchant_id and current.get("owner_uid") != merchant_id:
                decision["action"] = IGNORED
                decision["reason"] = f"owned by {current.get('owner_uid')}, webhook for {merchant_id}"
                return None

            stored_handle = current.get("gateway_handle")
            if stored_handle and (result.gateway_handle or require_handle) and stored_handle != result.gateway_handle:
                decision["action"] = IGNORED
                decision["reason"] = f"handle {result.gateway_handle} does not match {stored_handle}"
                return None

            now = utcnow()
            status = TransactionStatus(current.get("status") or TransactionStatus.PENDING.value)
            if status.is_terminal:
                if not result.outcome.is_terminal:
                    decision["action"] = STALE
                    return None
                decision["action"] = REDELIVERY
                return {
                    "last_callback_payload": result.raw_payload,
                    "redelivery_count": int(current.get("redelivery_count") or 0) + 1,
                    "updated_at": now,
                }

            decision["action"] = APPLIED
            fields = {
                "status": result.outcome.value,
                "result_description": result.reason,
                "callback_data": callback_snapshot(result, current),
                "last_callback_payload": result.raw_payload,
                "updated_at": now,
            }
            for key in ("payer_phone", "payer_email", "payer_name"):
                value = getattr(result, key)
                if value:
                    fields[key] = value
            if result.gateway_handle and not stored_handle:
                fields["gateway_handle"] = result.gateway_handle

            if result.outcome is Outcome.SUCCESS:
                fields["receipt_number"] = result.gateway_reference
                fields["completed_at"] = now
            elif result.outcome.is_terminal:
                fields["failure_reason"] = result.reason or result.outcome.value
                fields["completed_at"] = now
            return fields

        return fn

    async def reconcile(
        self,
        transaction_id: Optional[str],
        result: NormalizedResult,
        merchant_id: Optional[str] = None,
        require_handle: bool = False,
    ) -> ReconcileReport:
        if not transaction_id:
            logger.warning(f"⚠️ Delivery without a transaction id ({result.reason or result.result_code}), ignoring")
            return ReconcileReport(None, result.outcome, IGNORED)

        decision: Dict[str, Any] = {}
        try:
            doc = await self.store.mutate(
                TRANSACTIONS, transaction_id, self._transition(result, merchant_id, decision, require_handle)
            )
        except ReconciliationConflict:
            logger.info(f"🔁 Lost the status race for {transaction_id}, treating as re-delivery")
            return ReconcileReport(transaction_id, result.outcome, REDELIVERY)

        action = decision.get("action", NOT_FOUND)
        if action == NOT_FOUND:
            logger.warning(f"Transaction {transaction_id} not found, acknowledging without action")
            return ReconcileReport(transaction_id, result.outcome, action)
        if action == IGNORED:
            logger.warning(f"Ignoring delivery for {transaction_id}: {decision.get('reason')}")
            return ReconcileReport(transaction_id, result.outcome, action)

        status = doc.get("status") if doc else None
        if action == STALE:
            logger.info(f"Stale {result.outcome.value} delivery for {transaction_id}, already final")
            return ReconcileReport(transaction_id, result.outcome, action, status)
        if action == REDELIVERY:
            logger.info(f"🔁 Re-delivery for {transaction_id} (status {status}), side effects skipped")
            return ReconcileReport(transaction_id, result.outcome, action, status, doc)

        logger.info(f"✅ Transaction {transaction_id} → {status}")
        report = ReconcileReport(transaction_id, result.outcome, action, status, doc)

        if result.outcome is Outcome.SUCCESS and self.dispatcher is not None:
            try:
                await self.dispatcher.dispatch(doc)
            except Exception as e:
                logger.error(f"❌ Side effects for {transaction_id} failed: {e}", exc_info=True)
        return report

    async def record_validation(self, transaction_id: str, payload: Dict[str, Any]) -> bool:
        """Store an M-Pesa validation request on the transaction. Never changes status."""

        def fn(current: Optional[dict]) -> Optional[dict]:
            if current is None:
                return None
            return {
                "validation_request": payload,
                "validation_status": "received",
                "updated_at": utcnow(),
            }

        doc = await self.store.mutate(TRANSACTIONS, transaction_id, fn)
        if doc is None:
            logger.warning(f"Validation request for unknown transaction {transaction_id}")
            return False
        return True
