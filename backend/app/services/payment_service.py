# services/payment_service.py
import logging
from typing import Dict, Optional

from app.core.errors import NotFound, PaymentError, ValidationError
from app.core.store import DocumentStore
from app.models.payment_model import InitiatePaymentRequest
from app.models.transaction_model import (
    GatewayHandle,
    PaymentProcessor,
    PaymentRequest,
    QueryResult,
    TransactionStatus,
    utcnow,
)
from app.services.gateways.registry import GatewayRegistry, get_gateway
from app.services.reconciler import TRANSACTIONS, ReconcileReport, TransactionReconciler
from app.utils.phone import try_normalize_phone

logger = logging.getLogger("paynow")


class PaymentService:
    """Merchant-facing flows: initiate, poll, wallet capture and credential checks."""

    def __init__(self, store: DocumentStore, gateways: GatewayRegistry, reconciler: TransactionReconciler):
        self.store = store
        self.gateways = gateways
        self.reconciler = reconciler

    async def initiate(self, body: InitiatePaymentRequest) -> GatewayHandle:
        adapter = get_gateway(self.gateways, body.gateway)
        contact = body.payer_contact
        request = PaymentRequest(
            transaction_id=body.transaction_id,
            merchant_id=body.merchant_id,
            amount=body.amount,
            currency=(body.currency or adapter.default_currency).upper(),
            description=body.description,
            payer_phone=contact.phone,
            payer_email=contact.email,
            payer_name=contact.name,
            metadata=body.metadata,
        )
        adapter.validate_request(request)

        now = utcnow()
        record = {
            "owner_uid": body.merchant_id,
            "amount": request.amount,
            "currency": request.currency,
            "description": request.description,
            "payer_phone": try_normalize_phone(contact.phone),
            "payer_email": contact.email,
            "payer_name": contact.name,
            "payment_processor": adapter.processor.value,
            "status": TransactionStatus.PENDING.value,
            "metadata": body.metadata,
            "updated_at": now,
        }

        def claim(current: Optional[dict]) -> dict:
            if current is None:
                return {**record, "created_at": now, "redelivery_count": 0, "has_invoice": False, "notification_history": []}
            status = TransactionStatus(current.get("status") or TransactionStatus.PENDING.value)
            if status.is_terminal:
                raise ValidationError(
                    f"Transaction {body.transaction_id} is already {status.value}", field="transactionId"
                )
            if current.get("owner_uid") and current["owner_uid"] != body.merchant_id:
                raise ValidationError(
                    f"Transaction {body.transaction_id} belongs to another merchant", field="transactionId"
                )
            return dict(record)

        # Persist first so a fast callback always finds its record
        await self.store.mutate(TRANSACTIONS, body.transaction_id, claim)

        try:
            handle = await adapter.initiate(request)
        except PaymentError as e:
            logger.error(f"❌ Initiation of {body.transaction_id} via {adapter.label} failed: {e.message}")
            await self.store.set(TRANSACTIONS, body.transaction_id, {
                "initiation_error": {"code": e.code, "message": e.message, "retryable": e.retryable, "at": utcnow()},
                "updated_at": utcnow(),
            }, merge=True)
            raise

        await self.store.set(TRANSACTIONS, body.transaction_id, {
            "gateway_handle": handle.handle,
            "gateway_details": handle.details,
            "initiation_error": None,
            "updated_at": utcnow(),
        }, merge=True)
        logger.info(f"✅ {adapter.label} accepted {body.transaction_id} | handle={handle.handle}")
        return handle

    async def query(self, gateway, gateway_handle: str, merchant_id: str) -> QueryResult:
        adapter = get_gateway(self.gateways, gateway)
        result = await adapter.query(gateway_handle, merchant_id)
        logger.info(f"🔎 {adapter.label} query {gateway_handle} → {result.outcome.value}")
        return result

    async def capture_paypal(self, order_id: str, merchant_id: str) -> ReconcileReport:
        adapter = self.gateways[PaymentProcessor.PAYPAL]
        result = await adapter.capture(order_id, merchant_id)

        transaction_id = result.transaction_id or await self._find_by_handle(order_id)
        if not transaction_id:
            raise NotFound(f"No transaction found for PayPal order {order_id}")
        return await self.reconciler.reconcile(transaction_id, result, merchant_id=merchant_id)

    async def _find_by_handle(self, handle: str) -> Optional[str]:
        matches = await self.store.query(TRANSACTIONS, [("gateway_handle", "==", handle)])
        return matches[0]["id"] if matches else None

    async def test_credentials(self, gateway, secrets: Dict[str, str], environment: str = "sandbox") -> None:
        adapter = get_gateway(self.gateways, gateway)
        await adapter.test_credentials(secrets, environment)
