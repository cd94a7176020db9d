# routers/webhooks.py
"""
Gateway-facing endpoints.

These always answer 200 with the gateway's own acknowledgement body, whatever
happens inside, so providers never retry into duplicate side effects. The one
exception is a webhook that fails authentication: that is a 400.
"""
import json
import logging

from fastapi import APIRouter, Depends, Request

from app.core.deps import get_gateways, get_reconciler
from app.core.errors import InvalidSignature, PaymentError
from app.models.transaction_model import PaymentProcessor
from app.services.gateways.registry import GatewayRegistry, get_gateway
from app.services.reconciler import TransactionReconciler

router = APIRouter(tags=["Webhooks"])
logger = logging.getLogger("paynow")
security_logger = logging.getLogger("paynow.security")


# ========================================
# M-PESA STK CALLBACK
# ========================================
@router.post("/callback/{transaction_id}")
async def mpesa_callback(
    transaction_id: str,
    request: Request,
    gateways: GatewayRegistry = Depends(get_gateways),
    reconciler: TransactionReconciler = Depends(get_reconciler),
):
    adapter = gateways[PaymentProcessor.MPESA]
    body = await request.body()
    logger.info(f"📥 M-Pesa callback for {transaction_id}")

    try:
        result = adapter.parse_callback(body, request.headers)
        report = await reconciler.reconcile(transaction_id, result, require_handle=True)
        logger.info(f"📥 M-Pesa callback {transaction_id} → {report.action} ({result.outcome.value})")
    except Exception as e:
        logger.error(f"❌ M-Pesa callback {transaction_id} failed internally: {e}", exc_info=True)

    return adapter.acknowledgement()


# ========================================
# M-PESA VALIDATION
# ========================================
@router.post("/validation/{transaction_id}")
async def mpesa_validation(
    transaction_id: str,
    request: Request,
    gateways: GatewayRegistry = Depends(get_gateways),
    reconciler: TransactionReconciler = Depends(get_reconciler),
):
    adapter = gateways[PaymentProcessor.MPESA]
    try:
        payload = json.loads(await request.body() or b"{}")
        await reconciler.record_validation(transaction_id, payload if isinstance(payload, dict) else {"raw": payload})
    except Exception as e:
        logger.error(f"❌ Validation request {transaction_id} failed internally: {e}")

    return adapter.acknowledgement()


# ========================================
# SIGNED WEBHOOKS (card / aggregator / wallet)
# ========================================
@router.post("/webhooks/{gateway}/{merchant_id}")
async def gateway_webhook(
    gateway: str,
    merchant_id: str,
    request: Request,
    gateways: GatewayRegistry = Depends(get_gateways),
    reconciler: TransactionReconciler = Depends(get_reconciler),
):
    adapter = get_gateway(gateways, gateway)
    body = await request.body()

    try:
        verified = await adapter.verify_signature(body, request.headers, merchant_id)
    except PaymentError as e:
        security_logger.warning(f"🔒 {adapter.label} webhook for {merchant_id} could not be verified: {e.message}")
        verified = False

    if not verified:
        client = request.client.host if request.client else "unknown"
        security_logger.warning(f"🚨 Rejected {adapter.label} webhook for merchant {merchant_id} from {client}")
        raise InvalidSignature("Invalid webhook signature", gateway=adapter.processor.value)

    try:
        result = adapter.parse_callback(body, request.headers)
        report = await reconciler.reconcile(result.transaction_id, result, merchant_id=merchant_id)
        logger.info(f"📥 {adapter.label} webhook {result.result_code} → {report.action} ({report.transaction_id})")
    except Exception as e:
        logger.error(f"❌ {adapter.label} webhook failed internally: {e}", exc_info=True)

    return adapter.acknowledgement()
