# routers/payment_router.py
import logging

from fastapi import APIRouter, Depends

from app.core.deps import get_payment_service
from app.core.errors import PaymentError
from app.models.payment_model import (
    CredentialTestRequest,
    InitiatePaymentRequest,
    InitiatePaymentResponse,
    PaypalCaptureRequest,
    QueryRequest,
    QueryResponse,
    ReconcileResponse,
)
from app.services.payment_service import PaymentService

router = APIRouter(tags=["Payments"])
logger = logging.getLogger("paynow")


# ========================================
# INITIATE
# ========================================
@router.post("/payments/initiate", response_model=InitiatePaymentResponse, response_model_exclude_none=True)
async def initiate_payment(
    body: InitiatePaymentRequest,
    payments: PaymentService = Depends(get_payment_service),
):
    logger.info(f"💰 Initiate {body.gateway.value} payment {body.transaction_id} for merchant {body.merchant_id}")
    handle = await payments.initiate(body)
    return InitiatePaymentResponse(
        status="accepted",
        gateway_handle=handle.handle,
        details=handle.details,
    )


# ========================================
# QUERY (advisory, never mutates state)
# ========================================
@router.post("/query", response_model=QueryResponse, response_model_exclude_none=True)
async def query_payment(
    body: QueryRequest,
    payments: PaymentService = Depends(get_payment_service),
):
    result = await payments.query(body.gateway, body.gateway_handle, body.merchant_id)
    return QueryResponse(
        outcome=result.outcome,
        is_processing=result.is_processing,
        is_canceled=result.is_canceled,
        is_successful=result.is_successful,
        result_code=result.result_code,
        result_description=result.result_description,
    )


# ========================================
# PAYPAL CAPTURE
# ========================================
@router.post("/payments/paypal/capture", response_model=ReconcileResponse, response_model_exclude_none=True)
async def capture_paypal_order(
    body: PaypalCaptureRequest,
    payments: PaymentService = Depends(get_payment_service),
):
    report = await payments.capture_paypal(body.order_id, body.merchant_id)
    return ReconcileResponse(
        transaction_id=report.transaction_id,
        outcome=report.outcome,
        action=report.action,
        status=report.status,
    )


# ========================================
# "TEST MY API KEY"
# ========================================
@router.post("/credentials/test")
async def test_gateway_credentials(
    body: CredentialTestRequest,
    payments: PaymentService = Depends(get_payment_service),
):
    try:
        await payments.test_credentials(body.gateway, body.secrets, body.environment)
    except PaymentError as e:
        logger.warning(f"Credential test for {body.gateway.value} failed: {e.message}")
        return {"success": False, "error": e.message, "code": e.code}
    return {"success": True, "message": f"{body.gateway.value} credentials are valid"}
