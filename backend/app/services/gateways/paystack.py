# services/gateways/paystack.py
import hashlib
import hmac
import logging
from typing import Any, Dict, Mapping

from app.core.errors import ValidationError
from app.models.transaction_model import (
    GatewayHandle,
    NormalizedResult,
    Outcome,
    PaymentProcessor,
    PaymentRequest,
    QueryResult,
)
from app.services.gateways.base import GatewayAdapter, from_minor_units, header, to_minor_units
from app.utils.phone import try_normalize_phone

logger = logging.getLogger("paynow.gateways")

PAYSTACK_URL = "https://api.paystack.co"

VERIFY_STATUSES = {
    "success": Outcome.SUCCESS,
    "failed": Outcome.FAILED,
    "reversed": Outcome.FAILED,
    "abandoned": Outcome.CANCELED,
    "ongoing": Outcome.PENDING,
    "pending": Outcome.PENDING,
    "processing": Outcome.PENDING,
    "queued": Outcome.PENDING,
}

EVENT_OUTCOMES = {
    "charge.success": Outcome.SUCCESS,
    "charge.failed": Outcome.FAILED,
}


class PaystackGateway(GatewayAdapter):
    """Paystack hosted checkout. The transaction id is used as the Paystack reference."""

    processor = PaymentProcessor.PAYSTACK
    label = "Paystack"
    default_currency = "KES"
    supports_query = True

    @staticmethod
    def auth_headers(secret_key: str) -> Dict[str, str]:
        return {"Authorization": f"Bearer {secret_key}", "Content-Type": "application/json"}

    def validate_request(self, request: PaymentRequest) -> None:
        super().validate_request(request)
        if not request.payer_email:
            raise ValidationError("Paystack requires the payer's email", gateway=self.processor.value, field="email")

    async def initiate(self, request: PaymentRequest) -> GatewayHandle:
        self.validate_request(request)

        creds = await self.credentials(request.merchant_id)
        body = {
            "email": request.payer_email,
            "amount": to_minor_units(request.amount),
            "currency": self.currency_for(request),
            "reference": request.transaction_id,
            "metadata": {
                **request.metadata,
                "transaction_id": request.transaction_id,
                "merchant_id": request.merchant_id,
                "payer_phone": request.payer_phone,
            },
        }
        callback_url = request.metadata.get("callback_url") or creds.get("callback_url")
        if callback_url:
            body["callback_url"] = callback_url

        logger.info(f"🏦 [Paystack] Initializing {request.transaction_id}")
        response = await self.request(
            "POST",
            f"{PAYSTACK_URL}/transaction/initialize",
            json=body,
            headers=self.auth_headers(creds.secrets["secret_key"]),
        )
        data = self.json_body(response)
        self.raise_for_status(response, data)

        result = data.get("data") or {}
        return GatewayHandle(
            processor=self.processor,
            handle=result.get("reference") or request.transaction_id,
            details={
                "authorization_url": result.get("authorization_url"),
                "access_code": result.get("access_code"),
            },
        )

    async def query(self, handle: str, merchant_id: str) -> QueryResult:
        if not handle:
            raise ValidationError("Paystack reference is required", field="gatewayHandle")

        creds = await self.credentials(merchant_id)
        response = await self.request(
            "GET",
            f"{PAYSTACK_URL}/transaction/verify/{handle}",
            headers=self.auth_headers(creds.secrets["secret_key"]),
        )
        data = self.json_body(response)

        if response.status_code == 404 or (
            response.status_code == 400 and "not found" in str(data.get("message", "")).lower()
        ):
            return QueryResult(
                outcome=Outcome.CANCELED,
                result_code="not_found",
                result_description=data.get("message") or "Transaction reference not found",
                raw_payload=data,
            )
        self.raise_for_status(response, data)

        result = data.get("data") or {}
        status = str(result.get("status") or "").lower()
        return QueryResult(
            outcome=VERIFY_STATUSES.get(status, Outcome.FAILED),
            result_code=status or None,
            result_description=result.get("gateway_response") or data.get("message"),
            raw_payload=data,
        )

    def _parse(self, payload: Dict[str, Any], headers: Mapping[str, str]) -> NormalizedResult:
        event = payload.get("event")
        data = payload["data"]

        outcome = EVENT_OUTCOMES.get(event)
        if outcome is None:
            return NormalizedResult(
                outcome=Outcome.FAILED,
                result_code=event,
                reason=f"Unhandled Paystack event {event}",
                raw_payload=payload,
            )

        # Paystack sends metadata as "" when none was set
        metadata = data.get("metadata") if isinstance(data.get("metadata"), dict) else {}
        customer = data.get("customer") or {}
        name = " ".join(p for p in (customer.get("first_name"), customer.get("last_name")) if p) or None

        return NormalizedResult(
            outcome=outcome,
            gateway_reference=data.get("reference"),
            gateway_handle=data.get("reference"),
            transaction_id=metadata.get("transaction_id") or data.get("reference"),
            result_code=event,
            reason=data.get("gateway_response"),
            raw_payload=payload,
            payer_email=customer.get("email"),
            payer_phone=try_normalize_phone(customer.get("phone") or metadata.get("payer_phone")),
            payer_name=name,
            transaction_date=data.get("paid_at"),
            amount=from_minor_units(data.get("amount")),
        )

    async def verify_signature(self, raw_body: bytes, headers: Mapping[str, str], merchant_id: str) -> bool:
        signature = header(headers, "x-paystack-signature")
        if not signature:
            return False
        creds = await self.credentials(merchant_id)
        secret = creds.get("webhook_secret") or creds.secrets["secret_key"]
        expected = hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha512).hexdigest()
        if not hmac.compare_digest(expected, signature):
            logger.warning(f"[Paystack] Invalid webhook signature for merchant {merchant_id}")
            return False
        return True

    async def test_credentials(self, secrets: Dict[str, str], environment: str = "sandbox") -> None:
        self.require_secrets(secrets, "secret_key")
        response = await self.request(
            "GET",
            f"{PAYSTACK_URL}/transaction",
            params={"perPage": 1},
            headers=self.auth_headers(secrets["secret_key"]),
        )
        self.raise_for_status(response)
