# services/gateways/paypal.py
"""
PayPal Orders v2.

Flow: create an order (payer approves on PayPal), then capture it either from
the merchant frontend via /payments/paypal/capture or from the
PAYMENT.CAPTURE.* webhooks. Webhooks are verified with PayPal's
verify-webhook-signature API and rejected whenever that cannot be done.
"""
import json
import logging
from typing import Any, Dict, Mapping, Optional

from app.core.config import settings
from app.core.credentials import GatewayCredentials
from app.core.errors import PaymentError
from app.models.transaction_model import (
    GatewayHandle,
    NormalizedResult,
    Outcome,
    PaymentProcessor,
    PaymentRequest,
)
from app.services.gateways.base import GatewayAdapter, header

logger = logging.getLogger("paynow.gateways")

SANDBOX_URL = "https://api-m.sandbox.paypal.com"
PRODUCTION_URL = "https://api-m.paypal.com"

EVENT_OUTCOMES = {
    "PAYMENT.CAPTURE.COMPLETED": Outcome.SUCCESS,
    "PAYMENT.CAPTURE.DENIED": Outcome.FAILED,
    "PAYMENT.CAPTURE.DECLINED": Outcome.FAILED,
    "PAYMENT.CAPTURE.REFUNDED": Outcome.FAILED,
    "PAYMENT.CAPTURE.REVERSED": Outcome.FAILED,
    "PAYMENT.CAPTURE.PENDING": Outcome.PENDING,
    "CHECKOUT.ORDER.APPROVED": Outcome.PENDING,
}

CAPTURE_STATUSES = {
    "COMPLETED": Outcome.SUCCESS,
    "PENDING": Outcome.PENDING,
    "DECLINED": Outcome.FAILED,
    "FAILED": Outcome.FAILED,
}

SIGNATURE_HEADERS = {
    "auth_algo": "paypal-auth-algo",
    "cert_url": "paypal-cert-url",
    "transmission_id": "paypal-transmission-id",
    "transmission_sig": "paypal-transmission-sig",
    "transmission_time": "paypal-transmission-time",
}


def money(amount: float) -> str:
    return f"{amount:.2f}"


class PaypalGateway(GatewayAdapter):
    processor = PaymentProcessor.PAYPAL
    label = "PayPal"
    default_currency = "USD"

    def base_url(self, creds: GatewayCredentials) -> str:
        return PRODUCTION_URL if creds.is_production else SANDBOX_URL

    async def access_token(self, creds: GatewayCredentials) -> str:
        response = await self.request(
            "POST",
            f"{self.base_url(creds)}/v1/oauth2/token",
            data={"grant_type": "client_credentials"},
            auth=(creds.secrets["client_id"], creds.secrets["client_secret"]),
            headers={"Accept": "application/json"},
        )
        data = self.json_body(response)
        self.raise_for_status(response, data)
        return data["access_token"]

    async def initiate(self, request: PaymentRequest) -> GatewayHandle:
        self.validate_request(request)
        creds = await self.credentials(request.merchant_id)
        token = await self.access_token(creds)

        order = {
            "intent": "CAPTURE",
            "purchase_units": [
                {
                    "reference_id": request.transaction_id,
                    "custom_id": request.transaction_id,
                    "description": (request.description or "Payment")[:127],
                    "amount": {
                        "currency_code": self.currency_for(request),
                        "value": money(request.amount),
                    },
                }
            ],
        }
        frontend = settings.FRONTEND_URL.rstrip("/")
        order["application_context"] = {
            "return_url": request.metadata.get("return_url") or f"{frontend}/payment/success",
            "cancel_url": request.metadata.get("cancel_url") or f"{frontend}/payment/cancel",
        }

        logger.info(f"🅿️ [PayPal] Creating order for {request.transaction_id}")
        response = await self.request(
            "POST",
            f"{self.base_url(creds)}/v2/checkout/orders",
            json=order,
            headers={
                "Authorization": f"Bearer {token}",
                "PayPal-Request-Id": f"order-{request.transaction_id}",
            },
        )
        data = self.json_body(response)
        self.raise_for_status(response, data)

        approve = next(
            (link.get("href") for link in data.get("links") or [] if link.get("rel") in ("approve", "payer-action")),
            None,
        )
        return GatewayHandle(
            processor=self.processor,
            handle=data["id"],
            details={"approval_url": approve, "order_status": data.get("status")},
        )

    async def capture(self, order_id: str, merchant_id: str) -> NormalizedResult:
        creds = await self.credentials(merchant_id)
        token = await self.access_token(creds)

        logger.info(f"🅿️ [PayPal] Capturing order {order_id}")
        response = await self.request(
            "POST",
            f"{self.base_url(creds)}/v2/checkout/orders/{order_id}/capture",
            json={},
            headers={
                "Authorization": f"Bearer {token}",
                "PayPal-Request-Id": f"capture-{order_id}",
            },
        )
        data = self.json_body(response)
        self.raise_for_status(response, data)
        return self.normalize_order(data)

    def normalize_order(self, order: Dict[str, Any]) -> NormalizedResult:
        unit = (order.get("purchase_units") or [{}])[0]
        captures = (unit.get("payments") or {}).get("captures") or []
        capture = captures[0] if captures else {}

        status = capture.get("status") or order.get("status")
        outcome = CAPTURE_STATUSES.get(str(status).upper(), Outcome.FAILED)
        payer = order.get("payer") or {}
        name = payer.get("name") or {}
        amount = (capture.get("amount") or {}).get("value")

        return NormalizedResult(
            outcome=outcome,
            gateway_reference=capture.get("id") if outcome is Outcome.SUCCESS else None,
            gateway_handle=order.get("id"),
            transaction_id=capture.get("custom_id") or unit.get("custom_id") or unit.get("reference_id"),
            result_code=status,
            reason=None if outcome is Outcome.SUCCESS else f"PayPal capture status {status}",
            raw_payload=order,
            payer_email=payer.get("email_address"),
            payer_name=" ".join(p for p in (name.get("given_name"), name.get("surname")) if p) or None,
            transaction_date=capture.get("create_time"),
            amount=float(amount) if amount is not None else None,
        )

    def _parse(self, payload: Dict[str, Any], headers: Mapping[str, str]) -> NormalizedResult:
        event_type = payload.get("event_type")
        resource = payload["resource"]

        outcome = EVENT_OUTCOMES.get(event_type)
        if outcome is None:
            return NormalizedResult(
                outcome=Outcome.FAILED,
                result_code=event_type,
                reason=f"Unhandled PayPal event {event_type}",
                raw_payload=payload,
            )

        if event_type == "CHECKOUT.ORDER.APPROVED":
            result = self.normalize_order(resource)
            return result.model_copy(update={
                "outcome": Outcome.PENDING,
                "gateway_reference": None,
                "result_code": event_type,
                "reason": "Order approved, awaiting capture",
                "raw_payload": payload,
            })

        related = (resource.get("supplementary_data") or {}).get("related_ids") or {}
        amount = (resource.get("amount") or {}).get("value")
        return NormalizedResult(
            outcome=outcome,
            gateway_reference=resource.get("id") if outcome is Outcome.SUCCESS else None,
            gateway_handle=related.get("order_id"),
            transaction_id=resource.get("custom_id"),
            result_code=event_type,
            reason=payload.get("summary") if outcome is not Outcome.SUCCESS else None,
            raw_payload=payload,
            transaction_date=resource.get("create_time"),
            amount=float(amount) if amount is not None else None,
        )

    async def verify_signature(self, raw_body: bytes, headers: Mapping[str, str], merchant_id: str) -> bool:
        fields: Dict[str, Optional[str]] = {k: header(headers, h) for k, h in SIGNATURE_HEADERS.items()}
        missing = [h for k, h in SIGNATURE_HEADERS.items() if not fields[k]]
        if missing:
            logger.warning(f"[PayPal] Webhook missing headers: {', '.join(missing)}")
            return False

        creds = await self.credentials(merchant_id)
        try:
            event = json.loads(raw_body)
            token = await self.access_token(creds)
            response = await self.request(
                "POST",
                f"{self.base_url(creds)}/v1/notifications/verify-webhook-signature",
                json={**fields, "webhook_id": creds.secrets["webhook_id"], "webhook_event": event},
                headers={"Authorization": f"Bearer {token}"},
            )
            data = self.json_body(response)
            self.raise_for_status(response, data)
        except (ValueError, PaymentError) as e:
            logger.warning(f"[PayPal] Could not verify webhook for merchant {merchant_id}: {e}")
            return False

        return data.get("verification_status") == "SUCCESS"

    async def test_credentials(self, secrets: Dict[str, str], environment: str = "sandbox") -> None:
        self.require_secrets(secrets, "client_id", "client_secret")
        creds = GatewayCredentials(gateway=self.processor, secrets=secrets, environment=environment)
        await self.access_token(creds)
