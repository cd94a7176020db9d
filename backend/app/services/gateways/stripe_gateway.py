# services/gateways/stripe_gateway.py
"""
Stripe card payments via PaymentIntents.

The transaction id travels in the PaymentIntent metadata so webhooks can be
routed back without a lookup. Stripe has no status polling here; the final
state always comes from a signed webhook.
"""
import asyncio
import logging
from typing import Any, Dict, Mapping

import stripe

from app.core.errors import (
    GatewayError,
    GatewayTransientError,
    InvalidCredentials,
)
from app.models.transaction_model import (
    GatewayHandle,
    NormalizedResult,
    Outcome,
    PaymentProcessor,
    PaymentRequest,
)
from app.services.gateways.base import GatewayAdapter, from_minor_units, header, to_minor_units

logger = logging.getLogger("paynow.gateways")

EVENT_OUTCOMES = {
    "payment_intent.succeeded": Outcome.SUCCESS,
    "payment_intent.payment_failed": Outcome.FAILED,
    "payment_intent.canceled": Outcome.CANCELED,
    "payment_intent.processing": Outcome.PENDING,
    "payment_intent.requires_action": Outcome.PENDING,
    "payment_intent.created": Outcome.PENDING,
}


class StripeGateway(GatewayAdapter):
    processor = PaymentProcessor.STRIPE
    label = "Stripe"
    default_currency = "USD"

    async def call(self, fn, **kwargs):
        """Run a blocking stripe SDK call off the loop and map its errors."""
        try:
            return await asyncio.wait_for(asyncio.to_thread(fn, **kwargs), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.error(f"[Stripe] {fn.__qualname__} timed out after {self.timeout}s")
            raise GatewayTransientError("Stripe timed out", gateway=self.processor.value)
        except (stripe.AuthenticationError, stripe.PermissionError) as e:
            raise InvalidCredentials(f"Stripe rejected the API key: {e.user_message or e}", gateway=self.processor.value)
        except (stripe.APIConnectionError, stripe.RateLimitError) as e:
            logger.error(f"[Stripe] Connection problem: {e}")
            raise GatewayTransientError(f"Stripe unavailable: {e.user_message or e}", gateway=self.processor.value)
        except stripe.APIError as e:
            logger.error(f"[Stripe] Server error: {e}")
            raise GatewayTransientError(f"Stripe unavailable: {e.user_message or e}", gateway=self.processor.value)
        except stripe.StripeError as e:
            logger.error(f"[Stripe] Request rejected: {e}")
            raise GatewayError(f"Stripe rejected the request: {e.user_message or e}", gateway=self.processor.value)

    async def initiate(self, request: PaymentRequest) -> GatewayHandle:
        self.validate_request(request)
        creds = await self.credentials(request.merchant_id)

        metadata = {
            **{k: str(v) for k, v in request.metadata.items()},
            "transaction_id": request.transaction_id,
            "merchant_id": request.merchant_id,
        }
        params: Dict[str, Any] = {
            "api_key": creds.secrets["secret_key"],
            "amount": to_minor_units(request.amount),
            "currency": self.currency_for(request).lower(),
            "description": request.description or f"Payment {request.transaction_id}",
            "metadata": metadata,
            "automatic_payment_methods": {"enabled": True},
        }
        if request.payer_email:
            params["receipt_email"] = request.payer_email

        logger.info(f"💳 [Stripe] Creating PaymentIntent for {request.transaction_id}")
        intent = await self.call(stripe.PaymentIntent.create, **params)

        return GatewayHandle(
            processor=self.processor,
            handle=intent["id"],
            details={"client_secret": intent["client_secret"]},
        )

    def _parse(self, payload: Dict[str, Any], headers: Mapping[str, str]) -> NormalizedResult:
        event_type = payload.get("type")
        intent = payload["data"]["object"]

        outcome = EVENT_OUTCOMES.get(event_type)
        if outcome is None:
            # Not a PaymentIntent lifecycle event; nothing to reconcile.
            return NormalizedResult(
                outcome=Outcome.FAILED,
                result_code=event_type,
                reason=f"Unhandled Stripe event {event_type}",
                raw_payload=payload,
            )

        metadata = intent.get("metadata") or {}
        reason = None
        if outcome is Outcome.FAILED:
            reason = (intent.get("last_payment_error") or {}).get("message") or "Card payment failed"
        elif outcome is Outcome.CANCELED:
            reason = intent.get("cancellation_reason") or "Payment canceled"

        return NormalizedResult(
            outcome=outcome,
            gateway_reference=intent.get("latest_charge") or intent.get("id"),
            gateway_handle=intent.get("id"),
            transaction_id=metadata.get("transaction_id"),
            result_code=event_type,
            reason=reason,
            raw_payload=payload,
            payer_email=intent.get("receipt_email"),
            amount=from_minor_units(intent.get("amount_received") or intent.get("amount")),
        )

    async def verify_signature(self, raw_body: bytes, headers: Mapping[str, str], merchant_id: str) -> bool:
        signature = header(headers, "stripe-signature")
        if not signature:
            return False
        creds = await self.credentials(merchant_id)
        try:
            stripe.Webhook.construct_event(raw_body, signature, creds.secrets["webhook_secret"])
        except (stripe.SignatureVerificationError, ValueError) as e:
            logger.warning(f"[Stripe] Webhook signature rejected for merchant {merchant_id}: {e}")
            return False
        return True

    def acknowledgement(self) -> Dict[str, Any]:
        return {"received": True}

    async def test_credentials(self, secrets: Dict[str, str], environment: str = "sandbox") -> None:
        self.require_secrets(secrets, "secret_key")
        await self.call(stripe.Balance.retrieve, api_key=secrets["secret_key"])
