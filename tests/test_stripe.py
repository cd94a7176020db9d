"""
Unit tests for the Stripe PaymentIntent adapter.
"""
import hashlib
import hmac
import json
import time
from unittest.mock import MagicMock, patch

import pytest
import stripe

from app.core.errors import GatewayError, GatewayTransientError, InvalidCredentials, QueryNotSupported
from app.models.transaction_model import Outcome, PaymentProcessor, PaymentRequest
from app.services.gateways.stripe_gateway import StripeGateway

from conftest import MERCHANT_ID

WEBHOOK_SECRET = "whsec_test_123"


def sign(payload: bytes, secret: str = WEBHOOK_SECRET, timestamp: int = None) -> str:
    timestamp = timestamp or int(time.time())
    signed = f"{timestamp}.{payload.decode()}".encode()
    digest = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


def intent_event(event_type="payment_intent.succeeded", **intent_fields):
    intent = {
        "id": "pi_123",
        "object": "payment_intent",
        "amount": 250000,
        "amount_received": 250000,
        "currency": "usd",
        "latest_charge": "ch_456",
        "receipt_email": "payer@example.com",
        "metadata": {"transaction_id": "tx_1", "merchant_id": MERCHANT_ID},
    }
    intent.update(intent_fields)
    return {"id": "evt_1", "object": "event", "type": event_type, "data": {"object": intent}}


@pytest.fixture
def gateway(gateways) -> StripeGateway:
    return gateways[PaymentProcessor.STRIPE]


class TestInitiate:
    @pytest.mark.unit
    async def test_creates_payment_intent(self, gateway) -> None:
        request = PaymentRequest(
            transaction_id="tx_1",
            merchant_id=MERCHANT_ID,
            amount=2500.50,
            currency="usd",
            payer_email="payer@example.com",
        )
        create = MagicMock(return_value={"id": "pi_123", "client_secret": "pi_123_secret_abc"})

        with patch.object(stripe.PaymentIntent, "create", create):
            handle = await gateway.initiate(request)

        assert handle.handle == "pi_123"
        assert handle.details == {"client_secret": "pi_123_secret_abc"}

        kwargs = create.call_args.kwargs
        assert kwargs["api_key"] == "sk_test_123"
        assert kwargs["amount"] == 250050
        assert kwargs["currency"] == "usd"
        assert kwargs["metadata"]["transaction_id"] == "tx_1"
        assert kwargs["receipt_email"] == "payer@example.com"

    @pytest.mark.unit
    @pytest.mark.parametrize("error,expected", [
        (stripe.AuthenticationError("Invalid API Key provided"), InvalidCredentials),
        (stripe.APIConnectionError("Network down"), GatewayTransientError),
        (stripe.RateLimitError("Too many requests"), GatewayTransientError),
        (stripe.CardError("Your card was declined", None, "card_declined"), GatewayError),
    ])
    async def test_sdk_errors_are_mapped(self, gateway, error, expected) -> None:
        request = PaymentRequest(transaction_id="tx_1", merchant_id=MERCHANT_ID, amount=10)
        with patch.object(stripe.PaymentIntent, "create", MagicMock(side_effect=error)):
            with pytest.raises(expected):
                await gateway.initiate(request)

    @pytest.mark.unit
    async def test_query_not_supported(self, gateway) -> None:
        with pytest.raises(QueryNotSupported):
            await gateway.query("pi_123", MERCHANT_ID)


class TestParseCallback:
    @pytest.mark.unit
    def test_succeeded(self, gateway) -> None:
        result = gateway.parse_callback(intent_event())

        assert result.outcome is Outcome.SUCCESS
        assert result.transaction_id == "tx_1"
        assert result.gateway_handle == "pi_123"
        assert result.gateway_reference == "ch_456"
        assert result.amount == 2500.0
        assert result.payer_email == "payer@example.com"

    @pytest.mark.unit
    def test_payment_failed_carries_reason(self, gateway) -> None:
        result = gateway.parse_callback(intent_event(
            "payment_intent.payment_failed",
            last_payment_error={"message": "Your card has insufficient funds."},
        ))
        assert result.outcome is Outcome.FAILED
        assert result.reason == "Your card has insufficient funds."

    @pytest.mark.unit
    def test_processing_is_pending(self, gateway) -> None:
        assert gateway.parse_callback(intent_event("payment_intent.processing")).outcome is Outcome.PENDING

    @pytest.mark.unit
    def test_unrelated_event_has_no_transaction(self, gateway) -> None:
        result = gateway.parse_callback(intent_event("customer.created"))
        assert result.outcome is Outcome.FAILED
        assert result.transaction_id is None


class TestSignature:
    @pytest.mark.unit
    async def test_valid_signature(self, gateway) -> None:
        body = json.dumps(intent_event()).encode()
        assert await gateway.verify_signature(body, {"Stripe-Signature": sign(body)}, MERCHANT_ID)

    @pytest.mark.unit
    async def test_tampered_body(self, gateway) -> None:
        body = json.dumps(intent_event()).encode()
        header = sign(body)
        tampered = body.replace(b"250000", b"1")
        assert not await gateway.verify_signature(tampered, {"Stripe-Signature": header}, MERCHANT_ID)

    @pytest.mark.unit
    async def test_wrong_secret(self, gateway) -> None:
        body = json.dumps(intent_event()).encode()
        header = sign(body, secret="whsec_other")
        assert not await gateway.verify_signature(body, {"Stripe-Signature": header}, MERCHANT_ID)

    @pytest.mark.unit
    async def test_missing_header(self, gateway) -> None:
        assert not await gateway.verify_signature(b"{}", {}, MERCHANT_ID)
