"""
Unit tests for the PayPal Orders adapter.
"""
import json

import pytest

from app.core.errors import GatewayError
from app.models.transaction_model import Outcome, PaymentProcessor, PaymentRequest
from app.services.gateways.paypal import PaypalGateway

from conftest import MERCHANT_ID

TOKEN_PATH = "/v1/oauth2/token"
VERIFY_PATH = "/v1/notifications/verify-webhook-signature"

SIGNATURE_HEADERS = {
    "PAYPAL-AUTH-ALGO": "SHA256withRSA",
    "PAYPAL-CERT-URL": "https://api.paypal.com/v1/notifications/certs/CERT-360caa42",
    "PAYPAL-TRANSMISSION-ID": "69cd13f0-d67a-11e5-baa3-778b53f4ae55",
    "PAYPAL-TRANSMISSION-SIG": "lmI95Jx3Y9nhR5SJWlHVIWpg4AgFk7n9bCHSRxbrd8A9zrhdu2rMyFrmz+Zjh3s3boXB07VXCXUZy/UFzUlnGJn0wDugt7FlSvdKeIJenLRemUxYCPVoEZzg9VFNqOa48gMkvF+XTpxBeUx/kWy6B5cp7GkT2+pOowfRK7OaynuxUoKW3JcMWw272VKjLTtTAShncla7tGF+55rxyt2KNZIIqxNMJ48RDZheGU5w1npu9dZHnPgTXB9iomeVRoD8O/jhRpnKsGrDschyNdkeh81BJJMH4Ctc6lnCCquoP/GzCzz33MMsNdid7vL/NIWaCsekQpW26FpWPi/tfj8nLA==",
    "PAYPAL-TRANSMISSION-TIME": "2016-02-18T20:01:35Z",
}


def capture_event(event_type="PAYMENT.CAPTURE.COMPLETED", custom_id="tx_1"):
    resource = {
        "id": "CAP-42",
        "status": "COMPLETED",
        "amount": {"currency_code": "USD", "value": "25.00"},
        "create_time": "2024-01-15T14:30:22Z",
        "supplementary_data": {"related_ids": {"order_id": "ORDER-1"}},
    }
    if custom_id:
        resource["custom_id"] = custom_id
    return {
        "id": "WH-EVT-1",
        "event_type": event_type,
        "summary": f"Payment {event_type.rsplit('.', 1)[-1].lower()}",
        "resource": resource,
    }


def captured_order(status="COMPLETED"):
    return {
        "id": "ORDER-1",
        "status": "COMPLETED",
        "payer": {"name": {"given_name": "Jane", "surname": "Wanjiku"}, "email_address": "payer@example.com"},
        "purchase_units": [{
            "reference_id": "tx_1",
            "payments": {"captures": [{
                "id": "CAP-42",
                "status": status,
                "custom_id": "tx_1",
                "amount": {"currency_code": "USD", "value": "25.00"},
                "create_time": "2024-01-15T14:30:22Z",
            }]},
        }],
    }


@pytest.fixture
def gateway(gateways) -> PaypalGateway:
    return gateways[PaymentProcessor.PAYPAL]


class TestOrders:
    @pytest.mark.unit
    async def test_create_order(self, gateway, routes) -> None:
        routes.add("POST", TOKEN_PATH, json={"access_token": "A21AA", "token_type": "Bearer"})
        routes.add("POST", "/v2/checkout/orders", status=201, json={
            "id": "ORDER-1",
            "status": "CREATED",
            "links": [
                {"href": "https://api-m.sandbox.paypal.com/v2/checkout/orders/ORDER-1", "rel": "self"},
                {"href": "https://www.sandbox.paypal.com/checkoutnow?token=ORDER-1", "rel": "approve"},
            ],
        })
        request = PaymentRequest(transaction_id="tx_1", merchant_id=MERCHANT_ID, amount=25, currency="usd")

        handle = await gateway.initiate(request)

        assert handle.handle == "ORDER-1"
        assert handle.details["approval_url"].endswith("token=ORDER-1")
        sent = routes.last("/v2/checkout/orders")
        unit = json.loads(sent.content)["purchase_units"][0]
        assert unit["custom_id"] == "tx_1"
        assert unit["amount"] == {"currency_code": "USD", "value": "25.00"}
        assert sent.headers["PayPal-Request-Id"] == "order-tx_1"
        context = json.loads(sent.content)["application_context"]
        assert context["return_url"].endswith("/payment/success")
        assert context["cancel_url"].endswith("/payment/cancel")

    @pytest.mark.unit
    async def test_capture(self, gateway, routes) -> None:
        routes.add("POST", TOKEN_PATH, json={"access_token": "A21AA"})
        routes.add("POST", "/v2/checkout/orders/ORDER-1/capture", status=201, json=captured_order())

        result = await gateway.capture("ORDER-1", MERCHANT_ID)

        assert result.outcome is Outcome.SUCCESS
        assert result.transaction_id == "tx_1"
        assert result.gateway_reference == "CAP-42"
        assert result.gateway_handle == "ORDER-1"
        assert result.payer_name == "Jane Wanjiku"
        assert result.amount == 25.0

    @pytest.mark.unit
    async def test_declined_capture(self, gateway, routes) -> None:
        routes.add("POST", TOKEN_PATH, json={"access_token": "A21AA"})
        routes.add("POST", "/v2/checkout/orders/ORDER-1/capture", status=201, json=captured_order("DECLINED"))
        result = await gateway.capture("ORDER-1", MERCHANT_ID)
        assert result.outcome is Outcome.FAILED
        assert result.gateway_reference is None

    @pytest.mark.unit
    async def test_unprocessable_capture(self, gateway, routes) -> None:
        routes.add("POST", TOKEN_PATH, json={"access_token": "A21AA"})
        routes.add("POST", "/v2/checkout/orders/ORDER-1/capture", status=422, json={
            "name": "UNPROCESSABLE_ENTITY", "message": "The requested action could not be performed",
        })
        with pytest.raises(GatewayError):
            await gateway.capture("ORDER-1", MERCHANT_ID)


class TestParseCallback:
    @pytest.mark.unit
    def test_capture_completed(self, gateway) -> None:
        result = gateway.parse_callback(capture_event())
        assert result.outcome is Outcome.SUCCESS
        assert result.transaction_id == "tx_1"
        assert result.gateway_handle == "ORDER-1"
        assert result.gateway_reference == "CAP-42"

    @pytest.mark.unit
    @pytest.mark.parametrize("event_type", [
        "PAYMENT.CAPTURE.DENIED",
        "PAYMENT.CAPTURE.DECLINED",
        "PAYMENT.CAPTURE.REFUNDED",
    ])
    def test_capture_failures(self, gateway, event_type) -> None:
        result = gateway.parse_callback(capture_event(event_type))
        assert result.outcome is Outcome.FAILED
        assert result.gateway_reference is None

    @pytest.mark.unit
    def test_pending_capture(self, gateway) -> None:
        assert gateway.parse_callback(capture_event("PAYMENT.CAPTURE.PENDING")).outcome is Outcome.PENDING

    @pytest.mark.unit
    def test_without_custom_id_there_is_no_transaction(self, gateway) -> None:
        result = gateway.parse_callback(capture_event(custom_id=None))
        assert result.transaction_id is None


class TestSignature:
    @pytest.mark.unit
    async def test_verified_by_paypal(self, gateway, routes) -> None:
        routes.add("POST", TOKEN_PATH, json={"access_token": "A21AA"})
        routes.add("POST", VERIFY_PATH, json={"verification_status": "SUCCESS"})
        body = json.dumps(capture_event()).encode()

        assert await gateway.verify_signature(body, SIGNATURE_HEADERS, MERCHANT_ID)
        sent = json.loads(routes.last(VERIFY_PATH).content)
        assert sent["webhook_id"] == "WH-123"
        assert sent["transmission_id"] == SIGNATURE_HEADERS["PAYPAL-TRANSMISSION-ID"]
        assert sent["webhook_event"]["id"] == "WH-EVT-1"

    @pytest.mark.unit
    async def test_rejected_by_paypal(self, gateway, routes) -> None:
        routes.add("POST", TOKEN_PATH, json={"access_token": "A21AA"})
        routes.add("POST", VERIFY_PATH, json={"verification_status": "FAILURE"})
        body = json.dumps(capture_event()).encode()
        assert not await gateway.verify_signature(body, SIGNATURE_HEADERS, MERCHANT_ID)

    @pytest.mark.unit
    async def test_paypal_unreachable_fails_closed(self, gateway, routes) -> None:
        routes.add("POST", TOKEN_PATH, json={"access_token": "A21AA"})
        routes.add("POST", VERIFY_PATH, status=503, json={"message": "Service Unavailable"})
        body = json.dumps(capture_event()).encode()
        assert not await gateway.verify_signature(body, SIGNATURE_HEADERS, MERCHANT_ID)

    @pytest.mark.unit
    async def test_missing_headers(self, gateway, routes) -> None:
        assert not await gateway.verify_signature(b"{}", {}, MERCHANT_ID)
        assert routes.requests == []
