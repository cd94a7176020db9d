"""
Unit tests for the SMS and email senders.
"""
import json
from unittest.mock import MagicMock, patch

import httpx
import pytest

from app.services import channels
from app.utils.sms_templates import format_amount, payment_received_sms


@pytest.fixture
def sms_api(monkeypatch):
    """Route the SMS client through a MockTransport and record what it sends."""
    sent = []
    state = {"status": 200}

    def handler(request: httpx.Request) -> httpx.Response:
        sent.append(json.loads(request.content))
        return httpx.Response(state["status"], json={"status": "ok", "messageId": "m-1"})

    real_client = httpx.AsyncClient

    def client(*args, **kwargs):
        return real_client(*args, transport=httpx.MockTransport(handler), **kwargs)

    monkeypatch.setattr(channels.httpx, "AsyncClient", client)
    return sent, state


class TestSms:
    @pytest.mark.unit
    async def test_send(self, sms_api) -> None:
        sent, _ = sms_api
        response = await channels.send_via_sms("0712345678", "Hello")

        assert response["messageId"] == "m-1"
        assert sent[0]["recipient"] == "254712345678"
        assert sent[0]["message"] == "Hello"

    @pytest.mark.unit
    async def test_provider_error_raises(self, sms_api) -> None:
        _, state = sms_api
        state["status"] = 500
        with pytest.raises(RuntimeError, match="SMS HTTP failure: 500"):
            await channels.send_via_sms("0712345678", "Hello")


class TestEmail:
    @pytest.mark.unit
    async def test_send(self) -> None:
        send = MagicMock(return_value={"id": "re_123"})
        with patch.object(channels.resend.Emails, "send", send):
            result = await channels.send_via_email("payer@example.com", "Receipt", "<p>Hi</p>")

        assert result == {"id": "re_123"}
        params = send.call_args.args[0]
        assert params["to"] == "payer@example.com"
        assert params["subject"] == "Receipt"

    @pytest.mark.unit
    async def test_failure_raises(self) -> None:
        with patch.object(channels.resend.Emails, "send", MagicMock(side_effect=Exception("domain not verified"))):
            with pytest.raises(RuntimeError, match="domain not verified"):
                await channels.send_via_email("payer@example.com", "Receipt", "<p>Hi</p>")


class TestTemplates:
    @pytest.mark.unit
    @pytest.mark.parametrize("amount,currency,expected", [
        (2500, "KES", "KES 2,500"),
        (99.5, "USD", "USD 99.50"),
        (None, None, "KES 0"),
    ])
    def test_format_amount(self, amount, currency, expected) -> None:
        assert format_amount(amount, currency) == expected

    @pytest.mark.unit
    def test_payment_received_without_invoice(self) -> None:
        message = payment_received_sms({
            "id": "tx_123456789", "amount": 1500, "currency": "KES", "receipt_number": "ABC123",
        })
        assert "Receipt: ABC123" in message
        assert "Transaction ID: tx_12345." in message
        assert "invoice" not in message.lower()
