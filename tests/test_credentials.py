"""
Unit tests for per-merchant credential resolution.
"""
import pytest

from app.core.credentials import MERCHANT_SETTINGS, GatewayCredentials, NotConfigured
from app.models.transaction_model import PaymentProcessor

from conftest import MERCHANT_ID


class TestCredentialResolver:
    @pytest.mark.unit
    async def test_resolves_configured_gateway(self, resolver) -> None:
        creds = await resolver.resolve(MERCHANT_ID, PaymentProcessor.MPESA)

        assert isinstance(creds, GatewayCredentials)
        assert creds.secrets["shortcode"] == "174379"
        assert "enabled" not in creds.secrets
        assert creds.environment == "sandbox"
        assert not creds.is_production

    @pytest.mark.unit
    async def test_accepts_gateway_name(self, resolver) -> None:
        creds = await resolver.resolve(MERCHANT_ID, "paystack")
        assert creds.gateway is PaymentProcessor.PAYSTACK

    @pytest.mark.unit
    async def test_unknown_merchant_is_not_configured(self, resolver) -> None:
        result = await resolver.resolve("nobody", PaymentProcessor.STRIPE)
        assert isinstance(result, NotConfigured)
        assert result.reason == "merchant has no settings"

    @pytest.mark.unit
    async def test_missing_merchant_id(self, resolver) -> None:
        result = await resolver.resolve("", PaymentProcessor.STRIPE)
        assert isinstance(result, NotConfigured)

    @pytest.mark.unit
    async def test_disabled_gateway_is_not_configured(self, store, resolver) -> None:
        store.collections[MERCHANT_SETTINGS][MERCHANT_ID]["stripe"]["enabled"] = False
        result = await resolver.resolve(MERCHANT_ID, PaymentProcessor.STRIPE)
        assert isinstance(result, NotConfigured)
        assert "not enabled" in result.reason

    @pytest.mark.unit
    async def test_missing_secret_is_reported(self, store, resolver) -> None:
        del store.collections[MERCHANT_SETTINGS][MERCHANT_ID]["mpesa"]["passkey"]
        result = await resolver.resolve(MERCHANT_ID, PaymentProcessor.MPESA)
        assert isinstance(result, NotConfigured)
        assert result.reason == "missing passkey"

    @pytest.mark.unit
    async def test_production_environment(self, store, resolver) -> None:
        store.collections[MERCHANT_SETTINGS][MERCHANT_ID]["paypal"]["environment"] = "production"
        creds = await resolver.resolve(MERCHANT_ID, PaymentProcessor.PAYPAL)
        assert creds.is_production
