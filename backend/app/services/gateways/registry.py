# services/gateways/registry.py
from typing import Dict, Optional

import httpx

from app.core.credentials import CredentialResolver
from app.core.errors import ValidationError
from app.models.transaction_model import PaymentProcessor
from app.services.gateways.base import GatewayAdapter
from app.services.gateways.mpesa import MpesaGateway
from app.services.gateways.paypal import PaypalGateway
from app.services.gateways.paystack import PaystackGateway
from app.services.gateways.stripe_gateway import StripeGateway

ADAPTERS = {
    PaymentProcessor.MPESA: MpesaGateway,
    PaymentProcessor.STRIPE: StripeGateway,
    PaymentProcessor.PAYSTACK: PaystackGateway,
    PaymentProcessor.PAYPAL: PaypalGateway,
}

GatewayRegistry = Dict[PaymentProcessor, GatewayAdapter]


def build_gateways(
    resolver: CredentialResolver,
    timeout: Optional[float] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> GatewayRegistry:
    return {
        processor: cls(resolver, timeout=timeout, transport=transport)
        for processor, cls in ADAPTERS.items()
    }


def get_gateway(gateways: GatewayRegistry, name) -> GatewayAdapter:
    if isinstance(name, PaymentProcessor):
        return gateways[name]
    try:
        processor = PaymentProcessor(str(name).lower())
    except ValueError:
        raise ValidationError(f"Unsupported payment gateway '{name}'", field="gateway")
    return gateways[processor]
