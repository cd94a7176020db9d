# core/credentials.py
"""
Per-merchant gateway credentials.

Merchants keep one sub-map per gateway in merchant_settings/{merchant_id}.
There is deliberately no shared fallback key: a merchant who has not
configured a gateway gets NotConfigured and the caller decides what to do.
"""
import logging
from dataclasses import dataclass, field
from typing import Dict, Optional, Union

from app.core.store import DocumentStore
from app.models.transaction_model import PaymentProcessor

logger = logging.getLogger("paynow")

MERCHANT_SETTINGS = "merchant_settings"

REQUIRED_SECRETS = {
    PaymentProcessor.MPESA: ("consumer_key", "consumer_secret", "shortcode", "passkey"),
    PaymentProcessor.STRIPE: ("secret_key", "webhook_secret"),
    PaymentProcessor.PAYSTACK: ("secret_key",),
    PaymentProcessor.PAYPAL: ("client_id", "client_secret", "webhook_id"),
}


@dataclass(frozen=True)
class GatewayCredentials:
    gateway: PaymentProcessor
    secrets: Dict[str, str]
    environment: str = "sandbox"
    enabled: bool = True

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        return self.secrets.get(key) or default

    @property
    def is_production(self) -> bool:
        return self.environment == "production"


@dataclass(frozen=True)
class NotConfigured:
    merchant_id: str
    gateway: PaymentProcessor
    reason: str = field(default="not configured")


class CredentialResolver:
    def __init__(self, store: DocumentStore):
        self.store = store

    async def resolve(
        self, merchant_id: str, gateway: PaymentProcessor
    ) -> Union[GatewayCredentials, NotConfigured]:
        gateway = PaymentProcessor(gateway)
        if not merchant_id:
            return NotConfigured("", gateway, "merchant id is required")

        doc = await self.store.get(MERCHANT_SETTINGS, merchant_id)
        if not doc:
            logger.warning(f"No settings found for merchant {merchant_id}")
            return NotConfigured(merchant_id, gateway, "merchant has no settings")

        section = doc.get(gateway.value) or {}
        if not section.get("enabled"):
            return NotConfigured(merchant_id, gateway, f"{gateway.value} is not enabled")

        missing = [k for k in REQUIRED_SECRETS[gateway] if not section.get(k)]
        if missing:
            logger.warning(f"{gateway.value} for merchant {merchant_id} is missing {', '.join(missing)}")
            return NotConfigured(merchant_id, gateway, f"missing {', '.join(missing)}")

        secrets = {
            k: str(v) for k, v in section.items()
            if k not in ("enabled", "environment") and v is not None
        }
        return GatewayCredentials(
            gateway=gateway,
            secrets=secrets,
            environment=section.get("environment") or "sandbox",
        )
