# services/gateways/base.py
"""
Shared shape of every payment gateway adapter.

An adapter knows how to talk to exactly one provider: start a payment, poll it
(where the provider allows), authenticate its webhooks and translate whatever
the provider sends back into a NormalizedResult. Nothing outside an adapter
branches on provider names.
"""
import json
import logging
from abc import ABC, abstractmethod
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Mapping, Optional, Union

import httpx

from app.core.config import settings
from app.core.credentials import CredentialResolver, GatewayCredentials, NotConfigured
from app.core.errors import (
    GatewayError,
    GatewayNotConfigured,
    GatewayTransientError,
    InvalidCredentials,
    QueryNotSupported,
    ValidationError,
)
from app.models.transaction_model import (
    GatewayHandle,
    NormalizedResult,
    Outcome,
    PaymentProcessor,
    PaymentRequest,
    QueryResult,
)

logger = logging.getLogger("paynow.gateways")

RawPayload = Union[bytes, str, Mapping[str, Any]]


def to_minor_units(amount) -> int:
    return int((Decimal(str(amount)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_minor_units(amount) -> Optional[float]:
    if amount is None:
        return None
    return float(Decimal(str(amount)) / 100)


def load_payload(raw: RawPayload) -> Dict[str, Any]:
    if isinstance(raw, Mapping):
        return dict(raw)
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8")
    data = json.loads(raw)
    if not isinstance(data, dict):
        raise ValueError("payload is not a JSON object")
    return data


def header(headers: Optional[Mapping[str, str]], name: str) -> Optional[str]:
    if not headers:
        return None
    value = headers.get(name)
    if value is not None:
        return value
    lowered = name.lower()
    for key, val in headers.items():
        if key.lower() == lowered:
            return val
    return None


class GatewayAdapter(ABC):
    processor: PaymentProcessor
    label: str = "Gateway"
    default_currency: str = "USD"
    supports_query: bool = False

    def __init__(
        self,
        resolver: CredentialResolver,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.resolver = resolver
        self.timeout = timeout or settings.GATEWAY_TIMEOUT_SECONDS
        self.transport = transport

    # ------------------------------------------------------------------
    # Capabilities
    # ------------------------------------------------------------------
    @abstractmethod
    async def initiate(self, request: PaymentRequest) -> GatewayHandle:
        ...

    async def query(self, handle: str, merchant_id: str) -> QueryResult:
        raise QueryNotSupported(
            f"{self.label} does not support status polling", gateway=self.processor.value
        )

    def parse_callback(
        self, raw_payload: RawPayload, headers: Optional[Mapping[str, str]] = None
    ) -> NormalizedResult:
        """
        Pure and total: never raises. Anything unreadable becomes a failed
        result carrying the reason, so the HTTP layer can still acknowledge.
        """
        try:
            payload = load_payload(raw_payload)
        except (ValueError, UnicodeDecodeError) as e:
            logger.warning(f"[{self.label}] Callback body is not JSON: {e}")
            return NormalizedResult(
                outcome=Outcome.FAILED,
                reason=f"Malformed {self.label} payload: {e}",
            )

        try:
            return self._parse(payload, headers or {})
        except Exception as e:
            logger.warning(f"[{self.label}] Unexpected callback shape: {e!r}")
            return NormalizedResult(
                outcome=Outcome.FAILED,
                reason=f"Unexpected {self.label} payload: {e!r}",
                raw_payload=payload,
            )

    @abstractmethod
    def _parse(self, payload: Dict[str, Any], headers: Mapping[str, str]) -> NormalizedResult:
        ...

    async def verify_signature(
        self, raw_body: bytes, headers: Mapping[str, str], merchant_id: str
    ) -> bool:
        return True

    def acknowledgement(self) -> Dict[str, Any]:
        return {"status": "success"}

    @abstractmethod
    async def test_credentials(self, secrets: Dict[str, str], environment: str = "sandbox") -> None:
        """Raise InvalidCredentials unless the provider accepts these secrets."""

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    async def credentials(self, merchant_id: str) -> GatewayCredentials:
        result = await self.resolver.resolve(merchant_id, self.processor)
        if isinstance(result, NotConfigured):
            raise GatewayNotConfigured(
                f"{self.label} is not configured for merchant {merchant_id or '?'}: {result.reason}",
                gateway=self.processor.value,
            )
        return result

    def validate_request(self, request: PaymentRequest) -> None:
        if request.amount is None or request.amount <= 0:
            raise ValidationError("Invalid amount. Must be a positive number", field="amount")
        if not request.merchant_id:
            raise ValidationError("Merchant ID is required", field="merchantId")
        if not request.transaction_id:
            raise ValidationError("Transaction ID is required", field="transactionId")

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self.transport)

    async def request(self, method: str, url: str, **kwargs) -> httpx.Response:
        try:
            async with self.client() as client:
                return await client.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            logger.error(f"[{self.label}] Timeout calling {url}: {e}")
            raise GatewayTransientError(f"{self.label} timed out", gateway=self.processor.value)
        except httpx.RequestError as e:
            logger.error(f"[{self.label}] Request error calling {url}: {e}")
            raise GatewayTransientError(
                f"{self.label} request failed: {e}", gateway=self.processor.value
            )

    @staticmethod
    def json_body(response: httpx.Response) -> Dict[str, Any]:
        try:
            data = response.json()
        except ValueError:
            return {}
        return data if isinstance(data, dict) else {}

    def raise_for_status(self, response: httpx.Response, data: Optional[Dict[str, Any]] = None) -> None:
        if response.status_code < 400:
            return
        data = data if data is not None else self.json_body(response)
        message = (
            data.get("errorMessage")
            or data.get("message")
            or data.get("error_description")
            or data.get("error")
            or response.text
            or f"HTTP {response.status_code}"
        )
        logger.error(f"[{self.label}] API error {response.status_code} | {message}")

        if response.status_code >= 500:
            raise GatewayTransientError(f"{self.label} unavailable: {message}", gateway=self.processor.value)
        if response.status_code in (401, 403):
            raise InvalidCredentials(f"{self.label} rejected the credentials: {message}", gateway=self.processor.value)
        raise GatewayError(f"{self.label} rejected the request: {message}", gateway=self.processor.value)

    def require_secrets(self, secrets: Dict[str, str], *keys: str) -> None:
        missing = [k for k in keys if not (secrets or {}).get(k)]
        if missing:
            raise ValidationError(
                f"Missing {self.label} credentials: {', '.join(missing)}",
                gateway=self.processor.value,
                field=missing[0],
            )

    def currency_for(self, request: PaymentRequest) -> str:
        return (request.currency or self.default_currency).upper()
