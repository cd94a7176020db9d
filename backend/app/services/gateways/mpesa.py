# services/gateways/mpesa.py
"""
M-Pesa Daraja adapter (Lipa Na M-Pesa Online / STK push).

The STK push prompts the payer's handset; the final outcome arrives later on
{BACKEND_URL}/callback/{transaction_id}. Status can also be polled with the
STK query endpoint using the CheckoutRequestID handle.
"""
import base64
import logging
from datetime import datetime, timedelta, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Mapping, Tuple

from app.core.config import settings
from app.core.credentials import GatewayCredentials
from app.core.errors import GatewayError, InvalidCredentials, ValidationError
from app.models.transaction_model import (
    GatewayHandle,
    NormalizedResult,
    Outcome,
    PaymentProcessor,
    PaymentRequest,
    QueryResult,
)
from app.services.gateways.base import GatewayAdapter
from app.utils.phone import normalize_phone, try_normalize_phone

logger = logging.getLogger("paynow.gateways")

SANDBOX_URL = "https://sandbox.safaricom.co.ke"
PRODUCTION_URL = "https://api.safaricom.co.ke"

EAT = timezone(timedelta(hours=3))

# ResultCode -> (outcome, description)
RESULT_CODES: Dict[str, Tuple[Outcome, str]] = {
    "0": (Outcome.SUCCESS, "The service request is processed successfully."),
    "1032": (Outcome.CANCELED, "Request canceled by user"),
    "4999": (Outcome.PENDING, "The transaction is still under processing"),
    "1037": (Outcome.FAILED, "DS timeout, user cannot be reached"),
    "1": (Outcome.FAILED, "The balance is insufficient for the transaction"),
    "2001": (Outcome.FAILED, "The initiator information is invalid"),
    "1001": (Outcome.FAILED, "A transaction is already in process for the current subscriber"),
    "1019": (Outcome.FAILED, "Transaction has expired"),
}

# STK query answers some in-flight states as API errors instead of ResultCodes
QUERY_ERROR_CODES: Dict[str, Outcome] = {
    "500.001.1001": Outcome.PENDING,
    "500.001.1032": Outcome.CANCELED,
    "400.002.02": Outcome.CANCELED,
}


def map_result_code(code) -> Tuple[Outcome, str]:
    key = str(code).strip() if code is not None else ""
    if key in RESULT_CODES:
        return RESULT_CODES[key]
    return Outcome.FAILED, f"Unrecognized result code {key or 'missing'}"


def whole_units(amount) -> int:
    value = int(Decimal(str(amount)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    if value < 1:
        raise ValidationError("M-Pesa amount must be at least 1", field="amount")
    return value


class MpesaGateway(GatewayAdapter):
    processor = PaymentProcessor.MPESA
    label = "M-Pesa"
    default_currency = "KES"
    supports_query = True

    def base_url(self, creds: GatewayCredentials) -> str:
        return PRODUCTION_URL if creds.is_production else SANDBOX_URL

    @staticmethod
    def timestamp() -> str:
        return datetime.now(EAT).strftime("%Y%m%d%H%M%S")

    @staticmethod
    def password(shortcode: str, passkey: str, timestamp: str) -> str:
        return base64.b64encode(f"{shortcode}{passkey}{timestamp}".encode()).decode()

    async def access_token(self, creds: GatewayCredentials) -> str:
        response = await self.request(
            "GET",
            f"{self.base_url(creds)}/oauth/v1/generate",
            params={"grant_type": "client_credentials"},
            auth=(creds.secrets["consumer_key"], creds.secrets["consumer_secret"]),
        )
        if 400 <= response.status_code < 500:
            logger.error(f"[M-Pesa] Token request rejected: {response.status_code} {response.text}")
            raise InvalidCredentials("M-Pesa rejected the consumer key/secret", gateway=self.processor.value)
        self.raise_for_status(response)

        token = self.json_body(response).get("access_token")
        if not token:
            raise GatewayError("M-Pesa returned no access token", gateway=self.processor.value)
        return token

    def validate_request(self, request: PaymentRequest) -> None:
        super().validate_request(request)
        normalize_phone(request.payer_phone)
        whole_units(request.amount)

    async def initiate(self, request: PaymentRequest) -> GatewayHandle:
        self.validate_request(request)
        phone = normalize_phone(request.payer_phone)
        amount = whole_units(request.amount)

        creds = await self.credentials(request.merchant_id)
        token = await self.access_token(creds)

        shortcode = creds.secrets["shortcode"]
        timestamp = self.timestamp()
        payload = {
            "BusinessShortCode": shortcode,
            "Password": self.password(shortcode, creds.secrets["passkey"], timestamp),
            "Timestamp": timestamp,
            "TransactionType": creds.get("transaction_type", "CustomerPayBillOnline"),
            "Amount": amount,
            "PartyA": phone,
            "PartyB": creds.get("party_b", shortcode),
            "PhoneNumber": phone,
            "CallBackURL": f"{settings.BACKEND_URL.rstrip('/')}/callback/{request.transaction_id}",
            "AccountReference": (
                request.metadata.get("account_reference") or creds.get("account_reference") or request.transaction_id
            )[:12],
            "TransactionDesc": (request.description or "Payment")[:13],
        }

        logger.info(f"📲 [M-Pesa] STK push {request.transaction_id} → {phone} ({amount})")
        response = await self.request(
            "POST",
            f"{self.base_url(creds)}/mpesa/stkpush/v1/processrequest",
            json=payload,
            headers={"Authorization": f"Bearer {token}"},
        )
        data = self.json_body(response)
        self.raise_for_status(response, data)

        checkout_id = data.get("CheckoutRequestID")
        if str(data.get("ResponseCode")) != "0" or not checkout_id:
            message = data.get("errorMessage") or data.get("ResponseDescription") or "STK push was not accepted"
            raise GatewayError(f"M-Pesa rejected the request: {message}", gateway=self.processor.value)

        return GatewayHandle(
            processor=self.processor,
            handle=checkout_id,
            details={
                "merchant_request_id": data.get("MerchantRequestID"),
                "customer_message": data.get("CustomerMessage"),
                "phone": phone,
            },
        )

    async def query(self, handle: str, merchant_id: str) -> QueryResult:
        if not handle:
            raise ValidationError("CheckoutRequestID is required", field="gatewayHandle")

        creds = await self.credentials(merchant_id)
        token = await self.access_token(creds)

        shortcode = creds.secrets["shortcode"]
        timestamp = self.timestamp()
        response = await self.request(
            "POST",
            f"{self.base_url(creds)}/mpesa/stkpushquery/v1/query",
            json={
                "BusinessShortCode": shortcode,
                "Password": self.password(shortcode, creds.secrets["passkey"], timestamp),
                "Timestamp": timestamp,
                "CheckoutRequestID": handle,
            },
            headers={"Authorization": f"Bearer {token}"},
        )
        data = self.json_body(response)

        error_code = data.get("errorCode")
        if error_code in QUERY_ERROR_CODES:
            return QueryResult(
                outcome=QUERY_ERROR_CODES[error_code],
                result_code=error_code,
                result_description=data.get("errorMessage"),
                raw_payload=data,
            )
        self.raise_for_status(response, data)
        if error_code:
            raise GatewayError(
                f"M-Pesa query failed: {data.get('errorMessage') or error_code}",
                gateway=self.processor.value,
            )

        code = data.get("ResultCode")
        outcome, description = map_result_code(code)
        return QueryResult(
            outcome=outcome,
            result_code=None if code is None else str(code),
            result_description=data.get("ResultDesc") or description,
            raw_payload=data,
        )

    def _parse(self, payload: Dict[str, Any], headers: Mapping[str, str]) -> NormalizedResult:
        stk = payload["Body"]["stkCallback"]
        code = stk.get("ResultCode")
        outcome, description = map_result_code(code)

        items = {}
        for item in (stk.get("CallbackMetadata") or {}).get("Item") or []:
            if isinstance(item, dict) and item.get("Name"):
                items[item["Name"]] = item.get("Value")

        receipt = items.get("MpesaReceiptNumber")
        date = items.get("TransactionDate")
        amount = items.get("Amount")
        return NormalizedResult(
            outcome=outcome,
            gateway_reference=str(receipt) if receipt and outcome is Outcome.SUCCESS else None,
            gateway_handle=stk.get("CheckoutRequestID"),
            result_code=None if code is None else str(code),
            reason=stk.get("ResultDesc") or description,
            raw_payload=payload,
            payer_phone=try_normalize_phone(items.get("PhoneNumber")),
            transaction_date=str(date) if date is not None else None,
            amount=float(amount) if amount is not None else None,
        )

    def acknowledgement(self) -> Dict[str, Any]:
        return {"ResultCode": 0, "ResultDesc": "Accepted"}

    async def test_credentials(self, secrets: Dict[str, str], environment: str = "sandbox") -> None:
        self.require_secrets(secrets, "consumer_key", "consumer_secret")
        creds = GatewayCredentials(gateway=self.processor, secrets=secrets, environment=environment)
        await self.access_token(creds)
