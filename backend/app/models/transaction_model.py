# models/transaction_model.py
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PaymentProcessor(str, Enum):
    MPESA = "mpesa"
    STRIPE = "stripe"
    PAYSTACK = "paystack"
    PAYPAL = "paypal"


PROCESSOR_LABELS = {
    PaymentProcessor.MPESA: "M-Pesa",
    PaymentProcessor.STRIPE: "Credit/Debit Card",
    PaymentProcessor.PAYSTACK: "Paystack",
    PaymentProcessor.PAYPAL: "PayPal",
}


class TransactionStatus(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"
    CANCELED = "canceled"

    @property
    def is_terminal(self) -> bool:
        return self is not TransactionStatus.PENDING


TERMINAL_STATUSES = frozenset(
    {TransactionStatus.SUCCESS, TransactionStatus.FAILED, TransactionStatus.CANCELED}
)


class NotificationRecord(BaseModel):
    """One side-effect attempt, appended to Transaction.notification_history."""
    channel: str  # sms | email | invoice
    recipient: Optional[str] = None
    success: bool
    error: Optional[str] = None
    provider_response: Optional[Any] = None
    at: datetime = Field(default_factory=utcnow)


class Transaction(BaseModel):
    """One payment attempt. The id doubles as the gateway-side order reference."""
    id: str
    owner_uid: str
    amount: float = Field(..., gt=0)
    currency: str = "KES"
    description: Optional[str] = None

    payer_phone: Optional[str] = None
    payer_email: Optional[str] = None
    payer_name: Optional[str] = None

    payment_processor: PaymentProcessor
    gateway_handle: Optional[str] = None
    receipt_number: Optional[str] = None

    status: TransactionStatus = TransactionStatus.PENDING
    result_description: Optional[str] = None
    failure_reason: Optional[str] = None
    callback_data: Optional[Dict[str, Any]] = None
    last_callback_payload: Optional[Dict[str, Any]] = None
    redelivery_count: int = 0

    invoice_url: Optional[str] = None
    has_invoice: bool = False
    notification_history: List[NotificationRecord] = []

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None

    model_config = ConfigDict(use_enum_values=True, extra="ignore")


class Outcome(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    PENDING = "pending"
    CANCELED = "canceled"

    @property
    def is_terminal(self) -> bool:
        return self is not Outcome.PENDING


class NormalizedResult(BaseModel):
    """What every gateway adapter turns a callback, webhook or query answer into."""
    outcome: Outcome
    gateway_reference: Optional[str] = None
    transaction_id: Optional[str] = None
    gateway_handle: Optional[str] = None
    result_code: Optional[str] = None
    reason: Optional[str] = None
    raw_payload: Dict[str, Any] = {}

    payer_phone: Optional[str] = None
    payer_email: Optional[str] = None
    payer_name: Optional[str] = None
    transaction_date: Optional[str] = None
    amount: Optional[float] = None


class PaymentRequest(BaseModel):
    """Input to GatewayAdapter.initiate."""
    transaction_id: str
    merchant_id: str
    amount: float
    currency: Optional[str] = None
    description: Optional[str] = None
    payer_phone: Optional[str] = None
    payer_email: Optional[str] = None
    payer_name: Optional[str] = None
    metadata: Dict[str, Any] = {}


class GatewayHandle(BaseModel):
    """Opaque correlation id returned by a gateway when it accepts a payment for processing."""
    processor: PaymentProcessor
    handle: str
    details: Dict[str, Any] = {}

    model_config = ConfigDict(use_enum_values=True)


class QueryResult(BaseModel):
    outcome: Outcome
    result_code: Optional[str] = None
    result_description: Optional[str] = None
    raw_payload: Dict[str, Any] = {}

    @property
    def is_processing(self) -> bool:
        return self.outcome is Outcome.PENDING

    @property
    def is_canceled(self) -> bool:
        return self.outcome is Outcome.CANCELED

    @property
    def is_successful(self) -> bool:
        return self.outcome is Outcome.SUCCESS
