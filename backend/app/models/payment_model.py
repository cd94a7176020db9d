# models/payment_model.py
"""Request/response bodies of the merchant-facing API (camelCase on the wire)."""
from typing import Any, Dict, Literal, Optional
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from app.models.paylink_model import ReminderTier
from app.models.transaction_model import Outcome, PaymentProcessor


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class PayerContact(ApiModel):
    phone: Optional[str] = None
    email: Optional[str] = None
    name: Optional[str] = None


class InitiatePaymentRequest(ApiModel):
    gateway: PaymentProcessor
    amount: float
    currency: Optional[str] = None
    description: Optional[str] = None
    payer_contact: PayerContact = Field(default_factory=PayerContact)
    merchant_id: str = Field(..., min_length=1)
    transaction_id: str = Field(..., min_length=1)
    metadata: Dict[str, Any] = {}


class InitiatePaymentResponse(ApiModel):
    status: Literal["accepted", "rejected"]
    gateway_handle: Optional[str] = None
    details: Dict[str, Any] = {}
    error_message: Optional[str] = None


class QueryRequest(ApiModel):
    gateway: PaymentProcessor = PaymentProcessor.MPESA
    gateway_handle: str = Field(..., min_length=1)
    merchant_id: str = Field(..., min_length=1)


class QueryResponse(ApiModel):
    outcome: Outcome
    is_processing: bool = False
    is_canceled: bool = False
    is_successful: bool = False
    result_code: Optional[str] = None
    result_description: Optional[str] = None


class PaypalCaptureRequest(ApiModel):
    order_id: str = Field(..., min_length=1)
    merchant_id: str = Field(..., min_length=1)


class ReconcileResponse(ApiModel):
    transaction_id: Optional[str] = None
    outcome: Outcome
    action: str
    status: Optional[str] = None


class CredentialTestRequest(ApiModel):
    gateway: PaymentProcessor
    secrets: Dict[str, str]
    environment: str = "sandbox"


class ManualReminderRequest(ApiModel):
    link_id: str = Field(..., min_length=1)
    phone_number: Optional[str] = None
    reminder_type: ReminderTier = ReminderTier.MANUAL
