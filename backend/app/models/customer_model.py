# models/customer_model.py
from datetime import datetime
from typing import Dict, Optional
from pydantic import BaseModel, ConfigDict, Field

from app.models.transaction_model import utcnow


class PaymentMethodStats(BaseModel):
    count: int = 0
    total_spent: float = 0.0
    last_used: Optional[datetime] = None


class Customer(BaseModel):
    """Per-merchant payer aggregate, keyed by phone (falling back to email)."""
    id: str
    name: str = "Customer"
    phone_number: Optional[str] = None
    email: Optional[str] = None

    total_transactions: int = 0
    total_spent: float = 0.0
    last_transaction_amount: float = 0.0
    last_transaction_date: Optional[datetime] = None
    payment_methods: Dict[str, PaymentMethodStats] = {}
    preferred_payment_method: Optional[str] = None

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    model_config = ConfigDict(extra="ignore")
