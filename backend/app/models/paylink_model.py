# models/paylink_model.py
from datetime import datetime
from enum import Enum
from typing import List, Literal, Optional
from pydantic import BaseModel, ConfigDict, Field

from app.models.transaction_model import utcnow


class ReminderTier(str, Enum):
    FIRST = "first"
    SECOND = "second"
    FINAL = "final"
    MANUAL = "manual"


# Automatic tiers in firing order. MANUAL sits outside the ladder.
TIER_ORDER = (ReminderTier.FIRST, ReminderTier.SECOND, ReminderTier.FINAL)


class ReminderRecord(BaseModel):
    type: ReminderTier
    sent_at: datetime = Field(default_factory=utcnow)
    recipient_phone: str

    model_config = ConfigDict(use_enum_values=True)


class PaymentLink(BaseModel):
    """Shareable payment request awaiting payer action."""
    id: str
    owner_uid: Optional[str] = None
    slug: str
    amount: float
    currency: str = "KES"
    description: Optional[str] = None
    recipient_phone: Optional[str] = None

    status: Literal["active", "expired", "inactive"] = "active"
    paid: bool = False
    expiry_date: Optional[datetime] = None
    created_at: Optional[datetime] = None

    last_reminder_sent: Optional[datetime] = None
    last_reminder_type: Optional[ReminderTier] = None
    reminders: List[ReminderRecord] = []

    model_config = ConfigDict(extra="ignore")
