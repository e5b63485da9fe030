import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict

from pydantic import BaseModel, ConfigDict

from api.models.affiliate import PaymentMethod
from api.models.withdraw import WithdrawStatus


class WithdrawCreate(BaseModel):
    amount: Decimal
    # falls back to the account's current payout details when omitted
    payment_method: PaymentMethod | None = None
    payment_details: Dict[str, Any] | None = None


class WithdrawReject(BaseModel):
    reason: str


class WithdrawRead(BaseModel):
    id: uuid.UUID
    affiliate_id: uuid.UUID
    amount: Decimal
    status: WithdrawStatus
    payment_method: PaymentMethod
    payment_details: Dict[str, Any]
    rejection_reason: str | None = None
    created_at: datetime
    processed_at: datetime | None = None
    paid_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)
