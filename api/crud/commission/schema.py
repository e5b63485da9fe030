import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict

from api.models.commission import CommissionKind, CommissionStatus


class CommissionRecord(BaseModel):
    affiliate_id: uuid.UUID
    order_id: str
    referred_user_id: uuid.UUID
    order_amount: Decimal
    rate: Decimal


class ReferredOrder(BaseModel):
    referral_code: str
    order_id: str
    referred_user_id: uuid.UUID
    order_amount: Decimal


class CommissionReverse(BaseModel):
    reason: str


class CommissionRead(BaseModel):
    id: uuid.UUID
    affiliate_id: uuid.UUID
    order_id: str
    referred_user_id: uuid.UUID
    order_amount: Decimal
    commission_rate: Decimal
    amount: Decimal
    kind: CommissionKind
    status: CommissionStatus
    reversal_of_id: uuid.UUID | None = None
    reason: str | None = None
    created_at: datetime
    reviewed_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class RecordedCommission(BaseModel):
    created: bool
    entry: CommissionRead


class Balances(BaseModel):
    total_commission: Decimal
    pending_commission: Decimal
    approved_available: Decimal
    paid_commission: Decimal
