import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict

from api.models.coupon import CouponApprovalStatus, CouponType


class CouponCreate(BaseModel):
    code: str
    type: CouponType
    value: Decimal
    max_discount: Decimal | None = None
    min_purchase: Decimal = Decimal("0")
    usage_limit: int | None = None
    expiry_date: datetime | None = None
    one_time_use: bool = False
    description: str | None = None


class AdminCouponCreate(CouponCreate):
    is_active: bool = True


class CouponActiveUpdate(BaseModel):
    is_active: bool


class CouponRedeem(BaseModel):
    code: str
    order_amount: Decimal
    user_id: uuid.UUID | None = None
    order_id: str | None = None


class CouponValidate(BaseModel):
    code: str
    order_amount: Decimal
    user_id: uuid.UUID | None = None


class CouponRead(BaseModel):
    id: uuid.UUID
    code: str
    affiliate_id: uuid.UUID | None = None
    description: str | None = None
    type: CouponType
    value: Decimal
    max_discount: Decimal | None = None
    min_purchase: Decimal
    usage_limit: int | None = None
    expiry_date: datetime | None = None
    one_time_use: bool
    approval_status: CouponApprovalStatus
    is_active: bool
    used_count: int
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class RedemptionResult(BaseModel):
    usable: bool = True
    code: str
    discount: Decimal
    final_amount: Decimal
    used_count: int
    remaining_uses: int | None = None


class CouponCheck(BaseModel):
    usable: bool
    code: str
    discount: Decimal
    reason: str | None = None
