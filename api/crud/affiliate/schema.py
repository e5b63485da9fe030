import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from api.models.affiliate import AffiliateStatus, PaymentMethod


class BankDetails(BaseModel):
    account_name: str = Field(min_length=1, max_length=120)
    account_number: str = Field(min_length=1, max_length=64)
    bank_name: str = Field(min_length=1, max_length=120)
    branch_name: str = Field(min_length=1, max_length=120)
    routing_number: str | None = Field(default=None, max_length=32)

    @field_validator("routing_number")
    @classmethod
    def empty_routing_is_none(cls, value: str | None) -> str | None:
        return value or None


class MobileBankingDetails(BaseModel):
    provider: Literal["bkash", "nagad", "rocket"]
    account_number: str = Field(min_length=1, max_length=32)
    account_name: str = Field(min_length=1, max_length=120)


PAYMENT_DETAILS_SCHEMAS: dict[PaymentMethod, type[BaseModel]] = {
    PaymentMethod.BANK: BankDetails,
    PaymentMethod.MOBILE_BANKING: MobileBankingDetails,
}


class AffiliateRegister(BaseModel):
    payment_method: PaymentMethod
    payment_details: dict[str, Any]


class PaymentDetailsUpdate(AffiliateRegister):
    ...


class AffiliateReject(BaseModel):
    reason: str


class AffiliateRead(BaseModel):
    id: uuid.UUID
    user_id: uuid.UUID
    status: AffiliateStatus
    referral_code: str
    rejection_reason: str | None = None
    payment_method: PaymentMethod
    payment_details: dict[str, Any]
    total_referrals: int
    total_sales: Decimal
    total_commission: Decimal
    pending_commission: Decimal
    paid_commission: Decimal
    created_at: datetime
    approved_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)
