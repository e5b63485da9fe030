from decimal import Decimal
from typing import Dict, Generic, List, TypeVar

from pydantic import BaseModel

from api.crud.affiliate.schema import AffiliateRead
from api.crud.commission.schema import Balances

T = TypeVar("T")


class Page(BaseModel, Generic[T]):
    items: List[T]
    page: int
    limit: int
    total: int
    pages: int


class AffiliateView(BaseModel):
    is_affiliate: bool
    affiliate: AffiliateRead
    balances: Balances


class AffiliateStatistics(BaseModel):
    affiliate: AffiliateRead
    balances: Balances
    coupons: Dict[str, int]
    active_coupons: int
    coupon_redemptions: int
    withdrawals: Dict[str, int]


class StatusTotal(BaseModel):
    count: int = 0
    amount: Decimal = Decimal("0.00")


class Analytics(BaseModel):
    affiliates: Dict[str, int]
    coupons: Dict[str, int]
    commissions: Dict[str, StatusTotal]
    withdrawals: Dict[str, StatusTotal]
