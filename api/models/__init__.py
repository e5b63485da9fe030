from .base import Base
from .affiliate import Affiliate, AffiliateStatus, PaymentMethod
from .coupon import Coupon, CouponApprovalStatus, CouponRedemption, CouponType
from .commission import CommissionEntry, CommissionKind, CommissionSettlement, CommissionStatus
from .withdraw import WithdrawRequest, WithdrawStatus
from .audit import AuditLog
