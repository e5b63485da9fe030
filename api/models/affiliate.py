import enum
import uuid
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import UUID, DateTime, Index, Integer, JSON, Numeric, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, utcnow, value_enum


class AffiliateStatus(enum.Enum):
    PENDING = "pending"
    ACTIVE = "active"
    SUSPENDED = "suspended"
    REJECTED = "rejected"


class PaymentMethod(enum.Enum):
    BANK = "bank"
    MOBILE_BANKING = "mobile_banking"


class Affiliate(Base):
    __tablename__ = "affiliates"
    __table_args__ = (
        # one live account per user; rejected accounts stay for audit
        Index(
            "uq_affiliates_live_user",
            "user_id",
            unique=True,
            postgresql_where=text("status <> 'rejected'"),
            sqlite_where=text("status <> 'rejected'"),
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False, index=True)
    status: Mapped[AffiliateStatus] = mapped_column(
        value_enum(AffiliateStatus, "affiliatestatus"), default=AffiliateStatus.PENDING, nullable=False
    )
    rejection_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    referral_code: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)

    payment_method: Mapped[PaymentMethod] = mapped_column(value_enum(PaymentMethod, "paymentmethod"), nullable=False)
    payment_details: Mapped[dict] = mapped_column(JSON, nullable=False)

    # Display copies of the ledger fold, rewritten by CommissionLedger.refresh_aggregates
    total_referrals: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_sales: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=Decimal("0"), nullable=False)
    total_commission: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=Decimal("0"), nullable=False)
    pending_commission: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=Decimal("0"), nullable=False)
    paid_commission: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=Decimal("0"), nullable=False)

    version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)
    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    # Relationships
    coupons: Mapped[List["Coupon"]] = relationship(back_populates="affiliate")
    commission_entries: Mapped[List["CommissionEntry"]] = relationship(back_populates="affiliate")
    withdraw_requests: Mapped[List["WithdrawRequest"]] = relationship(back_populates="affiliate")

    @property
    def is_active(self) -> bool:
        return self.status == AffiliateStatus.ACTIVE
