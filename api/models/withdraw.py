import enum
import uuid
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import UUID, DateTime, ForeignKey, Integer, JSON, Numeric, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .affiliate import PaymentMethod
from .base import Base, utcnow, value_enum


class WithdrawStatus(enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    PAID = "paid"
    REJECTED = "rejected"


class WithdrawRequest(Base):
    __tablename__ = "withdraw_requests"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    affiliate_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("affiliates.id"), nullable=False, index=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    status: Mapped[WithdrawStatus] = mapped_column(
        value_enum(WithdrawStatus, "withdrawstatus"), default=WithdrawStatus.PENDING, nullable=False
    )
    # snapshot taken at request time
    payment_method: Mapped[PaymentMethod] = mapped_column(value_enum(PaymentMethod, "paymentmethod"), nullable=False)
    payment_details: Mapped[dict] = mapped_column(JSON, nullable=False)
    rejection_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    processed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    # Relationships
    affiliate: Mapped["Affiliate"] = relationship(back_populates="withdraw_requests")
    settlements: Mapped[List["CommissionSettlement"]] = relationship(back_populates="withdraw_request")
