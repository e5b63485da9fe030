import enum
import uuid
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import UUID, DateTime, ForeignKey, Numeric, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, utcnow, value_enum


class CommissionStatus(enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    PAID = "paid"
    CANCELLED = "cancelled"


class CommissionKind(enum.Enum):
    COMMISSION = "commission"
    REVERSAL = "reversal"


class CommissionEntry(Base):
    __tablename__ = "commission_entries"
    __table_args__ = (
        # one commission and at most one reversal per order
        UniqueConstraint("order_id", "kind", name="uq_commission_entries_order_kind"),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    affiliate_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("affiliates.id"), nullable=False, index=True)
    order_id: Mapped[str] = mapped_column(String(64), nullable=False)
    referred_user_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    order_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    commission_rate: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    kind: Mapped[CommissionKind] = mapped_column(
        value_enum(CommissionKind, "commissionkind"), default=CommissionKind.COMMISSION, nullable=False
    )
    status: Mapped[CommissionStatus] = mapped_column(
        value_enum(CommissionStatus, "commissionstatus"), default=CommissionStatus.PENDING, nullable=False
    )
    reversal_of_id: Mapped[Optional[uuid.UUID]] = mapped_column(ForeignKey("commission_entries.id"), nullable=True)
    reason: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    reviewed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    # Relationships
    affiliate: Mapped["Affiliate"] = relationship(back_populates="commission_entries")
    reversal_of: Mapped[Optional["CommissionEntry"]] = relationship(remote_side=[id])
    settlements: Mapped[List["CommissionSettlement"]] = relationship(back_populates="entry")


class CommissionSettlement(Base):
    __tablename__ = "commission_settlements"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    withdraw_request_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("withdraw_requests.id"), nullable=False, index=True)
    commission_entry_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("commission_entries.id"), nullable=False, index=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    # Relationships
    entry: Mapped["CommissionEntry"] = relationship(back_populates="settlements")
    withdraw_request: Mapped["WithdrawRequest"] = relationship(back_populates="settlements")
