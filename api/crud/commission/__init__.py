import logging
import uuid
from decimal import Decimal, InvalidOperation

from sqlalchemy import exists, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import aliased

from api.crud.affiliate import AffiliateService
from api.crud.audit import record_audit
from api.crud.base import CoreService
from api.crud.commission.interface import CommissionInterface
from api.crud.commission.schema import Balances
from api.crud.errors import (
    AffiliateNotActive,
    DuplicateOrder,
    InvalidTransition,
    NotFound,
    ValidationError,
)
from api.crud.transitions import StateMachine, compare_and_set
from api.models import (
    Affiliate,
    AffiliateStatus,
    CommissionEntry,
    CommissionKind,
    CommissionSettlement,
    CommissionStatus,
    WithdrawRequest,
    WithdrawStatus,
)
from api.models.base import utcnow
from config import ENV
from utils.money import ZERO, percent_of, to_money

COMMISSION_MACHINE = StateMachine(
    "commission",
    {
        "approve": (frozenset({CommissionStatus.PENDING}), CommissionStatus.APPROVED),
        "cancel": (frozenset({CommissionStatus.PENDING}), CommissionStatus.CANCELLED),
    },
)

# withdraw requests that hold on to approved funds
RESERVING_STATUSES = (WithdrawStatus.PENDING, WithdrawStatus.APPROVED, WithdrawStatus.PAID)


class CommissionLedger(CoreService, CommissionInterface):
    """
    Append-only ledger of commissions earned on referred orders.

    Balances are always folded from the entries and withdraw requests; the
    totals stored on the affiliate row are display copies rewritten by
    `refresh_aggregates` inside the transaction that changed the ledger.
    """

    async def get_entry(self, entry_id: uuid.UUID) -> CommissionEntry:
        return await self._get_or_404(CommissionEntry, entry_id, "Commission entry")

    async def _entry_for_order(self, order_id: str, kind: CommissionKind) -> CommissionEntry | None:
        res = await self.session.execute(
            select(CommissionEntry)
            .where(CommissionEntry.order_id == order_id, CommissionEntry.kind == kind)
            .execution_options(populate_existing=True)
        )
        return res.scalar_one_or_none()

    async def record_commission(
        self,
        affiliate_id: uuid.UUID,
        order_id: str,
        referred_user_id: uuid.UUID,
        order_amount,
        rate,
    ) -> CommissionEntry:
        """
        Appends a pending commission for a completed order.

        Replays for the same order raise DuplicateOrder carrying the entry
        that already exists, whatever the affiliate's status is by then.
        A concurrent replay that slips past the lookup hits the unique
        constraint and is answered the same way.
        """
        order_id = str(order_id or "").strip()
        if not order_id:
            raise ValidationError("order_id is required", field="order_id")
        try:
            amount = to_money(order_amount)
            rate = Decimal(rate)
        except (InvalidOperation, TypeError, ValueError):
            raise ValidationError("order_amount and rate must be numbers", field="order_amount")
        if amount <= 0:
            raise ValidationError("order_amount must be positive", field="order_amount")
        if rate < 0 or rate > 100:
            raise ValidationError("rate must be a percentage between 0 and 100", field="rate")

        existing = await self._entry_for_order(order_id, CommissionKind.COMMISSION)
        if existing is not None:
            logging.info(f"Order {order_id} already has commission entry {existing.id}, skipping")
            raise DuplicateOrder(f"Order {order_id} already has a commission entry", existing.id)

        affiliate = await self._get_or_404(Affiliate, affiliate_id, "Affiliate")
        if affiliate.status != AffiliateStatus.ACTIVE:
            raise AffiliateNotActive(
                f"Affiliate {affiliate.id} is {affiliate.status.value} and cannot earn commissions",
                status=affiliate.status.value,
            )

        entry = CommissionEntry(
            id=uuid.uuid4(),
            affiliate_id=affiliate.id,
            order_id=order_id,
            referred_user_id=referred_user_id,
            order_amount=amount,
            commission_rate=rate,
            amount=percent_of(amount, rate),
            kind=CommissionKind.COMMISSION,
            status=CommissionStatus.PENDING,
        )
        self.session.add(entry)
        try:
            await self.session.flush()
        except IntegrityError:
            await self.session.rollback()
            existing = await self._entry_for_order(order_id, CommissionKind.COMMISSION)
            if existing is None:
                raise
            logging.info(f"Order {order_id} already has commission entry {existing.id}, skipping")
            raise DuplicateOrder(f"Order {order_id} already has a commission entry", existing.id)

        await self.refresh_aggregates(affiliate.id)
        await self.session.commit()
        await self.session.refresh(entry)

        logging.info(f"Commission {entry.amount} ({rate}%) recorded for affiliate {affiliate.id} on order {order_id}")
        await self._invalidate(affiliate.user_id)
        return entry

    async def record_referred_order(
        self,
        referral_code: str,
        order_id: str,
        referred_user_id: uuid.UUID,
        order_amount,
    ) -> CommissionEntry:
        """Order-service entry point; the rate is read from configuration on every call."""
        affiliate = await AffiliateService(self.session).get_by_referral_code(referral_code or "")
        if affiliate is None:
            raise NotFound(f"Referral code {referral_code} not found")
        return await self.record_commission(
            affiliate.id, order_id, referred_user_id, order_amount, ENV().COMMISSION_RATE
        )

    async def _review(self, entry_id: uuid.UUID, action: str, actor_id: uuid.UUID | None) -> CommissionEntry:
        entry = await self.get_entry(entry_id)
        seen = entry.status
        target = COMMISSION_MACHINE.target(action, seen)

        await compare_and_set(
            self.session,
            CommissionEntry,
            entry.id,
            seen,
            {"status": target, "reviewed_at": utcnow()},
        )
        await self.refresh_aggregates(entry.affiliate_id)
        record_audit(self.session, actor_id, f"commission_{action}", "commission", entry.id, {"order_id": entry.order_id})
        await self.session.commit()
        await self.session.refresh(entry)

        logging.info(f"Commission {entry.id} for order {entry.order_id}: {seen.value} -> {target.value}")
        await self.invalidate_affiliate(entry.affiliate_id)
        return entry

    async def approve_commission(self, entry_id: uuid.UUID, actor_id: uuid.UUID | None = None) -> CommissionEntry:
        return await self._review(entry_id, "approve", actor_id)

    async def cancel_commission(self, entry_id: uuid.UUID, actor_id: uuid.UUID | None = None) -> CommissionEntry:
        return await self._review(entry_id, "cancel", actor_id)

    async def reverse_commission(
        self,
        entry_id: uuid.UUID,
        reason: str,
        actor_id: uuid.UUID | None = None,
    ) -> CommissionEntry:
        """Appends a negative correction for an approved or paid commission; the original stays untouched."""
        reason = (reason or "").strip()
        if not reason:
            raise ValidationError("A reversal reason is required", field="reason")

        entry = await self.get_entry(entry_id)
        if entry.kind != CommissionKind.COMMISSION or entry.status not in (CommissionStatus.APPROVED, CommissionStatus.PAID):
            raise InvalidTransition(
                f"Only approved or paid commissions can be reversed (status '{entry.status.value}')",
                status=entry.status.value,
            )

        reversal = CommissionEntry(
            id=uuid.uuid4(),
            affiliate_id=entry.affiliate_id,
            order_id=entry.order_id,
            referred_user_id=entry.referred_user_id,
            order_amount=entry.order_amount,
            commission_rate=entry.commission_rate,
            amount=-entry.amount,
            kind=CommissionKind.REVERSAL,
            status=CommissionStatus.APPROVED,
            reversal_of_id=entry.id,
            reason=reason,
            reviewed_at=utcnow(),
        )
        order_id = entry.order_id
        self.session.add(reversal)
        try:
            await self.session.flush()
        except IntegrityError:
            await self.session.rollback()
            raise InvalidTransition(f"Commission for order {order_id} is already reversed")

        await self.refresh_aggregates(entry.affiliate_id)
        record_audit(
            self.session, actor_id, "commission_reverse", "commission", entry.id, {"reason": reason, "reversal_id": str(reversal.id)}
        )
        await self.session.commit()
        await self.session.refresh(reversal)

        logging.info(f"Commission {entry.id} on order {entry.order_id} reversed by {reversal.amount}: {reason}")
        await self.invalidate_affiliate(entry.affiliate_id)
        return reversal

    async def compute_balances(self, affiliate_id: uuid.UUID) -> Balances:
        entries = await self.session.execute(
            select(CommissionEntry.status, func.coalesce(func.sum(CommissionEntry.amount), 0))
            .where(CommissionEntry.affiliate_id == affiliate_id)
            .group_by(CommissionEntry.status)
        )
        earned = {status: to_money(total) for status, total in entries.all()}

        requests = await self.session.execute(
            select(WithdrawRequest.status, func.coalesce(func.sum(WithdrawRequest.amount), 0))
            .where(WithdrawRequest.affiliate_id == affiliate_id)
            .group_by(WithdrawRequest.status)
        )
        withdrawn = {status: to_money(total) for status, total in requests.all()}

        pending = earned.get(CommissionStatus.PENDING, ZERO)
        approved = earned.get(CommissionStatus.APPROVED, ZERO)
        paid = earned.get(CommissionStatus.PAID, ZERO)
        reserved = sum((withdrawn.get(status, ZERO) for status in RESERVING_STATUSES), ZERO)

        return Balances(
            total_commission=to_money(pending + approved + paid),
            pending_commission=pending,
            approved_available=to_money(approved + paid - reserved),
            paid_commission=withdrawn.get(WithdrawStatus.PAID, ZERO),
        )

    async def available_balance(self, affiliate_id: uuid.UUID) -> Decimal:
        return (await self.compute_balances(affiliate_id)).approved_available

    async def refresh_aggregates(self, affiliate_id: uuid.UUID) -> None:
        """Rewrites the affiliate's display totals from the ledger, in the caller's transaction."""
        await self.session.flush()
        balances = await self.compute_balances(affiliate_id)
        res = await self.session.execute(
            select(func.count(CommissionEntry.id), func.coalesce(func.sum(CommissionEntry.order_amount), 0)).where(
                CommissionEntry.affiliate_id == affiliate_id,
                CommissionEntry.kind == CommissionKind.COMMISSION,
                CommissionEntry.status != CommissionStatus.CANCELLED,
            )
        )
        referrals, sales = res.one()

        await self.session.execute(
            update(Affiliate)
            .where(Affiliate.id == affiliate_id)
            .values(
                total_referrals=referrals,
                total_sales=to_money(sales),
                total_commission=balances.total_commission,
                pending_commission=balances.pending_commission,
                paid_commission=balances.paid_commission,
            )
            .execution_options(synchronize_session=False)
        )

    async def settle_fifo(self, affiliate_id: uuid.UUID, withdraw_request_id: uuid.UUID, amount: Decimal) -> Decimal:
        """
        Settles `amount` against the oldest approved commissions.

        Entries fully covered become paid; a partially covered entry stays
        approved with its unsettled remainder. Reversed commissions are never
        paid out. Returns whatever could not be settled.
        """
        settled = dict(
            (
                await self.session.execute(
                    select(CommissionSettlement.commission_entry_id, func.sum(CommissionSettlement.amount))
                    .join(CommissionEntry, CommissionEntry.id == CommissionSettlement.commission_entry_id)
                    .where(CommissionEntry.affiliate_id == affiliate_id)
                    .group_by(CommissionSettlement.commission_entry_id)
                )
            ).all()
        )

        reversal = aliased(CommissionEntry)
        res = await self.session.execute(
            select(CommissionEntry)
            .where(
                CommissionEntry.affiliate_id == affiliate_id,
                CommissionEntry.kind == CommissionKind.COMMISSION,
                CommissionEntry.status == CommissionStatus.APPROVED,
                ~exists().where(reversal.reversal_of_id == CommissionEntry.id),
            )
            .order_by(CommissionEntry.created_at, CommissionEntry.id)
            .execution_options(populate_existing=True)
        )

        remaining = to_money(amount)
        for entry in res.scalars().all():
            if remaining <= 0:
                break
            unsettled = to_money(entry.amount - to_money(settled.get(entry.id) or ZERO))
            if unsettled <= 0:
                continue
            take = min(unsettled, remaining)
            self.session.add(
                CommissionSettlement(
                    withdraw_request_id=withdraw_request_id,
                    commission_entry_id=entry.id,
                    amount=take,
                )
            )
            remaining = to_money(remaining - take)
            if take == unsettled:
                await compare_and_set(
                    self.session, CommissionEntry, entry.id, CommissionStatus.APPROVED, {"status": CommissionStatus.PAID}
                )

        if remaining > 0:
            logging.warning(
                f"Withdraw request {withdraw_request_id} left {remaining} unsettled: not enough approved commission"
            )
        return remaining

    async def invalidate_affiliate(self, affiliate_id: uuid.UUID) -> None:
        user_id = await self.session.scalar(select(Affiliate.user_id).where(Affiliate.id == affiliate_id))
        if user_id is not None:
            await self._invalidate(user_id)
