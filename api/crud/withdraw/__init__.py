import logging
import uuid
from decimal import InvalidOperation
from typing import Any, Callable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from api.crud.affiliate import validate_payment_details
from api.crud.audit import record_audit
from api.crud.base import CoreService, ViewCache
from api.crud.commission import CommissionLedger
from api.crud.errors import (
    AffiliateNotActive,
    BelowMinimum,
    Forbidden,
    InsufficientBalance,
    NotFound,
    ValidationError,
)
from api.crud.transitions import StateMachine, bump_version, compare_and_set
from api.crud.withdraw.interface import WithdrawInterface
from api.models import Affiliate, AffiliateStatus, PaymentMethod, WithdrawRequest, WithdrawStatus
from api.models.base import utcnow
from config import ENV
from utils.money import to_money

WITHDRAW_MACHINE = StateMachine(
    "withdraw request",
    {
        "approve": (frozenset({WithdrawStatus.PENDING}), WithdrawStatus.APPROVED),
        "reject": (frozenset({WithdrawStatus.PENDING}), WithdrawStatus.REJECTED),
        "mark_paid": (frozenset({WithdrawStatus.APPROVED}), WithdrawStatus.PAID),
    },
)

PayoutDispatcher = Callable[[WithdrawRequest], None]


class WithdrawService(CoreService, WithdrawInterface):
    def __init__(
        self,
        session: AsyncSession,
        cache: ViewCache | None = None,
        on_approved: PayoutDispatcher | None = None,
    ):
        super().__init__(session, cache)
        self.ledger = CommissionLedger(session, cache)
        self.on_approved = on_approved

    async def get_request(self, request_id: uuid.UUID) -> WithdrawRequest:
        return await self._get_or_404(WithdrawRequest, request_id, "Withdraw request")

    async def create_request(
        self,
        affiliate_id: uuid.UUID,
        amount,
        payment_method: PaymentMethod | None = None,
        payment_details: dict[str, Any] | None = None,
        requesting_user_id: uuid.UUID | None = None,
    ) -> WithdrawRequest:
        """
        Creates a pending request that reserves `amount` of the approved balance.

        The balance is folded inside this transaction while the affiliate row
        is locked, and the row's version is bumped before commit. Of two
        requests racing on the same funds the second one to commit fails with
        ConcurrentModification and, on retry, sees the reservation.
        """
        try:
            amount = to_money(amount)
        except (InvalidOperation, TypeError, ValueError):
            raise ValidationError("amount must be a number", field="amount")
        if amount <= 0:
            raise ValidationError("amount must be positive", field="amount")
        minimum = to_money(ENV().MINIMUM_WITHDRAW)
        if amount < minimum:
            raise BelowMinimum(f"The minimum withdrawal is {minimum}", minimum=str(minimum))

        res = await self.session.execute(
            select(Affiliate)
            .where(Affiliate.id == affiliate_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        affiliate = res.scalar_one_or_none()
        if affiliate is None:
            raise NotFound(f"Affiliate {affiliate_id} not found")
        if requesting_user_id is not None and affiliate.user_id != requesting_user_id:
            raise Forbidden("Only the owner can request a withdrawal")
        if affiliate.status != AffiliateStatus.ACTIVE:
            raise AffiliateNotActive(
                f"Affiliate {affiliate.id} is {affiliate.status.value} and cannot withdraw",
                status=affiliate.status.value,
            )

        method = payment_method or affiliate.payment_method
        if payment_details is not None:
            details = validate_payment_details(method, payment_details)
        elif method == affiliate.payment_method:
            details = dict(affiliate.payment_details)
        else:
            raise ValidationError("payment_details are required when switching payment method", field="payment_details")

        available = await self.ledger.available_balance(affiliate.id)
        if amount > available:
            raise InsufficientBalance(
                f"Requested {amount} exceeds the available balance of {available}",
                available=str(available),
            )

        await bump_version(self.session, Affiliate, affiliate.id, affiliate.version)
        request = WithdrawRequest(
            affiliate_id=affiliate.id,
            amount=amount,
            status=WithdrawStatus.PENDING,
            payment_method=method,
            payment_details=details,
        )
        self.session.add(request)
        await self.session.commit()
        await self.session.refresh(request)

        logging.info(f"Withdraw request {request.id} for {amount} created by affiliate {affiliate.id}")
        await self._invalidate(affiliate.user_id)
        return request

    async def _transition(
        self,
        request_id: uuid.UUID,
        action: str,
        actor_id: uuid.UUID | None,
        values: dict[str, Any] | None = None,
        payload: dict[str, Any] | None = None,
    ) -> WithdrawRequest:
        request = await self.get_request(request_id)
        seen = request.status
        target = WITHDRAW_MACHINE.target(action, seen)

        await compare_and_set(
            self.session,
            WithdrawRequest,
            request.id,
            seen,
            {"status": target, **(values or {})},
            version=request.version,
        )
        if target == WithdrawStatus.PAID:
            request_id, amount = request.id, request.amount
            remaining = await self.ledger.settle_fifo(request.affiliate_id, request_id, amount)
            if remaining > 0:
                # nothing is paid unless every unit of the request is backed by a commission
                await self.session.rollback()
                raise InsufficientBalance(
                    f"Withdraw request {request_id} for {amount} is short of approved commission by {remaining}",
                    unsettled=str(remaining),
                )
            await self.ledger.refresh_aggregates(request.affiliate_id)
        record_audit(
            self.session,
            actor_id,
            f"withdraw_{action}",
            "withdraw_request",
            request.id,
            {"from": seen.value, "to": target.value, "amount": str(request.amount), **(payload or {})},
        )
        await self.session.commit()
        await self.session.refresh(request)

        logging.info(f"Withdraw request {request.id}: {seen.value} -> {target.value}")
        await self.ledger.invalidate_affiliate(request.affiliate_id)
        return request

    async def approve_request(self, request_id: uuid.UUID, actor_id: uuid.UUID | None = None) -> WithdrawRequest:
        """Approval moves no money; the payout service is told to transfer and calls back mark_paid."""
        request = await self._transition(request_id, "approve", actor_id, {"processed_at": utcnow()})
        if self.on_approved is not None:
            self.on_approved(request)
        return request

    async def mark_paid(self, request_id: uuid.UUID, actor_id: uuid.UUID | None = None) -> WithdrawRequest:
        return await self._transition(request_id, "mark_paid", actor_id, {"paid_at": utcnow()})

    async def reject_request(
        self,
        request_id: uuid.UUID,
        reason: str,
        actor_id: uuid.UUID | None = None,
    ) -> WithdrawRequest:
        reason = (reason or "").strip()
        if not reason:
            raise ValidationError("A rejection reason is required", field="reason")
        return await self._transition(
            request_id,
            "reject",
            actor_id,
            {"rejection_reason": reason, "processed_at": utcnow()},
            {"reason": reason},
        )
