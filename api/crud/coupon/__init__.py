import logging
import re
import uuid
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation

from sqlalchemy import delete, exists, func, or_, select, update
from sqlalchemy.exc import IntegrityError

from api.crud.audit import record_audit
from api.crud.base import CoreService
from api.crud.coupon.interface import CouponInterface
from api.crud.coupon.schema import AdminCouponCreate, CouponCheck, CouponCreate, RedemptionResult
from api.crud.errors import (
    AffiliateError,
    AffiliateNotActive,
    ConcurrentModification,
    CouponUnusable,
    Forbidden,
    InvalidTransition,
    NotFound,
    ValidationError,
)
from api.crud.transitions import StateMachine, compare_and_set
from api.models import Affiliate, AffiliateStatus, Coupon, CouponApprovalStatus, CouponRedemption, CouponType
from api.models.base import utcnow
from utils.money import ZERO, to_money

COUPON_CODE_RE = re.compile(r"^[A-Z0-9_-]{3,32}$")

COUPON_MACHINE = StateMachine(
    "coupon",
    {
        "approve": (frozenset({CouponApprovalStatus.PENDING}), CouponApprovalStatus.APPROVED),
        "reject": (frozenset({CouponApprovalStatus.PENDING}), CouponApprovalStatus.REJECTED),
    },
)


def normalize_code(code: str) -> str:
    return (code or "").strip().upper()


def _naive_utc(value: datetime | None) -> datetime | None:
    if value is not None and value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def compute_discount(coupon: Coupon, order_amount: Decimal) -> Decimal:
    """Percentage coupons are capped by max_discount; no discount exceeds the order itself."""
    if coupon.type == CouponType.PERCENTAGE:
        discount = Decimal(order_amount) * Decimal(coupon.value) / Decimal(100)
        if coupon.max_discount is not None:
            discount = min(discount, Decimal(coupon.max_discount))
    else:
        discount = Decimal(coupon.value)
    return to_money(min(discount, Decimal(order_amount)))


class CouponService(CoreService, CouponInterface):
    async def get_coupon(self, coupon_id: uuid.UUID) -> Coupon:
        return await self._get_or_404(Coupon, coupon_id, "Coupon")

    async def get_by_code(self, code: str) -> Coupon | None:
        res = await self.session.execute(
            select(Coupon)
            .where(Coupon.code == normalize_code(code))
            .execution_options(populate_existing=True)
        )
        return res.scalar_one_or_none()

    @staticmethod
    def _order_amount(value) -> Decimal:
        try:
            amount = to_money(value)
        except (InvalidOperation, TypeError, ValueError):
            raise ValidationError("order_amount must be a number", field="order_amount")
        if amount <= 0:
            raise ValidationError("order_amount must be positive", field="order_amount")
        return amount

    @staticmethod
    def _coupon_fields(dto: CouponCreate) -> dict:
        code = normalize_code(dto.code)
        if not COUPON_CODE_RE.match(code):
            raise ValidationError("Coupon code must be 3-32 letters, digits, '-' or '_'", field="code")
        if dto.value is None or dto.value <= 0:
            raise ValidationError("Coupon value must be positive", field="value")
        if dto.type == CouponType.PERCENTAGE and dto.value > 100:
            raise ValidationError("A percentage coupon cannot exceed 100", field="value")
        if dto.max_discount is not None:
            if dto.type != CouponType.PERCENTAGE:
                raise ValidationError("max_discount only applies to percentage coupons", field="max_discount")
            if dto.max_discount < 0:
                raise ValidationError("max_discount cannot be negative", field="max_discount")
        if dto.min_purchase is not None and dto.min_purchase < 0:
            raise ValidationError("min_purchase cannot be negative", field="min_purchase")
        if dto.usage_limit is not None and dto.usage_limit < 1:
            raise ValidationError("usage_limit must be at least 1", field="usage_limit")
        expiry_date = _naive_utc(dto.expiry_date)
        if expiry_date is not None and expiry_date <= utcnow():
            raise ValidationError("expiry_date must be in the future", field="expiry_date")

        return {
            "code": code,
            "type": dto.type,
            "value": to_money(dto.value),
            "max_discount": to_money(dto.max_discount) if dto.max_discount is not None else None,
            "min_purchase": to_money(dto.min_purchase or ZERO),
            "usage_limit": dto.usage_limit,
            "expiry_date": expiry_date,
            "one_time_use": dto.one_time_use,
            "description": dto.description,
        }

    async def _insert(self, coupon: Coupon) -> Coupon:
        code = coupon.code
        self.session.add(coupon)
        try:
            await self.session.commit()
        except IntegrityError:
            await self.session.rollback()
            raise ValidationError(f"Coupon code {code} is already taken", field="code")
        await self.session.refresh(coupon)
        return coupon

    async def create_affiliate_coupon(self, affiliate_id: uuid.UUID, dto: CouponCreate) -> Coupon:
        """Affiliate-authored coupons start pending and inactive until an admin approves them."""
        affiliate = await self._get_or_404(Affiliate, affiliate_id, "Affiliate")
        if affiliate.status != AffiliateStatus.ACTIVE:
            raise AffiliateNotActive(
                f"Only active affiliates can create coupons (status '{affiliate.status.value}')",
                status=affiliate.status.value,
            )

        fields = self._coupon_fields(dto)
        coupon = await self._insert(
            Coupon(
                affiliate_id=affiliate.id,
                approval_status=CouponApprovalStatus.PENDING,
                is_active=False,
                **fields,
            )
        )
        logging.info(f"Affiliate {affiliate.id} submitted coupon {coupon.code} for approval")
        return coupon

    async def create_admin_coupon(self, dto: AdminCouponCreate, actor_id: uuid.UUID | None = None) -> Coupon:
        fields = self._coupon_fields(dto)
        coupon = Coupon(
            id=uuid.uuid4(),
            affiliate_id=None,
            approval_status=CouponApprovalStatus.APPROVED,
            is_active=dto.is_active,
            reviewed_at=utcnow(),
            **fields,
        )
        record_audit(self.session, actor_id, "coupon_create", "coupon", coupon.id, {"code": coupon.code})
        coupon = await self._insert(coupon)
        logging.info(f"Admin coupon {coupon.code} created")
        return coupon

    async def update_coupon(
        self,
        coupon_id: uuid.UUID,
        dto: CouponCreate,
        actor_id: uuid.UUID | None = None,
        affiliate_id: uuid.UUID | None = None,
    ) -> Coupon:
        """
        Replaces the terms of a coupon.

        When affiliate_id is given the edit comes from the owning affiliate:
        the coupon goes back to pending review and out of circulation until an
        admin approves the new terms. Admin edits keep the approval status.
        Rejected coupons are final and cannot be edited.
        """
        coupon = await self.get_coupon(coupon_id)
        if affiliate_id is not None:
            if coupon.affiliate_id != affiliate_id:
                raise Forbidden("Only the owning affiliate can edit this coupon")
            affiliate = await self._get_or_404(Affiliate, affiliate_id, "Affiliate")
            if affiliate.status != AffiliateStatus.ACTIVE:
                raise AffiliateNotActive(
                    f"Only active affiliates can edit coupons (status '{affiliate.status.value}')",
                    status=affiliate.status.value,
                )

        seen = coupon.approval_status
        if seen == CouponApprovalStatus.REJECTED:
            raise InvalidTransition(f"Coupon {coupon.code} was rejected and cannot be edited", status=seen.value)

        fields = self._coupon_fields(dto)
        values = dict(fields)
        if affiliate_id is not None:
            values.update(approval_status=CouponApprovalStatus.PENDING, is_active=False, reviewed_at=None)

        previous_code = coupon.code
        try:
            await compare_and_set(self.session, Coupon, coupon.id, seen, values, column="approval_status")
        except IntegrityError:
            await self.session.rollback()
            raise ValidationError(f"Coupon code {fields['code']} is already taken", field="code")
        record_audit(
            self.session,
            actor_id,
            "coupon_update",
            "coupon",
            coupon_id,
            {"code": fields["code"], "previous_code": previous_code},
        )
        await self.session.commit()
        await self.session.refresh(coupon)

        logging.info(f"Coupon {previous_code} updated as {coupon.code} ({coupon.approval_status.value})")
        return coupon

    async def _review(self, coupon_id: uuid.UUID, action: str, actor_id: uuid.UUID | None) -> Coupon:
        coupon = await self.get_coupon(coupon_id)
        seen = coupon.approval_status
        target = COUPON_MACHINE.target(action, seen)

        await compare_and_set(
            self.session,
            Coupon,
            coupon.id,
            seen,
            {
                "approval_status": target,
                "is_active": target == CouponApprovalStatus.APPROVED,
                "reviewed_at": utcnow(),
            },
            column="approval_status",
        )
        record_audit(self.session, actor_id, f"coupon_{action}", "coupon", coupon.id, {"code": coupon.code})
        await self.session.commit()
        await self.session.refresh(coupon)

        logging.info(f"Coupon {coupon.code}: {seen.value} -> {target.value}")
        return coupon

    async def approve_coupon(self, coupon_id: uuid.UUID, actor_id: uuid.UUID | None = None) -> Coupon:
        return await self._review(coupon_id, "approve", actor_id)

    async def reject_coupon(self, coupon_id: uuid.UUID, actor_id: uuid.UUID | None = None) -> Coupon:
        return await self._review(coupon_id, "reject", actor_id)

    async def set_coupon_active(self, coupon_id: uuid.UUID, is_active: bool, actor_id: uuid.UUID | None = None) -> Coupon:
        coupon = await self.get_coupon(coupon_id)
        if coupon.approval_status != CouponApprovalStatus.APPROVED:
            raise InvalidTransition(
                f"Coupon {coupon.code} is {coupon.approval_status.value}, only approved coupons can be toggled",
                status=coupon.approval_status.value,
            )
        await compare_and_set(
            self.session,
            Coupon,
            coupon.id,
            CouponApprovalStatus.APPROVED,
            {"is_active": is_active},
            column="approval_status",
        )
        record_audit(self.session, actor_id, "coupon_toggle", "coupon", coupon.id, {"is_active": is_active})
        await self.session.commit()
        await self.session.refresh(coupon)
        return coupon

    async def delete_coupon(self, coupon_id: uuid.UUID, actor_id: uuid.UUID | None = None) -> None:
        coupon = await self.get_coupon(coupon_id)
        if coupon.used_count > 0:
            raise InvalidTransition(f"Coupon {coupon.code} has been redeemed and must be kept; deactivate it instead")

        res = await self.session.execute(
            delete(Coupon)
            .where(Coupon.id == coupon.id, Coupon.used_count == 0)
            .execution_options(synchronize_session=False)
        )
        if res.rowcount != 1:
            code = coupon.code
            await self.session.rollback()
            raise ConcurrentModification(f"Coupon {code} was redeemed while being deleted")
        record_audit(self.session, actor_id, "coupon_delete", "coupon", coupon.id, {"code": coupon.code})
        await self.session.commit()
        self.session.expunge(coupon)
        logging.info(f"Coupon {coupon.code} deleted")

    async def _usability_failure(
        self,
        coupon: Coupon,
        order_amount: Decimal,
        user_id: uuid.UUID | None,
        now: datetime,
    ) -> AffiliateError | None:
        if coupon.approval_status != CouponApprovalStatus.APPROVED:
            return CouponUnusable("not_approved", f"Coupon {coupon.code} is {coupon.approval_status.value}")
        if not coupon.is_active:
            return CouponUnusable("inactive", f"Coupon {coupon.code} is not active")
        if coupon.is_expired(now):
            return CouponUnusable("expired", f"Coupon {coupon.code} has expired")
        if coupon.is_exhausted():
            return CouponUnusable("usage_exhausted", f"Coupon {coupon.code} reached its usage limit")
        if coupon.affiliate_id is not None:
            # the owner's status right now, never a flag cached on the coupon
            affiliate = await self.session.get(Affiliate, coupon.affiliate_id, populate_existing=True)
            if affiliate is None or affiliate.status != AffiliateStatus.ACTIVE:
                return CouponUnusable("affiliate_not_active", f"Coupon {coupon.code} belongs to an inactive affiliate")
        if order_amount < coupon.min_purchase:
            return CouponUnusable(
                "below_min_purchase",
                f"Coupon {coupon.code} needs a purchase of at least {coupon.min_purchase}",
            )
        if coupon.one_time_use:
            if user_id is None:
                return ValidationError("user_id is required for one-time-use coupons", field="user_id")
            used = await self.session.scalar(
                select(func.count())
                .select_from(CouponRedemption)
                .where(CouponRedemption.coupon_id == coupon.id, CouponRedemption.one_time_key == user_id)
            )
            if used:
                return CouponUnusable("already_used", f"Coupon {coupon.code} was already used by this customer")
        return None

    async def validate(self, code: str, order_amount, user_id: uuid.UUID | None = None) -> CouponCheck:
        """Read-only preview for the pricing service; never consumes a use."""
        amount = self._order_amount(order_amount)
        coupon = await self.get_by_code(code)
        if coupon is None:
            return CouponCheck(usable=False, code=normalize_code(code), discount=ZERO, reason="not_found")

        failure = await self._usability_failure(coupon, amount, user_id, utcnow())
        if failure is not None:
            return CouponCheck(
                usable=False,
                code=coupon.code,
                discount=ZERO,
                reason=getattr(failure, "code", failure.kind),
            )
        return CouponCheck(usable=True, code=coupon.code, discount=compute_discount(coupon, amount))

    def _result(self, coupon: Coupon, order_amount: Decimal, discount: Decimal) -> RedemptionResult:
        remaining = None
        if coupon.usage_limit is not None:
            remaining = max(coupon.usage_limit - coupon.used_count, 0)
        return RedemptionResult(
            code=coupon.code,
            discount=discount,
            final_amount=to_money(order_amount - discount),
            used_count=coupon.used_count,
            remaining_uses=remaining,
        )

    async def _redemption_for_order(self, coupon_id: uuid.UUID, order_id: str) -> CouponRedemption | None:
        res = await self.session.execute(
            select(CouponRedemption).where(
                CouponRedemption.coupon_id == coupon_id, CouponRedemption.order_id == order_id
            )
        )
        return res.scalar_one_or_none()

    async def redeem(
        self,
        code: str,
        order_amount,
        user_id: uuid.UUID | None = None,
        order_id: str | None = None,
    ) -> RedemptionResult:
        """
        Consumes one use of the coupon for an order.

        Usability is re-evaluated at call time, including the owning
        affiliate's current status. Replaying the same order_id returns the
        original redemption without consuming another use.
        """
        amount = self._order_amount(order_amount)
        coupon = await self.get_by_code(code)
        if coupon is None:
            raise NotFound(f"Coupon {normalize_code(code)} not found")

        if order_id:
            previous = await self._redemption_for_order(coupon.id, order_id)
            if previous is not None:
                return self._result(coupon, previous.order_amount, previous.discount)

        now = utcnow()
        failure = await self._usability_failure(coupon, amount, user_id, now)
        if failure is not None:
            raise failure

        discount = compute_discount(coupon, amount)
        # the gates above, repeated in the UPDATE so a concurrent suspension or edit cannot slip in between
        conditions = [
            Coupon.id == coupon.id,
            Coupon.used_count == coupon.used_count,
            Coupon.approval_status == CouponApprovalStatus.APPROVED,
            Coupon.is_active.is_(True),
            or_(Coupon.expiry_date.is_(None), Coupon.expiry_date > now),
            or_(Coupon.usage_limit.is_(None), Coupon.used_count < Coupon.usage_limit),
            or_(
                Coupon.affiliate_id.is_(None),
                exists().where(Affiliate.id == Coupon.affiliate_id, Affiliate.status == AffiliateStatus.ACTIVE),
            ),
        ]
        coupon_id, coupon_code = coupon.id, coupon.code
        res = await self.session.execute(
            update(Coupon)
            .where(*conditions)
            .values(used_count=Coupon.used_count + 1)
            .execution_options(synchronize_session=False)
        )
        if res.rowcount != 1:
            await self.session.rollback()
            raise ConcurrentModification(f"Coupon {coupon_code} changed during redemption, retry with fresh state")

        self.session.add(
            CouponRedemption(
                coupon_id=coupon_id,
                order_id=order_id,
                user_id=user_id,
                one_time_key=user_id if coupon.one_time_use else None,
                order_amount=amount,
                discount=discount,
            )
        )
        try:
            await self.session.commit()
        except IntegrityError:
            # rollback expires the coupon; only the captured id and code are safe to use
            await self.session.rollback()
            previous = await self._redemption_for_order(coupon_id, order_id) if order_id else None
            if previous is not None:
                coupon = await self.get_by_code(coupon_code)
                return self._result(coupon, previous.order_amount, previous.discount)
            raise CouponUnusable("already_used", f"Coupon {coupon_code} was already used by this customer")

        await self.session.refresh(coupon)
        logging.info(f"Coupon {coupon.code} redeemed for order {order_id}: discount {discount}, used {coupon.used_count}")
        return self._result(coupon, amount, discount)
