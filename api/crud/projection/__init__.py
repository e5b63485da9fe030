import logging
import math
import uuid

from pydantic import BaseModel
from redis.exceptions import RedisError
from sqlalchemy import Select, func, or_, select

from api.crud.affiliate.schema import AffiliateRead
from api.crud.base import CoreService
from api.crud.commission import CommissionLedger
from api.crud.commission.schema import CommissionRead
from api.crud.coupon.schema import CouponRead
from api.crud.errors import ValidationError
from api.crud.projection.schema import AffiliateStatistics, AffiliateView, Analytics, Page, StatusTotal
from api.crud.withdraw.schema import WithdrawRead
from api.models import (
    Affiliate,
    AffiliateStatus,
    CommissionEntry,
    CommissionStatus,
    Coupon,
    CouponApprovalStatus,
    WithdrawRequest,
    WithdrawStatus,
)
from api.models.base import utcnow
from utils.money import to_money

MAX_PAGE_SIZE = 100


class ProjectionService(CoreService):
    """Read side: views, dashboards and paginated listings. Never writes."""

    async def _paginate(self, stmt: Select, page: int, limit: int, schema: type[BaseModel]) -> Page:
        if page < 1:
            raise ValidationError("page starts at 1", field="page")
        if limit < 1 or limit > MAX_PAGE_SIZE:
            raise ValidationError(f"limit must be between 1 and {MAX_PAGE_SIZE}", field="limit")

        total = await self.session.scalar(select(func.count()).select_from(stmt.order_by(None).subquery()))
        res = await self.session.execute(
            stmt.offset((page - 1) * limit).limit(limit).execution_options(populate_existing=True)
        )
        return Page(
            items=[schema.model_validate(row) for row in res.scalars().all()],
            page=page,
            limit=limit,
            total=total or 0,
            pages=math.ceil(total / limit) if total else 0,
        )

    async def _current_affiliate(self, user_id: uuid.UUID) -> Affiliate | None:
        # the live account wins; otherwise the most recent rejection is what the user sees
        res = await self.session.execute(
            select(Affiliate)
            .where(Affiliate.user_id == user_id)
            .order_by((Affiliate.status == AffiliateStatus.REJECTED).asc(), Affiliate.created_at.desc())
            .limit(1)
            .execution_options(populate_existing=True)
        )
        return res.scalar_one_or_none()

    async def get_affiliate_view(self, user_id: uuid.UUID) -> AffiliateView | None:
        """
        The one answer to "what is this user's affiliate state".

        Served from the cache when present; every mutating service drops the
        cached copy after its commit, so a miss always folds fresh data.
        """
        if self.cache is not None:
            try:
                cached = await self.cache.get_view(user_id)
            except RedisError as e:
                logging.warning(f"Affiliate view cache unavailable for user {user_id}: {e}")
                cached = None
            if cached:
                return AffiliateView.model_validate(cached)

        affiliate = await self._current_affiliate(user_id)
        if affiliate is None:
            return None

        view = AffiliateView(
            is_affiliate=affiliate.status == AffiliateStatus.ACTIVE,
            affiliate=AffiliateRead.model_validate(affiliate),
            balances=await CommissionLedger(self.session).compute_balances(affiliate.id),
        )
        if self.cache is not None:
            try:
                await self.cache.set_view(user_id, view.model_dump(mode="json"))
            except RedisError as e:
                logging.warning(f"Could not cache affiliate view for user {user_id}: {e}")
        return view

    async def _count_by(self, column, *where) -> dict[str, int]:
        res = await self.session.execute(select(column, func.count()).where(*where).group_by(column))
        return {status.value: count for status, count in res.all()}

    async def _totals_by(self, column, amount, *where) -> dict[str, StatusTotal]:
        res = await self.session.execute(
            select(column, func.count(), func.coalesce(func.sum(amount), 0)).where(*where).group_by(column)
        )
        return {status.value: StatusTotal(count=count, amount=to_money(total)) for status, count, total in res.all()}

    async def get_statistics(self, affiliate_id: uuid.UUID) -> AffiliateStatistics:
        affiliate = await self._get_or_404(Affiliate, affiliate_id, "Affiliate")
        coupons = await self._count_by(Coupon.approval_status, Coupon.affiliate_id == affiliate.id)
        active_coupons = await self.session.scalar(
            select(func.count()).select_from(Coupon).where(
                Coupon.affiliate_id == affiliate.id,
                Coupon.approval_status == CouponApprovalStatus.APPROVED,
                Coupon.is_active.is_(True),
            )
        )
        redemptions = await self.session.scalar(
            select(func.coalesce(func.sum(Coupon.used_count), 0)).where(Coupon.affiliate_id == affiliate.id)
        )
        return AffiliateStatistics(
            affiliate=AffiliateRead.model_validate(affiliate),
            balances=await CommissionLedger(self.session).compute_balances(affiliate.id),
            coupons=coupons,
            active_coupons=active_coupons or 0,
            coupon_redemptions=redemptions or 0,
            withdrawals=await self._count_by(WithdrawRequest.status, WithdrawRequest.affiliate_id == affiliate.id),
        )

    async def get_analytics(self) -> Analytics:
        """Counts and sums by status for the admin dashboard."""
        return Analytics(
            affiliates=await self._count_by(Affiliate.status),
            coupons=await self._count_by(Coupon.approval_status),
            commissions=await self._totals_by(CommissionEntry.status, CommissionEntry.amount),
            withdrawals=await self._totals_by(WithdrawRequest.status, WithdrawRequest.amount),
        )

    async def list_affiliates(
        self,
        status: AffiliateStatus | None = None,
        search: str | None = None,
        page: int = 1,
        limit: int = 20,
    ) -> Page:
        stmt = select(Affiliate).order_by(Affiliate.created_at.desc())
        if status is not None:
            stmt = stmt.where(Affiliate.status == status)
        if search:
            stmt = stmt.where(Affiliate.referral_code.ilike(f"%{search.strip()}%"))
        return await self._paginate(stmt, page, limit, AffiliateRead)

    async def list_coupons(
        self,
        affiliate_id: uuid.UUID | None = None,
        approval_status: CouponApprovalStatus | None = None,
        affiliate_only: bool = False,
        page: int = 1,
        limit: int = 20,
    ) -> Page:
        """`affiliate_only` with `approval_status=pending` is the admin review queue."""
        stmt = select(Coupon).order_by(Coupon.created_at.desc())
        if affiliate_id is not None:
            stmt = stmt.where(Coupon.affiliate_id == affiliate_id)
        if affiliate_only:
            stmt = stmt.where(Coupon.affiliate_id.is_not(None))
        if approval_status is not None:
            stmt = stmt.where(Coupon.approval_status == approval_status)
        return await self._paginate(stmt, page, limit, CouponRead)

    async def list_public_coupons(self, page: int = 1, limit: int = 20) -> Page:
        # expiry is evaluated here, at listing time; nothing sweeps expired coupons
        now = utcnow()
        stmt = (
            select(Coupon)
            .outerjoin(Affiliate, Affiliate.id == Coupon.affiliate_id)
            .where(
                Coupon.approval_status == CouponApprovalStatus.APPROVED,
                Coupon.is_active.is_(True),
                or_(Coupon.expiry_date.is_(None), Coupon.expiry_date > now),
                or_(Coupon.usage_limit.is_(None), Coupon.used_count < Coupon.usage_limit),
                or_(Coupon.affiliate_id.is_(None), Affiliate.status == AffiliateStatus.ACTIVE),
            )
            .order_by(Coupon.created_at.desc())
        )
        return await self._paginate(stmt, page, limit, CouponRead)

    async def list_commissions(
        self,
        affiliate_id: uuid.UUID | None = None,
        status: CommissionStatus | None = None,
        page: int = 1,
        limit: int = 20,
    ) -> Page:
        stmt = select(CommissionEntry).order_by(CommissionEntry.created_at.desc())
        if affiliate_id is not None:
            stmt = stmt.where(CommissionEntry.affiliate_id == affiliate_id)
        if status is not None:
            stmt = stmt.where(CommissionEntry.status == status)
        return await self._paginate(stmt, page, limit, CommissionRead)

    async def list_withdrawals(
        self,
        affiliate_id: uuid.UUID | None = None,
        status: WithdrawStatus | None = None,
        page: int = 1,
        limit: int = 20,
    ) -> Page:
        stmt = select(WithdrawRequest).order_by(WithdrawRequest.created_at.desc())
        if affiliate_id is not None:
            stmt = stmt.where(WithdrawRequest.affiliate_id == affiliate_id)
        if status is not None:
            stmt = stmt.where(WithdrawRequest.status == status)
        return await self._paginate(stmt, page, limit, WithdrawRead)
