from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from api.crud.affiliate import AffiliateService
from api.crud.base import ViewCache
from api.crud.commission import CommissionLedger
from api.crud.coupon import CouponService
from api.crud.errors import NotFound
from api.crud.projection import ProjectionService
from api.crud.withdraw import PayoutDispatcher, WithdrawService
from api.database import get_async_session
from api.models import Affiliate
from api.security import Identity, get_identity
from services.bground.tasks import get_payout_dispatcher
from services.redis import get_view_cache


def get_affiliate_service(
    session: AsyncSession = Depends(get_async_session),
    cache: ViewCache = Depends(get_view_cache),
) -> AffiliateService:
    return AffiliateService(session, cache)


def get_coupon_service(
    session: AsyncSession = Depends(get_async_session),
    cache: ViewCache = Depends(get_view_cache),
) -> CouponService:
    return CouponService(session, cache)


def get_commission_ledger(
    session: AsyncSession = Depends(get_async_session),
    cache: ViewCache = Depends(get_view_cache),
) -> CommissionLedger:
    return CommissionLedger(session, cache)


def get_withdraw_service(
    session: AsyncSession = Depends(get_async_session),
    cache: ViewCache = Depends(get_view_cache),
    dispatcher: PayoutDispatcher = Depends(get_payout_dispatcher),
) -> WithdrawService:
    return WithdrawService(session, cache, on_approved=dispatcher)


def get_projection_service(
    session: AsyncSession = Depends(get_async_session),
    cache: ViewCache = Depends(get_view_cache),
) -> ProjectionService:
    return ProjectionService(session, cache)


async def get_own_affiliate(
    identity: Identity = Depends(get_identity),
    service: AffiliateService = Depends(get_affiliate_service),
) -> Affiliate:
    affiliate = await service.get_live_by_user(identity.user_id)
    if affiliate is None:
        raise NotFound(f"User {identity.user_id} has no affiliate account")
    return affiliate
