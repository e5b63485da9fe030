import uuid

from fastapi import APIRouter, Depends, Query

from api.crud.affiliate import AffiliateService
from api.crud.affiliate.schema import AffiliateRead, AffiliateRegister, PaymentDetailsUpdate
from api.crud.commission.schema import CommissionRead
from api.crud.coupon import CouponService
from api.crud.coupon.schema import CouponCreate, CouponRead
from api.crud.projection import ProjectionService
from api.crud.projection.schema import AffiliateStatistics, AffiliateView, Page
from api.crud.withdraw import WithdrawService
from api.crud.withdraw.schema import WithdrawCreate, WithdrawRead
from api.models import Affiliate, CommissionStatus, CouponApprovalStatus, WithdrawStatus
from api.routers.deps import (
    get_affiliate_service,
    get_coupon_service,
    get_own_affiliate,
    get_projection_service,
    get_withdraw_service,
)
from api.routers.responses import Ok
from api.security import Identity, get_identity

router = APIRouter()


@router.post("/register", response_model=Ok[AffiliateRead], status_code=201, summary="Register as an affiliate")
async def register(
    dto: AffiliateRegister,
    identity: Identity = Depends(get_identity),
    service: AffiliateService = Depends(get_affiliate_service),
):
    affiliate = await service.register(identity.user_id, dto)
    return Ok(value=AffiliateRead.model_validate(affiliate))


@router.get("/me", response_model=Ok[AffiliateView | None], summary="Current affiliate state of the caller")
async def get_view(
    identity: Identity = Depends(get_identity),
    projection: ProjectionService = Depends(get_projection_service),
):
    return Ok(value=await projection.get_affiliate_view(identity.user_id))


@router.get("/me/statistics", response_model=Ok[AffiliateStatistics], summary="Balances and counters")
async def get_statistics(
    affiliate: Affiliate = Depends(get_own_affiliate),
    projection: ProjectionService = Depends(get_projection_service),
):
    return Ok(value=await projection.get_statistics(affiliate.id))


@router.delete("/me", response_model=Ok[None], summary="Cancel a pending registration")
async def cancel(
    affiliate: Affiliate = Depends(get_own_affiliate),
    identity: Identity = Depends(get_identity),
    service: AffiliateService = Depends(get_affiliate_service),
):
    await service.cancel(affiliate.id, identity.user_id)
    return Ok(value=None)


@router.put("/me/payment-details", response_model=Ok[AffiliateRead], summary="Change payout method")
async def update_payment_details(
    dto: PaymentDetailsUpdate,
    affiliate: Affiliate = Depends(get_own_affiliate),
    identity: Identity = Depends(get_identity),
    service: AffiliateService = Depends(get_affiliate_service),
):
    affiliate = await service.update_payment_details(affiliate.id, identity.user_id, dto)
    return Ok(value=AffiliateRead.model_validate(affiliate))


@router.get("/me/commissions", response_model=Ok[Page[CommissionRead]], summary="Own commission ledger")
async def list_commissions(
    status: CommissionStatus | None = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    affiliate: Affiliate = Depends(get_own_affiliate),
    projection: ProjectionService = Depends(get_projection_service),
):
    return Ok(value=await projection.list_commissions(affiliate.id, status, page, limit))


@router.get("/me/coupons", response_model=Ok[Page[CouponRead]], summary="Own coupons")
async def list_coupons(
    approval_status: CouponApprovalStatus | None = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    affiliate: Affiliate = Depends(get_own_affiliate),
    projection: ProjectionService = Depends(get_projection_service),
):
    return Ok(value=await projection.list_coupons(affiliate.id, approval_status, page=page, limit=limit))


@router.post("/me/coupons", response_model=Ok[CouponRead], status_code=201, summary="Submit a coupon for approval")
async def create_coupon(
    dto: CouponCreate,
    affiliate: Affiliate = Depends(get_own_affiliate),
    service: CouponService = Depends(get_coupon_service),
):
    coupon = await service.create_affiliate_coupon(affiliate.id, dto)
    return Ok(value=CouponRead.model_validate(coupon))


@router.put("/me/coupons/{coupon_id}", response_model=Ok[CouponRead], summary="Edit own coupon, resubmitting it for approval")
async def update_coupon(
    coupon_id: uuid.UUID,
    dto: CouponCreate,
    affiliate: Affiliate = Depends(get_own_affiliate),
    service: CouponService = Depends(get_coupon_service),
):
    coupon = await service.update_coupon(coupon_id, dto, affiliate.user_id, affiliate_id=affiliate.id)
    return Ok(value=CouponRead.model_validate(coupon))


@router.get("/me/withdraw-requests", response_model=Ok[Page[WithdrawRead]], summary="Own withdraw requests")
async def list_withdraw_requests(
    status: WithdrawStatus | None = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    affiliate: Affiliate = Depends(get_own_affiliate),
    projection: ProjectionService = Depends(get_projection_service),
):
    return Ok(value=await projection.list_withdrawals(affiliate.id, status, page, limit))


@router.post("/me/withdraw-requests", response_model=Ok[WithdrawRead], status_code=201, summary="Request a withdrawal")
async def create_withdraw_request(
    dto: WithdrawCreate,
    affiliate: Affiliate = Depends(get_own_affiliate),
    identity: Identity = Depends(get_identity),
    service: WithdrawService = Depends(get_withdraw_service),
):
    request = await service.create_request(
        affiliate.id,
        dto.amount,
        payment_method=dto.payment_method,
        payment_details=dto.payment_details,
        requesting_user_id=identity.user_id,
    )
    return Ok(value=WithdrawRead.model_validate(request))
