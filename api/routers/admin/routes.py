import uuid

from fastapi import APIRouter, Depends, Query

from api.crud.affiliate import AffiliateService
from api.crud.affiliate.schema import AffiliateRead, AffiliateReject
from api.crud.commission import CommissionLedger
from api.crud.commission.schema import CommissionRead, CommissionReverse
from api.crud.coupon import CouponService
from api.crud.coupon.schema import AdminCouponCreate, CouponActiveUpdate, CouponCreate, CouponRead
from api.crud.projection import ProjectionService
from api.crud.projection.schema import AffiliateStatistics, Analytics, Page
from api.crud.withdraw import WithdrawService
from api.crud.withdraw.schema import WithdrawRead, WithdrawReject
from api.models import AffiliateStatus, CommissionStatus, CouponApprovalStatus, WithdrawStatus
from api.routers.deps import (
    get_affiliate_service,
    get_commission_ledger,
    get_coupon_service,
    get_projection_service,
    get_withdraw_service,
)
from api.routers.responses import Ok
from api.security import Identity, require_admin

router = APIRouter()


# --- affiliates ---

@router.get("/affiliates", response_model=Ok[Page[AffiliateRead]], summary="List affiliates")
async def list_affiliates(
    status: AffiliateStatus | None = Query(None),
    search: str | None = Query(None, description="Part of a referral code"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    projection: ProjectionService = Depends(get_projection_service),
):
    return Ok(value=await projection.list_affiliates(status, search, page, limit))


@router.get("/affiliates/{affiliate_id}/statistics", response_model=Ok[AffiliateStatistics])
async def get_affiliate_statistics(
    affiliate_id: uuid.UUID,
    projection: ProjectionService = Depends(get_projection_service),
):
    return Ok(value=await projection.get_statistics(affiliate_id))


@router.patch("/affiliates/{affiliate_id}/approve", response_model=Ok[AffiliateRead], summary="Approve or reinstate")
async def approve_affiliate(
    affiliate_id: uuid.UUID,
    admin: Identity = Depends(require_admin),
    service: AffiliateService = Depends(get_affiliate_service),
):
    return Ok(value=AffiliateRead.model_validate(await service.approve(affiliate_id, admin.user_id)))


@router.patch("/affiliates/{affiliate_id}/reject", response_model=Ok[AffiliateRead], summary="Reject a registration")
async def reject_affiliate(
    affiliate_id: uuid.UUID,
    dto: AffiliateReject,
    admin: Identity = Depends(require_admin),
    service: AffiliateService = Depends(get_affiliate_service),
):
    return Ok(value=AffiliateRead.model_validate(await service.reject(affiliate_id, dto.reason, admin.user_id)))


@router.patch("/affiliates/{affiliate_id}/suspend", response_model=Ok[AffiliateRead], summary="Suspend an affiliate")
async def suspend_affiliate(
    affiliate_id: uuid.UUID,
    admin: Identity = Depends(require_admin),
    service: AffiliateService = Depends(get_affiliate_service),
):
    return Ok(value=AffiliateRead.model_validate(await service.suspend(affiliate_id, admin.user_id)))


@router.get("/analytics", response_model=Ok[Analytics], summary="Counts and sums by status")
async def get_analytics(projection: ProjectionService = Depends(get_projection_service)):
    return Ok(value=await projection.get_analytics())


# --- coupons ---

@router.get("/coupons", response_model=Ok[Page[CouponRead]], summary="List coupons")
async def list_coupons(
    affiliate_id: uuid.UUID | None = Query(None),
    approval_status: CouponApprovalStatus | None = Query(None),
    affiliate_only: bool = Query(False, description="Only coupons authored by affiliates"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    projection: ProjectionService = Depends(get_projection_service),
):
    return Ok(value=await projection.list_coupons(affiliate_id, approval_status, affiliate_only, page, limit))


@router.post("/coupons", response_model=Ok[CouponRead], status_code=201, summary="Create a pre-approved coupon")
async def create_coupon(
    dto: AdminCouponCreate,
    admin: Identity = Depends(require_admin),
    service: CouponService = Depends(get_coupon_service),
):
    return Ok(value=CouponRead.model_validate(await service.create_admin_coupon(dto, admin.user_id)))


@router.get("/coupons/{coupon_id}", response_model=Ok[CouponRead], summary="Coupon details")
async def get_coupon(
    coupon_id: uuid.UUID,
    service: CouponService = Depends(get_coupon_service),
):
    return Ok(value=CouponRead.model_validate(await service.get_coupon(coupon_id)))


@router.put("/coupons/{coupon_id}", response_model=Ok[CouponRead], summary="Edit coupon terms")
async def update_coupon(
    coupon_id: uuid.UUID,
    dto: CouponCreate,
    admin: Identity = Depends(require_admin),
    service: CouponService = Depends(get_coupon_service),
):
    return Ok(value=CouponRead.model_validate(await service.update_coupon(coupon_id, dto, admin.user_id)))


@router.patch("/coupons/{coupon_id}/approve", response_model=Ok[CouponRead])
async def approve_coupon(
    coupon_id: uuid.UUID,
    admin: Identity = Depends(require_admin),
    service: CouponService = Depends(get_coupon_service),
):
    return Ok(value=CouponRead.model_validate(await service.approve_coupon(coupon_id, admin.user_id)))


@router.patch("/coupons/{coupon_id}/reject", response_model=Ok[CouponRead])
async def reject_coupon(
    coupon_id: uuid.UUID,
    admin: Identity = Depends(require_admin),
    service: CouponService = Depends(get_coupon_service),
):
    return Ok(value=CouponRead.model_validate(await service.reject_coupon(coupon_id, admin.user_id)))


@router.patch("/coupons/{coupon_id}/active", response_model=Ok[CouponRead])
async def set_coupon_active(
    coupon_id: uuid.UUID,
    dto: CouponActiveUpdate,
    admin: Identity = Depends(require_admin),
    service: CouponService = Depends(get_coupon_service),
):
    coupon = await service.set_coupon_active(coupon_id, dto.is_active, admin.user_id)
    return Ok(value=CouponRead.model_validate(coupon))


@router.delete("/coupons/{coupon_id}", response_model=Ok[None])
async def delete_coupon(
    coupon_id: uuid.UUID,
    admin: Identity = Depends(require_admin),
    service: CouponService = Depends(get_coupon_service),
):
    await service.delete_coupon(coupon_id, admin.user_id)
    return Ok(value=None)


# --- commissions ---

@router.get("/commissions", response_model=Ok[Page[CommissionRead]], summary="Commission ledger")
async def list_commissions(
    affiliate_id: uuid.UUID | None = Query(None),
    status: CommissionStatus | None = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    projection: ProjectionService = Depends(get_projection_service),
):
    return Ok(value=await projection.list_commissions(affiliate_id, status, page, limit))


@router.patch("/commissions/{entry_id}/approve", response_model=Ok[CommissionRead])
async def approve_commission(
    entry_id: uuid.UUID,
    admin: Identity = Depends(require_admin),
    ledger: CommissionLedger = Depends(get_commission_ledger),
):
    return Ok(value=CommissionRead.model_validate(await ledger.approve_commission(entry_id, admin.user_id)))


@router.patch("/commissions/{entry_id}/cancel", response_model=Ok[CommissionRead])
async def cancel_commission(
    entry_id: uuid.UUID,
    admin: Identity = Depends(require_admin),
    ledger: CommissionLedger = Depends(get_commission_ledger),
):
    return Ok(value=CommissionRead.model_validate(await ledger.cancel_commission(entry_id, admin.user_id)))


@router.post("/commissions/{entry_id}/reverse", response_model=Ok[CommissionRead], status_code=201)
async def reverse_commission(
    entry_id: uuid.UUID,
    dto: CommissionReverse,
    admin: Identity = Depends(require_admin),
    ledger: CommissionLedger = Depends(get_commission_ledger),
):
    reversal = await ledger.reverse_commission(entry_id, dto.reason, admin.user_id)
    return Ok(value=CommissionRead.model_validate(reversal))


# --- withdrawals ---

@router.get("/withdrawals", response_model=Ok[Page[WithdrawRead]], summary="Withdraw requests")
async def list_withdrawals(
    affiliate_id: uuid.UUID | None = Query(None),
    status: WithdrawStatus | None = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    projection: ProjectionService = Depends(get_projection_service),
):
    return Ok(value=await projection.list_withdrawals(affiliate_id, status, page, limit))


@router.patch("/withdrawals/{request_id}/approve", response_model=Ok[WithdrawRead])
async def approve_withdrawal(
    request_id: uuid.UUID,
    admin: Identity = Depends(require_admin),
    service: WithdrawService = Depends(get_withdraw_service),
):
    return Ok(value=WithdrawRead.model_validate(await service.approve_request(request_id, admin.user_id)))


@router.patch("/withdrawals/{request_id}/reject", response_model=Ok[WithdrawRead])
async def reject_withdrawal(
    request_id: uuid.UUID,
    dto: WithdrawReject,
    admin: Identity = Depends(require_admin),
    service: WithdrawService = Depends(get_withdraw_service),
):
    return Ok(value=WithdrawRead.model_validate(await service.reject_request(request_id, dto.reason, admin.user_id)))


@router.patch("/withdrawals/{request_id}/paid", response_model=Ok[WithdrawRead], summary="Confirm the transfer")
async def mark_withdrawal_paid(
    request_id: uuid.UUID,
    admin: Identity = Depends(require_admin),
    service: WithdrawService = Depends(get_withdraw_service),
):
    return Ok(value=WithdrawRead.model_validate(await service.mark_paid(request_id, admin.user_id)))
