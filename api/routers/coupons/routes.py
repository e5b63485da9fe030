from fastapi import APIRouter, Depends, Query

from api.crud.coupon import CouponService, normalize_code
from api.crud.coupon.schema import CouponCheck, CouponRead, CouponRedeem, CouponValidate, RedemptionResult
from api.crud.errors import NotFound
from api.crud.projection import ProjectionService
from api.crud.projection.schema import Page
from api.routers.deps import get_coupon_service, get_projection_service
from api.routers.responses import Ok

router = APIRouter()


@router.post("/redeem", response_model=Ok[RedemptionResult], summary="Consume one use of a coupon for an order")
async def redeem_coupon(
    dto: CouponRedeem,
    service: CouponService = Depends(get_coupon_service),
):
    return Ok(value=await service.redeem(dto.code, dto.order_amount, dto.user_id, dto.order_id))


@router.post("/validate", response_model=Ok[CouponCheck], summary="Preview the discount without using the coupon")
async def validate_coupon(
    dto: CouponValidate,
    service: CouponService = Depends(get_coupon_service),
):
    return Ok(value=await service.validate(dto.code, dto.order_amount, dto.user_id))


@router.get("/code/{code}", response_model=Ok[CouponRead], summary="Look a coupon up by its code")
async def get_coupon_by_code(
    code: str,
    service: CouponService = Depends(get_coupon_service),
):
    coupon = await service.get_by_code(code)
    if coupon is None:
        raise NotFound(f"Coupon {normalize_code(code)} not found")
    return Ok(value=CouponRead.model_validate(coupon))


@router.get("/active", response_model=Ok[Page[CouponRead]], summary="Coupons usable right now")
async def list_active_coupons(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    projection: ProjectionService = Depends(get_projection_service),
):
    return Ok(value=await projection.list_public_coupons(page, limit))
