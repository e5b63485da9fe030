import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy import func, select, update

from api.crud.affiliate import AffiliateService
from api.crud.coupon import CouponService, compute_discount
from api.crud.coupon.schema import AdminCouponCreate, CouponCreate
from api.crud.errors import (
    AffiliateNotActive,
    ConcurrentModification,
    CouponUnusable,
    Forbidden,
    InvalidTransition,
    NotFound,
    ValidationError,
)
from api.models import Coupon, CouponApprovalStatus, CouponRedemption, CouponType
from api.models.base import utcnow


def percentage(code="CODE10", value="10", **extra) -> CouponCreate:
    return CouponCreate(code=code, type=CouponType.PERCENTAGE, value=Decimal(value), **extra)


def fixed(code="FLAT50", value="50", **extra) -> CouponCreate:
    return CouponCreate(code=code, type=CouponType.FIXED, value=Decimal(value), **extra)


@pytest.fixture
def approved_coupon(active_affiliate, coupons):
    async def _approved(dto: CouponCreate):
        affiliate = await active_affiliate()
        coupon = await coupons.create_affiliate_coupon(affiliate.id, dto)
        coupon = await coupons.approve_coupon(coupon.id)
        return affiliate, coupon

    return _approved


async def test_coupon_lifecycle_and_usage_limit(active_affiliate, coupons):
    affiliate = await active_affiliate()
    coupon = await coupons.create_affiliate_coupon(affiliate.id, percentage(usage_limit=5))
    assert coupon.approval_status == CouponApprovalStatus.PENDING
    assert coupon.is_active is False

    with pytest.raises(CouponUnusable) as exc:
        await coupons.redeem("CODE10", 1000)
    assert exc.value.code == "not_approved"

    coupon = await coupons.approve_coupon(coupon.id)
    assert coupon.approval_status == CouponApprovalStatus.APPROVED
    assert coupon.is_active is True

    result = await coupons.redeem("code10", 1000)
    assert result.usable is True
    assert result.discount == Decimal("100")
    assert result.final_amount == Decimal("900")

    for _ in range(4):
        await coupons.redeem("CODE10", 1000)

    with pytest.raises(InvalidTransition) as exc:
        await coupons.redeem("CODE10", 1000)
    assert exc.value.code == "usage_exhausted"
    assert (await coupons.get_coupon(coupon.id)).used_count == 5


async def test_suspended_affiliate_coupon_cannot_be_redeemed(approved_coupon, affiliates, coupons):
    affiliate, coupon = await approved_coupon(percentage())
    assert (await coupons.redeem(coupon.code, 200)).discount == Decimal("20")

    await affiliates.suspend(affiliate.id)

    with pytest.raises(CouponUnusable) as exc:
        await coupons.redeem(coupon.code, 200)
    assert exc.value.code == "affiliate_not_active"
    check = await coupons.validate(coupon.code, 200)
    assert check.usable is False
    assert check.reason == "affiliate_not_active"

    # reinstated affiliate makes the same coupon usable again
    await affiliates.approve(affiliate.id)
    assert (await coupons.redeem(coupon.code, 200)).discount == Decimal("20")


async def test_suspension_during_redemption_consumes_nothing(approved_coupon, coupons, session_maker, monkeypatch):
    affiliate, coupon = await approved_coupon(percentage(code="RACE10"))
    affiliate_id, coupon_id = affiliate.id, coupon.id
    original = CouponService._usability_failure
    raced = []

    async def racing_check(self, *args):
        failure = await original(self, *args)
        if not raced:
            raced.append(True)
            # the owner is suspended between the usability check and the counter update
            async with session_maker() as other:
                await AffiliateService(other).suspend(affiliate_id)
        return failure

    monkeypatch.setattr(CouponService, "_usability_failure", racing_check)

    with pytest.raises(ConcurrentModification):
        await coupons.redeem("RACE10", 1000, order_id="order-race")

    assert (await coupons.get_coupon(coupon_id)).used_count == 0
    redemptions = await coupons.session.scalar(
        select(func.count()).select_from(CouponRedemption).where(CouponRedemption.coupon_id == coupon_id)
    )
    assert redemptions == 0
    with pytest.raises(CouponUnusable) as exc:
        await coupons.redeem("RACE10", 1000, order_id="order-race")
    assert exc.value.code == "affiliate_not_active"


async def test_only_active_affiliates_create_coupons(register, coupons):
    affiliate = await register()
    with pytest.raises(AffiliateNotActive):
        await coupons.create_affiliate_coupon(affiliate.id, percentage())


@pytest.mark.parametrize(
    "dto, field",
    [
        (percentage(value="0"), "value"),
        (percentage(value="120"), "value"),
        (fixed(max_discount=Decimal("10")), "max_discount"),
        (percentage(usage_limit=0), "usage_limit"),
        (percentage(min_purchase=Decimal("-1")), "min_purchase"),
        (percentage(code="no spaces"), "code"),
        (percentage(code="AB"), "code"),
        (percentage(expiry_date=datetime(2001, 1, 1)), "expiry_date"),
    ],
)
async def test_coupon_terms_are_validated(active_affiliate, coupons, dto, field):
    affiliate = await active_affiliate()
    with pytest.raises(ValidationError) as exc:
        await coupons.create_affiliate_coupon(affiliate.id, dto)
    assert exc.value.field == field


async def test_code_is_stored_upper_case_and_unique(active_affiliate, coupons):
    affiliate = await active_affiliate()
    coupon = await coupons.create_affiliate_coupon(affiliate.id, percentage(code="summer-24"))
    assert coupon.code == "SUMMER-24"

    with pytest.raises(ValidationError) as exc:
        await coupons.create_affiliate_coupon(affiliate.id, percentage(code="Summer-24"))
    assert exc.value.field == "code"


async def test_aware_expiry_is_stored_as_utc(active_affiliate, coupons):
    affiliate = await active_affiliate()
    expiry = datetime.now(timezone(timedelta(hours=6))) + timedelta(days=3)
    coupon = await coupons.create_affiliate_coupon(affiliate.id, percentage(expiry_date=expiry))
    assert coupon.expiry_date.tzinfo is None
    assert coupon.expiry_date == expiry.astimezone(timezone.utc).replace(tzinfo=None)


async def test_rejected_coupon_is_terminal(active_affiliate, coupons):
    affiliate = await active_affiliate()
    coupon = await coupons.create_affiliate_coupon(affiliate.id, percentage())
    coupon = await coupons.reject_coupon(coupon.id)
    assert coupon.approval_status == CouponApprovalStatus.REJECTED
    assert coupon.is_active is False

    with pytest.raises(InvalidTransition):
        await coupons.approve_coupon(coupon.id)
    with pytest.raises(InvalidTransition):
        await coupons.set_coupon_active(coupon.id, True)


async def test_percentage_discount_is_capped(approved_coupon, coupons):
    _, coupon = await approved_coupon(percentage(value="25", max_discount=Decimal("30")))
    result = await coupons.redeem(coupon.code, 400)
    assert result.discount == Decimal("30")
    assert result.final_amount == Decimal("370")


async def test_fixed_discount_never_exceeds_order(approved_coupon, coupons):
    _, coupon = await approved_coupon(fixed(value="50"))
    assert (await coupons.redeem(coupon.code, 30)).discount == Decimal("30")
    assert (await coupons.redeem(coupon.code, 80)).final_amount == Decimal("30")


def test_discount_rounds_half_up():
    coupon = Coupon(type=CouponType.PERCENTAGE, value=Decimal("12.5"), max_discount=None)
    assert compute_discount(coupon, Decimal("0.20")) == Decimal("0.03")


async def test_minimum_purchase(approved_coupon, coupons):
    _, coupon = await approved_coupon(percentage(min_purchase=Decimal("500")))
    with pytest.raises(CouponUnusable) as exc:
        await coupons.redeem(coupon.code, 499)
    assert exc.value.code == "below_min_purchase"
    assert (await coupons.redeem(coupon.code, 500)).discount == Decimal("50")


async def test_expired_coupon_is_unusable(approved_coupon, coupons, session):
    _, coupon = await approved_coupon(percentage(expiry_date=utcnow() + timedelta(days=1)))
    await session.execute(
        update(Coupon).where(Coupon.id == coupon.id).values(expiry_date=utcnow() - timedelta(minutes=1))
    )
    await session.commit()

    with pytest.raises(CouponUnusable) as exc:
        await coupons.redeem(coupon.code, 100)
    assert exc.value.code == "expired"


async def test_one_time_use_per_customer(approved_coupon, coupons):
    _, coupon = await approved_coupon(percentage(one_time_use=True))
    first, second = uuid.uuid4(), uuid.uuid4()

    with pytest.raises(ValidationError) as exc:
        await coupons.redeem(coupon.code, 100)
    assert exc.value.field == "user_id"

    await coupons.redeem(coupon.code, 100, user_id=first)
    with pytest.raises(CouponUnusable) as exc:
        await coupons.redeem(coupon.code, 100, user_id=first)
    assert exc.value.code == "already_used"
    assert (await coupons.validate(coupon.code, 100, user_id=first)).reason == "already_used"

    await coupons.redeem(coupon.code, 100, user_id=second)
    assert (await coupons.get_coupon(coupon.id)).used_count == 2


async def test_redeem_is_idempotent_per_order(approved_coupon, coupons, session):
    _, coupon = await approved_coupon(percentage(usage_limit=3))

    first = await coupons.redeem(coupon.code, 1000, order_id="order-1")
    replay = await coupons.redeem(coupon.code, 1000, order_id="order-1")

    assert replay.discount == first.discount
    assert replay.used_count == 1
    rows = (await session.execute(select(CouponRedemption).where(CouponRedemption.coupon_id == coupon.id))).scalars().all()
    assert len(rows) == 1


async def test_validate_does_not_consume(approved_coupon, coupons):
    _, coupon = await approved_coupon(percentage(usage_limit=1))
    for _ in range(3):
        check = await coupons.validate(coupon.code, 250)
        assert check.usable is True
        assert check.discount == Decimal("25")
    assert (await coupons.get_coupon(coupon.id)).used_count == 0


async def test_unknown_code(coupons):
    assert (await coupons.validate("NOPE", 100)).reason == "not_found"
    with pytest.raises(NotFound):
        await coupons.redeem("NOPE", 100)


async def test_order_amount_must_be_positive(approved_coupon, coupons):
    _, coupon = await approved_coupon(percentage())
    with pytest.raises(ValidationError) as exc:
        await coupons.redeem(coupon.code, 0)
    assert exc.value.field == "order_amount"


async def test_admin_coupon_is_usable_at_once(coupons):
    coupon = await coupons.create_admin_coupon(
        AdminCouponCreate(code="WELCOME", type=CouponType.FIXED, value=Decimal("75")), actor_id=uuid.uuid4()
    )
    assert coupon.affiliate_id is None
    assert coupon.approval_status == CouponApprovalStatus.APPROVED
    assert (await coupons.redeem("welcome", 300)).discount == Decimal("75")


async def test_deactivated_coupon(coupons):
    coupon = await coupons.create_admin_coupon(AdminCouponCreate(code="PAUSE", type=CouponType.FIXED, value=Decimal("5")))
    await coupons.set_coupon_active(coupon.id, False)
    with pytest.raises(CouponUnusable) as exc:
        await coupons.redeem("PAUSE", 100)
    assert exc.value.code == "inactive"


async def test_delete_only_unused_coupons(coupons):
    unused = await coupons.create_admin_coupon(AdminCouponCreate(code="UNUSED", type=CouponType.FIXED, value=Decimal("5")))
    used = await coupons.create_admin_coupon(AdminCouponCreate(code="USED", type=CouponType.FIXED, value=Decimal("5")))
    await coupons.redeem("USED", 100)

    await coupons.delete_coupon(unused.id)
    assert await coupons.get_by_code("UNUSED") is None

    with pytest.raises(InvalidTransition):
        await coupons.delete_coupon(used.id)


async def test_owner_edit_sends_coupon_back_for_review(approved_coupon, coupons):
    affiliate, coupon = await approved_coupon(percentage(code="EDIT10"))
    affiliate_id, coupon_id = affiliate.id, coupon.id

    coupon = await coupons.update_coupon(
        coupon_id, percentage(code="edit20", value="20"), affiliate.user_id, affiliate_id=affiliate_id
    )
    assert coupon.code == "EDIT20"
    assert coupon.value == Decimal("20")
    assert coupon.approval_status == CouponApprovalStatus.PENDING
    assert coupon.is_active is False
    assert coupon.reviewed_at is None
    assert await coupons.get_by_code("EDIT10") is None

    with pytest.raises(CouponUnusable) as exc:
        await coupons.redeem("EDIT20", 100)
    assert exc.value.code == "not_approved"

    await coupons.approve_coupon(coupon_id)
    assert (await coupons.redeem("EDIT20", 100)).discount == Decimal("20")


async def test_owner_edit_is_limited_to_own_open_coupons(active_affiliate, approved_coupon, coupons):
    owner, coupon = await approved_coupon(percentage(code="MINE10"))
    stranger = await active_affiliate()
    with pytest.raises(Forbidden):
        await coupons.update_coupon(coupon.id, percentage(code="MINE10", value="50"), stranger.user_id, affiliate_id=stranger.id)

    rejected = await coupons.create_affiliate_coupon(owner.id, percentage(code="NOPE10"))
    await coupons.reject_coupon(rejected.id)
    with pytest.raises(InvalidTransition):
        await coupons.update_coupon(rejected.id, percentage(code="NOPE10", value="5"), owner.user_id, affiliate_id=owner.id)

    assert (await coupons.get_coupon(coupon.id)).value == Decimal("10")


async def test_admin_edit_keeps_approval(approved_coupon, coupons):
    _, coupon = await approved_coupon(percentage(code="KEEP10"))
    coupon_id = coupon.id
    await coupons.create_admin_coupon(AdminCouponCreate(code="TAKEN", type=CouponType.FIXED, value=Decimal("5")))

    coupon = await coupons.update_coupon(coupon_id, fixed(code="KEEP10", value="40", usage_limit=2), uuid.uuid4())
    assert coupon.approval_status == CouponApprovalStatus.APPROVED
    assert coupon.is_active is True
    assert coupon.type == CouponType.FIXED
    assert (await coupons.redeem("KEEP10", 100)).remaining_uses == 1

    with pytest.raises(ValidationError) as exc:
        await coupons.update_coupon(coupon_id, fixed(code="taken", value="40"))
    assert exc.value.field == "code"
    with pytest.raises(ValidationError) as exc:
        await coupons.update_coupon(coupon_id, fixed(code="KEEP10", max_discount=Decimal("3")))
    assert exc.value.field == "max_discount"
    assert (await coupons.get_coupon(coupon_id)).code == "KEEP10"
