import uuid
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from api.crud.errors import AffiliateNotActive, DuplicateOrder, InvalidTransition, NotFound, ValidationError
from api.models import CommissionEntry, CommissionKind, CommissionStatus


async def test_record_commission_appends_pending_entry(active_affiliate, ledger, affiliates, cache):
    affiliate = await active_affiliate()
    entry = await ledger.record_commission(affiliate.id, "order-1", uuid.uuid4(), Decimal("1234.50"), Decimal("10"))

    assert entry.status == CommissionStatus.PENDING
    assert entry.kind == CommissionKind.COMMISSION
    assert entry.amount == Decimal("123.45")
    assert entry.commission_rate == Decimal("10")

    affiliate = await affiliates.get_affiliate(affiliate.id)
    assert affiliate.total_referrals == 1
    assert affiliate.total_sales == Decimal("1234.50")
    assert affiliate.pending_commission == Decimal("123.45")
    assert str(affiliate.user_id) in cache.invalidated


async def test_record_commission_is_idempotent_per_order(active_affiliate, ledger, affiliates, session):
    affiliate = await active_affiliate()
    affiliate_id = affiliate.id
    first = await ledger.record_commission(affiliate_id, "order-7", uuid.uuid4(), 500, 10)
    first_id = first.id

    with pytest.raises(DuplicateOrder) as exc:
        await ledger.record_commission(affiliate_id, "order-7", uuid.uuid4(), 500, 10)
    assert exc.value.entry_id == first_id

    count = await session.scalar(select(func.count()).select_from(CommissionEntry).where(CommissionEntry.order_id == "order-7"))
    assert count == 1
    assert (await affiliates.get_affiliate(affiliate_id)).total_commission == Decimal("50")


async def test_replay_after_suspension_reports_existing_entry(active_affiliate, ledger, affiliates, session):
    affiliate = await active_affiliate()
    affiliate_id = affiliate.id
    first = await ledger.record_commission(affiliate_id, "order-11", uuid.uuid4(), 300, 10)
    first_id = first.id
    await affiliates.suspend(affiliate_id)

    with pytest.raises(DuplicateOrder) as exc:
        await ledger.record_commission(affiliate_id, "order-11", uuid.uuid4(), 300, 10)
    assert exc.value.entry_id == first_id

    with pytest.raises(AffiliateNotActive):
        await ledger.record_commission(affiliate_id, "order-12", uuid.uuid4(), 300, 10)
    count = await session.scalar(select(func.count()).select_from(CommissionEntry).where(CommissionEntry.affiliate_id == affiliate_id))
    assert count == 1


async def test_referred_order_reads_rate_from_configuration(active_affiliate, ledger, monkeypatch):
    affiliate = await active_affiliate()
    monkeypatch.setenv("COMMISSION_RATE", "12.5")

    entry = await ledger.record_referred_order(affiliate.referral_code.lower(), "order-9", uuid.uuid4(), 800)

    assert entry.affiliate_id == affiliate.id
    assert entry.commission_rate == Decimal("12.5")
    assert entry.amount == Decimal("100")


async def test_referred_order_with_unknown_code(ledger):
    with pytest.raises(NotFound):
        await ledger.record_referred_order("AFUNKNOWN", "order-1", uuid.uuid4(), 100)


async def test_inactive_affiliate_earns_nothing(register, ledger):
    affiliate = await register()
    with pytest.raises(AffiliateNotActive):
        await ledger.record_commission(affiliate.id, "order-1", uuid.uuid4(), 100, 10)


@pytest.mark.parametrize("order_id, amount, rate, field", [("", 100, 10, "order_id"), ("o-1", 0, 10, "order_amount"), ("o-1", 100, 101, "rate")])
async def test_record_commission_validates_input(active_affiliate, ledger, order_id, amount, rate, field):
    affiliate = await active_affiliate()
    with pytest.raises(ValidationError) as exc:
        await ledger.record_commission(affiliate.id, order_id, uuid.uuid4(), amount, rate)
    assert exc.value.field == field


async def test_approve_and_cancel(active_affiliate, ledger, affiliates):
    affiliate = await active_affiliate()
    kept = await ledger.record_commission(affiliate.id, "order-a", uuid.uuid4(), 1000, 10)
    dropped = await ledger.record_commission(affiliate.id, "order-b", uuid.uuid4(), 2000, 10)

    kept = await ledger.approve_commission(kept.id)
    dropped = await ledger.cancel_commission(dropped.id)
    assert kept.status == CommissionStatus.APPROVED
    assert dropped.status == CommissionStatus.CANCELLED

    for action in (ledger.approve_commission, ledger.cancel_commission):
        with pytest.raises(InvalidTransition):
            await action(kept.id)
        with pytest.raises(InvalidTransition):
            await action(dropped.id)

    balances = await ledger.compute_balances(affiliate.id)
    assert balances.total_commission == Decimal("100")
    assert balances.pending_commission == Decimal("0")
    assert balances.approved_available == Decimal("100")
    assert balances.paid_commission == Decimal("0")

    affiliate = await affiliates.get_affiliate(affiliate.id)
    assert affiliate.total_referrals == 1
    assert affiliate.total_commission == Decimal("100")
    assert affiliate.pending_commission == Decimal("0")


async def test_reversal_appends_negative_entry(active_affiliate, ledger):
    affiliate = await active_affiliate()
    entry = await ledger.record_commission(affiliate.id, "order-r", uuid.uuid4(), 3000, 10)

    with pytest.raises(InvalidTransition):
        await ledger.reverse_commission(entry.id, "Order refunded")

    await ledger.approve_commission(entry.id)
    with pytest.raises(ValidationError):
        await ledger.reverse_commission(entry.id, " ")

    reversal = await ledger.reverse_commission(entry.id, "Order refunded")
    assert reversal.kind == CommissionKind.REVERSAL
    assert reversal.amount == Decimal("-300")
    assert reversal.reversal_of_id == entry.id
    assert (await ledger.get_entry(entry.id)).status == CommissionStatus.APPROVED

    balances = await ledger.compute_balances(affiliate.id)
    assert balances.total_commission == Decimal("0")
    assert balances.approved_available == Decimal("0")

    with pytest.raises(InvalidTransition):
        await ledger.reverse_commission(entry.id, "Refunded twice")


async def test_missing_entry(ledger):
    with pytest.raises(NotFound):
        await ledger.approve_commission(uuid.uuid4())
