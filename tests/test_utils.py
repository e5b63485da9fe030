from decimal import Decimal

import pytest

from api.crud.affiliate.schema import AffiliateRead
from api.crud.commission.schema import CommissionRead
from api.crud.coupon.schema import CouponRead
from api.crud.withdraw.schema import WithdrawRead
from utils.money import percent_of, to_money
from utils.referral import ALPHABET, RefLink


def test_to_money_rounds_half_up():
    assert to_money("2.345") == Decimal("2.35")
    assert to_money(0.1 + 0.2) == Decimal("0.30")
    assert to_money(7) == Decimal("7.00")


def test_percent_of():
    assert percent_of(Decimal("1234.50"), Decimal("10")) == Decimal("123.45")
    assert percent_of(Decimal("0.05"), Decimal("10")) == Decimal("0.01")


def test_ref_code_shape():
    code = RefLink(size=10).generate_ref_code()
    assert code.startswith("AF")
    assert len(code) == 12
    assert set(code[2:]) <= set(ALPHABET)
    assert not set("0O1I") & set(code[2:])



def test_ref_codes_use_prefix_and_vary():
    link = RefLink(size=8, prefix="RF")
    codes = {link.generate_ref_code() for _ in range(20)}
    assert all(code.startswith("RF") and len(code) == 10 for code in codes)
    assert len(codes) > 1


@pytest.mark.parametrize("schema", [AffiliateRead, CommissionRead, CouponRead, WithdrawRead])
def test_read_schemas_load_from_orm_rows(schema):
    assert schema.model_config.get("from_attributes") is True
