import os
import uuid
from decimal import Decimal

os.environ.setdefault("service_api_token", "test-service-key")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("MINIMUM_WITHDRAW", "500")
os.environ.setdefault("COMMISSION_RATE", "10")

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from api.crud.affiliate import AffiliateService
from api.crud.affiliate.schema import AffiliateRegister
from api.crud.commission import CommissionLedger
from api.crud.coupon import CouponService
from api.crud.projection import ProjectionService
from api.crud.withdraw import WithdrawService
from api.models import Base, PaymentMethod

BANK_DETAILS = {
    "account_name": "Rahim Uddin",
    "account_number": "0123456789",
    "bank_name": "Dutch-Bangla Bank",
    "branch_name": "Gulshan",
}

BKASH_DETAILS = {"provider": "bkash", "account_number": "01711000000", "account_name": "Rahim Uddin"}


class MemoryViewCache:
    """Stand-in for RedisClient that remembers what was dropped."""

    def __init__(self):
        self.views = {}
        self.invalidated = []

    async def get_view(self, user_id):
        return self.views.get(str(user_id))

    async def set_view(self, user_id, view):
        self.views[str(user_id)] = view

    async def invalidate(self, user_id):
        self.invalidated.append(str(user_id))
        return 1 if self.views.pop(str(user_id), None) is not None else 0


@pytest.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'affiliates.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest.fixture
async def session(session_maker):
    async with session_maker() as session:
        yield session


@pytest.fixture
def cache():
    return MemoryViewCache()


@pytest.fixture
def dispatched():
    return []


@pytest.fixture
def affiliates(session, cache):
    return AffiliateService(session, cache)


@pytest.fixture
def coupons(session, cache):
    return CouponService(session, cache)


@pytest.fixture
def ledger(session, cache):
    return CommissionLedger(session, cache)


@pytest.fixture
def withdrawals(session, cache, dispatched):
    return WithdrawService(session, cache, on_approved=dispatched.append)


@pytest.fixture
def projection(session, cache):
    return ProjectionService(session, cache)


@pytest.fixture
def register(affiliates):
    async def _register(user_id=None, method=PaymentMethod.BANK, details=None):
        dto = AffiliateRegister(payment_method=method, payment_details=details or BANK_DETAILS)
        return await affiliates.register(user_id or uuid.uuid4(), dto)

    return _register


@pytest.fixture
def active_affiliate(register, affiliates):
    async def _active(user_id=None):
        affiliate = await register(user_id)
        return await affiliates.approve(affiliate.id)

    return _active


@pytest.fixture
def funded_affiliate(active_affiliate, ledger):
    """Active affiliate whose approved commissions add up to `amount` (one order at 10%)."""

    async def _funded(amount="1000"):
        affiliate = await active_affiliate()
        entry = await ledger.record_commission(
            affiliate.id, f"order-{uuid.uuid4().hex[:12]}", uuid.uuid4(), Decimal(amount) * 10, 10
        )
        await ledger.approve_commission(entry.id)
        return affiliate

    return _funded
