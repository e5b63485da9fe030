import logging
import uuid
from typing import Any

import pydantic
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from api.crud.affiliate.interface import AffiliateInterface
from api.crud.affiliate.schema import PAYMENT_DETAILS_SCHEMAS, AffiliateRegister, PaymentDetailsUpdate
from api.crud.audit import record_audit
from api.crud.base import CoreService, ViewCache
from api.crud.errors import (
    ConcurrentModification,
    DuplicateRegistration,
    Forbidden,
    InvalidTransition,
    ValidationError,
)
from api.crud.transitions import StateMachine, compare_and_delete, compare_and_set
from api.models import Affiliate, AffiliateStatus, PaymentMethod
from api.models.base import utcnow
from config import ENV
from utils.referral import RefLink

LIVE_STATUSES = (AffiliateStatus.PENDING, AffiliateStatus.ACTIVE, AffiliateStatus.SUSPENDED)

AFFILIATE_MACHINE = StateMachine(
    "affiliate",
    {
        "approve": (frozenset({AffiliateStatus.PENDING, AffiliateStatus.SUSPENDED}), AffiliateStatus.ACTIVE),
        "reject": (frozenset({AffiliateStatus.PENDING}), AffiliateStatus.REJECTED),
        "suspend": (frozenset({AffiliateStatus.ACTIVE}), AffiliateStatus.SUSPENDED),
        "cancel": (frozenset({AffiliateStatus.PENDING}), None),
    },
)


def validate_payment_details(method: PaymentMethod, details: dict[str, Any]) -> dict[str, Any]:
    """Checks `details` against the shape required by `method` and returns the normalised dict."""
    schema = PAYMENT_DETAILS_SCHEMAS[method]
    try:
        return schema.model_validate(details).model_dump()
    except pydantic.ValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(part) for part in first["loc"])
        raise ValidationError(f"Invalid {method.value} payment details: {field}: {first['msg']}", field=field)


class AffiliateService(CoreService, AffiliateInterface):
    REFERRAL_CODE_ATTEMPTS = 5

    def __init__(self, session: AsyncSession, cache: ViewCache | None = None, ref_link: RefLink | None = None):
        super().__init__(session, cache)
        self.ref_link = ref_link or RefLink(size=ENV().REFERRAL_CODE_SIZE)

    async def get_affiliate(self, affiliate_id: uuid.UUID) -> Affiliate:
        return await self._get_or_404(Affiliate, affiliate_id, "Affiliate")

    async def get_live_by_user(self, user_id: uuid.UUID) -> Affiliate | None:
        res = await self.session.execute(
            select(Affiliate)
            .where(Affiliate.user_id == user_id, Affiliate.status.in_(LIVE_STATUSES))
            .execution_options(populate_existing=True)
        )
        return res.scalar_one_or_none()

    async def get_by_referral_code(self, code: str) -> Affiliate | None:
        res = await self.session.execute(
            select(Affiliate)
            .where(Affiliate.referral_code == code.strip().upper())
            .execution_options(populate_existing=True)
        )
        return res.scalar_one_or_none()

    async def register(self, user_id: uuid.UUID, dto: AffiliateRegister) -> Affiliate:
        """
        Creates a pending account with a fresh referral code.

        A rejected account does not block re-registration; any other live
        account does. The partial unique index on user_id backs the check up
        against concurrent registrations.
        """
        if await self.get_live_by_user(user_id):
            raise DuplicateRegistration(f"User {user_id} already has an affiliate account")

        details = validate_payment_details(dto.payment_method, dto.payment_details)

        for _ in range(self.REFERRAL_CODE_ATTEMPTS):
            code = self.ref_link.generate_ref_code()
            affiliate = Affiliate(
                user_id=user_id,
                status=AffiliateStatus.PENDING,
                referral_code=code,
                payment_method=dto.payment_method,
                payment_details=details,
            )
            self.session.add(affiliate)
            try:
                await self.session.commit()
            except IntegrityError:
                await self.session.rollback()
                if await self.get_live_by_user(user_id):
                    raise DuplicateRegistration(f"User {user_id} already has an affiliate account")
                logging.warning(f"Referral code collision on {code}, generating another one")
                continue

            await self.session.refresh(affiliate)
            logging.info(f"Registered affiliate {affiliate.id} for user {user_id} with code {code}")
            await self._invalidate(user_id)
            return affiliate

        raise ConcurrentModification("Could not allocate a unique referral code, retry the registration")

    async def _transition(
        self,
        affiliate_id: uuid.UUID,
        action: str,
        actor_id: uuid.UUID | None,
        values: dict[str, Any] | None = None,
        payload: dict[str, Any] | None = None,
    ) -> Affiliate:
        affiliate = await self.get_affiliate(affiliate_id)
        seen = affiliate.status
        target = AFFILIATE_MACHINE.target(action, seen)

        await compare_and_set(
            self.session,
            Affiliate,
            affiliate.id,
            seen,
            {"status": target, **(values or {})},
            version=affiliate.version,
        )
        record_audit(
            self.session,
            actor_id,
            f"affiliate_{action}",
            "affiliate",
            affiliate.id,
            {"from": seen.value, "to": target.value, **(payload or {})},
        )
        await self.session.commit()
        await self.session.refresh(affiliate)

        logging.info(f"Affiliate {affiliate.id}: {seen.value} -> {target.value} ({action})")
        await self._invalidate(affiliate.user_id)
        return affiliate

    async def approve(self, affiliate_id: uuid.UUID, actor_id: uuid.UUID | None = None) -> Affiliate:
        return await self._transition(affiliate_id, "approve", actor_id, {"approved_at": utcnow()})

    async def reject(self, affiliate_id: uuid.UUID, reason: str, actor_id: uuid.UUID | None = None) -> Affiliate:
        reason = (reason or "").strip()
        if not reason:
            raise ValidationError("A rejection reason is required", field="reason")
        return await self._transition(
            affiliate_id, "reject", actor_id, {"rejection_reason": reason}, {"reason": reason}
        )

    async def suspend(self, affiliate_id: uuid.UUID, actor_id: uuid.UUID | None = None) -> Affiliate:
        return await self._transition(affiliate_id, "suspend", actor_id)

    async def cancel(self, affiliate_id: uuid.UUID, requesting_user_id: uuid.UUID) -> None:
        """Owner withdraws a registration that was never reviewed; the row is deleted."""
        affiliate = await self.get_affiliate(affiliate_id)
        if affiliate.user_id != requesting_user_id:
            raise Forbidden("Only the owner can cancel an affiliate registration")
        AFFILIATE_MACHINE.target("cancel", affiliate.status)

        await compare_and_delete(self.session, Affiliate, affiliate.id, AffiliateStatus.PENDING, affiliate.version)
        record_audit(
            self.session,
            requesting_user_id,
            "affiliate_cancel",
            "affiliate",
            affiliate.id,
            {"referral_code": affiliate.referral_code},
        )
        await self.session.commit()
        self.session.expunge(affiliate)

        logging.info(f"Affiliate {affiliate_id} cancelled by owner {requesting_user_id}")
        await self._invalidate(requesting_user_id)

    async def update_payment_details(
        self,
        affiliate_id: uuid.UUID,
        requesting_user_id: uuid.UUID,
        dto: PaymentDetailsUpdate,
    ) -> Affiliate:
        affiliate = await self.get_affiliate(affiliate_id)
        if affiliate.user_id != requesting_user_id:
            raise Forbidden("Only the owner can change payment details")
        if affiliate.status == AffiliateStatus.REJECTED:
            raise InvalidTransition("Payment details of a rejected account cannot be changed", status=affiliate.status.value)

        details = validate_payment_details(dto.payment_method, dto.payment_details)
        await compare_and_set(
            self.session,
            Affiliate,
            affiliate.id,
            affiliate.status,
            {"payment_method": dto.payment_method, "payment_details": details},
            version=affiliate.version,
        )
        await self.session.commit()
        await self.session.refresh(affiliate)

        logging.info(f"Affiliate {affiliate.id} switched payout method to {dto.payment_method.value}")
        await self._invalidate(affiliate.user_id)
        return affiliate
