from __future__ import annotations
from typing import Any


class AffiliateError(Exception):
    """Base for every business failure raised by the affiliate core.

    `kind` is the stable name callers switch on, `reason` the human-readable
    explanation shown to users.
    """
    kind = "AffiliateError"
    status_code = 400

    def __init__(self, reason: str, **details: Any):
        super().__init__(reason)
        self.reason = reason
        self.details = details


class ValidationError(AffiliateError):
    kind = "ValidationError"
    status_code = 422

    def __init__(self, reason: str, field: str | None = None, **details: Any):
        super().__init__(reason, **details)
        self.field = field


class NotFound(AffiliateError):
    kind = "NotFound"
    status_code = 404


class InvalidTransition(AffiliateError):
    kind = "InvalidTransition"
    status_code = 409


class AffiliateNotActive(InvalidTransition):
    kind = "AffiliateNotActive"


class CouponUnusable(InvalidTransition):
    """Redemption refused; `code` says which usability condition failed."""

    def __init__(self, code: str, reason: str):
        super().__init__(reason, code=code)
        self.code = code


class Forbidden(AffiliateError):
    kind = "Forbidden"
    status_code = 403


class InsufficientBalance(AffiliateError):
    kind = "InsufficientBalance"


class BelowMinimum(AffiliateError):
    kind = "BelowMinimum"


class ConcurrentModification(AffiliateError):
    kind = "ConcurrentModification"
    status_code = 409


class DuplicateRegistration(AffiliateError):
    kind = "DuplicateRegistration"
    status_code = 409


class DuplicateOrder(AffiliateError):
    """The order already has a commission entry; not a failure for the order service."""
    kind = "DuplicateOrder"
    status_code = 200

    def __init__(self, reason: str, entry_id: Any):
        super().__init__(reason, entry_id=str(entry_id))
        self.entry_id = entry_id
