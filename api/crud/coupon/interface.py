from __future__ import annotations
from abc import ABC, abstractmethod


class CouponInterface(ABC):
    @abstractmethod
    async def create_affiliate_coupon():
        pass

    @abstractmethod
    async def create_admin_coupon():
        pass

    @abstractmethod
    async def update_coupon():
        pass

    @abstractmethod
    async def approve_coupon():
        pass

    @abstractmethod
    async def reject_coupon():
        pass

    @abstractmethod
    async def validate():
        pass

    @abstractmethod
    async def redeem():
        pass
