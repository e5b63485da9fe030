from __future__ import annotations
from abc import ABC, abstractmethod


class AffiliateInterface(ABC):
    @abstractmethod
    async def register():
        pass

    @abstractmethod
    async def approve():
        pass

    @abstractmethod
    async def reject():
        pass

    @abstractmethod
    async def suspend():
        pass

    @abstractmethod
    async def cancel():
        pass

    @abstractmethod
    async def update_payment_details():
        pass

    @abstractmethod
    async def get_by_referral_code():
        pass
