from __future__ import annotations
from abc import ABC, abstractmethod


class CommissionInterface(ABC):
    @abstractmethod
    async def record_commission():
        pass

    @abstractmethod
    async def approve_commission():
        pass

    @abstractmethod
    async def cancel_commission():
        pass

    @abstractmethod
    async def compute_balances():
        pass
