from __future__ import annotations
from abc import ABC, abstractmethod


class WithdrawInterface(ABC):
    @abstractmethod
    async def create_request():
        pass

    @abstractmethod
    async def approve_request():
        pass

    @abstractmethod
    async def mark_paid():
        pass

    @abstractmethod
    async def reject_request():
        pass
