from __future__ import annotations
import logging
from typing import Any, Dict

import aiohttp

from config import ENV


class PayoutNotifier:
    """
    Tells the payout service that a withdraw request was approved.
    Without PAYOUT_SERVICE_URL the notification is skipped with a warning.
    """

    def __init__(self, url: str | None = None, timeout: float = 10.0):
        self.env = ENV()
        self.url = url or self.env.PAYOUT_SERVICE_URL
        self.timeout = aiohttp.ClientTimeout(total=timeout)

    async def withdraw_approved(self, payload: Dict[str, Any]) -> bool:
        if not self.url:
            logging.warning(f"PAYOUT_SERVICE_URL is not set, withdraw request {payload.get('id')} not announced")
            return False

        headers = {"Content-Type": "application/json", "X-Api-Key": self.env.service_api_token}
        async with aiohttp.ClientSession(timeout=self.timeout) as s:
            async with s.post(self.url, json=payload, headers=headers) as r:
                body = await r.text()
                if r.status >= 400:
                    raise aiohttp.ClientResponseError(
                        r.request_info, r.history, status=r.status, message=body[:200]
                    )
        logging.info(f"Payout service accepted withdraw request {payload.get('id')}")
        return True
