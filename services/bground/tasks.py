from __future__ import annotations
import asyncio
import logging
from typing import Any, Dict

import aiohttp
from kombu.exceptions import OperationalError

from api.crud.withdraw import PayoutDispatcher
from api.models import WithdrawRequest
from services.bground import CeleryManager
from services.notifier import PayoutNotifier

celery_app = CeleryManager()


def payout_payload(request: WithdrawRequest) -> Dict[str, Any]:
    return {
        "id": str(request.id),
        "affiliate_id": str(request.affiliate_id),
        "amount": str(request.amount),
        "payment_method": request.payment_method.value,
        "payment_details": request.payment_details,
        "approved_at": request.processed_at.isoformat() if request.processed_at else None,
    }


@celery_app.celery_app.task(bind=True, max_retries=5, default_retry_delay=60, name="payout.notify_approved")
def notify_payout_approved(self, payload: Dict[str, Any]) -> bool:
    """
    Posts an approved withdraw request to the payout service.
    The service confirms the transfer later through PATCH /admin/withdrawals/{id}/paid.
    """
    notifier = PayoutNotifier()
    try:
        return asyncio.run(notifier.withdraw_approved(payload))
    except (aiohttp.ClientError, asyncio.TimeoutError) as e:
        logging.error(f"Payout notification for withdraw request {payload.get('id')} failed: {e}")
        raise self.retry(exc=e)


def dispatch_payout(request: WithdrawRequest) -> None:
    # the approval is already committed; a broker outage must not turn it into an error
    try:
        notify_payout_approved.delay(payout_payload(request))
    except OperationalError as e:
        logging.error(f"Could not enqueue payout notification for withdraw request {request.id}: {e}")


def get_payout_dispatcher() -> PayoutDispatcher:
    return dispatch_payout
