import logging
import uuid
from datetime import datetime
from decimal import Decimal

import pytest
from aiohttp import ClientConnectionError, ClientResponseError, web
from aiohttp import test_utils
from kombu.exceptions import OperationalError

from api.models import PaymentMethod, WithdrawRequest
from services.bground import tasks
from services.notifier import PayoutNotifier


def approved_request() -> WithdrawRequest:
    return WithdrawRequest(
        id=uuid.uuid4(),
        affiliate_id=uuid.uuid4(),
        amount=Decimal("600.00"),
        payment_method=PaymentMethod.MOBILE_BANKING,
        payment_details={"provider": "bkash", "account_number": "01711000000", "account_name": "Rahim Uddin"},
        processed_at=datetime(2026, 3, 1, 12, 30),
    )


@pytest.fixture
async def payout_service():
    received = []

    async def accept(request):
        if request.headers.get("X-Api-Key") != "test-service-key":
            return web.Response(status=401, text="bad key")
        received.append(await request.json())
        return web.json_response({"accepted": True})

    async def broken(request):
        return web.Response(status=503, text="maintenance")

    app = web.Application()
    app.router.add_post("/payouts", accept)
    app.router.add_post("/broken", broken)
    server = test_utils.TestServer(app)
    await server.start_server()
    yield server, received
    await server.close()


def test_payout_payload_is_json_ready():
    request = approved_request()
    payload = tasks.payout_payload(request)
    assert payload == {
        "id": str(request.id),
        "affiliate_id": str(request.affiliate_id),
        "amount": "600.00",
        "payment_method": "mobile_banking",
        "payment_details": request.payment_details,
        "approved_at": "2026-03-01T12:30:00",
    }


async def test_notifier_posts_to_payout_service(payout_service):
    server, received = payout_service
    payload = tasks.payout_payload(approved_request())

    assert await PayoutNotifier(url=str(server.make_url("/payouts"))).withdraw_approved(payload) is True
    assert received == [payload]


async def test_notifier_raises_on_error_status(payout_service):
    server, _ = payout_service
    with pytest.raises(ClientResponseError) as exc:
        await PayoutNotifier(url=str(server.make_url("/broken"))).withdraw_approved({"id": "x"})
    assert exc.value.status == 503


async def test_notifier_without_url_skips(monkeypatch, caplog):
    monkeypatch.delenv("PAYOUT_SERVICE_URL", raising=False)
    with caplog.at_level(logging.WARNING):
        assert await PayoutNotifier().withdraw_approved({"id": "x"}) is False
    assert "not announced" in caplog.text


def test_notify_task_returns_delivery_result(monkeypatch):
    sent = []

    async def fake_withdraw_approved(self, payload):
        sent.append(payload)
        return True

    monkeypatch.setattr(PayoutNotifier, "withdraw_approved", fake_withdraw_approved)
    assert tasks.notify_payout_approved({"id": "abc"}) is True
    assert sent == [{"id": "abc"}]


def test_notify_task_retries_on_network_error(monkeypatch):
    class Retried(Exception):
        pass

    async def unreachable(self, payload):
        raise ClientConnectionError("payout service unreachable")

    def fake_retry(exc=None, **kwargs):
        raise Retried() from exc

    monkeypatch.setattr(PayoutNotifier, "withdraw_approved", unreachable)
    monkeypatch.setattr(tasks.notify_payout_approved, "retry", fake_retry)
    with pytest.raises(Retried):
        tasks.notify_payout_approved({"id": "abc"})


def test_dispatch_survives_broker_outage(monkeypatch, caplog):
    def broker_down(*args, **kwargs):
        raise OperationalError("connection refused")

    monkeypatch.setattr(tasks.notify_payout_approved, "delay", broker_down)
    request = approved_request()
    with caplog.at_level(logging.ERROR):
        tasks.dispatch_payout(request)
    assert str(request.id) in caplog.text


def test_dispatch_enqueues_payload(monkeypatch):
    queued = []
    monkeypatch.setattr(tasks.notify_payout_approved, "delay", lambda payload: queued.append(payload))
    request = approved_request()
    tasks.get_payout_dispatcher()(request)
    assert queued == [tasks.payout_payload(request)]
