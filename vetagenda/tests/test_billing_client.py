from __future__ import annotations

import json
from decimal import Decimal

import httpx
import pytest

from vetagenda.billing_client import BillingClient
from vetagenda.domain import PrepaymentSettlement, SettlementAction, SettlementRejected

_SETTLEMENT = PrepaymentSettlement(
    appointment_id="a1",
    amount=Decimal("50"),
    action=SettlementAction.KEEP_AS_CREDIT,
    request_id="req-1",
)


def _billing(handler) -> BillingClient:
    return BillingClient(base_url="https://billing.clinic.test/", token="t", transport=httpx.MockTransport(handler))


def test_settle_posts_event_with_idempotency_key() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"ok": True})

    _billing(handler).settle(_SETTLEMENT)

    request = seen[0]
    assert str(request.url) == "https://billing.clinic.test/billing/settlements"
    assert request.headers["Idempotency-Key"] == "req-1"
    assert json.loads(request.content) == {
        "appointmentId": "a1",
        "amount": 50.0,
        "action": "keepAsCredit",
        "requestId": "req-1",
    }


def test_settle_accepts_empty_body() -> None:
    _billing(lambda request: httpx.Response(204)).settle(_SETTLEMENT)


def test_settle_accepts_plain_text_body() -> None:
    _billing(lambda request: httpx.Response(200, text="accepted")).settle(_SETTLEMENT)


@pytest.mark.parametrize("status_code", [400, 409, 422])
def test_refusal_status_raises_settlement_rejected(status_code: int) -> None:
    handler = lambda request: httpx.Response(status_code, json={"msg": "Saldo insuficiente"})  # noqa: E731

    with pytest.raises(SettlementRejected, match="Saldo insuficiente"):
        _billing(handler).settle(_SETTLEMENT)


def test_ok_false_raises_settlement_rejected() -> None:
    handler = lambda request: httpx.Response(200, json={"ok": False, "msg": "cuenta cerrada"})  # noqa: E731

    with pytest.raises(SettlementRejected, match="cuenta cerrada"):
        _billing(handler).settle(_SETTLEMENT)


def test_server_error_is_not_a_rejection() -> None:
    handler = lambda request: httpx.Response(503)  # noqa: E731

    with pytest.raises(httpx.HTTPStatusError):
        _billing(handler).settle(_SETTLEMENT)
