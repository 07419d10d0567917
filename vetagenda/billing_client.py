from __future__ import annotations

import logging

import httpx

from vetagenda.api_client import settlement_to_json
from vetagenda.domain import PrepaymentSettlement, SettlementRejected

logger = logging.getLogger(__name__)

# Statuses that mean "billing looked at it and said no", as opposed to an outage.
_REJECTION_STATUSES = {400, 402, 403, 404, 409, 422}


def send_settlement(
    *,
    base_url: str,
    token: str,
    settlement: PrepaymentSettlement,
    timeout_seconds: float = 20.0,
    transport: httpx.BaseTransport | None = None,
) -> None:
    url = f"{base_url.rstrip('/')}/billing/settlements"
    headers = {
        "Authorization": f"Bearer {token}",
        # Retried commits reuse the request_id, billing applies it once.
        "Idempotency-Key": settlement.request_id,
    }

    with httpx.Client(timeout=timeout_seconds, transport=transport) as client:
        r = client.post(url, json=settlement_to_json(settlement), headers=headers)

    if r.status_code in _REJECTION_STATUSES:
        try:
            reason = r.json().get("msg") or r.text
        except (ValueError, AttributeError):
            reason = r.text
        raise SettlementRejected(settlement.appointment_id, reason or f"HTTP {r.status_code}")

    r.raise_for_status()

    if not r.content:
        return
    try:
        data = r.json()
    except ValueError:
        logger.debug("Billing accepted %s with a non-JSON body", settlement.request_id)
        return
    if isinstance(data, dict) and data.get("ok") is False:
        raise SettlementRejected(settlement.appointment_id, str(data.get("msg") or data))


class BillingClient:
    """SettlementSink that forwards prepayment settlements to billing over HTTP."""

    def __init__(
        self,
        *,
        base_url: str,
        token: str,
        timeout_seconds: float = 20.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.base_url = base_url
        self._token = token
        self.timeout_seconds = timeout_seconds
        self._transport = transport

    def settle(self, settlement: PrepaymentSettlement) -> None:
        logger.debug(
            "Settling appointment %s: %s %s", settlement.appointment_id, settlement.action.value, settlement.amount
        )
        send_settlement(
            base_url=self.base_url,
            token=self._token,
            settlement=settlement,
            timeout_seconds=self.timeout_seconds,
            transport=self._transport,
        )
