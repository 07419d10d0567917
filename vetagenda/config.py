from __future__ import annotations

import os
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation

from dotenv import load_dotenv


@dataclass(frozen=True)
class Settings:
    api_url: str
    api_token: str
    billing_url: str

    request_timeout_seconds: float = 20.0

    # How many times the CLI repeats a read (list/get) after a network failure.
    api_retry_attempts: int = 2

    # Where phase-1 cancellation requests wait for a refund/credit decision
    pending_file: str = "pending_cancellations.json"

    max_prepaid_amount: Decimal = Decimal("10000")


def _require(name: str) -> str:
    value = os.getenv(name)
    if not value:
        raise RuntimeError(f"Missing required environment variable: {name}")
    return value


def load_settings(dotenv_path: str | None = None) -> Settings:
    # Prefer .env in repo root; dotenv_path allows overriding in tests.
    load_dotenv(dotenv_path=dotenv_path, override=False)

    api_url = _require("VETAGENDA_API_URL").rstrip("/")
    billing_url = (os.getenv("VETAGENDA_BILLING_URL") or api_url).rstrip("/")

    try:
        request_timeout_seconds = float(os.getenv("REQUEST_TIMEOUT_SECONDS", "20"))
    except ValueError as e:
        raise RuntimeError("REQUEST_TIMEOUT_SECONDS must be a number") from e
    if request_timeout_seconds <= 0:
        raise RuntimeError("REQUEST_TIMEOUT_SECONDS must be > 0")

    api_retry_attempts = int(os.getenv("API_RETRY_ATTEMPTS", "2"))
    if api_retry_attempts < 1:
        raise RuntimeError("API_RETRY_ATTEMPTS must be >= 1")

    raw_max = os.getenv("MAX_PREPAID_AMOUNT", "10000")
    try:
        max_prepaid_amount = Decimal(raw_max)
    except InvalidOperation as e:
        raise RuntimeError(f"Invalid MAX_PREPAID_AMOUNT value: {raw_max!r}") from e
    if not max_prepaid_amount.is_finite() or max_prepaid_amount <= 0:
        raise RuntimeError("MAX_PREPAID_AMOUNT must be > 0")

    pending_file = os.getenv("PENDING_FILE", "pending_cancellations.json")

    return Settings(
        api_url=api_url,
        api_token=_require("VETAGENDA_API_TOKEN"),
        billing_url=billing_url,
        request_timeout_seconds=request_timeout_seconds,
        api_retry_attempts=api_retry_attempts,
        pending_file=pending_file,
        max_prepaid_amount=max_prepaid_amount,
    )
