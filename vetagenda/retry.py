from __future__ import annotations

import logging
from typing import Callable, TypeVar

import httpx
from tenacity import Retrying, before_sleep_log, retry_if_exception_type, stop_after_attempt, wait_exponential

logger = logging.getLogger(__name__)

T = TypeVar("T")


def call_with_retry(fn: Callable[..., T], *args: object, attempts: int, **kwargs: object) -> T:
    """Call ``fn`` retrying only network failures, then re-raise.

    Meant for idempotent reads issued by the command line; the scheduling core
    itself never retries.
    """
    retrying = Retrying(
        stop=stop_after_attempt(attempts),
        wait=wait_exponential(multiplier=1, min=1, max=4),
        retry=retry_if_exception_type(httpx.TransportError),
        before_sleep=before_sleep_log(logger, logging.WARNING, exc_info=False),
        reraise=True,
    )
    return retrying(fn, *args, **kwargs)
