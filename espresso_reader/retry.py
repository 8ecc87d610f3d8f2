"""A simple retry policy for calls that may fail transiently."""

from __future__ import annotations

import logging
import time
from datetime import timedelta
from typing import Callable, TypeVar, Union

A = TypeVar("A")
R = TypeVar("R")

logger = logging.getLogger(__name__)


def call_with_retry_policy(
    fn: Callable[[A], R],
    args: A,
    max_retries: int,
    max_delay: Union[float, timedelta],
    info_label: str,
) -> R:
    """Call ``fn(args)`` up to ``max_retries + 1`` times, waiting ``max_delay`` between tries.

    Returns the first successful result; re-raises the last error otherwise.
    """
    delay = max_delay.total_seconds() if isinstance(max_delay, timedelta) else float(max_delay)
    last_error: Exception | None = None
    for attempt in range(max_retries + 1):
        if attempt:
            logger.info("Retry Policy: Retrying... delay=%s", delay)
            time.sleep(delay)
        try:
            return fn(args)
        except Exception as exc:  # noqa: BLE001 - any failure triggers a retry
            last_error = exc
            logger.info(
                "Retry Policy: Got error calling function label=%s error=%s", info_label, exc
            )
    assert last_error is not None
    raise last_error