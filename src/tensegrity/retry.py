"""Retry helpers for optimistic-concurrency writes."""
from __future__ import annotations

import logging
import random
import time
from typing import Callable, Optional, TypeVar

from kubernetes.client import ApiException

from .config import RetryPolicy

_LOG = logging.getLogger(__name__)

T = TypeVar("T")


def backoff_delay(policy: RetryPolicy, attempt: int) -> float:
    """Exponential delay for ``attempt`` (zero based), capped and jittered."""

    delay = min(policy.backoff_base * (2 ** attempt), policy.backoff_max)
    if policy.jitter:
        delay *= 1 + random.uniform(-policy.jitter, policy.jitter)
    return max(delay, 0.0)


def is_conflict(exc: BaseException) -> bool:
    return isinstance(exc, ApiException) and exc.status == 409


def retry_on_conflict(
    write: Callable[[], T],
    policy: Optional[RetryPolicy] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Call ``write`` until it stops failing with a 409 conflict.

    ``write`` must re-read whatever it needs so each attempt carries a fresh
    ``resourceVersion``. The last conflict is re-raised once attempts run out.
    """

    policy = policy or RetryPolicy()
    attempt = 0
    while True:
        try:
            return write()
        except ApiException as exc:
            if not is_conflict(exc) or attempt + 1 >= policy.attempts:
                raise
            delay = backoff_delay(policy, attempt)
            _LOG.debug("Write conflicted (attempt %d/%d); retrying in %.3fs", attempt + 1, policy.attempts, delay)
            sleep(delay)
            attempt += 1
