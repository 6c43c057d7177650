"""Bounded exponential backoff for provider calls."""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, TypeVar

from pydantic import BaseModel, Field

from edge_provisioner.engine.errors import ProviderError

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryPolicy(BaseModel):
    """How often and how patiently to retry transient provider errors."""

    max_attempts: int = Field(default=5, ge=1)
    base_delay: float = Field(default=0.5, ge=0)
    max_delay: float = Field(default=30.0, ge=0)
    multiplier: float = Field(default=2.0, ge=1)

    def delay(self, attempt: int) -> float:
        """Delay after the *attempt*-th failed try (1-based)."""
        return min(self.base_delay * self.multiplier ** (attempt - 1), self.max_delay)


class RetryCounter:
    """Attempt count of the last :func:`call_with_retry` run."""

    def __init__(self) -> None:
        self.attempts = 0


def call_with_retry(
    fn: Callable[[], T],
    policy: RetryPolicy,
    *,
    label: str,
    sleep: Callable[[float], None] = time.sleep,
    counter: RetryCounter | None = None,
) -> T:
    """Call *fn*, retrying retryable :class:`ProviderError` s with backoff.

    Non-retryable errors propagate on the first failure. When the budget is
    exhausted a :class:`ProviderError` naming the attempt count is raised,
    chained to the last transient error.
    """
    attempt = 0
    while True:
        attempt += 1
        if counter is not None:
            counter.attempts = attempt
        try:
            return fn()
        except ProviderError as e:
            if not e.retryable:
                raise
            if attempt >= policy.max_attempts:
                raise ProviderError(
                    f"{label}: giving up after {attempt} attempts: {e}", status=e.status
                ) from e
            delay = policy.delay(attempt)
            logger.warning(
                "%s: transient provider error (attempt %d/%d), retrying in %.2fs: %s",
                label,
                attempt,
                policy.max_attempts,
                delay,
                e,
            )
            sleep(delay)
