"""Retry combinator shared by every directory mutation."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeAlias, TypeVar

from loguru import logger

from groupwarden.core.errors import (
    ErrorClass,
    StatusClassification,
    classify_exception,
)
from groupwarden.core.timeouts import SleepFn

T = TypeVar("T")

BackoffFn: TypeAlias = Callable[[int], float]


def linear_backoff(base_s: float, step_s: float) -> BackoffFn:
    """Delay after failed attempt ``n`` (1-based): ``base + (n - 1) * step``."""

    def _delay(attempt: int) -> float:
        return max(0.0, base_s + max(0, attempt - 1) * step_s)

    return _delay


def fixed_backoff(delay_s: float) -> BackoffFn:
    def _delay(attempt: int) -> float:
        return max(0.0, delay_s)

    return _delay


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """``max_attempts`` counts every call, the first one included."""

    max_attempts: int
    backoff: BackoffFn
    rate_limit_cooldown_s: float = 60.0


class AttemptFailed(Exception):
    """Raised by an attempt whose directory answer was a classified failure."""

    def __init__(self, classification: StatusClassification):
        super().__init__(classification.message)
        self.classification = classification


class RetryError(Exception):
    """Final failure of a retried operation."""

    def __init__(self, classification: StatusClassification, attempts: int):
        super().__init__(classification.message)
        self.classification = classification
        self.attempts = attempts

    @property
    def rate_limited(self) -> bool:
        return self.classification.error_class is ErrorClass.RATE_LIMITED


async def with_retry(
    operation: Callable[[int], Awaitable[T]],
    policy: RetryPolicy,
    *,
    sleep: SleepFn = asyncio.sleep,
    before_retry: Callable[[int], Awaitable[None]] | None = None,
    label: str = "operation",
) -> T:
    """Run ``operation(attempt)`` until it succeeds or the policy gives up.

    Permanent failures stop immediately. Transient failures sleep
    ``policy.backoff(attempt)``; rate-limited ones sleep the fixed cooldown.
    ``before_retry`` runs ahead of every retry and may raise ``AttemptFailed``
    to turn the failure permanent.
    """
    max_attempts = max(1, policy.max_attempts)
    attempt = 0
    while True:
        attempt += 1
        try:
            return await operation(attempt)
        except AttemptFailed as e:
            classification = e.classification
        except Exception as e:
            classification = classify_exception(e)

        if classification.error_class is ErrorClass.PERMANENT:
            logger.warning("{} failed permanently on attempt {}: {}", label, attempt, classification.message)
            raise RetryError(classification, attempt)
        if attempt >= max_attempts:
            logger.error("{} failed after {} attempts: {}", label, attempt, classification.message)
            raise RetryError(classification, attempt)

        if classification.error_class is ErrorClass.RATE_LIMITED:
            delay = policy.rate_limit_cooldown_s
        else:
            delay = policy.backoff(attempt)
        logger.warning(
            "{} attempt {}/{} failed ({}); retrying in {:.1f}s",
            label,
            attempt,
            max_attempts,
            classification.message,
            delay,
        )
        await sleep(delay)

        if before_retry is not None:
            try:
                await before_retry(attempt)
            except AttemptFailed as e:
                logger.warning("{} aborted before retry: {}", label, e.classification.message)
                raise RetryError(e.classification, attempt) from e
