from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime
from typing import TypeVar

T = TypeVar("T")

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryDecision:
    retry: bool
    delay_seconds: float = 0.0


NO_RETRY = RetryDecision(retry=False)


@dataclass(frozen=True)
class BackoffPolicy:
    max_attempts: int = 3
    base_delay_seconds: float = 0.4
    max_delay_seconds: float = 4.0
    jitter_seed: int = 17

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.base_delay_seconds < 0 or self.max_delay_seconds < 0:
            raise ValueError("backoff delays must be >= 0")


def parse_retry_after_seconds(value: str | None) -> float | None:
    if value is None or not value.strip():
        return None
    candidate = value.strip()
    try:
        seconds = float(candidate)
    except ValueError:
        seconds = None
    if seconds is not None:
        return seconds if seconds >= 0 else None

    try:
        parsed = parsedate_to_datetime(candidate)
    except (TypeError, ValueError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return max(0.0, (parsed - datetime.now(UTC)).total_seconds())


def compute_delay(
    *,
    attempt: int,
    policy: BackoffPolicy,
    retry_after_header: str | None = None,
) -> float:
    retry_after_seconds = parse_retry_after_seconds(retry_after_header)
    if retry_after_seconds is not None:
        return min(policy.max_delay_seconds, retry_after_seconds)

    step = max(1, attempt)
    ceiling = min(policy.max_delay_seconds, policy.base_delay_seconds * (2 ** (step - 1)))
    rng = random.Random(policy.jitter_seed + step)
    return ceiling * (0.8 + 0.4 * rng.random())


async def async_retry(  # noqa: UP047
    fn: Callable[[], Awaitable[T]],
    *,
    max_attempts: int,
    classify: Callable[[Exception, int], RetryDecision],
    label: str = "call",
) -> T:
    if max_attempts < 1:
        raise ValueError("max_attempts must be >= 1")

    attempt = 0
    while True:
        attempt += 1
        try:
            return await fn()
        except Exception as exc:
            decision = classify(exc, attempt)
            if not decision.retry or attempt >= max_attempts:
                raise
            logger.debug(
                "retry_scheduled",
                extra={
                    "extra": {
                        "label": label,
                        "attempt": attempt,
                        "delay_seconds": round(decision.delay_seconds, 3),
                        "error_type": type(exc).__name__,
                    }
                },
            )
            await asyncio.sleep(max(0.0, decision.delay_seconds))
