"""Bounded retry-with-backoff combinator.

Digest resolution and push verification each get their own policy; the
loop itself is shared.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from pydantic import BaseModel, ConfigDict, model_validator

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryExhaustedError(RuntimeError):
    """Raised when every attempt failed with a retryable error."""

    def __init__(self, last_error: BaseException, attempts: int) -> None:
        super().__init__(f"Gave up after {attempts} attempts: {last_error}")
        self.last_error = last_error
        self.attempts = attempts


class RetryPolicy(BaseModel):
    """How many times to try, and how long to sleep between tries.

    ``delays[i]`` is the wait after failed attempt ``i + 1``; it has
    exactly ``max_attempts - 1`` entries.
    """

    model_config = ConfigDict(frozen=True)

    max_attempts: int
    delays: tuple[float, ...] = ()

    @model_validator(mode="after")
    def _schedule_matches_attempts(self) -> RetryPolicy:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if len(self.delays) != self.max_attempts - 1:
            raise ValueError(
                f"Expected {self.max_attempts - 1} delays, got {len(self.delays)}"
            )
        return self

    @classmethod
    def fixed(cls, max_attempts: int, delay: float) -> RetryPolicy:
        """Same delay between every attempt."""
        return cls(max_attempts=max_attempts, delays=(delay,) * (max_attempts - 1))

    @classmethod
    def escalating(cls, max_attempts: int, step: float) -> RetryPolicy:
        """Delay grows by *step* each time: ``2*step, 3*step, ...``."""
        return cls(
            max_attempts=max_attempts,
            delays=tuple(step * (i + 2) for i in range(max_attempts - 1)),
        )


async def retry_with_backoff(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    is_retryable: Callable[[BaseException], bool],
    *,
    on_retry: Callable[[int, BaseException, float], None] | None = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Run *operation* until it succeeds or the policy runs out.

    Non-retryable errors propagate immediately and unmodified.  After the
    last retryable failure, ``RetryExhaustedError`` is raised with the
    final error attached as ``last_error`` and ``__cause__``.
    """
    for attempt in range(1, policy.max_attempts + 1):
        try:
            return await operation()
        except Exception as exc:
            if not is_retryable(exc):
                raise
            if attempt == policy.max_attempts:
                raise RetryExhaustedError(exc, attempt) from exc
            delay = policy.delays[attempt - 1]
            logger.debug(
                "Attempt %d/%d failed (%s); retrying in %.1fs",
                attempt,
                policy.max_attempts,
                exc,
                delay,
            )
            if on_retry is not None:
                on_retry(attempt, exc, delay)
            await sleep(delay)
    raise AssertionError("unreachable")  # pragma: no cover
