"""Bounded retry with exponential backoff.

Used by the image puller to absorb transient registry and network failures.
The delay starts at ``base_delay`` seconds and doubles after every failed
attempt, capped at ``max_delay``.
"""
from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from typing import TypeVar

from easy_splunk.errors import InvalidInputError, RuntimeCommandError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """How often and how patiently to retry an operation.

    Attributes
    ----------
    max_attempts:
        Total number of attempts, including the first one.  Must be >= 1.
    base_delay:
        Seconds to wait after the first failure.
    max_delay:
        Upper bound on any single wait.
    """

    max_attempts: int = 5
    base_delay: float = 1.0
    max_delay: float = 20.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise InvalidInputError(
                f"max_attempts must be >= 1, got {self.max_attempts}"
            )
        if self.base_delay < 0 or self.max_delay < 0:
            raise InvalidInputError("Retry delays must be >= 0")

    def delays(self) -> Iterator[float]:
        """Yield the wait before each retry (``max_attempts - 1`` values)."""
        delay = self.base_delay
        for _ in range(self.max_attempts - 1):
            yield min(delay, self.max_delay)
            delay = min(delay * 2, self.max_delay)


def retry_call(
    func: Callable[[], T],
    policy: RetryPolicy,
    retry_on: tuple[type[BaseException], ...] = (RuntimeCommandError,),
    sleep: Callable[[float], None] = time.sleep,
    description: str = "operation",
) -> T:
    """Call *func* until it succeeds or the policy is exhausted.

    Parameters
    ----------
    func:
        Zero-argument callable to invoke.
    policy:
        Attempt count and backoff schedule.
    retry_on:
        Exception types considered transient.  Anything else propagates
        immediately.
    sleep:
        Injected for tests.
    description:
        Label used in log messages.

    Returns
    -------
    T
        Whatever *func* returns on its first successful attempt.

    Raises
    ------
    BaseException
        The exception from the final attempt once retries are exhausted.
    """
    delays = policy.delays()
    attempt = 1
    while True:
        try:
            return func()
        except retry_on as exc:
            delay = next(delays, None)
            if delay is None:
                logger.error(
                    "%s failed after %d attempt(s): %s", description, attempt, exc
                )
                raise
            logger.warning(
                "Attempt %d of %s failed (%s); retrying in %.1fs",
                attempt,
                description,
                exc,
                delay,
            )
            sleep(delay)
            attempt += 1


__all__ = [
    "RetryPolicy",
    "retry_call",
]
