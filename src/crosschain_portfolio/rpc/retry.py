"""Retry policy with failure classification and backoff for balance provider calls."""

import asyncio
import logging
import re
from collections.abc import Awaitable, Callable
from enum import StrEnum
from typing import TypeVar

import httpx

from crosschain_portfolio.errors import BalanceFetchError, UnsupportedChainError

T = TypeVar("T")

logger = logging.getLogger(__name__)

RATE_LIMIT_STATUS_CODES = frozenset({403, 429})
RATE_LIMIT_PATTERN = re.compile(r"rate.?limit|too many requests|\b(?:403|429)\b", re.IGNORECASE)


class FailureKind(StrEnum):
    """Classification of a failed attempt."""

    RATE_LIMIT = "rate_limit"
    TRANSIENT = "transient"
    PERMANENT = "permanent"


def classify_failure(exc: BaseException) -> FailureKind:
    """
    Classify an exception raised by a balance provider.

    HTTP 429/403 responses and messages mentioning a rate limit are
    rate-limit-like. Chains no provider can serve are permanent. Anything
    else is treated as a generic transient failure.

    Parameters
    ----------
    exc : BaseException
        Exception raised by the failed attempt

    Returns
    -------
    FailureKind
        Failure classification

    """
    if isinstance(exc, UnsupportedChainError):
        return FailureKind.PERMANENT

    status_code = None
    if isinstance(exc, BalanceFetchError):
        status_code = exc.status_code
    elif isinstance(exc, httpx.HTTPStatusError):
        status_code = exc.response.status_code

    if status_code in RATE_LIMIT_STATUS_CODES:
        return FailureKind.RATE_LIMIT

    if RATE_LIMIT_PATTERN.search(str(exc)):
        return FailureKind.RATE_LIMIT

    return FailureKind.TRANSIENT


def default_backoff(kind: FailureKind, attempt: int, base_delay: float) -> float:
    """
    Delay before the next attempt.

    Parameters
    ----------
    kind : FailureKind
        Classification of the failure just observed
    attempt : int
        Number of failed attempts so far (1-indexed)
    base_delay : float
        Base delay in seconds

    Returns
    -------
    float
        ``base_delay * 2**attempt`` for rate limits, ``base_delay`` otherwise

    """
    if kind is FailureKind.RATE_LIMIT:
        return base_delay * (2**attempt)
    return base_delay


class RetryExhaustedError(Exception):
    """
    Raised when an operation fails on every allowed attempt.

    Parameters
    ----------
    attempts : int
        Number of attempts made
    last_exception : BaseException
        Exception raised by the final attempt

    """

    def __init__(self, attempts: int, last_exception: BaseException) -> None:
        super().__init__(f"Failed after {attempts} attempts: {last_exception}")
        self.attempts = attempts
        self.last_exception = last_exception


class RetryPolicy:
    """
    Configuration and execution of bounded retries.

    Parameters
    ----------
    max_retries : int
        Maximum number of retries after the first attempt
    base_delay : float
        Base delay in seconds used by the backoff function
    classifier : Callable[[BaseException], FailureKind]
        Maps a failure to its kind
    backoff : Callable[[FailureKind, int, float], float]
        Computes the delay before the next attempt
    sleep : Callable[[float], Awaitable[None]]
        Awaitable sleep, injectable for tests

    """

    def __init__(
        self,
        max_retries: int = 3,
        base_delay: float = 0.5,
        classifier: Callable[[BaseException], FailureKind] = classify_failure,
        backoff: Callable[[FailureKind, int, float], float] = default_backoff,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if max_retries < 0:
            msg = f"max_retries must be >= 0, got {max_retries}"
            raise ValueError(msg)
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.classifier = classifier
        self.backoff = backoff
        self.sleep = sleep

    @property
    def max_attempts(self) -> int:
        """Total attempts including the first."""
        return self.max_retries + 1

    def get_delay(self, kind: FailureKind, attempt: int) -> float:
        """Delay before retrying after ``attempt`` failures of ``kind``."""
        return self.backoff(kind, attempt, self.base_delay)

    async def run(self, operation: Callable[[], Awaitable[T]], description: str = "operation") -> tuple[T, int]:
        """
        Run an async operation with retries.

        Parameters
        ----------
        operation : Callable[[], Awaitable[T]]
            Zero-argument coroutine factory, called once per attempt
        description : str
            Label used in log messages

        Returns
        -------
        tuple[T, int]
            Operation result and the number of attempts it took

        Raises
        ------
        RetryExhaustedError
            If every attempt failed or a failure was classified permanent

        """
        for attempt in range(1, self.max_attempts + 1):
            try:
                return await operation(), attempt
            except Exception as e:
                kind = self.classifier(e)

                # Don't retry on last attempt
                if kind is FailureKind.PERMANENT or attempt == self.max_attempts:
                    logger.debug("%s failed permanently after %d attempts: %s", description, attempt, e)
                    raise RetryExhaustedError(attempt, e) from e

                delay = self.get_delay(kind, attempt)
                logger.debug(
                    "%s failed (%s, attempt %d/%d), retrying in %.2fs: %s",
                    description,
                    kind,
                    attempt,
                    self.max_attempts,
                    delay,
                    e,
                )
                await self.sleep(delay)

        msg = "unreachable"
        raise AssertionError(msg)
