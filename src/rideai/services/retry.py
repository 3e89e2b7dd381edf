"""Retry/backoff combinator shared by every provider call."""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable

from ..config.providers import RetryConfig
from ..interfaces import ErrorKind, ProviderResult

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class RetryPolicy:
    """How often and how patiently to retry a retryable failure.

    Attributes:
        max_retries: Retries after the first attempt (N retries = N+1 attempts)
        backoff_base: Delay before the first retry, in seconds
        backoff_max: Cap on any single delay
        timeout_seconds: Bound on a single attempt
    """
    max_retries: int = 2
    backoff_base: float = 1.0
    backoff_max: float = 30.0
    timeout_seconds: float = 30.0

    def __post_init__(self):
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.backoff_base < 0 or self.backoff_max < 0:
            raise ValueError("backoff delays must be >= 0")
        if self.timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be positive")

    @classmethod
    def from_config(cls, config: RetryConfig) -> "RetryPolicy":
        return cls(
            max_retries=config.max_retries,
            backoff_base=config.backoff_base,
            backoff_max=config.backoff_max,
            timeout_seconds=config.timeout_seconds,
        )

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    def delay_for(self, attempt: int) -> float:
        """Backoff before retry number ``attempt`` (0-based)."""
        return min(self.backoff_base * (2 ** attempt), self.backoff_max)


@dataclass
class RetryOutcome:
    """Final result plus what it took to get there."""
    result: ProviderResult
    attempts: int
    delays: list[float] = field(default_factory=list)

    @property
    def failed_attempts(self) -> int:
        return self.attempts - 1 if self.result.ok else self.attempts


async def with_retry(
    policy: RetryPolicy,
    fn: Callable[[], Awaitable[ProviderResult]],
    provider_id: str = "unknown",
    sleep: Sleep = asyncio.sleep,
) -> RetryOutcome:
    """Call ``fn`` until it succeeds, fails fatally, or retries run out.

    Each attempt is bounded by ``policy.timeout_seconds``; a timeout is a
    retryable failure. Attempts are strictly sequential.

    Args:
        policy: Retry policy
        fn: Zero-argument coroutine factory returning a ProviderResult
        provider_id: Used for timeout results and logs
        sleep: Backoff sleep (injectable for tests)

    Returns:
        RetryOutcome with the last result and the attempt count
    """
    delays: list[float] = []
    attempt = 0
    while True:
        attempt += 1
        try:
            result = await asyncio.wait_for(fn(), timeout=policy.timeout_seconds)
        except asyncio.TimeoutError:
            result = ProviderResult.retryable_failure(
                provider_id,
                ErrorKind.TIMEOUT,
                f"no response within {policy.timeout_seconds}s",
            )

        if not result.retryable or attempt > policy.max_retries:
            return RetryOutcome(result=result, attempts=attempt, delays=delays)

        delay = policy.delay_for(attempt - 1)
        logger.warning(
            f"{provider_id} attempt {attempt}/{policy.max_attempts} failed "
            f"({result.error_kind.value}); retrying in {delay:.2f}s"
        )
        delays.append(delay)
        await sleep(delay)
