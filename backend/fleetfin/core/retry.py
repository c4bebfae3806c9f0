"""Sequential retry with a per-attempt timeout.

Used by the rule repository (database calls) and the rule generation
adapter (oracle calls). Only ``TransientInfraError`` is retried; anything
else propagates on the first failure.
"""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TypeVar

import structlog

from fleetfin.core.exceptions import TransientInfraError, UpstreamTimeoutError

logger = structlog.get_logger()

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """How many times to try, how long to wait, and how long one attempt may take.

    The delay before attempt ``n + 1`` is ``base_delay * n``. ``timeout``
    bounds each attempt separately, not the whole sequence.
    """

    max_attempts: int = 3
    base_delay: float = 2.0
    timeout: float | None = 30.0
    sleep: Callable[[float], Awaitable[None]] = field(default=asyncio.sleep, compare=False)

    def delay_for(self, attempt: int) -> float:
        return self.base_delay * attempt


async def run_with_retry(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    *,
    name: str,
    on_retry: Callable[[], Awaitable[None]] | None = None,
) -> T:
    """Run ``operation`` until it succeeds, fails permanently, or attempts run out.

    ``operation`` is called afresh for each attempt. A timeout becomes an
    ``UpstreamTimeoutError``. ``on_retry`` runs before each new attempt
    (the repository uses it to roll back the session).
    """
    attempt = 1
    while True:
        try:
            if policy.timeout is None:
                return await operation()
            try:
                return await asyncio.wait_for(operation(), timeout=policy.timeout)
            except TimeoutError as e:
                raise UpstreamTimeoutError(f"{name} timed out after {policy.timeout}s") from e
        except TransientInfraError as e:
            if attempt >= policy.max_attempts:
                logger.error(
                    "retry_exhausted",
                    operation=name,
                    attempts=attempt,
                    error=e.detail,
                    error_code=e.error_code,
                )
                raise
            delay = policy.delay_for(attempt)
            logger.warning(
                "retrying_transient_failure",
                operation=name,
                attempt=attempt,
                delay=delay,
                error=e.detail,
                error_code=e.error_code,
            )
            await policy.sleep(delay)
            if on_retry is not None:
                await on_retry()
            attempt += 1
