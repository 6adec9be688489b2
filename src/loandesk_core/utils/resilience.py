"""Resilience utilities for the case desk.

Standard retry policies for transient failures:
- service_startup_retry: backend connections at startup (Redis may be late)
- conflict_retry: optimistic-transaction conflicts on counter-bearing writes
"""

import logging
from typing import Any, Callable, TypeVar

from tenacity import (
    RetryCallState,
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)

from loandesk_core.errors import ConflictError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _log_conflict_retry(retry_state: RetryCallState) -> None:
    logger.warning(
        f"[Resilience] Conflict on {retry_state.fn.__name__}, "
        f"retrying (attempt {retry_state.attempt_number + 1})"
    )


# Standard retry policy for service startup connections
# - Wait 2^x * 1 seconds between retries (2s, 4s, 8s, 16s, 32s)
# - Stop after 5 attempts
# - Re-raise the exception if all retries fail
service_startup_retry = retry(
    stop=stop_after_attempt(5),
    wait=wait_exponential(multiplier=1, min=2, max=32),
    before_sleep=before_sleep_log(logger, logging.WARNING),
    reraise=True,
)


def conflict_retry(
    max_attempts: int = 2,
    max_wait: float = 0.05,
) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """Retry decorator for writes that lost an optimistic race.

    Only ConflictError is retried; every other error propagates on the first
    attempt. The default of two attempts means one internal retry.

    Example:
        ```python
        @conflict_retry(max_attempts=3)
        async def bump():
            async with store.transaction() as tx:
                ...
        ```
    """
    return retry(
        retry=retry_if_exception_type(ConflictError),
        stop=stop_after_attempt(max_attempts),
        wait=wait_random(0, max_wait),
        before_sleep=_log_conflict_retry,
        reraise=True,
    )


async def run_with_conflict_retry(
    fn: Callable[..., Any],
    *args: Any,
    max_attempts: int = 2,
    max_wait: float = 0.05,
    **kwargs: Any,
) -> Any:
    """Call an async function under conflict_retry with runtime settings."""
    return await conflict_retry(max_attempts=max_attempts, max_wait=max_wait)(fn)(*args, **kwargs)
