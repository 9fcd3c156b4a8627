"""Bounded retry for transient infrastructure calls."""

import logging
from typing import Awaitable, Callable, Tuple, Type, TypeVar

from sqlalchemy.exc import InterfaceError, OperationalError
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception_type, stop_after_attempt, wait_fixed

logger = logging.getLogger(__name__)

T = TypeVar("T")

TRANSIENT_STORE_ERRORS: Tuple[Type[BaseException], ...] = (
    OperationalError,
    InterfaceError,
    OSError,
    TimeoutError,
)


def _log_before_sleep(description: str, attempts: int) -> Callable[[RetryCallState], None]:
    def _before_sleep(retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
        logger.warning(
            "%s failed (attempt %d/%d), retrying in %.1fs: %s",
            description,
            retry_state.attempt_number,
            attempts,
            delay,
            exc,
        )

    return _before_sleep


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    *,
    attempts: int = 3,
    backoff_seconds: float = 1.0,
    retry_on: Tuple[Type[BaseException], ...] = TRANSIENT_STORE_ERRORS,
    description: str = "operation",
) -> T:
    """
    Await ``operation()`` up to ``attempts`` times with a fixed backoff.

    Only exceptions in ``retry_on`` are retried; anything else propagates
    immediately. The last error is re-raised once attempts are exhausted.
    """
    retrying = AsyncRetrying(
        stop=stop_after_attempt(attempts),
        wait=wait_fixed(backoff_seconds),
        retry=retry_if_exception_type(retry_on),
        before_sleep=_log_before_sleep(description, attempts),
        reraise=True,
    )
    async for attempt in retrying:
        with attempt:
            result = await operation()
    return result
