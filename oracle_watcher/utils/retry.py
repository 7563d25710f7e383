"""
ORACLE WATCHER — Retry Utility
Bounded exponential backoff for async operations.
"""
import asyncio
from typing import Awaitable, Callable, Optional, Tuple, Type, TypeVar

from oracle_watcher.utils.logger import get_logger

logger = get_logger("retry")

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[None]]


def backoff_delay(attempt: int, base_delay: float, max_delay: float) -> float:
    """Delay before the retry that follows `attempt` (0-based)."""
    return min(base_delay * (2 ** attempt), max_delay)


async def with_retry(
    fn: Callable[[], Awaitable[T]],
    attempts: int = 3,
    base_delay: float = 2.0,
    max_delay: float = 15.0,
    label: str = "operation",
    non_retryable: Tuple[Type[BaseException], ...] = (),
    sleep: Optional[Sleep] = None,
) -> T:
    """
    Run `fn` up to `attempts` times, sleeping base_delay * 2^n (capped at
    max_delay) between attempts. The last exception is re-raised; exceptions
    listed in `non_retryable` are raised immediately.
    """
    sleep = sleep or asyncio.sleep
    attempts = max(1, attempts)

    for attempt in range(attempts):
        try:
            return await fn()
        except non_retryable:
            raise
        except Exception as e:
            if attempt == attempts - 1:
                logger.error("retry_exhausted", label=label, attempts=attempts, error=str(e))
                raise

            delay = backoff_delay(attempt, base_delay, max_delay)
            logger.warning(
                "retry_scheduled",
                label=label,
                attempt=attempt + 1,
                attempts=attempts,
                delay_s=delay,
                error=str(e),
            )
            await sleep(delay)

    raise RuntimeError("unreachable")  # pragma: no cover
