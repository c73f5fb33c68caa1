import logging
import time
from typing import Callable, Optional, Tuple, Type, TypeVar

T = TypeVar("T")

logger = logging.getLogger(__name__)

MAX_BACKOFF_SECONDS = 8.0


def backoff_delay(attempt: int, base: float, cap: float = MAX_BACKOFF_SECONDS) -> float:
    """Exponential delay before retry number attempt+1 (0-based attempt), capped."""
    return min(cap, base * (2 ** attempt))


def with_retry(
    fn: Callable[[], T],
    *,
    retries: int = 3,
    backoff_seconds: float = 0.5,
    retry_on: Optional[Tuple[Type[BaseException], ...]] = None,
    operation: str = "call",
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Call fn() up to retries+1 times, sleeping with capped exponential backoff between attempts.
    Only exceptions in retry_on (default: any Exception) are retried; the last one is re-raised.
    Why available: Embedding and chat calls go through this so one transient API error does not fail a whole indexing run."""
    exc_types = retry_on or (Exception,)
    attempt = 0
    while True:
        try:
            return fn()
        except exc_types as e:
            if attempt >= retries:
                logger.error("retry_exhausted", extra={"operation": operation, "attempts": attempt + 1, "error": str(e)})
                raise
            delay = backoff_delay(attempt, backoff_seconds)
            logger.warning(
                "retrying_after_error",
                extra={"operation": operation, "attempt": attempt + 1, "sleep_s": delay, "error": str(e)},
            )
            sleep(delay)
            attempt += 1
