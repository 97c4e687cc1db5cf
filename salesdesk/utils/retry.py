import logging
import random
import time
from typing import Callable, Optional, Tuple, Type, TypeVar

from ..core.errors import DomainError, ErrorKind

logger = logging.getLogger(__name__)

T = TypeVar("T")


def backoff_delay(attempt: int, base_delay: float, max_delay: float = 2.0) -> float:
    """Full-jitter exponential backoff for the given zero-based attempt."""
    ceiling = min(max_delay, base_delay * (2 ** attempt))
    return random.uniform(0, ceiling)


def retry_upstream(
    operation: Callable[[], T],
    *,
    attempts: int,
    base_delay: float,
    retry_on: Tuple[Type[BaseException], ...],
    on_retry: Optional[Callable[[BaseException], None]] = None,
    description: str = "upstream call",
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Run ``operation`` retrying infrastructure faults; persistent failure becomes UPSTREAM_UNAVAILABLE."""
    attempts = max(1, attempts)
    for attempt in range(attempts):
        try:
            return operation()
        except retry_on as exc:
            if on_retry is not None:
                on_retry(exc)
            if attempt + 1 >= attempts:
                logger.error("%s failed after %s attempts", description, attempts)
                raise DomainError(
                    ErrorKind.UPSTREAM_UNAVAILABLE,
                    f"{description} is unavailable",
                    {"attempts": attempts},
                ) from exc
            delay = backoff_delay(attempt, base_delay)
            logger.warning("%s failed (attempt %s/%s); retrying in %.3fs", description, attempt + 1, attempts, delay)
            sleep(delay)
    raise AssertionError("unreachable")


def retry_on_conflict(
    operation: Callable[[], T],
    *,
    attempts: int,
    on_conflict: Optional[Callable[[], None]] = None,
) -> T:
    """Re-run a read-modify-write use case when its optimistic version check loses a race."""
    attempts = max(1, attempts)
    for attempt in range(attempts):
        try:
            return operation()
        except DomainError as exc:
            if exc.kind is not ErrorKind.CONFLICT or attempt + 1 >= attempts:
                raise
            logger.info("Version conflict (attempt %s/%s); re-reading state", attempt + 1, attempts)
            if on_conflict is not None:
                on_conflict()
    raise AssertionError("unreachable")
