import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

from socialsync.errors import TransientNetworkError


logger = logging.getLogger(__name__)

T = TypeVar("T")


async def retry_transient(
    call: Callable[[], Awaitable[T]],
    what: str,
    max_retries: int = 2,
    backoff_seconds: float = 0.2,
) -> T:
    """Run ``call``, retrying transient failures with exponential backoff."""
    for attempt in range(max_retries + 1):
        try:
            return await call()
        except TransientNetworkError as e:
            if attempt < max_retries:
                delay = backoff_seconds * (2 ** attempt)
                logger.warning(f"{what} failed (attempt {attempt + 1}), retrying in {delay:.2f}s: {e}")
                await asyncio.sleep(delay)
                continue
            logger.error(f"{what} failed after {max_retries + 1} attempts: {e}")
            raise
    raise AssertionError("unreachable")
