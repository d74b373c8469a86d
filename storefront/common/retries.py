import asyncio
import functools
import random
from typing import Callable, Optional
from sqlalchemy.exc import DBAPIError,OperationalError,InterfaceError
from storefront.common.logging_setup import get_logger

logger = get_logger("storefront.retries")


def is_recoverable_exception(exc: BaseException) -> bool:
    if isinstance(exc, asyncio.CancelledError):
        return False
    # common transient-ish exceptions
    if isinstance(exc, (TimeoutError, ConnectionError, OperationalError, InterfaceError)):
        return True
    if isinstance(exc, DBAPIError):
        # SQLAlchemy's DBAPIError has connection_invalidated when connections dropped
        if getattr(exc, "connection_invalidated", False):
            return True
        orig = getattr(exc, "orig", None)
        if orig is not None:
            name = type(orig).__name__.lower()
            if any(k in name for k in ("timeout", "connection", "brokenpipe", "connectionrefused", "connectionreset", "deadlock", "serialization")):
                return True
    return False

async def _sleep_with_jitter(delay: float, jitter: float) -> None:
    jitter_val = random.uniform(-jitter * delay, jitter * delay)
    await asyncio.sleep(max(0.0, delay + jitter_val))


def retry_async(
    *,
    attempts: int = 3,
    base_delay: float = 0.1,
    factor: float = 2.0,
    max_delay: float = 2.0,
    jitter: float = 0.15,
    if_retryable: Optional[Callable[[BaseException], bool]] = None,
):
    """Retry a coroutine function on recoverable database errors with exponential backoff.

    The wrapped function must open its own session/transaction per call so that a
    retry starts from a clean state.
    """
    if if_retryable is None:
        if_retryable = is_recoverable_exception

    def deco(fn: Callable):
        @functools.wraps(fn)
        async def wrapper(*args, **kwargs):
            for attempt in range(1, attempts + 1):
                try:
                    return await fn(*args, **kwargs)
                except asyncio.CancelledError:
                    raise
                except Exception as exc:
                    if not if_retryable(exc) or attempt == attempts:
                        raise
                    delay = min(max_delay, base_delay * (factor ** (attempt - 1)))
                    logger.debug("retry attempt %d of %s failed; retrying in %f: %s", attempt, fn.__name__, delay, exc)
                    await _sleep_with_jitter(delay, jitter)
        return wrapper
    return deco
