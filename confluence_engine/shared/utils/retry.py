"""
Shared retry logic.

Exponential backoff with jitter for transient failures: exchange rate limits
and network errors in the market-data adapter, and store write failures in
the persistence path.
"""

import time
import random
from functools import wraps
from typing import Any, Callable, Optional, Tuple, Type, TypeVar
from loguru import logger


# Default configuration
DEFAULT_MAX_RETRIES = 3
DEFAULT_BACKOFF = 1.0
DEFAULT_JITTER_PCT = 0.25  # 25% random jitter


F = TypeVar('F', bound=Callable[..., Any])


def call_with_retry(
    func: Callable[..., Any],
    *args: Any,
    exceptions: Tuple[Type[BaseException], ...] = (Exception,),
    max_retries: int = DEFAULT_MAX_RETRIES,
    backoff: float = DEFAULT_BACKOFF,
    jitter_pct: float = DEFAULT_JITTER_PCT,
    sleep: Callable[[float], None] = time.sleep,
    operation: Optional[str] = None,
    **kwargs: Any,
) -> Any:
    """
    Call ``func`` retrying on ``exceptions``.

    The first call plus up to ``max_retries`` retries are attempted; the
    backoff doubles after each failure. The last exception is re-raised.
    """
    name = operation or getattr(func, '__name__', 'operation')
    attempt = 0
    current_backoff = backoff

    while True:
        try:
            return func(*args, **kwargs)
        except exceptions as e:
            attempt += 1
            if attempt > max_retries:
                logger.error(f"{name} failed after {max_retries} retries: {e}")
                raise

            # Add jitter to prevent thundering herd
            jitter = current_backoff * jitter_pct * random.random()
            sleep_time = current_backoff + jitter

            logger.warning(
                f"{name} failed, retrying in {sleep_time:.2f}s "
                f"(attempt {attempt}/{max_retries}): {e}"
            )
            if sleep_time > 0:
                sleep(sleep_time)
            current_backoff *= 2


def retry_on_exception(
    exceptions: Tuple[Type[BaseException], ...],
    max_retries: int = DEFAULT_MAX_RETRIES,
    backoff: float = DEFAULT_BACKOFF,
    jitter_pct: float = DEFAULT_JITTER_PCT,
) -> Callable[[F], F]:
    """
    Decorator form of :func:`call_with_retry`.

    Example:
        @retry_on_exception((ccxt.RateLimitExceeded, ccxt.NetworkError), max_retries=5)
        def fetch_data():
            ...
    """
    def decorator(func: F) -> F:
        @wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            return call_with_retry(
                func,
                *args,
                exceptions=exceptions,
                max_retries=max_retries,
                backoff=backoff,
                jitter_pct=jitter_pct,
                operation=func.__name__,
                **kwargs,
            )

        return wrapper  # type: ignore
    return decorator
