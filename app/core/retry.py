"""
Retry utilities with exponential backoff for async functions.

Used around calls to external collaborators (the VIN decode oracle) where a
transient failure is worth one more attempt inside the caller's time budget.
Registry writes are never retried here: they are single atomic statements and
surface storage failures to the caller as retryable errors instead.
"""

import asyncio
import logging
from functools import wraps
from typing import Any, Callable, Tuple, Type, TypeVar

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])

class RetryableError(Exception):
    """
    Exception that should be retried with exponential backoff.

    Used for transient failures that may succeed on retry:
    - Upstream 5xx responses and 429 rate limiting
    - Connection resets and read timeouts
    - Service restarts and rolling deployments

    Production Pattern:
    if response.status_code >= 500:
        raise RetryableError(f"Oracle returned {response.status_code}")
    """
    pass

class NonRetryableError(Exception):
    """
    Exception that should NOT be retried.

    Used for permanent, deterministic failures that won't change on retry:
    - Explicit "no match" answers from a lookup service
    - Malformed payloads (schema drift in an upstream API)
    - 4xx client errors other than rate limiting
    """
    pass

def async_retry(
    max_attempts: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 10.0,
    retry_on: Tuple[Type[BaseException], ...] = (RetryableError, asyncio.TimeoutError),
) -> Callable[[F], F]:
    """Decorator for async functions with exponential backoff retry logic.

    Args:
        max_attempts: Maximum number of attempts (default: 3)
        base_delay: Initial delay in seconds between retries (default: 1.0)
        max_delay: Maximum delay in seconds between retries (default: 10.0)
        retry_on: Exception types treated as transient

    Returns:
        Decorated async function with retry logic

    Example:
        @async_retry(max_attempts=2, base_delay=0.2, retry_on=(RetryableError, httpx.TransportError))
        async def fetch_decode(vin):
            return await client.get(f"/DecodeVinValuesExtended/{vin}")

    Error Handling:
    - NonRetryableError: Raised immediately without retry
    - Any type in retry_on: Retried up to max_attempts times
    - Anything else: Raised immediately

    Backoff Strategy:
    - delay = base_delay * (2 ^ attempt), capped at max_delay
    - Logs warning for each retry attempt
    - Logs error when all retries exhausted
    """
    def decorator(func: Callable) -> Callable:
        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            name = getattr(func, "__name__", repr(func))
            last_exception = None

            for attempt in range(max_attempts):
                try:
                    return await func(*args, **kwargs)

                except NonRetryableError:
                    raise

                except retry_on as e:
                    last_exception = e
                    if attempt < max_attempts - 1:
                        delay = min(base_delay * (2 ** attempt), max_delay)
                        logger.warning(
                            f"Retry attempt {attempt + 1}/{max_attempts} for {name}. "
                            f"Error: {str(e)}. Waiting {delay:.2f}s..."
                        )
                        await asyncio.sleep(delay)
                    else:
                        logger.error(
                            f"All {max_attempts} attempts failed for {name}. "
                            f"Final error: {str(e)}"
                        )

            raise last_exception if last_exception else RetryableError("Retry failed")

        return wrapper
    return decorator
