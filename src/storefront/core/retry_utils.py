"""
Retry logic and backend error handling with exponential backoff.
Handles transient failures and validates every backend response envelope.
"""

import logging
import random
import time
from typing import Callable, Optional, TypeVar
from functools import wraps

from .errors import TransientError, PermanentError, AuthenticationError

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S"
)
logger = logging.getLogger(__name__)

T = TypeVar('T')


class RetryConfig:
    """Configuration for retry behavior."""

    def __init__(
        self,
        max_retries: int = 3,
        initial_backoff: float = 1.0,
        backoff_multiplier: float = 2.0,
        max_backoff: float = 32.0,
        jitter: bool = True
    ):
        self.max_retries = max_retries
        self.initial_backoff = initial_backoff
        self.backoff_multiplier = backoff_multiplier
        self.max_backoff = max_backoff
        self.jitter = jitter

    def get_backoff_time(self, attempt: int) -> float:
        """Calculate backoff time for attempt number."""
        backoff = min(
            self.initial_backoff * (self.backoff_multiplier ** attempt),
            self.max_backoff
        )

        if self.jitter:
            backoff = backoff * (0.5 + random.random())

        return backoff


def retry_with_backoff(
    func: Callable[..., T] = None,
    *,
    config: RetryConfig = None,
    error_handler: Optional[Callable[[Exception, int], None]] = None,
    sleep: Callable[[float], None] = time.sleep
):
    """
    Decorator to retry a function with exponential backoff.

    Usable bare (``@retry_with_backoff``) or with arguments
    (``@retry_with_backoff(config=RetryConfig(max_retries=1))``).

    Args:
        func: Function to retry
        config: Retry configuration
        error_handler: Callback on errors
        sleep: Sleep function between attempts

    Returns:
        Wrapped function with retry logic
    """
    if config is None:
        config = RetryConfig()

    def decorator(fn: Callable[..., T]) -> Callable[..., T]:
        @wraps(fn)
        def wrapper(*args, **kwargs) -> T:
            last_exception = None

            for attempt in range(config.max_retries + 1):
                try:
                    result = fn(*args, **kwargs)
                    if attempt > 0:
                        logger.info(f"Retry succeeded on attempt {attempt + 1}")
                    return result

                except (PermanentError, AuthenticationError) as e:
                    logger.error(f"Permanent error from {fn.__name__}: {e}")
                    raise

                except (TransientError, ConnectionError, TimeoutError) as e:
                    last_exception = e

                    if attempt < config.max_retries:
                        backoff = config.get_backoff_time(attempt)
                        logger.warning(
                            f"Attempt {attempt + 1} failed: {str(e)}. "
                            f"Retrying in {backoff:.2f} seconds..."
                        )

                        if error_handler:
                            error_handler(e, attempt)

                        sleep(backoff)
                    else:
                        logger.error(f"All {config.max_retries + 1} attempts failed")

                except Exception as e:
                    logger.error(f"Unexpected error in {fn.__name__}: {str(e)}")
                    raise

            if last_exception:
                raise last_exception

            raise RuntimeError(f"Failed to execute {fn.__name__}")

        return wrapper

    if func is not None:
        return decorator(func)
    return decorator


class APIResponseValidator:
    """Validates backend responses before using them."""

    @staticmethod
    def validate_envelope(response: dict, endpoint: str, required_keys: set = frozenset()) -> dict:
        """
        Validate the backend's ``{success, ...}`` response envelope.

        Args:
            response: Decoded JSON body
            endpoint: Endpoint name, for error messages
            required_keys: Keys that must be present on success

        Returns:
            The response, unchanged, if valid; raises otherwise
        """
        if not isinstance(response, dict):
            raise PermanentError(f"Invalid response type: {type(response)}", endpoint)

        if "success" not in response:
            raise PermanentError("Missing 'success' flag in response", endpoint)

        if not response.get("success"):
            raise TransientError(
                f"Backend returned error: {response.get('error') or 'unknown error'}",
                endpoint
            )

        missing = [k for k in required_keys if response.get(k) is None]
        if missing:
            raise PermanentError(f"Missing required keys in response: {missing}", endpoint)

        logger.info(f"Backend response validation passed for {endpoint}")
        return response
