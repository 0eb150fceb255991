"""Utility functions and helpers for the cloudadaptor service."""
import functools
import logging
import time
import uuid
from typing import Any, Callable, Tuple, Type, TypeVar

T = TypeVar('T')

logger = logging.getLogger(__name__)

REDACT_KEYS = ("password", "pass", "secret", "token", "key_pem", "kubeconfig", "rke_config")


def new_uuid() -> str:
    """Return a dash-free random identifier."""
    return uuid.uuid4().hex


def truncate_utf8(text: str, limit: int) -> str:
    """Cut ``text`` so that its UTF-8 encoding is at most ``limit`` bytes."""
    data = (text or "").encode("utf-8")
    if len(data) <= limit:
        return text or ""
    return data[:limit].decode("utf-8", "ignore")


def redact_sensitive_data(data: Any) -> Any:
    """Recursively redact sensitive data from dictionaries and lists.

    Args:
        data: Input data that might contain sensitive information

    Returns:
        Data with sensitive values redacted
    """
    if isinstance(data, dict):
        return {
            k: "[REDACTED]" if any(
                redact_key in str(k).lower()
                for redact_key in REDACT_KEYS
            ) else redact_sensitive_data(v)
            for k, v in data.items()
        }
    elif isinstance(data, (list, tuple)):
        return [redact_sensitive_data(item) for item in data]
    return data


class RetryError(Exception):
    """Raised when a retried call keeps failing."""
    pass


def retry(
    max_attempts: int,
    delay: float,
    exceptions: Tuple[Type[Exception], ...] = (Exception,),
    sleep: Callable[[float], None] = None,
):
    """Decorator for retrying a call with a fixed delay between attempts.

    Args:
        max_attempts: Total number of attempts
        delay: Seconds to wait between attempts
        exceptions: Tuple of exceptions to catch and retry on
        sleep: Sleep function, ``time.sleep`` unless given

    Returns:
        Decorated function with retry logic
    """
    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @functools.wraps(func)
        def wrapper(*args, **kwargs) -> T:
            last_exception = None
            for attempt in range(1, max_attempts + 1):
                try:
                    return func(*args, **kwargs)
                except exceptions as e:
                    last_exception = e
                    if attempt < max_attempts:
                        logger.warning(
                            f"Attempt {attempt} of {func.__name__} failed: {e}. "
                            f"Retrying in {delay:.2f}s..."
                        )
                        (sleep or time.sleep)(delay)

            raise RetryError(
                f"Failed after {max_attempts} attempts. Last error: {last_exception}"
            ) from last_exception
        return wrapper
    return decorator
