"""
Error Handling Utilities

Standard error kinds raised by the engine and the helpers used to apply
them consistently: decorators that log with context, best-effort execution
for side-writes, and the single-retry policy for write conflicts.
"""

import logging
from typing import Any, Callable, Tuple, Type
from functools import wraps
import traceback

logger = logging.getLogger(__name__)


class EngineError(Exception):
    """Base class for all errors surfaced by the engine."""

    retryable = False


class InvalidPayload(EngineError):
    """Raised when sample data is malformed or out of range. Not retried."""
    pass


class NotFound(EngineError):
    """Raised when a read targets an unknown event."""
    pass


class StorageUnavailable(EngineError):
    """Raised on a transient backing-store failure or timeout."""

    retryable = True


class Conflict(EngineError):
    """Raised when a versioned write loses a race on a serialized key."""

    retryable = True


def handle_specific_exceptions(
    exceptions: Tuple[Type[Exception], ...],
    error_context: str = "",
    log_level: int = logging.ERROR,
    reraise: bool = True
) -> Callable:
    """
    Decorator for handling specific exceptions with context.

    Args:
        exceptions: Tuple of exception types to catch
        error_context: Context string for error messages
        log_level: Logging level for errors
        reraise: Whether to reraise the exception

    Returns:
        Decorator function
    """
    def decorator(func: Callable) -> Callable:
        @wraps(func)
        def wrapper(*args, **kwargs):
            try:
                return func(*args, **kwargs)
            except exceptions as e:
                context = f"{error_context}: " if error_context else ""
                logger.log(log_level, f"{context}{type(e).__name__}: {e}")
                logger.debug(f"Error details for {func.__name__}: {traceback.format_exc()}")
                if reraise:
                    raise
                return None
        return wrapper
    return decorator


def safe_execute(
    func: Callable,
    *args,
    default: Any = None,
    error_context: str = "",
    **kwargs
) -> Any:
    """
    Execute a best-effort side-write, logging and swallowing any failure.

    Args:
        func: Function to execute
        *args: Positional arguments
        default: Default value to return on error
        error_context: Context for error messages
        **kwargs: Keyword arguments

    Returns:
        Function result or default value
    """
    try:
        return func(*args, **kwargs)
    except Exception as e:
        context = f"{error_context}: " if error_context else ""
        logger.warning(f"{context}{type(e).__name__}: {e}")
        logger.debug(f"Error details: {traceback.format_exc()}")
        return default


def retry_on_conflict(attempts: int = 1) -> Callable:
    """
    Decorator that re-runs the wrapped call after a Conflict.

    The call is retried ``attempts`` times; a Conflict on the last attempt is
    surfaced to the caller unchanged.
    """
    def decorator(func: Callable) -> Callable:
        @wraps(func)
        def wrapper(*args, **kwargs):
            for attempt in range(attempts + 1):
                try:
                    return func(*args, **kwargs)
                except Conflict as e:
                    if attempt >= attempts:
                        logger.error(f"{func.__name__}: conflict persisted after {attempts} retry: {e}")
                        raise
                    logger.warning(f"{func.__name__}: conflict on attempt {attempt + 1}, retrying: {e}")
        return wrapper
    return decorator
