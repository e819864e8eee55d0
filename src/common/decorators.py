"""
Error handling decorators shared by EzUpdate modules.
"""

from __future__ import annotations

import functools
import logging
import time
from typing import Any, Callable, Optional, Type

logger = logging.getLogger(__name__)


def handle_errors(
    *exception_types: Type[Exception],
    default: Any = None,
    log_level: int = logging.ERROR,
    reraise: bool = False,
    message: Optional[str] = None,
):
    """
    Turn the listed exceptions into a logged default return value.

    Args:
        exception_types: Exceptions to intercept (all exceptions if omitted)
        default: Returned in place of the failed call's result
        log_level: Level of the log entry; tracebacks are attached at ERROR and above
        reraise: Log, then propagate anyway
        message: Log prefix, the function name by default

    Example:
        @handle_errors(CommandTimeoutError, default=None, log_level=logging.WARNING)
        def needs_restarting():
            ...
    """
    caught = exception_types or (Exception,)

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            try:
                return func(*args, **kwargs)
            except caught as e:
                logger.log(
                    log_level,
                    f"{message or func.__name__ + ' failed'}: {e}",
                    exc_info=log_level >= logging.ERROR,
                )
                if reraise:
                    raise
                return default
        return wrapper
    return decorator


def reraise_as(
    translate: Callable[[Any, Exception], Exception],
    *exception_types: Type[Exception],
):
    """
    Re-raise exceptions escaping a method as a different error.

    ``translate`` receives the instance the method is bound to and the
    caught exception, and returns the error to raise in its place. The
    original is kept as ``__cause__``.
    """
    caught = exception_types or (Exception,)

    def decorator(method: Callable) -> Callable:
        @functools.wraps(method)
        def wrapper(self, *args, **kwargs):
            try:
                return method(self, *args, **kwargs)
            except caught as e:
                raise translate(self, e) from e
        return wrapper
    return decorator


def timed(func: Callable) -> Callable:
    """Log how long each call took, at DEBUG."""
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        started = time.perf_counter()
        try:
            return func(*args, **kwargs)
        finally:
            logger.debug(f"{func.__qualname__} completed in {time.perf_counter() - started:.3f}s")
    return wrapper
