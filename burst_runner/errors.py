"""
Error handling for burst-stack

Failure taxonomy of the align-and-merge pipeline plus decorators that map
runtime failures onto it. Every failure aborts the whole invocation; a
partially merged image is never returned.
"""

import functools
import logging
import traceback
from typing import Callable, Optional


class BurstProcessingError(Exception):
    """Base class for all burst processing failures"""
    def __init__(self, message: str, original_error: Optional[Exception] = None):
        super().__init__(message)
        self.original_error = original_error
        self.log_error()

    def log_error(self):
        """Log error details"""
        logger = logging.getLogger('BurstProcessingError')
        logger.error(f"{type(self).__name__}: {self}")
        if self.original_error:
            logger.error(f"Original error: {self.original_error!r}")
            logger.debug(
                "".join(traceback.format_exception(
                    type(self.original_error),
                    self.original_error,
                    self.original_error.__traceback__,
                ))
            )


class InsufficientFramesError(BurstProcessingError):
    """Fewer than two captures were supplied"""
    pass


class DecodeError(BurstProcessingError):
    """A capture could not be decoded into a sensor grid"""
    pass


class AllocationError(BurstProcessingError):
    """Compute resources (memory) are exhausted"""
    pass


class ComputeError(BurstProcessingError):
    """A data-parallel kernel failed"""
    pass


def robust_processing(func: Callable) -> Callable:
    """
    Decorator mapping runtime failures onto the burst error taxonomy

    Args:
        func: Function to decorate

    Returns:
        Decorated function. MemoryError becomes AllocationError, any other
        non-burst exception becomes ComputeError. Burst errors pass through.
    """
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        logger = logging.getLogger(func.__module__)
        try:
            return func(*args, **kwargs)
        except BurstProcessingError:
            raise
        except MemoryError as e:
            logger.error(f"Memory error in {func.__name__}: {e}")
            raise AllocationError(
                f"Out of memory in {func.__name__}",
                original_error=e
            ) from e
        except Exception as e:
            logger.error(f"Unexpected error in {func.__name__}: {e}")
            raise ComputeError(
                f"Kernel {func.__name__} failed: {e}",
                original_error=e
            ) from e
    return wrapper


def log_exception(func: Callable) -> Callable:
    """
    Decorator that logs exceptions and re-raises them

    Args:
        func: Function to decorate

    Returns:
        Decorated function with error logging
    """
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        logger = logging.getLogger(func.__module__)
        try:
            return func(*args, **kwargs)
        except Exception as e:
            logger.error(f"Error in {func.__name__}: {e}")
            logger.debug(traceback.format_exc())
            raise
    return wrapper
