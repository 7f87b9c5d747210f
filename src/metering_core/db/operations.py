"""
Guard for store-touching operations.

Bounds every operation by the manager's timeout and translates driver
failures into StoreError. Domain errors (validation, not-found, integrity)
pass through untouched.
"""

import asyncio
import functools
import logging
from typing import Any, Awaitable, Callable, TypeVar

from sqlalchemy.exc import SQLAlchemyError

from metering_core.errors import StoreError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def store_operation(
    func: Callable[..., Awaitable[T]],
) -> Callable[..., Awaitable[T]]:
    """Decorate an async method of an object holding ``self._db``."""

    @functools.wraps(func)
    async def wrapper(self: Any, *args: Any, **kwargs: Any) -> T:
        timeout = self._db.operation_timeout
        try:
            return await asyncio.wait_for(func(self, *args, **kwargs), timeout=timeout)
        except asyncio.TimeoutError as e:
            logger.error(f"{func.__qualname__} timed out after {timeout}s")
            raise StoreError(
                f"Store operation timed out after {timeout}s",
                {"operation": func.__qualname__},
            ) from e
        except SQLAlchemyError as e:
            logger.error(f"{func.__qualname__} failed: {e}")
            raise StoreError(
                f"Database error: {e}", {"operation": func.__qualname__}
            ) from e
        except OSError as e:
            # Connection refused/reset before SQLAlchemy wraps it
            logger.error(f"{func.__qualname__} connection failure: {e}")
            raise StoreError(
                f"Connection error: {e}", {"operation": func.__qualname__}
            ) from e

    return wrapper
