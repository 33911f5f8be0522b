import functools
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import pymongo.errors
import redis.exceptions

from app.exceptions import AppError, DataStoreError

__all__ = ["handle_redis_errors", "handle_mongo_errors"]

F = TypeVar("F", bound=Callable[..., Awaitable[Any]])


def handle_redis_errors(error_cls: type[AppError]) -> Callable[[F], F]:
    """Wrap Redis-interacting async methods so driver errors surface as ``error_cls``.

    Example:
        >>> @handle_redis_errors(CacheError)
        ... async def get(self, key):
        ...     return await self.redis.get(key)
    """

    def decorator(method: F) -> F:
        @functools.wraps(method)
        async def wrapper(self, *args, **kwargs):
            try:
                return await method(self, *args, **kwargs)
            except redis.exceptions.RedisError as e:
                raise error_cls(f"Redis operation '{method.__name__}' failed: {e}") from e

        return wrapper  # type: ignore[return-value]

    return decorator


def handle_mongo_errors(method: F) -> F:
    """Wrap MongoDB-interacting async methods to raise DataStoreError on driver failures."""

    @functools.wraps(method)
    async def wrapper(self, *args, **kwargs):
        try:
            return await method(self, *args, **kwargs)
        except pymongo.errors.PyMongoError as e:
            raise DataStoreError(f"MongoDB operation '{method.__name__}' failed: {e}") from e

    return wrapper  # type: ignore[return-value]
