"""Short code generation from the distributed counter."""

from app import base62
from app.counter import DistributedCounter

__all__ = ["ShortCodeGenerator"]


class ShortCodeGenerator:
    def __init__(self, counter: DistributedCounter):
        self._counter = counter

    async def generate(self) -> str:
        """Return the base62 form of the next counter value.

        Raises CounterUnavailableError when Redis cannot increment; retrying is
        left to the caller.
        """
        return base62.encode(await self._counter.get_next_counter())
