"""Distributed short code counter backed by Redis and MongoDB.

Every service instance shares one Redis integer; ``INCR`` on that key is the
only thing that makes short codes unique. MongoDB holds a snapshot of the
value so the counter can be recovered when Redis loses its state, and that
snapshot is kept current asynchronously through the replication log.

Flow Diagram: get_next_counter()
================================
::
    ┌─────────────┐
    │ INCR        │──── failure ───► CounterUnavailableError
    │ counter key │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ XADD        │──── failure ───► log warning, keep value
    │ replication │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Return new  │
    │ value       │
    └─────────────┘

Flow Diagram: get_current_counter()
===================================
::
    ┌─────────────┐
    │ GET counter │
    └──────┬──────┘
    FOUND? │
    ┌──────┴──────┐
    │ YES          │ NO (cold start)
    ▼              ▼
┌─────────┐  ┌──────────────────┐
│ Return  │  │ Read durable doc │
│ value   │  │ (create at 0 if  │
└─────────┘  │ missing)         │
             └────────┬─────────┘
                      ▼
             ┌──────────────────┐
             │ SET NX fast tier │  loses to an instance that
             │ then GET         │  seeded first
             └────────┬─────────┘
                      ▼
             ┌──────────────────┐
             │ Return live value│
             └──────────────────┘

Key Behaviours
===============
- No application locking: concurrency safety comes from Redis ``INCR``.
- Replication is best effort; a lost record only delays the durable snapshot.
- Cold-start recovery never overwrites a counter another instance already
  seeded, so instances starting together against an empty Redis agree.
- ``initialize_counter`` overwrites the fast tier with the durable value. Call it
  once at bootstrap, before any ``get_next_counter``; calling it later can move
  the counter backwards and reissue codes.

Classes:
    DistributedCounter:  The counter service.
"""

import logging

import redis.asyncio as redis
from redis.exceptions import RedisError

from app.exceptions import CounterUnavailableError, DataStoreError
from app.models import CounterDocument
from app.schemas import ReplicationRecord
from app.storage import CounterStore
from app.streams import ReplicationLog

__all__ = ["DistributedCounter"]

logger = logging.getLogger(__name__)


class DistributedCounter:
    def __init__(
        self,
        client: redis.Redis,
        durable: CounterStore,
        replication_log: ReplicationLog,
        key: str = "short_code_counter",
    ):
        self._redis = client
        self._durable = durable
        self._log = replication_log
        self.key = key

    async def get_next_counter(self) -> int:
        """Atomically increment the shared counter and return the new value."""
        try:
            value = int(await self._redis.incr(self.key))
        except RedisError as e:
            raise CounterUnavailableError(f"failed to increment counter in Redis: {e}") from e

        try:
            await self._log.append(ReplicationRecord(counter=value))
        except DataStoreError:
            logger.warning(f"failed to add counter {value} to replication stream", exc_info=True)

        return value

    async def get_current_counter(self) -> int:
        try:
            raw = await self._redis.get(self.key)
        except RedisError as e:
            raise CounterUnavailableError(f"failed to get counter from Redis: {e}") from e

        if raw is None:
            logger.info("counter missing from Redis, recovering from MongoDB")
            return await self._initialize_from_durable()
        return int(raw)

    async def initialize_counter(self) -> None:
        """Create the durable document if needed and copy its value into Redis."""
        document = await self._ensure_durable_document()
        await self._seed_fast_tier(document.counter if document is not None else 0)

    async def _initialize_from_durable(self) -> int:
        document = await self._durable.get()
        if document is None:
            document = await self._ensure_durable_document()
        counter = document.counter if document is not None else 0
        return await self._seed_if_missing(counter)

    async def _ensure_durable_document(self) -> CounterDocument | None:
        document = await self._durable.get()
        if document is None:
            document = await self._durable.create(counter=0)
            if document is None:
                # Another instance inserted it between our read and insert
                document = await self._durable.get()
            logger.info("initialized durable counter document")
        return document

    async def _seed_fast_tier(self, value: int) -> None:
        try:
            await self._redis.set(self.key, value)
        except RedisError as e:
            raise CounterUnavailableError(f"failed to set counter in Redis: {e}") from e
        logger.info(f"seeded Redis counter '{self.key}' with {value}")

    async def _seed_if_missing(self, value: int) -> int:
        """Seed Redis only if no other instance did so first; return the live value."""
        try:
            seeded = await self._redis.set(self.key, value, nx=True)
            raw = await self._redis.get(self.key)
        except RedisError as e:
            raise CounterUnavailableError(f"failed to seed counter in Redis: {e}") from e
        if seeded:
            logger.info(f"seeded Redis counter '{self.key}' with {value}")
        return int(raw) if raw is not None else value
