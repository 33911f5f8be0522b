"""Replication log abstraction and its Redis stream implementation.

The distributed counter appends one record per increment; the replication
worker drains them into MongoDB. The worker only depends on the two consumer
operations (``read_pending`` and ``ack``), so the transport can be swapped.

Flow Diagram: Consumer Group Read
=================================
::
    ┌──────────────────┐
    │  read_pending(n) │
    └────────┬─────────┘
             ▼
    ┌──────────────────┐
    │ XREADGROUP ... 0 │   own entries delivered earlier
    │ (pending list)   │   but never acknowledged
    └────────┬─────────┘
     EMPTY?  │
    ┌────────┴────────┐
    │ NO               │ YES
    ▼                  ▼
┌─────────┐   ┌──────────────────┐
│ Return  │   │ XREADGROUP ... > │  entries never delivered
│ pending │   │ (new entries)    │  to this group
└─────────┘   └──────────────────┘

Key Behaviours
===============
- Delivery is at-least-once: an entry stays pending until ``ack``.
- The consumer group is created lazily (``MKSTREAM``) and ``BUSYGROUP`` is
  treated as success so every instance can call ``ensure_group``.
- Acknowledged entries are deleted, and ``XADD`` caps the stream at roughly
  ``maxlen`` entries so a stalled worker cannot grow it without bound.
- Entries whose payload was trimmed from the stream come back with
  ``fields=None``.

Classes:
    StreamEntry:  One delivered record.
    ReplicationLog:  Protocol used by the counter and the worker.
    RedisStreamReplicationLog:  Redis Streams implementation.
"""

from dataclasses import dataclass
from typing import Any, Protocol

import redis.asyncio as redis
from redis.exceptions import ResponseError

from app.exceptions import DataStoreError
from app.helpers import handle_redis_errors
from app.schemas import ReplicationRecord

__all__ = ["StreamEntry", "ReplicationLog", "RedisStreamReplicationLog"]


@dataclass(frozen=True)
class StreamEntry:
    entry_id: str
    fields: dict[str, Any] | None


class ReplicationLog(Protocol):
    async def append(self, record: ReplicationRecord) -> str: ...

    async def read_pending(self, count: int) -> list[StreamEntry]: ...

    async def ack(self, entry_id: str) -> int: ...


class RedisStreamReplicationLog:
    def __init__(self, client: redis.Redis, stream: str, group: str, consumer: str, maxlen: int | None = None):
        self._redis = client
        self.stream = stream
        self.group = group
        self.consumer = consumer
        self.maxlen = maxlen

    @handle_redis_errors(DataStoreError)
    async def ensure_group(self) -> None:
        try:
            await self._redis.xgroup_create(self.stream, self.group, id="0", mkstream=True)
        except ResponseError as exc:
            if "BUSYGROUP" not in str(exc):
                raise

    @handle_redis_errors(DataStoreError)
    async def append(self, record: ReplicationRecord) -> str:
        return await self._redis.xadd(self.stream, record.to_fields(), maxlen=self.maxlen, approximate=True)

    @handle_redis_errors(DataStoreError)
    async def read_pending(self, count: int) -> list[StreamEntry]:
        entries = await self._read(count, "0")
        if entries:
            return entries
        return await self._read(count, ">")

    @handle_redis_errors(DataStoreError)
    async def ack(self, entry_id: str) -> int:
        """Acknowledge the entry and drop it from the stream."""
        acked = await self._redis.xack(self.stream, self.group, entry_id)
        await self._redis.xdel(self.stream, entry_id)
        return acked

    async def _read(self, count: int, start: str) -> list[StreamEntry]:
        streams = await self._redis.xreadgroup(
            groupname=self.group,
            consumername=self.consumer,
            streams={self.stream: start},
            count=count,
        )
        if not streams:
            return []

        entries: list[StreamEntry] = []
        for _, messages in streams:
            for message_id, payload in messages:
                entries.append(StreamEntry(entry_id=message_id, fields=payload or None))
        return entries
