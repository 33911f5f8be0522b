"""Background replication of counter increments into MongoDB.

Drains the counter replication stream on a fixed interval and writes each
value into the durable counter document. Runs inside the API process (started
from the FastAPI lifespan) or on its own via ``python -m app.replication``.

Flow Diagram: One Tick
======================
::
    ┌─────────────┐
    │ read_pending │  own unacked entries first, then new ones
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ parse        │──── invalid ───► skip + ack
    │ counter      │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ upsert       │──── failure ───► log, leave pending
    │ durable doc  │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ XACK         │  best effort; a lost ack means redelivery
    └─────────────┘

Key Behaviours
===============
- The upsert is last-write-wins. An out-of-order record can move the durable
  value backwards; Redis remains the authority for uniqueness.
- ``stop()`` is honoured at tick boundaries; an in-flight tick completes first.
- The worker never writes the Redis counter.
"""

import asyncio
import logging
import signal

import redis.asyncio as redis
from prometheus_client import Counter, start_http_server
from pydantic import ValidationError

from app.config import get_settings
from app.database import create_mongo_client
from app.exceptions import DataStoreError
from app.schemas import ReplicationRecord
from app.storage import CounterStore
from app.streams import RedisStreamReplicationLog, ReplicationLog, StreamEntry

__all__ = ["ReplicationWorker", "run"]

logger = logging.getLogger(__name__)

REPLICATION_RECORDS_TOTAL = Counter(
    "counter_replication_records_total",
    "Counter replication records written to MongoDB",
)
REPLICATION_FAILURES_TOTAL = Counter(
    "counter_replication_failures_total",
    "Counter replication records whose MongoDB upsert failed",
)
REPLICATION_SKIPPED_TOTAL = Counter(
    "counter_replication_skipped_total",
    "Counter replication records dropped because the counter could not be parsed",
)


class ReplicationWorker:
    def __init__(
        self,
        replication_log: ReplicationLog,
        durable: CounterStore,
        interval_seconds: float = 5.0,
        batch_size: int = 100,
    ):
        self._log = replication_log
        self._durable = durable
        self.interval_seconds = interval_seconds
        self.batch_size = batch_size
        self._stop = asyncio.Event()
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self) -> int:
        """Replicate one batch and return how many records reached MongoDB."""
        entries = await self._log.read_pending(self.batch_size)
        replicated = 0

        for entry in entries:
            record = self._parse(entry)
            if record is None:
                REPLICATION_SKIPPED_TOTAL.inc()
                await self._ack(entry)
                continue

            try:
                await self._durable.upsert(record.counter)
            except DataStoreError:
                REPLICATION_FAILURES_TOTAL.inc()
                logger.warning(f"failed to replicate counter {record.counter} to MongoDB", exc_info=True)
                continue

            REPLICATION_RECORDS_TOTAL.inc()
            replicated += 1
            await self._ack(entry)

        if replicated:
            logger.debug(f"replicated {replicated} counter records")
        return replicated

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._task = asyncio.create_task(self._loop(), name="counter-replication")
        logger.info("Counter replication worker started")

    def request_stop(self) -> None:
        self._stop.set()

    async def join(self) -> None:
        if self._task is not None:
            await self._task

    async def stop(self) -> None:
        self.request_stop()
        await self.join()
        self._task = None
        logger.info("Counter replication worker stopped")

    async def _loop(self) -> None:
        while True:
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                pass
            if self._stop.is_set():
                return

            try:
                await self.run_once()
            except Exception:
                logger.warning("replication tick failed", exc_info=True)

    async def _ack(self, entry: StreamEntry) -> None:
        try:
            await self._log.ack(entry.entry_id)
        except DataStoreError:
            logger.warning(f"failed to ack replication record {entry.entry_id}", exc_info=True)

    @staticmethod
    def _parse(entry: StreamEntry) -> ReplicationRecord | None:
        if not entry.fields or "counter" not in entry.fields:
            logger.warning(f"replication record {entry.entry_id} has no counter field")
            return None
        try:
            return ReplicationRecord.model_validate(entry.fields)
        except ValidationError:
            logger.warning(f"invalid replication record {entry.entry_id}: {entry.fields!r}")
            return None


async def run() -> None:
    settings = get_settings()
    logging.basicConfig(level=settings.LOG_LEVEL, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    start_http_server(settings.REPLICATION_METRICS_PORT)

    client = redis.from_url(settings.REDIS_URL, encoding="utf-8", decode_responses=True)
    mongo_client = create_mongo_client(settings)

    replication_log = RedisStreamReplicationLog(
        client,
        stream=settings.REPLICATION_STREAM_KEY,
        group=settings.REPLICATION_CONSUMER_GROUP,
        consumer=settings.REPLICATION_CONSUMER_NAME,
        maxlen=settings.REPLICATION_STREAM_MAXLEN,
    )
    await replication_log.ensure_group()

    worker = ReplicationWorker(
        replication_log,
        CounterStore(mongo_client[settings.MONGO_DB][settings.COUNTER_COLLECTION]),
        interval_seconds=settings.REPLICATION_INTERVAL_SECONDS,
        batch_size=settings.REPLICATION_BATCH_SIZE,
    )

    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(signum, worker.request_stop)

    worker.start()
    try:
        await worker.join()
    finally:
        await client.aclose()
        mongo_client.close()


if __name__ == "__main__":
    asyncio.run(run())
