"""Replication worker and Redis stream log tests."""

import asyncio
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio

from app.exceptions import DataStoreError
from app.replication import ReplicationWorker
from app.schemas import ReplicationRecord
from app.storage import CounterStore
from app.streams import RedisStreamReplicationLog, StreamEntry

STREAM = "counter_replication"
GROUP = "replication_group"
CONSUMER = "worker-1"


@pytest_asyncio.fixture
async def replication_log(fake_redis) -> RedisStreamReplicationLog:
    log = RedisStreamReplicationLog(fake_redis, stream=STREAM, group=GROUP, consumer=CONSUMER)
    await log.ensure_group()
    return log


@pytest.fixture
def counter_store(counter_collection) -> CounterStore:
    return CounterStore(counter_collection)


@pytest.fixture
def worker(replication_log, counter_store) -> ReplicationWorker:
    return ReplicationWorker(replication_log, counter_store, interval_seconds=0.01, batch_size=10)


# ============================================================================
# STREAM LOG
# ============================================================================


@pytest.mark.asyncio
async def test_ensure_group_tolerates_existing_group(replication_log: RedisStreamReplicationLog) -> None:
    await replication_log.ensure_group()


@pytest.mark.asyncio
async def test_read_pending_prefers_unacked_entries(replication_log: RedisStreamReplicationLog) -> None:
    await replication_log.append(ReplicationRecord(counter=1))
    first = await replication_log.read_pending(10)
    await replication_log.append(ReplicationRecord(counter=2))

    redelivered = await replication_log.read_pending(10)

    assert [entry.entry_id for entry in redelivered] == [entry.entry_id for entry in first]
    assert redelivered[0].fields["counter"] == "1"


@pytest.mark.asyncio
async def test_read_pending_moves_on_after_ack(replication_log: RedisStreamReplicationLog) -> None:
    await replication_log.append(ReplicationRecord(counter=1))
    await replication_log.append(ReplicationRecord(counter=2))
    entries = await replication_log.read_pending(1)
    await replication_log.ack(entries[0].entry_id)

    following = await replication_log.read_pending(10)

    assert [entry.fields["counter"] for entry in following] == ["2"]


# ============================================================================
# WORKER
# ============================================================================


@pytest.mark.asyncio
async def test_run_once_replicates_and_acks(
    worker: ReplicationWorker,
    replication_log: RedisStreamReplicationLog,
    counter_store: CounterStore,
    fake_redis,
) -> None:
    await replication_log.append(ReplicationRecord(counter=42))

    assert await worker.run_once() == 1
    assert (await counter_store.get()).counter == 42
    assert fake_redis.pending_ids(STREAM, GROUP) == []

    assert await worker.run_once() == 0
    assert (await counter_store.get()).counter == 42


@pytest.mark.asyncio
async def test_run_once_applies_records_in_stream_order(
    worker: ReplicationWorker,
    replication_log: RedisStreamReplicationLog,
    counter_store: CounterStore,
) -> None:
    for value in (1, 2, 3):
        await replication_log.append(ReplicationRecord(counter=value))

    assert await worker.run_once() == 3
    assert (await counter_store.get()).counter == 3


@pytest.mark.asyncio
async def test_run_once_skips_and_acks_unparsable_records(
    worker: ReplicationWorker,
    counter_store: CounterStore,
    fake_redis,
) -> None:
    await fake_redis.xadd(STREAM, {"counter": "not-a-number"})
    await fake_redis.xadd(STREAM, {"timestamp": "1700000000"})

    assert await worker.run_once() == 0
    assert await counter_store.get() is None
    assert fake_redis.pending_ids(STREAM, GROUP) == []


@pytest.mark.asyncio
async def test_failed_upsert_stays_pending_and_is_redelivered(
    worker: ReplicationWorker,
    replication_log: RedisStreamReplicationLog,
    counter_store: CounterStore,
    counter_collection,
    fake_redis,
) -> None:
    await replication_log.append(ReplicationRecord(counter=7))
    counter_collection.failing = True

    assert await worker.run_once() == 0
    assert len(fake_redis.pending_ids(STREAM, GROUP)) == 1

    counter_collection.failing = False
    assert await worker.run_once() == 1
    assert (await counter_store.get()).counter == 7
    assert fake_redis.pending_ids(STREAM, GROUP) == []


@pytest.mark.asyncio
async def test_ack_failure_is_logged_not_raised(worker: ReplicationWorker, replication_log, fake_redis) -> None:
    await replication_log.append(ReplicationRecord(counter=3))
    fake_redis.failing.add("xack")

    assert await worker.run_once() == 1


def test_parse_accepts_string_and_int_counters() -> None:
    assert ReplicationWorker._parse(StreamEntry("1-0", {"counter": "15", "timestamp": "1700000000"})).counter == 15
    assert ReplicationWorker._parse(StreamEntry("2-0", {"counter": 16})).counter == 16


@pytest.mark.parametrize(
    "fields",
    [None, {}, {"timestamp": "1"}, {"counter": "abc"}, {"counter": "-1"}],
)
def test_parse_rejects_invalid_records(fields) -> None:
    assert ReplicationWorker._parse(StreamEntry("1-0", fields)) is None


@pytest.mark.asyncio
async def test_start_and_stop(worker: ReplicationWorker, replication_log, counter_store: CounterStore) -> None:
    await replication_log.append(ReplicationRecord(counter=9))

    worker.start()
    assert worker.running
    for _ in range(100):
        if await counter_store.get() is not None:
            break
        await asyncio.sleep(0.01)
    await asyncio.wait_for(worker.stop(), timeout=1)

    assert not worker.running
    assert (await counter_store.get()).counter == 9


@pytest.mark.asyncio
async def test_loop_survives_failed_tick(counter_store: CounterStore) -> None:
    replication_log = AsyncMock()
    replication_log.read_pending.side_effect = DataStoreError("stream unavailable")
    worker = ReplicationWorker(replication_log, counter_store, interval_seconds=0.01)

    worker.start()
    await asyncio.sleep(0.05)
    assert worker.running
    await asyncio.wait_for(worker.stop(), timeout=1)

    assert replication_log.read_pending.await_count >= 1


def test_parse_keeps_counter_when_timestamp_is_corrupt() -> None:
    record = ReplicationWorker._parse(StreamEntry("1-0", {"counter": "15", "timestamp": "garbage"}))

    assert record is not None
    assert record.counter == 15
    assert record.timestamp > 0


@pytest.mark.asyncio
async def test_acked_entries_are_removed_from_stream(
    worker: ReplicationWorker,
    replication_log: RedisStreamReplicationLog,
    counter_store: CounterStore,
    fake_redis,
) -> None:
    worker.batch_size = 100
    for value in range(1, 51):
        await replication_log.append(ReplicationRecord(counter=value))

    assert await worker.run_once() == 50
    assert fake_redis.streams[STREAM] == []
    assert (await counter_store.get()).counter == 50


@pytest.mark.asyncio
async def test_append_caps_stream_length(fake_redis) -> None:
    log = RedisStreamReplicationLog(fake_redis, stream=STREAM, group=GROUP, consumer=CONSUMER, maxlen=10)
    await log.ensure_group()

    for value in range(25):
        await log.append(ReplicationRecord(counter=value))

    assert len(fake_redis.streams[STREAM]) == 10


@pytest.mark.asyncio
async def test_append_passes_approximate_maxlen() -> None:
    client = AsyncMock()
    client.xadd = AsyncMock(return_value="1-0")
    log = RedisStreamReplicationLog(client, stream=STREAM, group=GROUP, consumer=CONSUMER, maxlen=1000)

    await log.append(ReplicationRecord(counter=1, timestamp=1700000000))

    client.xadd.assert_awaited_once_with(
        STREAM, {"counter": 1, "timestamp": 1700000000}, maxlen=1000, approximate=True
    )


@pytest.mark.asyncio
async def test_trimmed_pending_entry_is_skipped(
    worker: ReplicationWorker,
    replication_log: RedisStreamReplicationLog,
    counter_store: CounterStore,
    fake_redis,
) -> None:
    await replication_log.append(ReplicationRecord(counter=4))
    await replication_log.read_pending(10)
    fake_redis.streams[STREAM].clear()

    assert await worker.run_once() == 0
    assert fake_redis.pending_ids(STREAM, GROUP) == []
    assert await counter_store.get() is None
