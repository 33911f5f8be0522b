"""Shared pytest fixtures: in-memory Redis/Mongo doubles, service graph and API client."""

import itertools
import time
from types import SimpleNamespace
from typing import Any, AsyncGenerator
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from pymongo.errors import DuplicateKeyError, ServerSelectionTimeoutError
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import ResponseError

from app.config import Settings
from app.dependencies import ServiceManager, get_service_manager
from app.main import app


class InMemoryRedis:
    """Subset of ``redis.asyncio.Redis`` (decode_responses=True) used by the service.

    ``failing`` holds method names that raise a connection error when called.
    """

    def __init__(self):
        self.values: dict[str, str] = {}
        self.expires_at: dict[str, float] = {}
        self.streams: dict[str, list[tuple[str, dict[str, str]]]] = {}
        self.groups: dict[tuple[str, str], dict[str, Any]] = {}
        self.failing: set[str] = set()
        self._ids = itertools.count(1)

    def _check(self, name: str) -> None:
        if name in self.failing:
            raise RedisConnectionError(f"{name}: connection refused")

    def _purge(self, key: str) -> None:
        deadline = self.expires_at.get(key)
        if deadline is not None and time.monotonic() >= deadline:
            self.values.pop(key, None)
            self.expires_at.pop(key, None)

    async def ping(self) -> bool:
        self._check("ping")
        return True

    async def get(self, key: str) -> str | None:
        self._check("get")
        self._purge(key)
        return self.values.get(key)

    async def set(
        self, key: str, value: Any, ex: int | None = None, px: int | None = None, nx: bool = False
    ) -> bool | None:
        self._check("set")
        self._purge(key)
        if nx and key in self.values:
            return None
        self.values[key] = str(value)
        self.expires_at.pop(key, None)
        if ex is not None:
            self.expires_at[key] = time.monotonic() + ex
        if px is not None:
            self.expires_at[key] = time.monotonic() + px / 1000
        return True

    async def incr(self, key: str) -> int:
        self._check("incr")
        self._purge(key)
        value = int(self.values.get(key, 0)) + 1
        self.values[key] = str(value)
        return value

    async def delete(self, *keys: str) -> int:
        self._check("delete")
        return sum(1 for key in keys if self.values.pop(key, None) is not None)

    @staticmethod
    def _seq(entry_id: str) -> int:
        return int(entry_id.split("-")[0])

    async def xadd(
        self, name: str, fields: dict[str, Any], maxlen: int | None = None, approximate: bool = True
    ) -> str:
        self._check("xadd")
        entry_id = f"{next(self._ids)}-0"
        entries = self.streams.setdefault(name, [])
        entries.append((entry_id, {k: str(v) for k, v in fields.items()}))
        if maxlen is not None and len(entries) > maxlen:
            del entries[: len(entries) - maxlen]
        return entry_id

    async def xdel(self, name: str, *ids: str) -> int:
        self._check("xdel")
        entries = self.streams.get(name, [])
        kept = [entry for entry in entries if entry[0] not in ids]
        self.streams[name] = kept
        return len(entries) - len(kept)

    async def xgroup_create(self, name: str, groupname: str, id: str = "$", mkstream: bool = False) -> bool:
        self._check("xgroup_create")
        if name not in self.streams:
            if not mkstream:
                raise ResponseError("ERR The XGROUP subcommand requires the key to exist")
            self.streams[name] = []
        if (name, groupname) in self.groups:
            raise ResponseError("BUSYGROUP Consumer Group name already exists")
        entries = self.streams[name]
        last = 0 if id == "0" or not entries else self._seq(entries[-1][0])
        self.groups[(name, groupname)] = {"last": last, "pending": {}}
        return True

    async def xreadgroup(self, groupname: str, consumername: str, streams: dict[str, str], count=None, block=None):
        self._check("xreadgroup")
        result = []
        for name, start in streams.items():
            group = self.groups.get((name, groupname))
            if group is None:
                raise ResponseError("NOGROUP No such key or consumer group")
            entries = self.streams.get(name, [])
            if start == ">":
                fresh = [entry for entry in entries if self._seq(entry[0]) > group["last"]]
                if count:
                    fresh = fresh[:count]
                for entry_id, _ in fresh:
                    group["last"] = self._seq(entry_id)
                    group["pending"][entry_id] = consumername
                if fresh:
                    result.append([name, [(entry_id, dict(fields)) for entry_id, fields in fresh]])
            else:
                # Pending entries whose payload was deleted or trimmed come back empty
                payloads = dict(entries)
                owned = [
                    (entry_id, dict(payloads[entry_id]) if entry_id in payloads else None)
                    for entry_id, consumer in group["pending"].items()
                    if consumer == consumername
                ]
                result.append([name, owned[:count] if count else owned])
        return result

    async def xack(self, name: str, groupname: str, *ids: str) -> int:
        self._check("xack")
        pending = self.groups[(name, groupname)]["pending"]
        return sum(1 for entry_id in ids if pending.pop(entry_id, None) is not None)

    def pending_ids(self, name: str, groupname: str) -> list[str]:
        return list(self.groups[(name, groupname)]["pending"])

    async def aclose(self) -> None:
        pass


class InMemoryCursor:
    def __init__(self, documents: list[dict[str, Any]]):
        self._documents = documents

    def sort(self, key: str, direction: int = 1) -> "InMemoryCursor":
        self._documents.sort(key=lambda document: document.get(key), reverse=direction < 0)
        return self

    async def to_list(self, length: int | None = None) -> list[dict[str, Any]]:
        return self._documents[:length] if length else list(self._documents)


class InMemoryCollection:
    """Subset of ``AsyncIOMotorCollection`` with equality filters and unique fields."""

    def __init__(self, unique_fields: tuple[str, ...] = ()):
        self.documents: list[dict[str, Any]] = []
        self.unique_fields = ("_id", *unique_fields)
        self.failing = False
        self.database = SimpleNamespace(name="test", command=AsyncMock(return_value={"ok": 1.0}))
        self._ids = itertools.count(1)

    def _check(self) -> None:
        if self.failing:
            raise ServerSelectionTimeoutError("mongo unavailable")

    @staticmethod
    def _matches(document: dict[str, Any], query: dict[str, Any]) -> bool:
        return all(document.get(key) == value for key, value in query.items())

    async def create_indexes(self, indexes) -> list[str]:
        self._check()
        return [index.document["name"] for index in indexes]

    async def find_one(self, query: dict[str, Any]) -> dict[str, Any] | None:
        self._check()
        for document in self.documents:
            if self._matches(document, query):
                return dict(document)
        return None

    def find(self, query: dict[str, Any]) -> InMemoryCursor:
        self._check()
        return InMemoryCursor([dict(document) for document in self.documents if self._matches(document, query)])

    async def insert_one(self, document: dict[str, Any]):
        self._check()
        document = dict(document)
        document.setdefault("_id", next(self._ids))
        for field in self.unique_fields:
            value = document.get(field)
            if value is not None and any(existing.get(field) == value for existing in self.documents):
                raise DuplicateKeyError(f"E11000 duplicate key error dup key: {{ {field}: {value!r} }}", code=11000)
        self.documents.append(document)
        return SimpleNamespace(inserted_id=document["_id"])

    async def update_one(self, query: dict[str, Any], update: dict[str, Any], upsert: bool = False):
        self._check()
        for document in self.documents:
            if self._matches(document, query):
                document.update(update.get("$set", {}))
                return SimpleNamespace(matched_count=1, modified_count=1, upserted_id=None)
        if upsert:
            result = await self.insert_one({**query, **update.get("$set", {})})
            return SimpleNamespace(matched_count=0, modified_count=0, upserted_id=result.inserted_id)
        return SimpleNamespace(matched_count=0, modified_count=0, upserted_id=None)

    async def delete_one(self, query: dict[str, Any]):
        self._check()
        for index, document in enumerate(self.documents):
            if self._matches(document, query):
                del self.documents[index]
                return SimpleNamespace(deleted_count=1)
        return SimpleNamespace(deleted_count=0)

    async def count_documents(self, query: dict[str, Any], limit: int | None = None) -> int:
        self._check()
        count = sum(1 for document in self.documents if self._matches(document, query))
        return min(count, limit) if limit else count


@pytest.fixture
def settings() -> Settings:
    return Settings(
        REPLICATION_ENABLED=False,
        REPLICATION_INTERVAL_SECONDS=0.01,
        REPLICATION_BATCH_SIZE=100,
    )


@pytest.fixture
def fake_redis() -> InMemoryRedis:
    return InMemoryRedis()


@pytest.fixture
def url_collection() -> InMemoryCollection:
    return InMemoryCollection(unique_fields=("short_code", "alias"))


@pytest.fixture
def counter_collection() -> InMemoryCollection:
    return InMemoryCollection()


@pytest_asyncio.fixture
async def manager(
    settings: Settings,
    fake_redis: InMemoryRedis,
    url_collection: InMemoryCollection,
    counter_collection: InMemoryCollection,
) -> AsyncGenerator[ServiceManager, None]:
    service_manager = ServiceManager().build(
        settings=settings,
        redis_client=fake_redis,
        url_collection=url_collection,
        counter_collection=counter_collection,
    )
    await service_manager.replication_log.ensure_group()
    await service_manager.counter.initialize_counter()
    yield service_manager
    await service_manager.replication_worker.stop()
    service_manager._initialized = False


@pytest_asyncio.fixture
async def client(manager: ServiceManager) -> AsyncGenerator[AsyncClient, None]:
    async def override_get_service_manager() -> ServiceManager:
        return manager

    app.dependency_overrides[get_service_manager] = override_get_service_manager

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
