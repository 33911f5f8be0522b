"""Dependency injection with a singleton service manager.

This module wires shared resources (Redis, MongoDB, the distributed counter
and its replication worker) once per process and hands FastAPI endpoints a
lightweight per-request context.
"""

import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Optional

import redis.asyncio as redis
from fastapi import Depends, Request

from app.cache import CacheService
from app.config import Settings, get_settings
from app.counter import DistributedCounter
from app.database import close_db, get_counter_collection, get_url_collection, init_db
from app.generator import ShortCodeGenerator
from app.replication import ReplicationWorker
from app.storage import CounterStore, URLStore
from app.streams import RedisStreamReplicationLog
from app.url_service import URLShorteningService
from app.validator import URLValidator

__all__ = [
    "ServiceManager",
    "RequestContext",
    "get_service_manager",
    "get_request_context",
    "get_url_service",
]


# ============================================================================
# SINGLETON SERVICE MANAGER
# ============================================================================


class ServiceManager:
    """Singleton holder for process-wide resources.

    ``initialize`` connects to Redis and MongoDB, creates indexes, warms the
    counter and starts the replication worker. ``build`` wires the same object
    graph from already-constructed clients, which is how tests inject doubles.
    """

    _instance: Optional["ServiceManager"] = None
    _initialized: bool = False

    def __new__(cls) -> "ServiceManager":
        """Implement singleton pattern."""
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    async def initialize(self) -> None:
        """Initialize shared resources once at startup."""
        if self._initialized:
            return

        settings = get_settings()
        await init_db()
        self.build(
            settings=settings,
            redis_client=redis.from_url(settings.REDIS_URL, encoding="utf-8", decode_responses=True),
            url_collection=get_url_collection(),
            counter_collection=get_counter_collection(),
        )

        await self.replication_log.ensure_group()
        # Seeds Redis from MongoDB only when the key is missing
        current = await self.counter.get_current_counter()
        self.logger.info(f"Short code counter ready at {current}")

        if settings.REPLICATION_ENABLED:
            self.replication_worker.start()

    def build(self, settings: Settings, redis_client: redis.Redis, url_collection, counter_collection) -> "ServiceManager":
        self.settings = settings
        self.logger = self._setup_logger()
        self.redis = redis_client

        self.url_store = URLStore(url_collection)
        self.counter_store = CounterStore(counter_collection)
        self.cache = CacheService(
            redis_client,
            prefix=settings.CACHE_KEY_PREFIX,
            default_ttl_seconds=settings.CACHE_DEFAULT_TTL_SECONDS,
        )
        self.replication_log = RedisStreamReplicationLog(
            redis_client,
            stream=settings.REPLICATION_STREAM_KEY,
            group=settings.REPLICATION_CONSUMER_GROUP,
            consumer=settings.REPLICATION_CONSUMER_NAME,
            maxlen=settings.REPLICATION_STREAM_MAXLEN,
        )
        self.counter = DistributedCounter(
            redis_client,
            self.counter_store,
            self.replication_log,
            key=settings.COUNTER_KEY,
        )
        self.generator = ShortCodeGenerator(self.counter)
        self.validator = URLValidator(settings.ALIAS_MIN_LENGTH, settings.ALIAS_MAX_LENGTH)
        self.replication_worker = ReplicationWorker(
            self.replication_log,
            self.counter_store,
            interval_seconds=settings.REPLICATION_INTERVAL_SECONDS,
            batch_size=settings.REPLICATION_BATCH_SIZE,
        )
        self._initialized = True
        return self

    def _setup_logger(self) -> logging.Logger:
        """Setup logger once."""
        logger = logging.getLogger("urlshortener")
        if not logger.handlers:
            handler = logging.StreamHandler()
            formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
            handler.setFormatter(formatter)
            logger.addHandler(handler)
            logger.setLevel(self.settings.LOG_LEVEL)
        return logger

    async def cleanup(self) -> None:
        """Cleanup shared resources at shutdown."""
        if not self._initialized:
            return
        await self.replication_worker.stop()
        await self.redis.aclose()
        await close_db()
        self._initialized = False


# Global singleton instance
_service_manager = ServiceManager()


# ============================================================================
# LIGHTWEIGHT REQUEST CONTEXT
# ============================================================================


@dataclass
class RequestContext:
    """Per-request identity and tracking on top of the shared service manager.

    Attributes:
        service_manager: Singleton service manager with shared resources
        user_id: Owner recorded on created mappings (``X-User-ID`` header)
        request_id: Unique identifier for this request
        client_ip: Client IP address
        start_time: Request start timestamp
    """

    service_manager: ServiceManager
    user_id: str
    request_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    client_ip: Optional[str] = None
    start_time: float = field(default_factory=time.time)

    @property
    def settings(self) -> Settings:
        return self.service_manager.settings

    @property
    def logger(self) -> logging.LoggerAdapter:
        """Shared logger carrying the request id and user."""
        return logging.LoggerAdapter(
            self.service_manager.logger,
            {"request_id": self.request_id, "user_id": self.user_id, "client_ip": self.client_ip},
        )

    def get_duration(self) -> float:
        """Get request duration in milliseconds."""
        return (time.time() - self.start_time) * 1000


# ============================================================================
# DEPENDENCY FUNCTIONS
# ============================================================================


async def get_service_manager() -> ServiceManager:
    if not _service_manager._initialized:
        await _service_manager.initialize()
    return _service_manager


async def get_request_context(
    request: Request,
    manager: ServiceManager = Depends(get_service_manager),
) -> RequestContext:
    user_id = request.headers.get("x-user-id") or manager.settings.DEFAULT_USER_ID
    return RequestContext(
        service_manager=manager,
        user_id=user_id,
        request_id=request.headers.get("x-request-id") or str(uuid.uuid4()),
        client_ip=request.client.host if request.client else None,
    )


def get_url_service(ctx: RequestContext = Depends(get_request_context)) -> URLShorteningService:
    manager = ctx.service_manager
    return URLShorteningService(
        store=manager.url_store,
        cache=manager.cache,
        generator=manager.generator,
        validator=manager.validator,
        settings=manager.settings,
        logger=ctx.logger,
    )
