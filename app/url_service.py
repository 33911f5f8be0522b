"""Business logic layer for URL shortening operations.

This module ties the distributed counter, validator, MongoDB store and Redis
cache together for URL creation and resolution.

Flow Diagram: URL Creation
==========================
::
    ┌─────────────┐
    │  POST /urls  │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Validate URL│──── invalid ───► InvalidURLError (400)
    │ and alias   │
    └──────┬──────┘
    ALIAS? │
    ┌──────┴──────┐
    │ YES          │ NO
    ▼              ▼
┌─────────┐  ┌─────────────┐
│ Exists? │  │ Counter +   │
│ → 409   │  │ base62      │
└────┬────┘  └──────┬──────┘
     └──────┬───────┘
            ▼
    ┌─────────────┐
    │ Store in    │
    │ MongoDB     │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Cache in    │  TTL = time to expiry (or default)
    │ Redis       │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Return code │
    └─────────────┘

Flow Diagram: URL Lookup
========================
::
    ┌──────────────────┐
    │ GET /urls/:code   │
    └────────┬─────────┘
             ▼
    ┌─────────────┐
    │ use_cache?  │── NO ──────────────┐
    └──────┬──────┘                    │
           ▼                           │
    ┌─────────────┐                    │
    │ Redis GET   │── HIT ──► return   │
    └──────┬──────┘                    │
      MISS / ERROR                     │
           ▼                           ▼
    ┌──────────────────────────────────────┐
    │ MongoDB lookup                        │
    └────────┬─────────────────────────────┘
             ▼
    NOT FOUND → 404   EXPIRED → delete + 404
             ▼
    ┌─────────────┐
    │ Repopulate  │  only when use_cache
    │ cache       │
    └──────┬──────┘
           ▼
        return URL

Key Behaviours
===============
- Cache failures never fail a request; they are logged and the store is read.
- A generated code that already exists (durable counter lagging after Redis
  lost its state, or an alias equal to a later code) is retried with the next
  counter value, up to ``SHORT_CODE_MAX_ATTEMPTS`` times, then fails with
  ``ShortCodeExhaustedError`` (500).
- Expired mappings found on read are deleted from both tiers.
"""

import datetime
import logging
import time

from prometheus_client import Counter, Histogram

from app.cache import CacheService
from app.config import Settings
from app.enums import CacheStatus, RequestStatus
from app.exceptions import (
    AliasAlreadyExistsError,
    AppError,
    CacheError,
    ConflictError,
    DataStoreError,
    NotFoundError,
    ShortCodeConflictError,
    ShortCodeExhaustedError,
    ShortCodeExpiredError,
    ShortCodeNotFoundError,
    URLValidationError,
)
from app.generator import ShortCodeGenerator
from app.models import URLMapping, utcnow
from app.schemas import URLCreate
from app.storage import URLStore
from app.validator import URLValidator

__all__ = ["URLShorteningService"]


# ============================================================================
# PROMETHEUS METRICS
# ============================================================================

URL_CREATION_REQUESTS_TOTAL = Counter(
    "url_shortener_creation_requests_total",
    "Total URL creation requests",
    ["status"],
)
URL_LOOKUP_REQUESTS_TOTAL = Counter(
    "url_shortener_lookup_requests_total",
    "Total URL lookup requests",
    ["status", "cache"],
)
URL_CREATION_DURATION = Histogram(
    "url_shortener_creation_duration_seconds",
    "Time taken to create short URLs",
    buckets=[0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
)
URL_LOOKUP_DURATION = Histogram(
    "url_shortener_lookup_duration_seconds",
    "Time taken to lookup URLs",
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25],
)
EXPIRED_URLS_DELETED_TOTAL = Counter(
    "url_shortener_expired_urls_deleted_total",
    "Expired mappings removed on read",
)


def _status_for(exc: AppError) -> RequestStatus:
    if isinstance(exc, URLValidationError):
        return RequestStatus.VALIDATION_ERROR
    if isinstance(exc, ConflictError):
        return RequestStatus.CONFLICT
    if isinstance(exc, NotFoundError):
        return RequestStatus.NOT_FOUND
    return RequestStatus.ERROR


class URLShorteningService:
    """Core service class for URL shortening operations.

    Example:
        >>> service = URLShorteningService(store, cache, generator, validator, settings, logger)
        >>> code = await service.create_short_url(URLCreate(url="https://example.com"), user_id="u1")
        >>> await service.get_original_url(code)
        'https://example.com'
    """

    def __init__(
        self,
        store: URLStore,
        cache: CacheService,
        generator: ShortCodeGenerator,
        validator: URLValidator,
        settings: Settings,
        logger: logging.Logger | logging.LoggerAdapter | None = None,
    ):
        self._store = store
        self._cache = cache
        self._generator = generator
        self._validator = validator
        self._settings = settings
        self._logger = logger or logging.getLogger("urlshortener")

    @property
    def settings(self) -> Settings:
        return self._settings

    # ========================================================================
    # PUBLIC API METHODS
    # ========================================================================

    async def create_short_url(self, request: URLCreate, user_id: str) -> str:
        """Create a new short URL mapping and return its short code.

        Raises:
            InvalidURLError / InvalidAliasError: input rejected by the validator.
            AliasAlreadyExistsError: the alias is taken.
            CounterUnavailableError / DataStoreError: a backing store failed.
            ShortCodeExhaustedError: every generated code collided.
        """
        start_time = time.perf_counter()
        try:
            mapping = await self._create(request, user_id)
        except AppError as exc:
            URL_CREATION_REQUESTS_TOTAL.labels(status=_status_for(exc)).inc()
            self._logger.warning(f"URL creation failed: {exc}")
            raise
        finally:
            URL_CREATION_DURATION.observe(time.perf_counter() - start_time)

        URL_CREATION_REQUESTS_TOTAL.labels(status=RequestStatus.SUCCESS).inc()
        await self._cache_mapping(mapping)
        self._logger.info(f"URL created: {mapping.short_code} -> {mapping.original_url}")
        return mapping.short_code

    async def get_original_url(self, short_code: str, use_cache: bool = True) -> str:
        """Resolve ``short_code`` to its original URL.

        Raises:
            ShortCodeNotFoundError: no mapping exists.
            ShortCodeExpiredError: the mapping expired (it is deleted).
        """
        start_time = time.perf_counter()
        cache_status = CacheStatus.BYPASS
        try:
            if use_cache:
                cached_url, cache_status = await self._lookup_from_cache(short_code)
                if cached_url is not None:
                    URL_LOOKUP_REQUESTS_TOTAL.labels(status=RequestStatus.SUCCESS, cache=cache_status).inc()
                    return cached_url

            mapping = await self._store.get(short_code)
            if mapping is None:
                raise ShortCodeNotFoundError()

            if self._store.is_expired(mapping):
                await self.delete_expired_url(short_code)
                raise ShortCodeExpiredError()

            if use_cache:
                await self._cache_mapping(mapping)

            URL_LOOKUP_REQUESTS_TOTAL.labels(status=RequestStatus.SUCCESS, cache=cache_status).inc()
            return mapping.original_url

        except AppError as exc:
            URL_LOOKUP_REQUESTS_TOTAL.labels(status=_status_for(exc), cache=cache_status).inc()
            self._logger.info(f"Lookup failed for {short_code}: {exc}")
            raise
        finally:
            URL_LOOKUP_DURATION.observe(time.perf_counter() - start_time)

    async def delete_expired_url(self, short_code: str) -> None:
        """Remove an expired mapping from cache and MongoDB. Failures are only logged."""
        try:
            await self._cache.delete(short_code)
        except CacheError:
            self._logger.warning(f"Failed to evict expired {short_code} from cache", exc_info=True)

        try:
            await self._store.delete(short_code)
        except DataStoreError:
            self._logger.warning(f"Failed to delete expired {short_code} from MongoDB", exc_info=True)
            return
        EXPIRED_URLS_DELETED_TOTAL.inc()

    async def list_user_urls(self, user_id: str) -> list[URLMapping]:
        return await self._store.list_by_user(user_id)

    # ========================================================================
    # PRIVATE HELPER METHODS
    # ========================================================================

    async def _create(self, request: URLCreate, user_id: str) -> URLMapping:
        original_url = self._validator.validate_url(request.url)
        self._validator.validate_alias(request.alias)

        expiration = None
        if request.expiration_ms and request.expiration_ms > 0:
            expiration = utcnow() + datetime.timedelta(milliseconds=request.expiration_ms)

        if request.alias:
            if await self._store.exists(request.alias):
                raise AliasAlreadyExistsError()
            mapping = URLMapping(
                short_code=request.alias,
                original_url=original_url,
                alias=request.alias,
                expiration_timestamp=expiration,
                user_id=user_id,
            )
            try:
                return await self._store.store(mapping)
            except ShortCodeConflictError as exc:
                # Lost a race with a concurrent request for the same alias
                raise AliasAlreadyExistsError() from exc

        attempts = max(1, self._settings.SHORT_CODE_MAX_ATTEMPTS)
        for attempt in range(1, attempts + 1):
            short_code = await self._generator.generate()
            mapping = URLMapping(
                short_code=short_code,
                original_url=original_url,
                expiration_timestamp=expiration,
                user_id=user_id,
            )
            try:
                return await self._store.store(mapping)
            except ShortCodeConflictError as exc:
                self._logger.warning(f"Generated code {short_code} already taken (attempt {attempt}/{attempts})")
                if attempt == attempts:
                    raise ShortCodeExhaustedError(f"{attempts} generated codes in a row were already taken") from exc

    async def _lookup_from_cache(self, short_code: str) -> tuple[str | None, CacheStatus]:
        try:
            cached_url = await self._cache.get(short_code)
        except CacheError:
            self._logger.warning(f"Cache read failed for {short_code}, falling back to MongoDB", exc_info=True)
            return None, CacheStatus.ERROR

        if cached_url is None:
            return None, CacheStatus.MISS
        self._logger.debug(f"Cache hit for {short_code}")
        return cached_url, CacheStatus.HIT

    async def _cache_mapping(self, mapping: URLMapping) -> None:
        ttl = mapping.remaining_ttl()
        try:
            await self._cache.set(mapping.short_code, mapping.original_url, ttl)
        except CacheError:
            self._logger.warning(f"Cache write failed for {mapping.short_code}", exc_info=True)
