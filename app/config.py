"""Environment-driven settings for the URL shortener and its replication worker.

Every value can be overridden by an environment variable of the same name
(or a ``.env`` file). The API process and ``python -m app.replication`` read
the same ``Settings`` so they agree on key names.

Settings Groups
===============
::
    Settings
    ├─ MONGO_*            durable tier: mappings + counter snapshot
    ├─ REDIS_URL          fast tier: counter, cache, replication stream
    ├─ COUNTER_KEY        shared INCR key
    ├─ REPLICATION_*      stream, consumer group, batch size, tick interval
    ├─ ALIAS_* / SHORT_*  input limits and generated-code retries
    └─ CACHE_*            key prefix and default TTL

Example:
    >>> from app.config import get_settings
    >>> get_settings().REPLICATION_STREAM_KEY
    'counter_replication'

Key Behaviours
===============
- ``get_settings`` builds the object once per process (``lru_cache``).
- The counter key, stream name and consumer group must be identical on every
  instance of a deployment, otherwise instances hand out overlapping codes.
"""

__all__ = ["Settings", "get_settings"]

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    APP_NAME: str = "url-shortener"
    APP_ENV: str = "development"
    BASE_URL: str = "http://localhost:8080"
    LOG_LEVEL: str = "INFO"

    # MongoDB (durable tier)
    MONGO_URI: str = "mongodb://mongo:27017"
    MONGO_DB: str = "url_shortener"
    URL_COLLECTION: str = "url_mappings"
    COUNTER_COLLECTION: str = "counters"
    # Client-wide deadline applied to every Mongo operation
    MONGO_TIMEOUT_MS: int = 5000

    # Redis (fast tier + cache)
    REDIS_URL: str = "redis://redis:6379/0"

    # Distributed counter
    COUNTER_KEY: str = "short_code_counter"
    REPLICATION_STREAM_KEY: str = "counter_replication"
    REPLICATION_CONSUMER_GROUP: str = "replication_group"
    REPLICATION_CONSUMER_NAME: str = "replication-consumer-1"
    REPLICATION_BATCH_SIZE: int = 100
    # Approximate XADD cap; acked entries are deleted as well
    REPLICATION_STREAM_MAXLEN: int = 1_000_000
    REPLICATION_INTERVAL_SECONDS: float = 5.0
    REPLICATION_ENABLED: bool = True
    REPLICATION_METRICS_PORT: int = 9200

    # Short URL config
    ALIAS_MIN_LENGTH: int = 3
    ALIAS_MAX_LENGTH: int = 20
    SHORT_CODE_MAX_ATTEMPTS: int = 3
    DEFAULT_USER_ID: str = "anonymous"
    REDIRECT_STATUS_CODE: int = 302

    # Cache
    CACHE_KEY_PREFIX: str = "url"
    CACHE_DEFAULT_TTL_SECONDS: int = 24 * 60 * 60

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )


@lru_cache()
def get_settings() -> Settings:
    return Settings()
