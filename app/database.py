"""MongoDB client configuration and lifecycle for the URL shortener.

This module provides the Motor client setup, collection accessors, and the
startup/shutdown hooks for the durable tier.

Flow Diagram: Database Lifecycle
================================
::
    ┌─────────────┐
    │  Startup     │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ get_mongo_   │
    │ client()     │  lazily created, shared
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ init_db()    │  ping + create mapping indexes
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Serve        │
    │ requests     │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ close_db()   │
    └─────────────┘

How to Use
===========
**Step 1: Initialize on startup**::
    await init_db()

**Step 2: Access collections**::
    urls = get_url_collection()
    counters = get_counter_collection()

**Step 3: Cleanup on shutdown**::
    await close_db()

Key Behaviours
===============
- ``timeoutMS`` bounds every operation so a stalled Mongo never hangs a
  request or the replication loop.
- Datetimes come back timezone-aware (``tz_aware=True``).

Functions:
    get_mongo_client():  Shared Motor client.
    get_database():  Application database handle.
    get_url_collection():  URL mappings collection.
    get_counter_collection():  Durable counter collection.
    init_db():  Ping and index creation on startup.
    close_db():  Close the client on shutdown.
"""

import logging

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorCollection, AsyncIOMotorDatabase

from app.config import Settings, get_settings
from app.storage import URLStore

__all__ = [
    "create_mongo_client",
    "get_mongo_client",
    "get_database",
    "get_url_collection",
    "get_counter_collection",
    "init_db",
    "close_db",
]

logger = logging.getLogger(__name__)

mongo_client: AsyncIOMotorClient | None = None


def create_mongo_client(settings: Settings) -> AsyncIOMotorClient:
    return AsyncIOMotorClient(
        settings.MONGO_URI,
        timeoutMS=settings.MONGO_TIMEOUT_MS,
        serverSelectionTimeoutMS=settings.MONGO_TIMEOUT_MS,
        tz_aware=True,
    )


def get_mongo_client() -> AsyncIOMotorClient:
    global mongo_client
    if mongo_client is None:
        mongo_client = create_mongo_client(get_settings())
    return mongo_client


def get_database() -> AsyncIOMotorDatabase:
    return get_mongo_client()[get_settings().MONGO_DB]


def get_url_collection() -> AsyncIOMotorCollection:
    return get_database()[get_settings().URL_COLLECTION]


def get_counter_collection() -> AsyncIOMotorCollection:
    return get_database()[get_settings().COUNTER_COLLECTION]


async def init_db() -> None:
    database = get_database()
    await database.command("ping")
    created = await URLStore(get_url_collection()).create_indexes()
    logger.info(f"Connected to MongoDB database '{database.name}', indexes: {', '.join(created)}")


async def close_db() -> None:
    global mongo_client
    if mongo_client is not None:
        mongo_client.close()
        mongo_client = None
