"""MongoDB data access for URL mappings and the durable counter snapshot.

Responsibilities:
    - Insert, fetch, update and delete URL mappings by short code;
    - Look mappings up by alias or owner;
    - Create the unique, sparse and TTL indexes the mapping collection relies on;
    - Read, create and upsert the single durable counter document.

Every operation runs under the client-wide ``timeoutMS`` deadline configured in
``app.database``; driver failures surface as ``DataStoreError``.

Classes:
    URLStore:
        DAO for URL mapping documents.
    CounterStore:
        DAO for the durable counter document.

Example:
    >>> store = URLStore(db["url_mappings"])
    >>> await store.store(URLMapping(short_code="abc", original_url="https://example.com", user_id="u1"))
    >>> (await store.get("abc")).original_url
    'https://example.com'
"""

from typing import Any

import pymongo
from motor.motor_asyncio import AsyncIOMotorCollection
from pymongo.errors import DuplicateKeyError

from app.exceptions import ShortCodeConflictError
from app.helpers import handle_mongo_errors
from app.models import COUNTER_DOCUMENT_ID, CounterDocument, URLMapping, utcnow

__all__ = ["URLStore", "CounterStore"]


class URLStore:
    def __init__(self, collection: AsyncIOMotorCollection):
        self._collection = collection

    @handle_mongo_errors
    async def create_indexes(self) -> list[str]:
        indexes = [
            pymongo.IndexModel([("short_code", pymongo.ASCENDING)], unique=True),
            pymongo.IndexModel([("alias", pymongo.ASCENDING)], unique=True, sparse=True),
            pymongo.IndexModel([("user_id", pymongo.ASCENDING)]),
            # Mongo purges the document once expiration_timestamp is in the past
            pymongo.IndexModel([("expiration_timestamp", pymongo.ASCENDING)], expireAfterSeconds=0),
        ]
        return await self._collection.create_indexes(indexes)

    @handle_mongo_errors
    async def ping(self) -> bool:
        await self._collection.database.command("ping")
        return True

    @handle_mongo_errors
    async def store(self, mapping: URLMapping) -> URLMapping:
        """Insert a new mapping, stamping ``created_at``/``updated_at``.

        Raises:
            ShortCodeConflictError: if the short code or alias is already taken.
        """
        now = utcnow()
        mapping = mapping.model_copy(update={"created_at": now, "updated_at": now})
        try:
            await self._collection.insert_one(mapping.to_document())
        except DuplicateKeyError as e:
            raise ShortCodeConflictError(f"short code '{mapping.short_code}' already exists") from e
        return mapping

    @handle_mongo_errors
    async def get(self, short_code: str) -> URLMapping | None:
        document = await self._collection.find_one({"short_code": short_code})
        return URLMapping.from_document(document) if document else None

    @handle_mongo_errors
    async def get_by_alias(self, alias: str) -> URLMapping | None:
        document = await self._collection.find_one({"alias": alias})
        return URLMapping.from_document(document) if document else None

    @handle_mongo_errors
    async def exists(self, short_code: str) -> bool:
        return await self._collection.count_documents({"short_code": short_code}, limit=1) > 0

    @handle_mongo_errors
    async def list_by_user(self, user_id: str) -> list[URLMapping]:
        cursor = self._collection.find({"user_id": user_id}).sort("created_at", pymongo.ASCENDING)
        documents = await cursor.to_list(length=None)
        return [URLMapping.from_document(document) for document in documents]

    @handle_mongo_errors
    async def update(self, short_code: str, **fields: Any) -> bool:
        fields["updated_at"] = utcnow()
        result = await self._collection.update_one({"short_code": short_code}, {"$set": fields})
        return result.matched_count > 0

    @handle_mongo_errors
    async def delete(self, short_code: str) -> bool:
        result = await self._collection.delete_one({"short_code": short_code})
        return result.deleted_count > 0

    @staticmethod
    def is_expired(mapping: URLMapping) -> bool:
        return mapping.is_expired()


class CounterStore:
    """Durable snapshot of the short code counter, kept under a fixed ``_id``."""

    def __init__(self, collection: AsyncIOMotorCollection):
        self._collection = collection

    @handle_mongo_errors
    async def get(self) -> CounterDocument | None:
        document = await self._collection.find_one({"_id": COUNTER_DOCUMENT_ID})
        return CounterDocument.from_document(document) if document else None

    @handle_mongo_errors
    async def create(self, counter: int = 0) -> CounterDocument | None:
        """Insert the counter document, returning None if another instance created it first."""
        document = CounterDocument(counter=counter)
        try:
            await self._collection.insert_one(document.to_document())
        except DuplicateKeyError:
            return None
        return document

    @handle_mongo_errors
    async def upsert(self, counter: int) -> None:
        # Last write wins: no comparison against the stored value
        await self._collection.update_one(
            {"_id": COUNTER_DOCUMENT_ID},
            {"$set": {"counter": counter, "updated_at": utcnow()}},
            upsert=True,
        )
