"""MongoDB document models for the URL shortener application.

This module defines the documents stored in MongoDB as Pydantic models, with
helpers to convert to and from the raw BSON-ready dictionaries the Motor
driver works with.

Data Model Layout
=================
::
    url_mappings collection
    ├─ _id (ObjectId, driver-assigned)
    ├─ short_code (UNIQUE)
    ├─ original_url
    ├─ alias (UNIQUE, SPARSE, optional)
    ├─ expiration_timestamp (TTL index, optional)
    ├─ created_at
    ├─ updated_at
    └─ user_id (INDEXED)

    counters collection
    └─ {_id: "short_code_counter", counter: int64, updated_at}

How to Use
===========
**Step 1: Build a mapping**::
    mapping = URLMapping(short_code="abc", original_url="https://example.com", user_id="u1")

**Step 2: Persist**::
    await collection.insert_one(mapping.to_document())

**Step 3: Load**::
    doc = await collection.find_one({"short_code": "abc"})
    mapping = URLMapping.from_document(doc)

Key Behaviours
===============
- Timestamps are timezone-aware UTC.
- ``alias`` and ``expiration_timestamp`` are omitted from the stored document
  when unset so the sparse alias index and the TTL index ignore the mapping.
- The counter document uses a fixed ``_id`` so exactly one exists per deployment.

Classes:
    URLMapping:  A short code to original URL mapping.
    CounterDocument:  Durable snapshot of the distributed counter.
"""

import datetime
from typing import Any

from pydantic import BaseModel, Field

__all__ = ["URLMapping", "CounterDocument", "COUNTER_DOCUMENT_ID", "utcnow"]

COUNTER_DOCUMENT_ID = "short_code_counter"


def utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.UTC)


def _as_utc(value: datetime.datetime | None) -> datetime.datetime | None:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=datetime.UTC)
    return value


class URLMapping(BaseModel):
    short_code: str
    original_url: str
    alias: str | None = None
    expiration_timestamp: datetime.datetime | None = None
    created_at: datetime.datetime = Field(default_factory=utcnow)
    updated_at: datetime.datetime = Field(default_factory=utcnow)
    user_id: str

    def is_expired(self, now: datetime.datetime | None = None) -> bool:
        if self.expiration_timestamp is None:
            return False
        now = now or utcnow()
        return now >= _as_utc(self.expiration_timestamp)

    def remaining_ttl(self, now: datetime.datetime | None = None) -> datetime.timedelta | None:
        """Time left until expiry, or ``None`` for mappings that never expire."""
        if self.expiration_timestamp is None:
            return None
        now = now or utcnow()
        return _as_utc(self.expiration_timestamp) - now

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=True)

    @classmethod
    def from_document(cls, document: dict[str, Any]) -> "URLMapping":
        data = {key: value for key, value in document.items() if key != "_id"}
        for field in ("expiration_timestamp", "created_at", "updated_at"):
            if field in data:
                data[field] = _as_utc(data[field])
        return cls.model_validate(data)

    def __repr__(self) -> str:
        return f"<URLMapping(short_code='{self.short_code}', user_id='{self.user_id}')>"


class CounterDocument(BaseModel):
    counter: int = Field(0, ge=0)
    updated_at: datetime.datetime = Field(default_factory=utcnow)

    def to_document(self) -> dict[str, Any]:
        return {"_id": COUNTER_DOCUMENT_ID, **self.model_dump()}

    @classmethod
    def from_document(cls, document: dict[str, Any]) -> "CounterDocument":
        updated_at = _as_utc(document.get("updated_at")) or utcnow()
        return cls(counter=int(document["counter"]), updated_at=updated_at)
