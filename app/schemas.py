"""Pydantic schemas for request/response validation in the URL shortener.

This module defines Pydantic models for API input and output, plus the
payload carried by counter replication records.

Schema Hierarchy
=================
::
    URLCreate (Input)
    ├─ url: str
    ├─ alias: str | None
    └─ expiration_ms: int | None

    URLCreateResponse (Output)
    └─ short_code: str

    URLInfo (Output)
    ├─ short_code, original_url, alias
    ├─ expiration_timestamp
    └─ created_at, updated_at

    HealthResponse (Output)
    ├─ status, database, cache

    ReplicationRecord (Stream payload)
    ├─ counter: int
    └─ timestamp: int

Key Behaviours
===============
- URL and alias rules are enforced by ``app.validator.URLValidator`` so the
  API answers 400 with the same messages the service layer raises.
- ``expiration_ms`` of zero or less means "never expires".
- ``ReplicationRecord`` accepts the counter as an int or a numeric string,
  because Redis stream fields always come back as strings. An unparsable
  ``timestamp`` is replaced with the current time.

Classes:
    URLCreate:  Input schema for URL shortening requests.
    URLCreateResponse:  Output schema for created URLs.
    URLInfo:  Output schema for a stored mapping.
    HealthResponse:  Output schema for health checks.
    ReplicationRecord:  Counter replication stream entry.
"""

import datetime
import time

from pydantic import BaseModel, Field, ValidationError, field_validator

from app.enums import HealthStatus
from app.models import URLMapping

__all__ = [
    "URLCreate",
    "URLCreateResponse",
    "URLInfo",
    "HealthResponse",
    "ReplicationRecord",
]


class URLCreate(BaseModel):
    url: str
    alias: str | None = None
    expiration_ms: int | None = None


class URLCreateResponse(BaseModel):
    short_code: str


class URLInfo(BaseModel):
    short_code: str
    original_url: str
    alias: str | None = None
    expiration_timestamp: datetime.datetime | None = None
    created_at: datetime.datetime
    updated_at: datetime.datetime

    @classmethod
    def from_mapping(cls, mapping: URLMapping) -> "URLInfo":
        return cls.model_validate(mapping.model_dump(exclude={"user_id"}))


class HealthResponse(BaseModel):
    status: HealthStatus
    database: HealthStatus
    cache: HealthStatus


class ReplicationRecord(BaseModel):
    """One counter increment queued for the durable tier."""

    counter: int = Field(..., ge=0, description="Counter value returned by INCR, e.g. 42")
    timestamp: int = Field(default_factory=lambda: int(time.time()), description="Unix seconds")

    @field_validator("timestamp", mode="wrap")
    @classmethod
    def _fallback_timestamp(cls, value, handler) -> int:
        # Only the counter decides whether a record is usable
        try:
            return handler(value)
        except ValidationError:
            return int(time.time())

    def to_fields(self) -> dict[str, int]:
        return {"counter": self.counter, "timestamp": self.timestamp}
