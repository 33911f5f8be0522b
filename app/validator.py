"""Normalisation and validation of submitted URLs and aliases."""

import re

import validators

from app.exceptions import InvalidAliasError, InvalidURLError

__all__ = ["URLValidator"]

ALIAS_PATTERN = re.compile(r"[A-Za-z0-9-]+")


class URLValidator:
    def __init__(self, alias_min_length: int = 3, alias_max_length: int = 20):
        self.alias_min_length = alias_min_length
        self.alias_max_length = alias_max_length

    def validate_url(self, url: str) -> str:
        """Return ``url`` with an ``https://`` scheme added when none was given.

        Example:
            >>> URLValidator().validate_url("example.com/path")
            'https://example.com/path'
        """
        url = (url or "").strip()
        if not url.startswith(("http://", "https://")):
            url = f"https://{url}"

        # Single-label hosts such as localhost or intranet names are allowed
        if not validators.url(url, simple_host=True):
            raise InvalidURLError("invalid URL format")
        return url

    def validate_alias(self, alias: str | None) -> None:
        if not alias:
            return

        if not self.alias_min_length <= len(alias) <= self.alias_max_length:
            raise InvalidAliasError(
                f"alias must be between {self.alias_min_length} and {self.alias_max_length} characters"
            )
        if not ALIAS_PATTERN.fullmatch(alias):
            raise InvalidAliasError("alias can only contain letters, numbers, and hyphens")
