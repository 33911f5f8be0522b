"""Application exceptions and their HTTP status mapping.

Every error raised by the service layer derives from :class:`AppError`, which
carries the HTTP status code the API responds with. The route layer never maps
errors by hand; a single exception handler in ``app.main`` renders
``{"error": <message>}`` with ``AppError.status_code``.

Hierarchy
=========
::
    AppError
    ├─ URLValidationError (400)
    │   ├─ InvalidURLError
    │   └─ InvalidAliasError
    ├─ ConflictError (409)
    │   ├─ AliasAlreadyExistsError
    │   └─ ShortCodeConflictError
    ├─ NotFoundError (404)
    │   ├─ ShortCodeNotFoundError
    │   └─ ShortCodeExpiredError
    └─ InfrastructureError (500, message not exposed)
        ├─ DataStoreError
        ├─ CacheError
        ├─ CounterUnavailableError
        └─ ShortCodeExhaustedError

    InvalidBase62CharacterError (ValueError)

Example:
    >>> from app.exceptions import ShortCodeNotFoundError
    >>> raise ShortCodeNotFoundError()
    Traceback (most recent call last):
        ...
    app.exceptions.ShortCodeNotFoundError: short code not found
"""

__all__ = [
    "AppError",
    "URLValidationError",
    "InvalidURLError",
    "InvalidAliasError",
    "ConflictError",
    "AliasAlreadyExistsError",
    "ShortCodeConflictError",
    "NotFoundError",
    "ShortCodeNotFoundError",
    "ShortCodeExpiredError",
    "InfrastructureError",
    "DataStoreError",
    "CacheError",
    "CounterUnavailableError",
    "ShortCodeExhaustedError",
    "InvalidBase62CharacterError",
]


class AppError(Exception):
    """Base class for errors surfaced through the HTTP API."""

    status_code: int = 500
    default_message: str = "internal server error"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class URLValidationError(AppError):
    """User-correctable input problem."""

    status_code = 400
    default_message = "invalid request"


class InvalidURLError(URLValidationError):
    default_message = "invalid URL format"


class InvalidAliasError(URLValidationError):
    default_message = "invalid alias"


class ConflictError(AppError):
    status_code = 409
    default_message = "conflict"


class AliasAlreadyExistsError(ConflictError):
    default_message = "alias already exists"


class ShortCodeConflictError(ConflictError):
    """Raised when a mapping with the same short code or alias is already stored."""

    default_message = "short code already exists"


class NotFoundError(AppError):
    status_code = 404
    default_message = "not found"


class ShortCodeNotFoundError(NotFoundError):
    default_message = "short code not found"


class ShortCodeExpiredError(NotFoundError):
    default_message = "short code has expired"


class InfrastructureError(AppError):
    """A backing service failed. The message is logged, never returned to clients."""

    status_code = 500
    default_message = "internal server error"


class DataStoreError(InfrastructureError):
    default_message = "data store unavailable"


class CacheError(InfrastructureError):
    default_message = "cache unavailable"


class CounterUnavailableError(InfrastructureError):
    default_message = "short code counter unavailable"


class ShortCodeExhaustedError(InfrastructureError):
    """Every generated code in a request collided with an existing mapping."""

    default_message = "could not allocate a unique short code"


class InvalidBase62CharacterError(ValueError):
    """Raised when decoding a string containing a symbol outside the base62 alphabet."""

    def __init__(self, char: str):
        self.char = char
        super().__init__(f"invalid character '{char}' in base62 string")
