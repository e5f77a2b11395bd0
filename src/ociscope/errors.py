"""
OCI registry error classes.

Provides a clear taxonomy of errors that can occur while talking to a
registry or managing the local cache. HTTP status codes and transport
failures are classified once, centrally, by the protocol client; callers
branch on the exception type (or on ``kind``) rather than on messages.
"""
from __future__ import annotations

from typing import Optional


class OciError(Exception):
    """
    Base class for all ociscope errors.

    Carries a human-readable message; the underlying cause, when there is
    one, is attached with ``raise ... from exc``.
    """

    kind = "error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class OciNetworkError(OciError):
    """
    Transport-level failure.

    Raised when:
    - Connection refused, DNS failure or TLS failure
    - Request timed out
    - Unexpected HTTP status with no more specific classification
    """

    kind = "network"


class OciAuthError(OciError):
    """
    Authentication or authorization error.

    Raised when:
    - HTTP 401 Unauthorized (missing or invalid credentials)
    - HTTP 403 Forbidden (insufficient permissions)
    """

    kind = "authentication"

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class OciNotFound(OciError):
    """
    Resource not found in registry.

    Raised when:
    - HTTP 404 Not Found (repository, manifest, blob or endpoint)
    """

    kind = "not_found"

    def __init__(self, resource_type: str, name: str):
        super().__init__(f"{resource_type} not found: {name}")
        self.resource_type = resource_type
        self.name = name


class OciRateLimited(OciError):
    """
    Rate limit exceeded.

    Raised when:
    - HTTP 429 Too Many Requests

    ``retry_after`` holds the number of seconds the registry asked us to
    wait, or None when the header was absent or unparseable.
    """

    kind = "rate_limit"

    def __init__(self, message: str, retry_after: Optional[int] = None):
        super().__init__(message)
        self.retry_after = retry_after


class OciServerError(OciError):
    """
    Registry-side failure.

    Raised when:
    - HTTP 500, 502, 503 or 504
    """

    kind = "server"

    def __init__(self, message: str, status_code: int):
        super().__init__(message)
        self.status_code = status_code


class OciValidationError(OciError):
    """
    Malformed input or response.

    Raised when:
    - A digest, reference or cache key has invalid syntax
    - A required response header is missing
    - A response body cannot be parsed
    - A cached entry cannot be decoded
    """

    kind = "validation"


class OciDigestMismatch(OciValidationError):
    """
    Content digest validation failed.

    Raised when downloaded content does not hash to the requested digest.
    """

    def __init__(self, message: str, expected: str | None = None, actual: str | None = None):
        super().__init__(message)
        self.expected = expected
        self.actual = actual


class OciUnsupportedMediaType(OciValidationError):
    """
    Manifest document is neither an image manifest nor an image index.
    """
    pass


class OciDeletionDisabled(OciValidationError):
    """
    The registry refuses manifest deletion (HTTP 405).

    This is a registry-wide setting, so it applies to every tag alike.
    """
    pass


class OciConfigError(OciError):
    """
    Local file I/O or parse failure.

    Raised when:
    - The configuration file cannot be read or parsed
    - The credentials file cannot be read, parsed or written
    - A cache file cannot be read, written or deleted
    """

    kind = "config"

    def __init__(self, message: str, path: Optional[str] = None):
        super().__init__(message)
        self.path = path


__all__ = [
    "OciError",
    "OciNetworkError",
    "OciAuthError",
    "OciNotFound",
    "OciRateLimited",
    "OciServerError",
    "OciValidationError",
    "OciDigestMismatch",
    "OciUnsupportedMediaType",
    "OciDeletionDisabled",
    "OciConfigError",
]
