"""Error taxonomy shared by the search, indexing and bookmark services.

Every error carries the HTTP status the API layer answers with, so route
handlers never need to map exceptions by hand.
"""

from __future__ import annotations


class LinkvaultError(Exception):
    """Base class for all service errors."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(LinkvaultError):
    """Bad input shape or bounds."""

    status_code = 400


class Unauthorized(LinkvaultError):
    status_code = 401


class Forbidden(LinkvaultError):
    """Caller does not own the resource."""

    status_code = 403


class NotFound(LinkvaultError):
    status_code = 404


class Conflict(LinkvaultError):
    """The resource already exists, e.g. a URL saved twice."""

    status_code = 409


class MetadataUnavailable(LinkvaultError):
    """No page metadata could be fetched for a URL."""

    status_code = 422


class StoreError(LinkvaultError):
    """Datastore read or write failed."""

    status_code = 500


class ProviderError(LinkvaultError):
    """Error during embedding generation.

    ``retriable`` is a hint for calling policies (rate limits, timeouts,
    server errors). The provider itself never retries.
    """

    status_code = 502

    def __init__(self, message: str, provider: str, retriable: bool = False):
        super().__init__(message)
        self.provider = provider
        self.retriable = retriable
