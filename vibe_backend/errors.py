"""
Error Taxonomy
==============
Exceptions raised by services and translated to HTTP responses by the API
layer. Every error carries the status code it maps to, so handlers never need
to know which service raised it.
"""

from typing import Any, Optional


class ApiError(Exception):
    """Base class for errors that surface to API callers"""

    status_code: int = 500
    default_message: str = "Internal server error"

    def __init__(self, message: Optional[str] = None, details: Any = None):
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)

    def to_dict(self) -> dict:
        body: dict[str, Any] = {"error": self.message}
        if self.details is not None:
            body["details"] = self.details
        return body


class ValidationError(ApiError):
    status_code = 400
    default_message = "Invalid request"


class NotFoundError(ApiError):
    status_code = 404
    default_message = "Not found"


class UpstreamError(ApiError):
    """A vendor API (gateway, video, email, identity) failed or is misconfigured"""

    status_code = 502
    default_message = "Upstream provider error"

    def __init__(
        self,
        message: Optional[str] = None,
        details: Any = None,
        status_code: Optional[int] = None,
    ):
        super().__init__(message, details)
        if status_code is not None:
            self.status_code = status_code


class ServiceUnavailableError(ApiError):
    status_code = 503
    default_message = "Service not configured"


class StoreError(ApiError):
    status_code = 500
    default_message = "Record store error"


class DuplicateKeyError(StoreError):
    """Uniqueness violation on insert"""

    default_message = "Duplicate key"
