"""Client-side error taxonomy. Only the API gateway classifies failures into
these; everything above it just records ``str(error)``."""

from typing import Optional


class ApiError(Exception):
    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status = status

    def __str__(self) -> str:
        return self.message


class ValidationFailed(ApiError):
    """400: the request was malformed; not retried."""


class Unauthorized(ApiError):
    """401: the bearer token is missing, invalid or expired."""


class NotFound(ApiError):
    """404: the row is gone or belongs to another account."""


class Conflict(ApiError):
    """409: e.g. duplicate email or category name."""


class ServerError(ApiError):
    """5xx or any other unexpected status."""


class NetworkError(ApiError):
    """The request never produced an HTTP response."""


class OfflineQueued(NetworkError):
    """The request was stored in the offline queue for later replay."""


def error_for_status(status: int, message: str) -> ApiError:
    if status == 400:
        return ValidationFailed(message, status)
    if status == 401:
        return Unauthorized(message, status)
    if status == 404:
        return NotFound(message, status)
    if status == 409:
        return Conflict(message, status)
    return ServerError(message, status)
