"""
Service-layer exceptions.

Services raise these instead of HTTPException so they stay usable outside a
request; api.main maps each one to its HTTP status code.
"""

from typing import Any, Optional


class ServiceError(Exception):
    """Base class for expected, user-facing failures."""

    status_code = 400

    def __init__(self, message: str, details: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.details = details


class BadRequestError(ServiceError):
    status_code = 400


class ForbiddenError(ServiceError):
    status_code = 403


class NotFoundError(ServiceError):
    status_code = 404


class ConflictError(ServiceError):
    status_code = 409
