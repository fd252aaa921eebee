from __future__ import annotations


class MarketplaceError(Exception):
    """Base class for categorized failures returned to API callers."""

    status_code = 500
    code = "internal_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationFailed(MarketplaceError):
    status_code = 422
    code = "validation_error"


class UnauthorizedError(MarketplaceError):
    status_code = 401
    code = "unauthorized"


class NotFoundError(MarketplaceError):
    status_code = 404
    code = "not_found"


class ForbiddenError(MarketplaceError):
    status_code = 403
    code = "forbidden"


class InvalidStateError(MarketplaceError):
    status_code = 400
    code = "invalid_state"


class ConflictError(MarketplaceError):
    status_code = 409
    code = "conflict"


class ServiceUnavailableError(MarketplaceError):
    """Storage failed or timed out; the caller may retry the request."""

    status_code = 503
    code = "service_unavailable"
