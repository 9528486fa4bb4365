"""
Domain Exceptions

Every error raised by the ordering and billing services derives from
OrderingError. Each carries a user-facing message (shown to staff and
customers as a toast) and the HTTP status the API layer maps it to.
"""

from typing import Optional


class OrderingError(Exception):
    """Base class for all domain errors."""

    status_code: int = 400
    default_message: str = "Something went wrong"

    def __init__(self, message: Optional[str] = None, detail: Optional[str] = None):
        self.message = message or self.default_message
        self.detail = detail
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {
            "success": False,
            "error": self.message,
            "detail": self.detail,
        }


class NotFoundError(OrderingError):
    status_code = 404
    default_message = "Not found"


class ValidationFailedError(OrderingError):
    status_code = 400
    default_message = "Invalid request"


class InvalidTransitionError(OrderingError):
    """An order status change the lifecycle does not allow."""
    status_code = 409
    default_message = "Order status cannot be changed"


class ConflictError(OrderingError):
    status_code = 409
    default_message = "Conflicting change"


class AuthenticationError(OrderingError):
    status_code = 401
    default_message = "Authentication required"


class PermissionDeniedError(OrderingError):
    status_code = 403
    default_message = "You do not have access to this workspace"


class SchemaContractError(OrderingError):
    """The live database does not match the schema the code expects."""
    status_code = 500
    default_message = "Database schema does not match the application"

    def __init__(self, problems: list[str]):
        self.problems = problems
        super().__init__(
            self.default_message,
            detail="; ".join(problems),
        )


class ChangeFeedError(OrderingError):
    """The live-update transport could not deliver an event."""
    status_code = 503
    default_message = "Live updates are temporarily unavailable"
