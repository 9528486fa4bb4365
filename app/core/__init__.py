"""
Core module initialization.
Exports configuration, logging utilities and domain errors.
"""

from app.core.config import get_settings, setup_logging, Settings, EnvironmentMode
from app.core.errors import (
    OrderingError,
    NotFoundError,
    ValidationFailedError,
    InvalidTransitionError,
    ConflictError,
    AuthenticationError,
    PermissionDeniedError,
    SchemaContractError,
)

__all__ = [
    "get_settings",
    "setup_logging",
    "Settings",
    "EnvironmentMode",
    "OrderingError",
    "NotFoundError",
    "ValidationFailedError",
    "InvalidTransitionError",
    "ConflictError",
    "AuthenticationError",
    "PermissionDeniedError",
    "SchemaContractError",
]
