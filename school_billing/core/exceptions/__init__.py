from school_billing.core.exceptions.base import (
    AppException,
    NotFoundError,
    ValidationError,
    DuplicateError,
)

__all__ = [
    "AppException",
    "NotFoundError",
    "ValidationError",
    "DuplicateError",
]
