"""Billing errors mapped to HTTP responses by ``core.exceptions.handlers``."""

from typing import Any


class AppException(Exception):
    """Base billing error: a message, an HTTP status and optional details (``field``...)."""

    def __init__(
        self,
        message: str,
        status_code: int = 400,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)


class NotFoundError(AppException):
    """Student, course or invoice does not exist (404)."""

    def __init__(self, entity: str, entity_id: Any = None):
        message = f"{entity} not found" if entity_id is None else f"{entity} with id={entity_id} not found"
        super().__init__(message=message, status_code=404, details={"entity": entity})


class ValidationError(AppException):
    """Bad run parameters or enrollment, rejected before anything is written (422)."""

    def __init__(self, message: str, field: str | None = None):
        details = {"field": field} if field else {}
        super().__init__(message=message, status_code=422, details=details)


class DuplicateError(AppException):
    """Record already exists, such as an active enrollment (409)."""

    def __init__(self, entity: str, field: str, value: Any):
        super().__init__(
            message=f"{entity} with {field}={value} already exists",
            status_code=409,
            details={"field": field, "value": value},
        )
