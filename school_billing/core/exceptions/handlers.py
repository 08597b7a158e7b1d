import logging

from fastapi import HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from school_billing.core.config import settings
from school_billing.core.exceptions import AppException
from school_billing.shared.schemas import ErrorResponse, ErrorDetail

logger = logging.getLogger(__name__)


async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """Handle application exceptions."""
    field = exc.details.get("field")
    errors = [ErrorDetail(field=field, message=exc.message)]

    response = ErrorResponse(
        message=exc.message,
        errors=errors,
    )

    return JSONResponse(
        status_code=exc.status_code,
        content=response.model_dump(),
    )


def _format_validation_errors(errors: list[dict]) -> list[ErrorDetail]:
    details: list[ErrorDetail] = []
    for error in errors:
        loc = error.get("loc", ())
        # Drop top-level "body"/"query" for cleaner field paths
        if loc and loc[0] in ("body", "query"):
            loc = loc[1:]
        field = ".".join(str(part) for part in loc) if loc else None
        details.append(ErrorDetail(field=field, message=error.get("msg", "Invalid value")))
    return details


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Handle FastAPI validation errors."""
    response = ErrorResponse(
        message="Validation error",
        errors=_format_validation_errors(exc.errors()),
    )
    return JSONResponse(
        status_code=422,
        content=response.model_dump(),
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handle generic HTTP exceptions."""
    message = str(exc.detail) if exc.detail else "HTTP error"
    response = ErrorResponse(
        message=message,
        errors=[ErrorDetail(field=None, message=message)],
    )
    return JSONResponse(
        status_code=exc.status_code,
        content=response.model_dump(),
    )


def _friendly_db_error(exc: Exception) -> tuple[str, int]:
    """
    Convert database errors to a stable, user-facing message.

    Full DB error text is only exposed when debug is enabled outside production.
    """
    raw = str(getattr(exc, "orig", exc))
    lower = raw.lower()

    if ("does not exist" in lower and "column" in lower) or "no such column" in lower:
        return (
            "Database schema is out of date. Run the latest migrations and try again.",
            500,
        )

    if settings.debug and not settings.is_production:
        return (raw, 500)

    return ("Database error", 500)


async def sqlalchemy_db_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error("Database error on %s %s", request.method, request.url.path, exc_info=exc)
    message, status_code = _friendly_db_error(exc)
    response = ErrorResponse(
        message=message,
        errors=[ErrorDetail(field=None, message=message)],
    )
    return JSONResponse(status_code=status_code, content=response.model_dump())
