"""School billing FastAPI application."""

from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from sqlalchemy.exc import SQLAlchemyError

from school_billing.core.config import settings
from school_billing.core.exceptions import AppException
from school_billing.core.exceptions.handlers import (
    app_exception_handler,
    http_exception_handler,
    sqlalchemy_db_error_handler,
    validation_exception_handler,
)
from school_billing.core.logging import configure_logging
from school_billing.modules.courses.router import router as courses_router
from school_billing.modules.invoices.router import router as invoices_router


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    configure_logging()
    yield


def create_app() -> FastAPI:
    """Create and configure FastAPI application."""
    app = FastAPI(
        title="School Billing",
        description="Periodic course invoicing for a multi-branch school",
        version="0.1.0",
        debug=settings.debug,
        lifespan=lifespan,
    )

    # Exception handlers
    app.add_exception_handler(AppException, app_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(SQLAlchemyError, sqlalchemy_db_error_handler)

    @app.get("/health")
    async def health_check():
        return {"status": "healthy"}

    # Routers
    app.include_router(courses_router, prefix="/api/v1")
    app.include_router(invoices_router, prefix="/api/v1")

    return app


app = create_app()
