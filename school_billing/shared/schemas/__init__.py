from school_billing.shared.schemas.base import (
    ApiResponse,
    BaseSchema,
    PaginatedResponse,
    SuccessResponse,
    ErrorResponse,
    ErrorDetail,
)

__all__ = [
    "ApiResponse",
    "BaseSchema",
    "PaginatedResponse",
    "SuccessResponse",
    "ErrorResponse",
    "ErrorDetail",
]
