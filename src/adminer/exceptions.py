"""
Domain exceptions and exception handlers with request ID support
Standardized error response format: { code, message, status_code, details?, request_id }
"""
from fastapi import Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
import logging
from typing import Optional, Dict, Any

from .logging_config import get_request_id

logger = logging.getLogger(__name__)


class AdminerError(Exception):
    """Base exception for admission and billing errors"""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    code: str = "INTERNAL_ERROR"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details


class Unauthenticated(AdminerError):
    """No organization could be resolved for the request"""

    status_code = status.HTTP_401_UNAUTHORIZED
    code = "AUTH_ERROR"


class QuotaExceeded(AdminerError):
    """Admission denied because the monthly quota has no headroom"""

    status_code = status.HTTP_402_PAYMENT_REQUIRED
    code = "QUOTA_EXCEEDED"

    def __init__(self, plan: str, used: int, limit: int, upgrade_url: str):
        super().__init__(
            "Monthly quota exceeded",
            details={
                "plan": plan,
                "used": used,
                "limit": limit,
                "remaining": max(limit - used, 0),
                "upgrade_url": upgrade_url,
            },
        )
        self.plan = plan
        self.used = used
        self.limit = limit
        self.upgrade_url = upgrade_url


class TransientStoreError(AdminerError):
    """The durable store is unavailable; the caller may retry"""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    code = "SERVICE_UNAVAILABLE"

    def __init__(self, message: str = "Storage temporarily unavailable", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details={"retryable": True, **(details or {})})


class WorkerSubmissionError(AdminerError):
    """The external worker platform rejected or did not answer a job submission"""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    code = "WORKER_UNAVAILABLE"


class ConcurrencyConflict(AdminerError):
    """A compare-and-swap write lost against a concurrent update"""

    code = "CONCURRENCY_CONFLICT"
    status_code = status.HTTP_409_CONFLICT


class ConfigurationError(AdminerError):
    """Required reference data or configuration is missing (fatal at startup)"""

    code = "CONFIGURATION_ERROR"


class ErrorResponse:
    """
    Standard error response format

    Schema: { code, message, status_code, details?, request_id }
    """

    @staticmethod
    def create(
        message: str,
        code: str,
        status_code: int,
        request_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> dict:
        """
        Create standardized error response

        Args:
            message: Human-readable error message
            code: Error code (e.g., "VALIDATION_ERROR", "AUTH_ERROR", "QUOTA_EXCEEDED")
            status_code: HTTP status code
            request_id: Request ID from context (auto-fetched if None)
            details: Optional additional error details

        Returns:
            Dictionary with error details
        """
        if request_id is None:
            request_id = get_request_id()

        response = {
            "code": code,
            "message": message,
            "status_code": status_code,
        }
        if request_id:
            response["request_id"] = request_id
        if details:
            response["details"] = details
        return response


def error_json(exc: AdminerError) -> JSONResponse:
    """Render a domain error as a JSON response"""
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse.create(
            message=exc.message,
            code=exc.code,
            status_code=exc.status_code,
            details=exc.details,
        ),
    )


async def adminer_exception_handler(request: Request, exc: AdminerError) -> JSONResponse:
    """Handle domain exceptions raised from dependencies and services"""
    logger.warning(f"{exc.code} on {request.url.path}: {exc.message}")
    return error_json(exc)


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Handle HTTP exceptions with request ID"""
    error_code_map = {
        400: "BAD_REQUEST",
        401: "AUTH_ERROR",
        403: "FORBIDDEN",
        404: "NOT_FOUND",
        405: "METHOD_NOT_ALLOWED",
        409: "CONFLICT",
        422: "VALIDATION_ERROR",
        503: "SERVICE_UNAVAILABLE",
    }
    error_code = error_code_map.get(exc.status_code, "HTTP_ERROR")
    detail = exc.detail
    error_message = str(detail) if detail else f"HTTP {exc.status_code} error"
    error_details = None

    if isinstance(detail, dict):
        error_message = detail.get("message", str(detail))
        error_code = detail.get("code", error_code)
        error_details = {k: v for k, v in detail.items() if k not in ["code", "message"]} or None

    logger.warning(f"HTTP {exc.status_code}: {error_message}")

    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse.create(
            message=error_message,
            code=error_code,
            status_code=exc.status_code,
            details=error_details,
        ),
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handle validation exceptions with request ID"""
    errors = exc.errors()
    detail = "; ".join(f"{err['loc']}: {err['msg']}" for err in errors)

    logger.warning(f"Validation error on {request.url.path}: {detail}")

    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=ErrorResponse.create(
            message=f"Validation error: {detail}",
            code="VALIDATION_ERROR",
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details={"errors": [{"loc": list(err["loc"]), "msg": err["msg"]} for err in errors]},
        ),
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle general exceptions with request ID"""
    from .config import config

    # Don't expose internal error details outside dev
    error_message = "Internal server error"
    error_details = None
    if config.ENV == "dev":
        error_message = f"Internal server error: {str(exc)}"
        error_details = {"exception_type": type(exc).__name__}

    logger.error(f"Unhandled exception on {request.url.path}: {str(exc)}", exc_info=True)

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=ErrorResponse.create(
            message=error_message,
            code="INTERNAL_ERROR",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            details=error_details,
        ),
    )
