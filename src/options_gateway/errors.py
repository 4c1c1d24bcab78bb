"""
Error handling for the options gateway.

Provides the gateway error taxonomy, the standard error response format and
the FastAPI exception handlers that render them.
"""

import logging
import uuid
from typing import Dict, Any, Optional, List
from datetime import datetime, timezone

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from pydantic import BaseModel, Field
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


class ErrorCode:
    """Machine-readable error codes"""
    # Client errors
    VALIDATION_ERROR = "VALIDATION_ERROR"
    AUTHORIZATION_ERROR = "AUTHORIZATION_ERROR"
    INVALID_EXPIRATION = "INVALID_EXPIRATION"
    NOT_FRIDAY = "NOT_FRIDAY"
    NOT_LAST_FRIDAY_OF_MONTH = "NOT_LAST_FRIDAY_OF_MONTH"
    BATCH_TOO_LARGE = "BATCH_TOO_LARGE"
    NOT_FOUND = "NOT_FOUND"

    # Business rule errors
    POOL_LOOKUP_FAILED = "POOL_LOOKUP_FAILED"
    INSUFFICIENT_COLLATERAL = "INSUFFICIENT_COLLATERAL"
    NOTHING_TO_ANNIHILATE = "NOTHING_TO_ANNIHILATE"
    NO_BALANCE_TO_SETTLE = "NO_BALANCE_TO_SETTLE"
    OPTION_NOT_EXPIRED = "OPTION_NOT_EXPIRED"

    # Server errors
    POOL_NOT_DEPLOYED = "POOL_NOT_DEPLOYED"
    UPSTREAM_ERROR = "UPSTREAM_ERROR"
    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class ErrorDetail(BaseModel):
    """Detailed error information"""
    field: Optional[str] = Field(None, description="Field that caused the error")
    message: str = Field(..., description="Human-readable error message")
    code: Optional[str] = Field(None, description="Machine-readable error code")


class ErrorResponse(BaseModel):
    """Standard error response format"""
    error_id: str = Field(..., description="Unique error ID for tracking")
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    status_code: int = Field(..., description="HTTP status code")
    error_code: str = Field(..., description="Machine-readable error code")
    message: str = Field(..., description="Human-readable error message")
    details: Optional[List[ErrorDetail]] = Field(None, description="Additional error details")
    path: Optional[str] = Field(None, description="Request path that caused the error")
    service: Optional[str] = Field(None, description="Service that generated the error")


class ServiceError(Exception):
    """Base exception for gateway errors"""

    def __init__(self,
                 message: str,
                 error_code: str = ErrorCode.INTERNAL_ERROR,
                 status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
                 details: Optional[List[ErrorDetail]] = None):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or []
        super().__init__(message)


class ValidationError(ServiceError):
    """Malformed or out-of-range input"""
    def __init__(self, message: str, details: Optional[List[ErrorDetail]] = None):
        super().__init__(
            message=message,
            error_code=ErrorCode.VALIDATION_ERROR,
            status_code=status.HTTP_400_BAD_REQUEST,
            details=details
        )


class AuthorizationError(ServiceError):
    """Missing or invalid API key"""
    def __init__(self, message: str = "API key not provided"):
        super().__init__(
            message=message,
            error_code=ErrorCode.AUTHORIZATION_ERROR,
            status_code=status.HTTP_401_UNAUTHORIZED
        )


class InvalidExpiration(ServiceError):
    """Expiration label violates the maturity calendar"""
    def __init__(self, message: str, error_code: str = ErrorCode.INVALID_EXPIRATION):
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=status.HTTP_400_BAD_REQUEST
        )


class NotFriday(InvalidExpiration):
    def __init__(self, message: str):
        super().__init__(message, error_code=ErrorCode.NOT_FRIDAY)


class NotLastFridayOfMonth(InvalidExpiration):
    def __init__(self, message: str):
        super().__init__(message, error_code=ErrorCode.NOT_LAST_FRIDAY_OF_MONTH)


class BatchTooLarge(ServiceError):
    def __init__(self, size: int, limit: int):
        super().__init__(
            message=f"Batch of {size} items exceeds the limit of {limit}",
            error_code=ErrorCode.BATCH_TOO_LARGE,
            status_code=status.HTTP_400_BAD_REQUEST
        )


class PoolLookupFailed(ServiceError):
    def __init__(self, message: str = "Can not get pool address"):
        super().__init__(
            message=message,
            error_code=ErrorCode.POOL_LOOKUP_FAILED,
            status_code=status.HTTP_400_BAD_REQUEST
        )


class PoolNotDeployed(ServiceError):
    def __init__(self, pool_address: str):
        self.pool_address = pool_address
        super().__init__(
            message=f"Pool {pool_address} is not deployed",
            error_code=ErrorCode.POOL_NOT_DEPLOYED,
            status_code=status.HTTP_502_BAD_GATEWAY
        )


class InsufficientCollateral(ServiceError):
    def __init__(self, token: str, required: Any, available: Any):
        self.token = token
        self.required = required
        self.available = available
        super().__init__(
            message=f"Not enough {token} collateral to fill orders "
                    f"(required {required}, available {available})",
            error_code=ErrorCode.INSUFFICIENT_COLLATERAL,
            status_code=status.HTTP_400_BAD_REQUEST
        )


class NothingToAnnihilate(ServiceError):
    def __init__(self, message: str = "No positions to annihilate"):
        super().__init__(
            message=message,
            error_code=ErrorCode.NOTHING_TO_ANNIHILATE,
            status_code=status.HTTP_400_BAD_REQUEST
        )


class NoBalanceToSettle(ServiceError):
    def __init__(self, message: str = "No balance to settle"):
        super().__init__(
            message=message,
            error_code=ErrorCode.NO_BALANCE_TO_SETTLE,
            status_code=status.HTTP_400_BAD_REQUEST
        )


class OptionNotExpired(ServiceError):
    def __init__(self, message: str = "Option has not expired"):
        super().__init__(
            message=message,
            error_code=ErrorCode.OPTION_NOT_EXPIRED,
            status_code=status.HTTP_400_BAD_REQUEST
        )


class UpstreamError(ServiceError):
    """Orderbook or chain RPC failure.

    When ``payload`` is set the upstream status and body are returned to the
    client verbatim.
    """
    def __init__(self,
                 message: str,
                 status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
                 payload: Any = None):
        self.payload = payload
        super().__init__(
            message=message,
            error_code=ErrorCode.UPSTREAM_ERROR,
            status_code=status_code
        )


class ConfigurationError(ServiceError):
    def __init__(self, message: str):
        super().__init__(
            message=message,
            error_code=ErrorCode.CONFIGURATION_ERROR,
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR
        )


def error_reason(exc: BaseException) -> str:
    """Short failure reason attached to a batch item"""
    if isinstance(exc, ServiceError):
        return exc.message
    return str(exc) or exc.__class__.__name__


def create_error_response(
    request: Request,
    status_code: int,
    error_code: str,
    message: str,
    details: Optional[List[ErrorDetail]] = None,
    service_name: Optional[str] = None
) -> ErrorResponse:
    """Create a standard error response"""
    return ErrorResponse(
        error_id=str(uuid.uuid4()),
        status_code=status_code,
        error_code=error_code,
        message=message,
        details=details,
        path=str(request.url.path),
        service=service_name or "unknown"
    )


def _render(error_response: ErrorResponse) -> JSONResponse:
    return JSONResponse(
        status_code=error_response.status_code,
        content=jsonable_encoder(error_response, exclude_none=True)
    )


def add_error_handlers(app: FastAPI, service_name: str):
    """Add standard error handlers to a FastAPI app"""

    @app.exception_handler(UpstreamError)
    async def upstream_error_handler(request: Request, exc: UpstreamError) -> JSONResponse:
        """Pass upstream errors through verbatim when a payload is attached"""
        logger.warning(
            f"Upstream error: {exc.status_code} - {exc.message}",
            extra={"status_code": exc.status_code, "path": request.url.path}
        )
        if exc.payload is not None:
            return JSONResponse(status_code=exc.status_code, content=exc.payload)

        return _render(create_error_response(
            request=request,
            status_code=exc.status_code,
            error_code=exc.error_code,
            message=exc.message,
            service_name=service_name
        ))

    @app.exception_handler(ServiceError)
    async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
        """Handle gateway errors"""
        error_response = create_error_response(
            request=request,
            status_code=exc.status_code,
            error_code=exc.error_code,
            message=exc.message,
            details=exc.details or None,
            service_name=service_name
        )

        logger.warning(
            f"Service error: {exc.error_code} - {exc.message}",
            extra={
                "error_id": error_response.error_id,
                "status_code": exc.status_code,
                "path": request.url.path
            }
        )
        return _render(error_response)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        """Request schema failures are client errors"""
        details = [
            ErrorDetail(
                field=".".join(str(loc) for loc in error.get("loc", [])),
                message=error.get("msg", "invalid value"),
                code=error.get("type")
            )
            for error in exc.errors()
        ]
        error_response = create_error_response(
            request=request,
            status_code=status.HTTP_400_BAD_REQUEST,
            error_code=ErrorCode.VALIDATION_ERROR,
            message="Validation error",
            details=details,
            service_name=service_name
        )

        logger.warning(
            f"Validation error on {request.url.path}: {len(details)} issue(s)",
            extra={"error_id": error_response.error_id}
        )
        return _render(error_response)

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        """Handle HTTP exceptions"""
        error_code_map: Dict[int, str] = {
            400: ErrorCode.VALIDATION_ERROR,
            401: ErrorCode.AUTHORIZATION_ERROR,
            404: ErrorCode.NOT_FOUND,
        }
        return _render(create_error_response(
            request=request,
            status_code=exc.status_code,
            error_code=error_code_map.get(exc.status_code, ErrorCode.INTERNAL_ERROR),
            message=str(exc.detail),
            service_name=service_name
        ))

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Handle unexpected exceptions"""
        error_response = create_error_response(
            request=request,
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            error_code=ErrorCode.INTERNAL_ERROR,
            message="Internal server error",
            service_name=service_name
        )

        logger.error(
            f"Unhandled exception: {type(exc).__name__}: {exc}",
            extra={"error_id": error_response.error_id, "path": request.url.path},
            exc_info=True
        )
        return _render(error_response)
