"""
Standardized error response system.

Provides consistent error responses across all API endpoints.
"""
import uuid
from typing import Any, Dict, Optional

from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse

from authguard.core.result import Failure


class ErrorCode:
    """Machine-readable error codes, shared by the services and the API."""

    # Input validation
    EMPTY_PASSWORD = "EMPTY_PASSWORD"
    INVALID_EMAIL = "INVALID_EMAIL"

    # Authentication/Authorization
    FORBIDDEN = "FORBIDDEN"
    # Covers both unknown account and wrong password
    INVALID_CREDENTIALS = "INVALID_CREDENTIALS"

    # Abuse prevention
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    ACCOUNT_LOCKED = "ACCOUNT_LOCKED"

    # Resource errors
    NOT_FOUND = "NOT_FOUND"

    # System errors
    UNEXPECTED_ERROR = "UNEXPECTED_ERROR"


# HTTP status for each failure code a service can return
FAILURE_STATUS = {
    ErrorCode.RATE_LIMIT_EXCEEDED: status.HTTP_429_TOO_MANY_REQUESTS,
    ErrorCode.ACCOUNT_LOCKED: status.HTTP_429_TOO_MANY_REQUESTS,
    ErrorCode.EMPTY_PASSWORD: status.HTTP_400_BAD_REQUEST,
    ErrorCode.INVALID_EMAIL: status.HTTP_400_BAD_REQUEST,
    ErrorCode.INVALID_CREDENTIALS: status.HTTP_401_UNAUTHORIZED,
    ErrorCode.UNEXPECTED_ERROR: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


class ErrorResponse:
    """Standard error response format."""

    @staticmethod
    def create(
        code: str,
        message: str,
        status_code: int = 500,
        details: Optional[Dict[str, Any]] = None,
        request_id: Optional[str] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> JSONResponse:
        """
        Create a standardized error response.

        Args:
            code: Machine-readable error code
            message: Human-readable error message
            status_code: HTTP status code
            details: Additional error details (optional)
            request_id: Request correlation ID (optional)
            headers: Extra response headers, e.g. Retry-After (optional)

        Returns:
            JSONResponse with standard error format
        """
        error_data: Dict[str, Any] = {
            "error": {
                "code": code,
                "message": message,
            }
        }

        if details:
            error_data["error"]["details"] = details

        if request_id:
            error_data["error"]["request_id"] = request_id

        return JSONResponse(status_code=status_code, content=error_data, headers=headers)


class HTTPError(HTTPException):
    """
    Enhanced HTTPException with standard error response format.

    Usage:
        raise HTTPError(
            status_code=429,
            code=ErrorCode.RATE_LIMIT_EXCEEDED,
            message="Too many sign-in requests",
            details={"retry_after_seconds": 42},
            headers={"Retry-After": "42"},
        )
    """

    def __init__(
        self,
        status_code: int,
        code: str,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        self.code = code
        self.message = message
        self.details = details
        super().__init__(status_code=status_code, detail=message, headers=headers)

    @classmethod
    def from_failure(cls, result: Failure) -> "HTTPError":
        """Translate a service ``Failure`` into its HTTP error."""
        headers = None
        retry_after = result.details.get("retry_after_seconds")
        if retry_after is not None:
            headers = {"Retry-After": str(retry_after)}

        return cls(
            status_code=FAILURE_STATUS.get(result.code, status.HTTP_400_BAD_REQUEST),
            code=result.code,
            message=result.message,
            details=result.details or None,
            headers=headers,
        )


async def http_error_handler(request: Request, exc: HTTPError) -> JSONResponse:
    """
    Handle HTTPError exceptions and return standardized error response.

    This should be added to FastAPI exception handlers.
    """
    request_id = getattr(request.state, "request_id", str(uuid.uuid4()))

    return ErrorResponse.create(
        code=exc.code,
        message=exc.message,
        status_code=exc.status_code,
        details=exc.details,
        request_id=request_id,
        headers=exc.headers,
    )


def not_found(resource: str, details: Optional[Dict[str, Any]] = None) -> HTTPError:
    """Create a 404 NOT_FOUND error."""
    return HTTPError(
        status_code=status.HTTP_404_NOT_FOUND,
        code=ErrorCode.NOT_FOUND,
        message=f"{resource} not found",
        details=details,
    )


def forbidden(message: str = "Forbidden", details: Optional[Dict[str, Any]] = None) -> HTTPError:
    """Create a 403 FORBIDDEN error."""
    return HTTPError(
        status_code=status.HTTP_403_FORBIDDEN,
        code=ErrorCode.FORBIDDEN,
        message=message,
        details=details,
    )
