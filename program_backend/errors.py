"""
program_backend/errors.py
Centralized error handling for the evaluation API

ERROR RESPONSE STRUCTURE:
{
    "success": false,
    "error": "ErrorType",
    "message": "Human-readable description",
    "code": "UNIQUE_ERROR_CODE",
    "details": {} (optional)
}

HTTP STATUS CODE DISCIPLINE:
- 400: Invalid input / malformed request / unmet prerequisite
- 401: Authentication missing or expired
- 403: Role check failed or caller is not on the owning team
- 404: Resource does not exist
- 409: Request conflicts with current configuration or state
- 422: Validation error (Pydantic)
- 429: Rate limit exceeded
- 500: Data-integrity failures only, never caused by user input
- 502/503: AI scoring service failed / is not configured
"""

import logging
from typing import Optional, Dict, Any

from fastapi import status
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class ErrorCode:
    """Unique error codes for machine-readable error handling"""

    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_INPUT = "INVALID_INPUT"
    MISSING_FIELD = "MISSING_FIELD"
    INVALID_SCORE = "INVALID_SCORE"
    INVALID_SCOPE = "INVALID_SCOPE"
    EMPTY_CRITERIA = "EMPTY_CRITERIA"
    INVALID_FILES = "INVALID_FILES"
    SUBMISSIONS_MISMATCH = "SUBMISSIONS_MISMATCH"
    TEAM_EVENT_MISMATCH = "TEAM_EVENT_MISMATCH"

    AUTH_REQUIRED = "AUTH_REQUIRED"
    AUTH_INVALID = "AUTH_INVALID"

    FORBIDDEN = "FORBIDDEN"
    NOT_TEAM_MEMBER = "NOT_TEAM_MEMBER"
    CAPTAIN_REQUIRED = "CAPTAIN_REQUIRED"

    NOT_FOUND = "NOT_FOUND"

    PREREQUISITE_NOT_MET = "PREREQUISITE_NOT_MET"
    RUBRIC_NOT_CONFIGURED = "RUBRIC_NOT_CONFIGURED"
    STALE_STATUS = "STALE_STATUS"

    RATE_LIMITED = "RATE_LIMITED"

    INTERNAL_ERROR = "INTERNAL_ERROR"
    TENANT_UNRESOLVED = "TENANT_UNRESOLVED"
    AI_SERVICE_ERROR = "AI_SERVICE_ERROR"
    AI_SERVICE_NOT_CONFIGURED = "AI_SERVICE_NOT_CONFIGURED"


class APIError(Exception):
    """Base API exception with consistent structure"""

    def __init__(
        self,
        status_code: int,
        error: str,
        message: str,
        code: str,
        details: Optional[Dict[str, Any]] = None
    ):
        self.status_code = status_code
        self.error = error
        self.message = message
        self.code = code
        self.details = details
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "success": False,
            "error": self.error,
            "message": self.message,
            "code": self.code
        }
        if self.details:
            result["details"] = self.details
        return result

    def to_response(self) -> JSONResponse:
        """Convert to FastAPI JSONResponse"""
        return JSONResponse(status_code=self.status_code, content=self.to_dict())


class BadRequestError(APIError):
    """400 Bad Request - Invalid input"""
    def __init__(self, message: str, code: str = ErrorCode.INVALID_INPUT, details: Optional[Dict] = None):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            error="Bad Request",
            message=message,
            code=code,
            details=details
        )


class UnauthorizedError(APIError):
    """401 Unauthorized - Authentication required"""
    def __init__(self, message: str = "Authentication required", code: str = ErrorCode.AUTH_REQUIRED):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            error="Unauthorized",
            message=message,
            code=code
        )


class ForbiddenError(APIError):
    """403 Forbidden - Access denied"""
    def __init__(self, message: str = "Not authorized", code: str = ErrorCode.FORBIDDEN, details: Optional[Dict] = None):
        super().__init__(
            status_code=status.HTTP_403_FORBIDDEN,
            error="Forbidden",
            message=message,
            code=code,
            details=details
        )


class NotFoundError(APIError):
    """404 Not Found - Resource does not exist"""
    def __init__(self, resource: str, identifier: Any = None, code: str = ErrorCode.NOT_FOUND):
        message = f"{resource} not found"
        if identifier is not None:
            message = f"{resource} with id '{identifier}' not found"
        self.resource = resource
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            error="Not Found",
            message=message,
            code=code
        )


class ConflictError(APIError):
    """409 Conflict - Request cannot be served with the current configuration/state"""
    def __init__(self, message: str, code: str, details: Optional[Dict] = None):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            error="Conflict",
            message=message,
            code=code,
            details=details
        )


class InternalError(APIError):
    """500 Internal Server Error - Use sparingly, only for true internal failures"""
    def __init__(
        self,
        message: str = "An internal error occurred",
        code: str = ErrorCode.INTERNAL_ERROR,
        log_id: Optional[str] = None
    ):
        details = {"log_id": log_id} if log_id else None
        super().__init__(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            error="Internal Error",
            message=message,
            code=code,
            details=details
        )


class AIServiceError(APIError):
    """502 Bad Gateway - The AI scoring service failed or answered garbage"""
    def __init__(self, message: str = "AI evaluation failed", details: Optional[Dict] = None):
        super().__init__(
            status_code=status.HTTP_502_BAD_GATEWAY,
            error="AI Service Error",
            message=message,
            code=ErrorCode.AI_SERVICE_ERROR,
            details=details
        )


class AIServiceNotConfiguredError(APIError):
    """503 Service Unavailable - No credential for the AI scoring provider"""
    def __init__(self, message: str = "AI service not configured"):
        super().__init__(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            error="Service Unavailable",
            message=message,
            code=ErrorCode.AI_SERVICE_NOT_CONFIGURED
        )


def error_body(status_code: int, message: str, details: Optional[Any] = None) -> Dict[str, Any]:
    """Envelope for errors that did not originate as APIError."""
    error, code = ERROR_MAPPING.get(
        status_code,
        ("Error", ErrorCode.INTERNAL_ERROR if status_code >= 500 else ErrorCode.INVALID_INPUT)
    )
    body = {"success": False, "error": error, "message": message, "code": code}
    if details:
        body["details"] = details
    return body


ERROR_MAPPING = {
    400: ("Bad Request", ErrorCode.INVALID_INPUT),
    401: ("Unauthorized", ErrorCode.AUTH_REQUIRED),
    403: ("Forbidden", ErrorCode.FORBIDDEN),
    404: ("Not Found", ErrorCode.NOT_FOUND),
    405: ("Method Not Allowed", ErrorCode.INVALID_INPUT),
    409: ("Conflict", ErrorCode.INVALID_INPUT),
    422: ("Validation Error", ErrorCode.VALIDATION_ERROR),
    429: ("Too Many Requests", ErrorCode.RATE_LIMITED),
    500: ("Internal Error", ErrorCode.INTERNAL_ERROR),
}
