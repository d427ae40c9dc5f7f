"""
groupstage/errors.py
Centralized Error Handling

CORE PRINCIPLES:
- Every error carries a human-readable message and a stable reason code
- Validation and state errors are raised before any write
- Authorization is checked before domain validation
- Persistence errors are surfaced as-is, never retried here

ERROR RESPONSE STRUCTURE:
{
    "success": false,
    "error": "ErrorType",
    "message": "Human-readable description",
    "code": "UNIQUE_ERROR_CODE",
    "details": {} (optional)
}

HTTP STATUS CODE DISCIPLINE:
- 200/201: Successful request
- 400: Invalid input, or operation not possible in the current state
- 401: Authentication missing or expired
- 403: Non-host attempting a mutation
- 404: Tournament / group / match / participant does not exist
- 422: Malformed request body (pydantic)
- 429: Rate limit exceeded
- 500: Persistence failure or internal error
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
    NEGATIVE_STAT = "NEGATIVE_STAT"
    DUPLICATE_TEAM = "DUPLICATE_TEAM"
    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"

    AUTH_REQUIRED = "AUTH_REQUIRED"
    AUTH_INVALID = "AUTH_INVALID"

    FORBIDDEN = "FORBIDDEN"
    NOT_HOST = "NOT_HOST"

    NOT_FOUND = "NOT_FOUND"
    TOURNAMENT_NOT_FOUND = "TOURNAMENT_NOT_FOUND"
    GROUP_NOT_FOUND = "GROUP_NOT_FOUND"
    MATCH_NOT_FOUND = "MATCH_NOT_FOUND"
    PARTICIPANT_NOT_FOUND = "PARTICIPANT_NOT_FOUND"

    ALREADY_FINAL_ROUND = "ALREADY_FINAL_ROUND"
    INSUFFICIENT_PARTICIPANTS = "INSUFFICIENT_PARTICIPANTS"
    CAPACITY_EXCEEDED = "CAPACITY_EXCEEDED"
    NO_QUALIFIED_TEAMS = "NO_QUALIFIED_TEAMS"
    STATE_TRANSITION_INVALID = "STATE_TRANSITION_INVALID"
    TOURNAMENT_CLOSED = "TOURNAMENT_CLOSED"
    ROUND_OUT_OF_SEQUENCE = "ROUND_OUT_OF_SEQUENCE"
    NOT_FINAL_ROUND = "NOT_FINAL_ROUND"
    RESULTS_MISSING = "RESULTS_MISSING"
    REGISTRATION_CLOSED = "REGISTRATION_CLOSED"
    ALREADY_REGISTERED = "ALREADY_REGISTERED"
    TOURNAMENT_FULL = "TOURNAMENT_FULL"

    RATE_LIMITED = "RATE_LIMITED"

    PERSISTENCE_ERROR = "PERSISTENCE_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"


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
        """Convert to dictionary"""
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


class ValidationError(APIError):
    """400 Bad Request - malformed or out-of-range input"""
    def __init__(self, message: str, code: str = ErrorCode.VALIDATION_ERROR, details: Optional[Dict] = None):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            error="Validation Error",
            message=message,
            code=code,
            details=details
        )


class ConfigurationError(ValidationError):
    """400 Bad Request - qualification policy out of range"""
    def __init__(self, message: str, details: Optional[Dict] = None):
        super().__init__(message, code=ErrorCode.CONFIGURATION_ERROR, details=details)


class UnauthorizedError(APIError):
    """401 Unauthorized - Authentication required"""
    def __init__(self, message: str = "Authentication required", code: str = ErrorCode.AUTH_REQUIRED):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            error="Unauthorized",
            message=message,
            code=code
        )


class AuthorizationError(APIError):
    """403 Forbidden - caller is not allowed to mutate this tournament"""
    def __init__(self, message: str = "Only the tournament host can perform this action",
                 code: str = ErrorCode.NOT_HOST):
        super().__init__(
            status_code=status.HTTP_403_FORBIDDEN,
            error="Forbidden",
            message=message,
            code=code
        )


class NotFoundError(APIError):
    """404 Not Found - Resource does not exist"""
    def __init__(self, resource: str, identifier: Any = None, code: str = ErrorCode.NOT_FOUND):
        message = f"{resource} not found"
        if identifier is not None:
            message = f"{resource} with id '{identifier}' not found"
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            error="Not Found",
            message=message,
            code=code,
            details={"resource": resource, "id": identifier} if identifier is not None else None
        )


class StateError(APIError):
    """400 Bad Request - operation not possible in the current state"""
    def __init__(self, message: str, code: str, details: Optional[Dict] = None):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            error="Invalid State",
            message=message,
            code=code,
            details=details
        )


class PersistenceError(APIError):
    """500 Internal Server Error - storage layer failure"""
    def __init__(self, message: str = "The operation could not be saved. Please try again later.",
                 details: Optional[Dict] = None):
        super().__init__(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            error="Persistence Error",
            message=message,
            code=ErrorCode.PERSISTENCE_ERROR,
            details=details
        )


def tournament_not_found(tournament_id: Any) -> NotFoundError:
    return NotFoundError("Tournament", tournament_id, ErrorCode.TOURNAMENT_NOT_FOUND)


def group_not_found(group_id: Any) -> NotFoundError:
    return NotFoundError("Group", group_id, ErrorCode.GROUP_NOT_FOUND)


def match_not_found(match_id: Any) -> NotFoundError:
    return NotFoundError("Match", match_id, ErrorCode.MATCH_NOT_FOUND)


def participant_not_found(participant_id: Any) -> NotFoundError:
    return NotFoundError("Participant", participant_id, ErrorCode.PARTICIPANT_NOT_FOUND)


ERROR_MAPPING = {
    400: ("Bad Request", ErrorCode.INVALID_INPUT),
    401: ("Unauthorized", ErrorCode.AUTH_REQUIRED),
    403: ("Forbidden", ErrorCode.FORBIDDEN),
    404: ("Not Found", ErrorCode.NOT_FOUND),
    422: ("Validation Error", ErrorCode.VALIDATION_ERROR),
    429: ("Too Many Requests", ErrorCode.RATE_LIMITED),
    500: ("Internal Error", ErrorCode.INTERNAL_ERROR),
}


def get_error_summary() -> Dict[str, Any]:
    """Return summary of error handling system for documentation"""
    return {
        "service": "groupstage-error-handler",
        "response_structure": {
            "success": "boolean (always false for errors)",
            "error": "string (error type)",
            "message": "string (human-readable)",
            "code": "string (machine-readable)",
            "details": "object (optional)"
        },
        "error_codes": [
            attr for attr in dir(ErrorCode)
            if not attr.startswith('_')
        ]
    }
