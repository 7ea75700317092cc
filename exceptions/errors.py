"""
Custom exception classes for the application.

Every error carries a machine-readable code, a human-readable message and
the HTTP status the API layer should answer with.
"""

from typing import Optional, Any
from datetime import datetime, timezone


class AppError(Exception):
    """
    Base exception for all application errors.

    All custom exceptions inherit from this.

    Attributes:
        code: Error code (e.g., "POST_NOT_FOUND")
        message: Human-readable message
        status_code: HTTP status code
        details: Additional context
    """

    def __init__(
        self,
        code: str,
        message: str,
        status_code: int = 500,
        details: Optional[dict[str, Any]] = None
    ):
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        self.timestamp = datetime.now(timezone.utc).isoformat()
        super().__init__(message)

    def to_dict(self) -> dict:
        """Convert to API response format."""
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "details": self.details,
                "timestamp": self.timestamp
            }
        }


class NotFoundError(AppError):
    """Resource not found (404)."""

    def __init__(
        self,
        resource: str,
        identifier: str,
        code: Optional[str] = None
    ):
        super().__init__(
            code=code or f"{resource.upper()}_NOT_FOUND",
            message=f"{resource} not found",
            status_code=404,
            details={"id": identifier}
        )


class ValidationError(AppError):
    """Validation failed (422)."""

    def __init__(
        self,
        message: str,
        code: str = "VALIDATION_ERROR",
        details: Optional[dict] = None
    ):
        super().__init__(
            code=code,
            message=message,
            status_code=422,
            details=details
        )


class ConflictError(AppError):
    """Conflict with existing resource (409)."""

    def __init__(
        self,
        message: str,
        code: str = "CONFLICT",
        details: Optional[dict] = None
    ):
        super().__init__(
            code=code,
            message=message,
            status_code=409,
            details=details
        )


class ExternalServiceError(AppError):
    """External service failure (503)."""

    def __init__(
        self,
        service: str,
        message: str,
        details: Optional[dict] = None,
        status_code: int = 503,
        code: Optional[str] = None
    ):
        super().__init__(
            code=code or f"{service.upper()}_ERROR",
            message=message,
            status_code=status_code,
            details={"service": service, **(details or {})}
        )


class DatabaseError(AppError):
    """Database operation failed (500)."""

    def __init__(
        self,
        operation: str,
        message: str,
        details: Optional[dict] = None
    ):
        super().__init__(
            code="DATABASE_ERROR",
            message=f"Database {operation} failed: {message}",
            status_code=500,
            details={"operation": operation, **(details or {})}
        )


# ===================
# POST ERRORS
# ===================

class PostNotFoundError(NotFoundError):
    """Post not found in the working set."""

    def __init__(self, post_id: str):
        super().__init__(
            resource="Post",
            identifier=post_id,
            code="POST_NOT_FOUND"
        )


class EmptyRawContentError(ValidationError):
    """Extraction requested before any raw content was pasted."""

    def __init__(self, post_id: str):
        super().__init__(
            code="POST_RAW_CONTENT_EMPTY",
            message="Paste raw content before analyzing",
            details={"id": post_id}
        )


class PostRejectedError(ValidationError):
    """Action blocked because the post is rejected."""

    def __init__(self, post_id: str, action: str):
        super().__init__(
            code="POST_REJECTED",
            message=f"cannot {action} rejected post",
            details={"id": post_id, "action": action}
        )


class AnalysisInProgressError(ConflictError):
    """A second extraction was requested while one is outstanding."""

    def __init__(self, post_id: str):
        super().__init__(
            code="ANALYSIS_IN_PROGRESS",
            message="Analysis already running for this post",
            details={"id": post_id}
        )


class InvalidStepTransitionError(ValidationError):
    """Workflow step change not allowed."""

    def __init__(self, current_step: str, new_step: str, reason: str):
        super().__init__(
            code="INVALID_STEP_TRANSITION",
            message=f"Cannot move from {current_step} to {new_step}",
            details={
                "current_step": current_step,
                "new_step": new_step,
                "reason": reason
            }
        )


class StepNotReadyError(ValidationError):
    """Gate for the next workflow step is not satisfied."""

    def __init__(self, post_id: str, step: str, missing: list[str]):
        super().__init__(
            code="STEP_NOT_READY",
            message=f"Post is not ready to proceed to {step}",
            details={"id": post_id, "step": step, "missing": missing}
        )


class RecordMappingError(ValidationError):
    """Remote row could not be mapped to a post."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(
            code="RECORD_MAPPING_ERROR",
            message=message,
            details=details
        )


class OperatorRequiredError(ValidationError):
    """Operation needs an operator identity to scope the working set."""

    def __init__(self, action: str):
        super().__init__(
            code="OPERATOR_REQUIRED",
            message=f"An operator identity is required to {action}",
            details={"action": action}
        )


# ===================
# EXTRACTION ERRORS
# ===================

class ExtractionError(ExternalServiceError):
    """Extraction service failed (network, HTTP status, malformed body)."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(
            service="extraction",
            message=message,
            details=details
        )


class ExtractionTimeoutError(ExtractionError):
    """Extraction did not answer within the timeout."""

    def __init__(self, timeout_seconds: float):
        super().__init__(
            message="Analyze request timed out",
            details={"timeout_seconds": timeout_seconds}
        )
        self.code = "EXTRACTION_TIMEOUT"
        self.status_code = 504


class ExtractionCancelledError(AppError):
    """Extraction was cancelled through its token. Not shown to users."""

    def __init__(self, post_id: Optional[str] = None):
        super().__init__(
            code="EXTRACTION_CANCELLED",
            message="Analysis request was cancelled",
            status_code=499,
            details={"id": post_id} if post_id else None
        )


# ===================
# REMOTE STORE ERRORS
# ===================

class PermissionDeniedError(AppError):
    """Remote store access control rejected the operation (403)."""

    def __init__(self, operation: str, message: str):
        super().__init__(
            code="PERMISSION_DENIED",
            message=message,
            status_code=403,
            details={"operation": operation}
        )


class RemoteStoreUnavailableError(ExternalServiceError):
    """Remote store unreachable; the portal is offline."""

    def __init__(self, operation: str, message: str):
        super().__init__(
            service="remote_store",
            message=message,
            details={"operation": operation},
            code="REMOTE_STORE_OFFLINE"
        )


# ===================
# EXCEL PARSER ERRORS
# ===================

class ExcelParseError(ValidationError):
    """Excel file parsing failed."""

    def __init__(
        self,
        message: str,
        details: Optional[dict] = None
    ):
        super().__init__(
            code="EXCEL_PARSE_ERROR",
            message=message,
            details=details
        )
