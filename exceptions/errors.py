"""
Custom exception classes for the application.

Every error carries a stable code, a human-readable message, the HTTP status
the API layer should answer with, and optional details.
"""

from typing import Optional, Any
from datetime import datetime, timezone


class AppError(Exception):
    """
    Base exception for all application errors.

    All custom exceptions inherit from this.

    Attributes:
        code: Error code (e.g., "BATCH_NOT_FOUND")
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
# CSV INPUT ERRORS
# ===================

class MalformedInputError(ValidationError):
    """Uploaded file cannot be read as CSV."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(
            code="CSV_MALFORMED",
            message=message,
            details=details
        )


class EmptyUploadError(ValidationError):
    """Uploaded CSV has no data rows."""

    def __init__(self):
        super().__init__(
            code="CSV_EMPTY",
            message="CSV file contains no data rows"
        )


class UploadTooLargeError(AppError):
    """Uploaded CSV exceeds the configured size or row limit (413)."""

    def __init__(self, limit_name: str, limit: int, actual: int):
        super().__init__(
            code="UPLOAD_TOO_LARGE",
            message=f"Upload exceeds {limit_name} limit of {limit}",
            status_code=413,
            details={"limit": limit, "actual": actual, "limit_name": limit_name}
        )


# ===================
# BULK UPLOAD ERRORS
# ===================

class BatchNotFoundError(NotFoundError):
    """Bulk upload batch not found."""

    def __init__(self, batch_id: str):
        super().__init__(
            resource="Batch",
            identifier=batch_id,
            code="BATCH_NOT_FOUND"
        )


class NoMerchantAvailableError(ConflictError):
    """No merchant supplied and no active merchant exists."""

    def __init__(self):
        super().__init__(
            code="NO_MERCHANT_AVAILABLE",
            message="No active merchant found. Please create a merchant first."
        )


class ProductDeletionBlockedError(ConflictError):
    """Products created by a batch are referenced by customer orders."""

    def __init__(self, batch_id: str, blocked_product_ids: list[str]):
        super().__init__(
            code="PRODUCT_DELETION_BLOCKED",
            message="Some products are in orders",
            details={
                "batch_id": batch_id,
                "blocked_product_ids": blocked_product_ids
            }
        )
