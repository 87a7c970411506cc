"""
Pydantic models for validation and serialization.
"""

from models.base import (
    BaseSchema,
    PaginatedResponse
)
from models.bulk_upload import (
    BatchStatus,
    ItemStatus,
    ValidatedRow,
    RowError,
    ValidationResult,
    BatchCreateResult,
    BatchSummary,
    DeleteCheckResult,
    BatchResponse,
    BatchListResponse,
    BulkUploadItemResponse,
    BulkUploadResponse,
    ItemUpdate,
    ItemUpdateRequest,
    ProductDeletionResponse,
)

__all__ = [
    # Base
    "BaseSchema",
    "PaginatedResponse",

    # Bulk upload
    "BatchStatus",
    "ItemStatus",
    "ValidatedRow",
    "RowError",
    "ValidationResult",
    "BatchCreateResult",
    "BatchSummary",
    "DeleteCheckResult",
    "BatchResponse",
    "BatchListResponse",
    "BulkUploadItemResponse",
    "BulkUploadResponse",
    "ItemUpdate",
    "ItemUpdateRequest",
    "ProductDeletionResponse",
]
