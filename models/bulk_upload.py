"""
Bulk product upload schemas.

Row-level pipeline values (ValidatedRow, RowError, ValidationResult) plus the
request/response models of the bulk upload API.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import ConfigDict, Field

from models.base import BaseSchema, PaginatedResponse


class BatchStatus(str, Enum):
    """Lifecycle of one import run. Always derived from item counts."""
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    PARTIAL = "PARTIAL"
    FAILED = "FAILED"


class ItemStatus(str, Enum):
    """Outcome recorded on a bulk upload item."""
    ERROR = "ERROR"
    CREATED = "CREATED"
    UPDATED = "UPDATED"


# ===================
# PIPELINE VALUES
# ===================

class ValidatedRow(BaseSchema):
    """
    One CSV row that passed validation.

    price is already scaled (input price / 90, floored).
    category_id may still be a category name until it is resolved.
    """
    model_config = ConfigDict(frozen=True)

    title: str = Field(..., min_length=1)
    slug: str = Field(..., min_length=1)
    price: int = Field(..., ge=0)
    category_id: str = Field(..., min_length=1)
    in_stock: int = Field(0, ge=0)
    manufacturer: Optional[str] = None
    description: Optional[str] = None
    main_image: Optional[str] = None


@dataclass(frozen=True)
class RowError:
    """A source row that failed validation, by zero-based position."""
    index: int
    error: str


@dataclass(frozen=True)
class ValidationResult:
    """Result of validating one row: either data or error is set."""
    ok: bool
    data: Optional[ValidatedRow] = None
    error: Optional[RowError] = None


@dataclass(frozen=True)
class BatchCreateResult:
    """Counts produced by one batch-creation call."""
    success_count: int
    error_count: int


# ===================
# API MODELS
# ===================

class BatchSummary(BaseSchema):
    """Item counts for one batch."""
    total: int = 0
    errors: int = 0
    created: int = 0
    updated: int = 0


class DeleteCheckResult(BaseSchema):
    """Whether a batch's products can be deleted."""
    can_delete: bool
    reason: Optional[str] = None
    blocked_product_ids: list[str] = Field(default_factory=list)


class BatchResponse(BaseSchema):
    id: str
    status: BatchStatus
    created_at: datetime
    filename: Optional[str] = None
    merchant_id: Optional[str] = None
    total_rows: int = 0
    success_count: int = 0
    error_count: int = 0


class BatchListResponse(PaginatedResponse):
    data: list[BatchResponse]


class BulkUploadItemResponse(BaseSchema):
    id: str
    batch_id: str
    product_id: Optional[str] = None
    title: str = ""
    slug: str = ""
    price: int = 0
    manufacturer: Optional[str] = None
    description: Optional[str] = None
    main_image: Optional[str] = None
    category_id: str = ""
    in_stock: int = 0
    status: ItemStatus
    error: Optional[str] = None


class BulkUploadResponse(BaseSchema):
    """Result of one CSV upload."""
    batch_id: str
    status: BatchStatus
    total_rows: int
    success_count: int
    error_count: int
    summary: BatchSummary
    message: str


class ItemUpdate(BaseSchema):
    """
    Post-import correction for one item.

    in_stock is an availability flag here: 1 means in stock, anything else 0.
    """
    item_id: str = Field(..., min_length=1)
    price: float = Field(..., ge=0)
    in_stock: float = Field(...)


class ItemUpdateRequest(BaseSchema):
    updates: list[ItemUpdate] = Field(..., min_length=1)


class ProductDeletionResponse(BaseSchema):
    batch_id: str
    deleted_count: int
    product_ids: list[str]
