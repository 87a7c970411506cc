"""
Bulk product upload API routes.

Merchant-side CSV import: upload a file, inspect the resulting batch and its
audit items, correct prices/stock, or delete the products a batch created.
"""

from fastapi import APIRouter, File, Form, Query, UploadFile
from fastapi.responses import JSONResponse
from typing import Optional
import structlog

from models.bulk_upload import (
    BatchListResponse,
    BatchResponse,
    BatchSummary,
    BulkUploadItemResponse,
    BulkUploadResponse,
    DeleteCheckResult,
    ItemStatus,
    ItemUpdateRequest,
    ProductDeletionResponse,
)
from services.bulk_upload_service import get_bulk_upload_service
from exceptions import AppError

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/bulk-upload", tags=["Bulk Upload"])


# ===================
# EXCEPTION HANDLER
# ===================

def handle_error(e: Exception) -> JSONResponse:
    """Convert exception to JSON response."""
    if isinstance(e, AppError):
        return JSONResponse(
            status_code=e.status_code,
            content=e.to_dict()
        )
    # Unexpected error
    logger.error("unexpected_error", error=str(e), type=type(e).__name__)
    return JSONResponse(
        status_code=500,
        content={
            "error": {
                "code": "INTERNAL_ERROR",
                "message": "An unexpected error occurred"
            }
        }
    )


# ===================
# ROUTES
# ===================

@router.post("/upload", response_model=BulkUploadResponse, status_code=201)
async def upload_products_csv(
    file: UploadFile = File(...),
    merchant_id: Optional[str] = Form(None)
):
    """
    Import products from a CSV file.

    Rows that fail validation, reference an unknown category, or cannot be
    created are recorded as ERROR items; the rest of the file still imports.

    Raises:
        409: No active merchant
        413: File too large
        422: File is not valid CSV or has no data rows
    """
    try:
        content = await file.read()
        service = get_bulk_upload_service()
        return service.process_upload(
            content,
            filename=file.filename,
            merchant_id=merchant_id or None
        )

    except Exception as e:
        logger.error("bulk_upload_failed", filename=file.filename, error=str(e))
        return handle_error(e)


@router.get("/batches", response_model=BatchListResponse)
async def list_batches(
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Query(20, ge=1, le=100, description="Items per page")
):
    """List upload batches, newest first."""
    try:
        service = get_bulk_upload_service()
        return service.list_batches(page=page, page_size=page_size)

    except Exception as e:
        return handle_error(e)


@router.get("/batches/{batch_id}", response_model=BatchResponse)
async def get_batch(batch_id: str):
    """
    Get one batch.

    Raises:
        404: Batch not found
    """
    try:
        service = get_bulk_upload_service()
        return service.get_batch(batch_id)

    except Exception as e:
        return handle_error(e)


@router.get("/batches/{batch_id}/items", response_model=list[BulkUploadItemResponse])
async def get_batch_items(
    batch_id: str,
    status: Optional[ItemStatus] = Query(None, description="Filter by item status")
):
    """Audit items of a batch, one per CSV row."""
    try:
        service = get_bulk_upload_service()
        return service.get_batch_items(batch_id, status=status)

    except Exception as e:
        return handle_error(e)


@router.get("/batches/{batch_id}/summary", response_model=BatchSummary)
async def get_batch_summary(batch_id: str):
    """Total, error, created and updated item counts."""
    try:
        service = get_bulk_upload_service()
        return service.get_summary(batch_id)

    except Exception as e:
        return handle_error(e)


@router.get("/batches/{batch_id}/can-delete", response_model=DeleteCheckResult)
async def check_can_delete(batch_id: str):
    """Whether the batch's products can be deleted (none are on orders)."""
    try:
        service = get_bulk_upload_service()
        return service.check_can_delete(batch_id)

    except Exception as e:
        return handle_error(e)


@router.delete("/batches/{batch_id}/products", response_model=ProductDeletionResponse)
async def delete_batch_products(batch_id: str):
    """
    Delete the products a batch created.

    Raises:
        404: Batch not found
        409: Some products are referenced by customer orders
    """
    try:
        service = get_bulk_upload_service()
        return service.delete_products_for_batch(batch_id)

    except Exception as e:
        return handle_error(e)


@router.patch("/batches/{batch_id}/items", response_model=list[BulkUploadItemResponse])
async def update_batch_items(batch_id: str, data: ItemUpdateRequest):
    """
    Correct price and stock on items of a batch.

    Linked products are updated too. Items not in the batch are ignored.
    """
    try:
        service = get_bulk_upload_service()
        return service.update_items(batch_id, data.updates)

    except Exception as e:
        return handle_error(e)
