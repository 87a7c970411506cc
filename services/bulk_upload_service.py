"""
Bulk product upload service.

Pipeline for merchant CSV imports:
    parse → validate → resolve categories → insert products + audit items
    → derive batch status

Every source row produces exactly one bulk_upload_item, whether it failed
validation, failed category resolution, or failed product creation.
Row-level failures never abort a batch; only a missing merchant and an
unreadable file do.
"""

import math
from typing import Optional
import structlog

from config import get_supabase_client, settings, DatabaseTransaction
from models.bulk_upload import (
    BatchCreateResult,
    BatchListResponse,
    BatchResponse,
    BatchStatus,
    BatchSummary,
    BulkUploadItemResponse,
    BulkUploadResponse,
    DeleteCheckResult,
    ItemStatus,
    ItemUpdate,
    ProductDeletionResponse,
    RowError,
    ValidatedRow,
)
from parsers.product_csv_parser import parse_csv_buffer_to_rows, validate_row
from services.category_resolver import CategoryResolver
from utils.text_utils import truncate_error
from exceptions import (
    AppError,
    BatchNotFoundError,
    DatabaseError,
    EmptyUploadError,
    NoMerchantAvailableError,
    ProductDeletionBlockedError,
    UploadTooLargeError,
)

logger = structlog.get_logger(__name__)

BATCH_TABLE = "bulk_upload_batch"
ITEM_TABLE = "bulk_upload_item"
PRODUCT_TABLE = "product"
MERCHANT_TABLE = "merchant"
ORDER_PRODUCT_TABLE = "customer_order_product"

DEFAULT_PRODUCT_RATING = 5


# ===================
# BATCH STATUS
# ===================

def compute_batch_status(success_count: int, error_count: int) -> BatchStatus:
    """
    Derive batch status from item counts.

    success>0, errors=0 → COMPLETED
    success>0, errors>0 → PARTIAL
    success=0, errors>0 → FAILED
    nothing processed   → PENDING
    """
    if success_count > 0 and error_count == 0:
        return BatchStatus.COMPLETED
    if success_count > 0 and error_count > 0:
        return BatchStatus.PARTIAL
    if success_count == 0 and error_count > 0:
        return BatchStatus.FAILED
    return BatchStatus.PENDING


# ===================
# BATCH WRITER
# ===================

def get_default_merchant_id(db) -> str:
    """
    Oldest active merchant.

    Raises:
        NoMerchantAvailableError: If no active merchant exists
    """
    result = (
        db.table(MERCHANT_TABLE)
        .select("id")
        .eq("status", "ACTIVE")
        .order("created_at")
        .limit(1)
        .execute()
    )
    if not result.data:
        raise NoMerchantAvailableError()
    return result.data[0]["id"]


def create_batch_with_items(
    tx,
    batch_id: str,
    valid_rows: list[ValidatedRow],
    error_rows: list[RowError],
    merchant_id: Optional[str] = None
) -> BatchCreateResult:
    """
    Create products for valid rows and one audit item for every row.

    Should run inside a DatabaseTransaction: once the product insert
    succeeds, any later failure propagates and the products created here
    are removed again by the transaction rollback.

    Args:
        tx: Transaction handle (or plain client)
        batch_id: Owning bulk_upload_batch id
        valid_rows: Rows that passed validation
        error_rows: Rows that failed validation
        merchant_id: Merchant to own the products (oldest active if None)

    Returns:
        BatchCreateResult with success and error counts

    Raises:
        NoMerchantAvailableError: Before any write, if no merchant can be used
    """
    resolved_merchant_id = merchant_id or get_default_merchant_id(tx)

    resolver = CategoryResolver.load(tx, [row.category_id for row in valid_rows])

    success = 0
    failed = 0
    items: list[dict] = []
    resolved_rows: list[tuple[ValidatedRow, str]] = []

    for row in valid_rows:
        category_id = resolver.resolve(row.category_id)
        if not category_id:
            items.append(_item_data(
                batch_id, row, row.category_id,
                status=ItemStatus.ERROR,
                error=f"Category not found: {row.category_id}"
            ))
            failed += 1
            continue
        resolved_rows.append((row, category_id))

    logger.info(
        "categories_resolved",
        batch_id=batch_id,
        resolved=len(resolved_rows),
        unresolved=len(valid_rows) - len(resolved_rows)
    )

    if resolved_rows:
        slugs = list(dict.fromkeys(row.slug for row, _ in resolved_rows))
        existing_ids = _existing_product_ids(tx, slugs)
        try:
            inserted = _insert_products(tx, resolved_rows, resolved_merchant_id)
        except Exception as e:
            # Keep the audit trail: a failed product insert becomes one error item per row
            logger.error(
                "product_batch_insert_failed",
                batch_id=batch_id,
                rows=len(resolved_rows),
                error=str(e),
                error_type=type(e).__name__
            )
            for row, category_id in resolved_rows:
                items.append(_item_data(
                    batch_id, row, category_id,
                    status=ItemStatus.ERROR,
                    error=str(e) or "Batch create failed"
                ))
                failed += 1
        else:
            _register_product_cleanup(tx, slugs, existing_ids)
            # Failures from here on escape so the cleanup above runs
            product_ids = _product_ids_by_slug(tx, slugs, inserted)
            for row, category_id in resolved_rows:
                product_id = product_ids.get(row.slug)
                if product_id:
                    items.append(_item_data(
                        batch_id, row, category_id,
                        status=ItemStatus.CREATED,
                        product_id=product_id
                    ))
                    success += 1
                else:
                    items.append(_item_data(
                        batch_id, row, category_id,
                        status=ItemStatus.ERROR,
                        error="Product creation failed"
                    ))
                    failed += 1

    for err in error_rows:
        items.append({
            "batch_id": batch_id,
            "product_id": None,
            "title": "",
            "slug": "",
            "price": 0,
            "manufacturer": None,
            "description": None,
            "main_image": None,
            "category_id": "",
            "in_stock": 0,
            "status": ItemStatus.ERROR.value,
            "error": truncate_error(f"Row {err.index}: {err.error}"),
        })
        failed += 1

    if items:
        tx.table(ITEM_TABLE).insert(items).execute()

    logger.info(
        "batch_items_created",
        batch_id=batch_id,
        items=len(items),
        success=success,
        failed=failed
    )

    return BatchCreateResult(success_count=success, error_count=failed)


def _existing_product_ids(tx, slugs: list[str]) -> list[str]:
    """Ids of products that already carry one of these slugs."""
    result = (
        tx.table(PRODUCT_TABLE)
        .select("id")
        .in_("slug", slugs)
        .execute()
    )
    return [p["id"] for p in result.data or []]


def _insert_products(
    tx,
    rows: list[tuple[ValidatedRow, str]],
    merchant_id: str
) -> list[dict]:
    """Insert all products in one request and return the inserted representation."""
    payload = [
        {
            "title": row.title,
            "slug": row.slug,
            "price": row.price,
            "rating": DEFAULT_PRODUCT_RATING,
            "description": row.description or "",
            "manufacturer": row.manufacturer or "",
            "main_image": row.main_image or "",
            "category_id": category_id,
            "merchant_id": merchant_id,
            "in_stock": row.in_stock,
        }
        for row, category_id in rows
    ]

    result = tx.table(PRODUCT_TABLE).insert(payload).execute()
    return result.data or []


def _register_product_cleanup(tx, slugs: list[str], existing_ids: list[str]) -> None:
    """
    Undo a product insert if the surrounding scope fails.

    Deletes by slug so products missing from the inserted representation
    are covered too; products that existed before the insert are kept.
    """
    if not hasattr(tx, "on_rollback"):
        return

    def delete_created_products():
        query = tx.table(PRODUCT_TABLE).delete().in_("slug", slugs)
        if existing_ids:
            query = query.not_.in_("id", existing_ids)
        return query.execute()

    tx.on_rollback("delete_created_products", delete_created_products)


def _product_ids_by_slug(
    tx,
    slugs: list[str],
    inserted: list[dict]
) -> dict[str, str]:
    """
    Map slug → product id.

    Ids come from the inserted representation; slugs missing from it are
    looked up again by slug. Two rows sharing a slug map to the same id.
    """
    by_slug = {
        p["slug"]: p["id"]
        for p in inserted
        if p.get("slug") and p.get("id")
    }

    missing = [slug for slug in slugs if slug not in by_slug]
    if missing:
        fetched = (
            tx.table(PRODUCT_TABLE)
            .select("id, slug")
            .in_("slug", missing)
            .execute()
        )
        for p in fetched.data or []:
            by_slug.setdefault(p["slug"], p["id"])

        logger.debug(
            "product_ids_refetched",
            requested=len(missing),
            found=len(fetched.data or [])
        )

    return by_slug


def _item_data(
    batch_id: str,
    row: ValidatedRow,
    category_id: str,
    status: ItemStatus,
    product_id: Optional[str] = None,
    error: Optional[str] = None
) -> dict:
    return {
        "batch_id": batch_id,
        "product_id": product_id,
        "title": row.title,
        "slug": row.slug,
        "price": row.price,
        "manufacturer": row.manufacturer,
        "description": row.description,
        "main_image": row.main_image,
        "category_id": category_id,
        "in_stock": row.in_stock,
        "status": status.value,
        "error": truncate_error(error),
    }


# ===================
# SUMMARY / UPDATES
# ===================

def get_batch_summary(db, batch_id: str) -> BatchSummary:
    """Count a batch's items overall and per status."""

    def _count(status: Optional[ItemStatus] = None) -> int:
        query = db.table(ITEM_TABLE).select("id", count="exact").eq("batch_id", batch_id)
        if status:
            query = query.eq("status", status.value)
        return query.execute().count or 0

    return BatchSummary(
        total=_count(),
        errors=_count(ItemStatus.ERROR),
        created=_count(ItemStatus.CREATED),
        updated=_count(ItemStatus.UPDATED),
    )


def can_delete_products_for_batch(db, batch_id: str) -> DeleteCheckResult:
    """
    Check whether the products a batch created can be deleted.

    Deletion is blocked when any of them appears on a customer order.
    This only checks; it never deletes.
    """
    product_ids = _linked_product_ids(db, batch_id)
    if not product_ids:
        return DeleteCheckResult(can_delete=True, blocked_product_ids=[])

    referenced = (
        db.table(ORDER_PRODUCT_TABLE)
        .select("product_id")
        .in_("product_id", product_ids)
        .execute()
    )
    blocked = {r["product_id"] for r in referenced.data or []}
    blocked_list = [pid for pid in product_ids if pid in blocked]

    if blocked_list:
        return DeleteCheckResult(
            can_delete=False,
            reason="Some products are in orders",
            blocked_product_ids=blocked_list
        )

    return DeleteCheckResult(can_delete=True, blocked_product_ids=[])


def _linked_product_ids(db, batch_id: str) -> list[str]:
    items = (
        db.table(ITEM_TABLE)
        .select("product_id")
        .eq("batch_id", batch_id)
        .not_.is_("product_id", "null")
        .execute()
    )
    return list(dict.fromkeys(i["product_id"] for i in items.data or [] if i.get("product_id")))


def apply_item_updates(
    tx,
    batch_id: str,
    updates: list[ItemUpdate]
) -> list[BulkUploadItemResponse]:
    """
    Apply price/stock corrections to a batch's items and their products.

    Price is rounded to the nearest integer (halves round up). in_stock is
    an availability flag here: exactly 1 stays 1, anything else becomes 0.
    Items that do not belong to the batch are skipped.

    Returns:
        The updated items
    """
    if not updates:
        return []

    ids = [u.item_id for u in updates]
    result = (
        tx.table(ITEM_TABLE)
        .select("id, product_id")
        .in_("id", ids)
        .eq("batch_id", batch_id)
        .execute()
    )
    by_id = {item["id"]: item for item in result.data or []}

    updated = []
    for upd in updates:
        current = by_id.get(upd.item_id)
        if not current:
            continue

        price = math.floor(upd.price + 0.5)
        in_stock = 1 if upd.in_stock == 1 else 0

        if current.get("product_id"):
            (
                tx.table(PRODUCT_TABLE)
                .update({"price": price, "in_stock": in_stock})
                .eq("id", current["product_id"])
                .execute()
            )

        item_result = (
            tx.table(ITEM_TABLE)
            .update({
                "price": price,
                "in_stock": in_stock,
                "status": ItemStatus.UPDATED.value,
                "error": None,
            })
            .eq("id", upd.item_id)
            .execute()
        )
        if not item_result.data:
            # Deleted since the select above
            continue
        updated.append(BulkUploadItemResponse(**item_result.data[0]))

    logger.info(
        "batch_items_updated",
        batch_id=batch_id,
        requested=len(updates),
        updated=len(updated)
    )
    return updated


# ===================
# SERVICE
# ===================

class BulkUploadService:
    """
    Bulk upload business logic.

    Runs the import pipeline for one uploaded file and serves the batch
    reporting, correction and deletion operations.
    """

    def __init__(self):
        self.db = get_supabase_client()
        self.batch_table = BATCH_TABLE
        self.item_table = ITEM_TABLE
        self.max_bytes = settings.bulk_upload_max_bytes
        self.max_rows = settings.bulk_upload_max_rows

    # ===================
    # UPLOAD
    # ===================

    def process_upload(
        self,
        content: bytes,
        filename: Optional[str] = None,
        merchant_id: Optional[str] = None
    ) -> BulkUploadResponse:
        """
        Import one CSV file.

        Args:
            content: Raw file bytes
            filename: Original file name, stored on the batch
            merchant_id: Owning merchant (oldest active if None)

        Returns:
            BulkUploadResponse with batch id, derived status and counts

        Raises:
            UploadTooLargeError: File or row count over the configured limit
            MalformedInputError: File is not readable CSV
            EmptyUploadError: File has no data rows
            NoMerchantAvailableError: No merchant given and none active
        """
        logger.info(
            "bulk_upload_started",
            filename=filename,
            size_bytes=len(content),
            merchant_id=merchant_id
        )

        if len(content) > self.max_bytes:
            raise UploadTooLargeError("size", self.max_bytes, len(content))

        rows = parse_csv_buffer_to_rows(content)
        if not rows:
            raise EmptyUploadError()
        if len(rows) > self.max_rows:
            raise UploadTooLargeError("row", self.max_rows, len(rows))

        valid_rows: list[ValidatedRow] = []
        error_rows: list[RowError] = []
        for index, row in enumerate(rows):
            result = validate_row(row, index)
            if result.ok:
                valid_rows.append(result.data)
            else:
                error_rows.append(result.error)

        logger.info(
            "bulk_upload_validated",
            rows=len(rows),
            valid=len(valid_rows),
            invalid=len(error_rows)
        )

        try:
            with DatabaseTransaction("bulk_upload", client=self.db) as tx:
                owner_id = merchant_id or get_default_merchant_id(tx)
                batch_id = self._create_batch(tx, filename, owner_id, len(rows))
                counts = create_batch_with_items(tx, batch_id, valid_rows, error_rows, owner_id)
                status = self._finalize_batch(tx, batch_id, counts)
        except AppError:
            raise
        except Exception as e:
            raise DatabaseError("insert", str(e)) from e

        summary = get_batch_summary(self.db, batch_id)

        logger.info(
            "bulk_upload_completed",
            batch_id=batch_id,
            status=status.value,
            success=counts.success_count,
            errors=counts.error_count
        )

        return BulkUploadResponse(
            batch_id=batch_id,
            status=status,
            total_rows=len(rows),
            success_count=counts.success_count,
            error_count=counts.error_count,
            summary=summary,
            message=(
                f"Imported {counts.success_count} of {len(rows)} rows"
                f" ({counts.error_count} errors)"
            )
        )

    def _create_batch(
        self,
        tx,
        filename: Optional[str],
        merchant_id: str,
        total_rows: int
    ) -> str:
        result = (
            tx.table(self.batch_table)
            .insert({
                "status": BatchStatus.PENDING.value,
                "filename": filename,
                "merchant_id": merchant_id,
                "total_rows": total_rows,
                "success_count": 0,
                "error_count": 0,
            })
            .execute()
        )
        batch_id = result.data[0]["id"]
        tx.on_rollback(
            "delete_batch",
            lambda: tx.table(self.batch_table).delete().eq("id", batch_id).execute()
        )
        return batch_id

    def _finalize_batch(self, tx, batch_id: str, counts: BatchCreateResult) -> BatchStatus:
        status = compute_batch_status(counts.success_count, counts.error_count)
        (
            tx.table(self.batch_table)
            .update({
                "status": status.value,
                "success_count": counts.success_count,
                "error_count": counts.error_count,
            })
            .eq("id", batch_id)
            .execute()
        )
        return status

    # ===================
    # READ OPERATIONS
    # ===================

    def list_batches(self, page: int = 1, page_size: int = 20) -> BatchListResponse:
        """List batches, newest first."""
        logger.info("getting_batches", page=page, page_size=page_size)

        try:
            offset = (page - 1) * page_size
            result = (
                self.db.table(self.batch_table)
                .select("*", count="exact")
                .order("created_at", desc=True)
                .range(offset, offset + page_size - 1)
                .execute()
            )
        except Exception as e:
            logger.error("get_batches_failed", error=str(e))
            raise DatabaseError("select", str(e)) from e

        batches = [BatchResponse(**row) for row in result.data]
        return BatchListResponse.create(
            data=batches,
            total=result.count or 0,
            page=page,
            page_size=page_size
        )

    def get_batch(self, batch_id: str) -> BatchResponse:
        """
        Raises:
            BatchNotFoundError: If batch doesn't exist
        """
        logger.debug("getting_batch", batch_id=batch_id)

        try:
            result = (
                self.db.table(self.batch_table)
                .select("*")
                .eq("id", batch_id)
                .execute()
            )
        except Exception as e:
            logger.error("get_batch_failed", batch_id=batch_id, error=str(e))
            raise DatabaseError("select", str(e)) from e

        if not result.data:
            raise BatchNotFoundError(batch_id)
        return BatchResponse(**result.data[0])

    def get_batch_items(
        self,
        batch_id: str,
        status: Optional[ItemStatus] = None
    ) -> list[BulkUploadItemResponse]:
        """Audit items of a batch, optionally filtered by status."""
        self.get_batch(batch_id)

        try:
            query = (
                self.db.table(self.item_table)
                .select("*")
                .eq("batch_id", batch_id)
            )
            if status:
                query = query.eq("status", status.value)
            result = query.order("id").execute()
        except Exception as e:
            logger.error("get_batch_items_failed", batch_id=batch_id, error=str(e))
            raise DatabaseError("select", str(e)) from e

        return [BulkUploadItemResponse(**row) for row in result.data]

    def get_summary(self, batch_id: str) -> BatchSummary:
        self.get_batch(batch_id)
        return get_batch_summary(self.db, batch_id)

    def check_can_delete(self, batch_id: str) -> DeleteCheckResult:
        self.get_batch(batch_id)
        return can_delete_products_for_batch(self.db, batch_id)

    # ===================
    # WRITE OPERATIONS
    # ===================

    def update_items(
        self,
        batch_id: str,
        updates: list[ItemUpdate]
    ) -> list[BulkUploadItemResponse]:
        """
        Apply price/stock corrections to items of a batch.

        Raises:
            BatchNotFoundError: If batch doesn't exist
        """
        self.get_batch(batch_id)

        try:
            with DatabaseTransaction("bulk_upload_item_updates", client=self.db) as tx:
                return apply_item_updates(tx, batch_id, updates)
        except AppError:
            raise
        except Exception as e:
            raise DatabaseError("update", str(e)) from e

    def delete_products_for_batch(self, batch_id: str) -> ProductDeletionResponse:
        """
        Delete the products a batch created, unless any is on an order.

        Items keep their audit data; their product_id is cleared.

        Raises:
            BatchNotFoundError: If batch doesn't exist
            ProductDeletionBlockedError: If any product is referenced by an order
        """
        self.get_batch(batch_id)

        check = can_delete_products_for_batch(self.db, batch_id)
        if not check.can_delete:
            logger.warning(
                "batch_product_deletion_blocked",
                batch_id=batch_id,
                blocked=len(check.blocked_product_ids)
            )
            raise ProductDeletionBlockedError(batch_id, check.blocked_product_ids)

        product_ids = _linked_product_ids(self.db, batch_id)
        if product_ids:
            try:
                with DatabaseTransaction("delete_batch_products", client=self.db) as tx:
                    (
                        tx.table(self.item_table)
                        .update({"product_id": None})
                        .eq("batch_id", batch_id)
                        .in_("product_id", product_ids)
                        .execute()
                    )
                    tx.table(PRODUCT_TABLE).delete().in_("id", product_ids).execute()
            except Exception as e:
                logger.error("delete_batch_products_failed", batch_id=batch_id, error=str(e))
                raise DatabaseError("delete", str(e)) from e

        logger.info(
            "batch_products_deleted",
            batch_id=batch_id,
            deleted=len(product_ids)
        )

        return ProductDeletionResponse(
            batch_id=batch_id,
            deleted_count=len(product_ids),
            product_ids=product_ids
        )


# Singleton instance for convenience
_bulk_upload_service: Optional[BulkUploadService] = None


def get_bulk_upload_service() -> BulkUploadService:
    """Get or create BulkUploadService instance."""
    global _bulk_upload_service
    if _bulk_upload_service is None:
        _bulk_upload_service = BulkUploadService()
    return _bulk_upload_service
