"""
Import a product CSV from disk through the bulk upload pipeline.

Usage:
    python scripts/import_products_csv.py data/products.csv
    python scripts/import_products_csv.py data/products.csv --merchant-id <uuid> --show-errors
"""

import argparse
import os
import sys
from pathlib import Path

# Allow imports from the project root when running as a script
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from exceptions import AppError  # noqa: E402
from models.bulk_upload import ItemStatus  # noqa: E402
from services.bulk_upload_service import BulkUploadService  # noqa: E402


def main() -> int:
    parser = argparse.ArgumentParser(description="Bulk import products from a CSV file")
    parser.add_argument("path", type=Path, help="CSV file to import")
    parser.add_argument("--merchant-id", default=None, help="Owning merchant (default: oldest active)")
    parser.add_argument("--show-errors", action="store_true", help="Print every ERROR item")
    args = parser.parse_args()

    if not args.path.exists():
        print(f"[ERROR] File not found: {args.path}")
        return 1

    print("=" * 50)
    print("BULK PRODUCT IMPORT")
    print(f"File: {args.path}")
    print("=" * 50)

    service = BulkUploadService()
    try:
        result = service.process_upload(
            args.path.read_bytes(),
            filename=args.path.name,
            merchant_id=args.merchant_id
        )
    except AppError as e:
        print(f"[ERROR] {e.code}: {e.message}")
        return 1

    print(f"Batch:   {result.batch_id}")
    print(f"Status:  {result.status.value}")
    print(f"Rows:    {result.total_rows}")
    print(f"Created: {result.success_count}")
    print(f"Errors:  {result.error_count}")

    if args.show_errors and result.error_count:
        print("\nErrors:")
        for item in service.get_batch_items(result.batch_id, status=ItemStatus.ERROR):
            label = item.slug or "-"
            print(f"  {label}: {item.error}")

    return 0


if __name__ == "__main__":
    sys.exit(main())
