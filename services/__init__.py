"""
Business logic services.

Each service handles one domain area.
"""

from services.bulk_upload_service import BulkUploadService, get_bulk_upload_service
from services.category_resolver import CategoryResolver

__all__ = [
    "BulkUploadService",
    "get_bulk_upload_service",
    "CategoryResolver",
]
