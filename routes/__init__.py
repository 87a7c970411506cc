"""
API route modules.

Each module defines routes for one domain area.
"""

from routes.bulk_upload import router as bulk_upload_router

__all__ = [
    "bulk_upload_router",
]
