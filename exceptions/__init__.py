"""
Custom exceptions module.
"""

from exceptions.errors import (
    # Base exceptions
    AppError,
    NotFoundError,
    ValidationError,
    ConflictError,
    DatabaseError,

    # CSV input
    MalformedInputError,
    EmptyUploadError,
    UploadTooLargeError,

    # Bulk upload
    BatchNotFoundError,
    NoMerchantAvailableError,
    ProductDeletionBlockedError,
)

__all__ = [
    # Base
    "AppError",
    "NotFoundError",
    "ValidationError",
    "ConflictError",
    "DatabaseError",

    # CSV input
    "MalformedInputError",
    "EmptyUploadError",
    "UploadTooLargeError",

    # Bulk upload
    "BatchNotFoundError",
    "NoMerchantAvailableError",
    "ProductDeletionBlockedError",
]
