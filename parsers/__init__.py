"""
Uploaded file parsers.
"""

from parsers.product_csv_parser import (
    parse_csv_buffer_to_rows,
    validate_row,
)

__all__ = [
    "parse_csv_buffer_to_rows",
    "validate_row",
]
