"""
Product CSV parser for merchant bulk uploads.

Two steps, both pure:
    parse_csv_buffer_to_rows: raw upload bytes → list of field mappings
    validate_row: one field mapping → ValidatedRow or RowError

Expected columns: title, slug, price, categoryId, inStock,
manufacturer, description, mainImage.
"""

import csv
import math
import re
from io import StringIO
from typing import Any, Optional, Union
import structlog

import pandas as pd

from exceptions import MalformedInputError
from models.bulk_upload import RowError, ValidatedRow, ValidationResult
from utils.text_utils import clean_optional_text

logger = structlog.get_logger(__name__)

# Domain scaling rule for uploaded prices (not a cents conversion)
PRICE_DIVISOR = 90

# Plain decimal or exponent notation; no digit separators, no inf/nan words
NUMBER_PATTERN = re.compile(r"^[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?$")

# snake_case spellings accepted for the camelCase headers
COLUMN_ALIASES = {
    "categoryId": ("categoryId", "category_id"),
    "inStock": ("inStock", "in_stock"),
    "mainImage": ("mainImage", "main_image"),
}


# ===================
# CSV DECODING
# ===================

def parse_csv_buffer_to_rows(buffer: Union[bytes, str]) -> list[dict[str, str]]:
    """
    Decode an uploaded CSV into one dict per data row.

    The first line is the header. Blank lines are skipped and every header
    and field is trimmed. Every data line must have exactly as many fields
    as the header.

    Args:
        buffer: Raw file content (bytes or already-decoded text)

    Returns:
        List of rows in source order (header excluded)

    Raises:
        MalformedInputError: If content is not UTF-8 or not valid CSV
    """
    text = _decode(buffer)
    if not text.strip():
        return []

    try:
        # header=None: the first line fixes the column count, so any later
        # line with extra fields is a parse error instead of an implicit index
        df = pd.read_csv(
            StringIO(text),
            header=None,
            dtype=str,
            keep_default_na=False,
            skip_blank_lines=True,
            skipinitialspace=True,
        )
    except pd.errors.EmptyDataError:
        return []
    except pd.errors.ParserError as e:
        logger.warning("csv_parse_failed", error=str(e))
        raise MalformedInputError(
            "Could not parse CSV file",
            details={"reason": str(e)}
        ) from e

    # pandas pads short lines to the header width, so count fields separately
    row_index = _first_short_row(text, df.shape[1])
    if row_index is not None:
        logger.warning("csv_short_row", row_index=row_index, columns=df.shape[1])
        raise MalformedInputError(
            "Could not parse CSV file",
            details={
                "reason": f"Row {row_index} has fewer fields than the header",
                "row_index": row_index,
            }
        )

    df = df.fillna("")
    headers = [str(h).strip() for h in df.iloc[0]]

    rows = [
        {header: str(value).strip() for header, value in zip(headers, values)}
        for values in df.iloc[1:].itertuples(index=False, name=None)
    ]

    logger.debug("csv_rows_parsed", rows=len(rows), columns=headers)
    return rows


def _first_short_row(text: str, width: int) -> Optional[int]:
    """Zero-based data row index of the first line with fewer than width fields."""
    records = (
        record
        for record in csv.reader(StringIO(text), skipinitialspace=True)
        if record and not (len(record) == 1 and not record[0].strip())
    )
    next(records, None)  # header
    for index, record in enumerate(records):
        if len(record) < width:
            return index
    return None


def _decode(buffer: Union[bytes, str]) -> str:
    if isinstance(buffer, bytes):
        try:
            # utf-8-sig drops a leading BOM
            return buffer.decode("utf-8-sig")
        except UnicodeDecodeError as e:
            raise MalformedInputError(
                "CSV file must be UTF-8 encoded",
                details={"position": e.start}
            ) from e
    if buffer.startswith("\ufeff"):
        return buffer[1:]
    return buffer


# ===================
# ROW VALIDATION
# ===================

def validate_row(row: dict[str, Any], index: int = 0) -> ValidationResult:
    """
    Validate one CSV row against the product constraints.

    All violations are collected and joined with ", " rather than
    stopping at the first one.

    Args:
        row: Field mapping from parse_csv_buffer_to_rows
        index: Zero-based position of the row in the file

    Returns:
        ValidationResult with data (ValidatedRow) or error (RowError)
    """
    errors = []

    title = _text(_field(row, "title"))
    slug = _text(_field(row, "slug"))
    price = _number(_field(row, "price"))
    category_id = _text(_field(row, "categoryId"))

    raw_in_stock = _text(_field(row, "inStock"))
    in_stock = _number(raw_in_stock) if raw_in_stock else 0.0

    if not title:
        errors.append("title is required")
    if not slug:
        errors.append("slug is required")
    if price is None or price < 0:
        errors.append("price must be a non-negative number")
    if not category_id:
        errors.append("categoryId is required")
    if in_stock is None or in_stock < 0:
        errors.append("inStock must be a non-negative number")

    if errors:
        return ValidationResult(ok=False, error=RowError(index=index, error=", ".join(errors)))

    data = ValidatedRow(
        title=title,
        slug=slug,
        price=math.floor(price / PRICE_DIVISOR),
        category_id=category_id,
        in_stock=math.floor(in_stock),
        manufacturer=clean_optional_text(_field(row, "manufacturer")),
        description=clean_optional_text(_field(row, "description")),
        main_image=clean_optional_text(_field(row, "mainImage")),
    )
    return ValidationResult(ok=True, data=data)


def _field(row: dict[str, Any], name: str) -> Any:
    for key in COLUMN_ALIASES.get(name, (name,)):
        if key in row:
            return row[key]
    return None


def _text(value: Any) -> str:
    return "" if value is None else str(value).strip()


def _number(value: Any) -> Optional[float]:
    """Parse a finite number, or None."""
    text = _text(value)
    if not NUMBER_PATTERN.match(text):
        return None
    try:
        number = float(text)
    except ValueError:
        return None
    if not math.isfinite(number):
        return None
    return number
