"""
Text utilities for values read from uploaded files.

Used by the CSV row validator and when storing error messages.
"""

from typing import Any, Optional

ERROR_MESSAGE_MAX_LENGTH = 500


def clean_optional_text(value: Any) -> Optional[str]:
    """
    Clean an optional text field for storage.

    - Converts to str and strips whitespace
    - Returns None for missing/empty/whitespace-only values

    Args:
        value: Raw cell value

    Returns:
        Cleaned text or None
    """
    if value is None:
        return None

    text = str(value).strip()

    if not text:
        return None

    return text


def truncate_error(message: Any, max_length: int = ERROR_MESSAGE_MAX_LENGTH) -> Optional[str]:
    """
    Cap an error message at max_length characters.

    Longer messages keep their first max_length - 3 characters followed by "...",
    so the stored value is exactly max_length long.

    - "boom" → "boom"
    - 600 × "x" → 497 × "x" + "..."
    - None / "" → None
    """
    if not message:
        return None

    text = str(message)
    if len(text) > max_length:
        return text[:max_length - 3] + "..."

    return text
