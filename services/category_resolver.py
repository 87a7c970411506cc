"""
Resolves uploaded category references to category ids.

A CSV row may name its category by id or by display name. The lookup is
built once per batch from a single query and matches names
case-insensitively.
"""

from typing import Iterable, Optional
import structlog

logger = structlog.get_logger(__name__)

CATEGORY_TABLE = "category"


class CategoryResolver:
    """
    Two-key category lookup: id → id and lowercased name → id.

    Usage:
        resolver = CategoryResolver.load(tx, ["Laptops", "cat-uuid-2"])
        resolver.resolve("laptops")  # "cat-uuid-1"
    """

    def __init__(self, categories: Iterable[dict]):
        self._by_id: dict[str, str] = {}
        self._by_name: dict[str, str] = {}
        for category in categories:
            self._by_id[category["id"]] = category["id"]
            if category.get("name"):
                self._by_name[category["name"].lower()] = category["id"]

    @classmethod
    def load(cls, db, references: Iterable[str]) -> "CategoryResolver":
        """
        Fetch every category whose id or name matches one of the references.

        Args:
            db: Supabase client or transaction handle
            references: Raw categoryId values from validated rows

        Returns:
            CategoryResolver over the matching categories
        """
        values = list(dict.fromkeys(r for r in references if r))
        if not values:
            return cls([])

        result = (
            db.table(CATEGORY_TABLE)
            .select("id, name")
            .or_(build_category_filter(values))
            .execute()
        )

        logger.debug(
            "categories_loaded",
            references=len(values),
            matched=len(result.data or [])
        )
        return cls(result.data or [])

    def resolve(self, reference: str) -> Optional[str]:
        """Return the canonical category id, or None if nothing matches."""
        return self._by_id.get(reference) or self._by_name.get(reference.lower())

    def __len__(self) -> int:
        return len(self._by_id)


def build_category_filter(values: list[str]) -> str:
    """
    PostgREST or-filter matching ids exactly and names case-insensitively.

    ["Laptops", "c-1"] → 'id.in.("Laptops","c-1"),name.ilike."Laptops",name.ilike."c-1"'
    """
    ids = ",".join(_quote(v) for v in values)
    names = [f"name.ilike.{_quote(_escape_like(v))}" for v in values]
    return ",".join([f"id.in.({ids})", *names])


def _quote(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
