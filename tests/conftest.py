"""
Shared test fixtures.

Provides an in-memory Supabase mock that stores rows per table and applies
the query filters the services use (eq, in_, is_, not_, ilike, or_, order,
limit, range, count="exact").
"""

import os
import re
import sys
from pathlib import Path

# Add project root to Python path
project_dir = Path(__file__).parent.parent
sys.path.insert(0, str(project_dir))

# Settings require these before any project import
os.environ.setdefault("SUPABASE_URL", "http://localhost:54321")
os.environ.setdefault("SUPABASE_KEY", "test-anon-key")

import pytest
from copy import deepcopy
from datetime import datetime, timedelta, timezone
from typing import Callable, Generator, Optional
from unittest.mock import patch


# ===================
# MOCK SUPABASE CLIENT
# ===================

class MockSupabaseResponse:
    """Mock Supabase query response."""

    def __init__(self, data=None, count: Optional[int] = None):
        self.data = data if data is not None else []
        self.count = count


class MockSupabaseQuery:
    """Chainable query builder evaluated against the client's rows."""

    def __init__(self, client: "MockSupabaseClient", table: str, action: str, payload=None):
        self._client = client
        self._table = table
        self._action = action
        self._payload = payload
        self._filters: list[Callable[[dict], bool]] = []
        self._negate_next = False
        self._count_mode: Optional[str] = None
        self._order: list[tuple[str, bool]] = []
        self._limit: Optional[int] = None
        self._range: Optional[tuple[int, int]] = None
        self._is_single = False

    # --- projection / modifiers ---

    def select(self, *args, count: Optional[str] = None, **kwargs):
        self._count_mode = count
        return self

    def order(self, column: str, desc: bool = False, **kwargs):
        self._order.append((column, desc))
        return self

    def limit(self, count: int):
        self._limit = count
        return self

    def range(self, start: int, end: int):
        self._range = (start, end)
        return self

    def single(self):
        self._is_single = True
        return self

    # --- filters ---

    @property
    def not_(self):
        self._negate_next = True
        return self

    def _add(self, predicate: Callable[[dict], bool]):
        if self._negate_next:
            self._negate_next = False
            self._filters.append(lambda row: not predicate(row))
        else:
            self._filters.append(predicate)
        return self

    def eq(self, column, value):
        return self._add(lambda row: row.get(column) == value)

    def neq(self, column, value):
        return self._add(lambda row: row.get(column) != value)

    def in_(self, column, values):
        allowed = list(values)
        return self._add(lambda row: row.get(column) in allowed)

    def is_(self, column, value):
        if value in ("null", None):
            return self._add(lambda row: row.get(column) is None)
        return self._add(lambda row: row.get(column) is value)

    def ilike(self, column, pattern):
        regex = _like_to_regex(pattern)
        return self._add(lambda row: _matches(regex, row.get(column)))

    def or_(self, filters: str):
        predicates = [_parse_condition(c) for c in _split_top_level(filters)]
        return self._add(lambda row: any(p(row) for p in predicates))

    # --- execution ---

    def _matching(self) -> list[dict]:
        return [row for row in self._client.rows(self._table) if all(f(row) for f in self._filters)]

    def execute(self) -> MockSupabaseResponse:
        if self._action == "insert":
            return self._client._insert(self._table, self._payload)
        if self._action == "update":
            matched = self._matching()
            for row in matched:
                row.update(deepcopy(self._payload))
            if self._table in self._client._minimal_updates:
                return MockSupabaseResponse(data=[])
            return MockSupabaseResponse(data=deepcopy(matched))
        if self._action == "delete":
            matched = self._matching()
            self._client._tables[self._table] = [
                row for row in self._client.rows(self._table) if row not in matched
            ]
            return MockSupabaseResponse(data=deepcopy(matched))

        self._client._check_select(self._table)
        rows = self._matching()
        total = len(rows)
        for column, desc in reversed(self._order):
            rows = sorted(
                rows,
                key=lambda r: (
                    r.get(column) is None,
                    r.get(column) if r.get(column) is not None else ""
                ),
                reverse=desc
            )
        if self._range is not None:
            rows = rows[self._range[0]:self._range[1] + 1]
        if self._limit is not None:
            rows = rows[:self._limit]

        count = total if self._count_mode == "exact" else None
        if self._is_single:
            return MockSupabaseResponse(data=deepcopy(rows[0]) if rows else None, count=count)
        return MockSupabaseResponse(data=deepcopy(rows), count=count)


class MockSupabaseTable:
    """Entry point for one table's queries."""

    def __init__(self, client: "MockSupabaseClient", name: str):
        self._client = client
        self._name = name

    def select(self, *args, **kwargs):
        return MockSupabaseQuery(self._client, self._name, "select").select(*args, **kwargs)

    def insert(self, data):
        return MockSupabaseQuery(self._client, self._name, "insert", payload=data)

    def update(self, data):
        return MockSupabaseQuery(self._client, self._name, "update", payload=data)

    def delete(self):
        return MockSupabaseQuery(self._client, self._name, "delete")


class MockSupabaseClient:
    """In-memory Supabase client."""

    def __init__(self):
        self._tables: dict[str, list[dict]] = {}
        self._insert_errors: dict[str, Exception] = {}
        self._insert_hooks: dict[str, Callable[[list[dict]], list[dict]]] = {}
        self._minimal_inserts: set[str] = set()
        self._insert_responses: dict[str, Callable[[dict], bool]] = {}
        self._minimal_updates: set[str] = set()
        self._select_errors: dict[str, tuple[Exception, bool]] = {}
        self._next_id = 0
        self._clock = datetime(2025, 1, 1, tzinfo=timezone.utc)
        self.insert_calls: dict[str, int] = {}

    def set_table_data(self, table_name: str, data: list, count: int = None):
        """Replace a table's rows."""
        self._tables[table_name] = deepcopy(data)

    def rows(self, table_name: str) -> list[dict]:
        """Live rows of a table."""
        return self._tables.setdefault(table_name, [])

    def fail_on_insert(self, table_name: str, error: Exception):
        """Make every insert into table_name raise error."""
        self._insert_errors[table_name] = error

    def return_minimal_on_insert(self, table_name: str):
        """Inserts into table_name store rows but return no representation."""
        self._minimal_inserts.add(table_name)

    def filter_insert_response(self, table_name: str, keep: Callable[[dict], bool]):
        """Inserts store every row but return only rows matching keep."""
        self._insert_responses[table_name] = keep

    def return_minimal_on_update(self, table_name: str):
        """Updates apply but return no representation."""
        self._minimal_updates.add(table_name)

    def fail_on_select(self, table_name: str, error: Exception, after_insert: bool = False):
        """Make selects on table_name raise error (only once it has been inserted into)."""
        self._select_errors[table_name] = (error, after_insert)

    def _check_select(self, table_name: str):
        if table_name not in self._select_errors:
            return
        error, after_insert = self._select_errors[table_name]
        if not after_insert or self.insert_calls.get(table_name):
            raise error

    def on_insert(self, table_name: str, hook: Callable[[list[dict]], list[dict]]):
        """Transform rows before they are stored (e.g. drop some)."""
        self._insert_hooks[table_name] = hook

    def table(self, name: str) -> MockSupabaseTable:
        return MockSupabaseTable(self, name)

    def _insert(self, table_name: str, payload) -> MockSupabaseResponse:
        self.insert_calls[table_name] = self.insert_calls.get(table_name, 0) + 1
        if table_name in self._insert_errors:
            raise self._insert_errors[table_name]

        rows = [payload] if isinstance(payload, dict) else list(payload)
        rows = [deepcopy(r) for r in rows]
        if table_name in self._insert_hooks:
            rows = self._insert_hooks[table_name](rows)

        for row in rows:
            if "id" not in row:
                self._next_id += 1
                row["id"] = f"{table_name}-{self._next_id}"
            if "created_at" not in row:
                self._clock += timedelta(seconds=1)
                row["created_at"] = self._clock.isoformat()
            self.rows(table_name).append(row)

        if table_name in self._minimal_inserts:
            return MockSupabaseResponse(data=[])
        if table_name in self._insert_responses:
            rows = [r for r in rows if self._insert_responses[table_name](r)]
        return MockSupabaseResponse(data=deepcopy(rows))


# ===================
# FILTER PARSING
# ===================

def _split_top_level(text: str) -> list[str]:
    """Split on commas outside parentheses and double quotes."""
    parts, current = [], []
    depth, in_quote, escaped = 0, False, False
    for ch in text:
        if escaped:
            current.append(ch)
            escaped = False
            continue
        if ch == "\\":
            current.append(ch)
            escaped = True
            continue
        if ch == '"':
            in_quote = not in_quote
        elif not in_quote and ch == "(":
            depth += 1
        elif not in_quote and ch == ")":
            depth -= 1
        elif not in_quote and depth == 0 and ch == ",":
            parts.append("".join(current))
            current = []
            continue
        current.append(ch)
    if current:
        parts.append("".join(current))
    return parts


def _unquote(token: str) -> str:
    token = token.strip()
    if len(token) >= 2 and token[0] == '"' and token[-1] == '"':
        token = token[1:-1]
        return re.sub(r'\\(.)', r"\1", token)
    return token


def _like_to_regex(pattern: str):
    out, i = [], 0
    while i < len(pattern):
        ch = pattern[i]
        if ch == "\\" and i + 1 < len(pattern):
            out.append(re.escape(pattern[i + 1]))
            i += 2
            continue
        if ch in "%*":
            out.append(".*")
        elif ch == "_":
            out.append(".")
        else:
            out.append(re.escape(ch))
        i += 1
    return re.compile("".join(out), re.IGNORECASE | re.DOTALL)


def _matches(regex, value) -> bool:
    return value is not None and regex.fullmatch(str(value)) is not None


def _parse_condition(condition: str) -> Callable[[dict], bool]:
    column, op, value = condition.strip().split(".", 2)
    if op == "in":
        values = [_unquote(v) for v in _split_top_level(value.strip()[1:-1])]
        return lambda row: row.get(column) in values
    if op == "ilike":
        regex = _like_to_regex(_unquote(value))
        return lambda row: _matches(regex, row.get(column))
    if op == "eq":
        expected = _unquote(value)
        return lambda row: str(row.get(column)) == expected
    raise ValueError(f"Unsupported or_ operator in mock: {op}")


# ===================
# FIXTURES
# ===================

@pytest.fixture
def mock_supabase() -> MockSupabaseClient:
    """
    Create an in-memory Supabase client.

    Usage:
        def test_something(mock_supabase):
            mock_supabase.set_table_data("category", [{"id": "cat-1", "name": "Laptops"}])
    """
    return MockSupabaseClient()


@pytest.fixture
def mock_db(mock_supabase) -> Generator:
    """
    Patch the database client with the mock.

    Any code using get_supabase_client() gets mock_supabase.
    """
    with patch("config.database.get_supabase_client", return_value=mock_supabase):
        with patch("services.bulk_upload_service.get_supabase_client", return_value=mock_supabase):
            yield mock_supabase


@pytest.fixture(autouse=True)
def reset_bulk_upload_singleton():
    """Reset the singleton service between tests."""
    import services.bulk_upload_service as bulk_upload_module
    bulk_upload_module._bulk_upload_service = None
    yield
    bulk_upload_module._bulk_upload_service = None


@pytest.fixture
def catalog(mock_supabase) -> MockSupabaseClient:
    """Two categories and two merchants (one inactive, one active)."""
    mock_supabase.set_table_data("category", [
        {"id": "cat-laptops", "name": "Laptops"},
        {"id": "cat-phones", "name": "Smart Phones"},
    ])
    mock_supabase.set_table_data("merchant", [
        {"id": "merchant-retired", "status": "INACTIVE", "created_at": "2023-01-01T00:00:00+00:00"},
        {"id": "merchant-newer", "status": "ACTIVE", "created_at": "2024-06-01T00:00:00+00:00"},
        {"id": "merchant-oldest", "status": "ACTIVE", "created_at": "2024-01-01T00:00:00+00:00"},
    ])
    return mock_supabase


# ===================
# API TEST CLIENT
# ===================

@pytest.fixture
def test_client_with_mock_db(mock_db):
    """
    Create FastAPI test client with mocked database.

    Usage:
        def test_endpoint(test_client_with_mock_db, mock_supabase):
            response = test_client_with_mock_db.get("/api/bulk-upload/batches")
    """
    from fastapi.testclient import TestClient
    from main import app

    yield TestClient(app)
