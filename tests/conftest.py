"""
Shared test fixtures.

The mock Supabase client keeps rows in memory and honours the filters the
services use, so write-then-read sequences behave like the real tables.
"""

import os
import sys
from pathlib import Path

# Settings are read at import time
os.environ.setdefault("SUPABASE_URL", "https://test-project.supabase.co")
os.environ.setdefault("SUPABASE_KEY", "test-anon-key")

# Add backend directory to Python path
backend_dir = Path(__file__).parent.parent
sys.path.insert(0, str(backend_dir))

import re
import pytest
from contextlib import ExitStack
from unittest.mock import patch
from datetime import datetime, timezone
from typing import Callable, Generator, Optional
from uuid import uuid4

# ===================
# MOCK SUPABASE CLIENT
# ===================

class MockSupabaseResponse:
    """Mock Supabase query response."""

    def __init__(self, data=None, count: Optional[int] = None):
        self.data = data if data is not None else []
        self.count = count


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _like(pattern: str) -> "re.Pattern[str]":
    parts = [re.escape(p) for p in pattern.split("%")]
    return re.compile("^" + ".*".join(parts) + "$", re.IGNORECASE | re.DOTALL)


class MockSupabaseQuery:
    """Chainable query; the operation runs against the table rows on execute()."""

    def __init__(self, rows: list, operation: str = "select", payload=None, on_conflict: Optional[str] = None):
        self._rows = rows
        self._operation = operation
        self._payload = payload
        self._on_conflict = on_conflict
        self._filters: list[Callable[[dict], bool]] = []
        self._order: list[tuple[str, bool]] = []
        self._limit: Optional[int] = None
        self._range: Optional[tuple[int, int]] = None
        self._count_mode: Optional[str] = None
        self._is_single = False

    def select(self, *columns, count: Optional[str] = None):
        self._count_mode = count
        return self

    # Filters

    def eq(self, column, value):
        self._filters.append(lambda row: row.get(column) == value)
        return self

    def neq(self, column, value):
        self._filters.append(lambda row: row.get(column) != value)
        return self

    def in_(self, column, values):
        allowed = list(values)
        self._filters.append(lambda row: row.get(column) in allowed)
        return self

    def ilike(self, column, pattern):
        regex = _like(pattern)
        self._filters.append(lambda row: regex.match(str(row.get(column) or "")) is not None)
        return self

    def or_(self, expression: str):
        """Supports the column.is.null / column.eq.value forms."""
        conditions = []
        for part in expression.split(","):
            column, op, value = part.split(".", 2)
            if op == "is" and value == "null":
                conditions.append(lambda row, c=column: row.get(c) is None)
            elif op == "eq":
                conditions.append(lambda row, c=column, v=value: str(row.get(c)) == v)
            else:
                raise NotImplementedError(part)
        self._filters.append(lambda row: any(cond(row) for cond in conditions))
        return self

    # Shaping

    def order(self, column, desc: bool = False):
        self._order.append((column, desc))
        return self

    def limit(self, count):
        self._limit = count
        return self

    def range(self, start, end):
        self._range = (start, end)
        return self

    def single(self):
        self._is_single = True
        return self

    # Execution

    def _matches(self, row: dict) -> bool:
        return all(f(row) for f in self._filters)

    def execute(self) -> MockSupabaseResponse:
        handler = getattr(self, f"_execute_{self._operation}")
        return handler()

    def _execute_select(self) -> MockSupabaseResponse:
        rows = [dict(row) for row in self._rows if self._matches(row)]
        total = len(rows)

        for column, desc in reversed(self._order):
            rows.sort(
                key=lambda r: (r.get(column) is None, r.get(column) if r.get(column) is not None else 0),
                reverse=desc
            )

        if self._range is not None:
            start, end = self._range
            rows = rows[start:end + 1]
        if self._limit is not None:
            rows = rows[:self._limit]

        if self._is_single:
            return MockSupabaseResponse(rows[0] if rows else None, 1 if rows else 0)
        return MockSupabaseResponse(rows, total if self._count_mode else None)

    def _execute_insert(self) -> MockSupabaseResponse:
        payload = self._payload if isinstance(self._payload, list) else [self._payload]
        inserted = []
        for item in payload:
            row = {"id": str(uuid4()), "created_at": _now(), **item}
            self._rows.append(row)
            inserted.append(dict(row))
        return MockSupabaseResponse(inserted)

    def _execute_upsert(self) -> MockSupabaseResponse:
        payload = self._payload if isinstance(self._payload, list) else [self._payload]
        keys = [k.strip() for k in (self._on_conflict or "id").split(",")]
        written = []
        for item in payload:
            existing = next(
                (row for row in self._rows if all(row.get(k) == item.get(k) for k in keys)),
                None
            )
            if existing is None:
                existing = {"id": str(uuid4()), "created_at": _now()}
                self._rows.append(existing)
            existing.update(item)
            written.append(dict(existing))
        return MockSupabaseResponse(written)

    def _execute_update(self) -> MockSupabaseResponse:
        updated = []
        for row in self._rows:
            if self._matches(row):
                row.update(self._payload)
                updated.append(dict(row))
        return MockSupabaseResponse(updated)

    def _execute_delete(self) -> MockSupabaseResponse:
        removed = [row for row in self._rows if self._matches(row)]
        self._rows[:] = [row for row in self._rows if not self._matches(row)]
        return MockSupabaseResponse([dict(row) for row in removed])


class MockSupabaseTable:
    """Mock Supabase table backed by a shared row list."""

    def __init__(self, rows: list):
        self._rows = rows

    def select(self, *columns, count: Optional[str] = None):
        return MockSupabaseQuery(self._rows).select(*columns, count=count)

    def insert(self, data):
        return MockSupabaseQuery(self._rows, "insert", data)

    def upsert(self, data, on_conflict: Optional[str] = None):
        return MockSupabaseQuery(self._rows, "upsert", data, on_conflict)

    def update(self, data):
        return MockSupabaseQuery(self._rows, "update", data)

    def delete(self):
        return MockSupabaseQuery(self._rows, "delete")


class MockRpcCall:
    def __init__(self, client: "MockSupabaseClient", name: str, params: dict):
        self._client = client
        self._name = name
        self._params = params

    def execute(self) -> MockSupabaseResponse:
        self._client.rpc_calls.append((self._name, self._params))
        handler = self._client.rpc_handlers.get(self._name)
        if handler is None:
            return MockSupabaseResponse([])
        return MockSupabaseResponse(handler(self._client, self._params))


class MockSupabaseClient:
    """Mock Supabase client."""

    def __init__(self):
        self._tables: dict[str, list] = {}
        self.rpc_handlers: dict[str, Callable] = {}
        self.rpc_calls: list[tuple[str, dict]] = []

    def set_table_data(self, table_name: str, data: list):
        """Configure rows for a table (copied)."""
        self._tables[table_name] = [dict(row) for row in data]

    def rows(self, table_name: str) -> list:
        """Live rows of a table."""
        return self._tables.setdefault(table_name, [])

    def table(self, name: str) -> MockSupabaseTable:
        return MockSupabaseTable(self.rows(name))

    def register_rpc(self, name: str, handler: Callable[["MockSupabaseClient", dict], list]):
        """handler(client, params) returns the rows the function would return."""
        self.rpc_handlers[name] = handler

    def rpc(self, name: str, params: dict) -> MockRpcCall:
        return MockRpcCall(self, name, params)


# ===================
# DATABASE FUNCTIONS (python versions of the SQL in supabase/migrations)
# ===================

def _find(client: MockSupabaseClient, table: str, row_id: str) -> Optional[dict]:
    return next((r for r in client.rows(table) if r.get("id") == row_id), None)


def rpc_increment_migration_progress(client: MockSupabaseClient, params: dict) -> list:
    run = _find(client, "migration_runs", params["run_id"])
    if run:
        run["processed_subscribers"] = run.get("processed_subscribers", 0) + params["processed_count"]
        run["clean_count"] = run.get("clean_count", 0) + params["clean_count"]
        run["flagged_count"] = run.get("flagged_count", 0) + params["flagged_count"]
        run["error_count"] = run.get("error_count", 0) + params.get("error_count", 0)
        run["unmapped_count"] = run.get("unmapped_count", 0) + params.get("unmapped_count", 0)
    return []


def rpc_accept_clean_audit(client: MockSupabaseClient, params: dict) -> list:
    record = _find(client, "audit_logs", params["p_audit_id"])
    if not record or record["status"] != "pending":
        return []
    record.update(status="clean", updated_at=_now())
    subscriber = _find(client, "subscribers", record["subscriber_id"])
    if subscriber:
        subscriber.update(next_box_number=record["proposed_next_box"], migration_status="audited")
    return [dict(record)]


def rpc_resolve_audit_record(client: MockSupabaseClient, params: dict) -> list:
    if not 1 <= params["p_next_box"] <= 100:
        raise RuntimeError("next box out of range")
    record = _find(client, "audit_logs", params["p_audit_id"])
    if not record or record["status"] != "flagged":
        return []
    record.update(
        status="resolved",
        resolved_next_box=params["p_next_box"],
        resolved_by=params["p_resolved_by"],
        resolution_note=params.get("p_note"),
        resolved_at=_now(),
    )
    subscriber = _find(client, "subscribers", record["subscriber_id"])
    if subscriber:
        subscriber.update(next_box_number=params["p_next_box"], migration_status="resolved")
    return [dict(record)]


def rpc_skip_audit_record(client: MockSupabaseClient, params: dict) -> list:
    record = _find(client, "audit_logs", params["p_audit_id"])
    if not record or record["status"] != "flagged":
        return []
    record.update(
        status="skipped",
        resolved_by=params["p_resolved_by"],
        resolution_note=params.get("p_note") or "Skipped by user",
        resolved_at=_now(),
    )
    subscriber = _find(client, "subscribers", record["subscriber_id"])
    if subscriber:
        subscriber.update(migration_status="skipped")
    return [dict(record)]


def register_audit_functions(client: MockSupabaseClient) -> MockSupabaseClient:
    client.register_rpc("increment_migration_progress", rpc_increment_migration_progress)
    client.register_rpc("accept_clean_audit", rpc_accept_clean_audit)
    client.register_rpc("resolve_audit_record", rpc_resolve_audit_record)
    client.register_rpc("skip_audit_record", rpc_skip_audit_record)
    return client


# ===================
# FIXTURES
# ===================

# Modules that bind get_supabase_client at import
CLIENT_CONSUMERS = (
    "config.database",
    "services.sku_mapping_service",
    "services.unmapped_item_service",
    "services.subscriber_service",
    "services.audit_log_service",
    "services.resolution_service",
    "services.migration_run_service",
    "integrations.shopify",
)

# Service singletons rebuilt per test so they pick up the mock client
SERVICE_SINGLETONS = (
    ("services.sku_mapping_service", "_sku_mapping_service"),
    ("services.unmapped_item_service", "_unmapped_item_service"),
    ("services.subscriber_service", "_subscriber_service"),
    ("services.audit_log_service", "_audit_log_service"),
    ("services.resolution_service", "_resolution_service"),
    ("services.migration_run_service", "_migration_run_service"),
    ("services.audit_batch_service", "_audit_batch_service"),
)


@pytest.fixture
def mock_supabase() -> MockSupabaseClient:
    """
    Create a mock Supabase client with the audit database functions.

    Usage:
        def test_something(mock_supabase):
            mock_supabase.set_table_data("audit_logs", [AuditLogFactory.create()])
    """
    return register_audit_functions(MockSupabaseClient())


@pytest.fixture
def mock_db(mock_supabase, monkeypatch) -> Generator:
    """
    Patch the database client with mock.

    Any service created inside the test (directly or through its getter)
    talks to mock_supabase.
    """
    import importlib

    for module_name, attribute in SERVICE_SINGLETONS:
        monkeypatch.setattr(importlib.import_module(module_name), attribute, None)

    with ExitStack() as stack:
        for module_name in CLIENT_CONSUMERS:
            stack.enter_context(
                patch(f"{module_name}.get_supabase_client", return_value=mock_supabase)
            )
        yield mock_supabase


@pytest.fixture
def org_id() -> str:
    return "org-uuid-1"


@pytest.fixture
def no_sleep() -> Callable[[float], None]:
    """Sleep stand-in that records requested delays."""
    calls: list[float] = []

    def sleep(seconds: float) -> None:
        calls.append(seconds)

    sleep.calls = calls
    return sleep


# ===================
# API TEST CLIENT
# ===================

@pytest.fixture
def api_headers(org_id) -> dict:
    return {"X-Organization-Id": org_id, "X-User-Id": "reviewer-1"}


@pytest.fixture
def test_client_with_mock_db(mock_db):
    """
    Create FastAPI test client with mocked database.

    Usage:
        def test_endpoint(test_client_with_mock_db, mock_supabase, api_headers):
            response = test_client_with_mock_db.get("/api/migration/status", headers=api_headers)
    """
    from fastapi.testclient import TestClient
    from main import app

    yield TestClient(app)
