from __future__ import annotations

import base64
import io
from types import SimpleNamespace
from typing import Any, Dict, List, Optional

import pytest
from PIL import Image


class FakeResponse:
    def __init__(self, data: Any):
        self.data = data


class FakeQuery:
    def __init__(self, table: "FakeTable", action: str, payload: Any = None):
        self.table = table
        self.action = action
        self.payload = payload
        self.filters: List[tuple] = []
        self.order_by: Optional[tuple] = None

    def eq(self, column: str, value: Any) -> "FakeQuery":
        self.filters.append((column, value))
        return self

    def order(self, column: str, desc: bool = False) -> "FakeQuery":
        self.order_by = (column, desc)
        return self

    def execute(self) -> FakeResponse:
        return self.table.run(self)


class FakeTable:
    """Just enough of a PostgREST table builder for the library queries."""

    def __init__(self) -> None:
        self.rows: List[Dict[str, Any]] = []
        self.queries: List[FakeQuery] = []
        self.next_id = 1
        self.fail: Optional[Exception] = None

    def select(self, columns: str = "*") -> FakeQuery:
        return FakeQuery(self, "select")

    def insert(self, payload: Any) -> FakeQuery:
        return FakeQuery(self, "insert", payload)

    def update(self, payload: Dict[str, Any]) -> FakeQuery:
        return FakeQuery(self, "update", payload)

    def delete(self) -> FakeQuery:
        return FakeQuery(self, "delete")

    def _matches(self, query: FakeQuery, row: Dict[str, Any]) -> bool:
        return all(str(row.get(column)) == str(value) for column, value in query.filters)

    def run(self, query: FakeQuery) -> FakeResponse:
        self.queries.append(query)
        if self.fail is not None:
            raise self.fail

        if query.action == "select":
            rows = [dict(row) for row in self.rows if self._matches(query, row)]
            if query.order_by:
                column, desc = query.order_by
                rows.sort(key=lambda row: row.get(column) or "", reverse=desc)
            return FakeResponse(rows)

        if query.action == "insert":
            payloads = query.payload if isinstance(query.payload, list) else [query.payload]
            inserted = []
            for payload in payloads:
                row = dict(payload)
                row["id"] = self.next_id
                row.setdefault("date_added", f"2024-01-{self.next_id:02d}T00:00:00+00:00")
                self.next_id += 1
                self.rows.append(row)
                inserted.append(dict(row))
            return FakeResponse(inserted)

        hits = [row for row in self.rows if self._matches(query, row)]
        if query.action == "update":
            for row in hits:
                row.update(query.payload)
            return FakeResponse([dict(row) for row in hits])

        self.rows = [row for row in self.rows if not self._matches(query, row)]
        return FakeResponse([dict(row) for row in hits])


class FakeAuth:
    def __init__(self, users: Dict[str, Any]):
        self.users = users

    def get_user(self, token: str) -> Any:
        if token not in self.users:
            raise RuntimeError("invalid JWT")
        return SimpleNamespace(user=self.users[token])


class FakePostgrest:
    def __init__(self) -> None:
        self.token: Optional[str] = None

    def auth(self, token: str) -> None:
        self.token = token


class FakeSupabase:
    def __init__(self, users: Optional[Dict[str, Any]] = None):
        self.tables: Dict[str, FakeTable] = {}
        self.auth = FakeAuth(users or {})
        self.postgrest = FakePostgrest()

    def table(self, name: str) -> FakeTable:
        return self.tables.setdefault(name, FakeTable())


@pytest.fixture
def fake_supabase() -> FakeSupabase:
    return FakeSupabase(
        users={
            "good-token": SimpleNamespace(id="user-1", email="reader@example.com"),
            "other-token": SimpleNamespace(id="user-2", email="other@example.com"),
        }
    )


def image_base64(size=(40, 60), fmt: str = "PNG", color=(200, 30, 30)) -> str:
    buffer = io.BytesIO()
    Image.new("RGB", size, color).save(buffer, format=fmt)
    return base64.b64encode(buffer.getvalue()).decode("ascii")


@pytest.fixture
def png_base64() -> str:
    return image_base64()
