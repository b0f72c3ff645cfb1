"""Shared test fixtures: in-memory record store, raw-record builder, API client."""
from __future__ import annotations

import copy
import re
from datetime import datetime, timezone
from typing import Any
from unittest.mock import MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from seawatch.database import get_db
from seawatch.main import app
from seawatch.modules.record_store import RecordStore, RecordStoreError
from seawatch.schemas.incident import RawIncidentRecord

_SINCE_RE = re.compile(r"IS_AFTER\(\{date\}, '([^']+)'\)")
_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


class FakeRecordStore(RecordStore):
    """In-memory record store.

    Honours the unmerged-since filter formula, ``date`` desc sorting, and
    paging by ``page_size``. Failures are injected per operation.
    """

    def __init__(self, records: list[dict[str, Any]] | None = None, page_size: int = 100) -> None:
        self.records: dict[str, dict[str, Any]] = {}
        for r in records or []:
            self.records[r["id"]] = copy.deepcopy(r)
        self.page_size = page_size
        self.list_calls: list[dict[str, Any]] = []
        self.get_calls: list[str] = []
        self.updates: list[tuple[str, dict[str, Any]]] = []
        self.fail_list = False
        self.fail_get: set[str] = set()
        self.fail_update: set[str] = set()

    async def list_records(
        self, *, filter_formula=None, sort=None, page_size=None, max_records=None,
        offset=None, view=None,
    ):
        self.list_calls.append({
            "filter_formula": filter_formula, "sort": sort, "max_records": max_records,
            "offset": offset, "view": view,
        })
        if self.fail_list:
            raise RecordStoreError("GET /raw_data failed: 503 Service Unavailable")

        rows = list(self.records.values())
        if filter_formula:
            match = _SINCE_RE.search(filter_formula)
            if match:
                since = datetime.fromisoformat(match.group(1).replace("Z", "+00:00"))
                rows = [r for r in rows if _date_of(r) is not None and _date_of(r) > since]
            if "merge_status" in filter_formula:
                rows = [r for r in rows if not r["fields"].get("merge_status")]
        if sort:
            rows.sort(key=lambda r: _date_of(r) or _EPOCH, reverse=sort[0][1] == "desc")
        if max_records is not None:
            rows = rows[:max_records]

        start = int(offset or 0)
        size = page_size or self.page_size
        page = rows[start:start + size]
        next_offset = str(start + size) if start + size < len(rows) else None
        return copy.deepcopy(page), next_offset

    async def get_record(self, record_id):
        self.get_calls.append(record_id)
        if record_id in self.fail_get or record_id not in self.records:
            raise RecordStoreError(f"GET /raw_data/{record_id} failed: 404 Not Found")
        return copy.deepcopy(self.records[record_id])

    async def update_record(self, record_id, fields):
        self.updates.append((record_id, copy.deepcopy(fields)))
        if record_id in self.fail_update:
            raise RecordStoreError(f"PATCH /raw_data/{record_id} failed: 422 Unprocessable Entity")
        self.records[record_id]["fields"].update(copy.deepcopy(fields))
        return copy.deepcopy(self.records[record_id])

    def fields(self, record_id: str) -> dict[str, Any]:
        return self.records[record_id]["fields"]


def _date_of(row: dict[str, Any]):
    return RawIncidentRecord.from_store(row).date


def raw_row(record_id: str, source: str | None = "UKMTO", **fields: Any) -> dict[str, Any]:
    """Store envelope for a raw record; ``source=None`` omits the field."""
    body = dict(fields)
    if source is not None:
        body["source"] = source
    return {"id": record_id, "fields": body}


@pytest.fixture
def fake_store():
    """Factory: ``fake_store([raw_row(...), ...])`` -> FakeRecordStore."""
    return FakeRecordStore


@pytest.fixture
def make_row():
    return raw_row


@pytest.fixture
def make_record():
    """Factory for parsed RawIncidentRecord instances."""
    def _make(record_id: str = "rec1", source: str | None = "UKMTO", **fields: Any) -> RawIncidentRecord:
        return RawIncidentRecord.from_store(raw_row(record_id, source, **fields))
    return _make


@pytest.fixture
def mock_db():
    """MagicMock database session, returns empty results for all queries by default."""
    session = MagicMock()
    session.query.return_value.order_by.return_value.limit.return_value.all.return_value = []
    session.query.return_value.order_by.return_value.offset.return_value.limit.return_value.all.return_value = []
    return session


@pytest.fixture
def api_client(mock_db):
    """TestClient with DB dependency overridden to use a MagicMock session."""
    def override_get_db():
        yield mock_db

    app.dependency_overrides[get_db] = override_get_db
    with patch("seawatch.main.init_db"), TestClient(app) as client:
        yield client
    app.dependency_overrides.clear()
