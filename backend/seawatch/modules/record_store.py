"""Record store client: filtered paginated reads and field-level patches.

The raw incident records live in an Airtable-style base: a remote,
key-addressable collection of JSON field maps. The dedup engine needs only
three operations (filtered page read, single read, partial update), which
``RecordStore`` names; ``AirtableRecordStore`` implements them over
``httpx.AsyncClient`` with retry on rate limits and transient 5xx.

API docs: https://airtable.com/developers/web/api/introduction
"""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any

import httpx

from seawatch.config import settings
from seawatch.schemas.incident import RawIncidentRecord
from seawatch.utils.http_retry import retry_request

logger = logging.getLogger(__name__)


class RecordStoreError(RuntimeError):
    """A read or write against the record store failed."""


def build_unmerged_since_formula(since: datetime) -> str:
    """Filter formula: ``date`` after *since* and ``merge_status`` unset or blank."""
    if since.tzinfo is None:
        since = since.replace(tzinfo=timezone.utc)
    since_iso = since.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.000Z")
    return (
        f"AND(IS_AFTER({{date}}, '{since_iso}'), "
        "OR(NOT({merge_status}), {merge_status} = ''))"
    )


class RecordStore(ABC):
    """Abstract record store used by the dedup engine."""

    @abstractmethod
    async def list_records(
        self,
        *,
        filter_formula: str | None = None,
        sort: list[tuple[str, str]] | None = None,
        page_size: int | None = None,
        max_records: int | None = None,
        offset: str | None = None,
        view: str | None = None,
    ) -> tuple[list[dict[str, Any]], str | None]:
        """Return one page of raw store records and the next-page cursor."""
        ...

    @abstractmethod
    async def get_record(self, record_id: str) -> dict[str, Any]:
        ...

    @abstractmethod
    async def update_record(self, record_id: str, fields: dict[str, Any]) -> dict[str, Any]:
        """Patch only the given fields of one record."""
        ...

    async def fetch_record(self, record_id: str) -> RawIncidentRecord:
        return RawIncidentRecord.from_store(await self.get_record(record_id))

    async def fetch_unmerged_since(
        self, since: datetime, max_records: int
    ) -> list[RawIncidentRecord]:
        """Page through unmerged records dated after *since*, newest first.

        Stops at *max_records* or when the store returns no further cursor.
        """
        formula = build_unmerged_since_formula(since)
        records: list[dict[str, Any]] = []
        offset: str | None = None

        while True:
            page, offset = await self.list_records(
                filter_formula=formula,
                sort=[("date", "desc")],
                max_records=max_records,
                offset=offset,
            )
            records.extend(page)
            logger.debug(
                "Fetched %d records (total %d, more=%s)", len(page), len(records), bool(offset)
            )
            if len(records) >= max_records:
                logger.info("Reached maximum record limit (%d)", max_records)
                break
            if not offset:
                break

        return [RawIncidentRecord.from_store(r) for r in records[:max_records]]


class AirtableRecordStore(RecordStore):
    """Airtable REST implementation over a shared ``httpx.AsyncClient``.

    Use as an async context manager so the connection pool is closed::

        async with AirtableRecordStore.from_settings() as store:
            page, cursor = await store.list_records(max_records=10)
    """

    def __init__(
        self,
        api_key: str,
        base_id: str,
        table: str,
        *,
        api_url: str = "https://api.airtable.com/v0",
        timeout: float = 30.0,
        page_size: int = 100,
        transport: httpx.AsyncBaseTransport | None = None,
        retry_delays: list[float] | None = None,
    ) -> None:
        if not api_key:
            raise ValueError("AIRTABLE_API_KEY not configured")
        if not base_id:
            raise ValueError("AIRTABLE_BASE_ID not configured")
        self.table = table
        self.page_size = page_size
        self._retry_delays = retry_delays
        self._base_url = f"{api_url.rstrip('/')}/{base_id}"
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            timeout=timeout,
            headers={
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
            },
            transport=transport,
        )

    @classmethod
    def from_settings(cls, table: str | None = None) -> "AirtableRecordStore":
        return cls(
            api_key=settings.AIRTABLE_API_KEY or "",
            base_id=settings.AIRTABLE_BASE_ID or "",
            table=table or settings.AIRTABLE_RAW_DATA_TABLE,
            api_url=settings.AIRTABLE_API_URL,
            timeout=settings.AIRTABLE_TIMEOUT,
            page_size=settings.AIRTABLE_PAGE_SIZE,
        )

    async def __aenter__(self) -> "AirtableRecordStore":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def list_records(
        self,
        *,
        filter_formula: str | None = None,
        sort: list[tuple[str, str]] | None = None,
        page_size: int | None = None,
        max_records: int | None = None,
        offset: str | None = None,
        view: str | None = None,
    ) -> tuple[list[dict[str, Any]], str | None]:
        params: dict[str, Any] = {"pageSize": min(page_size or self.page_size, 100)}
        if filter_formula:
            params["filterByFormula"] = filter_formula
        for i, (field_name, direction) in enumerate(sort or []):
            params[f"sort[{i}][field]"] = field_name
            params[f"sort[{i}][direction]"] = direction
        if max_records is not None:
            params["maxRecords"] = max_records
        if offset:
            params["offset"] = offset
        if view:
            params["view"] = view

        data = await self._request("GET", f"/{self.table}", params=params)
        return data.get("records", []), data.get("offset")

    async def get_record(self, record_id: str) -> dict[str, Any]:
        return await self._request("GET", f"/{self.table}/{record_id}")

    async def update_record(self, record_id: str, fields: dict[str, Any]) -> dict[str, Any]:
        return await self._request(
            "PATCH", f"/{self.table}/{record_id}", json={"fields": fields}
        )

    async def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        request_fn = {
            "GET": self._client.get,
            "PATCH": self._client.patch,
        }[method]
        try:
            resp = await retry_request(request_fn, path, delays=self._retry_delays, **kwargs)
        except (httpx.HTTPError, OSError) as exc:
            raise RecordStoreError(f"{method} {path} failed: {exc}") from exc
        try:
            return resp.json()
        except ValueError as exc:
            # e.g. an HTML error page from a proxy in front of the API
            raise RecordStoreError(
                f"{method} {path} returned a non-JSON body (HTTP {resp.status_code})"
            ) from exc
