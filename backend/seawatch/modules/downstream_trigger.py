"""Signal the downstream incident-consolidation job after a dedup run.

Merges change which raw records the consolidation job should look at, so a
non-dry run ends by (1) touching the store's ``Process`` view so its cache
reflects the new merge state, then (2) POSTing the background job endpoint.
Either step failing is an error for the caller: the merges are already
applied but the job was not told.
"""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

import httpx

from seawatch.config import settings
from seawatch.modules.record_store import RecordStore, RecordStoreError
from seawatch.utils.http_retry import retry_request

if TYPE_CHECKING:
    from seawatch.schemas.dedup import DedupRunResult

logger = logging.getLogger(__name__)


class DownstreamTriggerError(RuntimeError):
    """The downstream job could not be signalled.

    When raised out of a dedup run, ``result`` holds the completed run
    summary (merges were applied before the signal failed).
    """

    def __init__(self, message: str, result: "DedupRunResult | None" = None) -> None:
        super().__init__(message)
        self.result = result


class DownstreamTrigger(ABC):
    """Abstract downstream signal sent after merges are written."""

    @abstractmethod
    async def trigger(self) -> None:
        ...


class HttpDownstreamTrigger(DownstreamTrigger):
    def __init__(
        self,
        store: RecordStore,
        public_url: str,
        *,
        path: str = "/.netlify/functions/process-raw-data-background",
        refresh_view: str | None = "Process",
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
        retry_delays: list[float] | None = None,
    ) -> None:
        if not public_url:
            raise ValueError("PUBLIC_URL not configured")
        self.store = store
        self.url = f"{public_url.rstrip('/')}/{path.lstrip('/')}"
        self.refresh_view = refresh_view
        self._timeout = timeout
        self._transport = transport
        self._retry_delays = retry_delays

    @classmethod
    def from_settings(cls, store: RecordStore) -> "HttpDownstreamTrigger":
        return cls(
            store,
            settings.PUBLIC_URL or "",
            path=settings.DOWNSTREAM_TRIGGER_PATH,
            refresh_view=settings.DOWNSTREAM_REFRESH_VIEW,
            timeout=settings.AIRTABLE_TIMEOUT,
        )

    async def trigger(self) -> None:
        if self.refresh_view:
            try:
                await self.store.list_records(view=self.refresh_view, max_records=1)
            except RecordStoreError as exc:
                raise DownstreamTriggerError(
                    f"Failed to refresh view {self.refresh_view!r}: {exc}"
                ) from exc
            logger.info("Refreshed %s view", self.refresh_view)

        payload: dict[str, Any] = {"source": "cross-source-dedup"}
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                resp = await retry_request(
                    client.post, self.url, json=payload, delays=self._retry_delays
                )
        except (httpx.HTTPError, OSError) as exc:
            raise DownstreamTriggerError(f"POST {self.url} failed: {exc}") from exc

        logger.info("Triggered downstream processing at %s (HTTP %d)", self.url, resp.status_code)
