"""Async retry for record-store and downstream HTTP calls.

Only rate limits and transient server or network failures are retried.
Auth and validation failures (401, 403, 404, 422) surface on the first
attempt. Airtable allows a handful of requests per second per base, so a
429 during a large merge pass is normal and its ``Retry-After`` wins over
the configured backoff.

    resp = await retry_request(client.patch, "/raw_data/rec1", json=body)
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, Sequence

import httpx

logger = logging.getLogger(__name__)

_RETRYABLE_STATUS_CODES: frozenset[int] = frozenset({429, 500, 502, 503, 504})
# OSError covers socket failures raised below the httpx transport layer
_RETRYABLE_EXCEPTIONS = (httpx.ConnectError, httpx.TimeoutException, OSError)

DEFAULT_DELAYS: list[float] = [1, 3, 10]


def _retry_after(resp: httpx.Response) -> Optional[float]:
    if resp.status_code != 429:
        return None
    try:
        return float(resp.headers.get("Retry-After", ""))
    except ValueError:
        return None


def _target(args: tuple) -> str:
    if args and isinstance(args[0], (str, httpx.URL)):
        return str(args[0])[:120]
    return "<unknown>"


async def retry_request(
    request_fn: Callable[..., Awaitable[httpx.Response]],
    *args: Any,
    delays: Optional[Sequence[float]] = None,
    **kwargs: Any,
) -> httpx.Response:
    """Call ``request_fn(*args, **kwargs)``, retrying transient failures.

    ``delays`` gives the wait before each retry, so at most ``len(delays) + 1``
    attempts are made. The last failure is re-raised unchanged: the network
    exception, or ``httpx.HTTPStatusError`` from ``raise_for_status()``.
    """
    backoff = list(DEFAULT_DELAYS if delays is None else delays)
    attempts = len(backoff) + 1

    for attempt in range(attempts):
        retries_left = attempt < len(backoff)
        try:
            resp = await request_fn(*args, **kwargs)
        except _RETRYABLE_EXCEPTIONS as exc:
            if not retries_left:
                raise
            wait = backoff[attempt]
            reason = type(exc).__name__
        else:
            if resp.status_code < 400:
                return resp
            if resp.status_code not in _RETRYABLE_STATUS_CODES or not retries_left:
                resp.raise_for_status()
            wait = max(backoff[attempt], _retry_after(resp) or 0)
            reason = f"HTTP {resp.status_code}"

        logger.warning(
            "%s from %s, retrying in %.0fs (attempt %d/%d)",
            reason, _target(args), wait, attempt + 1, len(backoff),
        )
        await asyncio.sleep(wait)

    raise RuntimeError("retry_request ran out of attempts without a response")
