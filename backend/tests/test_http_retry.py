"""Tests for the async HTTP retry used by the record store and trigger."""
from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from seawatch.utils.http_retry import _RETRYABLE_STATUS_CODES, retry_request

RAW_DATA_URL = "https://api.airtable.com/v0/appBase/raw_data"


def _resp(status: int, **headers: str) -> httpx.Response:
    return httpx.Response(status, headers=headers, request=httpx.Request("GET", RAW_DATA_URL))


class Scripted:
    """Async request function that plays back responses or raises exceptions in order."""

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.calls = []

    async def __call__(self, url, **kwargs):
        self.calls.append((url, kwargs))
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


@pytest.fixture
def sleeps():
    fake = MagicMock()
    fake.sleep = AsyncMock()
    with patch("seawatch.utils.http_retry.asyncio", fake):
        yield fake.sleep


class TestTransientStatus:
    def test_503_twice_then_ok(self, sleeps):
        request = Scripted(_resp(503), _resp(503), _resp(200))
        resp = asyncio.run(retry_request(request, "/raw_data", delays=[1, 3, 10]))
        assert resp.status_code == 200
        assert len(request.calls) == 3
        assert [c.args[0] for c in sleeps.await_args_list] == [1, 3]

    @pytest.mark.parametrize("code", sorted(_RETRYABLE_STATUS_CODES))
    def test_each_retryable_code_recovers(self, sleeps, code):
        request = Scripted(_resp(code), _resp(200))
        assert asyncio.run(retry_request(request, "/raw_data", delays=[0])).status_code == 200

    def test_exhausted_raises_last_status(self, sleeps):
        request = Scripted(_resp(502))
        with pytest.raises(httpx.HTTPStatusError) as exc_info:
            asyncio.run(retry_request(request, "/raw_data", delays=[0, 0]))
        assert exc_info.value.response.status_code == 502
        assert len(request.calls) == 3

    def test_request_kwargs_passed_through(self):
        request = Scripted(_resp(200))
        asyncio.run(retry_request(request, "/raw_data/rec1", json={"fields": {"title": "x"}}, delays=[]))
        assert request.calls == [("/raw_data/rec1", {"json": {"fields": {"title": "x"}}})]


class TestClientErrors:
    @pytest.mark.parametrize("code", [401, 403, 404, 422])
    def test_raised_without_retry(self, sleeps, code):
        request = Scripted(_resp(code))
        with pytest.raises(httpx.HTTPStatusError):
            asyncio.run(retry_request(request, "/raw_data", delays=[0, 0]))
        assert len(request.calls) == 1
        sleeps.assert_not_awaited()


class TestRateLimit:
    def test_retry_after_longer_than_backoff(self, sleeps):
        request = Scripted(_resp(429, **{"Retry-After": "30"}), _resp(200))
        asyncio.run(retry_request(request, "/raw_data", delays=[5, 5]))
        sleeps.assert_awaited_once_with(30)

    def test_retry_after_shorter_than_backoff(self, sleeps):
        request = Scripted(_resp(429, **{"Retry-After": "1"}), _resp(200))
        asyncio.run(retry_request(request, "/raw_data", delays=[5]))
        sleeps.assert_awaited_once_with(5)

    def test_garbage_retry_after_ignored(self, sleeps):
        request = Scripted(_resp(429, **{"Retry-After": "soon"}), _resp(200))
        asyncio.run(retry_request(request, "/raw_data", delays=[3]))
        sleeps.assert_awaited_once_with(3)


class TestNetworkFailures:
    @pytest.mark.parametrize("exc", [httpx.ConnectError("refused"), httpx.ReadTimeout("slow")])
    def test_transient_exception_retried(self, sleeps, exc):
        request = Scripted(exc, _resp(200))
        assert asyncio.run(retry_request(request, "/raw_data", delays=[0])).status_code == 200

    def test_persistent_connect_error_reraised(self, sleeps):
        request = Scripted(httpx.ConnectError("refused"))
        with pytest.raises(httpx.ConnectError):
            asyncio.run(retry_request(request, "/raw_data", delays=[0]))
        assert len(request.calls) == 2

    def test_other_exceptions_propagate_immediately(self, sleeps):
        request = Scripted(KeyError("fields"))
        with pytest.raises(KeyError):
            asyncio.run(retry_request(request, "/raw_data", delays=[0, 0]))
        assert len(request.calls) == 1

    def test_socket_oserror_retried(self, sleeps):
        request = Scripted(OSError("Network is unreachable"), _resp(200))
        assert asyncio.run(retry_request(request, "/raw_data", delays=[0])).status_code == 200
        assert len(request.calls) == 2
