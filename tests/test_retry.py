"""
Tests for the retry wrapper and transient-error classification.
"""

import httpx
import pytest
from sqlalchemy import exc as sa_exc

from dealsync.common.errors import PageFetchError, SlugExhaustedError
from dealsync.common.retry import is_retryable_error, with_retry


class FakePgError(Exception):
    """Stands in for an asyncpg error carrying a SQLSTATE."""

    def __init__(self, sqlstate, message="db error"):
        super().__init__(message)
        self.sqlstate = sqlstate


def _http_status_error(status):
    request = httpx.Request("GET", "https://example.com")
    response = httpx.Response(status, request=request)
    return httpx.HTTPStatusError("boom", request=request, response=response)


class TestIsRetryableError:
    def test_page_fetch_error(self):
        assert is_retryable_error(PageFetchError(3, "Timeout 15000ms exceeded"))

    def test_builtin_timeouts_and_connection_errors(self):
        assert is_retryable_error(TimeoutError())
        assert is_retryable_error(ConnectionResetError())

    def test_httpx_transport_error(self):
        assert is_retryable_error(httpx.ConnectError("refused"))

    @pytest.mark.parametrize("status,expected", [(503, True), (429, True), (404, False), (400, False)])
    def test_http_status(self, status, expected):
        assert is_retryable_error(_http_status_error(status)) is expected

    @pytest.mark.parametrize("code", ["40001", "40P01", "57014", "08006"])
    def test_retryable_sqlstate_on_wrapped_dbapi_error(self, code):
        error = sa_exc.OperationalError("UPDATE ...", {}, FakePgError(code))
        assert is_retryable_error(error)

    def test_unique_violation_is_not_retryable(self):
        error = sa_exc.IntegrityError("INSERT ...", {}, FakePgError("23505", "duplicate key"))
        assert not is_retryable_error(error)

    def test_integrity_error_without_code(self):
        error = sa_exc.IntegrityError("INSERT ...", {}, Exception("UNIQUE constraint failed"))
        assert not is_retryable_error(error)

    def test_message_fallback(self):
        assert is_retryable_error(RuntimeError("read ECONNRESET"))
        assert not is_retryable_error(RuntimeError("something else"))

    def test_slug_exhaustion_is_not_retryable(self):
        assert not is_retryable_error(SlugExhaustedError("alpha", 50))


class TestWithRetry:
    @pytest.mark.asyncio
    async def test_returns_first_success(self):
        calls = []

        async def op():
            calls.append(1)
            return "ok"

        assert await with_retry(op, "op", max_attempts=3, base_delay=0) == "ok"
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_retries_transient_then_succeeds(self):
        attempts = []

        async def op():
            attempts.append(1)
            if len(attempts) < 3:
                raise TimeoutError("slow")
            return 42

        assert await with_retry(op, "op", max_attempts=3, base_delay=0) == 42
        assert len(attempts) == 3

    @pytest.mark.asyncio
    async def test_budget_exhausted_raises_last_error(self):
        attempts = []

        async def op():
            attempts.append(1)
            raise ConnectionError(f"attempt {len(attempts)}")

        with pytest.raises(ConnectionError, match="attempt 2"):
            await with_retry(op, "op", max_attempts=2, base_delay=0)
        assert len(attempts) == 2

    @pytest.mark.asyncio
    async def test_non_retryable_propagates_immediately(self):
        attempts = []

        async def op():
            attempts.append(1)
            raise ValueError("bad input")

        with pytest.raises(ValueError):
            await with_retry(op, "op", max_attempts=5, base_delay=0)
        assert len(attempts) == 1

    @pytest.mark.asyncio
    async def test_linear_backoff(self, monkeypatch):
        delays = []

        async def fake_sleep(seconds):
            delays.append(seconds)

        monkeypatch.setattr("dealsync.common.retry.asyncio.sleep", fake_sleep)

        async def op():
            raise TimeoutError()

        with pytest.raises(TimeoutError):
            await with_retry(op, "op", max_attempts=4, base_delay=2.0)
        assert delays == [2.0, 4.0, 6.0]
