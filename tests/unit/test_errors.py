"""Tests for the task error taxonomy."""

import asyncio

import httpx
import pytest

from boxoffice.core.errors import (
    ErrorKind,
    PermanentError,
    RateLimitedError,
    TransientError,
    classify_error,
    error_from_status,
    parse_retry_after,
    retry_after_hint,
)


class TestClassifyError:
    def test_typed_errors_keep_their_kind(self):
        assert classify_error(RateLimitedError("slow down")) is ErrorKind.RATE_LIMITED
        assert classify_error(TransientError("reset")) is ErrorKind.TRANSIENT
        assert classify_error(PermanentError("bad")) is ErrorKind.PERMANENT

    @pytest.mark.parametrize(
        "error",
        [
            ConnectionResetError(),
            ConnectionRefusedError(),
            TimeoutError(),
            asyncio.TimeoutError(),
            httpx.ConnectError("refused"),
            httpx.ReadTimeout("timed out"),
        ],
    )
    def test_network_builtins_are_transient(self, error):
        assert classify_error(error) is ErrorKind.TRANSIENT

    def test_anything_else_is_permanent(self):
        assert classify_error(ValueError("nope")) is ErrorKind.PERMANENT
        assert classify_error(KeyError("id")) is ErrorKind.PERMANENT

    def test_retryable(self):
        assert ErrorKind.RATE_LIMITED.is_retryable
        assert ErrorKind.TRANSIENT.is_retryable
        assert not ErrorKind.PERMANENT.is_retryable


class TestRetryAfterHint:
    def test_rate_limited_with_hint(self):
        assert retry_after_hint(RateLimitedError("x", retry_after_s=7.0)) == 7.0

    def test_rate_limited_without_hint_uses_default(self):
        assert retry_after_hint(RateLimitedError("x"), default=10.0) == 10.0

    def test_other_errors_have_no_hint(self):
        assert retry_after_hint(TransientError("x", retry_after_s=5.0)) is None
        assert retry_after_hint(ValueError("x"), default=10.0) is None


class TestErrorFromStatus:
    def test_429_is_rate_limited_with_header(self):
        error = error_from_status(429, "too many", "shopify", retry_after_header="4")
        assert isinstance(error, RateLimitedError)
        assert error.retry_after_s == 4.0
        assert error.service == "shopify"

    def test_429_without_header_uses_default(self):
        error = error_from_status(429, "too many", "addevent", default_retry_after_s=30.0)
        assert error.retry_after_s == 30.0

    @pytest.mark.parametrize("status_code", [500, 502, 503, 504, 408])
    def test_server_errors_are_transient(self, status_code):
        assert isinstance(error_from_status(status_code, "x", "shopify"), TransientError)

    @pytest.mark.parametrize("status_code", [400, 401, 403, 404, 422])
    def test_client_errors_are_permanent(self, status_code):
        assert isinstance(error_from_status(status_code, "x", "shopify"), PermanentError)


class TestParseRetryAfter:
    def test_seconds(self):
        assert parse_retry_after("12", 10.0) == 12.0
        assert parse_retry_after(" 1.5 ", 10.0) == 1.5

    def test_missing_or_invalid_uses_default(self):
        assert parse_retry_after(None, 10.0) == 10.0
        assert parse_retry_after("", 10.0) == 10.0
        assert parse_retry_after("Wed, 21 Oct 2015 07:28:00 GMT", 10.0) == 10.0

    def test_negative_clamped(self):
        assert parse_retry_after("-5", 10.0) == 0.0
