"""
Adapter error handling tests.

Every STT / LLM / TTS failure maps to a stable category, is reported as an
adapter.error event and never raises out of the handler.
"""
import asyncio
import json
import sys
from io import StringIO

import aiohttp
import pytest

from observability.event_store import event_store
from voice_pipeline.errors import (
    AdapterError,
    AdapterErrorCategory,
    AdapterErrorHandler,
    AdapterTimeout,
    SessionNotFound,
    Stage,
)


@pytest.fixture(autouse=True)
def cleanup():
    yield
    event_store.clear()


class TestAdapterErrorClassification:
    """Classification order: HTTP status, exception type, message."""

    def test_status_codes(self):
        cases = {
            401: AdapterErrorCategory.AUTH_FAILED,
            403: AdapterErrorCategory.AUTH_FAILED,
            408: AdapterErrorCategory.TIMEOUT,
            429: AdapterErrorCategory.RATE_LIMITED,
            400: AdapterErrorCategory.BAD_REQUEST,
            422: AdapterErrorCategory.BAD_REQUEST,
            500: AdapterErrorCategory.CAPACITY_LIMITED,
            503: AdapterErrorCategory.CAPACITY_LIMITED,
            504: AdapterErrorCategory.TIMEOUT,
        }
        for status, expected in cases.items():
            error = AdapterError("provider said no", status=status)
            assert AdapterErrorHandler.classify_error(error) == expected, status

    def test_status_wins_over_message(self):
        error = AdapterError("connection reset while reading auth header", status=429)
        assert AdapterErrorHandler.classify_error(error) == AdapterErrorCategory.RATE_LIMITED

    def test_timeouts(self):
        assert AdapterErrorHandler.classify_error(AdapterTimeout("slow")) == AdapterErrorCategory.TIMEOUT
        assert AdapterErrorHandler.classify_error(asyncio.TimeoutError()) == AdapterErrorCategory.TIMEOUT

        wrapped = AdapterError("stt adapter failed")
        wrapped.__cause__ = asyncio.TimeoutError()
        assert AdapterErrorHandler.classify_error(wrapped) == AdapterErrorCategory.TIMEOUT

    def test_network_errors(self):
        error = aiohttp.ClientConnectionError("refused")
        assert AdapterErrorHandler.classify_error(error) == AdapterErrorCategory.NETWORK_ERROR

        wrapped = AdapterError("tts adapter failed")
        wrapped.__cause__ = aiohttp.ServerDisconnectedError()
        assert AdapterErrorHandler.classify_error(wrapped) == AdapterErrorCategory.NETWORK_ERROR

        assert AdapterErrorHandler.classify_error(Exception("Connection refused")) == AdapterErrorCategory.NETWORK_ERROR

    def test_message_heuristics(self):
        cases = {
            "Authentication failed": AdapterErrorCategory.AUTH_FAILED,
            "Unauthorized: 401": AdapterErrorCategory.AUTH_FAILED,
            "Voice misconfigured": AdapterErrorCategory.MISCONFIGURED,
            "Request timed out": AdapterErrorCategory.TIMEOUT,
            "Rate limit exceeded": AdapterErrorCategory.RATE_LIMITED,
            "429 Too Many Requests": AdapterErrorCategory.RATE_LIMITED,
            "Model overloaded": AdapterErrorCategory.CAPACITY_LIMITED,
            "503 Service Unavailable": AdapterErrorCategory.CAPACITY_LIMITED,
            "Something weird happened": AdapterErrorCategory.UNKNOWN_ERROR,
        }
        for message, expected in cases.items():
            assert AdapterErrorHandler.classify_error(Exception(message)) == expected, message

    def test_recoverable_categories(self):
        assert AdapterErrorHandler.is_recoverable(AdapterErrorCategory.TIMEOUT)
        assert AdapterErrorHandler.is_recoverable(AdapterErrorCategory.RATE_LIMITED)
        assert not AdapterErrorHandler.is_recoverable(AdapterErrorCategory.AUTH_FAILED)
        assert not AdapterErrorHandler.is_recoverable(AdapterErrorCategory.UNKNOWN_ERROR)


class TestAdapterErrorHandling:

    def test_handle_error_emits_event(self):
        old_stdout = sys.stdout
        sys.stdout = captured_output = StringIO()

        try:
            error = AdapterError("Rate limit exceeded", stage=Stage.GENERATE, provider="openai")
            category = AdapterErrorHandler.handle_error("call-1", error, correlation_id="turn_abc")
        finally:
            sys.stdout = old_stdout

        assert category == AdapterErrorCategory.RATE_LIMITED
        event = json.loads(captured_output.getvalue().strip().splitlines()[-1])
        assert event["event_type"] == "adapter.error"
        assert event["session_id"] == "call-1"
        assert event["correlation_id"] == "turn_abc"
        assert event["stage"] == "llm"
        assert event["provider"] == {"name": "openai"}
        assert event["severity"] == "warn"

        stored = event_store.query(session_id="call-1", event_type="adapter.error")
        assert stored[0]["category"] == AdapterErrorCategory.RATE_LIMITED

    def test_unknown_errors_are_reported_as_error(self):
        AdapterErrorHandler.handle_error("call-2", Exception("Something weird happened"))
        stored = event_store.query(session_id="call-2", event_type="adapter.error")
        assert stored[0]["severity"] == "error"
        assert stored[0]["stage"] is None

    def test_handle_error_never_raises(self):
        weird_errors = [
            Exception(""),
            Exception(None),
            Exception(12345),
            ValueError("Different error type"),
            KeyError("key"),
        ]
        for error in weird_errors:
            category = AdapterErrorHandler.handle_error("call-3", error)
            assert category.startswith("adapter.")

    def test_secrets_are_redacted(self):
        old_stdout = sys.stdout
        sys.stdout = captured_output = StringIO()

        try:
            AdapterErrorHandler.handle_error("call-4", Exception("bad request: api_key=sk-abc123xyz"))
        finally:
            sys.stdout = old_stdout

        output = captured_output.getvalue()
        assert "sk-abc123xyz" not in output
        assert "redacted" in output.lower()

    def test_redact_leaves_plain_details(self):
        assert AdapterErrorHandler.redact("upstream returned 500") == "upstream returned 500"


def test_session_not_found_carries_id():
    error = SessionNotFound("call-9")
    assert error.session_id == "call-9"
    assert isinstance(error, LookupError)
