"""
Voice Pipeline error taxonomy.

Adapter failures are mapped to stable categories without crashing. No error in
the pipeline is process-fatal: the worst outcome is one lost turn or one lost
session.
"""
import asyncio
from enum import Enum
from typing import Optional

import aiohttp

from logging_setup import get_logger, Component as LogComponent
from observability.events import Component as ObsComponent, EventEmitter


logger = get_logger(LogComponent.ERROR_HANDLER)
emitter = EventEmitter(ObsComponent.ADAPTER)


class Stage(str, Enum):
    """Pipeline step an adapter call belongs to."""
    TRANSCRIBE = "stt"
    GENERATE = "llm"
    SYNTHESIZE = "tts"


class SessionNotFound(LookupError):
    """Raised when audio arrives for a session that is not registered (or already closed)."""

    def __init__(self, session_id: str):
        super().__init__(f"session not found: {session_id}")
        self.session_id = session_id


class AdapterError(Exception):
    """Typed failure of an external STT / LLM / TTS capability."""

    def __init__(
        self,
        message: str,
        *,
        stage: Optional[Stage] = None,
        provider: Optional[str] = None,
        status: Optional[int] = None,
    ):
        super().__init__(message)
        self.stage = stage
        self.provider = provider
        self.status = status


class AdapterTimeout(AdapterError):
    """An adapter call exceeded its deadline."""


class DeliveryError(Exception):
    """Pushing a reply to the session's transport failed."""


class AdapterErrorCategory:
    """Stable adapter error categories."""

    TIMEOUT = "adapter.timeout"
    NETWORK_ERROR = "adapter.network_error"
    RATE_LIMITED = "adapter.rate_limited"
    CAPACITY_LIMITED = "adapter.capacity_limited"
    AUTH_FAILED = "adapter.auth_failed"
    MISCONFIGURED = "adapter.misconfigured"
    BAD_REQUEST = "adapter.bad_request"
    UNKNOWN_ERROR = "adapter.unknown_error"


_TRANSIENT = frozenset({
    AdapterErrorCategory.TIMEOUT,
    AdapterErrorCategory.NETWORK_ERROR,
    AdapterErrorCategory.RATE_LIMITED,
    AdapterErrorCategory.CAPACITY_LIMITED,
})

_STATUS_CATEGORIES = {
    401: AdapterErrorCategory.AUTH_FAILED,
    403: AdapterErrorCategory.AUTH_FAILED,
    408: AdapterErrorCategory.TIMEOUT,
    429: AdapterErrorCategory.RATE_LIMITED,
    502: AdapterErrorCategory.CAPACITY_LIMITED,
    503: AdapterErrorCategory.CAPACITY_LIMITED,
    504: AdapterErrorCategory.TIMEOUT,
}

_SECRET_MARKERS = ("secret", "password", "api_key", "apikey", "key=", "token", "bearer")


class AdapterErrorHandler:
    """Classifies and reports adapter errors."""

    @staticmethod
    def classify_error(error: BaseException) -> str:
        """
        Classify an adapter error into a stable category.

        HTTP status wins, then exception type, then message heuristics.
        """
        status = getattr(error, "status", None)
        if isinstance(status, int):
            if status in _STATUS_CATEGORIES:
                return _STATUS_CATEGORIES[status]
            if 400 <= status < 500:
                return AdapterErrorCategory.BAD_REQUEST
            if status >= 500:
                return AdapterErrorCategory.CAPACITY_LIMITED

        if isinstance(error, (AdapterTimeout, asyncio.TimeoutError)):
            return AdapterErrorCategory.TIMEOUT

        cause = error.__cause__
        if isinstance(cause, asyncio.TimeoutError):
            return AdapterErrorCategory.TIMEOUT
        if isinstance(error, aiohttp.ClientConnectionError) or isinstance(cause, aiohttp.ClientConnectionError):
            return AdapterErrorCategory.NETWORK_ERROR

        error_str = str(error).lower()

        if "auth" in error_str or "unauthorized" in error_str or "401" in error_str:
            return AdapterErrorCategory.AUTH_FAILED

        if "config" in error_str or "misconfigured" in error_str:
            return AdapterErrorCategory.MISCONFIGURED

        if "timeout" in error_str or "timed out" in error_str:
            return AdapterErrorCategory.TIMEOUT

        if "network" in error_str or "connection" in error_str:
            return AdapterErrorCategory.NETWORK_ERROR

        if "rate limit" in error_str or "429" in error_str or "throttle" in error_str:
            return AdapterErrorCategory.RATE_LIMITED

        if "capacity" in error_str or "overloaded" in error_str or "503" in error_str:
            return AdapterErrorCategory.CAPACITY_LIMITED

        return AdapterErrorCategory.UNKNOWN_ERROR

    @staticmethod
    def is_recoverable(category: str) -> bool:
        """
        True for transient failures (the next utterance may well succeed).

        Either way only the current turn is abandoned; the session stays open.
        """
        return category in _TRANSIENT

    @staticmethod
    def redact(detail: str) -> str:
        lowered = detail.lower()
        if any(marker in lowered for marker in _SECRET_MARKERS):
            return "[redacted: potential secret]"
        return detail

    @staticmethod
    def handle_error(
        session_id: str,
        error: BaseException,
        *,
        correlation_id: Optional[str] = None,
    ) -> str:
        """
        Classify, log and emit an adapter error. Never raises.
        Returns the error category.
        """
        category = AdapterErrorHandler.classify_error(error)
        stage = getattr(error, "stage", None)
        stage_value = stage.value if isinstance(stage, Stage) else stage
        provider = getattr(error, "provider", None)
        detail = AdapterErrorHandler.redact(str(error))

        logger.warning(
            "Adapter call failed",
            session_id=session_id,
            correlation_id=correlation_id,
            category=category,
            stage=stage_value,
            provider=provider,
            recoverable=AdapterErrorHandler.is_recoverable(category),
            error_type=type(error).__name__,
            detail=detail,
        )
        emitter.adapter_error(
            session_id,
            category=category,
            stage=stage_value,
            provider=provider,
            detail=detail,
            correlation_id=correlation_id,
        )
        return category
