"""
Structured JSON event emission (shared).

Shared by the Control Plane and the Voice Pipeline. Every event carries the same
envelope (ts, session_id, component, event_type, severity, correlation_id, pii)
plus event-specific fields, is written to stdout as one JSON line and is kept in
the event store for the control API.
"""

from __future__ import annotations

import json
import sys
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from .event_store import DEFAULT_PII, event_store


class Component(str, Enum):
    """Emitting components."""

    CONTROL_PLANE = "control_plane"
    VOICE_PIPELINE = "voice_pipeline"
    TRANSPORT = "transport"
    ADAPTER = "adapter"


class Severity(str, Enum):
    """Event severity levels."""

    DEBUG = "debug"
    INFO = "info"
    WARN = "warn"
    ERROR = "error"


def pii_marker(*fields: str) -> Optional[Dict[str, Any]]:
    """PII metadata for events that carry transcript or reply text."""
    if not fields:
        return None
    return {"contains_pii": True, "fields": list(fields), "handling": "none"}


class EventEmitter:
    """Emits structured JSON events."""

    def __init__(self, component: Component):
        self.component = component

    def emit(
        self,
        event_type: str,
        session_id: str,
        severity: Severity = Severity.INFO,
        correlation_id: Optional[str] = None,
        pii: Optional[Dict[str, Any]] = None,
        **kwargs: Any,
    ) -> Dict[str, Any]:
        """
        Emit one event and return the envelope.

        Args:
            event_type: Stable event type string (e.g., "turn.completed")
            session_id: Opaque session identifier
            severity: Event severity level
            correlation_id: Turn or command id; defaults to the session id
            pii: PII metadata dict with contains_pii, fields, handling
            **kwargs: Additional event-specific fields
        """
        event: Dict[str, Any] = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "session_id": session_id,
            "component": self.component.value,
            "event_type": event_type,
            "severity": severity.value,
            "correlation_id": correlation_id or session_id,
            "pii": pii or DEFAULT_PII,
        }
        event.update(kwargs)

        sys.stdout.write(json.dumps(event, ensure_ascii=False, default=str))
        sys.stdout.write("\n")
        sys.stdout.flush()

        event_store.store(event)
        return event

    def session_started(self, session_id: str, *, sample_rate: int, source: str) -> None:
        """Emit session.started."""
        self.emit(
            "session.started",
            session_id,
            sample_rate=sample_rate,
            source=source,
        )

    def session_stopped(self, session_id: str, *, reason: str, turns: int) -> None:
        """Emit session.stopped."""
        self.emit(
            "session.stopped",
            session_id,
            reason=reason,
            turns=turns,
        )

    def message_rejected(self, session_id: Optional[str], *, reason: str, **fields: Any) -> None:
        """Emit transport.message_rejected (malformed message or unknown session)."""
        self.emit(
            "transport.message_rejected",
            session_id or "unknown",
            severity=Severity.WARN,
            reason=reason,
            **fields,
        )

    def adapter_error(
        self,
        session_id: str,
        *,
        category: str,
        stage: Optional[str],
        provider: Optional[str] = None,
        detail: Optional[str] = None,
        correlation_id: Optional[str] = None,
    ) -> None:
        """Emit adapter.error (classified STT/LLM/TTS failure)."""
        self.emit(
            "adapter.error",
            session_id,
            severity=Severity.ERROR if category.endswith("unknown_error") else Severity.WARN,
            correlation_id=correlation_id,
            category=category,
            stage=stage,
            provider={"name": provider} if provider else None,
            detail=detail,
        )
