"""
Event store for querying structured events by session_id.

In-memory and bounded. Backs the control API's per-session event query.
"""

from __future__ import annotations

import os
import threading
from collections import deque
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from dataclasses import dataclass

ENVELOPE_KEYS = ("ts", "session_id", "component", "event_type", "severity", "correlation_id", "pii")

DEFAULT_PII = {"contains_pii": False, "fields": [], "handling": "none"}


@dataclass
class StoredEvent:
    """A structured event held in memory."""

    ts: datetime
    session_id: str
    component: str
    event_type: str
    severity: str
    correlation_id: str
    pii: Dict[str, Any]
    payload: Dict[str, Any]

    @classmethod
    def from_envelope(cls, event: Dict[str, Any]) -> "StoredEvent":
        ts_raw = event.get("ts")
        if isinstance(ts_raw, str):
            ts = datetime.fromisoformat(ts_raw.replace("Z", "+00:00"))
        else:
            ts = datetime.now(timezone.utc)

        session_id = event.get("session_id", "")
        return cls(
            ts=ts,
            session_id=session_id,
            component=event.get("component", "unknown"),
            event_type=event.get("event_type", "unknown"),
            severity=event.get("severity", "info"),
            correlation_id=event.get("correlation_id", session_id),
            pii=event.get("pii", DEFAULT_PII),
            payload={k: v for k, v in event.items() if k not in ENVELOPE_KEYS},
        )

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "ts": self.ts.isoformat(),
            "session_id": self.session_id,
            "component": self.component,
            "event_type": self.event_type,
            "severity": self.severity,
            "correlation_id": self.correlation_id,
            "pii": self.pii,
        }
        result.update(self.payload)
        return result


class EventStore:
    """
    Bounded, thread-safe in-memory event store.

    Oldest events are evicted first once max_events is reached.
    """

    def __init__(self, max_events: int = 10000):
        self._events: deque[StoredEvent] = deque(maxlen=max_events)
        self._max_events = max_events
        self._lock = threading.Lock()

    def store(self, event: Dict[str, Any]) -> None:
        stored = StoredEvent.from_envelope(event)
        with self._lock:
            self._events.append(stored)

    def query(
        self,
        session_id: Optional[str] = None,
        event_type: Optional[str] = None,
        component: Optional[str] = None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """
        Query events with optional filters, oldest first.

        Args:
            session_id: Filter by session_id
            event_type: Filter by event_type (exact match)
            component: Filter by component
            since: Only events at or after this timestamp
            until: Only events at or before this timestamp
            limit: Maximum number of events to return
        """
        with self._lock:
            snapshot = list(self._events)

        results: List[StoredEvent] = []
        for event in snapshot:
            if session_id and event.session_id != session_id:
                continue
            if event_type and event.event_type != event_type:
                continue
            if component and event.component != component:
                continue
            if since and event.ts < since:
                continue
            if until and event.ts > until:
                continue

            results.append(event)
            if limit and len(results) >= limit:
                break

        return [e.to_dict() for e in results]

    def clear(self) -> None:
        with self._lock:
            self._events.clear()

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            oldest = self._events[0].ts.isoformat() if self._events else None
            newest = self._events[-1].ts.isoformat() if self._events else None
            total = len(self._events)
        return {
            "total_events": total,
            "max_events": self._max_events,
            "oldest_event_ts": oldest,
            "newest_event_ts": newest,
        }


def _max_events_from_env() -> int:
    raw = os.environ.get("OBS_EVENT_STORE_MAX", "").split("#")[0].strip()
    try:
        value = int(raw)
    except ValueError:
        return 10000
    return value if value > 0 else 10000


# Global event store instance
event_store = EventStore(max_events=_max_events_from_env())
