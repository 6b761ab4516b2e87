"""
Session lifecycle and the process-wide session registry.

One session per call connection. Only a `start` event (or the control API)
creates a session; media for an unknown id is rejected upstream.
"""
from __future__ import annotations

import asyncio
import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Deque, Dict, List, Optional, Protocol

from logging_setup import get_logger, Component as LogComponent
from observability.events import Component as ObsComponent, EventEmitter
from .segmenter import SegmentationState

logger = get_logger(LogComponent.SESSION_REGISTRY)


class SessionState(str, Enum):
    """Monotonic: OPEN -> CLOSING -> CLOSED."""
    OPEN = "open"
    CLOSING = "closing"
    CLOSED = "closed"


class PipelineState(str, Enum):
    IDLE = "idle"
    TRANSCRIBING = "transcribing"
    GENERATING = "generating"
    SYNTHESIZING = "synthesizing"
    FAILED = "failed"


class TransportHandle(Protocol):
    """Outbound side of the connection that owns a session."""

    @property
    def closed(self) -> bool:
        ...

    async def send_json(self, data: Dict[str, Any]) -> None:
        ...


@dataclass(frozen=True)
class Turn:
    """One completed transcript/reply exchange."""
    turn_id: str
    transcript: str
    reply_text: str
    reply_audio_ref: Optional[str] = None
    completed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "turn_id": self.turn_id,
            "transcript": self.transcript,
            "reply_text": self.reply_text,
            "reply_audio_ref": self.reply_audio_ref,
            "completed_at": self.completed_at.isoformat(),
        }


class AudioBuffer:
    """Ordered raw audio chunks since the last flush."""

    def __init__(self) -> None:
        self._chunks: List[bytes] = []
        self._size = 0

    def append(self, chunk: bytes) -> None:
        self._chunks.append(chunk)
        self._size += len(chunk)

    def __len__(self) -> int:
        return self._size

    @property
    def chunk_count(self) -> int:
        return len(self._chunks)

    def snapshot(self) -> bytes:
        return b"".join(self._chunks)

    def clear(self) -> None:
        self._chunks.clear()
        self._size = 0


@dataclass
class Session:
    """Per-call state: buffering, conversation history and pipeline admission."""

    session_id: str
    sample_rate: int
    history_window: int = 10
    transport: Optional[TransportHandle] = None
    state: SessionState = SessionState.OPEN
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    buffer: AudioBuffer = field(default_factory=AudioBuffer)
    segmentation: SegmentationState = field(default_factory=SegmentationState)
    history: Deque[Turn] = field(init=False)

    # Admission control: at most one in-flight run plus one coalesced blob
    pipeline_busy: bool = False
    pipeline_state: PipelineState = PipelineState.IDLE
    pending_audio: Optional[bytes] = None
    pipeline_task: Optional[asyncio.Task] = None
    flush_timer: Optional[asyncio.Task] = None

    turns_completed: int = 0
    closed_at: Optional[datetime] = None
    close_reason: Optional[str] = None

    def __post_init__(self):
        if not self.session_id:
            raise ValueError("session_id is required")
        if self.history_window < 1:
            raise ValueError("history_window must be >= 1")
        self.history = deque(maxlen=self.history_window)

    @property
    def is_open(self) -> bool:
        return self.state == SessionState.OPEN

    def queue_pending(self, audio: bytes) -> int:
        """Coalesce audio behind the in-flight run. Returns the pending size."""
        if self.pending_audio is None:
            self.pending_audio = bytes(audio)
        else:
            self.pending_audio += audio
        return len(self.pending_audio)

    def take_pending(self) -> Optional[bytes]:
        audio, self.pending_audio = self.pending_audio, None
        return audio

    def record_turn(self, turn: Turn) -> bool:
        """Append a completed turn. Refused once the session is closing."""
        if not self.is_open:
            return False
        self.history.append(turn)
        self.turns_completed += 1
        return True

    def transition_pipeline(self, new_state: PipelineState) -> PipelineState:
        """Returns the previous pipeline state."""
        old_state = self.pipeline_state
        self.pipeline_state = new_state
        return old_state

    def close(self, reason: str) -> bool:
        """
        Discard buffered audio and cancel in-flight work.

        Returns False when already closing/closed.
        """
        if self.state != SessionState.OPEN:
            return False
        self.state = SessionState.CLOSING

        for task in (self.flush_timer, self.pipeline_task):
            if task is not None and not task.done():
                task.cancel()
        self.flush_timer = None
        self.pipeline_task = None

        self.buffer.clear()
        self.segmentation.reset()
        self.pending_audio = None
        self.pipeline_busy = False
        self.pipeline_state = PipelineState.IDLE
        self.transport = None

        self.state = SessionState.CLOSED
        self.closed_at = datetime.now(timezone.utc)
        self.close_reason = reason
        return True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "state": self.state.value,
            "pipeline_state": self.pipeline_state.value,
            "pipeline_busy": self.pipeline_busy,
            "sample_rate": self.sample_rate,
            "buffered_bytes": len(self.buffer),
            "pending_bytes": len(self.pending_audio) if self.pending_audio else 0,
            "turns": len(self.history),
            "turns_completed": self.turns_completed,
            "has_transport": self.transport is not None,
            "created_at": self.created_at.isoformat(),
            "closed_at": self.closed_at.isoformat() if self.closed_at else None,
            "close_reason": self.close_reason,
        }


class SessionRegistry:
    """
    Concurrency-safe session table.

    The lock only guards the map; it is never held across I/O or awaits.
    """

    def __init__(self, *, default_sample_rate: int = 8000, history_window: int = 10):
        self._sessions: Dict[str, Session] = {}
        self._lock = threading.Lock()
        self.default_sample_rate = default_sample_rate
        self.history_window = history_window
        self.emitter = EventEmitter(ObsComponent.VOICE_PIPELINE)

    def get_or_create(
        self,
        session_id: str,
        *,
        transport: Optional[TransportHandle] = None,
        sample_rate: Optional[int] = None,
        source: str = "transport",
    ) -> Session:
        """
        Return the open session for this id, creating it on first use.

        A repeated create reuses the session (no reset); it only attaches the
        transport when the session has none.
        """
        with self._lock:
            session = self._sessions.get(session_id)
            created = session is None
            if created:
                session = Session(
                    session_id=session_id,
                    sample_rate=sample_rate or self.default_sample_rate,
                    history_window=self.history_window,
                    transport=transport,
                )
                self._sessions[session_id] = session
            elif session.transport is None and transport is not None:
                session.transport = transport

        if created:
            logger.info("Session created", session_id=session_id, sample_rate=session.sample_rate, source=source)
            self.emitter.session_started(session_id, sample_rate=session.sample_rate, source=source)
        else:
            logger.debug("Session reused", session_id=session_id, source=source)
        return session

    def get(self, session_id: str) -> Optional[Session]:
        with self._lock:
            return self._sessions.get(session_id)

    def remove(self, session_id: str, reason: str = "stopped") -> bool:
        """Tear down a session. No-op (returns False) when the id is absent."""
        with self._lock:
            session = self._sessions.pop(session_id, None)
        if session is None:
            return False

        if session.close(reason):
            logger.info("Session removed", session_id=session_id, reason=reason, turns=session.turns_completed)
            self.emitter.session_stopped(session_id, reason=reason, turns=session.turns_completed)
        return True

    def for_each(self, visitor: Callable[[Session], Any]) -> None:
        """Visit a snapshot of the sessions; the lock is not held during the visit."""
        with self._lock:
            sessions = list(self._sessions.values())
        for session in sessions:
            visitor(session)

    def list_sessions(self, state: Optional[SessionState] = None) -> List[Session]:
        with self._lock:
            sessions = list(self._sessions.values())
        if state:
            sessions = [s for s in sessions if s.state == state]
        return sessions

    def clear(self, reason: str = "shutdown") -> int:
        """Remove every session. Returns how many were removed."""
        with self._lock:
            ids = list(self._sessions)
        return sum(1 for session_id in ids if self.remove(session_id, reason=reason))

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        with self._lock:
            return session_id in self._sessions
