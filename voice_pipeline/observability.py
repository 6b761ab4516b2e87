"""
Voice Pipeline observability.

Utterance and turn lifecycle events. Every turn-scoped event uses the turn id as
its correlation_id. Transcript and reply content is never emitted as an event;
only metadata (lengths, latencies). Text goes to debug_pii logs.
"""

from __future__ import annotations

import time
import uuid
from typing import Any, Callable, Optional

from logging_setup import get_logger, Component as LogComponent
from observability.events import Component as ObsComponent, EventEmitter, Severity


logger = get_logger(LogComponent.ORCHESTRATOR)


def new_turn_id() -> str:
    return f"turn_{uuid.uuid4().hex[:12]}"


class PipelineObserver:
    """Emits voice pipeline events with latency measurements."""

    def __init__(self, *, now: Callable[[], float] = time.monotonic):
        self._now = now
        self.emitter = EventEmitter(ObsComponent.VOICE_PIPELINE)

    def clock(self) -> float:
        return self._now()

    def elapsed_ms(self, since: float) -> int:
        return max(0, int((self._now() - since) * 1000))

    # --- Utterance events (ingest) ---

    def utterance_flushed(self, session_id: str, *, reason: str, audio_bytes: int, chunks: int) -> None:
        self.emitter.emit(
            "utterance.flushed",
            session_id,
            reason=reason,
            audio_bytes=audio_bytes,
            chunks=chunks,
        )

    def utterance_dropped(self, session_id: str, *, reason: str, audio_bytes: int) -> None:
        self.emitter.emit(
            "utterance.dropped",
            session_id,
            severity=Severity.DEBUG,
            reason=reason,
            audio_bytes=audio_bytes,
        )

    def utterance_coalesced(self, session_id: str, *, audio_bytes: int, pending_bytes: int) -> None:
        self.emitter.emit(
            "utterance.coalesced",
            session_id,
            audio_bytes=audio_bytes,
            pending_bytes=pending_bytes,
        )

    # --- Turn events (orchestrator) ---

    def _turn(self, event_type: str, session_id: str, turn_id: str, **kwargs: Any) -> None:
        self.emitter.emit(event_type, session_id, correlation_id=turn_id, turn_id=turn_id, **kwargs)

    def turn_started(self, session_id: str, turn_id: str, *, audio_bytes: int, history_turns: int) -> float:
        """Returns the turn start timestamp."""
        self._turn("turn.started", session_id, turn_id, audio_bytes=audio_bytes, history_turns=history_turns)
        return self._now()

    def stt_final(self, session_id: str, turn_id: str, *, transcript: str, latency_ms: int) -> None:
        self._turn("stt.final", session_id, turn_id, transcript_length=len(transcript), latency_ms=latency_ms)
        logger.with_session(session_id).debug_pii("Transcript", {"turn_id": turn_id}, transcript=transcript)

    def no_speech(self, session_id: str, turn_id: str, *, latency_ms: int) -> None:
        self._turn("turn.no_speech", session_id, turn_id, latency_ms=latency_ms)

    def llm_request(self, session_id: str, turn_id: str, *, history_turns: int) -> None:
        self._turn("llm.request", session_id, turn_id, history_turns=history_turns)

    def llm_response(self, session_id: str, turn_id: str, *, reply: str, latency_ms: int, fallback: bool) -> None:
        self._turn(
            "llm.response",
            session_id,
            turn_id,
            reply_length=len(reply),
            fallback=fallback,
            latency_ms=latency_ms,
        )
        logger.with_session(session_id).debug_pii("Reply", {"turn_id": turn_id}, reply_text=reply)

    def tts_completed(self, session_id: str, turn_id: str, *, audio_ref: Optional[str], latency_ms: int) -> None:
        self._turn("tts.completed", session_id, turn_id, has_audio=audio_ref is not None, latency_ms=latency_ms)

    def reply_delivered(self, session_id: str, turn_id: str, *, sent: bool) -> None:
        self._turn("reply.delivered", session_id, turn_id, sent=sent)

    def turn_completed(self, session_id: str, turn_id: str, *, latency_ms: int) -> None:
        self._turn("turn.completed", session_id, turn_id, latency_ms=latency_ms)
        logger.info("Turn completed", session_id=session_id, turn_id=turn_id, latency_ms=latency_ms)

    def turn_abandoned(self, session_id: str, turn_id: str, *, stage: Optional[str], category: str) -> None:
        self.emitter.emit(
            "turn.abandoned",
            session_id,
            severity=Severity.WARN,
            correlation_id=turn_id,
            turn_id=turn_id,
            stage=stage,
            category=category,
        )

    def turn_discarded(self, session_id: str, turn_id: str, *, reason: str) -> None:
        """A late result for a session that closed mid-turn."""
        self._turn("turn.discarded", session_id, turn_id, reason=reason)
