"""
Audio ingest: per-session accumulation of raw chunks and segmentation.

append() never waits on the pipeline. When the segmenter commits an utterance
the session buffer is cleared and its segmentation state reset before the audio
is handed to the orchestrator, so the next chunk always starts a fresh utterance.
"""
from __future__ import annotations

import asyncio
import time
from typing import Any, Callable, Optional

from logging_setup import get_logger, Component
from .errors import SessionNotFound
from .observability import PipelineObserver
from .orchestrator import PipelineOrchestrator
from .segmenter import DecisionKind, FlushReason, SegmentDecision, UtteranceSegmenter
from .session import Session, SessionRegistry

logger = get_logger(Component.INGEST)


def _current_task() -> Optional[asyncio.Task]:
    try:
        return asyncio.current_task()
    except RuntimeError:
        return None


class AudioIngestBuffer:
    def __init__(
        self,
        registry: SessionRegistry,
        segmenter: UtteranceSegmenter,
        orchestrator: PipelineOrchestrator,
        *,
        now: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Any] = asyncio.sleep,
        observer: Optional[PipelineObserver] = None,
    ):
        self.registry = registry
        self.segmenter = segmenter
        self.orchestrator = orchestrator
        self._now = now
        self._sleep = sleep
        self.observer = observer or orchestrator.observer

    def _open_session(self, session_id: str) -> Session:
        session = self.registry.get(session_id)
        if session is None or not session.is_open:
            raise SessionNotFound(session_id)
        return session

    def append(self, session_id: str, chunk: bytes) -> SegmentDecision:
        """
        Append one chunk in arrival order and evaluate segmentation.

        Raises SessionNotFound for an unknown (or closed) session; media never
        creates a session.
        """
        session = self._open_session(session_id)
        if not chunk:
            return SegmentDecision.hold()

        now = self._now()
        session.buffer.append(chunk)
        self.segmenter.observe(chunk, session.segmentation, now, session.sample_rate)

        decision = self._evaluate(session, now)
        if decision.kind == DecisionKind.HOLD:
            self._arm_timer(session)
        return decision

    def check_timeout(self, session_id: str) -> SegmentDecision:
        """Re-evaluate a session against the clock (no new audio)."""
        session = self.registry.get(session_id)
        if session is None or not session.is_open:
            return SegmentDecision.hold()
        return self._evaluate(session, self._now())

    def commit(self, session_id: str, audio: bytes) -> SegmentDecision:
        """
        Commit a complete utterance received in one piece (HTTP upload).

        Bypasses the streaming buffer but shares the minimum-size floor and the
        orchestrator's admission control.
        """
        session = self._open_session(session_id)
        if len(audio) < self.segmenter.policy.min_bytes:
            self.observer.utterance_dropped(session_id, reason="upload", audio_bytes=len(audio))
            return SegmentDecision(DecisionKind.DROP, bytes(audio))

        self.observer.utterance_flushed(session_id, reason="upload", audio_bytes=len(audio), chunks=1)
        self.orchestrator.submit(session, bytes(audio))
        return SegmentDecision(DecisionKind.FLUSH, bytes(audio))

    def _evaluate(self, session: Session, now: float) -> SegmentDecision:
        chunks = session.segmentation.chunks_since_flush
        decision = self.segmenter.evaluate(session.buffer, session.segmentation, now)
        if decision.kind == DecisionKind.HOLD:
            return decision

        session.buffer.clear()
        session.segmentation.reset()
        self._cancel_timer(session)

        reason = decision.reason.value if isinstance(decision.reason, FlushReason) else "unknown"
        if decision.kind == DecisionKind.DROP:
            self.observer.utterance_dropped(session.session_id, reason=reason, audio_bytes=len(decision.audio))
            return decision

        logger.debug(
            "Utterance flushed",
            session_id=session.session_id,
            reason=reason,
            bytes=len(decision.audio),
            chunks=chunks,
        )
        self.observer.utterance_flushed(
            session.session_id, reason=reason, audio_bytes=len(decision.audio), chunks=chunks
        )
        self.orchestrator.submit(session, decision.audio)
        return decision

    # --- Timeout timer ---

    def _arm_timer(self, session: Session) -> None:
        timer = session.flush_timer
        if timer is not None and not timer.done():
            # The running watcher re-reads the deadline after every wake-up
            return
        if self.segmenter.timeout_deadline(session.segmentation) is None:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        session.flush_timer = loop.create_task(
            self._timeout_watch(session), name=f"flush-timer:{session.session_id}"
        )

    def _cancel_timer(self, session: Session) -> None:
        timer = session.flush_timer
        session.flush_timer = None
        if timer is not None and not timer.done() and timer is not _current_task():
            timer.cancel()

    async def _timeout_watch(self, session: Session) -> None:
        try:
            while session.is_open:
                deadline = self.segmenter.timeout_deadline(session.segmentation)
                if deadline is None:
                    return
                delay = deadline - self._now()
                if delay > 0:
                    await self._sleep(delay)
                    continue
                self.check_timeout(session.session_id)
                return
        finally:
            if session.flush_timer is _current_task():
                session.flush_timer = None
