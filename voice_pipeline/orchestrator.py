"""
Pipeline orchestration: STT -> reply generation -> TTS -> delivery, one utterance
at a time per session.

Admission control keeps at most one pipeline run in flight per session. Audio
that is flushed while a run is in flight is coalesced into a single pending
blob and processed as the next turn, in order. Sessions run fully in parallel.
"""
from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, List, Optional, TypeVar

from logging_setup import get_logger, Component
from .adapters.base import ReplyGenerator, SpeechToText, TextToSpeech, provider_name
from .config import DEFAULT_FALLBACK_REPLY
from .delivery import OutputDelivery, ReplyMessage
from .errors import AdapterError, AdapterErrorHandler, AdapterTimeout, DeliveryError, Stage
from .observability import PipelineObserver, new_turn_id
from .session import PipelineState, Session, Turn

logger = get_logger(Component.ORCHESTRATOR)

T = TypeVar("T")


class PipelineOrchestrator:
    def __init__(
        self,
        stt: SpeechToText,
        replies: ReplyGenerator,
        tts: TextToSpeech,
        delivery: Optional[OutputDelivery] = None,
        *,
        adapter_timeout_s: float = 15.0,
        fallback_reply: str = DEFAULT_FALLBACK_REPLY,
        observer: Optional[PipelineObserver] = None,
    ):
        self.stt = stt
        self.replies = replies
        self.tts = tts
        self.delivery = delivery or OutputDelivery()
        self.adapter_timeout_s = adapter_timeout_s
        self.fallback_reply = fallback_reply
        self.observer = observer or PipelineObserver()

    # --- Admission ---

    def submit(self, session: Session, audio: bytes) -> Optional[asyncio.Task]:
        """
        Hand a finalized utterance to the pipeline without waiting for it.

        Returns the pipeline task when a run was started, None when the audio was
        coalesced behind a busy run (or the session is closed).
        """
        if not session.is_open:
            return None

        if session.pipeline_busy:
            pending = session.queue_pending(audio)
            self.observer.utterance_coalesced(session.session_id, audio_bytes=len(audio), pending_bytes=pending)
            return None

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("No running event loop; utterance not processed", session_id=session.session_id)
            return None

        session.pipeline_busy = True
        task = loop.create_task(self._drain(session, audio), name=f"pipeline:{session.session_id}")
        session.pipeline_task = task
        return task

    async def run(self, session: Session, audio: bytes) -> None:
        """Submit an utterance and wait until the run it started (if any) finishes."""
        task = self.submit(session, audio)
        if task is not None:
            # wait() does not propagate the task's cancellation to the caller
            await asyncio.wait({task})

    async def _drain(self, session: Session, audio: bytes) -> None:
        blob: Optional[bytes] = audio
        try:
            while blob is not None and session.is_open:
                await self._run_turn(session, blob)
                blob = session.take_pending()
        finally:
            if session.pipeline_task is asyncio.current_task():
                session.pipeline_task = None
            session.pipeline_busy = False
            session.transition_pipeline(PipelineState.IDLE)

    # --- One turn ---

    async def _run_turn(self, session: Session, audio: bytes) -> None:
        session_id = session.session_id
        turn_id = new_turn_id()
        history: List[Turn] = list(session.history)
        started = self.observer.turn_started(
            session_id, turn_id, audio_bytes=len(audio), history_turns=len(history)
        )

        try:
            session.transition_pipeline(PipelineState.TRANSCRIBING)
            step = self.observer.clock()
            transcript = await self._call(
                Stage.TRANSCRIBE,
                self.stt,
                lambda: self.stt.transcribe(audio, sample_rate=session.sample_rate),
            )
            transcript = (transcript or "").strip()
            if not transcript:
                self.observer.no_speech(session_id, turn_id, latency_ms=self.observer.elapsed_ms(step))
                return
            self.observer.stt_final(session_id, turn_id, transcript=transcript, latency_ms=self.observer.elapsed_ms(step))

            session.transition_pipeline(PipelineState.GENERATING)
            self.observer.llm_request(session_id, turn_id, history_turns=len(history))
            step = self.observer.clock()
            reply = await self._call(
                Stage.GENERATE,
                self.replies,
                lambda: self.replies.generate_reply(transcript, history),
            )
            reply = (reply or "").strip()
            used_fallback = not reply
            if used_fallback:
                reply = self.fallback_reply
            self.observer.llm_response(
                session_id, turn_id, reply=reply, latency_ms=self.observer.elapsed_ms(step), fallback=used_fallback
            )

            session.transition_pipeline(PipelineState.SYNTHESIZING)
            step = self.observer.clock()
            audio_ref = await self._call(Stage.SYNTHESIZE, self.tts, lambda: self.tts.synthesize(reply))
            self.observer.tts_completed(session_id, turn_id, audio_ref=audio_ref, latency_ms=self.observer.elapsed_ms(step))
        except AdapterError as exc:
            session.transition_pipeline(PipelineState.FAILED)
            category = AdapterErrorHandler.handle_error(session_id, exc, correlation_id=turn_id)
            self.observer.turn_abandoned(
                session_id, turn_id, stage=exc.stage.value if exc.stage else None, category=category
            )
            return

        if not session.is_open:
            self.observer.turn_discarded(session_id, turn_id, reason="session_closed")
            return

        message = ReplyMessage(text=reply, audio_ref=audio_ref, transcript=transcript, turn_id=turn_id)
        try:
            sent = await self.delivery.deliver(session, message)
        except DeliveryError as exc:
            session.transition_pipeline(PipelineState.FAILED)
            logger.warning("Reply delivery failed", session_id=session_id, turn_id=turn_id, error=str(exc))
            self.observer.turn_abandoned(session_id, turn_id, stage="delivery", category="delivery.failed")
            return
        self.observer.reply_delivered(session_id, turn_id, sent=sent)

        turn = Turn(turn_id=turn_id, transcript=transcript, reply_text=reply, reply_audio_ref=audio_ref)
        if not session.record_turn(turn):
            self.observer.turn_discarded(session_id, turn_id, reason="session_closed")
            return
        self.observer.turn_completed(session_id, turn_id, latency_ms=self.observer.elapsed_ms(started))

    async def _call(self, stage: Stage, adapter: object, call: Callable[[], Awaitable[T]]) -> T:
        """
        Run one adapter call under the adapter deadline.

        Every failure surfaces as AdapterError (AdapterTimeout on deadline);
        cancellation always propagates.
        """
        provider = provider_name(adapter)
        try:
            return await asyncio.wait_for(call(), timeout=self.adapter_timeout_s)
        except asyncio.CancelledError:
            raise
        except AdapterError as exc:
            if exc.stage is None:
                exc.stage = stage
            if exc.provider is None:
                exc.provider = provider
            raise
        except asyncio.TimeoutError as exc:
            raise AdapterTimeout(
                f"{stage.value} call exceeded {self.adapter_timeout_s}s",
                stage=stage,
                provider=provider,
            ) from exc
        except Exception as exc:
            raise AdapterError(
                f"{stage.value} adapter failed: {exc}",
                stage=stage,
                provider=provider,
                status=getattr(exc, "status", None),
            ) from exc
