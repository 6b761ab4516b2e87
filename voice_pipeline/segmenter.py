"""
Utterance segmentation.

Three rules decide when buffered audio is a complete utterance. They are checked
in a fixed order and the first one to trigger wins:

1. threshold: chunks since the last flush >= chunk_threshold
2. timeout: no new audio for timeout_ms while data is buffered
3. voice activity: speech followed by vad_silence_ms of trailing silence

A flush below min_bytes is a DROP: the audio is discarded without ever reaching
speech-to-text.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Protocol

from logging_setup import get_logger, Component
from .vad import VoiceActivityDetector, chunk_duration_ms

logger = get_logger(Component.SEGMENTER)


class DecisionKind(str, Enum):
    FLUSH = "flush"
    HOLD = "hold"
    DROP = "drop"


class FlushReason(str, Enum):
    THRESHOLD = "threshold"
    TIMEOUT = "timeout"
    VOICE_ACTIVITY = "voice_activity"


class BufferedAudio(Protocol):
    def __len__(self) -> int:
        ...

    def snapshot(self) -> bytes:
        ...


@dataclass(frozen=True)
class SegmentationPolicy:
    """A zero chunk_threshold or timeout_ms disables that rule."""

    chunk_threshold: int = 15
    timeout_ms: int = 1500
    min_bytes: int = 640
    vad_silence_ms: int = 600


@dataclass(frozen=True)
class SegmentDecision:
    kind: DecisionKind
    audio: bytes = b""
    reason: Optional[FlushReason] = None

    @classmethod
    def hold(cls) -> "SegmentDecision":
        return cls(DecisionKind.HOLD)

    @property
    def is_commit(self) -> bool:
        return self.kind == DecisionKind.FLUSH


@dataclass
class SegmentationState:
    """Per-session counters, reset on every flush or drop."""

    chunks_since_flush: int = 0
    last_activity_ts: Optional[float] = None
    speech_detected: bool = False
    trailing_silence_ms: float = 0.0

    def reset(self) -> None:
        self.chunks_since_flush = 0
        self.last_activity_ts = None
        self.speech_detected = False
        self.trailing_silence_ms = 0.0


class UtteranceSegmenter:
    def __init__(
        self,
        policy: Optional[SegmentationPolicy] = None,
        vad: Optional[VoiceActivityDetector] = None,
    ):
        self.policy = policy or SegmentationPolicy()
        self.vad = vad

    def observe(self, chunk: bytes, state: SegmentationState, now: float, sample_rate: int) -> None:
        """Account for one appended chunk."""
        state.chunks_since_flush += 1
        state.last_activity_ts = now

        if self.vad is None:
            return
        if self.vad.is_speech(chunk, sample_rate):
            state.speech_detected = True
            state.trailing_silence_ms = 0.0
        elif state.speech_detected:
            state.trailing_silence_ms += chunk_duration_ms(chunk, sample_rate)

    def evaluate(self, buffer: BufferedAudio, state: SegmentationState, now: float) -> SegmentDecision:
        """
        Decide FLUSH / HOLD / DROP for the buffered audio.

        Does not mutate anything: clearing the buffer and resetting the state
        is up to the caller, before the audio is handed on.
        """
        if len(buffer) == 0 and state.chunks_since_flush == 0:
            return SegmentDecision.hold()

        reason = self._triggered_rule(state, now)
        if reason is None:
            return SegmentDecision.hold()

        audio = buffer.snapshot()
        if len(audio) < self.policy.min_bytes:
            logger.debug(
                "Utterance below minimum size",
                reason=reason.value,
                bytes=len(audio),
                min_bytes=self.policy.min_bytes,
            )
            return SegmentDecision(DecisionKind.DROP, audio, reason)

        return SegmentDecision(DecisionKind.FLUSH, audio, reason)

    def timeout_deadline(self, state: SegmentationState) -> Optional[float]:
        """Clock time at which the timeout rule fires, or None when it cannot."""
        if self.policy.timeout_ms <= 0 or state.last_activity_ts is None:
            return None
        return state.last_activity_ts + self.policy.timeout_ms / 1000.0

    def _triggered_rule(self, state: SegmentationState, now: float) -> Optional[FlushReason]:
        policy = self.policy

        if policy.chunk_threshold > 0 and state.chunks_since_flush >= policy.chunk_threshold:
            return FlushReason.THRESHOLD

        deadline = self.timeout_deadline(state)
        if deadline is not None and now >= deadline:
            return FlushReason.TIMEOUT

        if (
            self.vad is not None
            and state.speech_detected
            and state.trailing_silence_ms >= policy.vad_silence_ms
        ):
            return FlushReason.VOICE_ACTIVITY

        return None
