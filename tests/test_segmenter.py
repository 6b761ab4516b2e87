"""
Tests for utterance segmentation.

Verifies:
- Threshold, timeout and voice-activity rules (first to trigger wins)
- Minimum-size floor (DROP instead of FLUSH)
- evaluate() leaves buffer and state untouched
"""
import numpy as np
import pytest

from voice_pipeline.segmenter import (
    DecisionKind,
    FlushReason,
    SegmentationPolicy,
    SegmentationState,
    UtteranceSegmenter,
)
from voice_pipeline.session import AudioBuffer
from voice_pipeline.vad import EnergyVAD

RATE = 8000


def loud(samples: int = 160) -> bytes:
    return np.full(samples, 3000, dtype="<i2").tobytes()


def quiet(samples: int = 160) -> bytes:
    return np.zeros(samples, dtype="<i2").tobytes()


def feed(segmenter, buffer, state, chunks, now):
    for chunk in chunks:
        buffer.append(chunk)
        segmenter.observe(chunk, state, now, RATE)


@pytest.fixture
def buffer():
    return AudioBuffer()


@pytest.fixture
def state():
    return SegmentationState()


def test_empty_buffer_holds(buffer, state):
    segmenter = UtteranceSegmenter()
    decision = segmenter.evaluate(buffer, state, now=10_000.0)
    assert decision.kind == DecisionKind.HOLD


def test_threshold_flushes_on_nth_chunk(buffer, state):
    segmenter = UtteranceSegmenter(SegmentationPolicy(chunk_threshold=15, timeout_ms=1500, min_bytes=640))

    for i in range(14):
        feed(segmenter, buffer, state, [bytes([i]) * 320], now=0.0)
        assert segmenter.evaluate(buffer, state, now=0.0).kind == DecisionKind.HOLD

    feed(segmenter, buffer, state, [bytes([14]) * 320], now=0.0)
    decision = segmenter.evaluate(buffer, state, now=0.0)

    assert decision.kind == DecisionKind.FLUSH
    assert decision.reason == FlushReason.THRESHOLD
    assert len(decision.audio) == 4800
    assert decision.audio == b"".join(bytes([i]) * 320 for i in range(15))


def test_timeout_flushes_after_quiet_period(buffer, state):
    segmenter = UtteranceSegmenter(SegmentationPolicy(chunk_threshold=15, timeout_ms=1500, min_bytes=640))
    feed(segmenter, buffer, state, [b"\x01" * 320] * 3, now=100.0)

    assert segmenter.evaluate(buffer, state, now=101.0).kind == DecisionKind.HOLD

    decision = segmenter.evaluate(buffer, state, now=102.0)
    assert decision.kind == DecisionKind.FLUSH
    assert decision.reason == FlushReason.TIMEOUT
    assert len(decision.audio) == 960


def test_timeout_measured_from_last_chunk(buffer, state):
    segmenter = UtteranceSegmenter(SegmentationPolicy(chunk_threshold=0, timeout_ms=1500, min_bytes=0))
    feed(segmenter, buffer, state, [b"\x01" * 320], now=100.0)
    feed(segmenter, buffer, state, [b"\x02" * 320], now=101.0)

    assert segmenter.evaluate(buffer, state, now=102.0).kind == DecisionKind.HOLD
    assert segmenter.timeout_deadline(state) == pytest.approx(102.5)
    assert segmenter.evaluate(buffer, state, now=102.5).kind == DecisionKind.FLUSH


def test_threshold_wins_over_timeout(buffer, state):
    segmenter = UtteranceSegmenter(SegmentationPolicy(chunk_threshold=3, timeout_ms=1500, min_bytes=0))
    feed(segmenter, buffer, state, [b"\x01" * 320] * 3, now=0.0)

    decision = segmenter.evaluate(buffer, state, now=5.0)
    assert decision.reason == FlushReason.THRESHOLD


def test_below_minimum_bytes_is_dropped(buffer, state):
    segmenter = UtteranceSegmenter(SegmentationPolicy(chunk_threshold=15, timeout_ms=1500, min_bytes=640))
    feed(segmenter, buffer, state, [b"\x01" * 320], now=0.0)

    decision = segmenter.evaluate(buffer, state, now=2.0)
    assert decision.kind == DecisionKind.DROP
    assert decision.reason == FlushReason.TIMEOUT
    assert not decision.is_commit


def test_disabled_rules_never_trigger(buffer, state):
    segmenter = UtteranceSegmenter(SegmentationPolicy(chunk_threshold=0, timeout_ms=0, min_bytes=0))
    feed(segmenter, buffer, state, [b"\x01" * 320] * 50, now=0.0)

    assert segmenter.evaluate(buffer, state, now=1_000_000.0).kind == DecisionKind.HOLD
    assert segmenter.timeout_deadline(state) is None


def test_evaluate_does_not_mutate(buffer, state):
    segmenter = UtteranceSegmenter(SegmentationPolicy(chunk_threshold=2, timeout_ms=0, min_bytes=0))
    feed(segmenter, buffer, state, [b"\x01" * 320] * 2, now=0.0)

    assert segmenter.evaluate(buffer, state, now=0.0).kind == DecisionKind.FLUSH
    assert len(buffer) == 640
    assert state.chunks_since_flush == 2


def test_voice_activity_flushes_after_trailing_silence(buffer, state):
    policy = SegmentationPolicy(chunk_threshold=0, timeout_ms=0, min_bytes=0, vad_silence_ms=60)
    segmenter = UtteranceSegmenter(policy, vad=EnergyVAD(energy_threshold=500))

    # 20 ms chunks at 8 kHz; silence before speech does not count
    feed(segmenter, buffer, state, [quiet()] * 5, now=0.0)
    assert segmenter.evaluate(buffer, state, now=0.0).kind == DecisionKind.HOLD

    feed(segmenter, buffer, state, [loud()] * 3 + [quiet()] * 2, now=0.0)
    assert state.speech_detected
    assert segmenter.evaluate(buffer, state, now=0.0).kind == DecisionKind.HOLD

    feed(segmenter, buffer, state, [quiet()], now=0.0)
    decision = segmenter.evaluate(buffer, state, now=0.0)
    assert decision.kind == DecisionKind.FLUSH
    assert decision.reason == FlushReason.VOICE_ACTIVITY


def test_speech_resets_trailing_silence(buffer, state):
    policy = SegmentationPolicy(chunk_threshold=0, timeout_ms=0, min_bytes=0, vad_silence_ms=60)
    segmenter = UtteranceSegmenter(policy, vad=EnergyVAD(energy_threshold=500))

    feed(segmenter, buffer, state, [loud(), quiet(), quiet(), loud(), quiet()], now=0.0)
    assert state.trailing_silence_ms == pytest.approx(20.0)
    assert segmenter.evaluate(buffer, state, now=0.0).kind == DecisionKind.HOLD


def test_state_reset():
    state = SegmentationState(chunks_since_flush=4, last_activity_ts=1.0, speech_detected=True, trailing_silence_ms=40.0)
    state.reset()
    assert state == SegmentationState()
