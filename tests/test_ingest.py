"""
Tests for audio ingest and timer-driven segmentation.

Verifies:
- Chunks are concatenated in arrival order; flush carries exactly the chunks since the last flush
- Threshold flush after the Nth chunk, remaining chunks accumulate
- Timeout flush driven by the per-session timer (injected clock)
- Unknown sessions are rejected, never created
"""
import asyncio

import pytest

from observability.event_store import event_store
from voice_pipeline.errors import SessionNotFound
from voice_pipeline.segmenter import DecisionKind, FlushReason
from fakes import FakeClock, FakeSTT, make_runtime, pcm_chunk, settle


@pytest.fixture(autouse=True)
def cleanup():
    yield
    event_store.clear()


def flushed_events(session_id):
    return event_store.query(session_id=session_id, event_type="utterance.flushed")


@pytest.mark.asyncio
async def test_threshold_flush_after_fifteenth_chunk():
    stt = FakeSTT(gate=asyncio.Event())
    runtime = make_runtime(stt=stt, chunk_threshold=15, timeout_ms=1500)
    session = runtime.registry.get_or_create("A")

    decisions = [runtime.ingest.append("A", pcm_chunk(i)) for i in range(20)]
    await settle()

    kinds = [d.kind for d in decisions]
    assert kinds.count(DecisionKind.FLUSH) == 1
    assert kinds.index(DecisionKind.FLUSH) == 14
    assert decisions[14].reason == FlushReason.THRESHOLD

    assert stt.calls == [b"".join(pcm_chunk(i) for i in range(15))]
    assert len(stt.calls[0]) == 4800

    # The remaining five chunks accumulate toward the next flush
    assert len(session.buffer) == 5 * 320
    assert session.buffer.snapshot() == b"".join(pcm_chunk(i) for i in range(15, 20))
    assert session.segmentation.chunks_since_flush == 5

    events = flushed_events("A")
    assert len(events) == 1
    assert events[0]["reason"] == "threshold"
    assert events[0]["audio_bytes"] == 4800
    assert events[0]["chunks"] == 15

    stt.gate.set()
    await runtime.aclose()


@pytest.mark.asyncio
async def test_timeout_flush_after_pause():
    clock = FakeClock()
    stt = FakeSTT()
    runtime = make_runtime(stt=stt, clock=clock, chunk_threshold=15, timeout_ms=1500)
    runtime.registry.get_or_create("B")

    for i in range(3):
        assert runtime.ingest.append("B", pcm_chunk(i)).kind == DecisionKind.HOLD
    await settle()
    assert stt.calls == []

    await clock.advance(2.0)

    assert stt.calls == [b"".join(pcm_chunk(i) for i in range(3))]
    events = flushed_events("B")
    assert len(events) == 1
    assert events[0]["reason"] == "timeout"
    assert events[0]["chunks"] == 3

    await runtime.aclose()


@pytest.mark.asyncio
async def test_timer_rearms_on_new_audio():
    clock = FakeClock()
    stt = FakeSTT()
    runtime = make_runtime(stt=stt, clock=clock, chunk_threshold=0, timeout_ms=1500)
    runtime.registry.get_or_create("C")

    runtime.ingest.append("C", pcm_chunk(1))
    await settle()
    await clock.advance(1.0)
    runtime.ingest.append("C", pcm_chunk(2))
    await settle()

    await clock.advance(1.0)
    assert stt.calls == []

    await clock.advance(0.6)
    assert stt.calls == [pcm_chunk(1) + pcm_chunk(2)]

    await runtime.aclose()


@pytest.mark.asyncio
async def test_short_utterance_dropped_without_stt():
    clock = FakeClock()
    stt = FakeSTT()
    runtime = make_runtime(stt=stt, clock=clock, chunk_threshold=15, timeout_ms=1500, min_utterance_bytes=640)
    session = runtime.registry.get_or_create("D")

    runtime.ingest.append("D", pcm_chunk(1))
    await settle()
    await clock.advance(2.0)

    assert stt.calls == []
    assert len(session.buffer) == 0
    dropped = event_store.query(session_id="D", event_type="utterance.dropped")
    assert len(dropped) == 1
    assert dropped[0]["audio_bytes"] == 320

    await runtime.aclose()


@pytest.mark.asyncio
async def test_chunk_after_flush_starts_fresh_utterance():
    stt = FakeSTT(gate=asyncio.Event())
    runtime = make_runtime(stt=stt, chunk_threshold=2, timeout_ms=0, min_utterance_bytes=0)
    session = runtime.registry.get_or_create("E")

    runtime.ingest.append("E", pcm_chunk(1))
    assert runtime.ingest.append("E", pcm_chunk(2)).kind == DecisionKind.FLUSH
    runtime.ingest.append("E", pcm_chunk(3))

    assert session.buffer.snapshot() == pcm_chunk(3)
    assert session.segmentation.chunks_since_flush == 1

    stt.gate.set()
    await runtime.aclose()


def test_unknown_session_rejected():
    runtime = make_runtime()
    with pytest.raises(SessionNotFound) as exc_info:
        runtime.ingest.append("ghost", pcm_chunk(1))
    assert exc_info.value.session_id == "ghost"
    assert runtime.registry.get("ghost") is None


def test_closed_session_rejected():
    runtime = make_runtime()
    runtime.registry.get_or_create("F")
    runtime.registry.remove("F")
    with pytest.raises(SessionNotFound):
        runtime.ingest.append("F", pcm_chunk(1))


@pytest.mark.asyncio
async def test_remove_cancels_pending_timeout():
    clock = FakeClock()
    stt = FakeSTT()
    runtime = make_runtime(stt=stt, clock=clock, chunk_threshold=15, timeout_ms=1500)
    session = runtime.registry.get_or_create("G")

    for i in range(3):
        runtime.ingest.append("G", pcm_chunk(i))
    await settle()
    timer = session.flush_timer
    assert timer is not None

    runtime.registry.remove("G")
    await clock.advance(5.0)

    assert timer.cancelled()
    assert stt.calls == []


@pytest.mark.asyncio
async def test_commit_runs_uploaded_utterance():
    stt = FakeSTT()
    runtime = make_runtime(stt=stt, min_utterance_bytes=640)
    session = runtime.registry.get_or_create("H")

    decision = runtime.ingest.commit("H", b"\x05" * 1600)
    await settle()

    assert decision.kind == DecisionKind.FLUSH
    assert stt.calls == [b"\x05" * 1600]
    assert len(session.history) == 1

    assert runtime.ingest.commit("H", b"\x05" * 10).kind == DecisionKind.DROP
    with pytest.raises(SessionNotFound):
        runtime.ingest.commit("ghost", b"\x05" * 1600)

    await runtime.aclose()
