"""
Tests for logging_setup as the pipeline modules use it.

Verifies:
- Pipeline modules log under their own component, with session correlation
- Transcripts and replies only appear under the "pii" key
- LogRecord internals (taskName included) never leak into the JSON line
- Latency coloring: NO_COLOR beats FORCE_COLOR, piped output stays plain
- Text format tolerates records from plain stdlib loggers
"""
import io
import json
import logging
import sys

import pytest

from logging_setup import Component, JSONFormatter, _use_color, get_logger, setup_logging
from voice_pipeline.observability import PipelineObserver
from voice_pipeline.session import SessionRegistry


@pytest.fixture
def root_logger():
    """Root logger with its handlers restored after the test."""
    root = logging.getLogger()
    saved_handlers, saved_level = root.handlers[:], root.level
    yield root
    root.handlers = saved_handlers
    root.setLevel(saved_level)


@pytest.fixture
def json_lines(root_logger):
    """Route all logging to a buffer as JSON; returns a reader of parsed lines."""
    buffer = io.StringIO()
    handler = logging.StreamHandler(buffer)
    handler.setFormatter(JSONFormatter())
    root_logger.handlers = [handler]
    root_logger.setLevel(logging.DEBUG)
    return lambda: [json.loads(line) for line in buffer.getvalue().splitlines() if line]


@pytest.fixture
def no_color_env(monkeypatch):
    monkeypatch.delenv("NO_COLOR", raising=False)
    monkeypatch.delenv("FORCE_COLOR", raising=False)
    monkeypatch.setattr(sys, "stdout", io.StringIO())
    return monkeypatch


def test_registry_logs_under_its_component(json_lines):
    SessionRegistry().get_or_create("call-1", sample_rate=16000, source="control")

    [entry] = [e for e in json_lines() if e["message"] == "Session created"]
    assert entry["component"] == "session_registry"
    assert entry["session_id"] == "call-1"
    assert entry["sample_rate"] == 16000
    assert entry["source"] == "control"
    assert entry["severity"] == "info"


def test_each_pipeline_component_has_its_own_logger():
    components = [
        Component.TRANSPORT,
        Component.SESSION_REGISTRY,
        Component.INGEST,
        Component.SEGMENTER,
        Component.ORCHESTRATOR,
        Component.DELIVERY,
        Component.VAD,
        Component.STT,
        Component.LLM,
        Component.TTS,
    ]
    names = [get_logger(c).logger.name for c in components]

    assert names == [c.value for c in components]
    assert len(set(names)) == len(names)


def test_with_session_binds_without_touching_the_original(json_lines):
    base = get_logger(Component.INGEST)
    bound = base.with_session("call-7")

    bound.info("Chunk appended", bytes=320)
    base.info("Unbound")
    bound.info("Explicit wins", session_id="call-8")

    first, second, third = json_lines()
    assert (first["component"], first["session_id"], first["bytes"]) == ("ingest", "call-7", 320)
    assert "session_id" not in second
    assert third["session_id"] == "call-8"
    assert bound.logger is base.logger


def test_transcript_and_reply_stay_under_pii(json_lines):
    observer = PipelineObserver(now=lambda: 0.0)
    observer.stt_final("call-2", "turn_1", transcript="book a table", latency_ms=120)
    observer.llm_response("call-2", "turn_1", reply="For how many?", latency_ms=300, fallback=False)

    transcript, reply = [e for e in json_lines() if "pii" in e]
    assert transcript["severity"] == "debug"
    assert transcript["session_id"] == "call-2"
    assert transcript["turn_id"] == "turn_1"
    assert transcript["pii"] == {"transcript": "book a table"}
    assert reply["pii"] == {"reply_text": "For how many?"}
    assert "reply_text" not in reply


@pytest.mark.asyncio
async def test_record_internals_are_not_emitted(json_lines):
    # Inside a task, 3.12+ sets record.taskName
    get_logger(Component.ORCHESTRATOR).warning("Turn failed", stage="transcribe")

    [entry] = [e for e in json_lines() if e["component"] == "orchestrator"]
    assert set(entry) == {"timestamp", "severity", "component", "message", "stage"}


def test_exception_helper_attaches_traceback(json_lines):
    logger = get_logger(Component.ORCHESTRATOR)
    try:
        raise RuntimeError("adapter exploded")
    except RuntimeError:
        logger.exception("Turn failed", turn_id="turn_1")

    [entry] = json_lines()
    assert entry["severity"] == "error"
    assert entry["turn_id"] == "turn_1"
    assert "RuntimeError: adapter exploded" in entry["exception"]


def test_color_precedence(no_color_env):
    assert _use_color() is False

    no_color_env.setenv("FORCE_COLOR", "1")
    assert _use_color() is True

    no_color_env.setenv("NO_COLOR", "true")
    assert _use_color() is False


def test_latency_highlight_only_when_colored(json_lines, no_color_env):
    logger = get_logger(Component.ORCHESTRATOR)

    logger.info("Turn completed", latency_ms=412)
    assert json_lines()[0]["latency_ms"] == 412

    no_color_env.setenv("FORCE_COLOR", "1")
    record = logging.LogRecord("orchestrator", logging.INFO, __file__, 1, "Turn completed", None, None)
    record.latency_ms = 412
    output = JSONFormatter().format(record)
    assert f"{JSONFormatter.ORANGE}412 ms{JSONFormatter.RESET}" in output


def test_text_format_handles_plain_loggers(root_logger, capsys):
    setup_logging(level="debug", use_json=False, include_timestamp=False)
    assert root_logger.level == logging.DEBUG

    logging.getLogger("third_party").info("Started server")
    get_logger(Component.SERVER).info("Listening")

    lines = capsys.readouterr().out.splitlines()
    assert lines == ["INFO - - - Started server", "INFO - server - Listening"]
