"""
Control Plane API.

This module exposes:
- Write API: register a session, tear it down, commit an uploaded utterance
- Read API: list sessions, get session details and history, query events

Implementation notes:
- The core is only reached through the runtime's registry and ingest.
- Emits auditable events: control.command_received / control.command_applied.
"""

from __future__ import annotations

import time
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from observability.events import Component as ObsComponent, EventEmitter, Severity
from observability.event_store import event_store
from voice_pipeline.errors import SessionNotFound
from voice_pipeline.runtime import VoiceRuntime
from voice_pipeline.segmenter import DecisionKind
from voice_pipeline.session import Session, SessionState


router = APIRouter(prefix="/control", tags=["control"])
emitter = EventEmitter(ObsComponent.CONTROL_PLANE)


def get_runtime(request: Request) -> VoiceRuntime:
    runtime = getattr(request.app.state, "runtime", None)
    if runtime is None:
        raise HTTPException(status_code=503, detail="runtime_not_ready")
    return runtime


def _new_correlation_id() -> str:
    return f"cmd_{int(time.time() * 1000)}"


def _command_received(session_id: str, correlation_id: str, command: str) -> None:
    emitter.emit(
        "control.command_received",
        session_id=session_id,
        severity=Severity.INFO,
        correlation_id=correlation_id,
        command=command,
    )


def _command_applied(session_id: str, correlation_id: str, command: str, result: str, **fields: Any) -> None:
    emitter.emit(
        "control.command_applied",
        session_id=session_id,
        severity=Severity.INFO,
        correlation_id=correlation_id,
        command=command,
        result=result,
        **fields,
    )


def _parse_timestamp(value: Optional[str], name: str) -> Optional[datetime]:
    """ISO timestamp with or without timezone (naive means UTC)."""
    if not value:
        return None
    try:
        # FastAPI URL-decodes query params, so + may arrive as a space
        cleaned = value.replace(" ", "+").replace("Z", "+00:00")
        if "+" not in cleaned and "-" not in cleaned[-6:]:
            cleaned += "+00:00"
        return datetime.fromisoformat(cleaned)
    except (ValueError, AttributeError):
        raise HTTPException(status_code=400, detail=f"Invalid {name} timestamp: {value}")


# --- Write API ---


class RegisterSessionRequest(BaseModel):
    session_id: str = Field(..., min_length=1, description="Opaque session id (e.g. call id)")
    sample_rate: Optional[int] = Field(None, gt=0, description="PCM sample rate; defaults to AUDIO_SAMPLE_RATE")


class SessionSummary(BaseModel):
    session_id: str
    state: str
    pipeline_state: str
    sample_rate: int
    turns: int
    created_at: str
    closed_at: Optional[str] = None
    close_reason: Optional[str] = None


class SessionDetail(SessionSummary):
    pipeline_busy: bool
    buffered_bytes: int
    pending_bytes: int
    turns_completed: int
    has_transport: bool


class RegisterSessionResponse(BaseModel):
    created: bool
    session: SessionSummary


def _summary(session: Session) -> SessionSummary:
    return SessionSummary(**{k: v for k, v in session.to_dict().items() if k in SessionSummary.model_fields})


@router.post("/sessions", response_model=RegisterSessionResponse)
async def register_session(req: RegisterSessionRequest, request: Request) -> RegisterSessionResponse:
    """Register a session. Idempotent: an already-open id is returned unchanged."""
    runtime = get_runtime(request)
    correlation_id = _new_correlation_id()
    _command_received(req.session_id, correlation_id, "session.register")

    created = req.session_id not in runtime.registry
    session = runtime.registry.get_or_create(req.session_id, sample_rate=req.sample_rate, source="control")

    _command_applied(req.session_id, correlation_id, "session.register", "created" if created else "existing")
    return RegisterSessionResponse(created=created, session=_summary(session))


@router.delete("/sessions/{session_id}")
async def remove_session(session_id: str, request: Request) -> Dict[str, str]:
    """Tear down a session. Idempotent: removing an absent id is not an error."""
    runtime = get_runtime(request)
    correlation_id = _new_correlation_id()
    _command_received(session_id, correlation_id, "session.remove")

    removed = runtime.registry.remove(session_id, reason="control")

    result = "removed" if removed else "absent"
    _command_applied(session_id, correlation_id, "session.remove", result)
    return {"status": result}


@router.post("/sessions/{session_id}/audio", status_code=202)
async def upload_utterance(session_id: str, request: Request) -> JSONResponse:
    """
    Commit a raw audio body (mono PCM16 at the session sample rate) as one utterance.

    The reply is pushed over the session's transport when one is attached and is
    always recorded in the session history.
    """
    runtime = get_runtime(request)
    body = await request.body()
    if not body:
        raise HTTPException(status_code=400, detail="empty_audio")

    correlation_id = _new_correlation_id()
    _command_received(session_id, correlation_id, "session.audio")
    try:
        decision = runtime.ingest.commit(session_id, body)
    except SessionNotFound:
        _command_applied(session_id, correlation_id, "session.audio", "unknown_session")
        raise HTTPException(status_code=404, detail="Session not found")

    result = "accepted" if decision.kind == DecisionKind.FLUSH else "dropped"
    _command_applied(session_id, correlation_id, "session.audio", result, audio_bytes=len(body))
    return JSONResponse(status_code=202, content={"status": result, "audio_bytes": len(body)})


# --- Read API ---


@router.get("/sessions", response_model=List[SessionSummary])
async def list_sessions(
    request: Request,
    state: Optional[str] = Query(None, description="Filter by state (open, closing, closed)"),
) -> List[SessionSummary]:
    runtime = get_runtime(request)

    state_filter: Optional[SessionState] = None
    if state:
        try:
            state_filter = SessionState(state.lower())
        except ValueError:
            raise HTTPException(status_code=400, detail=f"Invalid state: {state}")

    return [_summary(s) for s in runtime.registry.list_sessions(state=state_filter)]


@router.get("/sessions/{session_id}", response_model=SessionDetail)
async def get_session(session_id: str, request: Request) -> SessionDetail:
    session = get_runtime(request).registry.get(session_id)
    if not session:
        raise HTTPException(status_code=404, detail="Session not found")
    return SessionDetail(**session.to_dict())


@router.get("/sessions/{session_id}/history")
async def get_session_history(session_id: str, request: Request) -> dict:
    """Completed turns, oldest first (bounded by HISTORY_WINDOW)."""
    session = get_runtime(request).registry.get(session_id)
    if not session:
        raise HTTPException(status_code=404, detail="Session not found")
    turns = [turn.to_dict() for turn in list(session.history)]
    return {"session_id": session_id, "turns": turns, "count": len(turns)}


@router.get("/sessions/{session_id}/events")
async def get_session_events(
    session_id: str,
    request: Request,
    event_type: Optional[str] = Query(None, description="Filter by event_type"),
    component: Optional[str] = Query(None, description="Filter by component"),
    since: Optional[str] = Query(None, description="ISO timestamp (inclusive)"),
    until: Optional[str] = Query(None, description="ISO timestamp (inclusive)"),
    limit: Optional[int] = Query(None, ge=1, le=1000, description="Max events to return"),
) -> dict:
    """
    Query structured events for a session.

    Works after teardown as long as the event store still holds its events.
    """
    since_dt = _parse_timestamp(since, "since")
    until_dt = _parse_timestamp(until, "until")

    events = event_store.query(
        session_id=session_id,
        event_type=event_type,
        component=component,
        since=since_dt,
        until=until_dt,
        limit=limit,
    )

    if not events and get_runtime(request).registry.get(session_id) is None:
        raise HTTPException(status_code=404, detail="Session not found")

    return {
        "session_id": session_id,
        "events": events,
        "count": len(events),
    }
