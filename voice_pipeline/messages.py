"""
Transport message parsing.

Inbound frames are JSON objects with an "event" of start / media / stop. Field
names vary between telephony vendors, so the session id, media payload and
sample rate are resolved from a short list of known aliases.

Malformed input never raises: parse_transport_message returns None and the
caller ignores the frame without closing the connection.
"""

from __future__ import annotations

import base64
import binascii
import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping, Optional, Union


class TransportEventType(str, Enum):
    START = "start"
    MEDIA = "media"
    STOP = "stop"


@dataclass(frozen=True)
class TransportEvent:
    """One parsed inbound transport message."""

    event_type: TransportEventType
    session_id: str
    payload: bytes = b""
    sample_rate: Optional[int] = None


_SESSION_ID_KEYS = ("sessionId", "session_id", "streamSid", "callSid")


def _non_empty_str(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def parse_json_object(raw: Union[str, bytes, Mapping[str, Any], None]) -> dict[str, Any]:
    """
    Decode a frame into a dict.

    Returns {} if the frame is missing, not valid JSON, or not a JSON object.
    """
    if raw is None:
        return {}
    if isinstance(raw, Mapping):
        return dict(raw)
    try:
        parsed = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError):
        return {}
    if not isinstance(parsed, dict):
        return {}
    return parsed


def resolve_session_id(message: Mapping[str, Any]) -> Optional[str]:
    """
    Resolve the session id.

    Priority:
    1) top-level sessionId / session_id / streamSid / callSid
    2) nested start.callSid / start.streamSid
    """
    for key in _SESSION_ID_KEYS:
        session_id = _non_empty_str(message.get(key))
        if session_id:
            return session_id

    start = message.get("start")
    if isinstance(start, Mapping):
        for key in ("callSid", "streamSid"):
            session_id = _non_empty_str(start.get(key))
            if session_id:
                return session_id
    return None


def resolve_sample_rate(message: Mapping[str, Any]) -> Optional[int]:
    """sampleRate / sample_rate, else start.mediaFormat.sampleRate. Positive ints only."""
    candidates = [message.get("sampleRate"), message.get("sample_rate")]
    start = message.get("start")
    if isinstance(start, Mapping):
        media_format = start.get("mediaFormat")
        if isinstance(media_format, Mapping):
            candidates.append(media_format.get("sampleRate"))

    for value in candidates:
        if isinstance(value, bool):
            continue
        if isinstance(value, int) and value > 0:
            return value
        if isinstance(value, str) and value.strip().isdigit() and int(value) > 0:
            return int(value)
    return None


def decode_media_payload(message: Mapping[str, Any]) -> Optional[bytes]:
    """Base64 audio from payload or media.payload. None when absent or undecodable."""
    payload = message.get("payload")
    if payload is None:
        media = message.get("media")
        if isinstance(media, Mapping):
            payload = media.get("payload")
    if not isinstance(payload, str):
        return None
    try:
        return base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError):
        return None


def parse_transport_message(raw: Union[str, bytes, Mapping[str, Any], None]) -> Optional[TransportEvent]:
    """
    Parse one inbound frame.

    Returns None for bad JSON, non-objects, unknown events, a missing session id
    or an undecodable media payload.
    """
    message = parse_json_object(raw)
    if not message:
        return None

    try:
        event_type = TransportEventType(str(message.get("event", "")).lower())
    except ValueError:
        return None

    session_id = resolve_session_id(message)
    if session_id is None:
        return None

    if event_type == TransportEventType.MEDIA:
        payload = decode_media_payload(message)
        if payload is None:
            return None
        return TransportEvent(event_type, session_id, payload=payload)

    sample_rate = resolve_sample_rate(message) if event_type == TransportEventType.START else None
    return TransportEvent(event_type, session_id, sample_rate=sample_rate)
