"""
Transport listener: one task per WebSocket connection.

Each inbound frame is parsed and dispatched by event type:
start -> registry.get_or_create, media -> ingest.append, stop -> registry.remove.
Bad frames are ignored (the connection stays open). A disconnect tears down
every session started on that connection and never affects other connections.
"""
from __future__ import annotations

import asyncio
import uuid
from typing import Any, Callable, Dict, Optional, Set, Union

from fastapi import WebSocket, WebSocketDisconnect

from logging_setup import get_logger, Component as LogComponent
from observability.events import Component as ObsComponent, EventEmitter
from .errors import SessionNotFound
from .ingest import AudioIngestBuffer
from .messages import TransportEvent, TransportEventType, parse_transport_message
from .session import SessionRegistry

logger = get_logger(LogComponent.TRANSPORT)

Frame = Union[str, bytes, Dict[str, Any], None]


class WebSocketTransport:
    """Outbound handle for one connection; sends are serialized."""

    def __init__(self, websocket: WebSocket, connection_id: Optional[str] = None):
        self._websocket = websocket
        self._send_lock = asyncio.Lock()
        self._closed = False
        self.connection_id = connection_id or f"conn_{uuid.uuid4().hex[:8]}"

    @property
    def closed(self) -> bool:
        return self._closed

    def mark_closed(self) -> None:
        self._closed = True

    async def send_json(self, data: Dict[str, Any]) -> None:
        if self._closed:
            raise ConnectionError(f"transport {self.connection_id} is closed")
        async with self._send_lock:
            await self._websocket.send_json(data)


class _Connection:
    """Sessions started on one connection plus its outbound handle."""

    def __init__(self, transport: Optional[WebSocketTransport] = None):
        self.transport = transport
        self.session_ids: Set[str] = set()


class TransportListener:
    def __init__(self, registry: SessionRegistry, ingest: AudioIngestBuffer):
        self.registry = registry
        self.ingest = ingest
        self.emitter = EventEmitter(ObsComponent.TRANSPORT)
        self._handlers: Dict[TransportEventType, Callable[[TransportEvent, _Connection], None]] = {
            TransportEventType.START: self._on_start,
            TransportEventType.MEDIA: self._on_media,
            TransportEventType.STOP: self._on_stop,
        }

    async def serve(self, websocket: WebSocket) -> None:
        """Run one connection until the peer disconnects."""
        await websocket.accept()
        transport = WebSocketTransport(websocket)
        connection = _Connection(transport)
        logger.info("Connection opened", connection_id=transport.connection_id)

        try:
            while True:
                message = await websocket.receive()
                if message.get("type") == "websocket.disconnect":
                    break
                frame = message.get("text")
                if frame is None:
                    frame = message.get("bytes")
                self._dispatch(frame, connection)
        except WebSocketDisconnect:
            pass
        finally:
            transport.mark_closed()
            for session_id in list(connection.session_ids):
                self.registry.remove(session_id, reason="transport_closed")
            logger.info(
                "Connection closed",
                connection_id=transport.connection_id,
                sessions=len(connection.session_ids),
            )

    def dispatch(self, frame: Frame, transport: Optional[WebSocketTransport] = None) -> Optional[TransportEvent]:
        """Parse and apply one frame outside a served connection."""
        return self._dispatch(frame, _Connection(transport))

    def _dispatch(self, frame: Frame, connection: _Connection) -> Optional[TransportEvent]:
        event = parse_transport_message(frame)
        if event is None:
            logger.warning("Malformed transport message ignored")
            self.emitter.message_rejected(None, reason="malformed")
            return None
        self._handlers[event.event_type](event, connection)
        return event

    def _on_start(self, event: TransportEvent, connection: _Connection) -> None:
        session = self.registry.get_or_create(
            event.session_id,
            transport=connection.transport,
            sample_rate=event.sample_rate,
            source="transport",
        )
        # Only the connection holding the session's transport may tear it down
        if connection.transport is not None and session.transport is not connection.transport:
            logger.warning(
                "Start for session owned by another connection",
                session_id=event.session_id,
                connection_id=connection.transport.connection_id,
            )
            return
        connection.session_ids.add(event.session_id)

    def _on_media(self, event: TransportEvent, connection: _Connection) -> None:
        try:
            self.ingest.append(event.session_id, event.payload)
        except SessionNotFound:
            logger.warning("Media for unknown session dropped", session_id=event.session_id, bytes=len(event.payload))
            self.emitter.message_rejected(event.session_id, reason="unknown_session", bytes=len(event.payload))

    def _on_stop(self, event: TransportEvent, connection: _Connection) -> None:
        self.registry.remove(event.session_id, reason="stopped")
        connection.session_ids.discard(event.session_id)
