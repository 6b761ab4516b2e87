"""
Output delivery: pushes a finalized reply back over the session's own transport.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

from logging_setup import get_logger, Component
from .errors import DeliveryError
from .session import Session

logger = get_logger(Component.DELIVERY)


@dataclass(frozen=True)
class ReplyMessage:
    text: str
    audio_ref: Optional[str] = None
    transcript: Optional[str] = None
    turn_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        message: Dict[str, Any] = {
            "type": "reply",
            "text": self.text,
            "audioRef": self.audio_ref,
        }
        if self.transcript is not None:
            message["transcript"] = self.transcript
        if self.turn_id is not None:
            message["turnId"] = self.turn_id
        return message


class OutputDelivery:
    async def deliver(self, session: Session, message: ReplyMessage) -> bool:
        """
        Send the reply over the session's transport.

        Returns False when there is nothing to send on (no transport attached,
        transport already closed, or session closing). Raises DeliveryError when
        the send itself fails.
        """
        if not session.is_open:
            return False

        transport = session.transport
        if transport is None or transport.closed:
            logger.debug("No transport attached; reply not pushed", session_id=session.session_id)
            return False

        try:
            await transport.send_json(message.to_dict())
        except Exception as exc:
            raise DeliveryError(f"send failed for session {session.session_id}: {exc}") from exc
        return True
