"""
Offline adapters for local runs: no network, deterministic output.
"""
from __future__ import annotations

from typing import Optional, Sequence

from ..session import Turn


class StubSpeechToText:
    """Returns a fixed transcript for any non-empty utterance."""

    provider = "stub"

    def __init__(self, transcript: str = "hello"):
        self.transcript = transcript

    async def transcribe(self, audio: bytes, *, sample_rate: int) -> str:
        return self.transcript if audio else ""


class EchoReplyGenerator:
    provider = "echo"

    async def generate_reply(self, transcript: str, history: Sequence[Turn]) -> str:
        return f"You said: {transcript}"


class SilentTextToSpeech:
    """Text-only replies (no audio reference)."""

    provider = "none"

    async def synthesize(self, text: str) -> Optional[str]:
        return None
