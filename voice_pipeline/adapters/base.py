"""
Capability interfaces for the external STT / reply / TTS services.

The pipeline only depends on these protocols. Vendor request and response
shapes live in the concrete adapters.
"""
from __future__ import annotations

import io
import wave
from typing import Optional, Protocol, Sequence, runtime_checkable

from ..session import Turn


@runtime_checkable
class SpeechToText(Protocol):
    async def transcribe(self, audio: bytes, *, sample_rate: int) -> str:
        """Transcript of a mono PCM16 utterance; empty string for no speech."""
        ...


@runtime_checkable
class ReplyGenerator(Protocol):
    async def generate_reply(self, transcript: str, history: Sequence[Turn]) -> str:
        """Reply text for the transcript given the prior turns (oldest first)."""
        ...


@runtime_checkable
class TextToSpeech(Protocol):
    async def synthesize(self, text: str) -> Optional[str]:
        """Reference (URL) of the synthesized audio, or None when no audio is produced."""
        ...


def provider_name(adapter: object) -> str:
    return getattr(adapter, "provider", None) or type(adapter).__name__


async def close_adapter(adapter: object) -> None:
    aclose = getattr(adapter, "aclose", None)
    if aclose is not None:
        await aclose()


def pcm16_to_wav(pcm: bytes, sample_rate: int, channels: int = 1) -> bytes:
    """Wrap raw little-endian PCM16 in a WAV container."""
    buf = io.BytesIO()
    with wave.open(buf, "wb") as wf:
        wf.setnchannels(channels)
        wf.setsampwidth(2)
        wf.setframerate(sample_rate)
        wf.writeframes(pcm)
    return buf.getvalue()
