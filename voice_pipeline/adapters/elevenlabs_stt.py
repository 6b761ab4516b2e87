"""
ElevenLabs speech-to-text via the REST API (multipart upload of a WAV blob).
"""
from __future__ import annotations

import time

import aiohttp

from logging_setup import get_logger, Component
from ..errors import AdapterError, Stage
from .base import pcm16_to_wav
from .http import PooledHTTPAdapter

logger = get_logger(Component.STT)

ELEVENLABS_STT_URL = "https://api.elevenlabs.io/v1/speech-to-text"


class ElevenLabsSTT(PooledHTTPAdapter):
    provider = "elevenlabs"
    logger = logger

    def __init__(self, *, api_key: str, model_id: str = "scribe_v1", url: str = ELEVENLABS_STT_URL):
        if not api_key:
            raise ValueError("ElevenLabs STT requires a valid API key in ELEVENLABS_API_KEY")
        super().__init__()
        self._api_key = api_key
        self._model_id = model_id
        self._url = url

    def _build_form(self, wav_bytes: bytes) -> aiohttp.FormData:
        form = aiohttp.FormData()
        form.add_field("file", wav_bytes, filename="utterance.wav", content_type="audio/wav")
        form.add_field("model_id", self._model_id)
        return form

    async def transcribe(self, audio: bytes, *, sample_rate: int) -> str:
        wav_bytes = pcm16_to_wav(audio, sample_rate)
        headers = {"xi-api-key": self._api_key}

        t_start = time.perf_counter()
        session = self._get_or_create_session()
        async with session.post(self._url, data=self._build_form(wav_bytes), headers=headers) as response:
            if response.status != 200:
                error_text = await response.text()
                logger.error(
                    "ElevenLabs STT error",
                    status_code=response.status,
                    body_preview=error_text[:200],
                )
                raise AdapterError(
                    f"ElevenLabs STT API error: {response.status}",
                    stage=Stage.TRANSCRIBE,
                    provider=self.provider,
                    status=response.status,
                )
            data = await response.json()

        transcript = data.get("text") or data.get("transcript") or ""
        logger.info(
            "STT call completed",
            audio_bytes=len(audio),
            transcript_length=len(transcript),
            latency_ms=int((time.perf_counter() - t_start) * 1000),
        )
        return transcript
