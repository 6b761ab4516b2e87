"""
Google Cloud Text-to-Speech via REST API.

Uses API key authentication (not service account JSON) for simplicity.
Output: LINEAR16 PCM at the session sample rate, wrapped as WAV and kept in the
audio clip store; the reply carries the clip URL.
"""
import base64
import time
from typing import Optional

from logging_setup import get_logger, Component
from ..audio_store import AudioClipStore
from ..errors import AdapterError, Stage
from .base import pcm16_to_wav
from .http import PooledHTTPAdapter

logger = get_logger(Component.TTS)

GOOGLE_TTS_URL = "https://texttospeech.googleapis.com/v1/text:synthesize"


class GoogleCloudTTS(PooledHTTPAdapter):
    """Google Cloud Text-to-Speech -> WAV clip in the audio clip store."""

    provider = "google"
    logger = logger

    def __init__(
        self,
        *,
        api_key: str,
        clip_store: AudioClipStore,
        voice: str = "en-US-Neural2-F",
        language_code: str = "en-US",
        sample_rate: int = 8000,
        url: str = GOOGLE_TTS_URL,
    ):
        if not api_key:
            raise ValueError("Google Cloud TTS requires a valid API key in GOOGLE_TTS_API_KEY")
        super().__init__()
        self._api_key = api_key
        self._clip_store = clip_store
        self._voice = voice
        self._language_code = language_code
        self._sample_rate = sample_rate
        self._url = url

    def _payload(self, text: str) -> dict:
        return {
            "input": {"text": text},
            "voice": {
                "languageCode": self._language_code,
                "name": self._voice,
            },
            "audioConfig": {
                "audioEncoding": "LINEAR16",
                "sampleRateHertz": self._sample_rate,
            },
        }

    async def synthesize(self, text: str) -> Optional[str]:
        if not text.strip():
            return None

        t_start = time.perf_counter()
        session = self._get_or_create_session()
        async with session.post(self._url, params={"key": self._api_key}, json=self._payload(text)) as response:
            if response.status != 200:
                error_text = await response.text()
                logger.error(
                    "Google Cloud TTS error",
                    status_code=response.status,
                    body_preview=error_text[:200],
                )
                raise AdapterError(
                    f"Google Cloud TTS API error: {response.status}",
                    stage=Stage.SYNTHESIZE,
                    provider=self.provider,
                    status=response.status,
                )
            data = await response.json()

        audio_b64 = data.get("audioContent")
        if not audio_b64:
            raise AdapterError(
                "Google Cloud TTS: no audioContent in response",
                stage=Stage.SYNTHESIZE,
                provider=self.provider,
            )

        # LINEAR16 responses already carry a WAV header
        audio = base64.b64decode(audio_b64)
        if not audio.startswith(b"RIFF"):
            audio = pcm16_to_wav(audio, self._sample_rate)

        ref = self._clip_store.put(audio, "audio/wav")
        logger.info(
            "TTS call completed",
            text_length=len(text),
            audio_bytes=len(audio),
            latency_ms=int((time.perf_counter() - t_start) * 1000),
        )
        return self._clip_store.url_for(ref)
