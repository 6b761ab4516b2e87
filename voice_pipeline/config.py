"""
Voice Pipeline configuration.

Loads segmentation, pipeline and provider configuration from environment variables.
"""
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from .segmenter import SegmentationPolicy

DEFAULT_FALLBACK_REPLY = "Sorry, could you say that again?"


def load_env_files(root: Optional[Path] = None) -> None:
    """
    Load .env_local / .env.local / .env (local dev convenience).

    Never overrides variables that are already exported.
    """
    root = root or Path(__file__).parent.parent
    for name in (".env_local", ".env.local", ".env"):
        p = root / name
        if p.exists():
            load_dotenv(p, override=False)


def _clean_env(key: str) -> Optional[str]:
    """Env value with inline comments and whitespace stripped; None when empty."""
    value = os.environ.get(key)
    if not value:
        return None
    if "#" in value:
        value = value.split("#")[0]
    value = value.strip()
    return value or None


def _parse_int_env(key: str, default: int) -> int:
    """
    Parse integer environment variable, stripping comments and whitespace.

    Handles cases like:
    - "300  # comment" -> 300
    - "300" -> 300
    - None -> default
    """
    value = _clean_env(key)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _parse_float_env(key: str, default: float) -> float:
    value = _clean_env(key)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


def _parse_bool_env(key: str, default: bool) -> bool:
    value = _clean_env(key)
    if value is None:
        return default
    return value.lower() in ("1", "true", "yes", "on")


@dataclass
class PipelineConfig:
    """Voice pipeline configuration."""

    # Segmentation (first rule to trigger wins)
    chunk_threshold: int = 15
    timeout_ms: int = 1500
    min_utterance_bytes: int = 640

    # Voice activity detection
    vad_enabled: bool = False
    vad_energy_threshold: int = 500
    vad_silence_ms: int = 600

    # Audio
    default_sample_rate: int = 8000

    # Pipeline
    adapter_timeout_seconds: float = 15.0
    history_window: int = 10
    fallback_reply: Optional[str] = None  # None: use the scenario's fallback_reply
    scenario: str = "default"

    # Provider selection
    stt_provider: str = "elevenlabs"  # "elevenlabs" | "stub"
    llm_provider: str = "openai"  # "openai" | "echo"
    tts_provider: str = "google"  # "google" | "none"

    # ElevenLabs STT
    elevenlabs_api_key: Optional[str] = None
    elevenlabs_stt_model: str = "scribe_v1"

    # OpenAI reply generation
    openai_api_key: Optional[str] = None
    openai_model: str = "gpt-4o-mini"
    openai_base_url: Optional[str] = None
    openai_temperature: float = 0.3

    # Google Cloud TTS (REST API with API key authentication)
    google_tts_api_key: Optional[str] = None
    google_tts_voice: str = "en-US-Neural2-F"
    google_tts_language: str = "en-US"

    # Stub STT (local runs without an STT vendor)
    stub_transcript: str = "hello"

    # Synthesized audio
    audio_clip_capacity: int = 256
    public_base_url: str = ""

    def segmentation_policy(self) -> SegmentationPolicy:
        return SegmentationPolicy(
            chunk_threshold=self.chunk_threshold,
            timeout_ms=self.timeout_ms,
            min_bytes=self.min_utterance_bytes,
            vad_silence_ms=self.vad_silence_ms,
        )

    def validate(self) -> "PipelineConfig":
        """Reject values that would only fail later, per session. Returns self."""
        if self.history_window < 1:
            raise ValueError(f"HISTORY_WINDOW must be >= 1, got {self.history_window}")
        if self.default_sample_rate <= 0:
            raise ValueError(f"AUDIO_SAMPLE_RATE must be positive, got {self.default_sample_rate}")
        if self.vad_enabled and self.vad_silence_ms <= 0:
            raise ValueError(f"VAD_SILENCE_MS must be positive when VAD is enabled, got {self.vad_silence_ms}")
        for key, value in (
            ("SEGMENT_CHUNK_THRESHOLD", self.chunk_threshold),
            ("SEGMENT_TIMEOUT_MS", self.timeout_ms),
            ("SEGMENT_MIN_BYTES", self.min_utterance_bytes),
        ):
            if value < 0:
                raise ValueError(f"{key} must not be negative, got {value}")
        if self.adapter_timeout_seconds <= 0:
            raise ValueError(f"ADAPTER_TIMEOUT_SECONDS must be positive, got {self.adapter_timeout_seconds}")
        return self

    @classmethod
    def from_env(cls) -> "PipelineConfig":
        """Load configuration from environment variables."""
        config = cls(
            chunk_threshold=_parse_int_env("SEGMENT_CHUNK_THRESHOLD", default=15),
            timeout_ms=_parse_int_env("SEGMENT_TIMEOUT_MS", default=1500),
            min_utterance_bytes=_parse_int_env("SEGMENT_MIN_BYTES", default=640),
            vad_enabled=_parse_bool_env("VAD_ENABLED", default=False),
            vad_energy_threshold=_parse_int_env("VAD_ENERGY_THRESHOLD", default=500),
            vad_silence_ms=_parse_int_env("VAD_SILENCE_MS", default=600),
            default_sample_rate=_parse_int_env("AUDIO_SAMPLE_RATE", default=8000),
            adapter_timeout_seconds=_parse_float_env("ADAPTER_TIMEOUT_SECONDS", default=15.0),
            history_window=_parse_int_env("HISTORY_WINDOW", default=10),
            fallback_reply=os.environ.get("FALLBACK_REPLY") or None,
            scenario=os.environ.get("AGENT_SCENARIO", "default"),
            stt_provider=os.environ.get("STT_PROVIDER", "elevenlabs").lower(),
            llm_provider=os.environ.get("LLM_PROVIDER", "openai").lower(),
            tts_provider=os.environ.get("TTS_PROVIDER", "google").lower(),
            elevenlabs_api_key=os.environ.get("ELEVENLABS_API_KEY"),
            elevenlabs_stt_model=os.environ.get("ELEVENLABS_STT_MODEL", "scribe_v1"),
            openai_api_key=os.environ.get("OPENAI_API_KEY"),
            openai_model=os.environ.get("OPENAI_MODEL", "gpt-4o-mini"),
            openai_base_url=os.environ.get("OPENAI_BASE_URL") or None,
            openai_temperature=_parse_float_env("OPENAI_TEMPERATURE", default=0.3),
            google_tts_api_key=os.environ.get("GOOGLE_TTS_API_KEY") or os.environ.get("GOOGLE_API_KEY"),
            google_tts_voice=os.environ.get("GOOGLE_TTS_VOICE", "en-US-Neural2-F"),
            google_tts_language=os.environ.get("GOOGLE_TTS_LANGUAGE", "en-US"),
            stub_transcript=os.environ.get("STUB_TRANSCRIPT", "hello"),
            audio_clip_capacity=_parse_int_env("AUDIO_CLIP_CAPACITY", default=256),
            public_base_url=os.environ.get("PUBLIC_BASE_URL", "").rstrip("/"),
        )
        return config.validate()


def get_config() -> PipelineConfig:
    """Get or create global config instance."""
    global _config
    if _config is None:
        load_env_files()
        _config = PipelineConfig.from_env()
    return _config


# Global config instance (lazy loaded)
_config: Optional[PipelineConfig] = None
