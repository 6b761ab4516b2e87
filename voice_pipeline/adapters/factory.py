"""
Adapter selection from configuration.
"""
from __future__ import annotations

from dataclasses import dataclass

from logging_setup import get_logger, Component
from ..audio_store import AudioClipStore
from ..config import PipelineConfig
from ..instructions import get_instructions
from .base import ReplyGenerator, SpeechToText, TextToSpeech, close_adapter, provider_name
from .elevenlabs_stt import ElevenLabsSTT
from .google_tts import GoogleCloudTTS
from .openai_reply import OpenAIReplyGenerator
from .stub import EchoReplyGenerator, SilentTextToSpeech, StubSpeechToText

logger = get_logger(Component.VOICE_PIPELINE)


@dataclass
class AdapterSet:
    stt: SpeechToText
    replies: ReplyGenerator
    tts: TextToSpeech

    async def aclose(self) -> None:
        for adapter in (self.stt, self.replies, self.tts):
            await close_adapter(adapter)


def build_stt(config: PipelineConfig) -> SpeechToText:
    if config.stt_provider == "elevenlabs":
        return ElevenLabsSTT(api_key=config.elevenlabs_api_key or "", model_id=config.elevenlabs_stt_model)
    if config.stt_provider == "stub":
        return StubSpeechToText(config.stub_transcript)
    raise ValueError(f"Unknown STT_PROVIDER: {config.stt_provider!r} (expected 'elevenlabs' or 'stub')")


def build_reply_generator(config: PipelineConfig) -> ReplyGenerator:
    if config.llm_provider == "openai":
        return OpenAIReplyGenerator(
            api_key=config.openai_api_key or "",
            system_prompt=get_instructions(config.scenario),
            model=config.openai_model,
            temperature=config.openai_temperature,
            base_url=config.openai_base_url,
        )
    if config.llm_provider == "echo":
        return EchoReplyGenerator()
    raise ValueError(f"Unknown LLM_PROVIDER: {config.llm_provider!r} (expected 'openai' or 'echo')")


def build_tts(config: PipelineConfig, clip_store: AudioClipStore) -> TextToSpeech:
    if config.tts_provider == "google":
        return GoogleCloudTTS(
            api_key=config.google_tts_api_key or "",
            clip_store=clip_store,
            voice=config.google_tts_voice,
            language_code=config.google_tts_language,
            sample_rate=config.default_sample_rate,
        )
    if config.tts_provider == "none":
        return SilentTextToSpeech()
    raise ValueError(f"Unknown TTS_PROVIDER: {config.tts_provider!r} (expected 'google' or 'none')")


def build_adapters(config: PipelineConfig, clip_store: AudioClipStore) -> AdapterSet:
    """
    Build the configured adapters.

    Raises ValueError at startup for unknown providers or missing credentials.
    """
    adapters = AdapterSet(
        stt=build_stt(config),
        replies=build_reply_generator(config),
        tts=build_tts(config, clip_store),
    )
    logger.info(
        "Adapters configured",
        stt=provider_name(adapters.stt),
        llm=provider_name(adapters.replies),
        tts=provider_name(adapters.tts),
    )
    return adapters
