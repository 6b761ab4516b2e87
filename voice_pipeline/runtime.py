"""
Runtime wiring: one VoiceRuntime per process, shared by the HTTP and WebSocket surfaces.
"""
from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional

from logging_setup import get_logger, Component
from .adapters.base import ReplyGenerator, SpeechToText, TextToSpeech
from .adapters.factory import AdapterSet, build_adapters, build_reply_generator, build_stt, build_tts
from .audio_store import AudioClipStore
from .config import PipelineConfig, get_config
from .delivery import OutputDelivery
from .ingest import AudioIngestBuffer
from .instructions import get_fallback_reply
from .observability import PipelineObserver
from .orchestrator import PipelineOrchestrator
from .segmenter import UtteranceSegmenter
from .session import SessionRegistry
from .transport import TransportListener
from .vad import EnergyVAD

logger = get_logger(Component.VOICE_PIPELINE)


@dataclass
class VoiceRuntime:
    config: PipelineConfig
    registry: SessionRegistry
    segmenter: UtteranceSegmenter
    ingest: AudioIngestBuffer
    orchestrator: PipelineOrchestrator
    delivery: OutputDelivery
    clip_store: AudioClipStore
    adapters: AdapterSet
    listener: TransportListener

    async def aclose(self) -> None:
        """Tear down every session (cancelling in-flight work), then close adapters."""
        removed = self.registry.clear(reason="shutdown")
        await self.adapters.aclose()
        logger.info("Voice runtime closed", sessions_removed=removed)


def build_runtime(
    config: Optional[PipelineConfig] = None,
    *,
    stt: Optional[SpeechToText] = None,
    replies: Optional[ReplyGenerator] = None,
    tts: Optional[TextToSpeech] = None,
    now: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], Any] = asyncio.sleep,
) -> VoiceRuntime:
    """
    Wire the pipeline. Raises ValueError for invalid settings, and for unknown
    providers or missing credentials when adapters are built from config.
    """
    config = (config or get_config()).validate()

    clip_store = AudioClipStore(config.audio_clip_capacity, public_base_url=config.public_base_url)
    if stt is None and replies is None and tts is None:
        adapters = build_adapters(config, clip_store)
    else:
        adapters = AdapterSet(
            stt=stt or build_stt(config),
            replies=replies or build_reply_generator(config),
            tts=tts or build_tts(config, clip_store),
        )

    registry = SessionRegistry(
        default_sample_rate=config.default_sample_rate,
        history_window=config.history_window,
    )
    vad = EnergyVAD(config.vad_energy_threshold) if config.vad_enabled else None
    segmenter = UtteranceSegmenter(config.segmentation_policy(), vad=vad)

    observer = PipelineObserver(now=now)
    delivery = OutputDelivery()
    orchestrator = PipelineOrchestrator(
        adapters.stt,
        adapters.replies,
        adapters.tts,
        delivery,
        adapter_timeout_s=config.adapter_timeout_seconds,
        fallback_reply=config.fallback_reply or get_fallback_reply(config.scenario),
        observer=observer,
    )
    ingest = AudioIngestBuffer(registry, segmenter, orchestrator, now=now, sleep=sleep, observer=observer)
    listener = TransportListener(registry, ingest)

    logger.info(
        "Voice runtime ready",
        chunk_threshold=config.chunk_threshold,
        timeout_ms=config.timeout_ms,
        vad_enabled=config.vad_enabled,
        history_window=config.history_window,
        adapter_timeout_s=config.adapter_timeout_seconds,
    )
    return VoiceRuntime(
        config=config,
        registry=registry,
        segmenter=segmenter,
        ingest=ingest,
        orchestrator=orchestrator,
        delivery=delivery,
        clip_store=clip_store,
        adapters=adapters,
        listener=listener,
    )
