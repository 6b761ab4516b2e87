"""
Energy-based voice activity detection for mono PCM16 (little-endian) chunks.
"""
from __future__ import annotations

from typing import Protocol

import numpy as np

from logging_setup import get_logger, Component

logger = get_logger(Component.VAD)

BYTES_PER_SAMPLE = 2


def chunk_duration_ms(chunk: bytes, sample_rate: int) -> float:
    """Duration of a PCM16 mono chunk in milliseconds."""
    if sample_rate <= 0:
        return 0.0
    return (len(chunk) // BYTES_PER_SAMPLE) * 1000.0 / sample_rate


class VoiceActivityDetector(Protocol):
    def is_speech(self, chunk: bytes, sample_rate: int) -> bool:
        ...


class EnergyVAD:
    """
    Classifies a chunk as speech when its int16 RMS reaches the threshold.

    An odd trailing byte is ignored; an empty chunk is silence.
    """

    def __init__(self, energy_threshold: int = 500):
        self.energy_threshold = energy_threshold

    def rms(self, chunk: bytes) -> float:
        usable = len(chunk) - (len(chunk) % BYTES_PER_SAMPLE)
        if usable <= 0:
            return 0.0
        samples = np.frombuffer(chunk[:usable], dtype="<i2").astype(np.float64)
        return float(np.sqrt(np.mean(np.square(samples))))

    def is_speech(self, chunk: bytes, sample_rate: int) -> bool:
        return self.rms(chunk) >= self.energy_threshold
