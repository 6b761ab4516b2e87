"""
Tests for energy-based voice activity detection.
"""
import numpy as np
import pytest

from voice_pipeline.vad import EnergyVAD, chunk_duration_ms


def test_silence_is_not_speech():
    vad = EnergyVAD(energy_threshold=500)
    assert vad.rms(np.zeros(160, dtype="<i2").tobytes()) == 0.0
    assert not vad.is_speech(np.zeros(160, dtype="<i2").tobytes(), 8000)


def test_loud_chunk_is_speech():
    vad = EnergyVAD(energy_threshold=500)
    chunk = np.full(160, -2000, dtype="<i2").tobytes()
    assert vad.rms(chunk) == pytest.approx(2000.0)
    assert vad.is_speech(chunk, 8000)


def test_odd_trailing_byte_ignored():
    vad = EnergyVAD(energy_threshold=500)
    chunk = np.full(4, 1000, dtype="<i2").tobytes() + b"\x7f"
    assert vad.rms(chunk) == pytest.approx(1000.0)


def test_empty_chunk_is_silence():
    vad = EnergyVAD()
    assert vad.rms(b"") == 0.0
    assert vad.rms(b"\x01") == 0.0


def test_chunk_duration_ms():
    assert chunk_duration_ms(b"\x00" * 320, 8000) == pytest.approx(20.0)
    assert chunk_duration_ms(b"\x00" * 640, 16000) == pytest.approx(20.0)
    assert chunk_duration_ms(b"\x00" * 320, 0) == 0.0
