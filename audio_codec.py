"""PCM helpers: block merge, level analysis, quantisation, resampling, MP3 encoding."""

from __future__ import annotations

import logging
import math
from typing import Sequence

import numpy as np

from errors import EncodingError
from models import AudioAnalysis

try:
    import lameenc
except Exception:  # pragma: no cover
    lameenc = None  # type: ignore

logger = logging.getLogger(__name__)

MP3_FRAME_SAMPLES = 1152
SILENCE_FLOOR = 0.0001


def merge_blocks(blocks: Sequence[np.ndarray]) -> np.ndarray:
    """Concatenate capture blocks in order into one float32 buffer."""
    if not blocks:
        return np.zeros(0, dtype=np.float32)
    return np.concatenate([np.asarray(b, dtype=np.float32).reshape(-1) for b in blocks])


def block_levels(samples: np.ndarray) -> tuple[float, float]:
    """Peak and RMS amplitude of one block."""
    if samples.size == 0:
        return 0.0, 0.0
    peak = float(np.max(np.abs(samples)))
    rms = float(np.sqrt(np.mean(np.square(samples, dtype=np.float64))))
    return peak, rms


def analyze_audio(samples: np.ndarray, sample_rate: int) -> AudioAnalysis:
    total = int(samples.size)
    if total == 0:
        return AudioAnalysis(0.0, 0.0, 0, 0, 0.0, -math.inf, 0.0)
    peak, rms = block_levels(samples)
    non_zero = int(np.count_nonzero(np.abs(samples) > SILENCE_FLOOR))
    return AudioAnalysis(
        max_amplitude=peak,
        rms_level=rms,
        non_zero_samples=non_zero,
        total_samples=total,
        non_zero_percentage=non_zero / total * 100.0,
        db_level=20.0 * math.log10(rms) if rms > 0 else -math.inf,
        duration_s=total / float(sample_rate),
    )


def float_to_int16(samples: np.ndarray) -> np.ndarray:
    """Clamp to [-1, 1] and scale by 32768 below zero, 32767 otherwise."""
    clipped = np.clip(np.asarray(samples, dtype=np.float32), -1.0, 1.0)
    scaled = np.where(clipped < 0, clipped * 32768.0, clipped * 32767.0)
    return scaled.astype(np.int16)


def pcm16_bytes(samples: np.ndarray) -> bytes:
    return float_to_int16(samples).astype("<i2").tobytes()


def resample(samples: np.ndarray, original_rate: int, target_rate: int) -> np.ndarray:
    """Nearest-neighbour rate conversion by index scaling, no anti-alias filter.

    Output length is ``floor(L * target / original)`` and output ``i`` is input
    ``floor(i * original / target)``. Integer arithmetic keeps both exact.
    """
    if original_rate == target_rate:
        return samples
    new_length = (len(samples) * target_rate) // original_rate
    indices = (np.arange(new_length, dtype=np.int64) * original_rate) // target_rate
    return samples[indices]


def encode_mp3(
    samples: np.ndarray,
    sample_rate: int,
    bitrate_kbps: int = 128,
    frame_samples: int = MP3_FRAME_SAMPLES,
) -> bytes:
    """Encode mono float samples to MP3 in fixed-size frames, then flush."""
    if lameenc is None:
        raise EncodingError("lameenc is not installed")
    pcm = float_to_int16(samples)
    try:
        encoder = lameenc.Encoder()
        encoder.set_bit_rate(bitrate_kbps)
        encoder.set_in_sample_rate(sample_rate)
        encoder.set_channels(1)
        encoder.set_quality(2)
        out = bytearray()
        for start in range(0, len(pcm), frame_samples):
            chunk = pcm[start:start + frame_samples]
            out.extend(encoder.encode(chunk.tobytes()))
        out.extend(encoder.flush())
    except Exception as exc:
        raise EncodingError(f"MP3 encoding failed: {exc}") from exc
    logger.info("MP3 encoded: %.2f KB from %d samples", len(out) / 1024, len(pcm))
    return bytes(out)
