"""
Size and compression estimation.

Predicts output size from bitrate, duration and codec efficiency without
touching the media. Pure arithmetic: no I/O, deterministic.
"""

from typing import Union

from .video_config import (
    BASELINE_BITRATE,
    BASELINE_FORMAT,
    COMPRESSION_FACTORS,
    MAX_FILE_SIZE,
)

Number = Union[int, float]


def estimate_size(width: Number, height: Number, duration_seconds: Number,
                  codec: str, bitrate_kbps: Number) -> float:
    """
    Estimate the delivered file size in MB.

    Size is bitrate x duration, scaled by how efficiently the codec spends
    those bits relative to H.264. Width and height are accepted for
    signature parity with the encoder settings but do not enter the model:
    the bitrate already encodes the resolution budget.

    Args:
        width: Target width in pixels
        height: Target height in pixels
        duration_seconds: Playback duration
        codec: One of the known codecs (av1, vp9, h264, h265)
        bitrate_kbps: Target video bitrate

    Returns:
        Estimated size in megabytes, rounded to 2 decimals
    """
    for label, value in (('width', width), ('height', height),
                         ('duration_seconds', duration_seconds), ('bitrate_kbps', bitrate_kbps)):
        if value < 0:
            raise ValueError(f"{label} must be non-negative, got {value}")

    try:
        factor = COMPRESSION_FACTORS[codec]
    except KeyError:
        raise ValueError(f"Unknown codec for size estimation: {codec}") from None

    base_size_mb = (bitrate_kbps * duration_seconds) / (8 * 1000)  # kbps -> MB
    return round(base_size_mb * factor, 2)


def baseline_size(width: Number, height: Number, duration_seconds: Number) -> float:
    """Size of the unoptimized reference encode (H.264 at the baseline bitrate)."""
    return estimate_size(width, height, duration_seconds, BASELINE_FORMAT, BASELINE_BITRATE)


def compression_ratio(original_size: Number, optimized_size: Number) -> float:
    """Fraction of the original size saved; 0 when the original is empty."""
    if original_size == 0:
        return 0.0
    return (original_size - optimized_size) / original_size


def size_budget(profile: str) -> int:
    try:
        return MAX_FILE_SIZE[profile]
    except KeyError:
        raise ValueError(f"Unknown size profile: {profile} (must be one of: {', '.join(MAX_FILE_SIZE)})") from None


def fits_budget(size_mb: Number, profile: str) -> bool:
    return size_mb <= size_budget(profile)
