"""
Bitrate budgeting for size-targeted video encodes.

Sizes use 1 MB = 8192 kilobits (1024 KB of 8 kilobits each) throughout.
"""

import math
from dataclasses import dataclass

KILOBITS_PER_MB = 8192
# 5% of the budget is kept back for container and stream overhead
VIDEO_SHARE = 0.95


@dataclass
class BitrateBudget:
    """Per-track bitrate targets for a two-pass encode."""

    video_kbps: int = 0
    audio_kbps: int = 0
    available_kbps: float = 0.0
    min_possible_mb: float = 0.0
    is_impossible: bool = False


def allocate_bitrate(target_mb: float, duration: float, audio_kbps: int, video_floor_kbps: int) -> BitrateBudget:
    """
    Split a size budget into video and audio bitrates.

    The video target is never allowed under the floor, even when that means the
    output will overshoot the requested size; is_impossible only flags that case.

    Args:
        target_mb: Requested output size in megabytes.
        duration: Input duration in seconds (<= 0 gives an all-zero budget).
        audio_kbps: Audio bitrate, 0 when muted.
        video_floor_kbps: Minimum acceptable video bitrate.

    Returns:
        BitrateBudget with the targets and the advisory impossibility flag.
    """
    if duration <= 0:
        return BitrateBudget()

    available = target_mb * KILOBITS_PER_MB / duration
    raw_video = math.floor((available - audio_kbps) * VIDEO_SHARE)
    video = max(raw_video, video_floor_kbps)
    min_possible = (video_floor_kbps + audio_kbps) * duration / KILOBITS_PER_MB

    return BitrateBudget(
        video_kbps=int(video),
        audio_kbps=audio_kbps,
        available_kbps=available,
        min_possible_mb=min_possible,
        is_impossible=target_mb < min_possible,
    )


def estimate_size_mb(video_kbps: int, audio_kbps: int, duration: float) -> float:
    """Expected output size for the given bitrates, before container overhead."""
    if duration <= 0:
        return 0.0
    return (video_kbps + audio_kbps) * duration / KILOBITS_PER_MB
