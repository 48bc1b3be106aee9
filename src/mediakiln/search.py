"""
Quality-for-size search for image encodes.

Binary search over the integer quality scale [0, 100], keeping the best encode
that lands at or under the target byte size.
"""

from typing import Optional

from mediakiln.errors import UnsupportedFormatError
from mediakiln.events import EventLog
from mediakiln.imaging import ImageCodec
from mediakiln.models import SearchResult, SearchTrial

MIN_QUALITY = 0
MAX_QUALITY = 100


def _kb(size: int) -> str:
    return f"{size / 1024:.1f}"


async def search_quality_for_size(
    codec: ImageCodec,
    pixels: bytes,
    width: int,
    height: int,
    target_bytes: int,
    slack: float = 10.0,
    iterations: int = 10,
    events: Optional[EventLog] = None,
) -> SearchResult:
    """
    Find the highest quality whose encode fits under target_bytes.

    A trial within slack percent under the target is accepted immediately.
    Otherwise the search runs until the quality range collapses or the
    iteration budget is spent, and returns the largest trial that fit. If no
    trial fit, one last encode at quality 0 is returned flagged as degraded.

    At most iterations + 1 encodes are made.

    Raises:
        UnsupportedFormatError: the codec is lossless (quality has no effect).
        ValueError: iterations < 1 or target_bytes <= 0.
    """
    if codec.format.lossless:
        raise UnsupportedFormatError(f"{codec.format.label} is lossless; target size is not supported")
    if iterations < 1:
        raise ValueError("iterations must be >= 1")
    if target_bytes <= 0:
        raise ValueError("target size must be > 0")

    events = events or EventLog()
    tolerance = target_bytes * slack / 100.0
    lo, hi = MIN_QUALITY, MAX_QUALITY
    trials = []
    best: Optional[SearchResult] = None

    for i in range(1, iterations + 1):
        if hi - lo < 1:
            events.info("Converged: quality range is too small")
            break

        # Round half up
        mid = (lo + hi + 1) // 2
        data = await codec.encode(pixels, width, height, mid)
        size = len(data)
        accepted = size <= target_bytes
        trials.append(SearchTrial(quality=mid, size=size, accepted=accepted))
        events.info(f"Iteration #{i}: quality={mid}, size={_kb(size)} KB")

        if not accepted:
            hi = mid
            continue

        if best is None or size > best.size:
            best = SearchResult(quality=mid, data=data, trials=trials)
        lo = mid

        if target_bytes - size < tolerance:
            events.info(f"Success: target size reached within {slack:g}% slack")
            return SearchResult(quality=mid, data=data, trials=trials, within_slack=True)

    if best is not None:
        events.info(f"Finished: using best result found ({_kb(best.size)} KB)")
        return best

    data = await codec.encode(pixels, width, height, MIN_QUALITY)
    trials.append(SearchTrial(quality=MIN_QUALITY, size=len(data), accepted=len(data) <= target_bytes))
    events.error("Warning: Could not get under target. Using lowest quality result.")
    return SearchResult(quality=MIN_QUALITY, data=data, trials=trials, degraded=True)
