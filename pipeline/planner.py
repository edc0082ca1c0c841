from __future__ import annotations

import math
from typing import Sequence

from pipeline.models import ChunkPolicy, ChunkSpec

SPLIT_THRESHOLD_MINUTES = 5.0

# (minutes above which the tier applies, chunk length in seconds). Longer audio gets shorter chunks.
DEFAULT_CHUNK_TIERS: tuple[tuple[float, float], ...] = (
    (30.0, 60.0),
    (15.0, 120.0),
    (5.0, 180.0),
)

# Floating point slack when counting chunks, e.g. 2400.0000001 / 60 must stay 40.
_EPSILON = 1e-9

# A trailing remainder shorter than this share of a chunk joins the chunk before it.
MIN_TAIL_FRACTION = 0.05


def select_chunk_policy(
    minutes: float,
    tiers: Sequence[tuple[float, float]] = DEFAULT_CHUNK_TIERS,
    threshold_minutes: float = SPLIT_THRESHOLD_MINUTES,
) -> ChunkPolicy:
    """Decide between whole-file and chunked processing for an estimated duration."""
    if minutes <= threshold_minutes:
        return ChunkPolicy(split=False, chunk_seconds=minutes * 60)

    ordered = sorted(tiers, key=lambda tier: tier[0], reverse=True)
    for above, chunk_seconds in ordered:
        if minutes > above:
            return ChunkPolicy(split=True, chunk_seconds=chunk_seconds)
    # Above the split threshold but below every tier: use the longest chunk length on offer.
    return ChunkPolicy(split=True, chunk_seconds=max(seconds for _, seconds in tiers))


def chunk_count(total: float, chunk: float) -> int:
    """Number of chunks covering ``total``, with a sliver of a last chunk folded into its neighbour.

    Works on seconds or on sample counts alike.
    """
    if total <= 0 or chunk <= 0:
        return 0
    count = max(1, math.ceil(total / chunk - _EPSILON))
    tail = total - (count - 1) * chunk
    if count > 1 and tail < chunk * MIN_TAIL_FRACTION:
        count -= 1
    return count


def build_plan(total_seconds: float, chunk_seconds: float) -> list[ChunkSpec]:
    """Cover ``[0, total_seconds)`` with contiguous, 1-based chunk ranges."""
    count = chunk_count(total_seconds, chunk_seconds)
    plan: list[ChunkSpec] = []
    for i in range(count):
        start = i * chunk_seconds
        end = total_seconds if i == count - 1 else (i + 1) * chunk_seconds
        plan.append(ChunkSpec(index=i + 1, start=start, end=end))
    return plan
