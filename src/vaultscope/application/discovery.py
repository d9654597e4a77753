"""
Active-range discovery.

Two producers share one output shape, a list of ActiveRange:
- RPC discovery: locate the first and last active block with windowed probes,
  then subdivide that span into chunks and keep the ones confirmed active.
- Indexed discovery: page through a GraphQL index and cluster block numbers.

Every probe window is at most ``max_probe_width`` blocks, so a probe is
provider-safe before RangeProbe's own splitting engages. Search steps are
sequential; each window depends on the previous answer.
"""
from __future__ import annotations

import logging
import time
from typing import Sequence

from ..domain.models import ActiveRange, BlockRange
from ..domain.value_types import Address, Topic0
from ..ports.indexer import IndexedEventSource
from .planning import cluster_block_numbers, plan_chunks
from .probe import RangeProbe

log = logging.getLogger(__name__)


async def find_first(probe: RangeProbe, topic0s: Sequence[Topic0],
                     left: int, right: int, width: int) -> int | None:
    """Lowest block in [left, right] holding a watched event, or None."""
    # coarse: earliest active window, walking forward
    a = left
    while a <= right:
        b = min(a + width - 1, right)
        if await probe.has_activity(BlockRange(a, b), topic0s):
            break
        a = b + 1
    else:
        return None

    # fine: smallest m with activity in [a, m]; [a, hi] always holds activity
    lo, hi = a, b
    while lo < hi:
        mid = (lo + hi) // 2
        if await probe.has_activity(BlockRange(a, mid), topic0s):
            hi = mid
        else:
            lo = mid + 1
    return lo


async def find_last(probe: RangeProbe, topic0s: Sequence[Topic0],
                    left: int, right: int, width: int) -> int | None:
    """Highest block in [left, right] holding a watched event, or None."""
    b = right
    while b >= left:
        a = max(b - width + 1, left)
        if await probe.has_activity(BlockRange(a, b), topic0s):
            break
        b = a - 1
    else:
        return None

    lo, hi = a, b
    while lo < hi:
        mid = (lo + hi + 1) // 2
        if await probe.has_activity(BlockRange(mid, b), topic0s):
            lo = mid
        else:
            hi = mid - 1
    return lo


async def find_activity_boundaries(probe: RangeProbe, topic0s: Sequence[Topic0],
                                   left: int, right: int, width: int) -> ActiveRange | None:
    first = await find_first(probe, topic0s, left, right, width)
    if first is None:
        return None
    last = await find_last(probe, topic0s, first, right, width)
    if last is None or last < first:
        # the provider answered the same span differently between the two searches
        log.warning("inconsistent activity boundaries (first=%d, last=%s), ignoring", first, last)
        return None
    log.info("activity boundaries: %d to %d", first, last)
    return ActiveRange(first, last)


async def subdivide_active_region(probe: RangeProbe, topic0s: Sequence[Topic0],
                                  first: int, last: int, chunk_size: int) -> list[ActiveRange]:
    """Keep only the chunk_size pieces of [first, last] that are confirmed active."""
    ranges: list[ActiveRange] = []
    for chunk in plan_chunks(first, last, chunk_size):
        if await probe.has_activity(chunk, topic0s):
            ranges.append(ActiveRange(chunk.start, chunk.end))
            log.debug("active chunk: %s (%d blocks)", chunk, chunk.span())
    return ranges


async def discover_active_ranges(probe: RangeProbe, topic0s: Sequence[Topic0],
                                 from_block: int, to_block: int,
                                 *, max_probe_width: int, chunk_size: int) -> list[ActiveRange]:
    """An empty list means no activity; that is a valid outcome, not an error."""
    t0 = time.monotonic()
    log.info("discovering activity in %d..%d (%d blocks)", from_block, to_block, to_block - from_block + 1)
    bounds = await find_activity_boundaries(probe, topic0s, from_block, to_block, max_probe_width)
    if bounds is None:
        log.info("no vault activity found in %d..%d", from_block, to_block)
        return []
    ranges = await subdivide_active_region(probe, topic0s, bounds.start, bounds.end, chunk_size)
    log.info("discovery complete in %.2fs: %d active ranges", time.monotonic() - t0, len(ranges))
    return ranges


async def discover_from_index(source: IndexedEventSource, vault: Address, *,
                              merge_gap: int, page_size: int = 1_000,
                              max_pages: int | None = None) -> list[ActiveRange]:
    """Page through an indexed source and cluster its block numbers into ranges."""
    blocks: set[int] = set()
    skip = pages = 0
    while max_pages is None or pages < max_pages:
        page = await source.fetch_page(vault, page_size, skip)
        if not page:
            break
        blocks.update(r.block_number for r in page)
        pages += 1
        skip += page_size
    ranges = cluster_block_numbers(blocks, merge_gap)
    log.info("indexed source: activity in %d blocks, consolidated into %d ranges", len(blocks), len(ranges))
    return ranges
