from __future__ import annotations
from typing import Iterable
from ..domain.models import ActiveRange, BlockRange

def plan_chunks(start_block: int, end_block: int, step: int) -> list[BlockRange]:
    out: list[BlockRange] = []
    b = start_block
    while b <= end_block:
        fb, tb = b, min(end_block, b + step - 1)
        out.append(BlockRange(fb, tb))
        b = tb + 1
    return out

def merge_intervals(intervals: list[tuple[int,int]]) -> list[tuple[int,int]]:
    if not intervals: return []
    intervals = sorted(intervals)
    merged: list[list[int]] = [[intervals[0][0], intervals[0][1]]]
    for s, e in intervals[1:]:
        ms, me = merged[-1]
        if s <= me + 1: merged[-1][1] = max(me, e)
        else: merged.append([s, e])
    return [(s, e) for s, e in merged]

def cluster_block_numbers(blocks: Iterable[int], merge_gap: int) -> list[ActiveRange]:
    """
    Consolidate discrete block numbers into ranges. Consecutive sorted blocks
    whose gap is <= merge_gap share a range.
    """
    bns = sorted(set(blocks))
    if not bns: return []
    out: list[ActiveRange] = []
    start = end = bns[0]
    for b in bns[1:]:
        if b - end <= merge_gap:
            end = b
        else:
            out.append(ActiveRange(start, end))
            start = end = b
    out.append(ActiveRange(start, end))
    return out
