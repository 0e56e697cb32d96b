"""
Heap pool layouts derived from allocation traces.

A pool layout groups the observed allocation sizes into contiguous ranges;
every allocation of a range is served by a block of the range's largest
size. The bytes lost this way are the fragmentation of the layout, which
``optimize`` minimizes for a given number of pools.
"""
import logging
from typing import Any, Dict, List, Optional, Tuple

from heap_pools import add_up_to_size, pools_size
from layout_types import ALIGN, CapacityError, TraceHistogram, format_size
from proportional import ProportionalShare, align_up, round_half_away

logger = logging.getLogger(__name__)

# Weight of the middle pools relative to the outermost ones
SLOPE = 4.0
# Exponent of the block size curve of a bootstrap layout
BLOCK_CURVE = 2.75
# The biggest bootstrap block is this fraction of the heap
MAX_BLOCK_DIVISOR = 20

Pool = Tuple[int, int]


def coalesce(histogram: TraceHistogram) -> List[Pool]:
    """Align allocation sizes to words and merge the ones that become equal"""
    entries: List[Pool] = []
    for size in sorted(histogram):
        count = histogram[size]
        if size == 0 or count == 0:
            continue
        block = align_up(size)
        if entries and entries[-1][0] == block:
            entries[-1] = (block, entries[-1][1] + count)
        else:
            entries.append((block, count))
    return entries


def group_fragmentation(entries: List[Pool]) -> int:
    """Bytes wasted when all ``entries`` are served by the largest of them"""
    max_block = entries[-1][0]
    return sum((max_block - block) * count for block, count in entries[:-1])


def merge_group(entries: List[Pool]) -> Pool:
    return entries[-1][0], sum(count for _, count in entries)


class PartitionSearch:
    """Branch-and-bound search for the least fragmented split of sorted entries.

    ``solve(start, groups)`` splits ``entries[start:]`` into ``groups``
    contiguous ranges. Each candidate first range is tried in turn, and the
    loop stops as soon as the first range alone wastes at least as much as
    the best complete split found so far. Solved sub-problems are kept, so
    every suffix is only searched once per group count.
    """

    def __init__(self, entries: List[Pool]):
        self.entries = entries
        self.solved: Dict[Tuple[int, int], Tuple[int, List[Pool]]] = {}

    def solve(self, start: int, groups: int) -> Tuple[int, List[Pool]]:
        key = (start, groups)
        if key in self.solved:
            return self.solved[key]
        entries = self.entries[start:]
        if groups == 1:
            result = (group_fragmentation(entries), [merge_group(entries)])
        else:
            best: Optional[Tuple[int, List[Pool]]] = None
            for i in range(len(entries) - groups + 1):
                head = entries[:i + 1]
                head_frag = group_fragmentation(head)
                if best is not None and head_frag >= best[0]:
                    break
                rest_frag, rest_pools = self.solve(start + i + 1, groups - 1)
                total = head_frag + rest_frag
                if best is None or total < best[0]:
                    best = (total, [merge_group(head)] + rest_pools)
            result = best
        self.solved[key] = result
        return result


def ratios(n: int) -> List[float]:
    """Weights of ``n`` pools: heaviest in the middle, ``1 / SLOPE`` of that at both ends"""
    if n == 1:
        return [1.0]
    weights = [
        (1.0 / SLOPE) + (1.0 - (1.0 / SLOPE)) * (1.0 - (1.0 - 2.0 * (i / (n - 1))) ** 2)
        for i in range(n)
    ]
    total = sum(weights)
    return [weight / total for weight in weights]


def extend(pools: List[Pool], size: int) -> List[Pool]:
    """Grow the pools until they take all ``size`` bytes"""
    blocks = [block for block, _ in pools]
    counts = [count for _, count in pools]
    free = size - pools_size(pools)
    share = ProportionalShare(free, ratios(len(pools)))
    for i, (block, ratio) in enumerate(zip(blocks, ratios(len(pools)))):
        add = share.take(ratio, block, free // block)
        counts[i] += add
        free -= add * block
    add_up_to_size(blocks, counts, free)
    return list(zip(blocks, counts))


def optimize(histogram: TraceHistogram, size: int, pools: int) -> Tuple[List[Pool], int]:
    """Build a pool layout of ``size`` bytes from an allocation histogram.

    Returns the ``(block, count)`` pairs in ascending block order and the
    fragmentation of the layout in bytes.
    """
    if pools < 1:
        raise ValueError(f"pool count must be positive, got {pools}")
    entries = coalesce(histogram)
    if not entries:
        raise ValueError("allocation histogram is empty")
    used = pools_size(entries)
    if used > size:
        raise CapacityError("heap", size, used, "all traced allocations")
    if len(entries) < pools:
        logger.info("only %d distinct allocation sizes, reducing pool count from %d",
                    len(entries), pools)
        pools = len(entries)

    frag, layout = PartitionSearch(entries).solve(0, pools)
    if used + frag > size:
        raise CapacityError("heap", size, used + frag, "all traced allocations in pools")
    logger.debug("optimized %d sizes into %d pools, fragmentation %d", len(entries), pools, frag)
    return extend(layout, size), frag


def empty_layout(size: int, pools: int) -> List[Pool]:
    """Generate a bootstrap layout for a heap without any trace"""
    if pools < 1:
        raise ValueError(f"pool count must be positive, got {pools}")
    pool_min = ALIGN
    pool_max = size // MAX_BLOCK_DIVISOR
    blocks = []
    prev_block = 0
    for i in range(pools):
        position = i / (pools - 1) if pools > 1 else 0.0
        block = pool_min + round_half_away(position ** BLOCK_CURVE * (pool_max - pool_min))
        block = align_up(block)
        if block <= prev_block:
            block = prev_block + ALIGN
        blocks.append(block)
        prev_block = block

    counts = []
    free = size
    share = ProportionalShare(size, ratios(pools))
    for block, ratio in zip(blocks, ratios(pools)):
        count = share.take(ratio, block, free // block)
        counts.append(count)
        free -= count * block
    add_up_to_size(blocks, counts, free)
    return list(zip(blocks, counts))


def render_pools(pools: List[Pool]) -> Dict[str, Any]:
    """Heap section document with the given pools; empty pools are skipped"""
    return {
        "size": format_size(pools_size(pools)),
        "pools": [
            {"block": format_size(block), "count": count}
            for block, count in pools if count > 0
        ],
    }
