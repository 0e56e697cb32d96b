import logging
from typing import List, Sequence, Tuple

from layout_types import CapacityError, Heap, format_size
from proportional import ProportionalShare

logger = logging.getLogger(__name__)


def size_pools(heap: Heap, name: str) -> None:
    """Assign a concrete block count to every pool of a calculated heap.

    Pools are sorted by block size. Fixed counts are taken first, the rest
    of ``heap.fixed_size`` is shared between proportional pools, and bytes
    left over by rounding go to the biggest pools that can still hold a
    whole block.
    """
    heap.pools.sort(key=lambda pool: pool.block)
    fixed_size = sum(pool.block * pool.count.value for pool in heap.pools if pool.count.is_fixed)
    if fixed_size > heap.fixed_size:
        raise CapacityError(f"heap.{name}", heap.fixed_size, fixed_size, "all pools")
    flexible_size = heap.fixed_size - fixed_size

    share = ProportionalShare(
        flexible_size,
        [pool.count.fraction for pool in heap.pools if pool.count.is_proportional]
    )
    for pool in heap.pools:
        if pool.count.is_fixed:
            pool.fixed_count = pool.count.value
        else:
            pool.fixed_count = share.take(pool.count.fraction, pool.block, flexible_size // pool.block)
            flexible_size -= pool.fixed_count * pool.block

    counts = [pool.fixed_count for pool in heap.pools]
    flexible_size = add_up_to_size([pool.block for pool in heap.pools], counts, flexible_size)
    for pool, count in zip(heap.pools, counts):
        pool.fixed_count = count

    if flexible_size:
        logger.warning("heap.%s: %d bytes are smaller than the smallest block and stay unused",
                       name, flexible_size)
    logger.debug("heap.%s: %s", name, ", ".join(
        f"{format_size(pool.block)} x {pool.fixed_count}" for pool in heap.pools))


def add_up_to_size(blocks: Sequence[int], counts: List[int], free: int) -> int:
    """Spend ``free`` bytes on whole blocks, starting from the biggest pool.

    ``counts`` is updated in place; returns the bytes that remain.
    """
    for i in reversed(range(len(blocks))):
        add = free // blocks[i]
        counts[i] += add
        free -= add * blocks[i]
    return free


def pools_size(pools: Sequence[Tuple[int, int]]) -> int:
    return sum(block * count for block, count in pools)
