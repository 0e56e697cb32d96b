#!/usr/bin/env python3
"""
Tests of heap pool layouts built from allocation histograms.
The partition search is checked against an exhaustive search over all
ways to split small random histograms.
"""
import random
import itertools

import pytest

from heap_optimizer import (
    PartitionSearch, coalesce, empty_layout, group_fragmentation, optimize, ratios, render_pools
)
from heap_pools import pools_size
from layout_types import ALIGN, CapacityError

HISTOGRAM = {4: 10, 8: 5, 12: 2, 64: 1}


def brute_force_fragmentation(entries, groups):
    best = None
    for cuts in itertools.combinations(range(1, len(entries)), groups - 1):
        bounds = (0,) + cuts + (len(entries),)
        frag = sum(group_fragmentation(entries[a:b]) for a, b in zip(bounds, bounds[1:]))
        if best is None or frag < best:
            best = frag
    return best


def test_coalesce_merges_aligned_sizes():
    assert coalesce({1: 2, 3: 1, 4: 5, 8: 1}) == [(4, 8), (8, 1)]
    assert coalesce({0: 3, 6: 0, 10: 1}) == [(12, 1)]
    assert coalesce({}) == []


@pytest.mark.parametrize("pools, expected", [(1, 984), (2, 100), (3, 20), (4, 0), (5, 0)])
def test_optimize_fragmentation(pools, expected):
    layout, frag = optimize(HISTOGRAM, 2048, pools)
    assert frag == expected
    assert len(layout) == min(pools, len(HISTOGRAM))


def test_optimize_groups_and_extends():
    frag, base = PartitionSearch(coalesce(HISTOGRAM)).solve(0, 2)
    assert frag == 100
    assert base == [(12, 17), (64, 1)]

    layout, _ = optimize(HISTOGRAM, 1024, 2)
    assert [block for block, _ in layout] == [12, 64]
    assert layout[0][1] >= 17
    assert layout[1][1] >= 1
    assert pools_size(layout) <= 1024
    assert 1024 - pools_size(layout) < 12


@pytest.mark.parametrize("seed", range(20))
def test_partition_search_matches_exhaustive_search(seed):
    rng = random.Random(seed)
    sizes = rng.sample(range(1, 200), rng.randint(1, 8))
    histogram = {size: rng.randint(1, 20) for size in sizes}
    entries = coalesce(histogram)

    for groups in range(1, len(entries) + 1):
        frag, pools = PartitionSearch(entries).solve(0, groups)
        assert frag == brute_force_fragmentation(entries, groups)
        assert len(pools) == groups
        assert sum(count for _, count in pools) == sum(count for _, count in entries)


@pytest.mark.parametrize("seed", range(5))
def test_more_pools_never_fragment_more(seed):
    rng = random.Random(seed)
    histogram = {rng.randint(1, 300): rng.randint(1, 10) for _ in range(12)}
    frags = [optimize(histogram, 256 * 1024, pools)[1] for pools in range(1, 10)]
    print(f"seed {seed}: {frags}")
    assert all(a >= b for a, b in zip(frags, frags[1:]))


def test_optimize_rejects_small_heap():
    with pytest.raises(CapacityError):
        optimize(HISTOGRAM, 100, 4)
    # 168 bytes are used, but one pool would waste 984 more
    with pytest.raises(CapacityError):
        optimize(HISTOGRAM, 200, 1)


def test_optimize_rejects_invalid_input():
    with pytest.raises(ValueError):
        optimize(HISTOGRAM, 1024, 0)
    with pytest.raises(ValueError):
        optimize({}, 1024, 4)


def test_ratios():
    assert ratios(1) == [1.0]
    weights = ratios(5)
    assert sum(weights) == pytest.approx(1.0)
    assert weights == pytest.approx(list(reversed(weights)))
    assert max(weights) == weights[2]
    assert weights[0] == pytest.approx(weights[2] / 4)


def test_empty_layout():
    layout = empty_layout(4096, 8)
    blocks = [block for block, _ in layout]
    assert blocks[0] == 4
    assert blocks[-1] == 204
    assert all(a < b for a, b in zip(blocks, blocks[1:]))
    assert all(block % ALIGN == 0 for block in blocks)
    assert pools_size(layout) == 4096

    assert empty_layout(4096, 1) == [(4, 1024)]


def test_render_pools_skips_empty_pools():
    assert render_pools([(4, 256), (8, 0), (64, 16)]) == {
        "size": "2K",
        "pools": [{"block": "4", "count": 256}, {"block": "64", "count": 16}],
    }


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
