import logging
from typing import List, Optional
from dataclasses import dataclass

from heap_pools import size_pools
from layout_types import (
    ALIGN, HEAP_POOL_SIZE, HEAP_PREFIX_SIZE, STREAM_RUNTIME_SIZE,
    CapacityError, FixedSection, Region, Section, format_addr, format_size
)
from proportional import ProportionalShare, align_up

logger = logging.getLogger(__name__)


@dataclass
class RegionCursor:
    """Placement state of a single RAM region.

    Fixed-size consumers are placed from one end of the region and
    proportional ones from the other, so the two pointers move towards each
    other and meet once the region is fully partitioned.
    """
    fixed_first: bool
    fixed_pointer: int
    flexible_pointer: int

    @classmethod
    def for_region(cls, region: Region, fixed_first: bool) -> 'RegionCursor':
        if fixed_first:
            return cls(fixed_first, region.origin, region.end)
        return cls(fixed_first, region.end, region.origin)

    def place_fixed(self, size: int) -> int:
        """Reserve ``size`` bytes at the fixed end and return their origin"""
        if self.fixed_first:
            origin = self.fixed_pointer
            self.fixed_pointer += size
        else:
            self.fixed_pointer -= size
            origin = self.fixed_pointer
        return origin

    def place_flexible(self, size: int) -> int:
        """Reserve ``size`` bytes at the flexible end and return their origin"""
        if self.fixed_first:
            self.flexible_pointer -= size
            origin = self.flexible_pointer
        else:
            origin = self.flexible_pointer
            self.flexible_pointer += size
        return origin

    def unclaimed(self) -> int:
        return abs(self.flexible_pointer - self.fixed_pointer)


class LayoutCalculator:
    """Turns the declared sections of a layout into concrete addresses.

    Every RAM region is partitioned independently. The first stack declared
    in a region decides the direction: when it has a fixed size, fixed
    sections grow up from the region origin and proportional ones grow down
    from its end; otherwise the other way around.
    """

    def __init__(self, layout):
        self.layout = layout

    def calculate(self, data_size: Optional[int] = None) -> None:
        """Calculate the layout in place.

        ``data_size`` is the size of the DATA and BSS sections combined. When
        it is unknown the data section takes all the space not claimed by
        fixed sections of its region.
        """
        if data_size is not None:
            data_size = align_up(data_size + (self.layout.data.padding or 0))
        self._calculate_prefixes()
        for name, ram in self.layout.ram.items():
            self._calculate_region(name, ram, data_size)
        for name, heap in self.layout.heap.items():
            size_pools(heap, name)

    def _calculate_prefixes(self):
        for stream in self.layout.stream.values():
            stream.prefix_size = STREAM_RUNTIME_SIZE
        for heap in self.layout.heap.values():
            heap.prefix_size = HEAP_PREFIX_SIZE + HEAP_POOL_SIZE * len(heap.pools)

    def _calculate_region(self, name: str, ram: Region, data_size: Optional[int]):
        stacks = [s for s in self.layout.stack.values() if s.ram == name]
        streams = [s for s in self.layout.stream.values() if s.ram == name]
        heaps = [h for h in self.layout.heap.values() if h.ram == name]

        fixed_first = bool(stacks) and stacks[0].size.is_fixed
        fixed_size = (
            sum(s.size.value + s.prefix_size for s in stacks if s.size.is_fixed)
            + sum(s.total_size for s in streams)
            + sum(h.size.value for h in heaps if h.size.is_fixed)
            + sum(h.prefix_size for h in heaps)
        )
        if fixed_size > ram.size:
            raise CapacityError(f"ram.{name}", ram.size, fixed_size)
        flexible_size = ram.size - fixed_size

        region_data_size = None
        if self.layout.data.ram == name:
            region_data_size = flexible_size if data_size is None else data_size
            if region_data_size > flexible_size:
                raise CapacityError(f"ram.{name}", flexible_size, region_data_size,
                                    "the data section after all fixed sections")
            flexible_size -= region_data_size

        share = ProportionalShare(
            flexible_size,
            [s.size.fraction for s in stacks + heaps if s.size.is_proportional]
        )
        cursor = RegionCursor.for_region(ram, fixed_first)

        self._place_sections(stacks, cursor, share)
        self._place_streams(streams, cursor)
        if region_data_size is not None:
            self.layout.data.origin = cursor.place_fixed(region_data_size)
            self.layout.data.size = region_data_size
        self._place_sections(heaps, cursor, share)

        logger.debug("ram.%s: %s fixed, %s flexible, fixed sections %s",
                     name, format_size(fixed_size), format_size(flexible_size),
                     "first" if fixed_first else "last")
        unclaimed = cursor.unclaimed()
        if unclaimed:
            logger.warning("ram.%s: %d bytes are not claimed by any section", name, unclaimed)

    def _place_sections(self, sections: List[Section], cursor: RegionCursor, share: ProportionalShare):
        for section in sections:
            if section.size.is_fixed:
                section.fixed_size = section.size.value
                section.origin = cursor.place_fixed(section.total_size)
            else:
                section.fixed_size = share.take(section.size.fraction, ALIGN) * ALIGN
                section.origin = cursor.place_flexible(section.total_size)
            logger.debug("section at %s: %d + %d bytes", format_addr(section.origin),
                         section.prefix_size, section.fixed_size)

    def _place_streams(self, streams: List[FixedSection], cursor: RegionCursor):
        for stream in streams:
            stream.origin = cursor.place_fixed(stream.total_size)


def calculate(layout, data_size: Optional[int] = None) -> None:
    LayoutCalculator(layout).calculate(data_size)
