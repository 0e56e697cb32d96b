from enum import Enum
from typing import Any, Dict, Iterable, List, Tuple, Union
from dataclasses import dataclass

from layout_types import TraceHistogram, format_size


class TraceError(Exception):
    """Raised when a heap trace does not describe a possible allocation history"""
    pass


class TraceEventType(Enum):
    ALLOC = "alloc"
    DEALLOC = "dealloc"
    GROW_IN_PLACE = "grow_in_place"
    SHRINK_IN_PLACE = "shrink_in_place"


@dataclass
class TraceEvent:
    """One decoded allocator event; ``new_size`` is only set for in-place resizes"""
    event_type: TraceEventType
    size: int
    new_size: int = 0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'TraceEvent':
        return cls(TraceEventType(data["type"]), int(data["size"]), int(data.get("new_size", 0)))


@dataclass
class TraceEntry:
    """Per-size statistics: blocks alive now, at most, and allocated in total"""
    current: int = 0
    max: int = 0
    total: int = 0


class HeapTrace:
    def __init__(self, heap_size: int):
        self.heap_size = heap_size
        self.entries: Dict[int, TraceEntry] = {}

    def alloc(self, size: int) -> None:
        if size > self.heap_size:
            raise TraceError(f"trace is corrupted: allocation of {size} bytes exceeds "
                             f"the heap size {self.heap_size}")
        entry = self.entries.setdefault(size, TraceEntry())
        entry.current += 1
        entry.total += 1
        if entry.max < entry.current:
            entry.max = entry.current

    def dealloc(self, size: int) -> None:
        entry = self.entries.get(size)
        if entry is None or entry.current == 0:
            raise TraceError(f"trace is corrupted: deallocation of {size} bytes without allocation")
        entry.current -= 1

    def resize(self, size: int, new_size: int) -> None:
        self.dealloc(size)
        self.alloc(new_size)

    def record(self, event: TraceEvent) -> None:
        if event.event_type == TraceEventType.ALLOC:
            self.alloc(event.size)
        elif event.event_type == TraceEventType.DEALLOC:
            self.dealloc(event.size)
        else:
            self.resize(event.size, event.new_size)

    def record_all(self, events: Iterable[Union[TraceEvent, Dict[str, Any]]]) -> None:
        for event in events:
            if isinstance(event, dict):
                event = TraceEvent.from_dict(event)
            self.record(event)

    def is_empty(self) -> bool:
        return not self.entries

    def histogram(self) -> TraceHistogram:
        """Block size -> maximum number of blocks alive at once, in size order"""
        return {size: self.entries[size].max for size in sorted(self.entries)}

    def max_load(self) -> int:
        return sum(size * entry.max for size, entry in self.entries.items())

    def get_usage_stats(self) -> Dict[str, Any]:
        rows: List[Tuple[int, int, int]] = [
            (size, self.entries[size].max, self.entries[size].total)
            for size in sorted(self.entries)
        ]
        max_load = self.max_load()
        return {
            "heap_size": self.heap_size,
            "rows": rows,
            "max_load": max_load,
            "max_load_percent": max_load / self.heap_size * 100 if self.heap_size else 0.0,
        }

    def print_usage_summary(self):
        stats = self.get_usage_stats()
        print(f"{' HEAP USAGE ':=^60}")
        print(f"{'Block Size':>12} {'Max Load':>12} {'Total Allocations':>20}")
        for size, max_count, total in stats["rows"]:
            print(f"{format_size(size):>12} {max_count:>12} {total:>20}")
        print()
        print(f"Maximum heap load: {stats['max_load']} / {stats['max_load_percent']:.2f}%")
