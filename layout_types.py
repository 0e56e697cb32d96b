import math
from enum import Enum
from typing import Dict, List, Optional, Union
from dataclasses import dataclass, field


# Word size of the target; every origin and non-empty size is a multiple of it
ALIGN = 4

# Runtime metadata placed in front of the memory it manages
HEAP_PREFIX_SIZE = 0
HEAP_POOL_SIZE = 16
STREAM_RUNTIME_SIZE = 12
STREAM_BOOTSTRAP_LENGTH = 16
MIN_STREAM_BUFFER_SIZE = STREAM_BOOTSTRAP_LENGTH + STREAM_RUNTIME_SIZE

U32_MAX = 0xFFFFFFFF

KIB = 1024
MIB = 1024 * 1024


class LayoutError(Exception):
    """Raised when a layout can not be validated or calculated"""

    def __init__(self, message: str, path: Optional[str] = None):
        super().__init__(message)
        self.path = path


class CoherenceError(LayoutError):
    """Raised when a section points to an unknown memory region"""
    pass


class AlignmentError(LayoutError):
    """Raised when an address or a size is not word-aligned, or zero where it must not be"""
    pass


class CapacityError(LayoutError):
    """Raised when fixed consumers do not fit into the available space"""

    def __init__(self, path: str, available: int, required: int, what: str = "all sections"):
        super().__init__(f"{path} size is not enough to store {what} ({available} < {required})", path)
        self.available = available
        self.required = required


class ConstraintError(LayoutError):
    """Raised when a section is smaller than its protocol-imposed minimum"""
    pass


def parse_size(value: Union[int, str]) -> int:
    """Parse a fixed size as written in linker scripts.

    Accepts plain integers and the strings ``"<int>"``, ``"<int>K"``,
    ``"<int>M"``, hexadecimal ``0x...`` and octal ``0...`` literals.
    """
    if isinstance(value, bool):
        raise ValueError(f"invalid memory size: {value!r}")
    if isinstance(value, int):
        result = value
    elif isinstance(value, str):
        text = value.strip()
        mult = 1
        if text.endswith("M"):
            text = text[:-1]
            mult = MIB
        elif text.endswith("K"):
            text = text[:-1]
            mult = KIB
        radix = 10
        if text.startswith("0x") or text.startswith("0X"):
            text = text[2:]
            radix = 16
        elif text.startswith("0") and len(text) > 1:
            text = text[1:]
            radix = 8
        if not text or not text.isalnum():
            raise ValueError(f"invalid memory size: {value!r}")
        try:
            result = int(text, radix) * mult
        except ValueError:
            raise ValueError(f"invalid memory size: {value!r}") from None
    else:
        raise ValueError(f"invalid memory size: {value!r}")
    if not 0 <= result <= U32_MAX:
        raise ValueError(f"memory size out of range: {value!r}")
    return result


def format_size(size: int) -> str:
    """Returns the canonical representation of a fixed size (``4K`` rather than ``4096``)"""
    if size > 0 and size % MIB == 0:
        return f"{size // MIB}M"
    elif size > 0 and size % KIB == 0:
        return f"{size // KIB}K"
    return f"{size}"


def parse_addr(value: Union[int, str]) -> int:
    """Parse a memory address, given either as an integer or as an integer literal string"""
    if isinstance(value, bool):
        raise ValueError(f"invalid memory address: {value!r}")
    if isinstance(value, str):
        try:
            value = int(value.strip(), 0)
        except ValueError:
            raise ValueError(f"invalid memory address: {value!r}") from None
    if not isinstance(value, int) or not 0 <= value <= U32_MAX:
        raise ValueError(f"invalid memory address: {value!r}")
    return value


def format_addr(addr: int) -> str:
    return f"0x{addr:08x}"


class SizeKind(Enum):
    FIXED = "fixed"
    PROPORTIONAL = "proportional"


@dataclass(frozen=True)
class SizeSpec:
    """Either a fixed byte count or a share of the remaining space.

    Proportional values are stored as fractions (``"25%"`` becomes ``0.25``)
    and are only meaningful relative to the other proportional values of the
    same group.
    """
    kind: SizeKind
    value: Union[int, float]

    def __post_init__(self):
        if self.kind == SizeKind.FIXED:
            if not isinstance(self.value, int) or not 0 <= self.value <= U32_MAX:
                raise ValueError(f"invalid fixed memory size: {self.value!r}")
        elif not math.isfinite(self.value) or self.value <= 0:
            raise ValueError(f"invalid relative memory size: {self.value!r}")

    @classmethod
    def fixed(cls, size: int) -> 'SizeSpec':
        return cls(SizeKind.FIXED, size)

    @classmethod
    def proportional(cls, fraction: float) -> 'SizeSpec':
        return cls(SizeKind.PROPORTIONAL, float(fraction))

    @classmethod
    def parse(cls, value: Union[int, str]) -> 'SizeSpec':
        """Parse ``"NN%"`` as a proportional size, anything else as a fixed one"""
        if isinstance(value, str) and value.strip().endswith("%"):
            text = value.strip()[:-1]
            try:
                percent = float(text)
            except ValueError:
                raise ValueError(f"invalid relative memory size: {value!r}") from None
            if not math.isfinite(percent) or percent <= 0:
                raise ValueError(f"invalid relative memory size: {value!r}")
            return cls.proportional(percent / 100.0)
        return cls.fixed(parse_size(value))

    @property
    def is_fixed(self) -> bool:
        return self.kind == SizeKind.FIXED

    @property
    def is_proportional(self) -> bool:
        return self.kind == SizeKind.PROPORTIONAL

    @property
    def fixed_value(self) -> Optional[int]:
        return self.value if self.is_fixed else None

    @property
    def fraction(self) -> Optional[float]:
        return self.value if self.is_proportional else None

    def __str__(self) -> str:
        if self.is_fixed:
            return format_size(self.value)
        return f"{self.value * 100.0:.2f}%"


@dataclass(frozen=True)
class Region:
    """Named contiguous span of flash or RAM"""
    name: str
    origin: int
    size: int

    @property
    def end(self) -> int:
        return self.origin + self.size

    def __str__(self) -> str:
        return f"{self.name} @ {format_addr(self.origin)} ({format_size(self.size)})"


@dataclass
class Section:
    """Stack or heap section inside a RAM region.

    ``origin``, ``fixed_size`` and ``prefix_size`` are filled in by the
    calculator; ``prefix_size`` is runtime metadata placed at ``origin``
    in front of the ``fixed_size`` bytes.
    """
    ram: str
    size: SizeSpec
    origin: int = 0
    fixed_size: int = 0
    prefix_size: int = 0

    @property
    def total_size(self) -> int:
        return self.fixed_size + self.prefix_size


@dataclass
class FixedSection:
    """Stream buffer: always a fixed size, preceded by the stream runtime"""
    ram: str
    size: int
    origin: int = 0
    prefix_size: int = 0

    @property
    def total_size(self) -> int:
        return self.size + self.prefix_size


@dataclass
class DataSection:
    """Combined DATA and BSS section, one per layout"""
    ram: str
    padding: Optional[int] = None
    origin: int = 0
    size: int = 0


@dataclass
class HeapPool:
    block: int
    count: SizeSpec
    fixed_count: int = 0

    @property
    def fixed_size(self) -> int:
        return self.block * self.fixed_count


@dataclass
class Heap(Section):
    pools: List[HeapPool] = field(default_factory=list)

    def pools_size(self) -> int:
        return sum(pool.fixed_size for pool in self.pools)


@dataclass
class Linker:
    """Extra files included at the beginning and at the end of the linker script"""
    include_before: List[str] = field(default_factory=list)
    include_after: List[str] = field(default_factory=list)


# Allocation block size -> maximum number of blocks alive at once
TraceHistogram = Dict[int, int]
