from typing import Callable

from layout_types import (
    ALIGN, MIN_STREAM_BUFFER_SIZE, AlignmentError, CoherenceError, ConstraintError, format_size
)


def validate(layout) -> None:
    """Raise a LayoutError describing the first problem found in the layout"""
    validate_coherence(layout)
    validate_stream_sizes(layout)
    validate_addresses(layout)


def validate_coherence(layout) -> None:
    """Every section must point to a declared RAM region"""
    if layout.data.ram not in layout.ram:
        raise CoherenceError(f"data.ram points to an unknown RAM region {layout.data.ram}", "data.ram")
    for name, stack in layout.stack.items():
        if stack.ram not in layout.ram:
            raise CoherenceError(f"stack.{name}.ram points to an unknown RAM region {stack.ram}",
                                 f"stack.{name}.ram")
    for name, stream in layout.stream.items():
        if stream.ram not in layout.ram:
            raise CoherenceError(f"stream.{name}.ram points to an unknown RAM region {stream.ram}",
                                 f"stream.{name}.ram")
    for name, heap in layout.heap.items():
        if heap.ram not in layout.ram:
            raise CoherenceError(f"heap.{name}.ram points to an unknown RAM region {heap.ram}",
                                 f"heap.{name}.ram")


def validate_stream_sizes(layout) -> None:
    for name, stream in layout.stream.items():
        if stream.size < MIN_STREAM_BUFFER_SIZE:
            raise ConstraintError(
                f"stream.{name}.size is set to {format_size(stream.size)}, which is less than "
                f"the minimum possible size {format_size(MIN_STREAM_BUFFER_SIZE)}",
                f"stream.{name}.size"
            )


def validate_addresses(layout) -> None:
    for name, flash in layout.flash.items():
        validate_address(flash.origin, False, lambda: f"flash.{name}.origin")
        validate_address(flash.size, True, lambda: f"flash.{name}.size")
    for name, ram in layout.ram.items():
        validate_address(ram.origin, False, lambda: f"ram.{name}.origin")
        validate_address(ram.size, True, lambda: f"ram.{name}.size")
    if layout.data.padding is not None:
        validate_address(layout.data.padding, False, lambda: "data.padding")
    for name, stack in layout.stack.items():
        if stack.size.is_fixed:
            validate_address(stack.size.value, True, lambda: f"stack.{name}.size")
    for name, stream in layout.stream.items():
        validate_address(stream.size, True, lambda: f"stream.{name}.size")
    for name, heap in layout.heap.items():
        if heap.size.is_fixed:
            validate_address(heap.size.value, True, lambda: f"heap.{name}.size")
        for i, pool in enumerate(heap.pools):
            validate_address(pool.block, True, lambda: f"heap.{name}.pools[{i}].block")


def validate_address(value: int, non_zero: bool, path: Callable[[], str]) -> None:
    """Check that ``value`` is word-aligned and, if ``non_zero`` is set, positive.

    ``path`` is only called to build the error message.
    """
    remainder = value % ALIGN
    if remainder != 0:
        name = path()
        raise AlignmentError(f"{name} is not word-aligned ({value} % {ALIGN} == {remainder})", name)
    if non_zero and value == 0:
        name = path()
        raise AlignmentError(f"{name} must be greater than zero", name)
