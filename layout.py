import os
import re
import json
import logging
from typing import Any, Dict, List, Optional, Tuple
from dataclasses import dataclass, field

import layout_validator
from layout_calculator import LayoutCalculator
from layout_types import (
    DataSection, FixedSection, Heap, HeapPool, LayoutError, Linker, Region, Section, SizeSpec,
    format_addr, format_size, parse_addr, parse_size
)

logger = logging.getLogger(__name__)

# The name of the layout configuration file inside a project
LAYOUT_CONFIG = "layout.json"


def _symbol(name: str) -> str:
    return re.sub(r"[^0-9A-Za-z]+", "_", name).upper()


@dataclass
class Layout:
    """Memory layout of a project: regions and the sections placed in them.

    A freshly loaded layout only carries the declared values. ``calculate``
    fills in the origins and sizes of all sections and the block counts of
    all heap pools.
    """
    data: DataSection
    flash: Dict[str, Region] = field(default_factory=dict)
    ram: Dict[str, Region] = field(default_factory=dict)
    stack: Dict[str, Section] = field(default_factory=dict)
    stream: Dict[str, FixedSection] = field(default_factory=dict)
    heap: Dict[str, Heap] = field(default_factory=dict)
    linker: Linker = field(default_factory=Linker)

    @classmethod
    def from_dict(cls, config: Dict[str, Any]) -> 'Layout':
        """Build a layout from its declarative form; calculated fields are ignored"""
        if "data" not in config:
            raise LayoutError("layout config has no data section", "data")
        data_config = config["data"]
        padding = data_config.get("padding")
        layout = cls(
            data=DataSection(
                ram=data_config["ram"],
                padding=parse_size(padding) if padding is not None else None
            )
        )

        for name, memory in config.get("flash", {}).items():
            layout.flash[name] = Region(name, parse_addr(memory["origin"]), parse_size(memory["size"]))
        for name, memory in config.get("ram", {}).items():
            layout.ram[name] = Region(name, parse_addr(memory["origin"]), parse_size(memory["size"]))

        for name, stack_config in config.get("stack", {}).items():
            layout.stack[name] = Section(
                ram=stack_config["ram"],
                size=SizeSpec.parse(stack_config["size"])
            )

        for name, stream_config in config.get("stream", {}).items():
            layout.stream[name] = FixedSection(
                ram=stream_config["ram"],
                size=parse_size(stream_config["size"])
            )

        for name, heap_config in config.get("heap", {}).items():
            layout.heap[name] = Heap(
                ram=heap_config["ram"],
                size=SizeSpec.parse(heap_config["size"]),
                pools=[
                    HeapPool(block=parse_size(pool["block"]), count=SizeSpec.parse(pool["count"]))
                    for pool in heap_config.get("pools", [])
                ]
            )

        linker_config = config.get("linker", {})
        layout.linker = Linker(
            include_before=list(linker_config.get("include_before", [])),
            include_after=list(linker_config.get("include_after", []))
        )
        return layout

    def to_dict(self) -> Dict[str, Any]:
        """Canonical form of the layout, including the calculated fields"""
        data = {"ram": self.data.ram}
        if self.data.padding is not None:
            data["padding"] = format_size(self.data.padding)
        data["origin"] = format_addr(self.data.origin)
        data["size"] = format_size(self.data.size)

        return {
            "flash": {
                name: {"origin": format_addr(flash.origin), "size": format_size(flash.size)}
                for name, flash in self.flash.items()
            },
            "ram": {
                name: {"origin": format_addr(ram.origin), "size": format_size(ram.size)}
                for name, ram in self.ram.items()
            },
            "data": data,
            "stack": {
                name: {
                    "ram": stack.ram,
                    "size": str(stack.size),
                    "origin": format_addr(stack.origin),
                    "fixed_size": format_size(stack.fixed_size),
                    "prefix_size": format_size(stack.prefix_size),
                }
                for name, stack in self.stack.items()
            },
            "stream": {
                name: {
                    "ram": stream.ram,
                    "size": format_size(stream.size),
                    "origin": format_addr(stream.origin),
                    "prefix_size": format_size(stream.prefix_size),
                }
                for name, stream in self.stream.items()
            },
            "heap": {
                name: {
                    "ram": heap.ram,
                    "size": str(heap.size),
                    "origin": format_addr(heap.origin),
                    "fixed_size": format_size(heap.fixed_size),
                    "prefix_size": format_size(heap.prefix_size),
                    "pools": [
                        {
                            "block": format_size(pool.block),
                            "count": str(pool.count),
                            "fixed_count": pool.fixed_count,
                        }
                        for pool in heap.pools
                    ],
                }
                for name, heap in self.heap.items()
            },
            "linker": {
                "include_before": list(self.linker.include_before),
                "include_after": list(self.linker.include_after),
            },
        }

    @classmethod
    def parse(cls, text: str) -> 'Layout':
        """Parse a JSON layout, validate it and run the first calculation stage"""
        layout = cls.from_dict(json.loads(text))
        layout.calculate()
        return layout

    @classmethod
    def load_from_json(cls, input_file: str) -> 'Layout':
        with open(input_file, 'r') as f:
            return cls.parse(f.read())

    @classmethod
    def read_from_project_root(cls, project_root: str) -> 'Layout':
        path = os.path.join(project_root, LAYOUT_CONFIG)
        if not os.path.exists(path):
            raise FileNotFoundError(f"{LAYOUT_CONFIG} configuration file not exists in {project_root}")
        return cls.load_from_json(path)

    def save_to_json(self, output_file: str):
        with open(output_file, 'w') as f:
            json.dump(self.to_dict(), f, indent=4)

    def validate(self) -> None:
        layout_validator.validate(self)

    def calculate(self, data_size: Optional[int] = None) -> None:
        """Validate and calculate the layout.

        Without ``data_size`` the data section takes all free space of its
        region (first stage). Once the real size of DATA and BSS is known
        from a linked binary, calling this again with it yields the final
        addresses (second stage).
        """
        self.validate()
        LayoutCalculator(self).calculate(data_size)

    def region_sections(self, ram_name: str) -> List[Tuple[str, int, int]]:
        """Returns ``(path, origin, total size)`` of everything placed in a RAM region, by origin"""
        sections = []
        for name, stack in self.stack.items():
            if stack.ram == ram_name:
                sections.append((f"stack.{name}", stack.origin, stack.total_size))
        for name, stream in self.stream.items():
            if stream.ram == ram_name:
                sections.append((f"stream.{name}", stream.origin, stream.total_size))
        if self.data.ram == ram_name:
            sections.append(("data", self.data.origin, self.data.size))
        for name, heap in self.heap.items():
            if heap.ram == ram_name:
                sections.append((f"heap.{name}", heap.origin, heap.total_size))
        return sorted(sections, key=lambda s: (s[1], s[0]))

    def region_usage(self, ram_name: str) -> int:
        return sum(size for _, _, size in self.region_sections(ram_name))

    def get_layout_summary(self) -> Dict[str, Any]:
        return {
            name: {
                "origin": ram.origin,
                "size": ram.size,
                "used": self.region_usage(name),
                "sections": self.region_sections(name),
            }
            for name, ram in self.ram.items()
        }

    def print_layout_summary(self):
        summary = self.get_layout_summary()
        print(f"\n{' MEMORY LAYOUT ':=^60}")
        for name, region in summary.items():
            print(f"ram.{name}: {format_addr(region['origin'])} "
                  f"({format_size(region['size'])}, {region['used']:,} bytes used)")
            for path, origin, size in region["sections"]:
                print(f"  {format_addr(origin)}  {size:>10,}  {path}")
        for name, heap in self.heap.items():
            print(f"heap.{name} pools:")
            for pool in heap.pools:
                print(f"  {format_size(pool.block):>8} x {pool.fixed_count}")
        print(f"{'=' * 60}")

    def generate_linker_script(self) -> str:
        """Generate the linker script fragment placing all memory sections"""
        lines = []
        lines.append("/* Automatically generated memory layout */\n")

        for include in self.linker.include_before:
            lines.append(f"INCLUDE {include}")
        if self.linker.include_before:
            lines.append("")

        lines.append("MEMORY")
        lines.append("{")
        for name, flash in self.flash.items():
            lines.append(f"    FLASH_{_symbol(name)} (rx) : ORIGIN = {format_addr(flash.origin)}, "
                         f"LENGTH = {format_size(flash.size)}")
        for name, ram in self.ram.items():
            lines.append(f"    RAM_{_symbol(name)} (wx) : ORIGIN = {format_addr(ram.origin)}, "
                         f"LENGTH = {format_size(ram.size)}")
        lines.append("}\n")

        for name, stack in self.stack.items():
            lines.append(f"{_symbol(name)}_STACK_START = {format_addr(stack.origin + stack.fixed_size)};")
        if self.stack:
            lines.append("")

        placements: Dict[int, List[str]] = {}
        for name, stream in self.stream.items():
            placements.setdefault(stream.origin, []).extend([
                f"    .stream_{name} {format_addr(stream.origin)} (NOLOAD) :",
                "    {",
                f"        __stream_{name}_start = .;",
                f"        . = . + {format_size(stream.total_size)};",
                f"        __stream_{name}_end = .;",
                f"    }} > RAM_{_symbol(stream.ram)}",
            ])
        placements.setdefault(self.data.origin, []).extend([
            f"    __data_start = {format_addr(self.data.origin)};",
            f"    __data_end = {format_addr(self.data.origin + self.data.size)};",
        ])
        for name, heap in self.heap.items():
            section = [
                f"    .heap_{name} {format_addr(heap.origin)} (NOLOAD) :",
                "    {",
                f"        __heap_{name}_start = .;",
            ]
            pointer = heap.origin + heap.prefix_size
            for i, pool in enumerate(heap.pools):
                section.append(f"        __heap_{name}_pool{i}_uninit = {format_addr(pointer)};")
                pointer += pool.fixed_size
                section.append(f"        __heap_{name}_pool{i}_edge = {format_addr(pointer)};")
            section.extend([
                f"        . = . + {format_size(heap.total_size)};",
                f"        __heap_{name}_end = .;",
                f"    }} > RAM_{_symbol(heap.ram)}",
            ])
            placements.setdefault(heap.origin, []).extend(section)

        lines.append("SECTIONS")
        lines.append("{")
        for origin in sorted(placements):
            lines.extend(placements[origin])
        lines.append("}")

        if self.linker.include_after:
            lines.append("")
        for include in self.linker.include_after:
            lines.append(f"INCLUDE {include}")

        return "\n".join(lines) + "\n"

    def generate_h_file_content(self) -> str:
        """Generate a C header with section addresses and heap pool tables"""
        lines = []
        lines.append("// Automatically generated memory layout\n")

        lines.append("#ifndef __MEMORY_LAYOUT_H__")
        lines.append("#define __MEMORY_LAYOUT_H__\n")

        lines.append("#include <stdint.h>\n")

        for name, stack in self.stack.items():
            lines.append(f"// stack {name}")
            lines.append(f"#define STACK_{_symbol(name)}_ORIGIN {format_addr(stack.origin)}")
            lines.append(f"#define STACK_{_symbol(name)}_SIZE {stack.fixed_size}")
            lines.append("")

        for name, stream in self.stream.items():
            lines.append(f"// stream {name}")
            lines.append(f"#define STREAM_{_symbol(name)}_ORIGIN {format_addr(stream.origin)}")
            lines.append(f"#define STREAM_{_symbol(name)}_SIZE {stream.size}")
            lines.append("")

        for name, heap in self.heap.items():
            symbol = _symbol(name)
            lines.append(f"// heap {name}")
            lines.append(f"#define HEAP_{symbol}_ORIGIN {format_addr(heap.origin)}")
            lines.append(f"#define HEAP_{symbol}_SIZE {heap.fixed_size}")
            lines.append(f"#define HEAP_{symbol}_POOL_COUNT {len(heap.pools)}")
            for i, pool in enumerate(heap.pools):
                lines.append(f"#define HEAP_{symbol}_POOL{i}_BLOCK {pool.block}")
                lines.append(f"#define HEAP_{symbol}_POOL{i}_COUNT {pool.fixed_count}")
            if heap.pools:
                rows = ", ".join(f"{{{pool.block}, {pool.fixed_count}}}" for pool in heap.pools)
                lines.append(f"static const uint32_t HEAP_{symbol}_POOLS[][2] = {{{rows}}};")
            lines.append("")

        lines.append("#endif // __MEMORY_LAYOUT_H__")

        return "\n".join(lines)
