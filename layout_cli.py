#!/usr/bin/env python3
"""
Command line front end for the memory layout planner.

    layout_cli.py calculate layout.json [--data-size N] [--ld FILE] [--header FILE] [--output FILE]
    layout_cli.py heap trace.json --size N [--pools N] [--generate]

The heap trace is a JSON list of decoded allocator events, e.g.
``[{"type": "alloc", "size": 12}, {"type": "dealloc", "size": 12}]``.
"""
import sys
import json
import logging
import argparse
from typing import List, Optional

from heap_optimizer import empty_layout, optimize, render_pools
from heap_trace import HeapTrace, TraceError
from layout import Layout
from layout_types import LayoutError, parse_size

# Pool count of a heap generated without explicit request
DEFAULT_HEAP_POOLS = 8


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Microcontroller memory layout planner")
    parser.add_argument("-v", "--verbose", action="count", default=0,
                        help="increase logging verbosity")
    subparsers = parser.add_subparsers(dest="command", required=True)

    calculate = subparsers.add_parser("calculate", help="calculate a memory layout")
    calculate.add_argument("layout", help="layout configuration file")
    calculate.add_argument("--data-size", type=parse_size,
                           help="combined size of DATA and BSS sections from a linked binary")
    calculate.add_argument("--ld", help="write a linker script to this file")
    calculate.add_argument("--header", help="write a C header to this file")
    calculate.add_argument("--output", help="write the calculated layout to this file")

    heap = subparsers.add_parser("heap", help="analyze a heap trace")
    heap.add_argument("trace", help="heap trace file")
    heap.add_argument("--size", type=parse_size, required=True, help="heap size")
    heap.add_argument("--pools", type=int, default=DEFAULT_HEAP_POOLS, help="number of pools")
    heap.add_argument("--generate", action="store_true", help="suggest a pool layout")
    return parser


def run_calculate(args) -> int:
    layout = Layout.load_from_json(args.layout)
    if args.data_size is not None:
        layout.calculate(args.data_size)
    layout.print_layout_summary()
    if args.ld:
        with open(args.ld, 'w') as f:
            f.write(layout.generate_linker_script())
    if args.header:
        with open(args.header, 'w') as f:
            f.write(layout.generate_h_file_content())
    if args.output:
        layout.save_to_json(args.output)
    return 0


def run_heap(args) -> int:
    trace = HeapTrace(args.size)
    try:
        with open(args.trace, 'r') as f:
            trace.record_all(json.load(f))
    except FileNotFoundError:
        print(f"warning: file `{args.trace}` not exists.", file=sys.stderr)

    if trace.is_empty():
        print(f"warning: trace `{args.trace}` has no allocations.", file=sys.stderr)
    else:
        trace.print_usage_summary()

    if not args.generate:
        return 0
    if trace.is_empty():
        pools = empty_layout(args.size, args.pools)
        print(json.dumps(render_pools(pools), indent=4))
    else:
        pools, frag = optimize(trace.histogram(), args.size, args.pools)
        print(f"\n{' OPTIMIZED LAYOUT ':=^60}")
        print(json.dumps(render_pools(pools), indent=4))
        print(f"# fragmentation: {frag} / {frag / args.size * 100:.2f}%")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.WARNING - 10 * min(args.verbose, 2),
        format="%(levelname)s: %(name)s: %(message)s"
    )
    try:
        if args.command == "calculate":
            return run_calculate(args)
        return run_heap(args)
    except (LayoutError, TraceError, KeyError, ValueError, OSError) as e:
        print(f"error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
