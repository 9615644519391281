"""Command-line entry point for the 8051 emulator.

Loads an Intel HEX or raw binary image, runs the core for a bounded number of
steps and prints the final register state. Set ``PY8051_DEBUG=cpu`` for a
per-instruction log.
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

from py8051.cpu import CPUError
from py8051.loader import IntelHexError, load_ihex_from_path
from py8051.system import Machine, MachineConfig, create_machine


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="run.py",
        description="8051 instruction-set emulator",
    )
    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument(
        "--hex",
        type=Path,
        help="Intel HEX image to execute",
    )
    source.add_argument(
        "--binary",
        type=Path,
        help="Raw binary image loaded at address 0000h",
    )
    parser.add_argument(
        "--steps",
        type=int,
        default=1000,
        help="Number of instructions to execute (default: 1000)",
    )
    parser.add_argument(
        "--pad",
        type=lambda text: int(text, 0),
        default=0xFF,
        help="Byte returned for gaps in a HEX image (default: 0xFF)",
    )
    parser.add_argument(
        "--trace",
        type=int,
        default=0,
        metavar="N",
        help="Print the last N executed instructions",
    )
    return parser


def format_state(machine: Machine) -> str:
    state = machine.cpu.state
    registers = " ".join(
        f"R{index}={state.iram[state.register_address(index)]:02X}" for index in range(8))
    return (
        f"PC={state.pc:04X} A={state.a:02X} B={state.b:02X} DPTR={state.dptr:04X} "
        f"SP={state.sp:02X} PSW={state.psw:02X} {registers} cycles={machine.cpu.cycle_count}"
    )


def main(argv: list[str] | None = None) -> int:
    parser = build_arg_parser()
    args = parser.parse_args(argv)

    image_path = args.hex or args.binary
    if not image_path.exists():
        parser.error(f"image file not found: {image_path}")
    if args.steps < 0:
        parser.error("--steps must not be negative")

    config = MachineConfig(trace_capacity=args.trace)
    if args.hex:
        try:
            program = load_ihex_from_path(args.hex)
        except IntelHexError as exc:
            parser.exit(1, f"run.py: {args.hex}: {exc}\n")
        config.code = program.reader(pad=args.pad)
    else:
        config.code_image = args.binary.read_bytes()

    machine = create_machine(config)
    status = 0
    try:
        machine.run(args.steps)
    except CPUError as exc:
        print(f"run.py: stopped at PC={machine.cpu.state.pc:04X}: {exc}", file=sys.stderr)
        status = 1

    if machine.trace is not None:
        for line in machine.trace.format_entries(args.trace):
            print(line)
    print(format_state(machine))
    return status


if __name__ == "__main__":
    sys.exit(main())
