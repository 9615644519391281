"""Python emulator for the 8051 (MCS-51) microcontroller core.

``cpu`` holds the opcode table, register file, fetcher and execution engine;
``bus`` the memory contracts and memory maps; ``loader`` the Intel HEX reader;
``system`` wires them into a runnable machine.
"""

from __future__ import annotations

from . import bus, cpu, loader, system, utils

__all__: list[str] = [
    "cpu",
    "bus",
    "loader",
    "system",
    "utils",
]
