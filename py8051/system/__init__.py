"""8051 system assembly helpers."""

from __future__ import annotations

from .machine import CodeRom, ExternalRam, Machine, MachineConfig, create_machine

__all__ = [
    "CodeRom",
    "ExternalRam",
    "MachineConfig",
    "Machine",
    "create_machine",
]
