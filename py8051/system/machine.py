"""8051 machine assembly: code memory, external RAM and the core."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from py8051.bus import CodeMemory, Memory, MemoryMapError, MemorySystem
from py8051.cpu import MCS51, SFR_WINDOW_START
from py8051.loader import ProgramImage, write_image
from py8051.utils import TraceRecorder

CODE_SPACE = 0x10000
XRAM_SPACE = 0x10000


@dataclass
class MachineConfig:
    """Runtime configuration for an 8051 machine.

    ``code`` takes precedence over ``program`` and ``code_image``; without it
    a flat ROM of ``code_size`` bytes is built and the image copied in.
    """

    code: Optional[CodeMemory] = None
    program: Optional[ProgramImage] = None
    code_image: Optional[bytes] = None
    code_size: int = CODE_SPACE
    xram_size: int = XRAM_SPACE
    sfr_window_start: int = SFR_WINDOW_START
    trace_capacity: int = 0


@dataclass
class Machine:
    """Aggregates the components of an 8051 system."""

    cpu: MCS51
    code: CodeMemory
    rom: Optional["CodeRom"]
    xram: MemorySystem
    ram: Optional["ExternalRam"]
    trace: Optional[TraceRecorder]

    def run(self, max_steps: int) -> int:
        return self.cpu.run(max_steps)


class CodeRom(Memory):
    """Program memory block."""


class ExternalRam(Memory):
    """External data memory block reached through MOVX."""


def create_machine(config: MachineConfig) -> Machine:
    """Instantiate an 8051 machine with the requested configuration."""

    if not 0 < config.code_size <= CODE_SPACE:
        raise MemoryMapError(f"code size {config.code_size} out of range (1-65536)")
    if not 0 <= config.xram_size <= XRAM_SPACE:
        raise MemoryMapError(f"external RAM size {config.xram_size} out of range (0-65536)")

    rom: Optional[CodeRom] = None
    code = config.code
    if code is None:
        rom = CodeRom(0x0000, config.code_size)
        if config.program is not None:
            write_image(config.program, rom)
        if config.code_image:
            rom.load_image(config.code_image)
        code = rom

    xram = MemorySystem()
    xram.allocate_space(XRAM_SPACE)
    ram: Optional[ExternalRam] = None
    if config.xram_size:
        ram = ExternalRam(0x0000, config.xram_size)
        xram.register_memory(ram)

    trace = TraceRecorder(config.trace_capacity) if config.trace_capacity > 0 else None

    cpu = MCS51(
        code,
        xram,
        sfr_window_start=config.sfr_window_start,
        trace=trace,
    )
    cpu.reset()

    return Machine(cpu=cpu, code=code, rom=rom, xram=xram, ram=ram, trace=trace)
