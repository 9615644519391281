"""Tests for machine assembly."""

from __future__ import annotations

import io

import pytest

from py8051.bus import MemoryMapError
from py8051.cpu import MemoryFault
from py8051.loader import load_ihex
from py8051.system import CodeRom, ExternalRam, MachineConfig, create_machine

PROGRAM_HEX = "\n".join([
    ":03000000020100FA",  # LJMP 0100h
    ":02010000742A5F",    # MOV A,#2Ah
    ":00000001FF",
]) + "\n"


def test_machine_runs_raw_image() -> None:
    machine = create_machine(MachineConfig(code_image=bytes([0x74, 0x2A])))

    machine.run(1)

    assert isinstance(machine.rom, CodeRom)
    assert machine.code is machine.rom
    assert machine.cpu.state.a == 0x2A
    assert machine.cpu.state.sp == 0x07


def test_machine_copies_program_into_rom() -> None:
    program = load_ihex(io.StringIO(PROGRAM_HEX))
    machine = create_machine(MachineConfig(program=program))

    machine.run(2)

    assert machine.rom is not None
    assert machine.rom.load8(0x0100) == 0x74
    assert machine.cpu.state.pc == 0x0102
    assert machine.cpu.state.a == 0x2A


def test_machine_executes_from_program_reader() -> None:
    program = load_ihex(io.StringIO(PROGRAM_HEX))
    machine = create_machine(MachineConfig(code=program.reader()))

    machine.run(2)

    assert machine.rom is None
    assert machine.cpu.state.a == 0x2A
    with pytest.raises(MemoryFault):
        machine.cpu.step()
    assert machine.cpu.state.pc == 0x0102


def test_external_ram_is_mapped() -> None:
    # MOV DPTR,#0010h ; MOV A,#5Ah ; MOVX @DPTR,A
    machine = create_machine(
        MachineConfig(code_image=bytes([0x90, 0x00, 0x10, 0x74, 0x5A, 0xF0]), xram_size=0x100))

    machine.run(3)

    assert machine.xram.get_memory(ExternalRam) is machine.ram
    assert machine.ram is not None
    assert machine.ram.load8(0x0010) == 0x5A


def test_external_ram_size_limits_movx() -> None:
    machine = create_machine(
        MachineConfig(code_image=bytes([0x90, 0x01, 0x00, 0xE0]), xram_size=0x100))

    machine.run(1)
    with pytest.raises(MemoryFault):
        machine.cpu.step()


def test_machine_without_external_ram() -> None:
    machine = create_machine(MachineConfig(code_image=bytes([0xE0]), xram_size=0))

    assert machine.ram is None
    with pytest.raises(MemoryFault):
        machine.run(1)


def test_trace_is_optional() -> None:
    assert create_machine(MachineConfig()).trace is None

    machine = create_machine(MachineConfig(code_image=bytes([0x00, 0x00]), trace_capacity=8))
    machine.run(2)

    assert machine.trace is not None
    assert len(machine.trace) == 2


@pytest.mark.parametrize(
    "config",
    [
        MachineConfig(code_size=0),
        MachineConfig(code_size=0x10001),
        MachineConfig(xram_size=-1),
        MachineConfig(code_image=bytes(0x11), code_size=0x10),
    ],
)
def test_invalid_configuration(config: MachineConfig) -> None:
    with pytest.raises(MemoryMapError):
        create_machine(config)
