"""Tests for the 8051 execution engine."""

from __future__ import annotations

import pytest

from py8051.bus import Memory, MemorySystem
from py8051.cpu import (
    MCS51,
    CPUError,
    CPUPhase,
    MemoryFault,
    StackOverflowError,
    StackUnderflowError,
    UnknownOpcodeError,
)
from py8051.cpu.state import FLAG_AC, FLAG_CY, FLAG_OV, FLAG_P
from py8051.utils import TraceRecorder


def make_cpu(program: bytes, origin: int = 0x0000) -> tuple[MCS51, Memory, Memory]:
    rom = Memory(0x0000, 0x10000)
    rom.load_image(program, origin)

    xram = MemorySystem()
    xram.allocate_space(0x10000)
    ram = Memory(0x0000, 0x10000)
    xram.register_memory(ram)

    cpu = MCS51(rom, xram)
    cpu.reset()
    cpu.state.pc = origin
    return cpu, rom, ram


def read_flag(cpu: MCS51, flag: int) -> bool:
    return (cpu.state.psw & flag) != 0


def test_reset_restores_power_on_state() -> None:
    cpu, _, _ = make_cpu(bytes([0x00]))
    cpu.state.a = 0x12
    cpu.state.sp = 0x40
    cpu.cycle_count = 99

    cpu.reset()

    assert cpu.state.pc == 0x0000
    assert cpu.state.sp == 0x07
    assert cpu.state.a == 0x00
    assert cpu.cycle_count == 0
    assert cpu.phase == CPUPhase.IDLE


def test_step_executes_nop() -> None:
    cpu, _, _ = make_cpu(bytes([0x00]))

    cycles = cpu.step()

    assert cycles == 1
    assert cpu.state.pc == 0x0001
    assert cpu.cycle_count == 1


def test_pc_wraps_at_top_of_code_space() -> None:
    cpu, _, _ = make_cpu(bytes([0x00]), origin=0xFFFF)
    cpu.step()
    assert cpu.state.pc == 0x0000


def test_operands_wrap_past_top_of_code_space() -> None:
    cpu, rom, _ = make_cpu(bytes([0x80]), origin=0xFFFF)  # SJMP $
    rom.store8(0x0000, 0xFE)
    cpu.step()
    assert cpu.state.pc == 0xFFFF

    cpu, rom, _ = make_cpu(bytes([0x02, 0x12]), origin=0xFFFE)  # LJMP 1234h
    rom.store8(0x0000, 0x34)
    cpu.step()
    assert cpu.state.pc == 0x1234


def test_run_returns_total_cycles() -> None:
    # MOV A,#01h ; LJMP 0000h
    cpu, _, _ = make_cpu(bytes([0x74, 0x01, 0x02, 0x00, 0x00]))
    assert cpu.run(4) == 6
    assert cpu.cycle_count == 6


# ----------------------------------------------------------------------
# Arithmetic


def test_add_immediate_wraps_and_sets_carry() -> None:
    cpu, _, _ = make_cpu(bytes([0x24, 0x01]))  # ADD A,#01h
    cpu.state.a = 0xFF

    cycles = cpu.step()

    assert cycles == 1
    assert cpu.state.a == 0x00
    assert cpu.state.pc == 0x0002
    assert read_flag(cpu, FLAG_CY)
    assert read_flag(cpu, FLAG_AC)
    assert not read_flag(cpu, FLAG_OV)
    assert not read_flag(cpu, FLAG_P)


def test_add_signed_overflow() -> None:
    cpu, _, _ = make_cpu(bytes([0x24, 0x01]))
    cpu.state.a = 0x7F

    cpu.step()

    assert cpu.state.a == 0x80
    assert read_flag(cpu, FLAG_OV)
    assert not read_flag(cpu, FLAG_CY)
    assert read_flag(cpu, FLAG_P)


def test_addc_includes_carry() -> None:
    cpu, _, _ = make_cpu(bytes([0x34, 0x05]))  # ADDC A,#05h
    cpu.state.a = 0x10
    cpu.state.psw = FLAG_CY

    cpu.step()

    assert cpu.state.a == 0x16
    assert not read_flag(cpu, FLAG_CY)


def test_add_register_uses_active_bank() -> None:
    cpu, _, _ = make_cpu(bytes([0x2B]))  # ADD A,R3
    cpu.state.psw = 0x08
    cpu.state.iram[0x0B] = 0x22
    cpu.state.iram[0x03] = 0x99
    cpu.state.a = 0x11

    cpu.step()

    assert cpu.state.a == 0x33


def test_subb_borrows() -> None:
    cpu, _, _ = make_cpu(bytes([0x94, 0x01]))  # SUBB A,#01h
    cpu.state.a = 0x00

    cpu.step()

    assert cpu.state.a == 0xFF
    assert read_flag(cpu, FLAG_CY)
    assert read_flag(cpu, FLAG_AC)
    assert not read_flag(cpu, FLAG_OV)


def test_subb_signed_overflow() -> None:
    cpu, _, _ = make_cpu(bytes([0x94, 0x01]))
    cpu.state.a = 0x80

    cpu.step()

    assert cpu.state.a == 0x7F
    assert not read_flag(cpu, FLAG_CY)
    assert read_flag(cpu, FLAG_OV)


def test_mul_sets_overflow_for_wide_product() -> None:
    cpu, _, _ = make_cpu(bytes([0xA4]))  # MUL AB
    cpu.state.a = 0x50
    cpu.state.b = 0xA0
    cpu.state.psw = FLAG_CY

    cycles = cpu.step()

    assert cycles == 4
    assert cpu.state.a == 0x00
    assert cpu.state.b == 0x32
    assert read_flag(cpu, FLAG_OV)
    assert not read_flag(cpu, FLAG_CY)


def test_mul_of_c8_squared() -> None:
    cpu, _, _ = make_cpu(bytes([0xA4]))
    cpu.state.a = 0xC8
    cpu.state.b = 0xC8

    cpu.step()

    assert cpu.state.a == 0x40
    assert cpu.state.b == 0x9C
    assert read_flag(cpu, FLAG_OV)
    assert not read_flag(cpu, FLAG_CY)


def test_div_quotient_and_remainder() -> None:
    cpu, _, _ = make_cpu(bytes([0x84]))  # DIV AB
    cpu.state.a = 0xFB
    cpu.state.b = 0x12

    cpu.step()

    assert cpu.state.a == 0x0D
    assert cpu.state.b == 0x11
    assert not read_flag(cpu, FLAG_OV)
    assert not read_flag(cpu, FLAG_CY)


def test_div_by_zero_sets_overflow_and_keeps_operands() -> None:
    cpu, _, _ = make_cpu(bytes([0x84]))
    cpu.state.a = 0x42
    cpu.state.b = 0x00
    cpu.state.psw = FLAG_CY

    cycles = cpu.step()

    assert cycles == 4
    assert cpu.state.pc == 0x0001
    assert cpu.state.a == 0x42
    assert cpu.state.b == 0x00
    assert read_flag(cpu, FLAG_OV)
    assert not read_flag(cpu, FLAG_CY)


def test_decimal_adjust_after_bcd_add() -> None:
    cpu, _, _ = make_cpu(bytes([0x24, 0x67, 0xD4]))  # ADD A,#67h ; DA A
    cpu.state.a = 0x56

    cpu.run(2)

    assert cpu.state.a == 0x23
    assert read_flag(cpu, FLAG_CY)


def test_inc_dptr_wraps() -> None:
    cpu, _, _ = make_cpu(bytes([0xA3]))  # INC DPTR
    cpu.state.dptr = 0xFFFF

    assert cpu.step() == 2
    assert cpu.state.dptr == 0x0000


def test_dec_indirect_wraps() -> None:
    cpu, _, _ = make_cpu(bytes([0x17]))  # DEC @R1
    cpu.state.iram[0x01] = 0x40
    cpu.state.iram[0x40] = 0x00

    cpu.step()

    assert cpu.state.iram[0x40] == 0xFF


# ----------------------------------------------------------------------
# Logic, rotates and bits


def test_logic_on_direct_and_accumulator() -> None:
    # ANL 30h,#0Fh ; ORL A,#80h ; XRL A,30h
    cpu, _, _ = make_cpu(bytes([0x53, 0x30, 0x0F, 0x44, 0x80, 0x65, 0x30]))
    cpu.state.iram[0x30] = 0x5A
    cpu.state.a = 0x01

    cpu.run(3)

    assert cpu.state.iram[0x30] == 0x0A
    assert cpu.state.a == 0x8B


def test_rotates_and_swap() -> None:
    # RL A ; RRC A ; SWAP A ; CPL A
    cpu, _, _ = make_cpu(bytes([0x23, 0x13, 0xC4, 0xF4]))
    cpu.state.a = 0x81

    cpu.step()
    assert cpu.state.a == 0x03

    cpu.step()
    assert cpu.state.a == 0x01
    assert read_flag(cpu, FLAG_CY)

    cpu.step()
    assert cpu.state.a == 0x10

    cpu.step()
    assert cpu.state.a == 0xEF


def test_rlc_shifts_carry_in() -> None:
    cpu, _, _ = make_cpu(bytes([0x33]))  # RLC A
    cpu.state.a = 0x80
    cpu.state.psw = FLAG_CY

    cpu.step()

    assert cpu.state.a == 0x01
    assert read_flag(cpu, FLAG_CY)


def test_bit_addressable_ram() -> None:
    # SETB 00h ; MOV C,07h ; CPL 01h
    cpu, _, _ = make_cpu(bytes([0xD2, 0x00, 0xA2, 0x07, 0xB2, 0x01]))
    cpu.state.iram[0x20] = 0x80

    cpu.run(3)

    assert cpu.state.iram[0x20] == 0x83
    assert read_flag(cpu, FLAG_CY)


def test_bit_in_core_register() -> None:
    cpu, _, _ = make_cpu(bytes([0xD2, 0xE7]))  # SETB ACC.7
    cpu.step()
    assert cpu.state.a == 0x80


def test_carry_logic_with_complemented_bit() -> None:
    cpu, _, _ = make_cpu(bytes([0xB0, 0x00]))  # ANL C,/00h
    cpu.state.psw = FLAG_CY
    cpu.state.iram[0x20] = 0x01

    cpu.step()

    assert not read_flag(cpu, FLAG_CY)


def test_mov_bit_from_carry() -> None:
    cpu, _, _ = make_cpu(bytes([0x92, 0x0F]))  # MOV 0Fh,C
    cpu.state.psw = FLAG_CY

    cpu.step()

    assert cpu.state.iram[0x21] == 0x80


def test_parity_tracks_accumulator() -> None:
    cpu, _, _ = make_cpu(bytes([0x74, 0x01, 0x74, 0x03]))

    cpu.step()
    assert read_flag(cpu, FLAG_P)

    cpu.step()
    assert not read_flag(cpu, FLAG_P)


# ----------------------------------------------------------------------
# Data transfer


def test_registers_are_distinct() -> None:
    cpu, _, _ = make_cpu(bytes([0x78, 0x11, 0x7F, 0x77]))  # MOV R0,#11h ; MOV R7,#77h

    cpu.run(2)

    assert cpu.state.iram[0x00] == 0x11
    assert cpu.state.iram[0x07] == 0x77


def test_writing_psw_switches_bank() -> None:
    cpu, _, _ = make_cpu(bytes([0x75, 0xD0, 0x08, 0x78, 0x99]))  # MOV PSW,#08h ; MOV R0,#99h

    cpu.run(2)

    assert cpu.state.iram[0x08] == 0x99
    assert cpu.state.iram[0x00] == 0x00


def test_mov_direct_to_direct() -> None:
    cpu, _, _ = make_cpu(bytes([0x85, 0x30, 0x40]))  # MOV 40h,30h
    cpu.state.iram[0x30] = 0xAA

    cpu.step()

    assert cpu.state.iram[0x40] == 0xAA
    assert cpu.state.pc == 0x0003


def test_mov_dptr_and_core_registers() -> None:
    # MOV DPTR,#1234h ; MOV B,#05h ; MOV A,DPH
    cpu, _, _ = make_cpu(bytes([0x90, 0x12, 0x34, 0x75, 0xF0, 0x05, 0xE5, 0x83]))

    cpu.run(3)

    assert cpu.state.dptr == 0x1234
    assert cpu.state.b == 0x05
    assert cpu.state.a == 0x12
    assert cpu.state.iram[0xF0] == 0x00


def test_indirect_reaches_upper_ram() -> None:
    cpu, _, _ = make_cpu(bytes([0xE6]))  # MOV A,@R0
    seen: list[int] = []
    cpu.set_input_callback(0x90, lambda: seen.append(1) or 0xAB)
    cpu.state.iram[0x00] = 0x90
    cpu.state.iram[0x90] = 0x12

    cpu.step()

    assert cpu.state.a == 0x12
    assert seen == []


def test_xch_and_xchd() -> None:
    # XCH A,R2 ; XCHD A,@R0
    cpu, _, _ = make_cpu(bytes([0xCA, 0xD6]))
    cpu.state.a = 0x36
    cpu.state.iram[0x02] = 0x20
    cpu.state.iram[0x00] = 0x40
    cpu.state.iram[0x40] = 0x75

    cpu.step()
    assert cpu.state.a == 0x20
    assert cpu.state.iram[0x02] == 0x36

    cpu.step()
    assert cpu.state.a == 0x25
    assert cpu.state.iram[0x40] == 0x70


def test_push_and_pop_direct() -> None:
    # PUSH ACC ; POP 30h
    cpu, _, _ = make_cpu(bytes([0xC0, 0xE0, 0xD0, 0x30]))
    cpu.state.a = 0x5C

    cpu.step()
    assert cpu.state.sp == 0x08
    assert cpu.state.iram[0x08] == 0x5C

    cpu.step()
    assert cpu.state.sp == 0x07
    assert cpu.state.iram[0x30] == 0x5C


def test_movx_round_trip_through_dptr() -> None:
    # MOV DPTR,#1234h ; MOVX @DPTR,A ; CLR A ; MOVX A,@DPTR
    cpu, _, ram = make_cpu(bytes([0x90, 0x12, 0x34, 0xF0, 0xE4, 0xE0]))
    cpu.state.a = 0x5A

    cpu.run(2)
    assert ram.load8(0x1234) == 0x5A

    cpu.run(2)
    assert cpu.state.a == 0x5A


def test_movx_indirect_uses_eight_bit_pointer() -> None:
    cpu, _, ram = make_cpu(bytes([0xE3]))  # MOVX A,@R1
    cpu.state.iram[0x01] = 0x44
    ram.store8(0x0044, 0x9E)

    cpu.step()

    assert cpu.state.a == 0x9E


def test_movx_without_external_memory_faults() -> None:
    rom = Memory(0x0000, 0x100)
    rom.load_image(bytes([0xE0]))
    cpu = MCS51(rom)
    cpu.reset()
    cpu.state.a = 0x77

    with pytest.raises(MemoryFault):
        cpu.step()

    assert cpu.state.pc == 0x0000
    assert cpu.state.a == 0x77


def test_movx_to_unmapped_address_faults() -> None:
    rom = Memory(0x0000, 0x100)
    rom.load_image(bytes([0xF0]))  # MOVX @DPTR,A
    xram = MemorySystem()
    xram.allocate_space(0x10000)
    xram.register_memory(Memory(0x0000, 0x100))
    cpu = MCS51(rom, xram)
    cpu.reset()
    cpu.state.dptr = 0x1000

    with pytest.raises(MemoryFault) as excinfo:
        cpu.step()

    assert excinfo.value.address == 0x1000


def test_movc_reads_code_memory() -> None:
    cpu, rom, _ = make_cpu(bytes([0x93, 0x83, 0x00, 0x77]))  # MOVC A,@A+DPTR ; MOVC A,@A+PC
    rom.load_image(bytes([0x11, 0x22, 0x33]), 0x0300)
    cpu.state.dptr = 0x0300
    cpu.state.a = 0x02

    cpu.step()
    assert cpu.state.a == 0x33

    cpu.state.a = 0x01
    cpu.step()
    assert cpu.state.a == 0x77


# ----------------------------------------------------------------------
# Control flow


def test_sjmp_to_self() -> None:
    cpu, _, _ = make_cpu(bytes([0x80, 0xFE]))
    assert cpu.step() == 2
    assert cpu.state.pc == 0x0000


def test_ajmp_targets_page_of_next_instruction() -> None:
    cpu, _, _ = make_cpu(bytes([0x01, 0x00]), origin=0x07FE)  # AJMP at page end
    cpu.step()
    assert cpu.state.pc == 0x0800

    cpu, _, _ = make_cpu(bytes([0x21, 0x23]), origin=0x0100)
    cpu.step()
    assert cpu.state.pc == 0x0123


def test_lcall_and_ret() -> None:
    cpu, rom, _ = make_cpu(bytes([0x12, 0x01, 0x00]))  # LCALL 0100h
    rom.store8(0x0100, 0x22)  # RET

    cpu.step()
    assert cpu.state.pc == 0x0100
    assert cpu.state.sp == 0x09
    assert cpu.state.iram[0x08] == 0x03
    assert cpu.state.iram[0x09] == 0x00

    cpu.step()
    assert cpu.state.pc == 0x0003
    assert cpu.state.sp == 0x07


def test_lcall_pushes_low_byte_first() -> None:
    cpu, rom, _ = make_cpu(bytes([0x12, 0x12, 0x34]), origin=0x0100)  # LCALL 1234h
    rom.store8(0x1234, 0x22)

    cpu.step()
    assert cpu.state.pc == 0x1234
    assert cpu.state.iram[0x08] == 0x03
    assert cpu.state.iram[0x09] == 0x01

    cpu.step()
    assert cpu.state.pc == 0x0103
    assert cpu.state.sp == 0x07


def test_acall_pushes_return_address() -> None:
    cpu, _, _ = make_cpu(bytes([0x11, 0x50]))  # ACALL 0050h

    cpu.step()

    assert cpu.state.pc == 0x0050
    assert cpu.state.sp == 0x09
    assert cpu.state.iram[0x08] == 0x02


def test_jmp_indirect() -> None:
    cpu, _, _ = make_cpu(bytes([0x73]))  # JMP @A+DPTR
    cpu.state.dptr = 0x0100
    cpu.state.a = 0x04

    cpu.step()

    assert cpu.state.pc == 0x0104


def test_conditional_jumps() -> None:
    cpu, _, _ = make_cpu(bytes([0x60, 0x10]))  # JZ +10h
    cpu.step()
    assert cpu.state.pc == 0x0012

    cpu, _, _ = make_cpu(bytes([0x70, 0x10]))  # JNZ +10h
    cpu.step()
    assert cpu.state.pc == 0x0002

    cpu, _, _ = make_cpu(bytes([0x40, 0x10]))  # JC +10h
    cpu.state.psw = FLAG_CY
    cpu.step()
    assert cpu.state.pc == 0x0012


def test_jbc_clears_bit_and_jumps() -> None:
    cpu, _, _ = make_cpu(bytes([0x10, 0x08, 0x05]))  # JBC 08h,+5
    cpu.state.iram[0x21] = 0x01

    cpu.step()

    assert cpu.state.iram[0x21] == 0x00
    assert cpu.state.pc == 0x0008


def test_jnb_falls_through_when_bit_set() -> None:
    cpu, _, _ = make_cpu(bytes([0x30, 0x00, 0x05]))  # JNB 00h,+5
    cpu.state.iram[0x20] = 0x01

    cpu.step()

    assert cpu.state.pc == 0x0003


def test_cjne_compares_and_sets_carry() -> None:
    cpu, _, _ = make_cpu(bytes([0xB4, 0x20, 0x10]))  # CJNE A,#20h,+10h
    cpu.state.a = 0x10
    cpu.step()
    assert cpu.state.pc == 0x0013
    assert read_flag(cpu, FLAG_CY)

    cpu, _, _ = make_cpu(bytes([0xB4, 0x20, 0x10]))
    cpu.state.a = 0x20
    cpu.state.psw = FLAG_CY
    cpu.step()
    assert cpu.state.pc == 0x0003
    assert not read_flag(cpu, FLAG_CY)


def test_djnz_loop() -> None:
    cpu, _, _ = make_cpu(bytes([0x7A, 0x03, 0xDA, 0xFE]))  # MOV R2,#3 ; DJNZ R2,$

    total = cpu.run(4)

    assert cpu.state.iram[0x02] == 0x00
    assert cpu.state.pc == 0x0004
    assert total == 7


# ----------------------------------------------------------------------
# Ports


def test_direct_read_uses_input_callback() -> None:
    cpu, _, _ = make_cpu(bytes([0xE5, 0x90]))  # MOV A,P1
    cpu.set_input_callback(0x90, lambda: 0x5A)

    cpu.step()

    assert cpu.state.a == 0x5A


def test_direct_write_uses_output_callback() -> None:
    cpu, _, _ = make_cpu(bytes([0xF5, 0x90]))  # MOV P1,A
    written: list[int] = []
    cpu.set_output_callback(0x90, written.append)
    cpu.state.a = 0x3C

    cpu.step()

    assert written == [0x3C]
    assert cpu.state.iram[0x90] == 0x00


def test_window_without_callback_falls_back_to_iram() -> None:
    cpu, _, _ = make_cpu(bytes([0x75, 0x90, 0x12, 0xE5, 0x90]))  # MOV P1,#12h ; MOV A,P1

    cpu.run(2)

    assert cpu.state.iram[0x90] == 0x12
    assert cpu.state.a == 0x12


def test_port_bit_write_is_read_modify_write() -> None:
    cpu, _, _ = make_cpu(bytes([0xD2, 0x91]))  # SETB P1.1
    written: list[int] = []
    cpu.set_input_callback(0x90, lambda: 0x80)
    cpu.set_output_callback(0x90, written.append)

    cpu.step()

    assert written == [0x82]


def test_callbacks_can_be_removed() -> None:
    cpu, _, _ = make_cpu(bytes([0xE5, 0x90]))
    cpu.set_input_callback(0x90, lambda: 0x5A)
    cpu.set_input_callback(0x90, None)
    cpu.state.iram[0x90] = 0x01

    cpu.step()

    assert cpu.state.a == 0x01


def test_callback_registration_is_validated() -> None:
    cpu, _, _ = make_cpu(bytes([0x00]))
    with pytest.raises(ValueError):
        cpu.set_input_callback(0x30, lambda: 0)
    with pytest.raises(ValueError):
        cpu.set_output_callback(0xE0, lambda value: None)


def test_sfr_window_start_is_configurable() -> None:
    rom = Memory(0x0000, 0x100)
    rom.load_image(bytes([0xE5, 0x40]))  # MOV A,40h
    cpu = MCS51(rom, sfr_window_start=0x40)
    cpu.reset()
    cpu.set_input_callback(0x40, lambda: 0x99)

    cpu.step()

    assert cpu.state.a == 0x99


# ----------------------------------------------------------------------
# Failures


def test_unknown_opcode_leaves_state_untouched() -> None:
    cpu, _, _ = make_cpu(bytes([0xA5]), origin=0x0200)
    cpu.state.a = 0x12
    cpu.state.psw = FLAG_CY

    with pytest.raises(UnknownOpcodeError) as excinfo:
        cpu.step()

    assert excinfo.value.opcode == 0xA5
    assert excinfo.value.address == 0x0200
    assert cpu.state.pc == 0x0200
    assert cpu.state.a == 0x12
    assert cpu.state.psw == FLAG_CY
    assert cpu.cycle_count == 0
    assert cpu.phase == CPUPhase.IDLE


def test_stack_overflow_is_reported() -> None:
    cpu, _, _ = make_cpu(bytes([0x12, 0x01, 0x00]))  # LCALL 0100h
    cpu.state.sp = 0xFE

    with pytest.raises(StackOverflowError):
        cpu.step()

    assert cpu.state.sp == 0xFE
    assert cpu.state.pc == 0x0000


def test_stack_underflow_is_reported() -> None:
    cpu, _, _ = make_cpu(bytes([0x22]))  # RET
    cpu.state.sp = 0x01

    with pytest.raises(StackUnderflowError):
        cpu.step()

    assert cpu.state.pc == 0x0000


def test_failed_step_rolls_back_partial_changes() -> None:
    cpu, _, _ = make_cpu(bytes([0xD0, 0x90]))  # POP P1

    def jammed(value: int) -> None:
        raise RuntimeError("port jammed")

    cpu.set_output_callback(0x90, jammed)
    cpu.state.sp = 0x30
    cpu.state.iram[0x30] = 0x42

    with pytest.raises(RuntimeError, match="port jammed"):
        cpu.step()

    assert cpu.state.sp == 0x30
    assert cpu.state.pc == 0x0000
    assert cpu.phase == CPUPhase.IDLE


def test_short_code_read_faults() -> None:
    rom = Memory(0x0000, 2)
    rom.load_image(bytes([0x02, 0x12]))  # truncated LJMP
    cpu = MCS51(rom)
    cpu.reset()

    with pytest.raises(MemoryFault):
        cpu.step()

    assert cpu.state.pc == 0x0000


def test_step_is_not_reentrant() -> None:
    cpu, _, _ = make_cpu(bytes([0xF5, 0x90]))
    cpu.set_output_callback(0x90, lambda value: cpu.step())

    with pytest.raises(CPUError, match="executing"):
        cpu.step()

    assert cpu.phase == CPUPhase.IDLE
    assert cpu.state.pc == 0x0000


def test_invalid_configuration_is_rejected() -> None:
    rom = Memory(0x0000, 0x100)
    with pytest.raises(ValueError):
        MCS51(rom, sfr_window_start=0x100)
    with pytest.raises(ValueError):
        MCS51(rom, instruction_table=())


# ----------------------------------------------------------------------
# Tracing


def test_trace_records_steps_and_failures() -> None:
    rom = Memory(0x0000, 0x100)
    rom.load_image(bytes([0x00, 0xA5]))
    trace = TraceRecorder(4)
    cpu = MCS51(rom, trace=trace)
    cpu.reset()

    cpu.step()
    with pytest.raises(UnknownOpcodeError):
        cpu.step()

    entries = list(trace.entries())
    assert len(entries) == 2
    assert entries[0].text == "NOP"
    assert entries[0].cycles == 1
    assert entries[1].pc == 0x0001
    assert entries[1].opcode == 0xA5
    assert entries[1].note == "UnknownOpcodeError"
