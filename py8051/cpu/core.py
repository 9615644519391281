"""8051 execution engine and CPU driver."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Callable, Dict, Optional, Sequence

from py8051.bus import CodeMemory, DataMemory
from py8051.utils import TraceRecorder, debug_enabled, debug_log

from .decoder import DecodedInstruction, disassemble, fetch, page_target, read_code, relative_target
from .errors import CPUError, MemoryFault, UnknownOpcodeError
from .opcodes import OPCODE_TABLE, Instruction, Operand
from .state import (
    CORE_SFRS,
    FLAG_AC,
    FLAG_CY,
    FLAG_OV,
    SFR_ACC,
    SFR_B,
    SFR_DPH,
    SFR_DPL,
    SFR_PSW,
    SFR_SP,
    CPUState,
)

InputCallback = Callable[[], int]
OutputCallback = Callable[[int], None]

SFR_WINDOW_START = 0x80


class CPUPhase(Enum):
    IDLE = auto()
    EXECUTING = auto()


@dataclass
class MCS51:
    """8051 core: fetches from ``code``, uses ``xram`` for MOVX.

    Direct-address accesses at or above ``sfr_window_start`` are routed to the
    port callbacks registered for that address. Core registers (ACC, B, PSW,
    SP, DPL, DPH) are always served from :class:`CPUState`.
    """

    code: CodeMemory
    xram: Optional[DataMemory] = None
    instruction_table: Sequence[Instruction] = field(default=OPCODE_TABLE)
    sfr_window_start: int = SFR_WINDOW_START
    trace: Optional[TraceRecorder] = None

    state: CPUState = field(default_factory=CPUState)
    cycle_count: int = 0
    phase: CPUPhase = CPUPhase.IDLE

    _input_callbacks: Dict[int, InputCallback] = field(default_factory=dict, init=False, repr=False)
    _output_callbacks: Dict[int, OutputCallback] = field(default_factory=dict, init=False, repr=False)
    _jump_target: Optional[int] = field(default=None, init=False, repr=False)

    def __post_init__(self) -> None:
        if not 0 <= self.sfr_window_start <= 0xFF:
            raise ValueError(f"SFR window start out of range: {self.sfr_window_start:#x}")
        if len(self.instruction_table) != 0x100:
            raise ValueError("instruction table must have 256 entries")

    def reset(self) -> None:
        """Restore power-on register values. Port callbacks stay registered."""

        self.state = CPUState()
        self.cycle_count = 0
        self.phase = CPUPhase.IDLE
        self._jump_target = None

    def step(self) -> int:
        """Execute a single instruction and return its machine-cycle count.

        A step that raises leaves the register file as it was before the
        step. Bytes already handed to external memory or to an output callback
        are not taken back.
        """

        if self.phase == CPUPhase.EXECUTING:
            raise CPUError("step() called while an instruction is executing")

        self.phase = CPUPhase.EXECUTING
        snapshot = self.state.clone()
        pc_before = self.state.pc
        decoded: DecodedInstruction | None = None
        self._jump_target = None
        try:
            decoded = fetch(self.code, pc_before, self.instruction_table)
            if debug_enabled("cpu"):
                debug_log("cpu", "pc=%04x opcode=%02x %s", pc_before, decoded.opcode, disassemble(decoded))
            handler = getattr(self, decoded.instruction.handler, None)
            if handler is None:
                raise CPUError(f"handler '{decoded.instruction.handler}' not implemented")
            handler(decoded)
            if self._jump_target is None:
                self.state.pc = decoded.next_address
            else:
                self.state.pc = self._jump_target
            self.state.update_parity()
        except Exception as exc:
            self.state.copy_from(snapshot)
            if debug_enabled("cpu"):
                debug_log("cpu", "pc=%04x step failed: %s", pc_before, exc)
            if self.trace is not None:
                self.trace.record_step(
                    pc_before,
                    self.state,
                    None if decoded is None else decoded.opcode,
                    0,
                    text="" if decoded is None else disassemble(decoded),
                    note=type(exc).__name__,
                )
            raise
        finally:
            self._jump_target = None
            self.phase = CPUPhase.IDLE

        cycles = decoded.instruction.cycles
        self.cycle_count += cycles
        if self.trace is not None:
            self.trace.record_step(pc_before, self.state, decoded.opcode, cycles, text=disassemble(decoded))
        return cycles

    def run(self, max_steps: int) -> int:
        """Step up to ``max_steps`` instructions and return the cycles spent."""

        total = 0
        for _ in range(max_steps):
            total += self.step()
        return total

    # ------------------------------------------------------------------
    # Port callbacks

    def set_input_callback(self, address: int, callback: InputCallback | None) -> None:
        """Serve direct reads of ``address`` from ``callback`` (``None`` removes it)."""

        self._check_port_address(address)
        if callback is None:
            self._input_callbacks.pop(address, None)
        else:
            self._input_callbacks[address] = callback

    def set_output_callback(self, address: int, callback: OutputCallback | None) -> None:
        """Send direct writes of ``address`` to ``callback`` (``None`` removes it)."""

        self._check_port_address(address)
        if callback is None:
            self._output_callbacks.pop(address, None)
        else:
            self._output_callbacks[address] = callback

    def _check_port_address(self, address: int) -> None:
        if not self.sfr_window_start <= address <= 0xFF:
            raise ValueError(
                f"address {address:#04x} outside SFR window {self.sfr_window_start:#04x}-0xff")
        if address in CORE_SFRS:
            raise ValueError(f"address {address:#04x} is a core register and cannot be redirected")

    # ------------------------------------------------------------------
    # Direct and bit addressing

    def read_direct(self, address: int) -> int:
        address &= 0xFF
        state = self.state
        if address in CORE_SFRS:
            if address == SFR_ACC:
                return state.a
            if address == SFR_B:
                return state.b
            if address == SFR_PSW:
                return state.psw
            if address == SFR_SP:
                return state.sp
            if address == SFR_DPL:
                return state.dptr & 0xFF
            return (state.dptr >> 8) & 0xFF
        if address >= self.sfr_window_start:
            callback = self._input_callbacks.get(address)
            if callback is not None:
                return callback() & 0xFF
        return state.iram[address]

    def write_direct(self, address: int, value: int) -> None:
        address &= 0xFF
        value &= 0xFF
        state = self.state
        if address in CORE_SFRS:
            if address == SFR_ACC:
                state.a = value
            elif address == SFR_B:
                state.b = value
            elif address == SFR_PSW:
                state.psw = value
            elif address == SFR_SP:
                state.sp = value
            elif address == SFR_DPL:
                state.dptr = (state.dptr & 0xFF00) | value
            else:
                state.dptr = (value << 8) | (state.dptr & 0x00FF)
            return
        if address >= self.sfr_window_start:
            callback = self._output_callbacks.get(address)
            if callback is not None:
                callback(value)
                return
        state.iram[address] = value

    @staticmethod
    def _bit_location(bit: int) -> tuple[int, int]:
        bit &= 0xFF
        if bit < 0x80:
            return 0x20 + (bit >> 3), 1 << (bit & 0x07)
        return bit & 0xF8, 1 << (bit & 0x07)

    def read_bit(self, bit: int) -> int:
        address, mask = self._bit_location(bit)
        return 1 if self.read_direct(address) & mask else 0

    def write_bit(self, bit: int, value: int) -> None:
        address, mask = self._bit_location(bit)
        current = self.read_direct(address)
        if value:
            self.write_direct(address, current | mask)
        else:
            self.write_direct(address, current & ~mask)

    # ------------------------------------------------------------------
    # Operand resolution

    def _read_operand(self, decoded: DecodedInstruction, index: int) -> int:
        operand = decoded.instruction.operands[index]
        value = decoded.fields[index]
        state = self.state
        if operand == Operand.A:
            return state.a
        if operand == Operand.C:
            return 1 if state.get_flag(FLAG_CY) else 0
        if operand == Operand.REGISTER:
            return state.iram[state.register_address(decoded.opcode & 0x07)]
        if operand == Operand.INDIRECT:
            return state.iram[state.indirect_address(decoded.opcode & 0x01)]
        if operand == Operand.DIRECT:
            return self.read_direct(value)
        if operand in (Operand.IMMEDIATE, Operand.IMMEDIATE16):
            return value
        if operand == Operand.BIT:
            return self.read_bit(value)
        if operand == Operand.NOT_BIT:
            return self.read_bit(value) ^ 1
        if operand == Operand.DPTR:
            return state.dptr
        raise CPUError(f"operand {operand.label} of {decoded.mnemonic.name} cannot be read")

    def _write_operand(self, decoded: DecodedInstruction, index: int, result: int) -> None:
        operand = decoded.instruction.operands[index]
        value = decoded.fields[index]
        state = self.state
        if operand == Operand.A:
            state.a = result & 0xFF
        elif operand == Operand.C:
            state.set_flag(FLAG_CY, bool(result))
        elif operand == Operand.REGISTER:
            state.iram[state.register_address(decoded.opcode & 0x07)] = result & 0xFF
        elif operand == Operand.INDIRECT:
            state.iram[state.indirect_address(decoded.opcode & 0x01)] = result & 0xFF
        elif operand == Operand.DIRECT:
            self.write_direct(value, result)
        elif operand == Operand.BIT:
            self.write_bit(value, result)
        elif operand == Operand.DPTR:
            state.dptr = result & 0xFFFF
        else:
            raise CPUError(f"operand {operand.label} of {decoded.mnemonic.name} cannot be written")

    def _jump(self, target: int) -> None:
        self._jump_target = target & 0xFFFF

    def _branch(self, decoded: DecodedInstruction, index: int) -> None:
        self._jump(relative_target(decoded.next_address, decoded.fields[index]))

    # ------------------------------------------------------------------
    # External memory

    def _external_address(self, decoded: DecodedInstruction, operand: Operand) -> int:
        if operand == Operand.AT_DPTR:
            return self.state.dptr
        return self.state.indirect_address(decoded.opcode & 0x01)

    def _require_xram(self, address: int) -> DataMemory:
        if self.xram is None:
            raise MemoryFault(f"MOVX at {address:#06x} with no external data memory attached", address)
        return self.xram

    def _read_external(self, address: int) -> int:
        xram = self._require_xram(address)
        try:
            data = xram.read_at(address, 1)
        except OSError as exc:
            raise MemoryFault(f"external read at {address:#06x} failed: {exc}", address) from exc
        if len(data) != 1:
            raise MemoryFault(f"short external read at {address:#06x}", address)
        return data[0]

    def _write_external(self, address: int, value: int) -> None:
        xram = self._require_xram(address)
        try:
            written = xram.write_at(address, bytes([value & 0xFF]))
        except OSError as exc:
            raise MemoryFault(f"external write at {address:#06x} failed: {exc}", address) from exc
        if written != 1:
            raise MemoryFault(f"short external write at {address:#06x}", address)

    # ------------------------------------------------------------------
    # Arithmetic helpers

    def _add8(self, x: int, y: int, *, carry_in: bool) -> int:
        carry = 1 if carry_in else 0
        total = x + y + carry
        half = (x & 0x0F) + (y & 0x0F) + carry
        carry6 = (x & 0x7F) + (y & 0x7F) + carry > 0x7F
        carry7 = total > 0xFF
        self.state.set_flag(FLAG_CY, carry7)
        self.state.set_flag(FLAG_AC, half > 0x0F)
        self.state.set_flag(FLAG_OV, carry6 != carry7)
        return total & 0xFF

    def _sub8(self, x: int, y: int, *, borrow_in: bool) -> int:
        borrow = 1 if borrow_in else 0
        total = x - y - borrow
        half = (x & 0x0F) - (y & 0x0F) - borrow
        borrow6 = (x & 0x7F) - (y & 0x7F) - borrow < 0
        borrow7 = total < 0
        self.state.set_flag(FLAG_CY, borrow7)
        self.state.set_flag(FLAG_AC, half < 0)
        self.state.set_flag(FLAG_OV, borrow6 != borrow7)
        return total & 0xFF

    # ------------------------------------------------------------------
    # Instruction handlers

    def op_unknown(self, decoded: DecodedInstruction) -> None:
        raise UnknownOpcodeError(decoded.opcode, decoded.address)

    def op_nop(self, _: DecodedInstruction) -> None:
        """No operation."""

    def op_ajmp(self, decoded: DecodedInstruction) -> None:
        self._jump(page_target(decoded.next_address, decoded.opcode, decoded.fields[0]))

    def op_acall(self, decoded: DecodedInstruction) -> None:
        self.state.push_word(decoded.next_address)
        self._jump(page_target(decoded.next_address, decoded.opcode, decoded.fields[0]))

    def op_ljmp(self, decoded: DecodedInstruction) -> None:
        self._jump(decoded.fields[0])

    def op_lcall(self, decoded: DecodedInstruction) -> None:
        self.state.push_word(decoded.next_address)
        self._jump(decoded.fields[0])

    def op_ret(self, _: DecodedInstruction) -> None:
        self._jump(self.state.pop_word())

    def op_reti(self, _: DecodedInstruction) -> None:
        # No interrupt controller is modelled, so there is no priority level to restore.
        self._jump(self.state.pop_word())

    def op_jmp(self, _: DecodedInstruction) -> None:
        self._jump(self.state.a + self.state.dptr)

    def op_sjmp(self, decoded: DecodedInstruction) -> None:
        self._branch(decoded, 0)

    def op_jc(self, decoded: DecodedInstruction) -> None:
        if self.state.get_flag(FLAG_CY):
            self._branch(decoded, 0)

    def op_jnc(self, decoded: DecodedInstruction) -> None:
        if not self.state.get_flag(FLAG_CY):
            self._branch(decoded, 0)

    def op_jz(self, decoded: DecodedInstruction) -> None:
        if self.state.a == 0:
            self._branch(decoded, 0)

    def op_jnz(self, decoded: DecodedInstruction) -> None:
        if self.state.a != 0:
            self._branch(decoded, 0)

    def op_jb(self, decoded: DecodedInstruction) -> None:
        if self._read_operand(decoded, 0):
            self._branch(decoded, 1)

    def op_jnb(self, decoded: DecodedInstruction) -> None:
        if not self._read_operand(decoded, 0):
            self._branch(decoded, 1)

    def op_jbc(self, decoded: DecodedInstruction) -> None:
        if self._read_operand(decoded, 0):
            self._write_operand(decoded, 0, 0)
            self._branch(decoded, 1)

    def op_cjne(self, decoded: DecodedInstruction) -> None:
        destination = self._read_operand(decoded, 0)
        source = self._read_operand(decoded, 1)
        self.state.set_flag(FLAG_CY, destination < source)
        if destination != source:
            self._branch(decoded, 2)

    def op_djnz(self, decoded: DecodedInstruction) -> None:
        result = (self._read_operand(decoded, 0) - 1) & 0xFF
        self._write_operand(decoded, 0, result)
        if result != 0:
            self._branch(decoded, 1)

    def op_add(self, decoded: DecodedInstruction) -> None:
        operand = self._read_operand(decoded, 1)
        self.state.a = self._add8(self.state.a, operand, carry_in=False)

    def op_addc(self, decoded: DecodedInstruction) -> None:
        operand = self._read_operand(decoded, 1)
        self.state.a = self._add8(self.state.a, operand, carry_in=self.state.get_flag(FLAG_CY))

    def op_subb(self, decoded: DecodedInstruction) -> None:
        operand = self._read_operand(decoded, 1)
        self.state.a = self._sub8(self.state.a, operand, borrow_in=self.state.get_flag(FLAG_CY))

    def op_inc(self, decoded: DecodedInstruction) -> None:
        self._write_operand(decoded, 0, self._read_operand(decoded, 0) + 1)

    def op_dec(self, decoded: DecodedInstruction) -> None:
        self._write_operand(decoded, 0, self._read_operand(decoded, 0) - 1)

    def op_mul(self, _: DecodedInstruction) -> None:
        product = self.state.a * self.state.b
        self.state.b = (product >> 8) & 0xFF
        self.state.a = product & 0xFF
        self.state.set_flag(FLAG_CY, False)
        self.state.set_flag(FLAG_OV, product > 0xFF)

    def op_div(self, _: DecodedInstruction) -> None:
        state = self.state
        state.set_flag(FLAG_CY, False)
        if state.b == 0:
            # A and B are undefined on silicon; they are left untouched here.
            state.set_flag(FLAG_OV, True)
            return
        state.a, state.b = divmod(state.a, state.b)
        state.set_flag(FLAG_OV, False)

    def op_da(self, _: DecodedInstruction) -> None:
        state = self.state
        value = state.a
        carry = state.get_flag(FLAG_CY)
        if (value & 0x0F) > 9 or state.get_flag(FLAG_AC):
            value += 0x06
            if value > 0xFF:
                carry = True
        if carry or ((value >> 4) & 0x0F) > 9:
            value += 0x60
            if value > 0xFF:
                carry = True
        state.a = value & 0xFF
        state.set_flag(FLAG_CY, carry)

    def op_anl(self, decoded: DecodedInstruction) -> None:
        self._write_operand(decoded, 0, self._read_operand(decoded, 0) & self._read_operand(decoded, 1))

    def op_orl(self, decoded: DecodedInstruction) -> None:
        self._write_operand(decoded, 0, self._read_operand(decoded, 0) | self._read_operand(decoded, 1))

    def op_xrl(self, decoded: DecodedInstruction) -> None:
        self._write_operand(decoded, 0, self._read_operand(decoded, 0) ^ self._read_operand(decoded, 1))

    def op_clr(self, decoded: DecodedInstruction) -> None:
        self._write_operand(decoded, 0, 0)

    def op_setb(self, decoded: DecodedInstruction) -> None:
        self._write_operand(decoded, 0, 1)

    def op_cpl(self, decoded: DecodedInstruction) -> None:
        value = self._read_operand(decoded, 0)
        if decoded.instruction.operands[0] == Operand.A:
            self._write_operand(decoded, 0, value ^ 0xFF)
        else:
            self._write_operand(decoded, 0, value ^ 1)

    def op_rl(self, _: DecodedInstruction) -> None:
        a = self.state.a
        self.state.a = ((a << 1) | (a >> 7)) & 0xFF

    def op_rlc(self, _: DecodedInstruction) -> None:
        a = self.state.a
        carry_in = 1 if self.state.get_flag(FLAG_CY) else 0
        self.state.set_flag(FLAG_CY, (a & 0x80) != 0)
        self.state.a = ((a << 1) | carry_in) & 0xFF

    def op_rr(self, _: DecodedInstruction) -> None:
        a = self.state.a
        self.state.a = ((a >> 1) | (a << 7)) & 0xFF

    def op_rrc(self, _: DecodedInstruction) -> None:
        a = self.state.a
        carry_in = 0x80 if self.state.get_flag(FLAG_CY) else 0
        self.state.set_flag(FLAG_CY, (a & 0x01) != 0)
        self.state.a = (a >> 1) | carry_in

    def op_swap(self, _: DecodedInstruction) -> None:
        a = self.state.a
        self.state.a = ((a << 4) | (a >> 4)) & 0xFF

    def op_mov(self, decoded: DecodedInstruction) -> None:
        self._write_operand(decoded, 0, self._read_operand(decoded, 1))

    def op_movc(self, decoded: DecodedInstruction) -> None:
        if decoded.instruction.operands[1] == Operand.AT_A_DPTR:
            base = self.state.dptr
        else:
            base = decoded.next_address
        address = (self.state.a + base) & 0xFFFF
        self.state.a = read_code(self.code, address, 1)[0]

    def op_movx(self, decoded: DecodedInstruction) -> None:
        destination, source = decoded.instruction.operands
        if destination == Operand.A:
            address = self._external_address(decoded, source)
            self.state.a = self._read_external(address)
        else:
            address = self._external_address(decoded, destination)
            self._write_external(address, self.state.a)

    def op_push(self, decoded: DecodedInstruction) -> None:
        self.state.push_byte(self._read_operand(decoded, 0))

    def op_pop(self, decoded: DecodedInstruction) -> None:
        self._write_operand(decoded, 0, self.state.pop_byte())

    def op_xch(self, decoded: DecodedInstruction) -> None:
        other = self._read_operand(decoded, 1)
        self._write_operand(decoded, 1, self.state.a)
        self.state.a = other

    def op_xchd(self, decoded: DecodedInstruction) -> None:
        state = self.state
        address = state.indirect_address(decoded.opcode & 0x01)
        memory = state.iram[address]
        state.iram[address] = (memory & 0xF0) | (state.a & 0x0F)
        state.a = (state.a & 0xF0) | (memory & 0x0F)


__all__ = [
    "CPUPhase",
    "InputCallback",
    "MCS51",
    "OutputCallback",
    "SFR_WINDOW_START",
]
