"""Opcode metadata for the 8051 (MCS-51) core.

Every one of the 256 opcode bytes maps to exactly one :class:`Instruction`.
Operands are listed in assembly order (destination first); each operand kind
knows how many encoding bytes it consumes, which lets the table check its own
instruction lengths when it is built.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, auto
from typing import Final, Iterable, List, Sequence, Tuple


class Mnemonic(Enum):
    """Operations of the base 8051 instruction set."""

    ACALL = auto()
    ADD = auto()
    ADDC = auto()
    AJMP = auto()
    ANL = auto()
    CJNE = auto()
    CLR = auto()
    CPL = auto()
    DA = auto()
    DEC = auto()
    DIV = auto()
    DJNZ = auto()
    INC = auto()
    JB = auto()
    JBC = auto()
    JC = auto()
    JMP = auto()
    JNB = auto()
    JNC = auto()
    JNZ = auto()
    JZ = auto()
    LCALL = auto()
    LJMP = auto()
    MOV = auto()
    MOVC = auto()
    MOVX = auto()
    MUL = auto()
    NOP = auto()
    ORL = auto()
    POP = auto()
    PUSH = auto()
    RET = auto()
    RETI = auto()
    RL = auto()
    RLC = auto()
    RR = auto()
    RRC = auto()
    SETB = auto()
    SJMP = auto()
    SUBB = auto()
    SWAP = auto()
    XCH = auto()
    XCHD = auto()
    XRL = auto()
    # Reserved opcode 0xA5.
    UNKNOWN = auto()


class Operand(Enum):
    """Operand kinds and the number of encoding bytes each consumes."""

    A = ("A", 0)
    AB = ("AB", 0)
    C = ("C", 0)
    DPTR = ("DPTR", 0)
    REGISTER = ("Rn", 0)
    INDIRECT = ("@Ri", 0)
    AT_DPTR = ("@DPTR", 0)
    AT_A_DPTR = ("@A+DPTR", 0)
    AT_A_PC = ("@A+PC", 0)
    DIRECT = ("direct", 1)
    IMMEDIATE = ("#data", 1)
    IMMEDIATE16 = ("#data16", 2)
    BIT = ("bit", 1)
    NOT_BIT = ("/bit", 1)
    RELATIVE = ("rel", 1)
    ADDR11 = ("addr11", 1)
    ADDR16 = ("addr16", 2)

    def __init__(self, label: str, size: int) -> None:
        self.label = label
        self.size = size


@dataclass(frozen=True)
class Instruction:
    """Metadata describing a single 8051 opcode."""

    opcode: int
    mnemonic: Mnemonic
    length: int
    cycles: int
    operands: Tuple[Operand, ...] = ()
    # MOV direct,direct stores the source address before the destination.
    source_first: bool = False

    def __post_init__(self) -> None:
        if not 0 <= self.opcode <= 0xFF:
            raise ValueError(f"opcode out of range: {self.opcode}")
        if self.length not in (1, 2, 3):
            raise ValueError(f"opcode {self.opcode:#04x}: length must be 1-3, got {self.length}")
        if self.cycles <= 0:
            raise ValueError("cycles must be positive")
        encoded = 1 + sum(operand.size for operand in self.operands)
        if encoded != self.length:
            raise ValueError(
                f"opcode {self.opcode:#04x} ({self.mnemonic.name}): operands encode "
                f"{encoded} bytes but length is {self.length}")

    @property
    def name(self) -> str:
        return self.mnemonic.name

    @property
    def handler(self) -> str:
        return f"op_{self.mnemonic.name.lower()}"


class OpcodeTable:
    """Builder for the 256-entry instruction table."""

    _TABLE_SIZE: Final[int] = 0x100

    def __init__(self) -> None:
        self._table: List[Instruction | None] = [None] * self._TABLE_SIZE

    def register(self, instruction: Instruction) -> None:
        opcode = instruction.opcode
        if self._table[opcode] is not None:
            existing = self._table[opcode]
            raise ValueError(
                f"opcode {opcode:#04x} already registered as {existing.mnemonic.name}")
        self._table[opcode] = instruction

    def register_all(self, instructions: Iterable[Instruction]) -> None:
        for instruction in instructions:
            self.register(instruction)

    def freeze(self) -> Sequence[Instruction]:
        missing = [opcode for opcode, entry in enumerate(self._table) if entry is None]
        if missing:
            listed = ", ".join(f"{opcode:#04x}" for opcode in missing)
            raise ValueError(f"opcode table incomplete, missing: {listed}")
        return tuple(self._table)  # type: ignore[arg-type]


def build_instruction_table(instructions: Iterable[Instruction]) -> Sequence[Instruction]:
    """Build a complete 256-entry instruction lookup table."""

    table = OpcodeTable()
    table.register_all(instructions)
    return table.freeze()


_M = Mnemonic
_O = Operand


def _op(opcode: int, mnemonic: Mnemonic, length: int, cycles: int, *operands: Operand) -> Instruction:
    return Instruction(opcode, mnemonic, length, cycles, operands)


def _registers(base: int, mnemonic: Mnemonic, length: int, cycles: int, *operands: Operand) -> List[Instruction]:
    """Eight opcodes ``base``..``base+7`` selecting R0..R7 from the low three bits."""

    return [_op(base + n, mnemonic, length, cycles, *operands) for n in range(8)]


def _indirect(base: int, mnemonic: Mnemonic, length: int, cycles: int, *operands: Operand) -> List[Instruction]:
    """Two opcodes ``base``/``base+1`` selecting @R0/@R1 from the lowest bit."""

    return [_op(base + n, mnemonic, length, cycles, *operands) for n in range(2)]


def _pages(low: int, mnemonic: Mnemonic) -> List[Instruction]:
    """AJMP/ACALL: address bits 10-8 live in opcode bits 7-5."""

    return [_op((page << 5) | low, mnemonic, 2, 2, _O.ADDR11) for page in range(8)]


DEFAULT_INSTRUCTIONS: Sequence[Instruction] = (
    _op(0x00, _M.NOP, 1, 1),
    _op(0xA5, _M.UNKNOWN, 1, 1),
    # Control transfer
    *_pages(0x01, _M.AJMP),
    *_pages(0x11, _M.ACALL),
    _op(0x02, _M.LJMP, 3, 2, _O.ADDR16),
    _op(0x12, _M.LCALL, 3, 2, _O.ADDR16),
    _op(0x22, _M.RET, 1, 2),
    _op(0x32, _M.RETI, 1, 2),
    _op(0x73, _M.JMP, 1, 2, _O.AT_A_DPTR),
    _op(0x80, _M.SJMP, 2, 2, _O.RELATIVE),
    _op(0x40, _M.JC, 2, 2, _O.RELATIVE),
    _op(0x50, _M.JNC, 2, 2, _O.RELATIVE),
    _op(0x60, _M.JZ, 2, 2, _O.RELATIVE),
    _op(0x70, _M.JNZ, 2, 2, _O.RELATIVE),
    _op(0x10, _M.JBC, 3, 2, _O.BIT, _O.RELATIVE),
    _op(0x20, _M.JB, 3, 2, _O.BIT, _O.RELATIVE),
    _op(0x30, _M.JNB, 3, 2, _O.BIT, _O.RELATIVE),
    _op(0xB4, _M.CJNE, 3, 2, _O.A, _O.IMMEDIATE, _O.RELATIVE),
    _op(0xB5, _M.CJNE, 3, 2, _O.A, _O.DIRECT, _O.RELATIVE),
    *_indirect(0xB6, _M.CJNE, 3, 2, _O.INDIRECT, _O.IMMEDIATE, _O.RELATIVE),
    *_registers(0xB8, _M.CJNE, 3, 2, _O.REGISTER, _O.IMMEDIATE, _O.RELATIVE),
    _op(0xD5, _M.DJNZ, 3, 2, _O.DIRECT, _O.RELATIVE),
    *_registers(0xD8, _M.DJNZ, 2, 2, _O.REGISTER, _O.RELATIVE),
    # Accumulator rotates and adjusts
    _op(0x03, _M.RR, 1, 1, _O.A),
    _op(0x13, _M.RRC, 1, 1, _O.A),
    _op(0x23, _M.RL, 1, 1, _O.A),
    _op(0x33, _M.RLC, 1, 1, _O.A),
    _op(0xC4, _M.SWAP, 1, 1, _O.A),
    _op(0xD4, _M.DA, 1, 1, _O.A),
    _op(0xA4, _M.MUL, 1, 4, _O.AB),
    _op(0x84, _M.DIV, 1, 4, _O.AB),
    # INC / DEC
    _op(0x04, _M.INC, 1, 1, _O.A),
    _op(0x05, _M.INC, 2, 1, _O.DIRECT),
    *_indirect(0x06, _M.INC, 1, 1, _O.INDIRECT),
    *_registers(0x08, _M.INC, 1, 1, _O.REGISTER),
    _op(0xA3, _M.INC, 1, 2, _O.DPTR),
    _op(0x14, _M.DEC, 1, 1, _O.A),
    _op(0x15, _M.DEC, 2, 1, _O.DIRECT),
    *_indirect(0x16, _M.DEC, 1, 1, _O.INDIRECT),
    *_registers(0x18, _M.DEC, 1, 1, _O.REGISTER),
    # ADD / ADDC / SUBB
    _op(0x24, _M.ADD, 2, 1, _O.A, _O.IMMEDIATE),
    _op(0x25, _M.ADD, 2, 1, _O.A, _O.DIRECT),
    *_indirect(0x26, _M.ADD, 1, 1, _O.A, _O.INDIRECT),
    *_registers(0x28, _M.ADD, 1, 1, _O.A, _O.REGISTER),
    _op(0x34, _M.ADDC, 2, 1, _O.A, _O.IMMEDIATE),
    _op(0x35, _M.ADDC, 2, 1, _O.A, _O.DIRECT),
    *_indirect(0x36, _M.ADDC, 1, 1, _O.A, _O.INDIRECT),
    *_registers(0x38, _M.ADDC, 1, 1, _O.A, _O.REGISTER),
    _op(0x94, _M.SUBB, 2, 1, _O.A, _O.IMMEDIATE),
    _op(0x95, _M.SUBB, 2, 1, _O.A, _O.DIRECT),
    *_indirect(0x96, _M.SUBB, 1, 1, _O.A, _O.INDIRECT),
    *_registers(0x98, _M.SUBB, 1, 1, _O.A, _O.REGISTER),
    # ORL / ANL / XRL
    _op(0x42, _M.ORL, 2, 1, _O.DIRECT, _O.A),
    _op(0x43, _M.ORL, 3, 2, _O.DIRECT, _O.IMMEDIATE),
    _op(0x44, _M.ORL, 2, 1, _O.A, _O.IMMEDIATE),
    _op(0x45, _M.ORL, 2, 1, _O.A, _O.DIRECT),
    *_indirect(0x46, _M.ORL, 1, 1, _O.A, _O.INDIRECT),
    *_registers(0x48, _M.ORL, 1, 1, _O.A, _O.REGISTER),
    _op(0x72, _M.ORL, 2, 2, _O.C, _O.BIT),
    _op(0xA0, _M.ORL, 2, 2, _O.C, _O.NOT_BIT),
    _op(0x52, _M.ANL, 2, 1, _O.DIRECT, _O.A),
    _op(0x53, _M.ANL, 3, 2, _O.DIRECT, _O.IMMEDIATE),
    _op(0x54, _M.ANL, 2, 1, _O.A, _O.IMMEDIATE),
    _op(0x55, _M.ANL, 2, 1, _O.A, _O.DIRECT),
    *_indirect(0x56, _M.ANL, 1, 1, _O.A, _O.INDIRECT),
    *_registers(0x58, _M.ANL, 1, 1, _O.A, _O.REGISTER),
    _op(0x82, _M.ANL, 2, 2, _O.C, _O.BIT),
    _op(0xB0, _M.ANL, 2, 2, _O.C, _O.NOT_BIT),
    _op(0x62, _M.XRL, 2, 1, _O.DIRECT, _O.A),
    _op(0x63, _M.XRL, 3, 2, _O.DIRECT, _O.IMMEDIATE),
    _op(0x64, _M.XRL, 2, 1, _O.A, _O.IMMEDIATE),
    _op(0x65, _M.XRL, 2, 1, _O.A, _O.DIRECT),
    *_indirect(0x66, _M.XRL, 1, 1, _O.A, _O.INDIRECT),
    *_registers(0x68, _M.XRL, 1, 1, _O.A, _O.REGISTER),
    # MOV
    _op(0x74, _M.MOV, 2, 1, _O.A, _O.IMMEDIATE),
    _op(0x75, _M.MOV, 3, 2, _O.DIRECT, _O.IMMEDIATE),
    *_indirect(0x76, _M.MOV, 2, 1, _O.INDIRECT, _O.IMMEDIATE),
    *_registers(0x78, _M.MOV, 2, 1, _O.REGISTER, _O.IMMEDIATE),
    Instruction(0x85, _M.MOV, 3, 2, (_O.DIRECT, _O.DIRECT), source_first=True),
    *_indirect(0x86, _M.MOV, 2, 2, _O.DIRECT, _O.INDIRECT),
    *_registers(0x88, _M.MOV, 2, 2, _O.DIRECT, _O.REGISTER),
    _op(0x90, _M.MOV, 3, 2, _O.DPTR, _O.IMMEDIATE16),
    _op(0x92, _M.MOV, 2, 2, _O.BIT, _O.C),
    _op(0xA2, _M.MOV, 2, 1, _O.C, _O.BIT),
    *_indirect(0xA6, _M.MOV, 2, 2, _O.INDIRECT, _O.DIRECT),
    *_registers(0xA8, _M.MOV, 2, 2, _O.REGISTER, _O.DIRECT),
    _op(0xE5, _M.MOV, 2, 1, _O.A, _O.DIRECT),
    *_indirect(0xE6, _M.MOV, 1, 1, _O.A, _O.INDIRECT),
    *_registers(0xE8, _M.MOV, 1, 1, _O.A, _O.REGISTER),
    _op(0xF5, _M.MOV, 2, 1, _O.DIRECT, _O.A),
    *_indirect(0xF6, _M.MOV, 1, 1, _O.INDIRECT, _O.A),
    *_registers(0xF8, _M.MOV, 1, 1, _O.REGISTER, _O.A),
    # MOVC / MOVX
    _op(0x83, _M.MOVC, 1, 2, _O.A, _O.AT_A_PC),
    _op(0x93, _M.MOVC, 1, 2, _O.A, _O.AT_A_DPTR),
    _op(0xE0, _M.MOVX, 1, 2, _O.A, _O.AT_DPTR),
    *_indirect(0xE2, _M.MOVX, 1, 2, _O.A, _O.INDIRECT),
    _op(0xF0, _M.MOVX, 1, 2, _O.AT_DPTR, _O.A),
    *_indirect(0xF2, _M.MOVX, 1, 2, _O.INDIRECT, _O.A),
    # Stack
    _op(0xC0, _M.PUSH, 2, 2, _O.DIRECT),
    _op(0xD0, _M.POP, 2, 2, _O.DIRECT),
    # Exchanges
    _op(0xC5, _M.XCH, 2, 1, _O.A, _O.DIRECT),
    *_indirect(0xC6, _M.XCH, 1, 1, _O.A, _O.INDIRECT),
    *_registers(0xC8, _M.XCH, 1, 1, _O.A, _O.REGISTER),
    *_indirect(0xD6, _M.XCHD, 1, 1, _O.A, _O.INDIRECT),
    # Bit and accumulator clear/set/complement
    _op(0xC2, _M.CLR, 2, 1, _O.BIT),
    _op(0xC3, _M.CLR, 1, 1, _O.C),
    _op(0xE4, _M.CLR, 1, 1, _O.A),
    _op(0xD2, _M.SETB, 2, 1, _O.BIT),
    _op(0xD3, _M.SETB, 1, 1, _O.C),
    _op(0xB2, _M.CPL, 2, 1, _O.BIT),
    _op(0xB3, _M.CPL, 1, 1, _O.C),
    _op(0xF4, _M.CPL, 1, 1, _O.A),
)


OPCODE_TABLE: Sequence[Instruction] = build_instruction_table(DEFAULT_INSTRUCTIONS)


def lookup(opcode: int) -> Instruction:
    """Return the table entry for ``opcode`` (0-255)."""

    if not 0 <= opcode <= 0xFF:
        raise ValueError(f"opcode out of range: {opcode}")
    return OPCODE_TABLE[opcode]


__all__ = [
    "DEFAULT_INSTRUCTIONS",
    "Instruction",
    "Mnemonic",
    "OPCODE_TABLE",
    "OpcodeTable",
    "Operand",
    "build_instruction_table",
    "lookup",
]
