"""Instruction fetch and disassembly for the 8051 core."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

from py8051.bus import CodeMemory

from .errors import MemoryFault
from .opcodes import OPCODE_TABLE, Instruction, Mnemonic, Operand
from .state import SFR_NAMES


@dataclass(frozen=True)
class DecodedInstruction:
    """One fetched instruction: where it came from, its metadata and raw bytes.

    ``fields`` holds one entry per operand in assembly order: the encoded value
    for operands that consume bytes (16-bit values already combined
    big-endian) and ``None`` for implied operands.
    """

    address: int
    instruction: Instruction
    raw: bytes
    fields: Tuple[Optional[int], ...]

    @property
    def opcode(self) -> int:
        return self.raw[0]

    @property
    def mnemonic(self) -> Mnemonic:
        return self.instruction.mnemonic

    @property
    def length(self) -> int:
        return self.instruction.length

    @property
    def operand_bytes(self) -> bytes:
        return self.raw[1:]

    @property
    def next_address(self) -> int:
        return (self.address + self.instruction.length) & 0xFFFF


def read_code(code: CodeMemory, offset: int, length: int) -> bytes:
    """Read exactly ``length`` bytes of code memory or raise :class:`MemoryFault`."""

    try:
        data = code.read_at(offset, length)
    except OSError as exc:
        raise MemoryFault(f"code read at {offset:#06x} failed: {exc}", offset) from exc
    if len(data) != length:
        raise MemoryFault(
            f"short code read at {offset:#06x}: wanted {length} byte(s), got {len(data)}", offset)
    return bytes(data)


def read_code_wrapped(code: CodeMemory, offset: int, length: int) -> bytes:
    """Like :func:`read_code`, continuing at 0x0000 past the top of the 64 KiB space."""

    offset &= 0xFFFF
    head = min(length, 0x10000 - offset)
    data = read_code(code, offset, head)
    if head < length:
        data += read_code(code, 0x0000, length - head)
    return data


def decode_fields(instruction: Instruction, operand_bytes: bytes) -> Tuple[Optional[int], ...]:
    """Split operand bytes into one value per operand."""

    fields: list[Optional[int]] = []
    cursor = 0
    for operand in instruction.operands:
        if operand.size == 0:
            fields.append(None)
        elif operand.size == 1:
            fields.append(operand_bytes[cursor])
        else:
            fields.append((operand_bytes[cursor] << 8) | operand_bytes[cursor + 1])
        cursor += operand.size
    if instruction.source_first:
        fields.reverse()
    return tuple(fields)


def fetch(
    code: CodeMemory,
    offset: int,
    table: Sequence[Instruction] = OPCODE_TABLE,
) -> DecodedInstruction:
    """Read and classify the instruction starting at ``offset``."""

    offset &= 0xFFFF
    opcode = read_code(code, offset, 1)[0]
    instruction = table[opcode]
    operand_bytes = b""
    if instruction.length > 1:
        operand_bytes = read_code_wrapped(code, offset + 1, instruction.length - 1)
    return DecodedInstruction(
        address=offset,
        instruction=instruction,
        raw=bytes([opcode]) + operand_bytes,
        fields=decode_fields(instruction, operand_bytes),
    )


def relative_target(next_address: int, displacement: int) -> int:
    """Apply a signed 8-bit displacement to the address after the instruction."""

    if displacement & 0x80:
        displacement -= 0x100
    return (next_address + displacement) & 0xFFFF


def page_target(next_address: int, opcode: int, low: int) -> int:
    """AJMP/ACALL target inside the 2 KiB page of the following instruction."""

    offset = (((opcode >> 5) & 0x07) << 8) | (low & 0xFF)
    return (next_address & 0xF800) | offset


def _hex(value: int, width: int) -> str:
    text = f"{value:0{width}X}h"
    if text[0] in "ABCDEF":
        text = "0" + text
    return text


def _direct_name(address: int) -> str:
    return SFR_NAMES.get(address, _hex(address, 2))


def _format_operand(decoded: DecodedInstruction, operand: Operand, value: Optional[int]) -> str:
    if operand == Operand.REGISTER:
        return f"R{decoded.opcode & 0x07}"
    if operand == Operand.INDIRECT:
        return f"@R{decoded.opcode & 0x01}"
    if value is None:
        return operand.label
    if operand == Operand.DIRECT:
        return _direct_name(value)
    if operand == Operand.IMMEDIATE:
        return "#" + _hex(value, 2)
    if operand == Operand.IMMEDIATE16:
        return "#" + _hex(value, 4)
    if operand == Operand.BIT:
        return _hex(value, 2)
    if operand == Operand.NOT_BIT:
        return "/" + _hex(value, 2)
    if operand == Operand.RELATIVE:
        return _hex(relative_target(decoded.next_address, value), 4)
    if operand == Operand.ADDR11:
        return _hex(page_target(decoded.next_address, decoded.opcode, value), 4)
    return _hex(value, 4)


def disassemble(decoded: DecodedInstruction) -> str:
    """Render ``decoded`` as assembly text, e.g. ``ADD A,#01h``."""

    if decoded.mnemonic == Mnemonic.UNKNOWN:
        return f"DB {_hex(decoded.opcode, 2)}"
    operands = [
        _format_operand(decoded, operand, value)
        for operand, value in zip(decoded.instruction.operands, decoded.fields)
    ]
    if not operands:
        return decoded.mnemonic.name
    return f"{decoded.mnemonic.name} {','.join(operands)}"


__all__ = [
    "DecodedInstruction",
    "decode_fields",
    "disassemble",
    "fetch",
    "page_target",
    "read_code",
    "read_code_wrapped",
    "relative_target",
]
