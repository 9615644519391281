"""Intel HEX loader for 8051 program images."""

from __future__ import annotations

import string
from dataclasses import dataclass
from enum import IntEnum
from pathlib import Path
from typing import Iterable, List, TextIO

from py8051.bus import DataMemory
from py8051.utils import debug_enabled, debug_log

from .program import ProgramImage

MIN_RECORD_LENGTH = 11  # ":" + count, address, type and checksum as hex digits

_HEX_DIGITS = frozenset(string.hexdigits)


class IntelHexError(RuntimeError):
    """Raised when an Intel HEX file violates the record format."""

    def __init__(self, message: str, line: int | None = None) -> None:
        if line is not None:
            message = f"line {line}: {message}"
        super().__init__(message)
        self.line = line


class RecordType(IntEnum):
    DATA = 0x00
    EOF = 0x01
    EXTENDED_SEGMENT_ADDRESS = 0x02
    START_SEGMENT_ADDRESS = 0x03
    EXTENDED_LINEAR_ADDRESS = 0x04
    START_LINEAR_ADDRESS = 0x05


# Record types whose data field has a fixed size.
_FIXED_LENGTHS = {
    RecordType.EXTENDED_SEGMENT_ADDRESS: 2,
    RecordType.START_SEGMENT_ADDRESS: 4,
    RecordType.EXTENDED_LINEAR_ADDRESS: 2,
    RecordType.START_LINEAR_ADDRESS: 4,
}


@dataclass(frozen=True)
class Record:
    line: int
    type: int
    address: int
    data: bytes


def parse_record(text: str, line: int) -> Record:
    """Decode one ``:LLAAAATT...CC`` line."""

    if len(text) < MIN_RECORD_LENGTH:
        raise IntelHexError("record of insufficient length", line)
    if text[0] != ":":
        raise IntelHexError("line not prefixed with start code ':'", line)
    digits = text[1:]
    bad = next((char for char in digits if char not in _HEX_DIGITS), None)
    if bad is not None:
        raise IntelHexError(f"invalid hex digits: unexpected {bad!r}", line)
    if len(digits) % 2:
        raise IntelHexError("invalid hex digits: odd number of digits", line)
    decoded = bytes.fromhex(digits)
    if sum(decoded) & 0xFF != 0:
        raise IntelHexError("checksum invalid", line)

    count = decoded[0]
    if len(decoded) != count + 5:
        raise IntelHexError(
            f"data field holds {len(decoded) - 5} byte(s) but count says {count}", line)
    address = (decoded[1] << 8) | decoded[2]
    return Record(line=line, type=decoded[3], address=address, data=decoded[4:4 + count])


def load_ihex(stream: TextIO | Iterable[str]) -> ProgramImage:
    """Parse Intel HEX text from ``stream`` into a :class:`ProgramImage`."""

    loader = _IntelHexLoader(stream)
    return loader.load()


def load_ihex_from_path(path: Path) -> ProgramImage:
    """Parse an Intel HEX file from the filesystem."""

    with path.open("r", encoding="ascii") as handle:
        return load_ihex(handle)


def write_image(image: ProgramImage, memory: DataMemory) -> None:
    """Copy every segment of ``image`` into ``memory``."""

    for segment in image.segments:
        written = memory.write_at(segment.offset, segment.data)
        if written != len(segment.data):
            raise IntelHexError(
                f"segment at {segment.offset:#06x} ({len(segment.data)} bytes) does not fit in memory")


class _IntelHexLoader:
    def __init__(self, stream: TextIO | Iterable[str]) -> None:
        self._stream = stream

    def load(self) -> ProgramImage:
        records = self._read_records()
        program = ProgramImage()
        base = 0
        for record in records:
            base = self._apply(record, program, base)
        self._check_overlap(program)
        if debug_enabled("loader"):
            debug_log("loader", "loaded %d segment(s), size=%04x", len(program.segments), program.size())
        return program

    def _read_records(self) -> List[Record]:
        records: List[Record] = []
        for number, raw in enumerate(self._stream, start=1):
            records.append(parse_record(raw.rstrip("\r\n"), number))

        if not records:
            raise IntelHexError("failed to locate EOF record")
        for record in records[:-1]:
            if record.type == RecordType.EOF:
                raise IntelHexError("encountered EOF on line other than the last", record.line)
        if records[-1].type != RecordType.EOF:
            raise IntelHexError("failed to locate EOF record")
        return records[:-1]

    def _apply(self, record: Record, program: ProgramImage, base: int) -> int:
        try:
            kind = RecordType(record.type)
        except ValueError as exc:
            raise IntelHexError(f"unrecognized record type {record.type:#04x}", record.line) from exc

        expected = _FIXED_LENGTHS.get(kind)
        if expected is not None and len(record.data) != expected:
            raise IntelHexError(
                f"{kind.name} record needs {expected} data bytes, got {len(record.data)}", record.line)

        value = int.from_bytes(record.data, "big")
        if kind == RecordType.DATA:
            program.add_segment(base + record.address, record.data)
        elif kind == RecordType.EXTENDED_SEGMENT_ADDRESS:
            base = value * 16
        elif kind == RecordType.EXTENDED_LINEAR_ADDRESS:
            base = value << 16
        elif kind == RecordType.START_SEGMENT_ADDRESS:
            program.cs = value >> 16
            program.ip = value & 0xFFFF
        elif kind == RecordType.START_LINEAR_ADDRESS:
            program.eip = value
        return base

    @staticmethod
    def _check_overlap(program: ProgramImage) -> None:
        segments = program.segments
        for previous, current in zip(segments, segments[1:]):
            if current.offset < previous.end:
                raise IntelHexError(
                    f"segment overlap detected at {current.offset:#06x} "
                    f"(previous segment ends at {previous.end:#06x})")
