"""Memory contracts and concrete memories used by the 8051 core.

The CPU only borrows memories through two small contracts: ``CodeMemory``
(read-only, fixed size, random access) and ``DataMemory`` (adds writes). Reads
and writes report how much was transferred; a short transfer is how a memory
says an address is not backed, and the CPU turns that into a fault.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, Type, TypeVar

from py8051.utils import debug_enabled, debug_log


class MemoryMapError(Exception):
    """Raised when a memory map is misconfigured or used incorrectly."""


class CodeMemory:
    """Read-only, fixed-size, byte-addressable memory."""

    def size(self) -> int:  # pragma: no cover - interface
        raise NotImplementedError

    def read_at(self, offset: int, length: int) -> bytes:  # pragma: no cover - interface
        """Return up to ``length`` bytes starting at ``offset``.

        Fewer bytes are returned when the range runs past the backed area.
        I/O failures are raised as ``OSError``.
        """

        raise NotImplementedError


class DataMemory(CodeMemory):
    """Read-write variant of :class:`CodeMemory`."""

    def write_at(self, offset: int, data: bytes) -> int:  # pragma: no cover - interface
        """Store ``data`` at ``offset`` and return the number of bytes written."""

        raise NotImplementedError


@dataclass
class Memory(DataMemory):
    """Flat byte array occupying ``start`` .. ``start + length - 1``."""

    start: int
    length: int

    def __post_init__(self) -> None:
        if self.start < 0 or self.length <= 0:
            raise MemoryMapError("memory region must have a positive length and non-negative start")
        self._data = bytearray(self.length)

    def get_start_address(self) -> int:
        return self.start

    def get_end_address(self) -> int:
        return self.start + self.length - 1

    def size(self) -> int:
        return self.start + self.length

    def _offset(self, address: int) -> int:
        offset = address - self.start
        if not 0 <= offset < self.length:
            raise MemoryMapError(
                f"address {address:#06x} outside region {self.start:#06x}-{self.get_end_address():#06x}")
        return offset

    def load8(self, address: int) -> int:
        return self._data[self._offset(address)]

    def store8(self, address: int, value: int) -> None:
        self._data[self._offset(address)] = value & 0xFF

    def read_at(self, offset: int, length: int) -> bytes:
        begin = offset - self.start
        if begin < 0 or begin >= self.length or length <= 0:
            return b""
        return bytes(self._data[begin:begin + length])

    def write_at(self, offset: int, data: bytes) -> int:
        begin = offset - self.start
        if begin < 0 or begin >= self.length:
            return 0
        count = min(len(data), self.length - begin)
        self._data[begin:begin + count] = data[:count]
        return count

    def load_image(self, data: bytes, address: int | None = None) -> None:
        """Copy ``data`` into the region, starting at ``address`` (default: region start)."""

        target = self.start if address is None else address
        written = self.write_at(target, data)
        if written != len(data):
            raise MemoryMapError(
                f"image of {len(data)} bytes does not fit at {target:#06x} "
                f"(region {self.start:#06x}-{self.get_end_address():#06x})")

    def snapshot(self) -> bytes:
        return bytes(self._data)


T_Memory = TypeVar("T_Memory", bound=Memory)


class MemorySystem(DataMemory):
    """Address space that dispatches accesses to registered regions.

    Addresses without a region are not backed: ``read_at``/``write_at`` stop
    short there, ``load8``/``store8`` raise :class:`MemoryMapError`.
    """

    def __init__(self) -> None:
        self._space: list[Memory | None] | None = None
        self._registry: Dict[Type[Memory], Memory] = {}

    def allocate_space(self, capacity: int) -> None:
        if capacity <= 0 or capacity > 0x10000:
            raise MemoryMapError(f"capacity {capacity} out of range (1-65536)")
        self._space = [None] * capacity

    def size(self) -> int:
        return len(self._ensure_space())

    def register_memory(self, memory: Memory) -> None:
        space = self._ensure_space()
        start = memory.get_start_address()
        end = memory.get_end_address()
        if end >= len(space):
            raise MemoryMapError(f"memory region {start:#06x}-{end:#06x} exceeds allocated space")
        for address in range(start, end + 1):
            space[address] = memory
        self._registry[type(memory)] = memory
        if debug_enabled("bus"):
            debug_log("bus", "mapped %s at %04x-%04x", type(memory).__name__, start, end)

    def get_memory(self, cls: Type[T_Memory]) -> T_Memory | None:
        memory = self._registry.get(cls)
        if memory is None:
            return None
        return memory  # type: ignore[return-value]

    def get_memories(self) -> Iterable[Memory]:
        return self._registry.values()

    def _region(self, address: int) -> Memory | None:
        space = self._ensure_space()
        if not 0 <= address < len(space):
            return None
        return space[address]

    def load8(self, address: int) -> int:
        region = self._region(address)
        if region is None:
            raise MemoryMapError(f"address {address:#06x} is not mapped")
        return region.load8(address)

    def store8(self, address: int, value: int) -> None:
        region = self._region(address)
        if region is None:
            raise MemoryMapError(f"address {address:#06x} is not mapped")
        region.store8(address, value)

    def read_at(self, offset: int, length: int) -> bytes:
        out = bytearray()
        for address in range(offset, offset + length):
            region = self._region(address)
            if region is None:
                break
            out.append(region.load8(address))
        if debug_enabled("bus"):
            debug_log("bus", "read_at %04x len=%d got=%d", offset, length, len(out))
        return bytes(out)

    def write_at(self, offset: int, data: bytes) -> int:
        written = 0
        for index, value in enumerate(data):
            region = self._region(offset + index)
            if region is None:
                break
            region.store8(offset + index, value)
            written += 1
        if debug_enabled("bus"):
            debug_log("bus", "write_at %04x len=%d put=%d", offset, len(data), written)
        return written

    def _ensure_space(self) -> list[Memory | None]:
        if self._space is None:
            raise MemoryMapError("memory space not allocated")
        return self._space
