"""Exceptions raised by the 8051 core."""

from __future__ import annotations


class CPUError(Exception):
    """Base error for CPU-related failures."""


class UnknownOpcodeError(CPUError):
    """Raised when the reserved opcode (0xA5) is dispatched."""

    def __init__(self, opcode: int, address: int) -> None:
        super().__init__(f"unknown opcode {opcode:#04x} at {address:#06x}")
        self.opcode = opcode
        self.address = address


class MemoryFault(CPUError):
    """Raised on a short read/write or an I/O error from code or data memory."""

    def __init__(self, message: str, address: int | None = None) -> None:
        super().__init__(message)
        self.address = address


class StackError(CPUError):
    """Base error for stack pointer bound violations."""


class StackOverflowError(StackError):
    """Raised when a push would move the stack pointer past 0xFF."""


class StackUnderflowError(StackError):
    """Raised when a pop would move the stack pointer below 0x00."""
