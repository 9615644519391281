"""CPU package for the 8051 emulator."""

from .core import MCS51, CPUPhase, SFR_WINDOW_START
from .decoder import DecodedInstruction, disassemble, fetch
from .errors import (
    CPUError,
    MemoryFault,
    StackError,
    StackOverflowError,
    StackUnderflowError,
    UnknownOpcodeError,
)
from .opcodes import Mnemonic, Operand, lookup
from .state import CPUState
from . import opcodes

__all__ = [
    "MCS51",
    "CPUPhase",
    "CPUState",
    "CPUError",
    "DecodedInstruction",
    "MemoryFault",
    "Mnemonic",
    "Operand",
    "SFR_WINDOW_START",
    "StackError",
    "StackOverflowError",
    "StackUnderflowError",
    "UnknownOpcodeError",
    "disassemble",
    "fetch",
    "lookup",
    "opcodes",
]
