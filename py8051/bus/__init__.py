"""Memory contracts and memory maps for the 8051 emulator."""

from .memory import CodeMemory, DataMemory, Memory, MemoryMapError, MemorySystem

__all__ = [
    "CodeMemory",
    "DataMemory",
    "Memory",
    "MemoryMapError",
    "MemorySystem",
]
