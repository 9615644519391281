"""Loaders for 8051 program images."""

from __future__ import annotations

from .ihex import IntelHexError, RecordType, load_ihex, load_ihex_from_path, write_image
from .program import ImageMemory, ProgramImage, Segment

__all__ = [
    "ImageMemory",
    "IntelHexError",
    "ProgramImage",
    "RecordType",
    "Segment",
    "load_ihex",
    "load_ihex_from_path",
    "write_image",
]
