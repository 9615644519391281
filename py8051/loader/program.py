"""Sparse program images produced by the loaders."""

from __future__ import annotations

import io
from dataclasses import dataclass, field
from typing import List

from py8051.bus import CodeMemory


@dataclass
class Segment:
    """Contiguous block of bytes starting at ``offset``."""

    offset: int
    data: bytes

    @property
    def end(self) -> int:
        """One past the last address covered by the segment."""

        return self.offset + len(self.data)

    def length(self) -> int:
        return len(self.data)


@dataclass
class ProgramImage:
    """Data segments plus the start addresses recorded in an image file.

    Segments are kept in offset order and never overlap. ``cs``/``ip`` and
    ``eip`` are x86 start registers some toolchains emit; they are kept for
    completeness and not used by the 8051 core.
    """

    segments: List[Segment] = field(default_factory=list)
    cs: int = 0
    ip: int = 0
    eip: int = 0

    def add_segment(self, offset: int, data: bytes) -> None:
        self.segments.append(Segment(offset, bytes(data)))
        self.segments.sort(key=lambda segment: segment.offset)

    def get_segments(self, offset: int, length: int) -> List[Segment]:
        """Segments overlapping ``offset`` .. ``offset + length - 1``."""

        return [
            segment for segment in self.segments
            if offset < segment.end and offset + length > segment.offset
        ]

    def get_byte(self, address: int, pad: int) -> int:
        for segment in self.get_segments(address, 1):
            return segment.data[address - segment.offset]
        return pad & 0xFF

    def retrieve(self, offset: int, length: int, pad: int) -> bytes:
        """Return ``length`` bytes from ``offset``, filling gaps with ``pad``."""

        out = bytearray([pad & 0xFF]) * length
        for segment in self.get_segments(offset, length):
            start = max(offset, segment.offset)
            stop = min(offset + length, segment.end)
            out[start - offset:stop - offset] = segment.data[start - segment.offset:stop - segment.offset]
        return bytes(out)

    def size(self) -> int:
        """End address of the highest segment (0 for an empty image)."""

        if not self.segments:
            return 0
        return self.segments[-1].end

    def reader(self, pad: int = 0xFF) -> "ImageMemory":
        return ImageMemory(self, pad)


class ImageMemory(CodeMemory):
    """Presents a sparse :class:`ProgramImage` as flat, read-only code memory.

    Gaps between segments read as ``pad``; reads past the highest segment
    come back short.
    """

    def __init__(self, image: ProgramImage, pad: int = 0xFF) -> None:
        self._image = image
        self._pad = pad & 0xFF
        self._position = 0

    def size(self) -> int:
        return self._image.size()

    def read_at(self, offset: int, length: int) -> bytes:
        available = self.size() - offset
        if offset < 0 or available <= 0 or length <= 0:
            return b""
        return self._image.retrieve(offset, min(length, available), self._pad)

    # Sequential access, for dumping an image like a binary file.

    def tell(self) -> int:
        return self._position

    def seek(self, offset: int, whence: int = io.SEEK_SET) -> int:
        if whence == io.SEEK_SET:
            position = offset
        elif whence == io.SEEK_CUR:
            position = self._position + offset
        elif whence == io.SEEK_END:
            position = self.size() + offset
        else:
            raise ValueError(f"unsupported whence value: {whence}")
        if position < 0:
            raise ValueError(f"negative seek position {position}")
        self._position = position
        return position

    def read(self, size: int = -1) -> bytes:
        """Read from the current position; ``-1`` reads to the end of the image."""

        if size < 0:
            size = max(self.size() - self._position, 0)
        data = self.read_at(self._position, size)
        self._position += len(data)
        return data
