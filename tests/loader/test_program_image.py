"""Tests for sparse program images and their code-memory view."""

from __future__ import annotations

import io

import pytest

from py8051.loader import ProgramImage


def make_image() -> ProgramImage:
    image = ProgramImage()
    image.add_segment(0x0100, b"\x22")
    image.add_segment(0x0000, b"\x02\x01\x00")
    return image


def test_segments_are_kept_in_order() -> None:
    image = make_image()
    assert [segment.offset for segment in image.segments] == [0x0000, 0x0100]
    assert image.segments[0].end == 0x0003
    assert image.segments[0].length() == 3


def test_get_segments_selects_overlapping_ranges() -> None:
    image = make_image()
    assert [segment.offset for segment in image.get_segments(0x0002, 0x0100)] == [0x0000, 0x0100]
    assert image.get_segments(0x0003, 0x00FD) == []


def test_get_byte_and_retrieve_pad_gaps() -> None:
    image = make_image()
    assert image.get_byte(0x0001, 0xFF) == 0x01
    assert image.get_byte(0x0050, 0xFF) == 0xFF
    assert image.retrieve(0x00FE, 3, 0x00) == b"\x00\x00\x22"
    assert image.retrieve(0x0001, 4, 0xEE) == b"\x01\x00\xEE\xEE"


def test_size_of_empty_image() -> None:
    assert ProgramImage().size() == 0
    assert make_image().size() == 0x0101


def test_reader_pads_and_reads_short_at_end() -> None:
    code = make_image().reader(pad=0x00)

    assert code.size() == 0x0101
    assert code.read_at(0x0000, 4) == b"\x02\x01\x00\x00"
    assert code.read_at(0x0100, 4) == b"\x22"
    assert code.read_at(0x0101, 1) == b""


def test_reader_sequential_access() -> None:
    code = make_image().reader(pad=0x00)

    assert code.read(2) == b"\x02\x01"
    assert code.tell() == 2

    assert code.seek(-1, io.SEEK_END) == 0x0100
    assert code.read() == b"\x22"
    assert code.read(1) == b""
    assert code.tell() == 0x0101

    code.seek(0x00FE)
    code.seek(1, io.SEEK_CUR)
    assert code.read(4) == b"\x00\x22"


def test_reader_rejects_bad_seeks() -> None:
    code = make_image().reader()
    with pytest.raises(ValueError):
        code.seek(-1)
    with pytest.raises(ValueError):
        code.seek(0, 3)
    assert code.tell() == 0
