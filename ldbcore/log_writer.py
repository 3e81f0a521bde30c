"""Writing records to a write-ahead log made of fixed-size blocks.

Each physical record has a 7-byte header: a masked CRC32C of the type byte
and payload (4 bytes, little endian), the payload length (2 bytes, little
endian) and the record type (1 byte).  Records larger than the space left in
a block are split into FIRST/MIDDLE/LAST fragments.
"""

from __future__ import annotations

import struct
from enum import IntEnum
from typing import BinaryIO, Union

BytesLike = Union[bytes, bytearray, memoryview]

BLOCK_SIZE = 32768
# checksum (4 bytes), length (2 bytes), type (1 byte)
HEADER_SIZE = 4 + 2 + 1


class RecordType(IntEnum):
    """Type of a physical log record; values are part of the on-disk format."""

    ZERO = 0  # reserved for preallocated files
    FULL = 1
    FIRST = 2
    MIDDLE = 3
    LAST = 4


MAX_RECORD_TYPE = int(RecordType.LAST)

_MASK32 = 0xFFFFFFFF
_MASK_DELTA = 0xA282EAD8
_HEADER = struct.Struct("<IHB")


def _make_crc_table() -> list[int]:
    table = []
    for n in range(256):
        crc = n
        for _ in range(8):
            crc = (crc >> 1) ^ 0x82F63B78 if crc & 1 else crc >> 1
        table.append(crc)
    return table


_CRC_TABLE = _make_crc_table()


def crc32c(data: BytesLike, crc: int = 0) -> int:
    """Return the CRC32C of ``data``, extending the checksum ``crc`` of earlier data."""
    value = (crc ^ _MASK32) & _MASK32
    table = _CRC_TABLE
    for byte in bytes(data):
        value = table[(value ^ byte) & 0xFF] ^ (value >> 8)
    return value ^ _MASK32


def mask_crc(crc: int) -> int:
    """Return a masked form of ``crc`` suitable for storing next to the data it covers."""
    crc &= _MASK32
    rotated = ((crc >> 15) | (crc << 17)) & _MASK32
    return (rotated + _MASK_DELTA) & _MASK32


def unmask_crc(masked: int) -> int:
    """Invert :func:`mask_crc`."""
    rotated = (masked - _MASK_DELTA) & _MASK32
    return ((rotated >> 17) | (rotated << 15)) & _MASK32


# Checksums of the lone type byte, extended with the payload for each record.
_TYPE_CRC = [crc32c(bytes([t])) for t in range(MAX_RECORD_TYPE + 1)]


class LogWriter:
    """Appends records to a binary file object in the block-based log format."""

    def __init__(self, dest: BinaryIO, dest_length: int = 0) -> None:
        """``dest_length`` is the number of bytes already in ``dest``."""
        self._dest = dest
        self._block_offset = dest_length % BLOCK_SIZE

    def add_record(self, data: BytesLike) -> None:
        """Append one logical record, fragmenting it across blocks as needed."""
        payload = memoryview(bytes(data))
        left = len(payload)
        pos = 0
        begin = True
        # An empty record still emits one zero-length physical record.
        while True:
            leftover = BLOCK_SIZE - self._block_offset
            if leftover < HEADER_SIZE:
                if leftover > 0:
                    self._dest.write(bytes(leftover))
                self._block_offset = 0

            avail = BLOCK_SIZE - self._block_offset - HEADER_SIZE
            fragment_length = min(left, avail)
            end = left == fragment_length
            if begin and end:
                record_type = RecordType.FULL
            elif begin:
                record_type = RecordType.FIRST
            elif end:
                record_type = RecordType.LAST
            else:
                record_type = RecordType.MIDDLE

            self._emit_physical_record(record_type, payload[pos:pos + fragment_length])
            pos += fragment_length
            left -= fragment_length
            begin = False
            if left <= 0:
                break

    def _emit_physical_record(self, record_type: RecordType, fragment: memoryview) -> None:
        length = len(fragment)
        crc = mask_crc(crc32c(fragment, _TYPE_CRC[record_type]))
        self._block_offset += HEADER_SIZE + length
        self._dest.write(_HEADER.pack(crc, length, int(record_type)))
        self._dest.write(fragment)
        self._dest.flush()