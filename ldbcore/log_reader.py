"""Reading records back from a block-based write-ahead log."""

from __future__ import annotations

import os
from typing import BinaryIO, Callable, Iterator, Optional

from ldbcore.log_writer import (
    BLOCK_SIZE,
    HEADER_SIZE,
    MAX_RECORD_TYPE,
    RecordType,
    crc32c,
    unmask_crc,
)

# Extra results of reading a physical record.
_EOF = MAX_RECORD_TYPE + 1
# An invalid physical record: bad checksum (reported), a zero-length
# record (not reported) or one before the initial offset (not reported).
_BAD_RECORD = MAX_RECORD_TYPE + 2

_U64 = 1 << 64
_EMPTY = memoryview(b"")

Reporter = Callable[[int, str], None]


class LogReader:
    """Returns logical records from a binary file written by a log writer.

    ``reporter``, if given, is called as ``reporter(dropped_bytes, reason)``
    whenever data is dropped because of a detected corruption.  Reading starts
    at the first record whose physical position is at or after
    ``initial_offset``.
    """

    def __init__(
        self,
        file: BinaryIO,
        reporter: Optional[Reporter] = None,
        checksum: bool = True,
        initial_offset: int = 0,
    ) -> None:
        self._file = file
        self._reporter = reporter
        self._checksum = checksum
        self._buffer = _EMPTY
        self._eof = False
        self._last_record_offset = 0
        self._end_of_buffer_offset = 0
        self._initial_offset = initial_offset
        # After seeking, a run of MIDDLE and LAST records is skipped silently.
        self._resyncing = initial_offset > 0

    @property
    def last_record_offset(self) -> int:
        """Physical offset of the last record returned by :meth:`read_record`."""
        return self._last_record_offset

    def __iter__(self) -> Iterator[bytes]:
        return iter(self.read_record, None)

    def read_record(self) -> Optional[bytes]:
        """Return the next record, or None at the end of the input."""
        if self._last_record_offset < self._initial_offset:
            if not self._skip_to_initial_block():
                return None

        scratch = bytearray()
        in_fragmented_record = False
        prospective_record_offset = 0

        while True:
            record_type, fragment = self._read_physical_record()
            physical_record_offset = (
                self._end_of_buffer_offset - len(self._buffer) - HEADER_SIZE - len(fragment)
            )

            if self._resyncing:
                if record_type == RecordType.MIDDLE:
                    continue
                if record_type == RecordType.LAST:
                    self._resyncing = False
                    continue
                self._resyncing = False

            if record_type == RecordType.FULL:
                if in_fragmented_record and scratch:
                    self._report_corruption(len(scratch), "partial record without end(1)")
                self._last_record_offset = physical_record_offset
                return bytes(fragment)

            if record_type == RecordType.FIRST:
                if in_fragmented_record and scratch:
                    self._report_corruption(len(scratch), "partial record without end(2)")
                prospective_record_offset = physical_record_offset
                scratch = bytearray(fragment)
                in_fragmented_record = True
            elif record_type == RecordType.MIDDLE:
                if not in_fragmented_record:
                    self._report_corruption(
                        len(fragment), "missing start of fragmented record(1)"
                    )
                else:
                    scratch += fragment
            elif record_type == RecordType.LAST:
                if not in_fragmented_record:
                    self._report_corruption(
                        len(fragment), "missing start of fragmented record(2)"
                    )
                else:
                    scratch += fragment
                    self._last_record_offset = prospective_record_offset
                    return bytes(scratch)
            elif record_type == _EOF:
                # A writer that died mid-record leaves a partial record: ignore it.
                return None
            elif record_type == _BAD_RECORD:
                if in_fragmented_record:
                    self._report_corruption(len(scratch), "error in middle of record")
                    in_fragmented_record = False
                    scratch.clear()
            else:
                dropped = len(fragment) + (len(scratch) if in_fragmented_record else 0)
                self._report_corruption(dropped, f"unknown record type {record_type}")
                in_fragmented_record = False
                scratch.clear()

    def _skip_to_initial_block(self) -> bool:
        offset_in_block = self._initial_offset % BLOCK_SIZE
        block_start = self._initial_offset - offset_in_block
        # Do not search a block if the offset falls in its trailer.
        if offset_in_block > BLOCK_SIZE - 6:
            block_start += BLOCK_SIZE
        self._end_of_buffer_offset = block_start
        if block_start > 0:
            try:
                self._file.seek(block_start, os.SEEK_CUR)
            except (OSError, ValueError) as exc:
                self._report_drop(block_start, str(exc))
                return False
        return True

    def _report_corruption(self, dropped: int, reason: str) -> None:
        self._report_drop(dropped, reason)

    def _report_drop(self, dropped: int, reason: str) -> None:
        position = (self._end_of_buffer_offset - len(self._buffer) - dropped) % _U64
        if self._reporter is not None and position >= self._initial_offset:
            self._reporter(dropped, reason)

    def _read_physical_record(self) -> tuple[int, memoryview]:
        while True:
            if len(self._buffer) < HEADER_SIZE:
                if self._eof:
                    # A truncated header at the end is treated as end of file.
                    self._buffer = _EMPTY
                    return _EOF, _EMPTY
                # The previous read was a full block, so what is left is a trailer.
                self._buffer = _EMPTY
                try:
                    chunk = self._file.read(BLOCK_SIZE) or b""
                except OSError as exc:
                    self._buffer = _EMPTY
                    self._report_drop(BLOCK_SIZE, str(exc))
                    self._eof = True
                    return _EOF, _EMPTY
                self._buffer = memoryview(bytes(chunk))
                self._end_of_buffer_offset += len(self._buffer)
                if len(self._buffer) < BLOCK_SIZE:
                    self._eof = True
                continue

            buffer = self._buffer
            length = buffer[4] | (buffer[5] << 8)
            record_type = buffer[6]
            if HEADER_SIZE + length > len(buffer):
                drop_size = len(buffer)
                self._buffer = _EMPTY
                if not self._eof:
                    self._report_corruption(drop_size, "bad record length")
                    return _BAD_RECORD, _EMPTY
                # The writer died in the middle of the payload: not a corruption.
                return _EOF, _EMPTY

            if record_type == RecordType.ZERO and length == 0:
                # Produced by preallocating writers; skip without reporting.
                self._buffer = _EMPTY
                return _BAD_RECORD, _EMPTY

            if self._checksum:
                expected = unmask_crc(int.from_bytes(buffer[:4], "little"))
                actual = crc32c(buffer[6:HEADER_SIZE + length])
                if actual != expected:
                    # The length itself may be corrupt, so drop the whole buffer.
                    drop_size = len(buffer)
                    self._buffer = _EMPTY
                    self._report_corruption(drop_size, "checksum mismatch")
                    return _BAD_RECORD, _EMPTY

            fragment = buffer[HEADER_SIZE:HEADER_SIZE + length]
            self._buffer = buffer[HEADER_SIZE + length:]

            start = (
                self._end_of_buffer_offset - len(self._buffer) - HEADER_SIZE - length
            ) % _U64
            if start < self._initial_offset:
                return _BAD_RECORD, _EMPTY

            return record_type, fragment