"""Changes to the set of table files and database counters, as stored in the manifest."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Optional

from ldbcore.dbformat import NUM_LEVELS, BytesLike, InternalKey

_MASK32 = (1 << 32) - 1
_MASK64 = (1 << 64) - 1


class CorruptionError(ValueError):
    """Raised when stored data cannot be decoded."""


class _Tag(IntEnum):
    """Field tags of a serialized edit; values are part of the on-disk format."""

    COMPARATOR = 1
    LOG_NUMBER = 2
    NEXT_FILE_NUMBER = 3
    LAST_SEQUENCE = 4
    COMPACT_POINTER = 5
    DELETED_FILE = 6
    NEW_FILE = 7
    # 8 was used for large value refs
    PREV_LOG_NUMBER = 9


@dataclass
class FileMetaData:
    """Description of one table file."""

    number: int = 0
    file_size: int = 0
    smallest: InternalKey = field(default_factory=InternalKey)
    largest: InternalKey = field(default_factory=InternalKey)
    refs: int = 0
    allowed_seeks: int = 1 << 30  # seeks allowed until compaction


def _put_varint(out: bytearray, value: int) -> None:
    if value < 0:
        raise ValueError(f"cannot encode negative number: {value}")
    while value >= 0x80:
        out.append((value & 0x7F) | 0x80)
        value >>= 7
    out.append(value)


def _put_varint32(out: bytearray, value: int) -> None:
    if value > _MASK32:
        raise ValueError(f"number does not fit in 32 bits: {value}")
    _put_varint(out, value)


def _put_varint64(out: bytearray, value: int) -> None:
    if value > _MASK64:
        raise ValueError(f"number does not fit in 64 bits: {value}")
    _put_varint(out, value)


def _put_length_prefixed(out: bytearray, data: bytes) -> None:
    _put_varint32(out, len(data))
    out.extend(data)


class _Input:
    """Cursor over encoded bytes; a failed read leaves the position unchanged."""

    def __init__(self, data: bytes) -> None:
        self._data = data
        self._pos = 0

    @property
    def empty(self) -> bool:
        return self._pos >= len(self._data)

    def _varint(self, max_shift: int, mask: int) -> Optional[int]:
        result = 0
        pos = self._pos
        for shift in range(0, max_shift + 1, 7):
            if pos >= len(self._data):
                return None
            byte = self._data[pos]
            pos += 1
            result |= (byte & 0x7F) << shift
            if not byte & 0x80:
                self._pos = pos
                return result & mask
        return None

    def varint32(self) -> Optional[int]:
        return self._varint(28, _MASK32)

    def varint64(self) -> Optional[int]:
        return self._varint(63, _MASK64)

    def length_prefixed(self) -> Optional[bytes]:
        start = self._pos
        length = self.varint32()
        if length is None:
            return None
        if self._pos + length > len(self._data):
            self._pos = start
            return None
        data = self._data[self._pos:self._pos + length]
        self._pos += length
        return data

    def level(self) -> Optional[int]:
        value = self.varint32()
        if value is None or value >= NUM_LEVELS:
            return None
        return value

    def internal_key(self) -> Optional[InternalKey]:
        data = self.length_prefixed()
        if data is None:
            return None
        key = InternalKey()
        return key if key.decode_from(data) else None


@dataclass
class VersionEdit:
    """A set of changes; fields left as None are not part of the edit."""

    comparator: Optional[str] = None
    log_number: Optional[int] = None
    prev_log_number: Optional[int] = None
    next_file_number: Optional[int] = None
    last_sequence: Optional[int] = None
    compact_pointers: list[tuple[int, InternalKey]] = field(default_factory=list)
    deleted_files: set[tuple[int, int]] = field(default_factory=set)
    new_files: list[tuple[int, FileMetaData]] = field(default_factory=list)

    def clear(self) -> None:
        self.comparator = None
        self.log_number = None
        self.prev_log_number = None
        self.next_file_number = None
        self.last_sequence = None
        self.compact_pointers.clear()
        self.deleted_files.clear()
        self.new_files.clear()

    def set_compact_pointer(self, level: int, key: InternalKey) -> None:
        self.compact_pointers.append((level, key))

    def add_file(
        self,
        level: int,
        number: int,
        file_size: int,
        smallest: InternalKey,
        largest: InternalKey,
    ) -> None:
        """Add a file holding keys from ``smallest`` to ``largest`` at ``level``."""
        self.new_files.append(
            (level, FileMetaData(number=number, file_size=file_size,
                                 smallest=smallest, largest=largest))
        )

    def remove_file(self, level: int, number: int) -> None:
        self.deleted_files.add((level, number))

    def encode(self) -> bytes:
        out = bytearray()
        if self.comparator is not None:
            _put_varint32(out, _Tag.COMPARATOR)
            _put_length_prefixed(out, self.comparator.encode("utf-8", "surrogateescape"))
        for tag, number in (
            (_Tag.LOG_NUMBER, self.log_number),
            (_Tag.PREV_LOG_NUMBER, self.prev_log_number),
            (_Tag.NEXT_FILE_NUMBER, self.next_file_number),
            (_Tag.LAST_SEQUENCE, self.last_sequence),
        ):
            if number is not None:
                _put_varint32(out, tag)
                _put_varint64(out, number)

        for level, key in self.compact_pointers:
            _put_varint32(out, _Tag.COMPACT_POINTER)
            _put_varint32(out, level)
            _put_length_prefixed(out, key.encode())

        for level, number in sorted(self.deleted_files):
            _put_varint32(out, _Tag.DELETED_FILE)
            _put_varint32(out, level)
            _put_varint64(out, number)

        for level, meta in self.new_files:
            _put_varint32(out, _Tag.NEW_FILE)
            _put_varint32(out, level)
            _put_varint64(out, meta.number)
            _put_varint64(out, meta.file_size)
            _put_length_prefixed(out, meta.smallest.encode())
            _put_length_prefixed(out, meta.largest.encode())
        return bytes(out)

    @classmethod
    def decode(cls, data: BytesLike) -> "VersionEdit":
        """Parse an encoded edit; raise CorruptionError if it is malformed."""
        edit = cls()
        source = _Input(bytes(data))
        msg: Optional[str] = None

        while msg is None:
            tag = source.varint32()
            if tag is None:
                break
            if tag == _Tag.COMPARATOR:
                name = source.length_prefixed()
                if name is None:
                    msg = "comparator name"
                else:
                    edit.comparator = name.decode("utf-8", "surrogateescape")
            elif tag == _Tag.LOG_NUMBER:
                edit.log_number = source.varint64()
                if edit.log_number is None:
                    msg = "log number"
            elif tag == _Tag.PREV_LOG_NUMBER:
                edit.prev_log_number = source.varint64()
                if edit.prev_log_number is None:
                    msg = "previous log number"
            elif tag == _Tag.NEXT_FILE_NUMBER:
                edit.next_file_number = source.varint64()
                if edit.next_file_number is None:
                    msg = "next file number"
            elif tag == _Tag.LAST_SEQUENCE:
                edit.last_sequence = source.varint64()
                if edit.last_sequence is None:
                    msg = "last sequence number"
            elif tag == _Tag.COMPACT_POINTER:
                level = source.level()
                key = source.internal_key() if level is not None else None
                if key is None:
                    msg = "compaction pointer"
                else:
                    edit.compact_pointers.append((level, key))
            elif tag == _Tag.DELETED_FILE:
                level = source.level()
                number = source.varint64() if level is not None else None
                if number is None:
                    msg = "deleted file"
                else:
                    edit.deleted_files.add((level, number))
            elif tag == _Tag.NEW_FILE:
                meta = cls._decode_new_file(source)
                if meta is None:
                    msg = "new-file entry"
                else:
                    edit.new_files.append(meta)
            else:
                msg = "unknown tag"

        if msg is None and not source.empty:
            msg = "invalid tag"
        if msg is not None:
            raise CorruptionError(f"VersionEdit: {msg}")
        return edit

    @staticmethod
    def _decode_new_file(source: _Input) -> Optional[tuple[int, FileMetaData]]:
        level = source.level()
        if level is None:
            return None
        number = source.varint64()
        if number is None:
            return None
        file_size = source.varint64()
        if file_size is None:
            return None
        smallest = source.internal_key()
        if smallest is None:
            return None
        largest = source.internal_key()
        if largest is None:
            return None
        return level, FileMetaData(number=number, file_size=file_size,
                                   smallest=smallest, largest=largest)

    def debug_string(self) -> str:
        parts = ["VersionEdit {"]
        if self.comparator is not None:
            parts.append(f"\n  Comparator: {self.comparator}")
        if self.log_number is not None:
            parts.append(f"\n  LogNumber: {self.log_number}")
        if self.prev_log_number is not None:
            parts.append(f"\n  PrevLogNumber: {self.prev_log_number}")
        if self.next_file_number is not None:
            parts.append(f"\n  NextFile: {self.next_file_number}")
        if self.last_sequence is not None:
            parts.append(f"\n  LastSeq: {self.last_sequence}")
        for level, key in self.compact_pointers:
            parts.append(f"\n  CompactPointer: {level} {key.debug_string()}")
        for level, number in sorted(self.deleted_files):
            parts.append(f"\n  RemoveFile: {level} {number}")
        for level, meta in self.new_files:
            parts.append(
                f"\n  AddFile: {level} {meta.number} {meta.file_size} "
                f"{meta.smallest.debug_string()} .. {meta.largest.debug_string()}"
            )
        parts.append("\n}\n")
        return "".join(parts)