"""In-memory sorted table of internal keys and their values."""

from __future__ import annotations

from functools import cmp_to_key
from typing import Optional

from sortedcontainers import SortedKeyList

from ldbcore.dbformat import (
    BytesLike,
    InternalKeyComparator,
    LookupKey,
    ParsedInternalKey,
    ValueType,
)


class NotFoundError(KeyError):
    """Raised when the memtable holds a deletion for the key looked up."""


def _varint_length(value: int) -> int:
    length = 1
    while value >= 0x80:
        value >>= 7
        length += 1
    return length


class MemTable:
    """Entries kept in internal-key order: increasing user key, decreasing sequence."""

    def __init__(self, comparator: Optional[InternalKeyComparator] = None) -> None:
        self.comparator = comparator if comparator is not None else InternalKeyComparator()
        self._sort_key = cmp_to_key(self.comparator.compare)
        self._entries: SortedKeyList = SortedKeyList(key=lambda entry: self._sort_key(entry[0]))
        self._memory_usage = 0

    def __len__(self) -> int:
        return len(self._entries)

    def approximate_memory_usage(self) -> int:
        """Estimate of the bytes held: the encoded size of every entry."""
        return self._memory_usage

    def add(self, sequence: int, value_type: ValueType, key: BytesLike, value: BytesLike) -> None:
        """Map ``key`` to ``value`` at ``sequence``; a deletion usually has an empty value."""
        internal_key = ParsedInternalKey(bytes(key), sequence, ValueType(value_type)).encode()
        value = bytes(value)
        self._memory_usage += (
            _varint_length(len(internal_key))
            + len(internal_key)
            + _varint_length(len(value))
            + len(value)
        )
        self._entries.add((internal_key, value))

    def get(self, lookup_key: LookupKey) -> Optional[bytes]:
        """Return the value visible at the lookup key's snapshot.

        Returns None if the memtable knows nothing of the key and raises
        NotFoundError if it holds a deletion for it.
        """
        index = self._entries.bisect_key_left(self._sort_key(lookup_key.internal_key))
        if index >= len(self._entries):
            return None
        internal_key, value = self._entries[index]
        user_comparator = self.comparator.user_comparator
        if user_comparator.compare(internal_key[:-8], lookup_key.user_key) != 0:
            return None
        tag = int.from_bytes(internal_key[-8:], "little")
        value_type = tag & 0xFF
        if value_type == ValueType.VALUE:
            return value
        if value_type == ValueType.DELETION:
            raise NotFoundError(lookup_key.user_key)
        return None

    def new_iterator(self) -> "MemTableIterator":
        return MemTableIterator(self)


class MemTableIterator:
    """Positioned iterator over a memtable; keys are encoded internal keys."""

    def __init__(self, table: MemTable) -> None:
        self._table = table
        self._index: Optional[int] = None

    def _require_valid(self) -> int:
        if self._index is None:
            raise RuntimeError("iterator is not positioned at an entry")
        return self._index

    def valid(self) -> bool:
        return self._index is not None

    def seek(self, target: BytesLike) -> None:
        """Move to the first entry whose internal key is at or after ``target``."""
        entries = self._table._entries
        index = entries.bisect_key_left(self._table._sort_key(bytes(target)))
        self._index = index if index < len(entries) else None

    def seek_to_first(self) -> None:
        self._index = 0 if self._table._entries else None

    def seek_to_last(self) -> None:
        count = len(self._table._entries)
        self._index = count - 1 if count else None

    def next(self) -> None:
        index = self._require_valid() + 1
        self._index = index if index < len(self._table._entries) else None

    def prev(self) -> None:
        index = self._require_valid() - 1
        self._index = index if index >= 0 else None

    def key(self) -> bytes:
        return self._table._entries[self._require_valid()][0]

    def value(self) -> bytes:
        return self._table._entries[self._require_valid()][1]