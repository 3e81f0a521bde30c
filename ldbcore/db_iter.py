"""Iterator that turns internal entries into the user-visible view at a snapshot."""

from __future__ import annotations

import random
from enum import Enum
from typing import Iterator, Optional, Protocol

from ldbcore.dbformat import (
    READ_BYTES_PERIOD,
    VALUE_TYPE_FOR_SEEK,
    BytesLike,
    Comparator,
    InternalKeyError,
    ParsedInternalKey,
    ValueType,
    extract_user_key,
    parse_internal_key,
)


class InternalIterator(Protocol):
    def valid(self) -> bool: ...

    def key(self) -> bytes: ...

    def value(self) -> bytes: ...

    def next(self) -> None: ...

    def prev(self) -> None: ...

    def seek(self, target: bytes) -> None: ...

    def seek_to_first(self) -> None: ...

    def seek_to_last(self) -> None: ...


class ReadSampler(Protocol):
    def record_read_sample(self, key: bytes) -> None: ...


class _Direction(Enum):
    # Forward: the internal iterator sits on the entry yielding key()/value().
    FORWARD = 0
    # Reverse: it sits just before all entries whose user key is key().
    REVERSE = 1


class DBIterator:
    """Merges the entries for each user key, hiding overwrites and deletions."""

    def __init__(
        self,
        db: Optional[ReadSampler],
        user_comparator: Comparator,
        internal_iter: InternalIterator,
        sequence: int,
        seed: int = 0,
    ) -> None:
        self._db = db
        self._user_comparator = user_comparator
        self._iter = internal_iter
        self._sequence = sequence
        self._error: Optional[InternalKeyError] = None
        self._saved_key = b""
        self._saved_value = b""
        self._direction = _Direction.FORWARD
        self._valid = False
        self._rnd = random.Random(seed)
        self._bytes_until_read_sampling = self._random_compaction_period()

    @property
    def error(self) -> Optional[InternalKeyError]:
        """The corruption met while iterating, if any."""
        return self._error

    def _random_compaction_period(self) -> int:
        return self._rnd.randrange(2 * READ_BYTES_PERIOD)

    def _require_valid(self) -> None:
        if not self._valid:
            raise RuntimeError("iterator is not positioned at an entry")

    def valid(self) -> bool:
        return self._valid

    def key(self) -> bytes:
        self._require_valid()
        if self._direction is _Direction.FORWARD:
            return extract_user_key(self._iter.key())
        return self._saved_key

    def value(self) -> bytes:
        self._require_valid()
        if self._direction is _Direction.FORWARD:
            return self._iter.value()
        return self._saved_value

    def __iter__(self) -> Iterator[tuple[bytes, bytes]]:
        """Yield every visible (key, value) pair from the first one on."""
        self.seek_to_first()
        while self._valid:
            yield self.key(), self.value()
            self.next()

    def _parse_key(self) -> Optional[ParsedInternalKey]:
        key = self._iter.key()
        bytes_read = len(key) + len(self._iter.value())
        while self._bytes_until_read_sampling < bytes_read:
            self._bytes_until_read_sampling += self._random_compaction_period()
            if self._db is not None:
                self._db.record_read_sample(key)
        self._bytes_until_read_sampling -= bytes_read
        try:
            return parse_internal_key(key)
        except InternalKeyError:
            self._error = InternalKeyError("corrupted internal key in DBIter")
            return None

    def _invalidate(self) -> None:
        self._valid = False
        self._saved_key = b""

    def next(self) -> None:
        self._require_valid()
        if self._direction is _Direction.REVERSE:
            self._direction = _Direction.FORWARD
            # The internal iterator is just before this key's entries:
            # step into them; saved_key already holds the key to skip.
            if not self._iter.valid():
                self._iter.seek_to_first()
            else:
                self._iter.next()
            if not self._iter.valid():
                self._invalidate()
                return
        else:
            self._saved_key = extract_user_key(self._iter.key())
            self._iter.next()
            if not self._iter.valid():
                self._invalidate()
                return
        self._find_next_user_entry(True)

    def _find_next_user_entry(self, skipping: bool) -> None:
        while True:
            ikey = self._parse_key()
            if ikey is not None and ikey.sequence <= self._sequence:
                if ikey.value_type == ValueType.DELETION:
                    # Later entries for this key are hidden by the deletion.
                    self._saved_key = ikey.user_key
                    skipping = True
                elif not (
                    skipping
                    and self._user_comparator.compare(ikey.user_key, self._saved_key) <= 0
                ):
                    self._valid = True
                    self._saved_key = b""
                    return
            self._iter.next()
            if not self._iter.valid():
                break
        self._invalidate()

    def prev(self) -> None:
        self._require_valid()
        if self._direction is _Direction.FORWARD:
            # Scan back until the user key changes.
            self._saved_key = extract_user_key(self._iter.key())
            while True:
                self._iter.prev()
                if not self._iter.valid():
                    self._invalidate()
                    self._saved_value = b""
                    return
                if self._user_comparator.compare(
                    extract_user_key(self._iter.key()), self._saved_key
                ) < 0:
                    break
            self._direction = _Direction.REVERSE
        self._find_prev_user_entry()

    def _find_prev_user_entry(self) -> None:
        value_type = ValueType.DELETION
        while self._iter.valid():
            ikey = self._parse_key()
            if ikey is not None and ikey.sequence <= self._sequence:
                if (
                    value_type != ValueType.DELETION
                    and self._user_comparator.compare(ikey.user_key, self._saved_key) < 0
                ):
                    # A live value was found for a later key; stop before this one.
                    break
                value_type = ikey.value_type
                if value_type == ValueType.DELETION:
                    self._saved_key = b""
                    self._saved_value = b""
                else:
                    self._saved_key = extract_user_key(self._iter.key())
                    self._saved_value = self._iter.value()
            self._iter.prev()

        if value_type == ValueType.DELETION:
            self._invalidate()
            self._saved_value = b""
            self._direction = _Direction.FORWARD
        else:
            self._valid = True

    def seek(self, target: BytesLike) -> None:
        """Move to the first visible entry whose user key is at or after ``target``."""
        self._direction = _Direction.FORWARD
        self._saved_value = b""
        self._saved_key = ParsedInternalKey(
            bytes(target), self._sequence, VALUE_TYPE_FOR_SEEK
        ).encode()
        self._iter.seek(self._saved_key)
        if self._iter.valid():
            self._find_next_user_entry(False)
        else:
            self._valid = False

    def seek_to_first(self) -> None:
        self._direction = _Direction.FORWARD
        self._saved_value = b""
        self._iter.seek_to_first()
        if self._iter.valid():
            self._find_next_user_entry(False)
        else:
            self._valid = False

    def seek_to_last(self) -> None:
        self._direction = _Direction.REVERSE
        self._saved_value = b""
        self._iter.seek_to_last()
        self._find_prev_user_entry()