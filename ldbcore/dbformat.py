"""Internal key format: a user key followed by a packed sequence number and value type."""

from __future__ import annotations

import struct
from dataclasses import dataclass
from enum import IntEnum
from typing import Iterable, Protocol, Union

NUM_LEVELS = 7
# Level-0 compaction is started when this many files exist.
L0_COMPACTION_TRIGGER = 4
# Soft limit on level-0 files: writes are slowed down here.
L0_SLOWDOWN_WRITES_TRIGGER = 8
# Hard limit on level-0 files: writes stop here.
L0_STOP_WRITES_TRIGGER = 12
# Highest level a compacted memtable may be pushed to if it creates no overlap.
MAX_MEM_COMPACT_LEVEL = 2
# Approximate gap in bytes between samples of data read during iteration.
READ_BYTES_PERIOD = 1048576


class ValueType(IntEnum):
    """Kind of entry stored under an internal key; values are part of the on-disk format."""

    DELETION = 0
    VALUE = 1


# Sequence numbers sort in decreasing order, so seeking uses the highest type.
VALUE_TYPE_FOR_SEEK = ValueType.VALUE

# Eight low bits are reserved for the value type.
MAX_SEQUENCE_NUMBER = (1 << 56) - 1

_FIXED64 = struct.Struct("<Q")

BytesLike = Union[bytes, bytearray, memoryview]


class InternalKeyError(ValueError):
    """Raised when bytes do not form a valid internal key."""


class Comparator(Protocol):
    name: str

    def compare(self, a: BytesLike, b: BytesLike) -> int: ...

    def find_shortest_separator(self, start: BytesLike, limit: BytesLike) -> bytes: ...

    def find_short_successor(self, key: BytesLike) -> bytes: ...


class FilterPolicy(Protocol):
    name: str

    def create_filter(self, keys: list[bytes]) -> bytes: ...

    def key_may_match(self, key: bytes, filter_data: bytes) -> bool: ...


def pack_sequence_and_type(sequence: int, value_type: int) -> int:
    """Combine a sequence number and a value type into one 64-bit tag."""
    if not 0 <= sequence <= MAX_SEQUENCE_NUMBER:
        raise ValueError(f"sequence number out of range: {sequence}")
    if not 0 <= value_type <= VALUE_TYPE_FOR_SEEK:
        raise ValueError(f"invalid value type: {value_type}")
    return (sequence << 8) | int(value_type)


def _encode_tag(sequence: int, value_type: int) -> bytes:
    return _FIXED64.pack(pack_sequence_and_type(sequence, value_type))


@dataclass(frozen=True)
class ParsedInternalKey:
    """An internal key split into its parts."""

    user_key: bytes
    sequence: int
    value_type: ValueType

    def __post_init__(self) -> None:
        object.__setattr__(self, "user_key", bytes(self.user_key))
        object.__setattr__(self, "value_type", ValueType(self.value_type))

    def encode(self) -> bytes:
        """Return the serialized internal key."""
        return self.user_key + _encode_tag(self.sequence, self.value_type)

    def debug_string(self) -> str:
        return f"'{escape_string(self.user_key)}' @ {self.sequence} : {int(self.value_type)}"


def append_internal_key(result: bytearray, key: ParsedInternalKey) -> None:
    """Append the serialization of ``key`` to ``result``."""
    result.extend(key.encode())


def parse_internal_key(internal_key: BytesLike) -> ParsedInternalKey:
    """Split an encoded internal key into its parts."""
    data = bytes(internal_key)
    if len(data) < 8:
        raise InternalKeyError("internal key shorter than 8 bytes")
    (num,) = _FIXED64.unpack_from(data, len(data) - 8)
    type_byte = num & 0xFF
    if type_byte > ValueType.VALUE:
        raise InternalKeyError(f"invalid value type {type_byte}")
    return ParsedInternalKey(data[:-8], num >> 8, ValueType(type_byte))


def extract_user_key(internal_key: BytesLike) -> bytes:
    """Return the user key portion of an internal key."""
    data = bytes(internal_key)
    if len(data) < 8:
        raise InternalKeyError("internal key shorter than 8 bytes")
    return data[:-8]


def escape_string(data: BytesLike) -> str:
    """Render bytes with non-printable characters escaped as \\xNN."""
    return "".join(chr(b) if 0x20 <= b <= 0x7E else f"\\x{b:02x}" for b in bytes(data))


class BytewiseComparator:
    """Orders keys lexicographically by unsigned byte value."""

    name = "leveldb.BytewiseComparator"

    def compare(self, a: BytesLike, b: BytesLike) -> int:
        a, b = bytes(a), bytes(b)
        return (a > b) - (a < b)

    def find_shortest_separator(self, start: BytesLike, limit: BytesLike) -> bytes:
        """Return a short key in [start, limit), or start itself."""
        start, limit = bytes(start), bytes(limit)
        min_length = min(len(start), len(limit))
        diff_index = next(
            (i for i, (x, y) in enumerate(zip(start, limit)) if x != y), min_length
        )
        if diff_index < min_length:
            diff_byte = start[diff_index]
            if diff_byte < 0xFF and diff_byte + 1 < limit[diff_index]:
                return start[:diff_index] + bytes([diff_byte + 1])
        return start

    def find_short_successor(self, key: BytesLike) -> bytes:
        """Return a short key that is >= key."""
        key = bytes(key)
        for i, byte in enumerate(key):
            if byte != 0xFF:
                return key[:i] + bytes([byte + 1])
        return key


def _internal_bytes(key: Union[BytesLike, "InternalKey"]) -> bytes:
    if isinstance(key, InternalKey):
        return key.encode()
    return bytes(key)


class InternalKeyComparator:
    """Orders by increasing user key, then decreasing sequence number and type."""

    name = "leveldb.InternalKeyComparator"

    def __init__(self, user_comparator: Comparator | None = None) -> None:
        self.user_comparator: Comparator = (
            user_comparator if user_comparator is not None else BytewiseComparator()
        )

    def compare(self, a: Union[BytesLike, "InternalKey"], b: Union[BytesLike, "InternalKey"]) -> int:
        a_bytes, b_bytes = _internal_bytes(a), _internal_bytes(b)
        result = self.user_comparator.compare(
            extract_user_key(a_bytes), extract_user_key(b_bytes)
        )
        if result == 0:
            (anum,) = _FIXED64.unpack_from(a_bytes, len(a_bytes) - 8)
            (bnum,) = _FIXED64.unpack_from(b_bytes, len(b_bytes) - 8)
            if anum > bnum:
                result = -1
            elif anum < bnum:
                result = 1
        return result

    def find_shortest_separator(self, start: BytesLike, limit: BytesLike) -> bytes:
        start = bytes(start)
        user_start = extract_user_key(start)
        user_limit = extract_user_key(limit)
        shortened = self.user_comparator.find_shortest_separator(user_start, user_limit)
        if len(shortened) < len(user_start) and self.user_comparator.compare(user_start, shortened) < 0:
            # Physically shorter but logically larger: use the earliest tag.
            return shortened + _encode_tag(MAX_SEQUENCE_NUMBER, VALUE_TYPE_FOR_SEEK)
        return start

    def find_short_successor(self, key: BytesLike) -> bytes:
        key = bytes(key)
        user_key = extract_user_key(key)
        successor = self.user_comparator.find_short_successor(user_key)
        if len(successor) < len(user_key) and self.user_comparator.compare(user_key, successor) < 0:
            return successor + _encode_tag(MAX_SEQUENCE_NUMBER, VALUE_TYPE_FOR_SEEK)
        return key


class InternalFilterPolicy:
    """Filter policy wrapper that hands user keys to a user-supplied policy."""

    def __init__(self, user_policy: FilterPolicy) -> None:
        self._user_policy = user_policy

    @property
    def name(self) -> str:
        return self._user_policy.name

    def create_filter(self, keys: Iterable[BytesLike]) -> bytes:
        return self._user_policy.create_filter([extract_user_key(k) for k in keys])

    def key_may_match(self, key: BytesLike, filter_data: bytes) -> bool:
        return self._user_policy.key_may_match(extract_user_key(key), filter_data)


class InternalKey:
    """An encoded internal key; an empty encoding marks it as invalid."""

    __slots__ = ("_rep",)

    def __init__(self, rep: BytesLike = b"") -> None:
        self._rep = bytes(rep)

    @classmethod
    def from_parts(cls, user_key: BytesLike, sequence: int, value_type: int) -> "InternalKey":
        return cls(ParsedInternalKey(bytes(user_key), sequence, ValueType(value_type)).encode())

    def decode_from(self, data: BytesLike) -> bool:
        """Take ``data`` as the encoding; return whether it is non-empty."""
        self._rep = bytes(data)
        return bool(self._rep)

    def encode(self) -> bytes:
        if not self._rep:
            raise InternalKeyError("internal key is empty")
        return self._rep

    @property
    def user_key(self) -> bytes:
        return extract_user_key(self._rep)

    def set_from(self, parsed: ParsedInternalKey) -> None:
        self._rep = parsed.encode()

    def clear(self) -> None:
        self._rep = b""

    def debug_string(self) -> str:
        try:
            return parse_internal_key(self._rep).debug_string()
        except InternalKeyError:
            return "(bad)" + escape_string(self._rep)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, InternalKey):
            return NotImplemented
        return self._rep == other._rep

    def __hash__(self) -> int:
        return hash(self._rep)

    def __repr__(self) -> str:
        return f"InternalKey({self._rep!r})"


def _encode_varint32(value: int) -> bytes:
    out = bytearray()
    while value >= 0x80:
        out.append((value & 0x7F) | 0x80)
        value >>= 7
    out.append(value)
    return bytes(out)


class LookupKey:
    """Key for looking up a user key at a snapshot in a memtable or table.

    Layout: varint32 length, user key, 8-byte tag.
    """

    __slots__ = ("_data", "_key_start")

    def __init__(self, user_key: BytesLike, sequence: int) -> None:
        user_key = bytes(user_key)
        prefix = _encode_varint32(len(user_key) + 8)
        self._data = prefix + user_key + _encode_tag(sequence, VALUE_TYPE_FOR_SEEK)
        self._key_start = len(prefix)

    @property
    def memtable_key(self) -> bytes:
        return self._data

    @property
    def internal_key(self) -> bytes:
        return self._data[self._key_start:]

    @property
    def user_key(self) -> bytes:
        return self._data[self._key_start:-8]