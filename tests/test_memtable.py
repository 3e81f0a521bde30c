import pytest

from ldbcore.dbformat import LookupKey, ValueType, parse_internal_key
from ldbcore.memtable import MemTable, NotFoundError


def make_table():
    mem = MemTable()
    mem.add(1, ValueType.VALUE, b"a", b"a1")
    mem.add(2, ValueType.VALUE, b"b", b"b2")
    mem.add(3, ValueType.VALUE, b"a", b"a3")
    mem.add(4, ValueType.DELETION, b"b", b"")
    return mem


def test_get_latest_value():
    mem = make_table()
    assert mem.get(LookupKey(b"a", 10)) == b"a3"


def test_get_respects_snapshot():
    mem = make_table()
    assert mem.get(LookupKey(b"a", 2)) == b"a1"
    assert mem.get(LookupKey(b"b", 3)) == b"b2"


def test_get_deleted_raises():
    mem = make_table()
    with pytest.raises(NotFoundError):
        mem.get(LookupKey(b"b", 4))


def test_get_missing_returns_none():
    mem = make_table()
    assert mem.get(LookupKey(b"zzz", 10)) is None
    assert mem.get(LookupKey(b"a", 0)) is None


def test_iteration_order():
    mem = make_table()
    it = mem.new_iterator()
    it.seek_to_first()
    seen = []
    while it.valid():
        parsed = parse_internal_key(it.key())
        seen.append((parsed.user_key, parsed.sequence, parsed.value_type, it.value()))
        it.next()
    assert seen == [
        (b"a", 3, ValueType.VALUE, b"a3"),
        (b"a", 1, ValueType.VALUE, b"a1"),
        (b"b", 4, ValueType.DELETION, b""),
        (b"b", 2, ValueType.VALUE, b"b2"),
    ]
    assert len(mem) == 4


def test_reverse_iteration():
    mem = make_table()
    it = mem.new_iterator()
    it.seek_to_last()
    sequences = []
    while it.valid():
        sequences.append(parse_internal_key(it.key()).sequence)
        it.prev()
    assert sequences == [2, 4, 1, 3]


def test_seek():
    mem = make_table()
    it = mem.new_iterator()
    it.seek(LookupKey(b"b", 3).internal_key)
    assert it.valid()
    assert it.value() == b"b2"
    it.seek(LookupKey(b"c", 10).internal_key)
    assert not it.valid()


def test_empty_iterator():
    it = MemTable().new_iterator()
    it.seek_to_first()
    assert not it.valid()
    it.seek_to_last()
    assert not it.valid()
    with pytest.raises(RuntimeError):
        it.key()


def test_memory_usage_grows():
    mem = MemTable()
    before = mem.approximate_memory_usage()
    mem.add(1, ValueType.VALUE, b"key", b"value")
    after = mem.approximate_memory_usage()
    assert after - before >= len(b"key") + 8 + len(b"value")