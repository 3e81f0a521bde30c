import pytest

from ldbcore.dbformat import InternalKey, ValueType
from ldbcore.version_edit import CorruptionError, FileMetaData, VersionEdit

BIG = 1 << 50


def _assert_round_trip(edit):
    encoded = edit.encode()
    parsed = VersionEdit.decode(encoded)
    assert parsed.encode() == encoded
    return parsed


def test_encode_decode_from_source_cases():
    edit = VersionEdit()
    for i in range(4):
        _assert_round_trip(edit)
        edit.add_file(
            3,
            BIG + 300 + i,
            BIG + 400 + i,
            InternalKey.from_parts(b"foo", BIG + 500 + i, ValueType.VALUE),
            InternalKey.from_parts(b"zoo", BIG + 600 + i, ValueType.DELETION),
        )
        edit.remove_file(4, BIG + 700 + i)
        edit.set_compact_pointer(
            i, InternalKey.from_parts(b"x", BIG + 900 + i, ValueType.VALUE)
        )

    edit.comparator = "foo"
    edit.log_number = BIG + 100
    edit.next_file_number = BIG + 200
    edit.last_sequence = BIG + 1000
    parsed = _assert_round_trip(edit)
    assert parsed == edit


def test_decode_empty_gives_empty_edit():
    assert VersionEdit.decode(b"") == VersionEdit()


def test_encoding_of_scalar_fields():
    edit = VersionEdit(comparator="foo", log_number=5)
    assert edit.encode() == b"\x01\x03foo\x02\x05"


def test_deleted_files_encoded_in_sorted_order_once():
    edit = VersionEdit()
    edit.remove_file(4, 9)
    edit.remove_file(1, 2)
    edit.remove_file(4, 9)
    assert edit.encode() == b"\x06\x01\x02\x06\x04\x09"


def test_add_file_records_metadata():
    edit = VersionEdit()
    small = InternalKey.from_parts(b"a", 1, ValueType.VALUE)
    large = InternalKey.from_parts(b"b", 2, ValueType.VALUE)
    edit.add_file(2, 11, 100, small, large)
    level, meta = edit.new_files[0]
    assert level == 2
    assert meta == FileMetaData(number=11, file_size=100, smallest=small, largest=large)
    assert meta.allowed_seeks == 1 << 30


def test_clear_resets_everything():
    edit = VersionEdit(comparator="foo", last_sequence=3)
    edit.remove_file(1, 1)
    edit.clear()
    assert edit == VersionEdit()
    assert edit.encode() == b""


def test_debug_string():
    edit = VersionEdit(comparator="foo", log_number=5)
    edit.remove_file(1, 2)
    edit.add_file(
        3,
        7,
        100,
        InternalKey.from_parts(b"foo", 5, ValueType.VALUE),
        InternalKey.from_parts(b"zoo", 6, ValueType.DELETION),
    )
    assert edit.debug_string() == (
        "VersionEdit {"
        "\n  Comparator: foo"
        "\n  LogNumber: 5"
        "\n  RemoveFile: 1 2"
        "\n  AddFile: 3 7 100 'foo' @ 5 : 1 .. 'zoo' @ 6 : 0"
        "\n}\n"
    )


@pytest.mark.parametrize(
    "data, message",
    [
        (b"\x08", "unknown tag"),
        (b"\x80", "invalid tag"),
        (b"\x01\x05ab", "comparator name"),
        (b"\x02", "log number"),
        (b"\x09", "previous log number"),
        (b"\x03", "next file number"),
        (b"\x04", "last sequence number"),
        (b"\x06\x07\x01", "deleted file"),
        (b"\x05\x01\x00", "compaction pointer"),
        (b"\x07\x01\x02", "new-file entry"),
    ],
)
def test_decode_errors(data, message):
    with pytest.raises(CorruptionError) as info:
        VersionEdit.decode(data)
    assert str(info.value) == f"VersionEdit: {message}"


def test_negative_number_cannot_be_encoded():
    edit = VersionEdit(log_number=-1)
    with pytest.raises(ValueError):
        edit.encode()