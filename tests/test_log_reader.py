import io

from ldbcore.log_reader import LogReader
from ldbcore.log_writer import BLOCK_SIZE, HEADER_SIZE, LogWriter, RecordType, crc32c, mask_crc


def _write(*records):
    dest = io.BytesIO()
    writer = LogWriter(dest)
    for record in records:
        writer.add_record(record)
    return dest.getvalue()


def _read_all(data, **kwargs):
    reports = []
    reader = LogReader(io.BytesIO(data), reporter=lambda n, r: reports.append((n, r)), **kwargs)
    return list(reader), reports


def test_round_trip_small_records():
    records = [b"foo", b"bar", b"", b"xxxx"]
    got, reports = _read_all(_write(*records))
    assert got == records
    assert reports == []


def test_round_trip_mixed_sizes():
    records = [
        b"small",
        b"m" * (BLOCK_SIZE // 2),
        b"L" * (3 * BLOCK_SIZE + 17),
        b"a" * (BLOCK_SIZE - HEADER_SIZE - 3),
        b"b",
        bytes(range(256)) * 300,
    ]
    got, reports = _read_all(_write(*records))
    assert got == records
    assert reports == []


def test_empty_log_returns_none():
    reader = LogReader(io.BytesIO(b""))
    assert reader.read_record() is None
    assert reader.read_record() is None


def test_read_record_then_eof():
    reader = LogReader(io.BytesIO(_write(b"only")))
    assert reader.read_record() == b"only"
    assert reader.read_record() is None


def test_last_record_offsets():
    records = [b"a" * 100, b"b" * 200, b"c" * 50]
    reader = LogReader(io.BytesIO(_write(*records)))
    offsets = []
    for _ in records:
        reader.read_record()
        offsets.append(reader.last_record_offset)
    assert offsets[0] == 0
    for i in range(len(records) - 1):
        assert offsets[i + 1] - offsets[i] == HEADER_SIZE + len(records[i])


def test_checksum_mismatch_reports_and_drops():
    data = bytearray(_write(b"foo", b"bar"))
    data[HEADER_SIZE] ^= 0x01
    got, reports = _read_all(bytes(data))
    assert got == []
    assert reports == [(len(data), "checksum mismatch")]


def test_checksum_disabled_accepts_corrupted_payload():
    data = bytearray(_write(b"foo", b"bar"))
    data[HEADER_SIZE] = ord("x")
    got, reports = _read_all(bytes(data), checksum=False)
    assert got == [b"xoo", b"bar"]
    assert reports == []


def test_truncated_final_record_is_ignored():
    data = _write(b"first", b"second")
    got, reports = _read_all(data[:-1])
    assert got == [b"first"]
    assert reports == []


def test_truncated_header_is_ignored():
    data = _write(b"first", b"second")
    got, reports = _read_all(data[: HEADER_SIZE + len(b"first") + 3])
    assert got == [b"first"]
    assert reports == []


def test_zero_padding_is_skipped_silently():
    got, reports = _read_all(_write(b"keep") + bytes(100))
    assert got == [b"keep"]
    assert reports == []


def test_unknown_record_type_is_reported():
    data = bytearray(_write(b"abc"))
    data[6] = 9
    got, reports = _read_all(bytes(data), checksum=False)
    assert got == []
    assert reports == [(len(b"abc"), "unknown record type 9")]


def test_unknown_record_type_with_valid_checksum():
    payload = b"abc"
    crc = mask_crc(crc32c(bytes([9]) + payload))
    data = crc.to_bytes(4, "little") + len(payload).to_bytes(2, "little") + bytes([9]) + payload
    got, reports = _read_all(data + _write(b"next"))
    assert got == [b"next"]
    assert reports == [(len(payload), "unknown record type 9")]


def test_missing_start_of_fragmented_record():
    data = _write(b"x" * (2 * BLOCK_SIZE), b"tail")
    got, reports = _read_all(data[BLOCK_SIZE:])
    assert got == [b"tail"]
    assert [reason for _, reason in reports] == [
        "missing start of fragmented record(1)",
        "missing start of fragmented record(2)",
    ]
    assert reports[0][0] == BLOCK_SIZE - HEADER_SIZE


def test_bad_record_length_in_full_block():
    data = bytearray(_write(b"a" * (BLOCK_SIZE - HEADER_SIZE), b"after"))
    data[4] = 0xFF
    data[5] = 0xFF
    got, reports = _read_all(bytes(data))
    assert got == [b"after"]
    assert reports == [(BLOCK_SIZE, "bad record length")]


def test_error_in_middle_of_fragmented_record():
    data = bytearray(_write(b"x" * (2 * BLOCK_SIZE), b"tail"))
    data[BLOCK_SIZE + HEADER_SIZE] ^= 0x01
    got, reports = _read_all(bytes(data))
    assert got == [b"tail"]
    reasons = [reason for _, reason in reports]
    assert reasons[0] == "checksum mismatch"
    assert "error in middle of record" in reasons


def test_initial_offset_skips_earlier_records():
    records = [b"a" * 100, b"b" * 100, b"c" * 100]
    data = _write(*records)
    second_offset = HEADER_SIZE + len(records[0])
    got, reports = _read_all(data, initial_offset=second_offset)
    assert got == records[1:]
    assert reports == []
    got, _ = _read_all(data, initial_offset=second_offset + 1)
    assert got == records[2:]


def test_initial_offset_after_multi_block_record():
    records = [b"x" * (2 * BLOCK_SIZE), b"tail"]
    data = _write(*records)
    reader = LogReader(io.BytesIO(data))
    reader.read_record()
    reader.read_record()
    tail_offset = reader.last_record_offset
    got, reports = _read_all(data, initial_offset=tail_offset)
    assert got == [b"tail"]
    assert reports == []


def test_initial_offset_past_end_returns_nothing():
    data = _write(b"one", b"two")
    got, reports = _read_all(data, initial_offset=len(data))
    assert got == []
    assert reports == []


class _FailingFile:
    def read(self, size):
        raise OSError("disk failure")


def test_read_error_is_reported():
    reports = []
    reader = LogReader(_FailingFile(), reporter=lambda n, r: reports.append((n, r)))
    assert reader.read_record() is None
    assert reports == [(BLOCK_SIZE, "disk failure")]


def test_iteration_reads_all_records():
    records = [bytes([i]) * (i * 37) for i in range(20)]
    reader = LogReader(io.BytesIO(_write(*records)))
    assert list(reader) == records
    assert reader.read_record() is None


def test_reader_handles_record_types_written_by_writer():
    data = _write(b"z" * (BLOCK_SIZE + 10))
    assert data[6] == RecordType.FIRST
    got, _ = _read_all(data)
    assert got == [b"z" * (BLOCK_SIZE + 10)]