# ldbcore

The core pieces of a log-structured key-value storage engine, in plain Python.

## Modules

- `ldbcore.dbformat` handles internal keys. An internal key is a user key followed by an 8-byte tag, which packs a sequence number and a `ValueType` (`DELETION` or `VALUE`). The module provides:
  - `ParsedInternalKey`, `InternalKey` and `LookupKey`.
  - `parse_internal_key`, `extract_user_key` and `pack_sequence_and_type`. Invalid input raises `InternalKeyError`.
  - `BytewiseComparator` and `InternalKeyComparator`. The internal comparator orders keys by user key and then by decreasing sequence number.
  - `InternalFilterPolicy`, which passes user keys on to a filter policy that you supply.
- `ldbcore.filename` builds and parses the names of database files:
  - `log_file_name`, `table_file_name`, `sst_table_file_name`, `descriptor_file_name`, `temp_file_name`, `current_file_name`, `lock_file_name`, `info_log_file_name` and `old_info_log_file_name` build names.
  - `parse_file_name` returns `(number, FileType)`, or `None` for a name that is not a database file.
  - `set_current_file` writes a `CURRENT` file that names a manifest. It writes to a temporary file and then renames it.
- `ldbcore.log_writer` writes the write-ahead log. The log is made of 32 KiB blocks. Each record is checksummed with CRC32C, and records too large for the space left in a block are split into fragments (`LogWriter`, `RecordType`). The module also provides `crc32c`, `mask_crc` and `unmask_crc`.
- `ldbcore.log_reader` reads the log back with `LogReader`. You can call `read_record()`, which returns `None` at the end, or iterate over the reader. If you pass a `reporter(dropped_bytes, reason)` callback, it is told about corrupt data that was skipped. `initial_offset` makes reading start at a later position.
- `ldbcore.memtable` provides `MemTable`, a sorted in-memory table of internal keys, and `MemTableIterator`. `MemTable.get(lookup_key)` returns the value, returns `None` if the key is unknown, or raises `NotFoundError` if the table holds a deletion for the key.
- `ldbcore.db_iter` provides `DBIterator`. It turns the entries of an internal iterator, such as a `MemTableIterator`, into what a user sees at a given sequence number: overwritten and deleted keys are hidden. It can move forwards and backwards and can seek. Iterating over it yields `(key, value)` pairs. A corrupt internal key is recorded in `error`.
- `ldbcore.version_edit` provides `VersionEdit` and `FileMetaData`, which describe changes to the set of table files and to the database counters. `VersionEdit.encode()` and `VersionEdit.decode()` handle the binary form; `decode` raises `CorruptionError` on malformed input.

## Installation

```
pip install .
```

## Examples

Internal keys and file names:

```python
from ldbcore.dbformat import InternalKey, ValueType, parse_internal_key
from ldbcore.filename import log_file_name, parse_file_name

key = InternalKey.from_parts(b"hello", 42, ValueType.VALUE)
print(parse_internal_key(key.encode()).debug_string())  # 'hello' @ 42 : 1

print(log_file_name("mydb", 7))                 # mydb/000007.log
number, file_type = parse_file_name("MANIFEST-2")
print(number, file_type.name)                   # 2 DESCRIPTOR
```

Writing log records and reading them back:

```python
from ldbcore.log_reader import LogReader
from ldbcore.log_writer import LogWriter

with open("000001.log", "wb") as out:
    writer = LogWriter(out)
    writer.add_record(b"first")
    writer.add_record(b"second")

with open("000001.log", "rb") as src:
    for record in LogReader(src):
        print(record)
```

A memtable seen through a user-view iterator:

```python
from ldbcore.db_iter import DBIterator
from ldbcore.dbformat import BytewiseComparator, ValueType
from ldbcore.memtable import MemTable

mem = MemTable()
mem.add(1, ValueType.VALUE, b"a", b"1")
mem.add(2, ValueType.VALUE, b"b", b"2")
mem.add(3, ValueType.DELETION, b"a", b"")

print(list(DBIterator(None, BytewiseComparator(), mem.new_iterator(), 3)))
# [(b'b', b'2')]
print(list(DBIterator(None, BytewiseComparator(), mem.new_iterator(), 2)))
# [(b'a', b'1'), (b'b', b'2')]
```

Encoding a version edit:

```python
from ldbcore.dbformat import InternalKey, ValueType
from ldbcore.version_edit import VersionEdit

edit = VersionEdit(comparator="leveldb.BytewiseComparator", log_number=5)
edit.add_file(0, 7, 1024,
              InternalKey.from_parts(b"a", 1, ValueType.VALUE),
              InternalKey.from_parts(b"z", 9, ValueType.VALUE))
assert VersionEdit.decode(edit.encode()).encode() == edit.encode()
```

## What this package does not do

This package provides building blocks; it is not a database you can open. It has none of the following:
- a database object with put, get and delete operations;
- a format for on-disk table files, and no table cache;
- compaction;
- a version set that applies `VersionEdit` records to a manifest;
- a command-line tool.

`MemTable` keeps its data in memory only. The only form of persistence on offer is the write-ahead log, and you write it and replay it yourself with `LogWriter` and `LogReader`.

## Running the tests

```
pip install .[test]
pytest
```