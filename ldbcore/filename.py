"""Names of the files that make up a database directory."""

from __future__ import annotations

import contextlib
import os
import re
from enum import Enum

_MAX_NUMBER = (1 << 64) - 1
_DIGITS = re.compile(r"[0-9]+")


class FileType(Enum):
    LOG = "log"
    DB_LOCK = "lock"
    TABLE = "table"
    DESCRIPTOR = "descriptor"
    CURRENT = "current"
    TEMP = "temp"
    INFO_LOG = "info_log"  # either the current one or an old one


_SUFFIX_TYPES = {
    ".log": FileType.LOG,
    ".sst": FileType.TABLE,
    ".ldb": FileType.TABLE,
    ".dbtmp": FileType.TEMP,
}


def _require_positive(number: int) -> None:
    if number <= 0:
        raise ValueError(f"file number must be positive: {number}")


def _make_file_name(dbname: str, number: int, suffix: str) -> str:
    _require_positive(number)
    return f"{dbname}/{number:06d}.{suffix}"


def log_file_name(dbname: str, number: int) -> str:
    return _make_file_name(dbname, number, "log")


def table_file_name(dbname: str, number: int) -> str:
    return _make_file_name(dbname, number, "ldb")


def sst_table_file_name(dbname: str, number: int) -> str:
    """Legacy name of a table file."""
    return _make_file_name(dbname, number, "sst")


def descriptor_file_name(dbname: str, number: int) -> str:
    _require_positive(number)
    return f"{dbname}/MANIFEST-{number:06d}"


def current_file_name(dbname: str) -> str:
    return f"{dbname}/CURRENT"


def lock_file_name(dbname: str) -> str:
    return f"{dbname}/LOCK"


def temp_file_name(dbname: str, number: int) -> str:
    return _make_file_name(dbname, number, "dbtmp")


def info_log_file_name(dbname: str) -> str:
    return f"{dbname}/LOG"


def old_info_log_file_name(dbname: str) -> str:
    return f"{dbname}/LOG.old"


def _consume_decimal(text: str) -> tuple[int, str] | None:
    match = _DIGITS.match(text)
    if match is None:
        return None
    number = int(match.group())
    if number > _MAX_NUMBER:
        return None
    return number, text[match.end():]


def parse_file_name(filename: str) -> tuple[int, FileType] | None:
    """Return (number, type) for a database file name, or None if it is not one."""
    if filename == "CURRENT":
        return 0, FileType.CURRENT
    if filename == "LOCK":
        return 0, FileType.DB_LOCK
    if filename in ("LOG", "LOG.old"):
        return 0, FileType.INFO_LOG
    if filename.startswith("MANIFEST-"):
        consumed = _consume_decimal(filename[len("MANIFEST-"):])
        if consumed is None or consumed[1]:
            return None
        return consumed[0], FileType.DESCRIPTOR
    consumed = _consume_decimal(filename)
    if consumed is None:
        return None
    number, suffix = consumed
    file_type = _SUFFIX_TYPES.get(suffix)
    if file_type is None:
        return None
    return number, file_type


def _write_file_sync(path: str, data: bytes) -> None:
    with open(path, "wb") as handle:
        handle.write(data)
        handle.flush()
        os.fsync(handle.fileno())


def set_current_file(dbname: str, descriptor_number: int) -> None:
    """Point the CURRENT file at the descriptor with the given number."""
    manifest = descriptor_file_name(dbname, descriptor_number)
    contents = manifest[len(dbname) + 1:] + "\n"
    tmp = temp_file_name(dbname, descriptor_number)
    try:
        _write_file_sync(tmp, contents.encode())
        os.replace(tmp, current_file_name(dbname))
    except OSError:
        with contextlib.suppress(OSError):
            os.remove(tmp)
        raise