"""Building blocks of a log-structured key-value store: internal keys, file names, write-ahead log, memtable, user-view iterator and version edits."""

__version__ = "0.1.0"

__all__ = [
    "dbformat",
    "filename",
    "log_writer",
    "log_reader",
    "memtable",
    "db_iter",
    "version_edit",
]