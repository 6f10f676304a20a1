"""Per-record error taxonomy for the ingestion pipeline.

Everything here is local to a single record: the harvest loop and the batch
ingestor catch these, log them, and move on to the next file.
"""
from __future__ import annotations

import errno
from pathlib import Path
from typing import Optional

# errno values that mean the store cannot take any more writes right now.
FATAL_STORE_ERRNOS = frozenset(
    code for code in (
        getattr(errno, "ENOSPC", None),
        getattr(errno, "EROFS", None),
        getattr(errno, "EDQUOT", None),
    )
    if code is not None
)


class CorpusError(Exception):
    """Base class for pipeline errors."""


class ConfigError(CorpusError):
    pass


class PathFormatError(CorpusError):
    """A staging or archive path does not match its template."""

    def __init__(self, path: Path, reason: str):
        self.path = Path(path)
        self.reason = reason
        super().__init__(f"{path}: {reason}")


class ConversionError(CorpusError):
    """The external notation converter failed on a record."""

    def __init__(self, path: Path, reason: str, returncode: Optional[int] = None):
        self.path = Path(path)
        self.reason = reason
        self.returncode = returncode
        super().__init__(f"{path}: {reason}")


class EmptyRecordError(CorpusError):
    """Soft error: the record has no moves, so there is nothing to commit."""

    def __init__(self, path: Path):
        self.path = Path(path)
        super().__init__(f"{path}: no move text")


class StoreWriteError(CorpusError):
    def __init__(self, path: Path, reason: str, fatal: bool = False):
        self.path = Path(path)
        self.reason = reason
        self.fatal = fatal
        super().__init__(f"{path}: {reason}")

    @classmethod
    def from_os_error(cls, path: Path, exc: OSError) -> "StoreWriteError":
        return cls(path, exc.strerror or str(exc), fatal=exc.errno in FATAL_STORE_ERRNOS)
