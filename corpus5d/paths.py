"""Path codec for the staging tree, the archive and the corpus store.

Ruleset, outcome and sequence number travel in file paths. Everything that
needs them goes through `parse_path_key` / `parse_archive_path` rather than
slicing strings.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional, Union

from corpus5d.errors import PathFormatError


class Outcome(str, Enum):
    WHITE = "white"
    BLACK = "black"
    STALEMATE = "stalemate"
    WHITE_TIMEOUT = "white_timeout"
    BLACK_TIMEOUT = "black_timeout"
    STALEMATE_TIMEOUT = "stalemate_timeout"
    NONE = "none"


OUTCOME_NAMES = frozenset(o.value for o in Outcome)

RULESET_RE = re.compile(r"^\w+$", re.ASCII)
# "<sequence>.<ext>" or "<worker tag>-<sequence>.<ext>"
RECORD_NAME_RE = re.compile(r"^(?:(?P<tag>[0-9A-Za-z]+)-)?(?P<sequence>[0-9]+)\.(?P<ext>[0-9A-Za-z]+)$")


@dataclass(frozen=True)
class PathKey:
    ruleset: str
    outcome: Outcome
    sequence: int


@dataclass(frozen=True)
class RecordName:
    sequence: int
    ext: str
    tag: Optional[str] = None


ParseResult = Union[PathKey, PathFormatError]


def parse_record_name(path: Path) -> Union[RecordName, PathFormatError]:
    m = RECORD_NAME_RE.match(path.name)
    if m is None:
        return PathFormatError(path, f"file name {path.name!r} is not '[<tag>-]<sequence>.<ext>'")
    return RecordName(sequence=int(m.group("sequence")), ext=m.group("ext"), tag=m.group("tag"))


def parse_outcome(path: Path, name: str) -> Union[Outcome, PathFormatError]:
    if name not in OUTCOME_NAMES:
        return PathFormatError(path, f"unknown outcome directory {name!r}")
    return Outcome(name)


def parse_path_key(path: Path, staging_root: Path) -> ParseResult:
    """Decode `<staging-root>/<ruleset>/<outcome>/[<tag>-]<sequence>.<ext>`.

    Returns the PathKey on success and a PathFormatError (not raised) when the
    path does not fit the template.
    """
    path = Path(path)
    try:
        parts = path.relative_to(staging_root).parts
    except ValueError:
        return PathFormatError(path, f"not under staging root {staging_root}")
    if len(parts) != 3:
        return PathFormatError(path, "expected <ruleset>/<outcome>/<file>")

    ruleset, outcome_name, _ = parts
    if not RULESET_RE.match(ruleset):
        return PathFormatError(path, f"invalid ruleset directory {ruleset!r}")
    outcome = parse_outcome(path, outcome_name)
    if isinstance(outcome, PathFormatError):
        return outcome
    name = parse_record_name(path)
    if isinstance(name, PathFormatError):
        return name
    return PathKey(ruleset=ruleset, outcome=outcome, sequence=name.sequence)


def parse_archive_path(path: Path, archive_root: Path, ruleset: str) -> ParseResult:
    """Decode `<archive-root>/<outcome>/[<tag>-]<sequence>.<ext>`.

    The archive does not encode the ruleset in its paths; the caller passes
    the one read from the record's tags.
    """
    path = Path(path)
    try:
        parts = path.relative_to(archive_root).parts
    except ValueError:
        return PathFormatError(path, f"not under archive root {archive_root}")
    if len(parts) != 2:
        return PathFormatError(path, "expected <outcome>/<file>")

    outcome = parse_outcome(path, parts[0])
    if isinstance(outcome, PathFormatError):
        return outcome
    name = parse_record_name(path)
    if isinstance(name, PathFormatError):
        return name
    return PathKey(ruleset=ruleset, outcome=outcome, sequence=name.sequence)


def record_ext(path: Path) -> str:
    return Path(path).suffix.lstrip(".")


def corpus_dir(root: Path, ruleset: str, outcome: Outcome) -> Path:
    return Path(root) / ruleset / Outcome(outcome).value


def corpus_name(content_hash: str, sequence: int, ext: str) -> str:
    return f"{content_hash}-{sequence}.{ext}" if ext else f"{content_hash}-{sequence}"


def corpus_path(root: Path, key: PathKey, content_hash: str, ext: str) -> Path:
    """`<root>/<ruleset>/<outcome>/<hash>-<sequence>.<ext>`"""
    return corpus_dir(root, key.ruleset, key.outcome) / corpus_name(content_hash, key.sequence, ext)


def staging_dir(root: Path, ruleset: str, outcome: Outcome) -> Path:
    return Path(root) / ruleset / Outcome(outcome).value
