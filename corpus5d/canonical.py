"""Turn a raw game record into a CorpusEntry.

The move text is passed through the notation converter and hashed; the hash
is the only dedup key, so two games with the same moves collapse to one entry
whatever their headers say.
"""
from __future__ import annotations

import hashlib
from dataclasses import dataclass
from pathlib import Path
from typing import List, Protocol

from corpus5d.errors import ConversionError, EmptyRecordError
from corpus5d.paths import Outcome, PathKey, record_ext
from corpus5d.records import serialize, split_lines, strip_implied_headers

HASH_DIGEST_SIZE = 16


class MoveConverter(Protocol):
    def convert(self, path: Path) -> str: ...


@dataclass(frozen=True)
class CorpusEntry:
    ruleset: str
    outcome: Outcome
    content_hash: str
    sequence: int
    headers: List[str]
    moves: str
    ext: str
    source: Path

    @property
    def key(self) -> PathKey:
        return PathKey(self.ruleset, self.outcome, self.sequence)

    def render(self) -> str:
        return serialize(self.headers, self.moves)


def content_hash(move_text: str) -> str:
    """Digest of the canonical move text. Whitespace-sensitive."""
    return hashlib.blake2s(move_text.encode("utf-8"), digest_size=HASH_DIGEST_SIZE).hexdigest()


class Canonicalizer:
    def __init__(self, converter: MoveConverter):
        self.converter = converter

    def canonicalize(self, path: Path, key: PathKey) -> CorpusEntry:
        """
        Read `path`, convert its moves and build the entry to commit.

        Raises EmptyRecordError when the record (or the converter's rendition
        of it) has no moves, and ConversionError when the converter fails or
        the file cannot be read.
        """
        path = Path(path)
        try:
            raw = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise ConversionError(path, f"cannot read record: {e}") from e

        record = split_lines(raw)
        if record.is_empty:
            raise EmptyRecordError(path)

        converted = split_lines(self.converter.convert(path))
        if converted.is_empty:
            raise EmptyRecordError(path)
        moves = converted.move_text

        return CorpusEntry(
            ruleset=key.ruleset,
            outcome=key.outcome,
            content_hash=content_hash(moves),
            sequence=key.sequence,
            headers=strip_implied_headers(record.headers, key.ruleset),
            moves=moves,
            ext=record_ext(path),
            source=path,
        )
