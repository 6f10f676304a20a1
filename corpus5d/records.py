"""Raw record text: header/move split, tag parsing, ruleset tag, truncation.

Records are PGN-like: a block of `[Name "Value"]` tag lines followed by move
text. The tag syntax is the same as PGN, so the tag grammar is taken from
python-chess rather than redefined here.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Tuple

import chess.pgn

HEADER_MARKER = "["

# Tags that only restate the ruleset, keyed by tag name. `None` means "the
# normalized value must equal the ruleset".
IMPLIED_TAGS = {
    "Mode": "5d",
    "Board": None,
}

RULESET_TAGS = ("Board", "Variant")

_NON_WORD = re.compile(r"[^0-9a-z]+")


@dataclass(frozen=True)
class SplitRecord:
    headers: List[str]
    moves: List[str]

    @property
    def move_text(self) -> str:
        return "\n".join(self.moves)

    @property
    def is_empty(self) -> bool:
        return not self.move_text.strip()


def is_header_line(line: str) -> bool:
    return line.startswith(HEADER_MARKER)


def split_lines(text: str) -> SplitRecord:
    """Partition lines into header lines and move lines, preserving order."""
    headers: List[str] = []
    moves: List[str] = []
    for line in text.split("\n"):
        (headers if is_header_line(line) else moves).append(line)
    return SplitRecord(headers=headers, moves=moves)


def parse_tag(line: str) -> Optional[Tuple[str, str]]:
    m = chess.pgn.TAG_REGEX.match(line.strip())
    if m is None:
        return None
    return m.group(1), m.group(2)


def parse_tags(lines: Iterable[str]) -> dict:
    tags = {}
    for line in lines:
        tag = parse_tag(line)
        if tag is not None and tag[0] not in tags:
            tags[tag[0]] = tag[1]
    return tags


def normalize_ruleset(value: str) -> str:
    """'Defended Pawn' -> 'defended_pawn'"""
    return _NON_WORD.sub("_", value.strip().lower()).strip("_")


def ruleset_tag(text: str) -> Optional[str]:
    """Normalized ruleset named by the record's Board/Variant tag, if any."""
    tags = parse_tags(split_lines(text).headers)
    for name in RULESET_TAGS:
        value = tags.get(name)
        if value and normalize_ruleset(value):
            return normalize_ruleset(value)
    return None


def is_implied_header(line: str, ruleset: str) -> bool:
    tag = parse_tag(line)
    if tag is None:
        return False
    name, value = tag
    if name not in IMPLIED_TAGS:
        return False
    expected = IMPLIED_TAGS[name]
    if expected is None:
        return normalize_ruleset(value) == normalize_ruleset(ruleset)
    return normalize_ruleset(value) == expected


def strip_implied_headers(headers: Sequence[str], ruleset: str) -> List[str]:
    return [line for line in headers if not is_implied_header(line, ruleset)]


def truncate_moves(text: str, n_lines: int) -> str:
    """Drop the last `n_lines` move lines of a record.

    Trailing blank lines are ignored and header lines are never removed, so a
    record shorter than `n_lines` loses all of its moves and becomes empty.
    """
    if n_lines <= 0:
        return text
    lines = text.split("\n")
    while lines and not lines[-1].strip():
        lines.pop()
    last_header = max((i for i, line in enumerate(lines) if is_header_line(line)), default=-1)
    cut = max(last_header + 1, len(lines) - n_lines)
    return "\n".join(lines[:cut]) + "\n"


def serialize(headers: Sequence[str], move_text: str) -> str:
    text = "\n".join([*headers, move_text])
    if not text.endswith("\n"):
        text += "\n"
    return text
