"""Persistent, partitioned, deduplicated corpus tree.

Layout: `<root>[/<partition>]/<ruleset>/<outcome>/<hash>-<sequence>.<ext>`.
At most one file exists per (partition, ruleset, outcome, hash).
"""
from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Iterator, List, Optional

import pandas as pd
import pyarrow as pa
import pyarrow.parquet as pq

from corpus5d.canonical import CorpusEntry
from corpus5d.errors import StoreWriteError
from corpus5d.paths import OUTCOME_NAMES, Outcome, corpus_dir, corpus_name
from corpus5d.records import parse_tags, split_lines

logger = logging.getLogger(__name__)

CHECKMATE = "checkmate"
NONMATE = "nonmate"
PARTITIONS = (CHECKMATE, NONMATE)

ENTRY_NAME_RE = re.compile(r"^(?P<hash>[0-9a-f]+)-(?P<sequence>[0-9]+)(?:\.(?P<ext>[0-9A-Za-z]+))?$")

INDEX_COLUMNS = [
    "partition", "ruleset", "outcome", "content_hash", "sequence", "path", "result", "date",
]


@dataclass(frozen=True)
class CommitResult:
    path: Path
    created: bool


@dataclass(frozen=True)
class StoredEntry:
    partition: str
    ruleset: str
    outcome: Outcome
    content_hash: str
    sequence: int
    path: Path


class CorpusStore:
    def __init__(self, root: Path, partition: Optional[str] = None):
        if partition is not None and partition not in PARTITIONS:
            raise ValueError(f"unknown partition {partition!r}, expected one of {PARTITIONS}")
        self.root = Path(root)
        self.partition = partition

    @property
    def base(self) -> Path:
        return self.root / self.partition if self.partition else self.root

    def __repr__(self) -> str:
        return f"CorpusStore({str(self.base)!r})"

    def find(self, ruleset: str, outcome: Outcome, content_hash: str) -> Optional[Path]:
        """Existing entry for this game, whatever sequence it was stored under."""
        directory = corpus_dir(self.base, ruleset, outcome)
        if not directory.is_dir():
            return None
        matches = sorted(directory.glob(f"{content_hash}-*"))
        for match in matches:
            if ENTRY_NAME_RE.match(match.name) and match.is_file():
                return match
        return None

    def commit(self, entry: CorpusEntry) -> CommitResult:
        """
        Write the entry unless the same game is already stored.

        The file appears atomically (temp file + os.replace), so a crash never
        leaves a partial entry behind. Raises StoreWriteError.
        """
        existing = self.find(entry.ruleset, entry.outcome, entry.content_hash)
        if existing is not None:
            return CommitResult(path=existing, created=False)

        directory = corpus_dir(self.base, entry.ruleset, entry.outcome)
        target = directory / corpus_name(entry.content_hash, entry.sequence, entry.ext)
        tmp_path = directory / f".{target.name}.tmp-{os.getpid()}"
        try:
            directory.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, "w", encoding="utf-8", newline="\n") as f:
                f.write(entry.render())
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, target)
        except OSError as e:
            try:
                tmp_path.unlink()
            except OSError:
                pass
            raise StoreWriteError.from_os_error(target, e) from e
        return CommitResult(path=target, created=True)

    def iter_entries(self) -> Iterator[StoredEntry]:
        if not self.base.is_dir():
            return
        for path in sorted(self.base.glob("*/*/*")):
            ruleset, outcome = path.parent.parent.name, path.parent.name
            if ruleset in PARTITIONS and self.partition is None:
                continue
            if outcome not in OUTCOME_NAMES or not path.is_file():
                continue
            m = ENTRY_NAME_RE.match(path.name)
            if m is None:
                continue
            yield StoredEntry(
                partition=self.partition or "",
                ruleset=ruleset,
                outcome=Outcome(outcome),
                content_hash=m.group("hash"),
                sequence=int(m.group("sequence")),
                path=path,
            )


def index_rows(stores: Iterable[CorpusStore]) -> List[dict]:
    rows = []
    for store in stores:
        for entry in store.iter_entries():
            try:
                tags = parse_tags(split_lines(entry.path.read_text(encoding="utf-8")).headers)
            except (OSError, UnicodeDecodeError) as e:
                logger.warning("Cannot read %s for the index: %s", entry.path, e)
                tags = {}
            rows.append({
                "partition": entry.partition,
                "ruleset": entry.ruleset,
                "outcome": entry.outcome.value,
                "content_hash": entry.content_hash,
                "sequence": entry.sequence,
                "path": str(entry.path.relative_to(store.root)),
                "result": tags.get("Result", ""),
                "date": tags.get("Date", ""),
            })
    return rows


def export_index(stores: Iterable[CorpusStore], out_path: Path) -> int:
    """Write a parquet index of every entry in `stores`; returns the row count."""
    rows = index_rows(stores)
    df = pd.DataFrame(rows, columns=INDEX_COLUMNS).astype({"sequence": "int64"})
    table = pa.Table.from_pandas(df, preserve_index=False)
    out_path = Path(out_path)
    out_path.parent.mkdir(parents=True, exist_ok=True)
    pq.write_table(table, out_path)
    return len(rows)


def open_all(root: Path) -> List[CorpusStore]:
    """The harvested store plus both archive partitions under one root."""
    return [CorpusStore(root)] + [CorpusStore(root, p) for p in PARTITIONS]
