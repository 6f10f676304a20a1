"""
One-shot ingestion of the historical game archive.

- Allow-list filter on the record's ruleset tag (other rulesets are ignored)
- Two derived records per game:
    checkmate: the full record
    nonmate:   the record minus its final mating lines (search seeding)
- Same convert / canonicalize / commit path as the harvester
- Per-record failures are reported and skipped
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Sequence, Tuple

from tqdm import tqdm

from corpus5d.canonical import Canonicalizer
from corpus5d.config import DEFAULT_ALLOW_LIST, DEFAULT_TRUNCATE_LINES
from corpus5d.errors import ConversionError, EmptyRecordError, PathFormatError, StoreWriteError
from corpus5d.paths import Outcome, PathKey, parse_archive_path, staging_dir
from corpus5d.records import normalize_ruleset, ruleset_tag, truncate_moves
from corpus5d.store import CHECKMATE, NONMATE, CorpusStore

logger = logging.getLogger(__name__)

# ───────────────────────────────────────────────────────────────────────────────
# CONFIGURATION
# ───────────────────────────────────────────────────────────────────────────────
ARCHIVE_OUTCOMES = (
    Outcome.WHITE_TIMEOUT, Outcome.BLACK_TIMEOUT,
    Outcome.WHITE, Outcome.BLACK,
)
RECORD_CLASSES = (CHECKMATE, NONMATE)


@dataclass
class BatchReport:
    converted: int = 0
    duplicates: int = 0
    skipped: int = 0
    empty: int = 0
    errors: int = 0

    @property
    def ok(self) -> bool:
        return self.errors == 0


class BatchIngestor:
    def __init__(
        self,
        archive_root: Path,
        work_root: Path,
        corpus_root: Path,
        canonicalizer: Canonicalizer,
        allow_list: Iterable[str] = DEFAULT_ALLOW_LIST,
        truncate_lines: int = DEFAULT_TRUNCATE_LINES,
        outcomes: Sequence[Outcome] = ARCHIVE_OUTCOMES,
        progress: bool = True,
    ):
        self.archive_root = Path(archive_root)
        self.work_root = Path(work_root)
        self.canonicalizer = canonicalizer
        self.allow_list = frozenset(normalize_ruleset(r) for r in allow_list)
        self.truncate_lines = truncate_lines
        self.outcomes = tuple(Outcome(o) for o in outcomes)
        self.progress = progress
        self.stores: Dict[str, CorpusStore] = {
            cls: CorpusStore(corpus_root, partition=cls) for cls in RECORD_CLASSES
        }

    def archive_files(self) -> List[Path]:
        files = []
        for outcome in self.outcomes:
            directory = self.archive_root / outcome.value
            if not directory.is_dir():
                logger.info("No archive directory for %s, skipping", outcome.value)
                continue
            files.extend(p for p in sorted(directory.iterdir()) if p.is_file() and not p.name.startswith("."))
        return files

    def derive(self, text: str) -> List[Tuple[str, str]]:
        """(record class, record text) pairs for one archive game."""
        return [
            (CHECKMATE, text),
            (NONMATE, truncate_moves(text, self.truncate_lines)),
        ]

    def ingest_class(self, record_class: str, body: str, key: PathKey, name: str, report: BatchReport) -> None:
        work_path = staging_dir(self.work_root / record_class, key.ruleset, key.outcome) / name
        try:
            work_path.parent.mkdir(parents=True, exist_ok=True)
            work_path.write_text(body, encoding="utf-8")
        except OSError as e:
            logger.error("Error in (%s): %s: cannot write work copy: %s", record_class, name, e)
            report.errors += 1
            return

        try:
            entry = self.canonicalizer.canonicalize(work_path, key)
        except EmptyRecordError:
            logger.debug("Empty (%s): %s", record_class, name)
            work_path.unlink(missing_ok=True)
            report.empty += 1
            return
        except ConversionError as e:
            logger.error("Error in (%s): %s: %s", record_class, name, e.reason)
            report.errors += 1
            return

        try:
            result = self.stores[record_class].commit(entry)
        except StoreWriteError as e:
            logger.error("Error in (%s): %s: %s", record_class, name, e)
            report.errors += 1
            if e.fatal:
                raise
            return

        work_path.unlink(missing_ok=True)
        if result.created:
            report.converted += 1
            logger.info("Converted (%s): %s", record_class, name)
        else:
            report.duplicates += 1
            logger.debug("Duplicate (%s): %s -> %s", record_class, name, result.path)

    def ingest_file(self, path: Path, report: BatchReport) -> None:
        try:
            text = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            logger.error("Error in: %s: cannot read: %s", path.name, e)
            report.errors += 1
            return

        ruleset = ruleset_tag(text)
        if ruleset is None or ruleset not in self.allow_list:
            logger.debug("Skipping %s (ruleset %s)", path.name, ruleset)
            report.skipped += 1
            return

        key = parse_archive_path(path, self.archive_root, ruleset)
        if isinstance(key, PathFormatError):
            logger.error("Error in: %s", key)
            report.errors += 1
            return

        for record_class, body in self.derive(text):
            self.ingest_class(record_class, body, key, path.name, report)

    def run(self) -> BatchReport:
        """Ingest every archive record. A fatal StoreWriteError aborts the run."""
        report = BatchReport()
        files = self.archive_files()
        for path in tqdm(files, desc="Ingest", unit="game", disable=not self.progress):
            self.ingest_file(path, report)
        return report
