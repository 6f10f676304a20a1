"""Harvest loop: move finished self-play records from staging into the corpus.

Each staged file goes through compute (parse + convert + canonicalize), then
commit (corpus write), then delete. A file is only deleted once its entry is
on disk, so anything that fails stays in staging and is retried next cycle.
Retrying is safe because corpus writes are keyed by content hash.
"""
from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from corpus5d.canonical import Canonicalizer
from corpus5d.errors import ConversionError, EmptyRecordError, PathFormatError, StoreWriteError
from corpus5d.paths import parse_path_key
from corpus5d.store import CorpusStore

logger = logging.getLogger(__name__)


@dataclass
class HarvestStats:
    scanned: int = 0
    committed: int = 0
    duplicates: int = 0
    empty: int = 0
    failed: int = 0

    def summary(self) -> str:
        return (
            f"scanned {self.scanned}, committed {self.committed}, "
            f"duplicates {self.duplicates}, empty {self.empty}, failed {self.failed}"
        )


class Harvester:
    def __init__(
        self,
        staging_root: Path,
        canonicalizer: Canonicalizer,
        store: CorpusStore,
        interval: float = 120.0,
        min_age: float = 0.0,
    ):
        self.staging_root = Path(staging_root)
        self.canonicalizer = canonicalizer
        self.store = store
        self.interval = interval
        self.min_age = min_age
        self._stop = threading.Event()

    def stop(self) -> None:
        """Ask the loop to exit; the record in progress is finished first."""
        self._stop.set()

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    def scan(self) -> List[Path]:
        if not self.staging_root.is_dir():
            return []
        cutoff = time.time() - self.min_age
        files = []
        for path in sorted(self.staging_root.rglob("*")):
            if path.name.startswith(".") or not path.is_file():
                continue
            try:
                if self.min_age > 0 and path.stat().st_mtime > cutoff:
                    continue
            except FileNotFoundError:
                continue
            files.append(path)
        return files

    def process(self, path: Path, stats: HarvestStats) -> bool:
        """Handle one staged file. Returns False if the store is unusable."""
        key = parse_path_key(path, self.staging_root)
        if isinstance(key, PathFormatError):
            logger.error("Unmatched path, leaving in staging: %s", key)
            stats.failed += 1
            return True

        try:
            entry = self.canonicalizer.canonicalize(path, key)
        except EmptyRecordError:
            logger.debug("No moves in %s, dropping", path)
            try:
                path.unlink(missing_ok=True)
            except OSError as e:
                logger.warning("Cannot remove empty record %s: %s", path, e)
            stats.empty += 1
            return True
        except ConversionError as e:
            logger.warning("Conversion failed, will retry: %s", e)
            stats.failed += 1
            return True

        try:
            result = self.store.commit(entry)
        except StoreWriteError as e:
            logger.error("Corpus write failed, will retry: %s", e)
            stats.failed += 1
            return not e.fatal

        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning("Committed %s but cannot remove %s: %s", result.path, path, e)
        if result.created:
            stats.committed += 1
            logger.info("-> %s", result.path)
        else:
            stats.duplicates += 1
            logger.debug("Duplicate of %s: %s", result.path, path)
        return True

    def run_cycle(self) -> HarvestStats:
        stats = HarvestStats()
        for path in self.scan():
            if self.stopped:
                break
            stats.scanned += 1
            if not self.process(path, stats):
                logger.error("Storage is unusable, ending this cycle early")
                break
        return stats

    def run(self, max_cycles: Optional[int] = None) -> None:
        """Harvest until stopped (or for `max_cycles` cycles)."""
        cycles = 0
        while not self.stopped:
            stats = self.run_cycle()
            cycles += 1
            logger.info("Harvest cycle %d: %s", cycles, stats.summary())
            if max_cycles is not None and cycles >= max_cycles:
                break
            self._stop.wait(self.interval)
