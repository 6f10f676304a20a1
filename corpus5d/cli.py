"""Command line entry points.

    python -m corpus5d run        # self-play workers + harvester
    python -m corpus5d workers    # workers only
    python -m corpus5d harvest    # harvester only (--once for a single cycle)
    python -m corpus5d ingest     # historical archive, one shot
    python -m corpus5d index --out corpus.parquet
    python -m corpus5d config
"""
from __future__ import annotations

import argparse
import logging
import os
import shlex
import signal
import sys
import threading
from pathlib import Path
from typing import Callable, List, Optional, Sequence

from corpus5d.batch import BatchIngestor
from corpus5d.canonical import Canonicalizer
from corpus5d.config import ARCHIVE_NOTATION, STAGING_NOTATION, PipelineConfig, load_config, print_config
from corpus5d.converter import Converter
from corpus5d.errors import ConfigError, StoreWriteError
from corpus5d.harvest import Harvester
from corpus5d.store import CorpusStore, export_index, open_all
from corpus5d.workers import WorkerPool

logger = logging.getLogger("corpus5d")

REAP_INTERVAL_S = 10.0


class Shutdown:
    """Runs the registered callbacks once on SIGINT/SIGTERM."""

    SIGNALS = (signal.SIGINT, signal.SIGTERM)

    def __init__(self):
        self.requested = threading.Event()
        self._callbacks: List[Callable[[], None]] = []
        self._original = {}

    def on_shutdown(self, callback: Callable[[], None]) -> None:
        self._callbacks.append(callback)

    def request(self, signum=None, frame=None) -> None:
        if self.requested.is_set():
            return
        self.requested.set()
        name = signal.Signals(signum).name if signum is not None else "request"
        logger.info("Shutdown requested (%s)", name)
        for callback in self._callbacks:
            callback()

    def install(self) -> None:
        for sig in self.SIGNALS:
            self._original[sig] = signal.signal(sig, self.request)

    def uninstall(self) -> None:
        for sig, handler in self._original.items():
            signal.signal(sig, handler)
        self._original.clear()


# ───────────────────────────────────────────────────────────────────────────────
# HELPERS
# ───────────────────────────────────────────────────────────────────────────────
def setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(name)s] %(levelname)s %(message)s",
        datefmt="%H:%M:%S",
    )


def ensure_writable_dir(path: Path, label: str) -> bool:
    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        print(f"ERROR: cannot create {label} {path}: {e}", file=sys.stderr)
        return False
    if not os.access(path, os.W_OK | os.X_OK):
        print(f"ERROR: {label} {path} is not writable", file=sys.stderr)
        return False
    return True


def config_from_args(args: argparse.Namespace) -> PipelineConfig:
    config = load_config()

    def words(value: Optional[str]):
        return tuple(shlex.split(value)) if value else None

    def items(value: Optional[str]):
        return tuple(v.strip() for v in value.split(",") if v.strip()) if value else None

    return config.with_overrides(
        staging_root=getattr(args, "staging_root", None),
        corpus_root=getattr(args, "corpus_root", None),
        work_root=getattr(args, "work_root", None),
        archive_root=getattr(args, "archive_root", None),
        harvest_interval=getattr(args, "interval", None),
        min_age=getattr(args, "min_age", None),
        workers=getattr(args, "workers", None),
        allow_list=items(getattr(args, "allow_list", None)),
        truncate_lines=getattr(args, "truncate_lines", None),
        converter_command=words(getattr(args, "converter", None)),
        converter_timeout=getattr(args, "converter_timeout", None),
        worker_command=words(getattr(args, "worker_command", None)),
    )


def make_harvester(config: PipelineConfig) -> Harvester:
    converter = Converter(
        config.converter_command, *STAGING_NOTATION, timeout=config.converter_timeout,
    )
    return Harvester(
        config.staging_root,
        Canonicalizer(converter),
        CorpusStore(config.corpus_root),
        interval=config.harvest_interval,
        min_age=config.min_age,
    )


def make_pool(config: PipelineConfig) -> WorkerPool:
    if not config.worker_command:
        raise ConfigError("no worker command: pass --worker-command or set CORPUS5D_WORKER_COMMAND")
    if config.workers < 1:
        raise ConfigError(f"--workers must be at least 1, got {config.workers}")
    pool = WorkerPool(config.worker_command, config.staging_root, config.workers)
    pool.prepare_staging(config.staging_rulesets)
    return pool


# ───────────────────────────────────────────────────────────────────────────────
# COMMANDS
# ───────────────────────────────────────────────────────────────────────────────
def cmd_config(config: PipelineConfig, args: argparse.Namespace) -> int:
    print_config(config)
    return 0


def cmd_harvest(config: PipelineConfig, args: argparse.Namespace) -> int:
    if not (ensure_writable_dir(config.staging_root, "staging root")
            and ensure_writable_dir(config.corpus_root, "corpus root")):
        return 1
    harvester = make_harvester(config)
    print("=== Harvester ===")
    print(f"Staging: {config.staging_root.resolve()}")
    print(f"Corpus: {config.corpus_root.resolve()}")
    if args.once:
        stats = harvester.run_cycle()
        print(f"Harvest: {stats.summary()}")
        return 0

    print(f"Interval: {config.harvest_interval:g}s")
    shutdown = Shutdown()
    shutdown.on_shutdown(harvester.stop)
    shutdown.install()
    try:
        harvester.run()
    finally:
        shutdown.uninstall()
    return 0


def cmd_workers(config: PipelineConfig, args: argparse.Namespace) -> int:
    if not ensure_writable_dir(config.staging_root, "staging root"):
        return 1
    pool = make_pool(config)
    print(f"Starting {pool.num_workers} workers!")
    shutdown = Shutdown()
    shutdown.on_shutdown(pool.terminate)
    shutdown.install()
    try:
        pool.start()
        while not shutdown.requested.wait(REAP_INTERVAL_S):
            pool.reap()
            if not pool.alive():
                logger.error("All workers have exited")
                return 1
    finally:
        pool.terminate()
        shutdown.uninstall()
    return 0


def cmd_run(config: PipelineConfig, args: argparse.Namespace) -> int:
    if not (ensure_writable_dir(config.staging_root, "staging root")
            and ensure_writable_dir(config.corpus_root, "corpus root")):
        return 1
    pool = make_pool(config)
    harvester = make_harvester(config)
    print(f"Starting {pool.num_workers} workers!")
    shutdown = Shutdown()
    shutdown.on_shutdown(pool.terminate)
    shutdown.on_shutdown(harvester.stop)
    shutdown.install()
    reaper_stop = threading.Event()

    def reaper() -> None:
        while not reaper_stop.wait(REAP_INTERVAL_S):
            pool.reap()

    try:
        pool.start()
        threading.Thread(target=reaper, name="reaper", daemon=True).start()
        harvester.run()
    finally:
        reaper_stop.set()
        pool.terminate()
        shutdown.uninstall()
    return 0


def cmd_ingest(config: PipelineConfig, args: argparse.Namespace) -> int:
    if not config.archive_root.is_dir():
        print(f"ERROR: archive directory {config.archive_root} does not exist.", file=sys.stderr)
        return 1
    if not (ensure_writable_dir(config.work_root, "work root")
            and ensure_writable_dir(config.corpus_root, "corpus root")):
        return 1

    source, target = args.source_notation, args.target_notation
    converter = Converter(config.converter_command, source, target, timeout=config.converter_timeout)
    ingestor = BatchIngestor(
        config.archive_root,
        config.work_root,
        config.corpus_root,
        Canonicalizer(converter),
        allow_list=config.allow_list,
        truncate_lines=config.truncate_lines,
        progress=not args.no_progress,
    )
    print("=== Archive Ingest ===")
    print(f"Archive: {config.archive_root.resolve()}")
    print(f"Corpus: {config.corpus_root.resolve()}")
    print(f"Allow-list: {', '.join(sorted(config.allow_list))}")
    try:
        report = ingestor.run()
    except StoreWriteError as e:
        print(f"ERROR: corpus storage is unusable, aborting: {e}", file=sys.stderr)
        return 1

    print("\n=== Ingest Complete ===")
    print(f"Converted: {report.converted:,}")
    print(f"Duplicates: {report.duplicates:,}")
    print(f"Empty: {report.empty:,}")
    print(f"Skipped (ruleset): {report.skipped:,}")
    print(f"Errors: {report.errors:,}")
    return 0 if report.ok else 1


def cmd_index(config: PipelineConfig, args: argparse.Namespace) -> int:
    if not config.corpus_root.is_dir():
        print(f"ERROR: corpus directory {config.corpus_root} does not exist.", file=sys.stderr)
        return 1
    count = export_index(open_all(config.corpus_root), args.out)
    print(f"Wrote {count:,} entries to {args.out}")
    return 0


# ───────────────────────────────────────────────────────────────────────────────
# MAIN
# ───────────────────────────────────────────────────────────────────────────────
def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="corpus5d", description="Build the deduplicated 5D chess game corpus")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    def roots(p: argparse.ArgumentParser, *names: str) -> None:
        for name in names:
            p.add_argument(f"--{name}-root", type=Path, default=None, help=f"{name.capitalize()} directory")

    def converter_flags(p: argparse.ArgumentParser) -> None:
        p.add_argument("--converter", type=str, default=None,
                       help="Converter command; {source}, {target} and {path} are substituted")
        p.add_argument("--converter-timeout", type=float, default=None, help="Seconds per conversion")

    def harvest_flags(p: argparse.ArgumentParser) -> None:
        p.add_argument("--interval", type=float, default=None, help="Seconds between harvest cycles")
        p.add_argument("--min-age", type=float, default=None,
                       help="Leave staged files younger than this many seconds for the next cycle")

    def worker_flags(p: argparse.ArgumentParser) -> None:
        p.add_argument("--workers", type=int, default=None, help="Number of self-play processes")
        p.add_argument("--worker-command", type=str, default=None,
                       help="Generator command; {worker_id} and {staging_root} are substituted")

    p = sub.add_parser("run", help="Run self-play workers and the harvester")
    roots(p, "staging", "corpus")
    worker_flags(p)
    harvest_flags(p)
    converter_flags(p)
    p.set_defaults(func=cmd_run)

    p = sub.add_parser("workers", help="Run self-play workers only")
    roots(p, "staging")
    worker_flags(p)
    p.set_defaults(func=cmd_workers)

    p = sub.add_parser("harvest", help="Move staged games into the corpus")
    roots(p, "staging", "corpus")
    harvest_flags(p)
    converter_flags(p)
    p.add_argument("--once", action="store_true", help="Run a single cycle and exit")
    p.set_defaults(func=cmd_harvest)

    p = sub.add_parser("ingest", help="Ingest the historical archive")
    roots(p, "archive", "work", "corpus")
    converter_flags(p)
    p.add_argument("--allow-list", type=str, default=None, help="Comma separated rulesets to ingest")
    p.add_argument("--truncate-lines", type=int, default=None,
                   help="Move lines removed from the end of each game for the nonmate class")
    p.add_argument("--source-notation", type=str, default=ARCHIVE_NOTATION[0])
    p.add_argument("--target-notation", type=str, default=ARCHIVE_NOTATION[1])
    p.add_argument("--no-progress", action="store_true", help="Disable the progress bar")
    p.set_defaults(func=cmd_ingest)

    p = sub.add_parser("index", help="Export a parquet index of the corpus")
    roots(p, "corpus")
    p.add_argument("--out", type=Path, required=True, help="Output parquet file")
    p.set_defaults(func=cmd_index)

    p = sub.add_parser("config", help="Print the effective configuration")
    p.set_defaults(func=cmd_config)
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.verbose)
    try:
        config = config_from_args(args)
        return args.func(config, args)
    except ConfigError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
