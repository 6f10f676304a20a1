"""Self-play worker pool.

Each worker is an independent OS process running the external generator,
which writes raw records into the staging tree. Workers share nothing but the
filesystem; each one embeds its worker id in the files it writes.
"""
from __future__ import annotations

import logging
import os
import subprocess
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence

from corpus5d.config import check_template, default_worker_count
from corpus5d.paths import Outcome, staging_dir

logger = logging.getLogger(__name__)

TERMINATE_GRACE_S = 5.0
WORKER_FIELDS = ("worker_id", "staging_root")


class WorkerPool:
    def __init__(
        self,
        command: Sequence[str],
        staging_root: Path,
        num_workers: Optional[int] = None,
        env: Optional[Dict[str, str]] = None,
    ):
        if not command:
            raise ValueError("worker command must not be empty")
        check_template(command, WORKER_FIELDS, "worker")
        self.command = tuple(command)
        self.staging_root = Path(staging_root)
        self.num_workers = num_workers if num_workers is not None else default_worker_count()
        if self.num_workers < 1:
            raise ValueError(f"num_workers must be at least 1, got {self.num_workers}")
        self.env = dict(os.environ if env is None else env)
        self.processes: List[subprocess.Popen] = []
        self._reported: set = set()

    def __enter__(self) -> "WorkerPool":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.terminate()

    def prepare_staging(self, rulesets: Iterable[str]) -> None:
        """Create `<ruleset>/<outcome>` for every outcome the generator may write."""
        for ruleset in rulesets:
            for outcome in Outcome:
                staging_dir(self.staging_root, ruleset, outcome).mkdir(parents=True, exist_ok=True)

    def worker_argv(self, worker_id: int) -> List[str]:
        fields = {"worker_id": worker_id, "staging_root": str(self.staging_root)}
        return [part.format(**fields) for part in self.command]

    def worker_env(self, worker_id: int) -> Dict[str, str]:
        env = dict(self.env)
        env["CORPUS5D_WORKER_ID"] = str(worker_id)
        env["CORPUS5D_STAGING_ROOT"] = str(self.staging_root)
        return env

    def start(self) -> None:
        if self.processes:
            raise RuntimeError("worker pool already started")
        logger.info("Starting %d workers", self.num_workers)
        try:
            for worker_id in range(self.num_workers):
                proc = subprocess.Popen(
                    self.worker_argv(worker_id),
                    env=self.worker_env(worker_id),
                    stdin=subprocess.DEVNULL,
                )
                self.processes.append(proc)
                logger.debug("Worker %d started (pid %d)", worker_id, proc.pid)
        except OSError:
            self.terminate()
            raise

    def alive(self) -> List[subprocess.Popen]:
        return [p for p in self.processes if p.poll() is None]

    def reap(self) -> List[int]:
        """Worker ids that exited on their own since the last call. They are not restarted."""
        exited = []
        for worker_id, proc in enumerate(self.processes):
            code = proc.poll()
            if code is not None and worker_id not in self._reported:
                self._reported.add(worker_id)
                exited.append(worker_id)
                logger.warning("Worker %d (pid %d) exited with status %d", worker_id, proc.pid, code)
        return exited

    def terminate(self, grace: float = TERMINATE_GRACE_S) -> None:
        """Stop every worker: SIGTERM each one, then kill any that outlive `grace`."""
        for proc in self.processes:
            if proc.poll() is None:
                proc.terminate()
        for worker_id, proc in enumerate(self.processes):
            try:
                proc.wait(timeout=grace)
            except subprocess.TimeoutExpired:
                logger.warning("Worker %d (pid %d) ignored SIGTERM, killing", worker_id, proc.pid)
                proc.kill()
                proc.wait()
        if self.processes:
            logger.info("Stopped %d workers", len(self.processes))
