import os
import signal
import subprocess
import sys
import time
from pathlib import Path

import pytest

from corpus5d.canonical import content_hash
from corpus5d.cli import Shutdown, main
from tests.helpers import record_text, write_record

ECHO_CONVERTER = "import sys; sys.stdout.write(open(sys.argv[-1], encoding='utf-8').read())"
FAILING_CONVERTER = "import sys; sys.exit(1)"


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    for name in ("STAGING_ROOT", "CORPUS_ROOT", "WORK_ROOT", "ARCHIVE_ROOT", "CONVERTER", "WORKERS"):
        monkeypatch.delenv(f"CORPUS5D_{name}", raising=False)


def converter_flag(tmp_path, code):
    script = tmp_path / "converter.py"
    script.write_text(code)
    return f"{sys.executable} {script} {{path}}"


def test_harvest_once(tmp_path):
    staging, corpus = tmp_path / "staging", tmp_path / "corpus"
    staged = write_record(staging / "std" / "white" / "17.rec", "1. e4 e5")

    code = main([
        "harvest", "--once", "--min-age", "0",
        "--staging-root", str(staging), "--corpus-root", str(corpus),
        "--converter", converter_flag(tmp_path, ECHO_CONVERTER),
    ])

    assert code == 0
    assert not staged.exists()
    assert (corpus / "std" / "white" / f"{content_hash('1. e4 e5')}-17.rec").exists()


def test_ingest_exit_codes(tmp_path):
    archive = tmp_path / "archive"
    write_record(archive / "white" / "1.c5d", record_text())
    args = [
        "ingest", "--no-progress",
        "--archive-root", str(archive),
        "--work-root", str(tmp_path / "work"),
        "--corpus-root", str(tmp_path / "corpus"),
    ]

    assert main(args + ["--converter", converter_flag(tmp_path, ECHO_CONVERTER)]) == 0
    assert main(args + ["--converter", converter_flag(tmp_path, FAILING_CONVERTER)]) == 1


def test_ingest_missing_archive(tmp_path):
    assert main(["ingest", "--archive-root", str(tmp_path / "nope"), "--no-progress"]) == 1


def test_index_command(tmp_path):
    corpus = tmp_path / "corpus"
    write_record(corpus / "standard" / "white" / f"{content_hash('x')}-3.5dpgn", "x\n")
    out = tmp_path / "index.parquet"
    assert main(["index", "--corpus-root", str(corpus), "--out", str(out)]) == 0
    assert out.exists()


def test_workers_require_a_command(tmp_path, monkeypatch):
    monkeypatch.delenv("CORPUS5D_WORKER_COMMAND", raising=False)
    assert main(["workers", "--staging-root", str(tmp_path / "staging")]) == 1


def test_unwritable_root_fails_startup(tmp_path):
    blocker = tmp_path / "file"
    blocker.write_text("not a directory")
    code = main(["harvest", "--once", "--staging-root", str(blocker / "staging"),
                 "--corpus-root", str(tmp_path / "corpus")])
    assert code == 1


def test_unknown_converter_placeholder_fails_startup(tmp_path):
    code = main(["harvest", "--once",
                 "--staging-root", str(tmp_path / "staging"),
                 "--corpus-root", str(tmp_path / "corpus"),
                 "--converter", "x {bogus}"])
    assert code == 1


def test_shutdown_runs_callbacks_once():
    calls = []
    shutdown = Shutdown()
    shutdown.on_shutdown(lambda: calls.append("terminate"))
    shutdown.on_shutdown(lambda: calls.append("stop"))

    shutdown.request(signal.SIGTERM)
    shutdown.request(signal.SIGINT)

    assert shutdown.requested.is_set()
    assert calls == ["terminate", "stop"]


SLEEPING_WORKER = (
    "import os, sys, time\n"
    "wid = os.environ['CORPUS5D_WORKER_ID']\n"
    "path = os.path.join(sys.argv[1], wid)\n"
    "with open(path + '.tmp', 'w') as f:\n"
    "    f.write(str(os.getpid()))\n"
    "os.replace(path + '.tmp', path + '.pid')\n"
    "time.sleep(120)\n"
)


def pid_is_running(pid):
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    return True


@pytest.mark.skipif(sys.platform == "win32", reason="POSIX signals")
def test_sigterm_stops_workers_command(tmp_path):
    staging, pids = tmp_path / "staging", tmp_path / "pids"
    pids.mkdir()
    script = tmp_path / "worker.py"
    script.write_text(SLEEPING_WORKER)
    env = dict(os.environ)
    env["PYTHONPATH"] = os.pathsep.join(filter(None, [str(Path(__file__).resolve().parents[1]),
                                                       env.get("PYTHONPATH")]))

    proc = subprocess.Popen(
        [sys.executable, "-m", "corpus5d", "workers", "--workers", "2",
         "--staging-root", str(staging),
         "--worker-command", f"{sys.executable} {script} {pids}"],
        env=env, stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL,
    )
    try:
        deadline = time.monotonic() + 20
        while len(list(pids.glob("*.pid"))) < 2 and time.monotonic() < deadline:
            time.sleep(0.05)
        children = [int(p.read_text()) for p in pids.glob("*.pid")]
        assert len(children) == 2

        proc.send_signal(signal.SIGTERM)
        assert proc.wait(timeout=30) == 0
        assert not any(pid_is_running(pid) for pid in children)
    finally:
        if proc.poll() is None:
            proc.kill()
            proc.wait()
