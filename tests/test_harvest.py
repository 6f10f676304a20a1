import errno

from corpus5d.canonical import Canonicalizer, content_hash
from corpus5d.errors import StoreWriteError
from corpus5d.harvest import Harvester
from corpus5d.paths import parse_path_key
from corpus5d.store import CorpusStore
from tests.helpers import EchoConverter, record_text, write_record


def make_harvester(staging_root, corpus_root, converter=None, store=None):
    return Harvester(
        staging_root,
        Canonicalizer(converter or EchoConverter()),
        store or CorpusStore(corpus_root),
        interval=0,
        min_age=0,
    )


def corpus_files(corpus_root):
    return sorted(p for p in corpus_root.rglob("*") if p.is_file())


def test_end_to_end_cycle(staging_root, corpus_root):
    staged = write_record(staging_root / "std" / "white" / "17.rec", '[Date "2021.03.14"]\n1. e4 e5')
    stats = make_harvester(staging_root, corpus_root).run_cycle()

    expected = corpus_root / "std" / "white" / f"{content_hash('1. e4 e5')}-17.rec"
    assert corpus_files(corpus_root) == [expected]
    assert expected.read_text() == '[Date "2021.03.14"]\n1. e4 e5\n'
    assert not staged.exists()
    assert stats.committed == 1 and stats.failed == 0


def test_malformed_path_is_left_in_staging(staging_root, corpus_root):
    good = [
        write_record(staging_root / "standard" / "white" / f"{i}.5dpgn",
                     record_text(moves=[f"1. (0T1)Pa2a{i}"]))
        for i in (3, 4, 5)
    ]
    bad = write_record(staging_root / "standard" / "checkmated" / "6.5dpgn", record_text())

    stats = make_harvester(staging_root, corpus_root).run_cycle()

    assert stats.scanned == 4
    assert stats.committed == 3
    assert stats.failed == 1
    assert not any(p.exists() for p in good)
    assert [p for p in staging_root.rglob("*") if p.is_file()] == [bad]
    assert len(corpus_files(corpus_root)) == 3


def test_empty_record_is_dropped_without_write(staging_root, corpus_root):
    staged = write_record(staging_root / "standard" / "none" / "9.5dpgn", record_text(moves=["", "  "]))
    stats = make_harvester(staging_root, corpus_root).run_cycle()

    assert not staged.exists()
    assert stats.empty == 1
    assert corpus_files(corpus_root) == []


def test_conversion_failure_is_retried_next_cycle(staging_root, corpus_root):
    staged = write_record(staging_root / "standard" / "black" / "12.5dpgn", record_text())

    failing = make_harvester(staging_root, corpus_root, EchoConverter(fail_on={"12.5dpgn"}))
    assert failing.run_cycle().failed == 1
    assert staged.exists()
    assert corpus_files(corpus_root) == []

    assert make_harvester(staging_root, corpus_root).run_cycle().committed == 1
    assert not staged.exists()


def test_duplicates_collapse_to_one_entry(staging_root, corpus_root):
    write_record(staging_root / "standard" / "white" / "1.5dpgn", record_text(headers=['[Date "2021.03.14"]']))
    write_record(staging_root / "standard" / "white" / "2.5dpgn", record_text(headers=['[Date "2023.07.01"]']))

    stats = make_harvester(staging_root, corpus_root).run_cycle()

    assert stats.committed == 1 and stats.duplicates == 1
    assert len(corpus_files(corpus_root)) == 1
    assert [p for p in staging_root.rglob("*") if p.is_file()] == []


def test_reprocessing_committed_file_writes_nothing_new(staging_root, corpus_root):
    staged = write_record(staging_root / "standard" / "white" / "1.5dpgn", record_text())
    harvester = make_harvester(staging_root, corpus_root)
    harvester.store.commit(harvester.canonicalizer.canonicalize(staged, parse_path_key(staged, staging_root)))
    before = [(p, p.read_bytes()) for p in corpus_files(corpus_root)]

    stats = harvester.run_cycle()

    assert stats.duplicates == 1
    assert [(p, p.read_bytes()) for p in corpus_files(corpus_root)] == before
    assert not staged.exists()


class BrokenStore(CorpusStore):
    def __init__(self, root, fatal):
        super().__init__(root)
        self.fatal = fatal
        self.attempts = 0

    def commit(self, entry):
        self.attempts += 1
        code = errno.ENOSPC if self.fatal else errno.EACCES
        raise StoreWriteError.from_os_error(self.base / entry.ruleset, OSError(code, "boom"))


def test_store_failure_keeps_staging_file(staging_root, corpus_root):
    staged = [
        write_record(staging_root / "standard" / "white" / f"{i}.5dpgn", record_text(moves=[f"{i}."]))
        for i in (1, 2)
    ]
    store = BrokenStore(corpus_root, fatal=False)
    stats = make_harvester(staging_root, corpus_root, store=store).run_cycle()

    assert stats.failed == 2
    assert store.attempts == 2
    assert all(p.exists() for p in staged)


def test_fatal_store_failure_ends_cycle_early(staging_root, corpus_root):
    for i in (1, 2, 3):
        write_record(staging_root / "standard" / "white" / f"{i}.5dpgn", record_text(moves=[f"{i}."]))
    store = BrokenStore(corpus_root, fatal=True)
    stats = make_harvester(staging_root, corpus_root, store=store).run_cycle()

    assert store.attempts == 1
    assert stats.scanned == 1


def test_scan_skips_hidden_and_fresh_files(staging_root, corpus_root):
    write_record(staging_root / "standard" / "white" / ".1.5dpgn.tmp", "partial")
    fresh = write_record(staging_root / "standard" / "white" / "2.5dpgn", record_text())

    harvester = make_harvester(staging_root, corpus_root)
    assert harvester.scan() == [fresh]
    harvester.min_age = 3600
    assert harvester.scan() == []


def test_run_stops_after_max_cycles(staging_root, corpus_root):
    harvester = make_harvester(staging_root, corpus_root)
    harvester.run(max_cycles=2)
    assert not harvester.stopped


def test_stop_ends_run_loop(staging_root, corpus_root):
    harvester = make_harvester(staging_root, corpus_root)
    harvester.stop()
    harvester.run()
    assert harvester.stopped
