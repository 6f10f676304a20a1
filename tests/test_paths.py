from pathlib import Path

import pytest

from corpus5d.errors import PathFormatError
from corpus5d.paths import Outcome, PathKey, corpus_path, parse_archive_path, parse_path_key

ROOT = Path("/tmp/db")


@pytest.mark.parametrize("rel, expected", [
    ("std/white/17.rec", PathKey("std", Outcome.WHITE, 17)),
    ("standard/stalemate_timeout/00042117-1615852800.5dpgn",
     PathKey("standard", Outcome.STALEMATE_TIMEOUT, 1615852800)),
    ("princess/none/3-9.5dpgn", PathKey("princess", Outcome.NONE, 9)),
])
def test_parse_staging_path(rel, expected):
    assert parse_path_key(ROOT / rel, ROOT) == expected


@pytest.mark.parametrize("rel", [
    "std/white_wins/17.rec",       # unknown outcome
    "std/white/seventeen.rec",     # no sequence
    "std/white/17",                # no extension
    "std/white/extra/17.rec",      # too deep
    "white/17.rec",                # too shallow
    "std-variant/white/17.rec",    # ruleset is not a word
])
def test_parse_staging_path_rejects(rel):
    result = parse_path_key(ROOT / rel, ROOT)
    assert isinstance(result, PathFormatError)
    assert result.path == ROOT / rel


def test_parse_outside_root_is_an_error_value():
    result = parse_path_key(Path("/elsewhere/std/white/1.rec"), ROOT)
    assert isinstance(result, PathFormatError)


def test_parse_archive_path_takes_ruleset_from_caller():
    archive = Path("/data/5d-chess-db/db")
    key = parse_archive_path(archive / "black_timeout" / "1234.c5d", archive, "princess")
    assert key == PathKey("princess", Outcome.BLACK_TIMEOUT, 1234)
    assert isinstance(parse_archive_path(archive / "draw" / "1.c5d", archive, "standard"), PathFormatError)


def test_corpus_path_layout():
    key = PathKey("std", Outcome.WHITE, 17)
    assert corpus_path(Path("db"), key, "abc123", "rec") == Path("db/std/white/abc123-17.rec")
