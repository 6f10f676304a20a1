"""Deduplicated corpus of 5D chess games from self-play and the historical archive."""
from corpus5d.canonical import Canonicalizer, CorpusEntry, content_hash
from corpus5d.paths import Outcome, PathKey, parse_path_key
from corpus5d.store import CorpusStore

__version__ = "0.3.0"

__all__ = [
    "Canonicalizer",
    "CorpusEntry",
    "CorpusStore",
    "Outcome",
    "PathKey",
    "content_hash",
    "parse_path_key",
]
