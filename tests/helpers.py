from pathlib import Path
from typing import Iterable, List

from corpus5d.errors import ConversionError

GAME_HEADERS = [
    '[Board "Standard"]',
    '[Variant "Standard"]',
    '[Mode "5D"]',
    '[Date "2021.03.14"]',
    '[White "5D-Chess-DB-Gen_5dchess-tools-v2"]',
    '[Black "5D-Chess-DB-Gen_5dchess-tools-v2"]',
    '[Result "1-0"]',
]

GAME_MOVES = [
    "1. (0T1)Pe2e3 / (0T1)Pf7f6",
    "2. (0T2)Qd1h5 / (0T2)Pg7g5",
    "3. (0T3)Qh5xe8#",
]


def record_text(headers: Iterable[str] = GAME_HEADERS, moves: Iterable[str] = GAME_MOVES) -> str:
    return "\n".join([*headers, *moves]) + "\n"


def write_record(path: Path, text: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path


class EchoConverter:
    """Stands in for the notation converter: returns the file unchanged."""

    def __init__(self, fail_on: Iterable[str] = ()):
        self.fail_on = set(fail_on)
        self.calls: List[Path] = []

    def convert(self, path: Path) -> str:
        self.calls.append(Path(path))
        if Path(path).name in self.fail_on:
            raise ConversionError(path, "converter exited with status 1", returncode=1)
        return Path(path).read_text(encoding="utf-8")
