"""Wrapper around the external move-notation converter.

The converter is a separate program (by default `node 5dchess-notation`). It
reads a record file and prints the game in the target notation on stdout.
"""
from __future__ import annotations

import logging
import subprocess
from pathlib import Path
from typing import Optional, Sequence, Tuple

from corpus5d.config import DEFAULT_CONVERTER_COMMAND, DEFAULT_CONVERTER_TIMEOUT, check_template
from corpus5d.errors import ConversionError

logger = logging.getLogger(__name__)

CONVERTER_FIELDS = ("source", "target", "path")


class Converter:
    def __init__(
        self,
        command: Sequence[str] = DEFAULT_CONVERTER_COMMAND,
        source: str = "shad",
        target: str = "shad",
        timeout: Optional[float] = DEFAULT_CONVERTER_TIMEOUT,
    ):
        if not command:
            raise ValueError("converter command must not be empty")
        check_template(command, CONVERTER_FIELDS, "converter")
        self.command: Tuple[str, ...] = tuple(command)
        self.source = source
        self.target = target
        self.timeout = timeout or None

    def argv(self, path: Path) -> list:
        fields = {"source": self.source, "target": self.target, "path": str(path)}
        argv = [part.format(**fields) for part in self.command]
        if not any("{path}" in part for part in self.command):
            argv.append(str(path))
        return argv

    def convert(self, path: Path) -> str:
        """Run the converter on `path` and return its stdout.

        Raises ConversionError on a non-zero exit, a timeout, a missing
        executable or output that is not UTF-8.
        """
        argv = self.argv(path)
        try:
            proc = subprocess.run(argv, capture_output=True, timeout=self.timeout, check=False)
        except subprocess.TimeoutExpired:
            raise ConversionError(path, f"converter timed out after {self.timeout:g}s") from None
        except OSError as e:
            raise ConversionError(path, f"cannot run converter {argv[0]!r}: {e}") from e

        if proc.returncode != 0:
            stderr = proc.stderr.decode("utf-8", errors="replace").strip()
            reason = f"converter exited with status {proc.returncode}"
            if stderr:
                reason += f": {stderr.splitlines()[-1]}"
            raise ConversionError(path, reason, returncode=proc.returncode)
        try:
            return proc.stdout.decode("utf-8")
        except UnicodeDecodeError as e:
            raise ConversionError(path, f"converter output is not UTF-8: {e}") from e
