"""
Centralized pipeline configuration.

Settings can be selected via:
1. Command line flags (see `python -m corpus5d --help`)
2. Environment variables: CORPUS5D_STAGING_ROOT, CORPUS5D_CORPUS_ROOT, ...
3. Editing the defaults below

Flags win over environment variables, which win over the defaults.
"""
from __future__ import annotations

import os
import shlex
import string
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Dict, Iterable, Mapping, Optional, Sequence, Tuple

from corpus5d.errors import ConfigError

# =============================================================================
# DEFAULT CONFIGURATION
# =============================================================================

DEFAULT_STAGING_ROOT = Path("/tmp/db")
DEFAULT_CORPUS_ROOT = Path("db")
DEFAULT_WORK_ROOT = Path("/tmp/5dchess-tools")
DEFAULT_ARCHIVE_ROOT = Path("5d-chess-db/db")

DEFAULT_HARVEST_INTERVAL = 120.0
# Files younger than this are assumed to still be written by a worker
DEFAULT_MIN_AGE = 5.0

DEFAULT_ALLOW_LIST = ("standard", "princess", "defended_pawn", "half_reflected")
# The archive records the mating ply pair on its last 4 lines
DEFAULT_TRUNCATE_LINES = 4

DEFAULT_CONVERTER_COMMAND = ("node", "5dchess-notation", "convert", "{source}", "{target}", "{path}")
DEFAULT_CONVERTER_TIMEOUT = 60.0
STAGING_NOTATION = ("shad", "shad")
ARCHIVE_NOTATION = ("alexbay", "shad")

# Rulesets the self-play generator writes into
DEFAULT_STAGING_RULESETS = ("standard",)

ENV_PREFIX = "CORPUS5D_"


def check_template(command: Sequence[str], allowed: Iterable[str], label: str) -> None:
    """Raise ConfigError unless every `{field}` in `command` is one of `allowed`.

    Literal braces must be doubled (`{{` and `}}`), as with `str.format`.
    """
    allowed = set(allowed)
    for part in command:
        try:
            fields = [name for _, name, _, _ in string.Formatter().parse(part) if name is not None]
        except ValueError as e:
            raise ConfigError(f"{label} command: bad template {part!r}: {e}") from None
        for name in fields:
            if name not in allowed:
                raise ConfigError(
                    f"{label} command: unknown placeholder {{{name}}} in {part!r} "
                    f"(known: {', '.join(sorted(allowed))})"
                )


def default_worker_count() -> int:
    """One worker per logical core, minus one core for the harvester."""
    return max(1, (os.cpu_count() or 1) - 1)


@dataclass(frozen=True)
class PipelineConfig:
    staging_root: Path = DEFAULT_STAGING_ROOT
    corpus_root: Path = DEFAULT_CORPUS_ROOT
    work_root: Path = DEFAULT_WORK_ROOT
    archive_root: Path = DEFAULT_ARCHIVE_ROOT
    harvest_interval: float = DEFAULT_HARVEST_INTERVAL
    min_age: float = DEFAULT_MIN_AGE
    workers: int = field(default_factory=default_worker_count)
    allow_list: Tuple[str, ...] = DEFAULT_ALLOW_LIST
    truncate_lines: int = DEFAULT_TRUNCATE_LINES
    converter_command: Tuple[str, ...] = DEFAULT_CONVERTER_COMMAND
    converter_timeout: float = DEFAULT_CONVERTER_TIMEOUT
    worker_command: Tuple[str, ...] = ()
    staging_rulesets: Tuple[str, ...] = DEFAULT_STAGING_RULESETS

    def with_overrides(self, **overrides) -> "PipelineConfig":
        """Return a copy with every non-None override applied."""
        changes = {k: v for k, v in overrides.items() if v is not None}
        return replace(self, **changes)


# =============================================================================
# Environment variable overrides
# =============================================================================

def _env_float(env: Mapping[str, str], name: str) -> Optional[float]:
    raw = env.get(ENV_PREFIX + name)
    if raw is None or raw == "":
        return None
    try:
        value = float(raw)
    except ValueError:
        raise ConfigError(f"{ENV_PREFIX}{name} must be a number, got {raw!r}") from None
    if value < 0:
        raise ConfigError(f"{ENV_PREFIX}{name} must not be negative, got {raw!r}")
    return value


def _env_int(env: Mapping[str, str], name: str) -> Optional[int]:
    raw = env.get(ENV_PREFIX + name)
    if raw is None or raw == "":
        return None
    try:
        value = int(raw)
    except ValueError:
        raise ConfigError(f"{ENV_PREFIX}{name} must be an integer, got {raw!r}") from None
    if value < 0:
        raise ConfigError(f"{ENV_PREFIX}{name} must not be negative, got {raw!r}")
    return value


def _env_path(env: Mapping[str, str], name: str) -> Optional[Path]:
    raw = env.get(ENV_PREFIX + name)
    return Path(raw) if raw else None


def _env_words(env: Mapping[str, str], name: str) -> Optional[Tuple[str, ...]]:
    raw = env.get(ENV_PREFIX + name)
    return tuple(shlex.split(raw)) if raw else None


def _env_list(env: Mapping[str, str], name: str) -> Optional[Tuple[str, ...]]:
    raw = env.get(ENV_PREFIX + name)
    if not raw:
        return None
    return tuple(item.strip() for item in raw.split(",") if item.strip())


def load_config(env: Optional[Mapping[str, str]] = None) -> PipelineConfig:
    """Build the configuration from the defaults plus environment overrides."""
    env = os.environ if env is None else env
    workers = _env_int(env, "WORKERS")
    if workers == 0:
        raise ConfigError(f"{ENV_PREFIX}WORKERS must be at least 1")
    return PipelineConfig().with_overrides(
        staging_root=_env_path(env, "STAGING_ROOT"),
        corpus_root=_env_path(env, "CORPUS_ROOT"),
        work_root=_env_path(env, "WORK_ROOT"),
        archive_root=_env_path(env, "ARCHIVE_ROOT"),
        harvest_interval=_env_float(env, "HARVEST_INTERVAL"),
        min_age=_env_float(env, "MIN_AGE"),
        workers=workers,
        allow_list=_env_list(env, "ALLOW_LIST"),
        truncate_lines=_env_int(env, "TRUNCATE_LINES"),
        converter_command=_env_words(env, "CONVERTER"),
        converter_timeout=_env_float(env, "CONVERTER_TIMEOUT"),
        worker_command=_env_words(env, "WORKER_COMMAND"),
        staging_rulesets=_env_list(env, "STAGING_RULESETS"),
    )


# =============================================================================
# Helper to print current config
# =============================================================================

def describe_config(config: PipelineConfig) -> Dict[str, str]:
    def show_path(path: Path) -> str:
        exists = "✓" if path.exists() else "✗ NOT FOUND"
        return f"{path} ({exists})"

    return {
        "Staging root": show_path(config.staging_root),
        "Corpus root": show_path(config.corpus_root),
        "Work root": show_path(config.work_root),
        "Archive root": show_path(config.archive_root),
        "Staging rulesets": ", ".join(config.staging_rulesets) or "(empty)",
        "Harvest interval": f"{config.harvest_interval:g}s",
        "Minimum file age": f"{config.min_age:g}s",
        "Workers": str(config.workers),
        "Allow-list": ", ".join(config.allow_list) or "(empty)",
        "Truncate lines": str(config.truncate_lines),
        "Converter": shlex.join(config.converter_command),
        "Converter timeout": f"{config.converter_timeout:g}s",
        "Worker command": shlex.join(config.worker_command) if config.worker_command else "(not set)",
    }


def print_config(config: PipelineConfig) -> None:
    """Print the effective configuration."""
    for name, value in describe_config(config).items():
        print(f"{name}: {value}")
