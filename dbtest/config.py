"""Run configuration defaults, the RunConfig value and environment loading."""

from __future__ import annotations

import math
import os
from dataclasses import dataclass, replace
from pathlib import Path

from dotenv import find_dotenv, load_dotenv

# Total number of writes (and reads) per run.
DEFAULT_TOTAL = 1000

# Operations submitted concurrently per wave.
DEFAULT_BATCH_SIZE = 100

# Seconds to sleep after each wave.
DEFAULT_PAUSE = 0.0


class ConfigError(Exception):
    """Required configuration is missing or malformed."""


@dataclass(frozen=True)
class RunConfig:
    """Immutable settings for one benchmark run.

    Every ``with_*`` method returns a new ``RunConfig``; the receiver is left
    untouched, so options can be overridden in any order.
    """

    total: int = DEFAULT_TOTAL
    batch_size: int = DEFAULT_BATCH_SIZE
    pause: float = DEFAULT_PAUSE
    verbose: bool = False
    trailing_pause: bool = True
    fail_fast: bool = True
    progress: bool = False

    def __post_init__(self) -> None:
        if self.total < 0:
            raise ValueError(f"total must be >= 0, got {self.total}")
        if self.batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {self.batch_size}")
        if self.pause < 0:
            raise ValueError(f"pause must be >= 0, got {self.pause}")

    # ---- Derived ----------------------------------------------------------

    @property
    def wave_count(self) -> int:
        return math.ceil(self.total / self.batch_size)

    def wave_sizes(self) -> list[int]:
        """Size of each wave; only the last one may be short."""
        sizes = [self.batch_size] * self.wave_count
        if sizes:
            sizes[-1] = self.total - self.batch_size * (self.wave_count - 1)
        return sizes

    # ---- Builder ----------------------------------------------------------

    def with_total(self, total: int) -> RunConfig:
        return replace(self, total=total)

    def with_batch_size(self, batch_size: int) -> RunConfig:
        return replace(self, batch_size=batch_size)

    def with_pause(self, pause: float) -> RunConfig:
        return replace(self, pause=pause)

    def with_verbose(self, verbose: bool = True) -> RunConfig:
        return replace(self, verbose=verbose)

    def without_verbose(self) -> RunConfig:
        return replace(self, verbose=False)

    def with_trailing_pause(self, trailing_pause: bool = True) -> RunConfig:
        return replace(self, trailing_pause=trailing_pause)

    def with_fail_fast(self, fail_fast: bool = True) -> RunConfig:
        return replace(self, fail_fast=fail_fast)

    def with_progress(self, progress: bool = True) -> RunConfig:
        return replace(self, progress=progress)


# ---------------------------------------------------------------------------
# Environment
# ---------------------------------------------------------------------------

def load_env(env_file: str | os.PathLike | None = None) -> bool:
    """Load backend credentials from a ``.env`` file into ``os.environ``.

    Values already present in the environment win. Returns True if a file
    was found and read.
    """
    if env_file is not None:
        path = Path(env_file)
        if not path.exists():
            raise ConfigError(f"Environment file not found: {path}")
        return load_dotenv(path)
    found = find_dotenv(usecwd=True)
    if not found:
        return False
    return load_dotenv(found)


def require_env(name: str, explicit: str | None = None) -> str:
    """Return *explicit* if given, else the environment variable *name*."""
    if explicit:
        return explicit
    value = os.environ.get(name)
    if not value:
        raise ConfigError(
            f"{name} is not set. Export it, add it to .env, or pass it on the command line."
        )
    return value
