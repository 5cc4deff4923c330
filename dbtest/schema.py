"""Records written to the backends and the results reported per phase."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone


@dataclass
class Record:
    key: int
    text: str = ""
    timestamp: datetime | None = None

    @classmethod
    def synthesize(cls, key: int, now: datetime | None = None) -> Record:
        """Build the deterministic test record for *key*.

        The timestamp is ``now + key seconds`` so every record carries a
        distinct value regardless of when the write is actually sent.
        """
        if now is None:
            now = datetime.now(timezone.utc)
        return cls(
            key=key,
            text=f"SampleText-{key}",
            timestamp=now + timedelta(seconds=key),
        )

    def __str__(self) -> str:
        return f"{{ key: {self.key}, text: {self.text}, timestamp: {self.timestamp} }}"


@dataclass
class OperationOutcome:
    """Result of a single timed backend call."""

    key: int
    duration_ns: int
    error: BaseException | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class PhaseResult:
    operation: str          # "write" or "read"
    total_ns: int = 0
    average_ns: int = 0
    succeeded: int = 0
    failed: int = 0
    waves: int = 0
    failures: list[OperationOutcome] = field(default_factory=list)

    @property
    def total(self) -> timedelta:
        return timedelta(microseconds=self.total_ns / 1000)

    @property
    def average(self) -> timedelta:
        return timedelta(microseconds=self.average_ns / 1000)

    def __iter__(self):
        # Allows ``total, average = tester.time_writes()``.
        yield self.total
        yield self.average


def format_duration(ns: int) -> str:
    """Render a nanosecond duration the way a human reads it (e.g. 12.3ms)."""
    if ns >= 1_000_000_000:
        return f"{ns / 1_000_000_000:.3f}s"
    if ns >= 1_000_000:
        return f"{ns / 1_000_000:.3f}ms"
    if ns >= 1_000:
        return f"{ns / 1_000:.3f}µs"
    return f"{ns}ns"
