"""In-process backend that only sleeps, for exercising the driver."""

from __future__ import annotations

import argparse
import time

from dbtest.schema import Record

from .base import StorageBackend


class MockBackend(StorageBackend):
    """Sleeps ``multiplier`` microseconds per call and stores nothing."""

    name = "mock"

    def __init__(self, multiplier: int = 10) -> None:
        self.multiplier = multiplier

    def write(self, record: Record) -> None:
        time.sleep(self.multiplier / 1_000_000)

    def read(self, key: int) -> Record | None:
        time.sleep(self.multiplier / 1_000_000)
        return Record(key=0)

    @classmethod
    def register_args(cls, parser: argparse.ArgumentParser) -> None:
        parser.add_argument(
            "--multiplier",
            type=int,
            default=10,
            help="Simulated latency per call in microseconds (default: 10)",
        )

    @classmethod
    def from_args(cls, args: argparse.Namespace) -> MockBackend:
        return cls(multiplier=args.multiplier)
