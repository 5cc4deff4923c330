#!/usr/bin/env python3
"""Unified CLI with one subcommand per storage backend.

Usage:
    python run.py mock --multiplier 10
    python run.py upstash --total 1000 --batch-size 100
    python run.py turso --pause 10
    python run.py planetscale --keep-going --progress
"""

from __future__ import annotations

import argparse
import sys

from backends import get_backends
from backends.base import StorageBackend
from dbtest.config import (
    DEFAULT_BATCH_SIZE,
    DEFAULT_PAUSE,
    DEFAULT_TOTAL,
    ConfigError,
    RunConfig,
    load_env,
)
from dbtest.logging_config import setup_logging
from dbtest.schema import PhaseResult, format_duration
from dbtest.tester import BenchmarkAborted, DbTester


def build_parser(backends: dict[str, type[StorageBackend]]) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="dbtest",
        description="Time concurrent writes and reads against a storage backend",
    )
    parser.add_argument(
        "--total", type=int, default=DEFAULT_TOTAL,
        help=f"Number of records to write and read (default: {DEFAULT_TOTAL})",
    )
    parser.add_argument(
        "--batch-size", type=int, default=DEFAULT_BATCH_SIZE,
        help=f"Concurrent operations per wave (default: {DEFAULT_BATCH_SIZE})",
    )
    parser.add_argument(
        "--pause", type=float, default=DEFAULT_PAUSE,
        help=f"Seconds to pause after each wave (default: {DEFAULT_PAUSE:g})",
    )
    parser.add_argument(
        "--no-trailing-pause", action="store_true",
        help="Do not pause after the last wave",
    )
    parser.add_argument(
        "--keep-going", action="store_true",
        help="Count failed operations instead of aborting on the first one",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Narrate every operation")
    parser.add_argument("--progress", action="store_true", help="Show a progress bar per phase")
    parser.add_argument(
        "--env-file", type=str, default=None,
        help="Read backend credentials from this file (default: ./.env if present)",
    )

    subparsers = parser.add_subparsers(dest="command")
    for name, cls in sorted(backends.items()):
        sub = subparsers.add_parser(name, help=f"Benchmark the {name} backend")
        cls.register_args(sub)
    return parser


def print_phase(result: PhaseResult, total: int) -> None:
    verb, noun = ("Wrote", "write") if result.operation == "write" else ("Read", "read")
    print(
        f"{verb} {result.succeeded} rows in {format_duration(result.total_ns)}. "
        f"Average {noun} time was {format_duration(result.average_ns)}."
    )
    if result.failed:
        print(f"  {result.failed} of {total} {noun}s failed; first: "
              f"key {result.failures[0].key}: {result.failures[0].error}")


def main(argv: list[str] | None = None) -> None:
    backends = get_backends()
    parser = build_parser(backends)
    parsed = parser.parse_args(argv)

    if parsed.command is None:
        parser.print_help()
        return

    setup_logging(parsed.verbose)

    try:
        config = RunConfig(
            total=parsed.total,
            batch_size=parsed.batch_size,
            pause=parsed.pause,
            verbose=parsed.verbose,
            trailing_pause=not parsed.no_trailing_pause,
            fail_fast=not parsed.keep_going,
            # The bar and per-operation narration garble each other.
            progress=parsed.progress and not parsed.verbose,
        )
    except ValueError as e:
        parser.error(str(e))

    try:
        load_env(parsed.env_file)
        backend = backends[parsed.command].from_args(parsed)
    except ConfigError as e:
        print(f"Unable to read configuration: {e}", file=sys.stderr)
        sys.exit(1)

    with backend:
        try:
            backend.setup()
        except Exception as e:
            print(f"Unable to set up {parsed.command}: {e}", file=sys.stderr)
            sys.exit(1)

        tester = DbTester(backend, config)
        try:
            print_phase(tester.time_writes(), config.total)
            print_phase(tester.time_reads(), config.total)
        except BenchmarkAborted as e:
            print(f"Unable to {e.operation} test data: {e.cause}", file=sys.stderr)
            sys.exit(1)


if __name__ == "__main__":
    main()
