"""Concurrent read/write latency benchmarks for pluggable storage backends."""

from .config import ConfigError, RunConfig
from .schema import OperationOutcome, PhaseResult, Record
from .tester import BenchmarkAborted, DbTester, TimingSamples

__all__ = [
    "BenchmarkAborted",
    "ConfigError",
    "DbTester",
    "OperationOutcome",
    "PhaseResult",
    "Record",
    "RunConfig",
    "TimingSamples",
]

__version__ = "0.1.0"
