"""DbTester -- times batched concurrent writes and reads against a backend.

Each phase walks keys ``1..total`` in waves of ``batch_size``. Every member of
a wave runs on its own worker thread; the driver waits for the whole wave to
finish before pausing and starting the next one, so ``batch_size`` is the true
concurrency ceiling.
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, wait
from typing import TYPE_CHECKING, Any, Callable

from tqdm import tqdm

from .config import RunConfig
from .schema import OperationOutcome, PhaseResult, Record, format_duration

if TYPE_CHECKING:
    from backends.base import StorageBackend

logger = logging.getLogger(__name__)

_GERUND = {"write": "writing", "read": "reading"}
_PAST = {"write": "Wrote", "read": "Read"}


class BenchmarkAborted(Exception):
    """A backend call failed while running with ``fail_fast``."""

    def __init__(self, operation: str, outcome: OperationOutcome) -> None:
        self.operation = operation
        self.key = outcome.key
        self.cause = outcome.error
        super().__init__(
            f"Unable to {operation} test data (key {outcome.key}): {outcome.error}"
        )


class TimingSamples:
    """Per-phase durations in nanoseconds, appended by concurrent workers."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._durations: list[int] = []

    def append(self, duration_ns: int) -> None:
        with self._lock:
            self._durations.append(duration_ns)

    @property
    def count(self) -> int:
        with self._lock:
            return len(self._durations)

    @property
    def total(self) -> int:
        with self._lock:
            return sum(self._durations)

    @property
    def mean(self) -> int:
        with self._lock:
            if not self._durations:
                return 0
            return int(sum(self._durations) / len(self._durations))


class DbTester:
    """Runs the timed write and read phases for one backend.

    ``with_verbose()`` narrates through the ``dbtest.tester`` logger at INFO.
    Nothing is shown unless logging is configured, e.g. with
    ``dbtest.logging_config.setup_logging(verbose=True)``.
    """

    def __init__(self, backend: StorageBackend, config: RunConfig | None = None) -> None:
        self.backend = backend
        self.config = config or RunConfig()

    # ---- Builder ----------------------------------------------------------

    def _with(self, config: RunConfig) -> DbTester:
        return DbTester(self.backend, config)

    def with_total(self, total: int) -> DbTester:
        return self._with(self.config.with_total(total))

    def with_batch_size(self, batch_size: int) -> DbTester:
        return self._with(self.config.with_batch_size(batch_size))

    def with_pause(self, pause: float) -> DbTester:
        return self._with(self.config.with_pause(pause))

    def with_verbose(self, verbose: bool = True) -> DbTester:
        return self._with(self.config.with_verbose(verbose))

    def without_verbose(self) -> DbTester:
        return self._with(self.config.without_verbose())

    def with_trailing_pause(self, trailing_pause: bool = True) -> DbTester:
        return self._with(self.config.with_trailing_pause(trailing_pause))

    def with_fail_fast(self, fail_fast: bool = True) -> DbTester:
        return self._with(self.config.with_fail_fast(fail_fast))

    def with_progress(self, progress: bool = True) -> DbTester:
        return self._with(self.config.with_progress(progress))

    # ---- Phases -----------------------------------------------------------

    def time_writes(self) -> PhaseResult:
        """Write records ``1..total`` and return the aggregated timings."""
        # Records are built before the worker starts so generation stays
        # outside the timing window.
        return self._run_phase("write", Record.synthesize, self.backend.write)

    def time_reads(self) -> PhaseResult:
        """Read keys ``1..total`` and return the aggregated timings.

        The returned records are not compared with what was written.
        """
        return self._run_phase("read", lambda key: key, self.backend.read)

    def run(self) -> tuple[PhaseResult, PhaseResult]:
        return self.time_writes(), self.time_reads()

    # ---- Internals --------------------------------------------------------

    def _run_phase(
        self,
        operation: str,
        prepare: Callable[[int], Any],
        call: Callable[[Any], Any],
    ) -> PhaseResult:
        config = self.config
        samples = TimingSamples()
        result = PhaseResult(operation=operation, waves=config.wave_count)

        with ThreadPoolExecutor(
            max_workers=config.batch_size,
            thread_name_prefix=f"dbtest-{operation}",
        ) as pool, tqdm(
            total=config.total,
            desc=_GERUND[operation].capitalize(),
            unit="op",
            disable=not config.progress,
        ) as bar:
            for wave, size in enumerate(config.wave_sizes(), start=1):
                futures = []
                for slot in range(1, size + 1):
                    key = (wave - 1) * config.batch_size + slot
                    payload = prepare(key)
                    futures.append(
                        pool.submit(self._timed, operation, call, key, payload, samples)
                    )

                # Barrier: the next wave never starts before this one is done.
                wait(futures)
                outcomes = [f.result() for f in futures]
                bar.update(size)

                failures = [o for o in outcomes if not o.ok]
                if failures:
                    if config.fail_fast:
                        raise BenchmarkAborted(operation, failures[0])
                    result.failures.extend(failures)

                if config.verbose:
                    logger.info("%s %d rows.", _PAST[operation], size - len(failures))
                if wave < config.wave_count or config.trailing_pause:
                    if config.verbose:
                        logger.info("Waiting for %ss.", config.pause)
                    time.sleep(config.pause)

        if config.verbose:
            logger.info("Done %s %d rows.", _GERUND[operation], config.total)

        result.total_ns = samples.total
        result.average_ns = samples.mean
        result.succeeded = samples.count
        result.failed = len(result.failures)
        return result

    def _timed(
        self,
        operation: str,
        call: Callable[[Any], Any],
        key: int,
        payload: Any,
        samples: TimingSamples,
    ) -> OperationOutcome:
        verbose = self.config.verbose
        if verbose:
            logger.info("Started %s %d.", _GERUND[operation], key)

        start = time.perf_counter_ns()
        try:
            returned = call(payload)
        except Exception as e:
            duration = time.perf_counter_ns() - start
            logger.debug("Failed %s %d after %s: %s", _GERUND[operation], key,
                         format_duration(duration), e)
            return OperationOutcome(key=key, duration_ns=duration, error=e)
        duration = time.perf_counter_ns() - start

        if verbose:
            if operation == "read":
                logger.info("Finished reading %s in %s.", returned, format_duration(duration))
            else:
                logger.info("Finished writing %d in %s.", key, format_duration(duration))

        samples.append(duration)
        return OperationOutcome(key=key, duration_ns=duration)
