"""Tests for DbTester -- wave partitioning, barrier, timing and failure policy."""

from __future__ import annotations

import io
import os
import threading
import time
import unittest
from concurrent.futures import wait as real_wait
from contextlib import redirect_stderr
from unittest import mock

from tqdm import tqdm as real_tqdm

from backends.base import StorageBackend
from dbtest.config import RunConfig
from dbtest.logging_config import setup_logging
from dbtest.schema import Record
from dbtest.tester import BenchmarkAborted, DbTester, TimingSamples


class RecordingBackend(StorageBackend):
    """Thread-safe backend that remembers every call and its time window."""

    name = "recording"

    def __init__(self, delay: float = 0.0, fail_on_call: int | None = None) -> None:
        self.delay = delay
        self.fail_on_call = fail_on_call
        self._lock = threading.Lock()
        self.calls = 0
        self.keys: list[int] = []
        self.records: list[Record] = []
        self.windows: dict[int, tuple[float, float]] = {}

    def _enter(self) -> int:
        with self._lock:
            self.calls += 1
            return self.calls

    def _finish(self, key: int, start: float) -> None:
        with self._lock:
            self.keys.append(key)
            self.windows[key] = (start, time.perf_counter())

    def write(self, record: Record) -> None:
        start = time.perf_counter()
        call = self._enter()
        if self.delay:
            time.sleep(self.delay)
        if call == self.fail_on_call:
            raise ConnectionError(f"write {call} refused")
        with self._lock:
            self.records.append(record)
        self._finish(record.key, start)

    def read(self, key: int) -> Record | None:
        start = time.perf_counter()
        call = self._enter()
        if self.delay:
            time.sleep(self.delay)
        if call == self.fail_on_call:
            raise ConnectionError(f"read {call} refused")
        self._finish(key, start)
        return Record(key=key)


class BarrierBackend(StorageBackend):
    """Every call waits for ``parties`` concurrent calls before returning."""

    def __init__(self, parties: int) -> None:
        self.barrier = threading.Barrier(parties, timeout=5)

    def write(self, record: Record) -> None:
        self.barrier.wait()

    def read(self, key: int) -> Record | None:
        self.barrier.wait()
        return None


def _waves_seen(backend: RecordingBackend):
    """Patch the barrier so each wave's keys can be collected after it completes."""
    waves: list[list[int]] = []
    seen = 0

    def _wait(futures):
        nonlocal seen
        result = real_wait(futures)
        with backend._lock:
            waves.append(sorted(backend.keys[seen:]))
            seen = len(backend.keys)
        return result

    return waves, mock.patch("dbtest.tester.wait", side_effect=_wait)


# ======================================================================
# Partitioning
# ======================================================================

class TestWaves(unittest.TestCase):
    def test_ten_in_batches_of_five(self):
        backend = RecordingBackend()
        tester = DbTester(backend).with_total(10).with_batch_size(5)
        waves, patcher = _waves_seen(backend)
        with patcher:
            result = tester.time_writes()

        self.assertEqual(result.waves, 2)
        self.assertEqual(waves, [[1, 2, 3, 4, 5], [6, 7, 8, 9, 10]])
        self.assertEqual(result.succeeded, 10)
        self.assertEqual(result.failed, 0)

    def test_uneven_last_wave(self):
        backend = RecordingBackend()
        tester = DbTester(backend).with_total(7).with_batch_size(3)
        waves, patcher = _waves_seen(backend)
        with patcher:
            tester.time_reads()
        self.assertEqual([len(w) for w in waves], [3, 3, 1])
        self.assertEqual(waves, [[1, 2, 3], [4, 5, 6], [7]])

    def test_every_key_exactly_once(self):
        backend = RecordingBackend()
        DbTester(backend).with_total(23).with_batch_size(4).time_writes()
        self.assertEqual(sorted(backend.keys), list(range(1, 24)))
        self.assertEqual(len(backend.keys), 23)

    def test_batch_larger_than_total(self):
        backend = RecordingBackend()
        result = DbTester(backend).with_total(3).with_batch_size(100).time_writes()
        self.assertEqual(result.waves, 1)
        self.assertEqual(sorted(backend.keys), [1, 2, 3])

    def test_zero_total(self):
        backend = RecordingBackend()
        result = DbTester(backend).with_total(0).time_writes()
        self.assertEqual(backend.calls, 0)
        self.assertEqual(result.waves, 0)
        self.assertEqual(result.total_ns, 0)
        self.assertEqual(result.average_ns, 0)


# ======================================================================
# Concurrency
# ======================================================================

class TestConcurrency(unittest.TestCase):
    def test_wave_members_run_concurrently(self):
        """A wave only completes if all of its members are in flight at once."""
        result = DbTester(BarrierBackend(parties=5)).with_total(10).with_batch_size(5).time_writes()
        self.assertEqual(result.succeeded, 10)
        self.assertEqual(result.failed, 0)

    def test_no_overlap_between_waves(self):
        backend = RecordingBackend(delay=0.01)
        DbTester(backend).with_total(12).with_batch_size(4).time_writes()

        for wave in range(2):
            keys_now = range(wave * 4 + 1, wave * 4 + 5)
            keys_next = range((wave + 1) * 4 + 1, (wave + 1) * 4 + 5)
            last_end = max(backend.windows[k][1] for k in keys_now)
            first_start = min(backend.windows[k][0] for k in keys_next)
            self.assertLessEqual(last_end, first_start)

    def test_timing_samples_concurrent_append(self):
        samples = TimingSamples()

        def _add():
            for _ in range(1000):
                samples.append(2)

        threads = [threading.Thread(target=_add) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        self.assertEqual(samples.count, 8000)
        self.assertEqual(samples.total, 16000)
        self.assertEqual(samples.mean, 2)

    def test_timing_samples_empty_mean(self):
        self.assertEqual(TimingSamples().mean, 0)


# ======================================================================
# Timing
# ======================================================================

class TestTiming(unittest.TestCase):
    def test_average_is_total_over_count(self):
        backend = RecordingBackend(delay=0.002)
        result = DbTester(backend).with_total(10).with_batch_size(5).time_writes()
        self.assertEqual(result.succeeded, 10)
        self.assertEqual(result.average_ns, int(result.total_ns / 10))
        # Each call sleeps 2ms, so the sum can't be less than 20ms.
        self.assertGreaterEqual(result.total_ns, 20_000_000)

    def test_result_unpacks_to_total_and_average(self):
        result = DbTester(RecordingBackend()).with_total(4).with_batch_size(2).time_writes()
        total, average = result
        self.assertEqual(total, result.total)
        self.assertEqual(average, result.average)

    def test_run_times_writes_then_reads(self):
        backend = RecordingBackend()
        writes, reads = DbTester(backend).with_total(4).with_batch_size(2).run()
        self.assertEqual((writes.operation, reads.operation), ("write", "read"))
        self.assertEqual((writes.succeeded, reads.succeeded), (4, 4))
        self.assertEqual(backend.calls, 8)

    def test_writes_synthesized_records(self):
        backend = RecordingBackend()
        DbTester(backend).with_total(3).with_batch_size(3).time_writes()
        by_key = {r.key: r for r in backend.records}
        self.assertEqual(by_key[2].text, "SampleText-2")
        delta = by_key[3].timestamp - by_key[1].timestamp
        # Two seconds apart, plus whatever elapsed between generating them.
        self.assertGreaterEqual(delta.total_seconds(), 2)
        self.assertLess(delta.total_seconds(), 3)


# ======================================================================
# Pauses
# ======================================================================

class TestPause(unittest.TestCase):
    def test_pause_after_every_wave_by_default(self):
        tester = DbTester(RecordingBackend()).with_total(6).with_batch_size(2).with_pause(0.5)
        with mock.patch("dbtest.tester.time.sleep") as sleep:
            tester.time_writes()
        self.assertEqual(sleep.call_args_list, [mock.call(0.5)] * 3)

    def test_no_trailing_pause(self):
        tester = (
            DbTester(RecordingBackend())
            .with_total(6)
            .with_batch_size(2)
            .with_pause(0.5)
            .with_trailing_pause(False)
        )
        with mock.patch("dbtest.tester.time.sleep") as sleep:
            tester.time_reads()
        self.assertEqual(sleep.call_count, 2)


# ======================================================================
# Failures
# ======================================================================

class TestFailures(unittest.TestCase):
    def test_fourth_write_aborts_run(self):
        backend = RecordingBackend(fail_on_call=4)
        tester = DbTester(backend).with_total(10).with_batch_size(5)
        with self.assertRaises(BenchmarkAborted) as ctx:
            tester.time_writes()

        self.assertEqual(ctx.exception.operation, "write")
        self.assertIsInstance(ctx.exception.cause, ConnectionError)
        self.assertIn("Unable to write test data", str(ctx.exception))
        # The second wave never starts.
        self.assertEqual(backend.calls, 5)

    def test_read_failure_aborts_run(self):
        backend = RecordingBackend(fail_on_call=1)
        with self.assertRaises(BenchmarkAborted) as ctx:
            DbTester(backend).with_total(3).with_batch_size(1).time_reads()
        self.assertEqual(ctx.exception.operation, "read")
        self.assertEqual(ctx.exception.key, 1)
        self.assertEqual(backend.calls, 1)

    def test_keep_going_counts_failures(self):
        backend = RecordingBackend(fail_on_call=4)
        result = (
            DbTester(backend)
            .with_total(10)
            .with_batch_size(5)
            .with_fail_fast(False)
            .time_writes()
        )
        self.assertEqual(result.succeeded, 9)
        self.assertEqual(result.failed, 1)
        self.assertEqual(len(result.failures), 1)
        self.assertIsInstance(result.failures[0].error, ConnectionError)
        self.assertEqual(backend.calls, 10)
        # Failed calls are not part of the timings.
        self.assertEqual(result.average_ns, int(result.total_ns / 9))


# ======================================================================
# Progress
# ======================================================================

class TestProgress(unittest.TestCase):
    def test_bar_counts_every_operation(self):
        bars = []
        out = io.StringIO()

        def _bar(**kwargs):
            bar = real_tqdm(file=out, **kwargs)
            bars.append(bar)
            return bar

        tester = DbTester(RecordingBackend()).with_total(7).with_batch_size(3).with_progress()
        with mock.patch("dbtest.tester.tqdm", side_effect=_bar):
            tester.time_writes()

        self.assertEqual(len(bars), 1)
        self.assertFalse(bars[0].disable)
        self.assertEqual(bars[0].total, 7)
        self.assertEqual(bars[0].n, 7)
        self.assertIn("Writing", out.getvalue())

    def test_bar_disabled_by_default(self):
        with mock.patch("dbtest.tester.tqdm", wraps=real_tqdm) as bar:
            DbTester(RecordingBackend()).with_total(2).with_batch_size(2).time_reads()
        self.assertTrue(bar.call_args.kwargs["disable"])


# ======================================================================
# Builder and narration
# ======================================================================

class TestBuilder(unittest.TestCase):
    def test_defaults(self):
        tester = DbTester(RecordingBackend())
        self.assertEqual(tester.config, RunConfig())
        self.assertEqual(tester.config.total, 1000)
        self.assertEqual(tester.config.batch_size, 100)

    def test_overrides_return_new_tester(self):
        base = DbTester(RecordingBackend())
        changed = base.with_total(5).with_pause(1.5).with_verbose()
        self.assertEqual(base.config.total, 1000)
        self.assertEqual(changed.config.total, 5)
        self.assertEqual(changed.config.pause, 1.5)
        self.assertTrue(changed.config.verbose)
        self.assertFalse(changed.without_verbose().config.verbose)
        self.assertIs(changed.backend, base.backend)

    def test_order_insensitive(self):
        backend = RecordingBackend()
        a = DbTester(backend).with_total(5).with_batch_size(2)
        b = DbTester(backend).with_batch_size(2).with_total(5)
        self.assertEqual(a.config, b.config)

    def test_invalid_batch_size_rejected(self):
        with self.assertRaises(ValueError):
            DbTester(RecordingBackend()).with_batch_size(0)

    def test_verbose_narration(self):
        tester = DbTester(RecordingBackend()).with_total(2).with_batch_size(2).with_verbose()
        with self.assertLogs("dbtest.tester", level="INFO") as logs:
            tester.time_writes()
        output = "\n".join(logs.output)
        self.assertIn("Started writing 1.", output)
        self.assertIn("Finished writing 2 in", output)
        self.assertIn("Wrote 2 rows.", output)
        self.assertIn("Done writing 2 rows.", output)

    def test_narration_reaches_configured_console(self):
        err = io.StringIO()
        tester = DbTester(RecordingBackend()).with_total(2).with_batch_size(2).with_verbose()
        with mock.patch.dict(os.environ, {"DBTEST_LOG_LEVEL": ""}), redirect_stderr(err):
            setup_logging(verbose=True)
            try:
                tester.time_writes()
            finally:
                setup_logging()
        self.assertIn("Started writing 1.", err.getvalue())
        self.assertIn("Done writing 2 rows.", err.getvalue())

    def test_quiet_by_default(self):
        tester = DbTester(RecordingBackend()).with_total(2).with_batch_size(2)
        with mock.patch("dbtest.tester.logger") as logger:
            tester.time_reads()
        logger.info.assert_not_called()


if __name__ == "__main__":
    unittest.main()
