import asyncio
import logging
import math
import time
from typing import NamedTuple, Optional, List

from config import SUCCESS_STATUS_MIN, SUCCESS_STATUS_MAX, KILOBYTE

logger = logging.getLogger(__name__)

NANOSECONDS_PER_SECOND = 1_000_000_000


class Measurement(NamedTuple):
    status_code: int
    reply_size: int
    duration_ns: int


class NoSuccessfulRequestsError(ValueError):
    """Raised when a latency statistic is requested but no request succeeded."""


def is_success(status_code: int) -> bool:
    return SUCCESS_STATUS_MIN <= status_code <= SUCCESS_STATUS_MAX


class BenchmarkRun:
    """Running totals for one load-generation run.

    Only the task that drains the result queue may mutate a run. Once a run
    has been claimed by that task, ``record_measurement`` and ``stop`` refuse
    calls coming from anywhere else. Probe tasks never touch it; they hand
    over immutable ``Measurement`` values instead.

    Latency statistics work on integer nanoseconds. The median of an
    even-sized set is the upper of the two middle values, and the standard
    deviation is taken around the floored integer mean.
    """

    def __init__(self, repetitions: int = 0):
        self.repetitions = repetitions
        self.requests_issued = 0
        self.successful_requests = 0
        self.failed_requests = 0
        self.transferred_bytes = 0
        self.latencies: List[int] = []
        self.started_at_ns = time.perf_counter_ns()
        self.ended_at_ns: Optional[int] = None
        self._owner: Optional[asyncio.Task] = None

    # --- mutation (single writer) ---

    def claim(self, owner: Optional[asyncio.Task]):
        if self._owner is not None and self._owner is not owner:
            raise RuntimeError("Benchmark run is already owned by another task")
        self._owner = owner

    def _check_writer(self):
        if self._owner is None:
            return
        try:
            current = asyncio.current_task()
        except RuntimeError:
            current = None
        if current is not self._owner:
            raise RuntimeError("Benchmark run may only be mutated by its consuming task")

    def record_measurement(self, m: Measurement):
        self._check_writer()
        if self.is_stopped():
            raise RuntimeError("Cannot record a measurement on a stopped run")

        if is_success(m.status_code):
            self.successful_requests += 1
            self.latencies.append(m.duration_ns)
        else:
            self.failed_requests += 1
        self.transferred_bytes += m.reply_size
        logger.debug(f"Recorded status={m.status_code} size={m.reply_size} "
                     f"duration={m.duration_ns}ns ({self.request_count()}/{self.repetitions})")

    def stop(self):
        self._check_writer()
        if self.is_stopped():
            raise RuntimeError("Benchmark run already stopped")
        self.ended_at_ns = time.perf_counter_ns()

    # --- running totals ---

    def is_stopped(self) -> bool:
        return self.ended_at_ns is not None

    def request_count(self) -> int:
        return self.successful_requests + self.failed_requests

    def has_latencies(self) -> bool:
        return bool(self.latencies)

    # --- derived statistics ---

    def elapsed_ns(self) -> int:
        if self.ended_at_ns is None:
            raise RuntimeError("Elapsed time is only known after the run is stopped")
        return self.ended_at_ns - self.started_at_ns

    def kilobytes_per_second(self) -> int:
        elapsed_s = self.elapsed_ns() / NANOSECONDS_PER_SECOND
        if elapsed_s <= 0:
            return 0
        return math.floor(self.transferred_bytes / KILOBYTE / elapsed_s)

    def _require_latencies(self):
        if not self.latencies:
            raise NoSuccessfulRequestsError("No successful requests; latency statistics are undefined")

    def total_latency_ns(self) -> int:
        return sum(self.latencies)

    def average_ns(self) -> int:
        self._require_latencies()
        return self.total_latency_ns() // len(self.latencies)

    def slowest_ns(self) -> int:
        self._require_latencies()
        slowest = self.latencies[0]
        for value in self.latencies:
            if slowest < value:
                slowest = value
        return slowest

    def fastest_ns(self) -> int:
        self._require_latencies()
        fastest = self.latencies[0]
        for value in self.latencies:
            if fastest > value:
                fastest = value
        return fastest

    def median_ns(self) -> int:
        self._require_latencies()
        ordered = sorted(self.latencies)
        return ordered[len(ordered) // 2]

    def standard_deviation_ns(self) -> int:
        # Population deviation around the floored mean, floored again.
        mean = self.average_ns()
        sum_squared_delta = 0
        for value in self.latencies:
            delta = mean - value
            sum_squared_delta += delta * delta
        return math.isqrt(sum_squared_delta // len(self.latencies))
