import asyncio
import logging
import time
from typing import Optional, Set, Tuple

from config import RunConfig, FAILURE_STATUS_CODE
from metrics import Measurement
from probe import ProbeFunc

logger = logging.getLogger(__name__)


class Dispatcher:
    """Keeps a fixed number of probes outstanding until the request budget is spent.

    This is a closed workload model: a replacement probe is issued only after
    the consumer has drained a Measurement, so a slow target throttles issuance
    instead of piling up requests.
    """

    def __init__(self, run_config: RunConfig, result_queue: asyncio.Queue,
                 probe: ProbeFunc, stop_event: Optional[asyncio.Event] = None):
        if run_config.concurrency < 1:
            raise ValueError(f"concurrency must be at least 1, got {run_config.concurrency}")
        if run_config.repetitions < 0:
            raise ValueError(f"repetitions must not be negative, got {run_config.repetitions}")
        if run_config.probe_timeout <= 0:
            raise ValueError(f"probe_timeout must be positive, got {run_config.probe_timeout}")

        self.run_config = run_config
        self.url = run_config.url
        self.result_queue = result_queue
        self._probe = probe
        self._stop_event = stop_event if stop_event is not None else asyncio.Event()

        self.requests_issued = 0
        self.in_flight = 0
        self.peak_in_flight = 0
        self._tasks: Set[asyncio.Task] = set()

    @property
    def aborted(self) -> bool:
        return self._stop_event.is_set()

    def abort(self):
        """Stop issuing and cut short every outstanding probe."""
        if not self._stop_event.is_set():
            logger.warning(f"Aborting run with {self.in_flight} probe(s) in flight.")
            self._stop_event.set()

    def pending(self) -> bool:
        return self.in_flight > 0

    def start(self):
        initial = min(self.run_config.concurrency, self.run_config.repetitions)
        logger.info(f"Dispatching {initial} initial probe(s) against {self.url} "
                    f"(concurrency={self.run_config.concurrency}, repetitions={self.run_config.repetitions})")
        for _ in range(initial):
            self._issue()

    def on_measurement_consumed(self):
        self.in_flight -= 1
        if self.requests_issued < self.run_config.repetitions and not self.aborted:
            self._issue()

    def _issue(self):
        self.requests_issued += 1
        self.in_flight += 1
        self.peak_in_flight = max(self.peak_in_flight, self.in_flight)
        task = asyncio.create_task(self._run_probe(), name=f"probe-{self.requests_issued}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run_probe(self):
        started = time.perf_counter_ns()
        try:
            status, size = await self._probe_with_deadline()
        except Exception as e:
            logger.error(f"Probe raised instead of reporting a failure: {e}", exc_info=True)
            status, size = FAILURE_STATUS_CODE, 0
        measurement = Measurement(status, size, time.perf_counter_ns() - started)
        await self.result_queue.put(measurement)

    async def _probe_with_deadline(self) -> Tuple[int, int]:
        probe_task = asyncio.ensure_future(self._probe(self.url))
        stop_task = asyncio.ensure_future(self._stop_event.wait())
        try:
            done, _ = await asyncio.wait({probe_task, stop_task},
                                         timeout=self.run_config.probe_timeout,
                                         return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            probe_task.cancel()
            raise
        finally:
            stop_task.cancel()

        if probe_task in done:
            return probe_task.result()

        if stop_task in done:
            logger.debug(f"Probe against {self.url} cancelled by stop signal.")
        else:
            logger.warning(f"Probe against {self.url} exceeded {self.run_config.probe_timeout}s deadline.")
        probe_task.cancel()
        try:
            await probe_task
        except asyncio.CancelledError:
            pass
        return FAILURE_STATUS_CODE, 0

    async def shutdown(self):
        if self.pending():
            self.abort()
        tasks = list(self._tasks)
        for task in tasks:
            if not task.done():
                task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
