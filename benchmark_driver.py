import asyncio
import logging
from typing import Optional

from config import RunConfig
from dispatcher import Dispatcher
from metrics import BenchmarkRun
from probe import ProbeFunc

logger = logging.getLogger(__name__)


async def run_benchmark(run_config: RunConfig, probe: ProbeFunc,
                        stop_event: Optional[asyncio.Event] = None) -> BenchmarkRun:
    """Drive one run to completion and return the stopped ``BenchmarkRun``.

    The calling task is the only consumer of the result queue and the only
    writer of the returned run.
    """
    result_queue: asyncio.Queue = asyncio.Queue(maxsize=run_config.concurrency)
    dispatcher = Dispatcher(run_config, result_queue, probe, stop_event=stop_event)

    run = BenchmarkRun(run_config.repetitions)
    run.claim(asyncio.current_task())

    dispatcher.start()
    run.requests_issued = dispatcher.requests_issued
    try:
        while dispatcher.pending():
            measurement = await result_queue.get()
            run.record_measurement(measurement)
            dispatcher.on_measurement_consumed()
            run.requests_issued = dispatcher.requests_issued
    finally:
        await dispatcher.shutdown()

    run.stop()
    if dispatcher.aborted:
        logger.warning(f"Run aborted after {run.request_count()}/{run_config.repetitions} requests.")
    logger.info(f"Run finished: {run.successful_requests} succeeded, {run.failed_requests} failed, "
                f"peak in flight {dispatcher.peak_in_flight}.")
    return run
