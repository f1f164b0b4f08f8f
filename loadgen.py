import argparse
import asyncio
import logging
import signal
import sys
from typing import List, Optional

import config
from benchmark_driver import run_benchmark
from metrics import BenchmarkRun
from probe import HttpProbe
from report import print_report

# Global logger setup for the application
logger = logging.getLogger()  # Get root logger

EXIT_OK = 0
EXIT_NO_SUCCESS = 1
EXIT_ABORTED = 130


def setup_logging(verbose: bool = False):
    logging.basicConfig(
        level=logging.DEBUG if verbose else config.LOG_LEVEL,
        format=config.LOG_FORMAT,
        handlers=[logging.StreamHandler(sys.stderr)],
    )


def _positive_int(value: str) -> int:
    number = int(value)
    if number < 1:
        raise argparse.ArgumentTypeError(f"must be at least 1, got {number}")
    return number


def _non_negative_int(value: str) -> int:
    number = int(value)
    if number < 0:
        raise argparse.ArgumentTypeError(f"must not be negative, got {number}")
    return number


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="loadgen",
        description="Fetch one URL repeatedly with a fixed number of requests in flight "
                    "and report throughput and latency statistics.")
    parser.add_argument("url", nargs="?", help="Target URL")
    parser.add_argument("-c", dest="concurrency", type=_positive_int, default=config.DEFAULT_CONCURRENCY,
                        help=f"Number of requests kept in flight (default: {config.DEFAULT_CONCURRENCY})")
    parser.add_argument("-r", dest="repetitions", type=_non_negative_int, default=config.DEFAULT_REPETITIONS,
                        help=f"Total number of requests to issue (default: {config.DEFAULT_REPETITIONS})")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    return parser


async def _run(run_config: config.RunConfig) -> BenchmarkRun:
    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, stop_event.set)
    except (NotImplementedError, RuntimeError):
        logger.debug("Signal handlers unsupported on this loop; Ctrl+C will not stop the run gracefully.")

    try:
        async with HttpProbe(concurrency=run_config.concurrency) as probe:
            return await run_benchmark(run_config, probe, stop_event=stop_event)
    finally:
        try:
            loop.remove_signal_handler(signal.SIGINT)
        except (NotImplementedError, RuntimeError):
            pass


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    # A missing URL is not an error: print usage and exit 0.
    if not args.url:
        parser.print_usage(sys.stdout)
        return EXIT_OK

    setup_logging(args.verbose)
    run_config = config.RunConfig(url=args.url, concurrency=args.concurrency, repetitions=args.repetitions)

    run = asyncio.run(_run(run_config))
    print_report(run)

    if run.request_count() < run_config.repetitions:
        return EXIT_ABORTED
    if run_config.repetitions and not run.has_latencies():
        logger.error("No successful requests; latency statistics are undefined.")
        return EXIT_NO_SUCCESS
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
