from typing import List

from config import KILOBYTE
from metrics import BenchmarkRun, NoSuccessfulRequestsError

UNDEFINED = "n/a"

_UNITS = (
    (1_000_000, "ms"),
    (1_000, "µs"),
    (1, "ns"),
)


def _trim_fraction(whole: int, fraction: int, digits: int) -> str:
    if fraction == 0:
        return str(whole)
    return f"{whole}.{fraction:0{digits}d}".rstrip("0")


def format_duration(ns: int) -> str:
    """Render nanoseconds the way Go's time.Duration prints itself.

    Below one second the largest fitting unit is used (ns, µs, ms) with a
    trimmed fraction; from one second up the form is e.g. ``1h2m3.5s``.
    """
    if ns == 0:
        return "0s"
    sign = "-" if ns < 0 else ""
    ns = abs(ns)

    if ns < 1_000_000_000:
        for scale, unit in _UNITS:
            if ns >= scale:
                whole, fraction = divmod(ns, scale)
                digits = len(str(scale)) - 1
                return f"{sign}{_trim_fraction(whole, fraction, digits)}{unit}"

    seconds, fraction = divmod(ns, 1_000_000_000)
    minutes, seconds = divmod(seconds, 60)
    hours, minutes = divmod(minutes, 60)
    text = f"{_trim_fraction(seconds, fraction, 9)}s"
    if hours:
        text = f"{hours}h{minutes}m{text}"
    elif minutes:
        text = f"{minutes}m{text}"
    return sign + text


def report_lines(run: BenchmarkRun) -> List[str]:
    lines = [
        f"Successful requests: {run.successful_requests}",
        f"Failed requests: {run.failed_requests}",
        f"Transferred kilobytes: {run.transferred_bytes // KILOBYTE}",
        f"Kilobytes per second: {run.kilobytes_per_second()}",
        f"Elapsed wall-clock time: {format_duration(run.elapsed_ns())}",
    ]
    latency_stats = [
        ("Slowest request", run.slowest_ns),
        ("Median request", run.median_ns),
        ("Fastest request", run.fastest_ns),
        ("Average request", run.average_ns),
        ("Standard deviation", run.standard_deviation_ns),
    ]
    for label, stat in latency_stats:
        try:
            value = format_duration(stat())
        except NoSuccessfulRequestsError:
            value = UNDEFINED
        lines.append(f"{label}: {value}")
    return lines


def print_report(run: BenchmarkRun):
    for line in report_lines(run):
        print(line)
