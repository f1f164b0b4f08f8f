import logging
from typing import NamedTuple

# General
LOG_LEVEL = logging.INFO  # DEBUG for more verbosity
LOG_FORMAT = '%(asctime)s - %(levelname)s - %(name)s - %(filename)s:%(lineno)d - %(message)s'

# Run defaults (overridable with -c / -r)
DEFAULT_CONCURRENCY = 5
DEFAULT_REPETITIONS = 300

# Probe Config
PROBE_TIMEOUT_SECONDS = 30.0   # Deadline for a single probe; not exposed on the CLI
FAILURE_STATUS_CODE = 500      # Synthetic status for probes that never got a response
SUCCESS_STATUS_MIN = 200
SUCCESS_STATUS_MAX = 299

# Report Config
KILOBYTE = 1024


class RunConfig(NamedTuple):
    url: str
    concurrency: int = DEFAULT_CONCURRENCY
    repetitions: int = DEFAULT_REPETITIONS
    probe_timeout: float = PROBE_TIMEOUT_SECONDS
