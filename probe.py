import asyncio
import logging
from typing import Optional, Tuple, Iterable, Awaitable, Callable

import aiohttp

from config import FAILURE_STATUS_CODE

logger = logging.getLogger(__name__)

# A probe takes a URL and resolves to (status_code, reply_size). It must not raise.
ProbeFunc = Callable[[str], Awaitable[Tuple[int, int]]]


def header_bytes(headers) -> int:
    """Sum of len(name) + len(value) over every header entry, one entry per value."""
    items: Iterable = headers.items() if hasattr(headers, "items") else headers
    return sum(len(name) + len(value) for name, value in items)


class HttpProbe:
    """Fetches a URL with GET and reports the status code and reply size.

    Use as an async context manager so the underlying ``aiohttp.ClientSession``
    is opened once per run and closed afterwards. No total timeout is set on
    the session; the dispatcher bounds each call.
    """

    def __init__(self, concurrency: int, session: Optional[aiohttp.ClientSession] = None):
        self.concurrency = concurrency
        self._session = session
        self._owns_session = session is None

    async def __aenter__(self) -> "HttpProbe":
        if self._session is None:
            connector = aiohttp.TCPConnector(limit=self.concurrency)
            timeout = aiohttp.ClientTimeout(total=None)
            self._session = aiohttp.ClientSession(connector=connector, timeout=timeout)
        return self

    async def __aexit__(self, exc_type, exc, tb):
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None

    async def __call__(self, url: str) -> Tuple[int, int]:
        if self._session is None:
            raise RuntimeError("HttpProbe must be entered before use")
        try:
            async with self._session.get(url) as resp:
                size = header_bytes(resp.headers)
                try:
                    body = await resp.read()
                except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
                    logger.warning(f"Failed to read body from {url}: {e}")
                    return resp.status, size
                return resp.status, size + len(body)
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
            logger.warning(f"Failed to fetch {url}: {type(e).__name__}: {e}")
            return FAILURE_STATUS_CODE, 0
        except Exception as e:
            logger.error(f"Unexpected error fetching {url}: {e}", exc_info=True)
            return FAILURE_STATUS_CODE, 0
