import pytest
import asyncio
import socket
import sys
import os
from unittest.mock import MagicMock

import aiohttp
from aiohttp import web
from aiohttp.test_utils import TestServer as AiohttpTestServer
from multidict import CIMultiDict

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from config import FAILURE_STATUS_CODE
from probe import HttpProbe, header_bytes

BODY = b"User-agent: *\nDisallow: /private\n"


def make_app():
    async def robots(request):
        return web.Response(body=BODY, headers={"X-Test": "yes"})

    async def missing(request):
        return web.Response(status=404, text="nope")

    async def redirect(request):
        raise web.HTTPFound("/robots.txt")

    app = web.Application()
    app.router.add_get("/robots.txt", robots)
    app.router.add_get("/missing", missing)
    app.router.add_get("/redirect", redirect)
    return app


async def with_server(coro_fn):
    server = AiohttpTestServer(make_app())
    await server.start_server()
    try:
        return await coro_fn(server)
    finally:
        await server.close()


def unused_port():
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


class FakeResponse:
    def __init__(self, status, headers, read_error=None, body=b""):
        self.status = status
        self.headers = headers
        self._read_error = read_error
        self._body = body

    async def read(self):
        if self._read_error:
            raise self._read_error
        return self._body

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False


class TestHeaderBytes:
    def test_sums_names_and_values(self):
        headers = CIMultiDict([("Content-Type", "text/plain"), ("Server", "x")])
        assert header_bytes(headers) == len("Content-Type") + len("text/plain") + len("Server") + 1

    def test_repeated_headers_count_each_value(self):
        headers = CIMultiDict([("Set-Cookie", "a=1"), ("Set-Cookie", "b=22")])
        assert header_bytes(headers) == 2 * len("Set-Cookie") + 3 + 4

    def test_accepts_pairs(self):
        assert header_bytes([("A", "bc")]) == 3

    def test_empty(self):
        assert header_bytes(CIMultiDict()) == 0


class TestHttpProbeAgainstServer:
    def test_successful_fetch_counts_headers_and_body(self):
        async def scenario(server):
            url = str(server.make_url("/robots.txt"))
            async with aiohttp.ClientSession() as session:
                async with session.get(url) as resp:
                    expected_headers = header_bytes(resp.headers)
            async with HttpProbe(concurrency=2) as probe:
                return await probe(url), expected_headers

        (status, size), expected_headers = asyncio.run(with_server(scenario))
        assert status == 200
        assert size == expected_headers + len(BODY)

    def test_non_success_status_is_reported_as_is(self):
        async def scenario(server):
            async with HttpProbe(concurrency=1) as probe:
                return await probe(str(server.make_url("/missing")))

        status, size = asyncio.run(with_server(scenario))
        assert status == 404
        assert size > len("nope")

    def test_redirects_are_followed(self):
        async def scenario(server):
            async with HttpProbe(concurrency=1) as probe:
                return await probe(str(server.make_url("/redirect")))

        status, _ = asyncio.run(with_server(scenario))
        assert status == 200

    def test_connection_refused(self):
        async def scenario():
            async with HttpProbe(concurrency=1) as probe:
                return await probe(f"http://127.0.0.1:{unused_port()}/")

        assert asyncio.run(scenario()) == (FAILURE_STATUS_CODE, 0)

    def test_invalid_url(self):
        async def scenario():
            async with HttpProbe(concurrency=1) as probe:
                return await probe("not a url")

        assert asyncio.run(scenario()) == (FAILURE_STATUS_CODE, 0)


class TestHttpProbeWithFakeSession:
    def test_unreadable_body_reports_header_bytes_only(self):
        headers = CIMultiDict([("Content-Length", "100")])
        session = MagicMock()
        session.get.return_value = FakeResponse(200, headers, read_error=aiohttp.ClientPayloadError("truncated"))

        async def scenario():
            async with HttpProbe(concurrency=1, session=session) as probe:
                return await probe("http://example.test/")

        assert asyncio.run(scenario()) == (200, len("Content-Length") + 3)
        session.close.assert_not_called()

    @pytest.mark.parametrize("read_error", [
        ConnectionResetError("peer reset"),
        asyncio.TimeoutError(),
    ])
    def test_body_read_failure_after_headers_keeps_status(self, read_error):
        session = MagicMock()
        session.get.return_value = FakeResponse(200, CIMultiDict([("A", "bc")]), read_error=read_error)

        async def scenario():
            async with HttpProbe(concurrency=1, session=session) as probe:
                return await probe("http://example.test/")

        assert asyncio.run(scenario()) == (200, 3)

    def test_concurrency_is_required(self):
        with pytest.raises(TypeError):
            HttpProbe()

    def test_unexpected_error_is_absorbed(self):
        session = MagicMock()
        session.get.side_effect = KeyError("surprise")

        async def scenario():
            async with HttpProbe(concurrency=1, session=session) as probe:
                return await probe("http://example.test/")

        assert asyncio.run(scenario()) == (FAILURE_STATUS_CODE, 0)

    def test_probe_requires_context(self):
        probe = HttpProbe(concurrency=1)
        with pytest.raises(RuntimeError):
            asyncio.run(probe("http://example.test/"))
