import asyncio
import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer
from src.linkauditor.config import CrawlConfig
from src.linkauditor.fetch import PageFetcher, create_fetcher, TIMEOUT_MESSAGE
from src.linkauditor.http_client import HttpxPageFetcher
from src.linkauditor.models import decompress_content

HOME = """<html><head><title>Home</title></head>
<body><p>{text}</p><a href="/about">About</a><a href="https://elsewhere.org/">Out</a></body></html>
""".format(text="Plenty of visible words on this page. " * 5)


async def home(request):
    return web.Response(text=HOME, content_type="text/html")


async def slow(request):
    await asyncio.sleep(2)
    return web.Response(text="late", content_type="text/html")


async def plain(request):
    return web.Response(text="just text", content_type="text/plain")


async def moved(request):
    raise web.HTTPFound("/docs/")


async def docs(request):
    return web.Response(text='<html><body><a href="intro">Intro</a></body></html>', content_type="text/html")


def make_app():
    app = web.Application()
    app.router.add_get("/", home)
    app.router.add_get("/slow", slow)
    app.router.add_get("/plain.txt", plain)
    app.router.add_get("/docs", moved)
    app.router.add_get("/docs/", docs)
    return app


async def start_server():
    server = TestServer(make_app())
    await server.start_server()
    return server


class TestPageFetcher:
    @pytest.mark.asyncio
    async def test_html_page(self):
        server = await start_server()
        try:
            base = str(server.make_url("/"))
            async with PageFetcher(CrawlConfig(timeout=5)) as fetcher:
                record = await fetcher.fetch(base, in_sitemap=True)
        finally:
            await server.close()

        assert record.status == 200
        assert record.title == "Home"
        assert record.is_empty is False
        assert record.in_sitemap is True
        assert record.internal_links == (base.rstrip("/") + "/about",)
        assert record.external_links == ("https://elsewhere.org/",)
        assert record.duration > 0
        assert record.content is None

    @pytest.mark.asyncio
    async def test_not_found(self):
        server = await start_server()
        try:
            async with PageFetcher(CrawlConfig(timeout=5)) as fetcher:
                record = await fetcher.fetch(str(server.make_url("/missing")))
        finally:
            await server.close()

        assert record.status == 404
        assert record.is_error is True
        assert record.error_message is None

    @pytest.mark.asyncio
    async def test_timeout(self):
        server = await start_server()
        try:
            async with PageFetcher(CrawlConfig(timeout=0.2)) as fetcher:
                record = await fetcher.fetch(str(server.make_url("/slow")))
        finally:
            await server.close()

        assert record.status == 0
        assert record.error_message == TIMEOUT_MESSAGE
        assert record.is_empty is True

    @pytest.mark.asyncio
    async def test_refused_connection(self):
        async with PageFetcher(CrawlConfig(timeout=2)) as fetcher:
            record = await fetcher.fetch("http://127.0.0.1:9/")
        assert record.status == 0
        assert record.error_message.startswith("Connection blocked")

    @pytest.mark.asyncio
    async def test_non_html_has_no_links(self):
        server = await start_server()
        try:
            async with PageFetcher(CrawlConfig(timeout=5)) as fetcher:
                record = await fetcher.fetch(str(server.make_url("/plain.txt")))
        finally:
            await server.close()

        assert record.status == 200
        assert record.internal_links == ()
        assert record.is_empty is False

    @pytest.mark.asyncio
    async def test_links_resolve_against_redirect_target(self):
        server = await start_server()
        try:
            async with PageFetcher(CrawlConfig(timeout=5)) as fetcher:
                record = await fetcher.fetch(str(server.make_url("/docs")))
            expected = str(server.make_url("/docs/intro"))
        finally:
            await server.close()

        assert record.status == 200
        assert record.internal_links == (expected,)

    @pytest.mark.asyncio
    async def test_store_content(self):
        server = await start_server()
        try:
            async with PageFetcher(CrawlConfig(timeout=5, store_content=True)) as fetcher:
                record = await fetcher.fetch(str(server.make_url("/")))
        finally:
            await server.close()

        assert decompress_content(record.content) == HOME


class TestHttpxPageFetcher:
    @pytest.mark.asyncio
    async def test_html_page(self):
        server = await start_server()
        try:
            base = str(server.make_url("/"))
            async with HttpxPageFetcher(CrawlConfig(timeout=5)) as fetcher:
                record = await fetcher.fetch(base)
        finally:
            await server.close()

        assert record.status == 200
        assert record.title == "Home"
        assert record.internal_links == (base.rstrip("/") + "/about",)

    @pytest.mark.asyncio
    async def test_refused_connection(self):
        async with HttpxPageFetcher(CrawlConfig(timeout=2)) as fetcher:
            record = await fetcher.fetch("http://127.0.0.1:9/")
        assert record.status == 0
        assert record.error_message.startswith("Connection blocked")


class TestCreateFetcher:
    def test_backend_selection(self):
        assert isinstance(create_fetcher(CrawlConfig()), PageFetcher)
        assert isinstance(create_fetcher(CrawlConfig(http_backend="httpx")), HttpxPageFetcher)
        assert isinstance(create_fetcher(CrawlConfig(http_backend="HTTPX")), HttpxPageFetcher)
