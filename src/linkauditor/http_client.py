"""
HTTP/2 page fetcher built on httpx, with Brotli-encoded responses decoded transparently.
"""
from __future__ import annotations
import time
from typing import Optional
import httpx
from .config import CrawlConfig
from .fetch import TIMEOUT_MESSAGE, blocked_message, network_message, request_headers
from .models import PageRecord


class HttpxPageFetcher:
    """Drop-in alternative to the aiohttp PageFetcher that negotiates HTTP/2."""

    def __init__(self, config: CrawlConfig):
        self.config = config
        self._client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self) -> "HttpxPageFetcher":
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    async def open(self):
        if self._client is None:
            self._client = httpx.AsyncClient(
                http2=True,
                timeout=httpx.Timeout(self.config.timeout),
                headers=request_headers(self.config),
                follow_redirects=True,
            )

    async def close(self):
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def fetch(self, url: str, in_sitemap: bool = False) -> PageRecord:
        await self.open()
        started = time.perf_counter()
        try:
            response = await self._client.get(url)
            # httpx has already undone gzip/deflate/br content encoding here
            body = response.content.decode(response.encoding or "utf-8", errors="ignore")
        except httpx.TimeoutException:
            return PageRecord.failed(url, TIMEOUT_MESSAGE, time.perf_counter() - started, in_sitemap)
        except httpx.ConnectError as e:
            return PageRecord.failed(url, blocked_message(e), time.perf_counter() - started, in_sitemap)
        except (httpx.HTTPError, httpx.InvalidURL, LookupError) as e:
            return PageRecord.failed(url, network_message(e), time.perf_counter() - started, in_sitemap)

        return PageRecord.from_response(
            url, response.status_code, body, response.headers.get("content-type"),
            duration=time.perf_counter() - started,
            in_sitemap=in_sitemap,
            store_content=self.config.store_content,
            final_url=str(response.url),
        )
