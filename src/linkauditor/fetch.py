from __future__ import annotations
import asyncio
import time
from typing import Dict, Optional
import aiohttp
from .config import CrawlConfig
from .models import PageRecord

TIMEOUT_MESSAGE = "Request timeout"


def blocked_message(error: Exception) -> str:
    return f"Connection blocked - {error}"


def network_message(error: Exception) -> str:
    return f"Network error - {error}"


def request_headers(config: CrawlConfig) -> Dict[str, str]:
    return {
        "User-Agent": config.user_agent,
        "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
        "Accept-Encoding": "gzip, deflate, br",  # br = Brotli
    }


class PageFetcher:
    """Fetches single pages over one shared aiohttp session.

    ``fetch`` never raises for network trouble: timeouts, refused or blocked
    connections and other client errors come back as a PageRecord with
    status 0 and an error message.
    """

    def __init__(self, config: CrawlConfig):
        self.config = config
        self._session: Optional[aiohttp.ClientSession] = None

    async def __aenter__(self) -> "PageFetcher":
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    async def open(self):
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                headers=request_headers(self.config),
                timeout=aiohttp.ClientTimeout(total=self.config.timeout),
            )

    async def close(self):
        if self._session is not None:
            await self._session.close()
            self._session = None

    async def fetch(self, url: str, in_sitemap: bool = False) -> PageRecord:
        await self.open()
        started = time.perf_counter()
        try:
            async with self._session.get(url, allow_redirects=True) as resp:
                body = await resp.text(errors="ignore")
                status = resp.status
                content_type = resp.headers.get("Content-Type")
                final_url = str(resp.url)
        except asyncio.TimeoutError:
            return PageRecord.failed(url, TIMEOUT_MESSAGE, time.perf_counter() - started, in_sitemap)
        except aiohttp.ClientConnectorError as e:
            return PageRecord.failed(url, blocked_message(e), time.perf_counter() - started, in_sitemap)
        except (aiohttp.ClientError, OSError, ValueError) as e:
            return PageRecord.failed(url, network_message(e), time.perf_counter() - started, in_sitemap)

        return PageRecord.from_response(
            url, status, body, content_type,
            duration=time.perf_counter() - started,
            in_sitemap=in_sitemap,
            store_content=self.config.store_content,
            final_url=final_url,
        )


def create_fetcher(config: CrawlConfig):
    """Pick the HTTP backend named by ``config.http_backend``."""
    if config.http_backend == "httpx":
        from .http_client import HttpxPageFetcher
        return HttpxPageFetcher(config)
    return PageFetcher(config)
