import asyncio
import pytest
import os
import sys
from typing import Dict, List, Optional, Tuple

# Add src to python path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from src.linkauditor.config import CrawlConfig
from src.linkauditor.models import PageRecord
from src.linkauditor.robots import DiscoveryResult, RobotsDirectives


class FakeSite:
    """In-memory site: url -> (status, internal links). Unknown URLs are 404s."""

    def __init__(self, pages: Dict[str, Tuple[int, List[str]]], delay: float = 0.0, errors: Optional[Dict[str, Exception]] = None):
        self.pages = pages
        self.delay = delay
        self.errors = errors or {}
        self.fetched: List[str] = []
        self.start_times: List[float] = []
        self.active = 0
        self.max_active = 0

    def fetcher_factory(self, config):
        return FakeFetcher(self)


class FakeFetcher:
    def __init__(self, site: FakeSite):
        self.site = site

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        pass

    async def fetch(self, url, in_sitemap=False):
        site = self.site
        site.fetched.append(url)
        site.start_times.append(asyncio.get_running_loop().time())
        site.active += 1
        site.max_active = max(site.max_active, site.active)
        try:
            await asyncio.sleep(site.delay)
        finally:
            site.active -= 1
        if url in site.errors:
            raise site.errors[url]
        status, links = site.pages.get(url, (404, []))
        return PageRecord(url=url, status=status, internal_links=tuple(links),
                          duration=site.delay, in_sitemap=in_sitemap)


class FakeDiscoverer:
    """Discoverer factory returning fixed robots directives and sitemap URLs."""

    def __init__(self, robots: Optional[RobotsDirectives] = None, sitemap_urls=()):
        self.robots = robots
        self.sitemap_urls = list(sitemap_urls)
        self.seeds: List[str] = []

    def __call__(self, config, verbose=False):
        return self

    async def discover(self, seed_url):
        self.seeds.append(seed_url)
        return DiscoveryResult(robots=self.robots, sitemap_urls=list(self.sitemap_urls))


@pytest.fixture
def crawl_config():
    return CrawlConfig(
        start_url="https://example.com/",
        max_depth=None,
        max_pages=None,
        concurrency=3,
        timeout=5,
        user_agent="TestBot/1.0",
    )


@pytest.fixture
def fake_site():
    return FakeSite


@pytest.fixture
def fake_discoverer():
    return FakeDiscoverer
