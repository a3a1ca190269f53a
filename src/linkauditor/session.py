"""
CrawlSession: all mutable state of one crawl, owned by a single scheduling task.
"""
from __future__ import annotations
import time
import uuid
from collections import deque
from typing import Deque, Dict, List, Optional, Set
from .config import CrawlConfig
from .errors import InvalidTransitionError
from .models import CrawlResult, CrawlStats, CrawlStatus, PageRecord
from .robots import RobotsDirectives
from .urls import normalize_url, is_same_domain, path_depth, is_asset_url

_TRANSITIONS = {
    CrawlStatus.PENDING: {CrawlStatus.RUNNING, CrawlStatus.FAILED, CrawlStatus.CANCELLED},
    CrawlStatus.RUNNING: {CrawlStatus.PAUSED, CrawlStatus.COMPLETED, CrawlStatus.FAILED, CrawlStatus.CANCELLED},
    CrawlStatus.PAUSED: {CrawlStatus.RUNNING, CrawlStatus.FAILED, CrawlStatus.CANCELLED},
}


class CrawlSession:
    """Frontier, visited/crawled key sets, results and running stats of one crawl.

    The frontier is a FIFO of raw URLs and may hold the same URL twice;
    membership decisions always go through the normalized key:

    - ``visited``: keys claimed for dispatch (in flight or finished)
    - ``crawled``: keys with a recorded PageRecord
    - ``discovered``: every key ever queued, which is what ``total_pages`` counts
    """

    def __init__(self, config: CrawlConfig, crawl_id: Optional[str] = None):
        self.id = crawl_id or uuid.uuid4().hex
        self.config = config
        self.status = CrawlStatus.PENDING
        self.queue: Deque[str] = deque()
        self.visited: Set[str] = set()
        self.crawled: Set[str] = set()
        self.discovered: Set[str] = set()
        self.results: Dict[str, PageRecord] = {}
        self.sitemap_urls: List[str] = []
        self.sitemap_keys: Set[str] = set()
        self.robots: Optional[RobotsDirectives] = None
        self.skipped_count = 0
        self.stats = CrawlStats()
        self.started_at = time.time()
        self.finished_at: Optional[float] = None

        self.base_url = config.start_url or (config.manual_pages[0] if config.manual_pages else None)
        self.base_depth = path_depth(self.base_url) if self.base_url else 0

    # ---- lifecycle ----

    def transition(self, target: CrawlStatus):
        if target not in _TRANSITIONS.get(self.status, set()):
            raise InvalidTransitionError(self.status, target)
        self.status = target
        if target.is_terminal:
            self.finished_at = time.time()

    @property
    def is_active(self) -> bool:
        return self.status in (CrawlStatus.RUNNING, CrawlStatus.PAUSED)

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    # ---- politeness ----

    @property
    def enforce_robots(self) -> bool:
        return self.config.respect_robots_txt and self.robots is not None

    @property
    def crawl_delay(self) -> Optional[float]:
        if self.enforce_robots and self.robots.crawl_delay and self.robots.crawl_delay > 0:
            return self.robots.crawl_delay
        return None

    @property
    def effective_concurrency(self) -> int:
        # any crawl-delay serializes fetches
        return 1 if self.crawl_delay else self.config.concurrency

    def page_limit_reached(self, in_flight: int = 0) -> bool:
        max_pages = self.config.max_pages
        return bool(max_pages) and self.stats.crawled_pages + in_flight >= max_pages

    # ---- frontier ----

    def should_crawl(self, url: str) -> bool:
        """Same host as the base URL, within max depth, not an asset, robots-permitted."""
        if self.base_url is None or not is_same_domain(url, self.base_url):
            return False
        if is_asset_url(url):
            return False
        max_depth = self.config.max_depth
        if max_depth is not None and path_depth(url) - self.base_depth > max_depth:
            return False
        if self.enforce_robots and not self.robots.is_allowed(url):
            return False
        return True

    def enqueue(self, url: str) -> bool:
        """Push a discovered link unless its key has already been claimed."""
        key = normalize_url(url)
        if key is None or key in self.visited or key in self.crawled:
            return False
        self.queue.append(url)
        if key not in self.discovered:
            self.discovered.add(key)
            self.stats.total_pages += 1
        return True

    def seed(self, url: str) -> bool:
        """Push a seed or sitemap URL, ignoring keys that were already queued once."""
        key = normalize_url(url)
        if key is None or key in self.discovered:
            return False
        return self.enqueue(url)

    def add_sitemap_urls(self, urls: List[str]):
        for url in urls:
            key = normalize_url(url)
            if key is None or key in self.sitemap_keys:
                continue
            self.sitemap_keys.add(key)
            self.sitemap_urls.append(url)

    def pop_next(self) -> Optional[str]:
        """Pop the next dispatchable URL, dropping entries whose key is already claimed.

        Entries already crawled count as skipped; entries merely in flight are
        dropped silently.
        """
        while self.queue:
            url = self.queue.popleft()
            key = normalize_url(url)
            if key is None:
                continue
            if key in self.crawled:
                self.skipped_count += 1
                continue
            if key in self.visited:
                continue
            return url
        return None

    def mark_visited(self, url: str) -> str:
        key = normalize_url(url)
        self.visited.add(key)
        return key

    def record(self, record: PageRecord) -> str:
        key = normalize_url(record.url)
        self.results[key] = record
        self.crawled.add(key)
        self.visited.add(key)
        self.stats.record(record.duration, record.is_error)
        return key

    def to_result(self) -> CrawlResult:
        return CrawlResult(
            crawl_id=self.id,
            start_url=self.config.start_url,
            status=self.status,
            pages=dict(self.results),
            skipped_count=self.skipped_count,
            sitemap_urls=list(self.sitemap_urls),
            robots=self.robots,
            stats=CrawlStats(**self.stats.to_dict()),
            started_at=self.started_at,
            finished_at=self.finished_at,
        )
