from __future__ import annotations
import os
import random
from dataclasses import dataclass, asdict
from typing import Dict, Optional, Tuple

DATA_DIR = os.getenv("LINKAUDITOR_DATA", os.path.abspath("./data"))

DEFAULT_USER_AGENT = "LinkAuditor/0.1 (+https://github.com/linkauditor/linkauditor)"

# Pages whose visible body text is shorter than this are flagged empty
EMPTY_PAGE_THRESHOLD = 100

MAX_SITEMAP_DEPTH = 3
SITEMAP_FALLBACK_PATHS = ("/sitemap.xml", "/sitemap_index.xml")
ROBOTS_TIMEOUT = float(os.getenv("LINKAUDITOR_ROBOTS_TIMEOUT", "10"))
SITEMAP_TIMEOUT = float(os.getenv("LINKAUDITOR_SITEMAP_TIMEOUT", "30"))

HTTP_BACKENDS = ("aiohttp", "httpx")


def _env_optional_int(name: str, default: str) -> Optional[int]:
    """Read an integer env var where an empty value or 'none' means no limit."""
    value = os.getenv(name, default).strip().lower()
    if value in ("", "none"):
        return None
    return int(value)


@dataclass(frozen=True)
class CrawlConfig:
    """Immutable input of one crawl session.

    ``max_depth`` of None means unlimited depth and 0 means "seed only".
    ``max_pages`` of None (or 0) means no page limit.
    """
    start_url: Optional[str] = None
    manual_pages: Tuple[str, ...] = ()
    max_depth: Optional[int] = _env_optional_int("LINKAUDITOR_MAX_DEPTH", "10")
    max_pages: Optional[int] = _env_optional_int("LINKAUDITOR_MAX_PAGES", "1000")
    concurrency: int = int(os.getenv("LINKAUDITOR_CONCURRENCY", "5"))
    timeout: float = float(os.getenv("LINKAUDITOR_TIMEOUT", "10"))  # seconds
    respect_robots_txt: bool = os.getenv("LINKAUDITOR_RESPECT_ROBOTS", "1") == "1"
    user_agent: str = os.getenv("LINKAUDITOR_UA", DEFAULT_USER_AGENT)
    discover_sitemaps: bool = os.getenv("LINKAUDITOR_DISCOVER_SITEMAPS", "1") == "1"
    http_backend: str = os.getenv("LINKAUDITOR_HTTP_BACKEND", "aiohttp")
    store_content: bool = os.getenv("LINKAUDITOR_STORE_CONTENT", "0") == "1"

    def __post_init__(self):
        start_url = (self.start_url or "").strip() or None
        manual_pages = tuple(p.strip() for p in (self.manual_pages or ()) if p and p.strip())
        max_pages = self.max_pages if self.max_pages and self.max_pages > 0 else None
        max_depth = self.max_depth if self.max_depth is None or self.max_depth >= 0 else None
        # frozen dataclass, so normalise through object.__setattr__
        object.__setattr__(self, "start_url", start_url)
        object.__setattr__(self, "manual_pages", manual_pages)
        object.__setattr__(self, "max_pages", max_pages)
        object.__setattr__(self, "max_depth", max_depth)
        object.__setattr__(self, "concurrency", max(1, int(self.concurrency or 1)))
        object.__setattr__(self, "http_backend", (self.http_backend or "aiohttp").lower())
        object.__setattr__(self, "user_agent", self.user_agent or DEFAULT_USER_AGENT)

    @property
    def seeds(self) -> Tuple[str, ...]:
        """Explicit seeds in dispatch order: start URL first, then manual pages."""
        if self.start_url:
            return (self.start_url,) + self.manual_pages
        return self.manual_pages

    @property
    def robots_token(self) -> str:
        """Product token matched against ``User-agent:`` lines in robots.txt."""
        token = self.user_agent.split("/", 1)[0].strip().lower()
        return token or "*"

    def to_dict(self) -> Dict:
        data = asdict(self)
        data["manual_pages"] = list(self.manual_pages)
        return data


def get_store_path(name: str = "crawls.db") -> str:
    """Path of the crawl result store inside the data directory."""
    os.makedirs(DATA_DIR, exist_ok=True)
    return os.path.join(DATA_DIR, name)


# User agent strings for different scenarios
USER_AGENTS = {
    "default": DEFAULT_USER_AGENT,
    "chrome": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "firefox": "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:121.0) Gecko/20100101 Firefox/121.0",
    "safari": "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.1 Safari/605.1.15",
    "edge": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36 Edg/120.0.0.0",
    "mobile": "Mozilla/5.0 (iPhone; CPU iPhone OS 17_1 like Mac OS X) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.1 Mobile/15E148 Safari/604.1"
}


def get_user_agent(ua_type: str = "default") -> str:
    """Get a user agent string by type or return a random one if 'random' is specified."""
    if ua_type == "random":
        return random.choice(list(USER_AGENTS.values()))
    return USER_AGENTS.get(ua_type, USER_AGENTS["default"])
