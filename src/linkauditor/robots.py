"""
Robots.txt parsing and sitemap discovery functionality.
"""
from __future__ import annotations
import re
from collections import deque
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urljoin, urlsplit
import aiohttp
from .config import CrawlConfig, MAX_SITEMAP_DEPTH, ROBOTS_TIMEOUT, SITEMAP_TIMEOUT, SITEMAP_FALLBACK_PATHS
from .parse import extract_sitemap_locs
from .urls import is_valid_url


@lru_cache(maxsize=1024)
def _compile_pattern(pattern: str):
    anchored = pattern.endswith("$")
    body = pattern[:-1] if anchored else pattern
    regex = ".*".join(re.escape(part) for part in body.split("*"))
    return re.compile("^" + regex + ("$" if anchored else ""))


def matches_pattern(path: str, pattern: str) -> bool:
    """Match a URL path against a robots.txt rule.

    Plain rules are prefix matches, ``*`` matches any run of characters and a
    trailing ``$`` anchors the rule to the end of the path.
    """
    if "*" in pattern:
        return _compile_pattern(pattern).match(path) is not None
    if pattern.endswith("$"):
        return path == pattern[:-1]
    return path.startswith(pattern)


@dataclass
class RobotsDirectives:
    user_agent: str = "*"
    allow: List[str] = field(default_factory=list)
    disallow: List[str] = field(default_factory=list)
    crawl_delay: Optional[float] = None
    sitemaps: List[str] = field(default_factory=list)
    host: Optional[str] = None

    def is_allowed(self, url_or_path: str) -> bool:
        """Allow rules are checked first and win; otherwise any disallow match blocks."""
        path = url_or_path
        if "://" in url_or_path:
            try:
                parts = urlsplit(url_or_path)
            except ValueError:
                return False
            path = parts.path or "/"
            if parts.query:
                path = f"{path}?{parts.query}"
        for pattern in self.allow:
            if matches_pattern(path, pattern):
                return True
        for pattern in self.disallow:
            if matches_pattern(path, pattern):
                return False
        return True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_agent": self.user_agent,
            "allow": list(self.allow),
            "disallow": list(self.disallow),
            "crawl_delay": self.crawl_delay,
            "sitemaps": list(self.sitemaps),
            "host": self.host,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RobotsDirectives":
        return cls(
            user_agent=data.get("user_agent") or "*",
            allow=list(data.get("allow") or []),
            disallow=list(data.get("disallow") or []),
            crawl_delay=data.get("crawl_delay"),
            sitemaps=list(data.get("sitemaps") or []),
            host=data.get("host"),
        )


def parse_robots_txt(content: str, token: str = "*", verbose: bool = False) -> RobotsDirectives:
    """Parse robots.txt content into the directives that apply to ``token``.

    Rules are collected from every group whose User-agent is ``*`` or contains
    the token. Consecutive User-agent lines form one group. Rules appearing
    before any User-agent line apply to everyone.
    """
    result = RobotsDirectives()
    token = (token or "*").lower()
    relevant = True
    in_agent_lines = False

    for line in (content or "").splitlines():
        # strip comments
        line = line.split("#", 1)[0].strip()
        if not line or ":" not in line:
            continue
        key, value = line.split(":", 1)
        key = key.strip().lower()
        value = value.strip()

        if key == "user-agent":
            agent = value.lower()
            matches = agent == "*" or (token != "*" and token in agent)
            if token != "*" and token in agent:
                result.user_agent = token
            relevant = (relevant and in_agent_lines) or matches
            in_agent_lines = True
            continue
        in_agent_lines = False

        if key == "sitemap":
            if is_valid_url(value):
                result.sitemaps.append(value)
        elif key == "host":
            result.host = value
        elif not relevant:
            continue
        elif key == "disallow" and value:
            result.disallow.append(value)
        elif key == "allow" and value:
            result.allow.append(value)
        elif key == "crawl-delay":
            try:
                result.crawl_delay = float(value)
            except ValueError:
                if verbose:
                    print(f"[robots.txt] Invalid crawl-delay value '{value}'")
    return result


def looks_like_sitemap(url: str) -> bool:
    lowered = url.lower()
    return lowered.endswith(".xml") or "sitemap" in lowered


@dataclass
class DiscoveryResult:
    robots: Optional[RobotsDirectives] = None
    sitemap_urls: List[str] = field(default_factory=list)


class SiteDiscoverer:
    """Fetches robots.txt and resolves the site's sitemap tree into a flat URL list.

    Every failure here is non-fatal: a missing robots.txt means no constraints
    and a broken sitemap only shrinks the discovered set.
    """

    def __init__(self, config: CrawlConfig, verbose: bool = False):
        self.config = config
        self.verbose = verbose

    def _log(self, message: str):
        if self.verbose:
            print(message)

    async def _fetch_text(self, session: aiohttp.ClientSession, url: str, timeout: float, prefix: str) -> Optional[str]:
        try:
            async with session.get(url, timeout=aiohttp.ClientTimeout(total=timeout)) as response:
                if 200 <= response.status < 300:
                    return await response.text(errors="ignore")
                if response.status >= 500:
                    self._log(f"{prefix} Server error {response.status} for {url}")
                else:
                    self._log(f"{prefix} HTTP {response.status} for {url}")
                return None
        except Exception as e:
            self._log(f"{prefix} Error fetching {url}: {e}")
            return None

    async def fetch_robots(self, session: aiohttp.ClientSession, origin: str) -> Optional[RobotsDirectives]:
        robots_url = urljoin(origin, "/robots.txt")
        content = await self._fetch_text(session, robots_url, ROBOTS_TIMEOUT, "[robots.txt]")
        if content is None:
            return None
        robots = parse_robots_txt(content, self.config.robots_token, self.verbose)
        self._log(f"[robots.txt] {len(robots.disallow)} disallow, {len(robots.allow)} allow rules, "
                  f"crawl-delay={robots.crawl_delay}, {len(robots.sitemaps)} sitemaps")
        return robots

    async def collect_sitemap_urls(self, session: aiohttp.ClientSession, sitemap_urls: List[str],
                                   seen_sitemaps: Optional[set] = None) -> List[str]:
        """Breadth-first walk of sitemap documents, bounded by MAX_SITEMAP_DEPTH."""
        seen_sitemaps = set() if seen_sitemaps is None else seen_sitemaps
        pending = deque((url, 0) for url in sitemap_urls)
        found: Dict[str, None] = {}

        while pending:
            sitemap_url, depth = pending.popleft()
            if depth > MAX_SITEMAP_DEPTH:
                self._log(f"[sitemap] Depth limit reached, skipping {sitemap_url}")
                continue
            if sitemap_url in seen_sitemaps:
                continue
            seen_sitemaps.add(sitemap_url)

            self._log(f"[sitemap] Processing: {sitemap_url}")
            text = await self._fetch_text(session, sitemap_url, SITEMAP_TIMEOUT, "[sitemap]")
            if text is None:
                continue
            kind, locs = extract_sitemap_locs(text)
            nested = 0
            for loc in locs:
                if kind == "sitemap_index" or looks_like_sitemap(loc):
                    pending.append((loc, depth + 1))
                    nested += 1
                else:
                    found.setdefault(loc, None)
            if nested:
                self._log(f"[sitemap] Found {nested} nested sitemaps")
            self._log(f"[sitemap] Total URLs discovered so far: {len(found)}")
        return list(found)

    async def discover(self, seed_url: str) -> DiscoveryResult:
        result = DiscoveryResult()
        try:
            parts = urlsplit(seed_url)
            origin = f"{parts.scheme}://{parts.netloc}"
        except ValueError:
            return result

        headers = {"User-Agent": self.config.user_agent}
        try:
            async with aiohttp.ClientSession(headers=headers) as session:
                result.robots = await self.fetch_robots(session, origin)
                if not self.config.discover_sitemaps:
                    return result

                seen_sitemaps: set = set()
                if result.robots and result.robots.sitemaps:
                    result.sitemap_urls = await self.collect_sitemap_urls(session, result.robots.sitemaps, seen_sitemaps)
                if not result.sitemap_urls:
                    for path in SITEMAP_FALLBACK_PATHS:
                        result.sitemap_urls = await self.collect_sitemap_urls(
                            session, [urljoin(origin, path)], seen_sitemaps)
                        if result.sitemap_urls:
                            break
        except Exception as e:
            self._log(f"[sitemap] Discovery failed for {origin}: {e}")
        self._log(f"[sitemap] {len(result.sitemap_urls)} URLs discovered for {origin}")
        return result
