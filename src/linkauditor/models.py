"""
Records and snapshots produced by a crawl session.
"""
from __future__ import annotations
import base64
import time
import zlib
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple
from .config import EMPTY_PAGE_THRESHOLD
from .parse import parse_page
from .robots import RobotsDirectives

HTML_CONTENT_TYPES = ("text/html", "application/xhtml+xml")


def compress_content(html: str) -> bytes:
    """Compress HTML using zlib with maximum compression level."""
    return zlib.compress(html.encode("utf-8"), level=9)


def decompress_content(blob: Optional[bytes]) -> str:
    if not blob:
        return ""
    try:
        return zlib.decompress(blob).decode("utf-8")
    except (zlib.error, UnicodeDecodeError):
        return ""


def is_html_content_type(content_type: Optional[str]) -> bool:
    # servers that send no content type are treated as HTML
    ct = (content_type or "").split(";", 1)[0].strip().lower()
    return not ct or ct in HTML_CONTENT_TYPES


class CrawlStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (CrawlStatus.COMPLETED, CrawlStatus.FAILED, CrawlStatus.CANCELLED)


@dataclass(frozen=True)
class PageRecord:
    """Outcome of fetching one URL. Status 0 means the request never got a response."""
    url: str
    status: int
    title: str = ""
    description: str = ""
    content_length: int = 0
    is_empty: bool = False
    duration: float = 0.0  # seconds
    internal_links: Tuple[str, ...] = ()
    external_links: Tuple[str, ...] = ()
    in_sitemap: bool = False
    error_message: Optional[str] = None
    content: Optional[bytes] = None  # zlib-compressed body

    @classmethod
    def from_response(cls, url: str, status: int, body: str, content_type: Optional[str],
                      duration: float, in_sitemap: bool = False, store_content: bool = False,
                      final_url: Optional[str] = None) -> "PageRecord":
        """Build a record from a response; links resolve against the post-redirect URL."""
        body = body or ""
        content = compress_content(body) if store_content and body else None
        if not is_html_content_type(content_type):
            return cls(url=url, status=status, content_length=len(body), duration=duration,
                       in_sitemap=in_sitemap, content=content)
        parsed = parse_page(body, final_url or url)
        return cls(
            url=url,
            status=status,
            title=parsed.title,
            description=parsed.description,
            content_length=len(body),
            is_empty=parsed.text_length < EMPTY_PAGE_THRESHOLD,
            duration=duration,
            internal_links=tuple(parsed.internal_links),
            external_links=tuple(parsed.external_links),
            in_sitemap=in_sitemap,
            content=content,
        )

    @classmethod
    def failed(cls, url: str, error_message: str, duration: float = 0.0, in_sitemap: bool = False) -> "PageRecord":
        return cls(url=url, status=0, is_empty=True, duration=duration,
                   in_sitemap=in_sitemap, error_message=error_message)

    @property
    def is_success(self) -> bool:
        return 0 < self.status < 400

    @property
    def is_error(self) -> bool:
        return self.status == 0 or self.status >= 400

    def to_dict(self) -> Dict[str, Any]:
        return {
            "url": self.url,
            "status": self.status,
            "title": self.title,
            "description": self.description,
            "content_length": self.content_length,
            "is_empty": self.is_empty,
            "duration": self.duration,
            "internal_links": list(self.internal_links),
            "external_links": list(self.external_links),
            "in_sitemap": self.in_sitemap,
            "error_message": self.error_message,
            "content": base64.b64encode(self.content).decode("ascii") if self.content else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PageRecord":
        content = data.get("content")
        return cls(
            url=data["url"],
            status=int(data.get("status", 0)),
            title=data.get("title") or "",
            description=data.get("description") or "",
            content_length=int(data.get("content_length", 0)),
            is_empty=bool(data.get("is_empty", False)),
            duration=float(data.get("duration", 0.0)),
            internal_links=tuple(data.get("internal_links") or ()),
            external_links=tuple(data.get("external_links") or ()),
            in_sitemap=bool(data.get("in_sitemap", False)),
            error_message=data.get("error_message"),
            content=base64.b64decode(content) if content else None,
        )


@dataclass
class CrawlStats:
    crawled_pages: int = 0
    total_pages: int = 0
    error_count: int = 0
    avg_response_time: float = 0.0  # seconds

    def record(self, duration: float, is_error: bool):
        # running mean, never recomputed from history
        self.crawled_pages += 1
        self.avg_response_time += (duration - self.avg_response_time) / self.crawled_pages
        if is_error:
            self.error_count += 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "crawled_pages": self.crawled_pages,
            "total_pages": self.total_pages,
            "error_count": self.error_count,
            "avg_response_time": self.avg_response_time,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CrawlStats":
        return cls(
            crawled_pages=int(data.get("crawled_pages", 0)),
            total_pages=int(data.get("total_pages", 0)),
            error_count=int(data.get("error_count", 0)),
            avg_response_time=float(data.get("avg_response_time", 0.0)),
        )


@dataclass(frozen=True)
class ProgressSnapshot:
    crawled_pages: int
    total_pages: int
    error_count: int
    avg_response_time: float
    progress: float  # percent
    eta: Optional[float]  # seconds, None until a page has completed
    current_page: Optional[str]
    queue_size: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "crawled_pages": self.crawled_pages,
            "total_pages": self.total_pages,
            "error_count": self.error_count,
            "avg_response_time": self.avg_response_time,
            "progress": self.progress,
            "eta": self.eta,
            "current_page": self.current_page,
            "queue_size": self.queue_size,
        }


@dataclass(frozen=True)
class StatusSnapshot:
    crawl_id: str
    status: CrawlStatus
    progress: ProgressSnapshot
    skipped_count: int
    in_flight: int
    sitemap_url_count: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "crawl_id": self.crawl_id,
            "status": self.status.value,
            "progress": self.progress.to_dict(),
            "skipped_count": self.skipped_count,
            "in_flight": self.in_flight,
            "sitemap_url_count": self.sitemap_url_count,
        }


@dataclass(frozen=True)
class LogEntry:
    url: str
    status: int
    success: bool
    duration: float
    error_message: Optional[str] = None
    timestamp: float = field(default_factory=time.time)

    @property
    def message(self) -> str:
        if self.error_message:
            return f"[{self.status}] {self.url} - {self.error_message}"
        return f"[{self.status}] {self.url} ({self.duration:.2f}s)"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "url": self.url,
            "status": self.status,
            "success": self.success,
            "duration": self.duration,
            "error_message": self.error_message,
            "timestamp": self.timestamp,
            "message": self.message,
        }


@dataclass
class CrawlResult:
    """Final output of a crawl: every page record keyed by normalized URL."""
    crawl_id: str
    start_url: Optional[str]
    status: CrawlStatus
    pages: Dict[str, PageRecord] = field(default_factory=dict)
    skipped_count: int = 0
    sitemap_urls: List[str] = field(default_factory=list)
    robots: Optional[RobotsDirectives] = None
    stats: CrawlStats = field(default_factory=CrawlStats)
    started_at: float = 0.0
    finished_at: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "crawl_id": self.crawl_id,
            "start_url": self.start_url,
            "status": self.status.value,
            "pages": {key: page.to_dict() for key, page in self.pages.items()},
            "skipped_count": self.skipped_count,
            "sitemap_urls": list(self.sitemap_urls),
            "robots": self.robots.to_dict() if self.robots else None,
            "stats": self.stats.to_dict(),
            "started_at": self.started_at,
            "finished_at": self.finished_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CrawlResult":
        robots = data.get("robots")
        return cls(
            crawl_id=data["crawl_id"],
            start_url=data.get("start_url"),
            status=CrawlStatus(data.get("status", CrawlStatus.COMPLETED.value)),
            pages={key: PageRecord.from_dict(page) for key, page in (data.get("pages") or {}).items()},
            skipped_count=int(data.get("skipped_count", 0)),
            sitemap_urls=list(data.get("sitemap_urls") or []),
            robots=RobotsDirectives.from_dict(robots) if robots else None,
            stats=CrawlStats.from_dict(data.get("stats") or {}),
            started_at=float(data.get("started_at") or 0.0),
            finished_at=data.get("finished_at"),
        )
