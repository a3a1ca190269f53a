"""
Audit reports derived from a finished crawl: orphaned pages, broken links,
empty pages and sitemap-only pages.

Everything here is a pure function of a CrawlResult. Links and sitemap
entries are matched by normalized URL, the same key the crawler uses for
deduplication.
"""
from __future__ import annotations
import csv
import io
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from .models import CrawlResult, PageRecord
from .robots import RobotsDirectives
from .urls import normalize_url


@dataclass(frozen=True)
class OrphanedPage:
    url: str
    status: int
    title: str = ""


@dataclass(frozen=True)
class BrokenLink:
    url: str
    status: int
    referenced_from: List[str]
    error_message: Optional[str] = None


@dataclass(frozen=True)
class LinkStats:
    total_pages: int
    pages_with_200_status: int
    pages_with_404_status: int
    total_internal_links: int
    total_external_links: int
    avg_links_per_page: float


@dataclass(frozen=True)
class ReportSummary:
    total_pages: int
    crawled_pages: int
    orphaned_count: int
    broken_link_count: int
    empty_page_count: int
    avg_response_time: float


@dataclass
class CrawlReport:
    id: str
    crawl_id: str
    generated_at: float
    target_url: Optional[str]
    summary: ReportSummary
    orphaned_pages: List[OrphanedPage]
    broken_links: List[BrokenLink]
    empty_pages: List[PageRecord]
    sitemap_only_pages: List[str]
    sitemap_urls: List[str]
    robots: Optional[RobotsDirectives]
    link_stats: LinkStats


def build_incoming_link_map(result: CrawlResult) -> Dict[str, List[str]]:
    """Map each normalized link target to the URLs of the pages linking to it.

    A page linking to itself does not count as an incoming link.
    """
    incoming: Dict[str, List[str]] = {}
    for source_key, page in result.pages.items():
        for link in page.internal_links:
            target = normalize_url(link)
            if target is None or target == source_key:
                continue
            referrers = incoming.setdefault(target, [])
            if page.url not in referrers:
                referrers.append(page.url)
    return incoming


def _sitemap_keys(result: CrawlResult) -> set:
    return {key for key in (normalize_url(url) for url in result.sitemap_urls) if key}


def detect_orphaned_pages(result: CrawlResult, incoming: Optional[Dict[str, List[str]]] = None) -> List[OrphanedPage]:
    """Crawled pages nothing links to that are not listed in the sitemap either.

    The start URL is the entry point and never an orphan.
    """
    incoming = build_incoming_link_map(result) if incoming is None else incoming
    sitemap_keys = _sitemap_keys(result)
    start_key = normalize_url(result.start_url) if result.start_url else None
    orphaned = []
    for key, page in result.pages.items():
        if key == start_key or incoming.get(key) or key in sitemap_keys:
            continue
        orphaned.append(OrphanedPage(url=page.url, status=page.status, title=page.title))
    return orphaned


def detect_broken_links(result: CrawlResult, incoming: Optional[Dict[str, List[str]]] = None) -> List[BrokenLink]:
    """Failed pages (status 0 or >= 400) that at least one crawled page links to."""
    incoming = build_incoming_link_map(result) if incoming is None else incoming
    broken = []
    for key, page in result.pages.items():
        if not page.is_error:
            continue
        referrers = incoming.get(key) or []
        if referrers:
            broken.append(BrokenLink(url=page.url, status=page.status,
                                     referenced_from=list(referrers),
                                     error_message=page.error_message))
    return broken


def detect_sitemap_only_pages(result: CrawlResult, incoming: Optional[Dict[str, List[str]]] = None) -> List[str]:
    """Sitemap URLs that were crawled but are not linked from any crawled page."""
    incoming = build_incoming_link_map(result) if incoming is None else incoming
    sitemap_only = []
    seen = set()
    for url in result.sitemap_urls:
        key = normalize_url(url)
        if key is None or key in seen:
            continue
        seen.add(key)
        if key in result.pages and not incoming.get(key):
            sitemap_only.append(url)
    return sitemap_only


def detect_empty_pages(result: CrawlResult) -> List[PageRecord]:
    # failed fetches are reported as broken, not empty
    return [page for page in result.pages.values() if page.is_empty and page.status > 0]


def calculate_link_stats(result: CrawlResult) -> LinkStats:
    total_pages = len(result.pages)
    total_internal = sum(len(page.internal_links) for page in result.pages.values())
    total_external = sum(len(page.external_links) for page in result.pages.values())
    return LinkStats(
        total_pages=total_pages,
        pages_with_200_status=sum(1 for page in result.pages.values() if page.status == 200),
        pages_with_404_status=sum(1 for page in result.pages.values() if page.status == 404),
        total_internal_links=total_internal,
        total_external_links=total_external,
        avg_links_per_page=total_internal / (total_pages or 1),
    )


def generate_report(result: CrawlResult) -> CrawlReport:
    incoming = build_incoming_link_map(result)
    orphaned = detect_orphaned_pages(result, incoming)
    broken = detect_broken_links(result, incoming)
    sitemap_only = detect_sitemap_only_pages(result, incoming)
    empty = detect_empty_pages(result)
    link_stats = calculate_link_stats(result)
    generated_at = time.time()

    return CrawlReport(
        id=f"report-{result.crawl_id}-{int(generated_at * 1000)}",
        crawl_id=result.crawl_id,
        generated_at=generated_at,
        target_url=result.start_url,
        summary=ReportSummary(
            total_pages=link_stats.total_pages,
            crawled_pages=sum(1 for page in result.pages.values() if 200 <= page.status < 300),
            orphaned_count=len(orphaned),
            broken_link_count=len(broken),
            empty_page_count=len(empty),
            avg_response_time=result.stats.avg_response_time,
        ),
        orphaned_pages=orphaned,
        broken_links=broken,
        empty_pages=empty,
        sitemap_only_pages=sitemap_only,
        sitemap_urls=list(result.sitemap_urls),
        robots=result.robots,
        link_stats=link_stats,
    )


def _iso(timestamp: float) -> str:
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).isoformat()


def report_to_dict(report: CrawlReport) -> Dict[str, Any]:
    """JSON-ready representation of a report."""
    return {
        "id": report.id,
        "crawl_id": report.crawl_id,
        "generated_at": _iso(report.generated_at),
        "target_url": report.target_url,
        "summary": vars(report.summary).copy(),
        "orphaned_pages": [
            {"url": p.url, "status": p.status, "title": p.title}
            for p in report.orphaned_pages
        ],
        "broken_links": [
            {"url": b.url, "status": b.status, "referenced_from": list(b.referenced_from),
             "error_message": b.error_message}
            for b in report.broken_links
        ],
        "empty_pages": [
            {"url": p.url, "status": p.status, "content_length": p.content_length, "title": p.title}
            for p in report.empty_pages
        ],
        "sitemap_only_pages": list(report.sitemap_only_pages),
        "sitemap_urls": list(report.sitemap_urls),
        "robots": report.robots.to_dict() if report.robots else None,
        "link_stats": vars(report.link_stats).copy(),
    }


def format_report_csv(report: CrawlReport) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    summary = report.summary

    writer.writerow(["LinkAuditor Report"])
    writer.writerow(["Target URL", report.target_url or ""])
    writer.writerow(["Generated At", _iso(report.generated_at)])
    writer.writerow([])
    writer.writerow(["Summary Metrics"])
    writer.writerow(["Metric", "Value"])
    writer.writerow(["Total Pages", summary.total_pages])
    writer.writerow(["Crawled Pages", summary.crawled_pages])
    writer.writerow(["Orphaned Pages", summary.orphaned_count])
    writer.writerow(["Broken Links", summary.broken_link_count])
    writer.writerow(["Empty Pages", summary.empty_page_count])
    writer.writerow(["Avg Response Time (s)", f"{summary.avg_response_time:.2f}"])

    if report.orphaned_pages:
        writer.writerow([])
        writer.writerow(["Orphaned Pages"])
        writer.writerow(["URL", "Status", "Title"])
        for page in report.orphaned_pages:
            writer.writerow([page.url, page.status, page.title])
    if report.broken_links:
        writer.writerow([])
        writer.writerow(["Broken Links"])
        writer.writerow(["URL", "Status", "Referenced From Count"])
        for link in report.broken_links:
            writer.writerow([link.url, link.status, len(link.referenced_from)])
    if report.empty_pages:
        writer.writerow([])
        writer.writerow(["Empty Pages"])
        writer.writerow(["URL", "Status", "Content Length"])
        for page in report.empty_pages:
            writer.writerow([page.url, page.status, page.content_length])
    if report.sitemap_only_pages:
        writer.writerow([])
        writer.writerow(["Sitemap-Only Pages"])
        writer.writerow(["URL"])
        for url in report.sitemap_only_pages:
            writer.writerow([url])
    return buffer.getvalue()


def format_report_text(report: CrawlReport) -> str:
    summary = report.summary
    lines = [
        "LinkAuditor Report",
        "==================",
        "",
        f"Target: {report.target_url or '-'}",
        f"Generated: {_iso(report.generated_at)}",
        "",
        "SUMMARY",
        "-------",
        f"Total Pages Crawled: {summary.crawled_pages}",
        f"Total Pages Discovered: {summary.total_pages}",
        f"Orphaned Pages: {summary.orphaned_count}",
        f"Broken Links Found: {summary.broken_link_count}",
        f"Empty Pages: {summary.empty_page_count}",
        f"Sitemap-Only Pages: {len(report.sitemap_only_pages)}",
        f"Average Response Time: {summary.avg_response_time:.2f}s",
        "",
        "ISSUES",
        "------",
    ]
    if report.broken_links:
        lines.append(f"Found {len(report.broken_links)} broken links:")
        for link in report.broken_links:
            lines.append(f"  [{link.status}] {link.url} (linked from {len(link.referenced_from)} pages)")
    else:
        lines.append("No broken links found.")
    if report.orphaned_pages:
        lines.append(f"Found {len(report.orphaned_pages)} orphaned pages without internal navigation:")
        for page in report.orphaned_pages:
            lines.append(f"  {page.url}")
    else:
        lines.append("No orphaned pages found.")
    if report.empty_pages:
        lines.append(f"Found {len(report.empty_pages)} pages with little or no content:")
        for page in report.empty_pages:
            lines.append(f"  {page.url}")
    return "\n".join(lines)
