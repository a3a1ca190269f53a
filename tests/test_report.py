import csv
import io
import json
from src.linkauditor.models import CrawlResult, CrawlStats, CrawlStatus, PageRecord
from src.linkauditor.report import (
    build_incoming_link_map,
    detect_broken_links,
    detect_empty_pages,
    detect_orphaned_pages,
    detect_sitemap_only_pages,
    format_report_csv,
    format_report_text,
    generate_report,
    report_to_dict,
)

ROOT = "https://example.com/"


def page(path, status=200, links=(), is_empty=False, error=None, title=""):
    return PageRecord(url="https://example.com" + path, status=status, title=title,
                      internal_links=tuple("https://example.com" + link for link in links),
                      is_empty=is_empty, error_message=error)


def make_result():
    pages = [
        page("/", links=["/about", "/missing", "/", "/about#team"]),
        page("/about", links=["/missing", "/"]),
        page("/missing", status=404),
        page("/lonely", title="Lonely"),
        page("/listed", is_empty=True),
        page("/down", status=0, is_empty=True, error="Request timeout"),
    ]
    return CrawlResult(
        crawl_id="abc",
        start_url=ROOT,
        status=CrawlStatus.COMPLETED,
        pages={p.url.rstrip("/") if p.url != ROOT else ROOT: p for p in pages},
        sitemap_urls=["https://example.com/listed", "https://example.com/about"],
        stats=CrawlStats(crawled_pages=6, total_pages=6, error_count=2, avg_response_time=0.25),
    )


class TestIncomingLinks:
    def test_self_links_and_duplicates_ignored(self):
        incoming = build_incoming_link_map(make_result())
        assert incoming["https://example.com/about"] == [ROOT]
        assert incoming["https://example.com/missing"] == [ROOT, "https://example.com/about"]
        assert incoming[ROOT] == ["https://example.com/about"]


class TestDetectors:
    def test_orphans(self):
        orphans = [o.url for o in detect_orphaned_pages(make_result())]
        # /down has no referrer and is not in the sitemap either
        assert orphans == ["https://example.com/lonely", "https://example.com/down"]

    def test_orphans_carry_status_and_title(self):
        lonely, down = detect_orphaned_pages(make_result())
        assert (lonely.status, lonely.title) == (200, "Lonely")
        assert (down.status, down.title) == (0, "")

    def test_start_url_never_orphaned(self):
        result = CrawlResult(crawl_id="x", start_url=ROOT, status=CrawlStatus.COMPLETED,
                             pages={ROOT: page("/")})
        assert detect_orphaned_pages(result) == []

    def test_broken_links_need_a_referrer(self):
        broken = detect_broken_links(make_result())
        assert len(broken) == 1
        assert broken[0].url == "https://example.com/missing"
        assert broken[0].status == 404
        assert broken[0].referenced_from == [ROOT, "https://example.com/about"]

    def test_sitemap_only(self):
        assert detect_sitemap_only_pages(make_result()) == ["https://example.com/listed"]

    def test_empty_pages_exclude_failed_fetches(self):
        assert [p.url for p in detect_empty_pages(make_result())] == ["https://example.com/listed"]


class TestGenerateReport:
    def test_summary(self):
        report = generate_report(make_result())
        assert report.id.startswith("report-abc-")
        assert report.summary.total_pages == 6
        assert report.summary.crawled_pages == 4
        assert report.summary.orphaned_count == 2
        assert report.summary.broken_link_count == 1
        assert report.summary.empty_page_count == 1
        assert report.link_stats.pages_with_404_status == 1
        assert report.link_stats.total_internal_links == 6

    def test_dict_is_json_serializable(self):
        data = report_to_dict(generate_report(make_result()))
        restored = json.loads(json.dumps(data))
        assert restored["broken_links"][0]["referenced_from"] == [ROOT, "https://example.com/about"]
        assert restored["generated_at"].endswith("+00:00")

    def test_csv(self):
        rows = list(csv.reader(io.StringIO(format_report_csv(generate_report(make_result())))))
        assert rows[0] == ["LinkAuditor Report"]
        assert ["Broken Links", "1"] in rows
        assert ["https://example.com/missing", "404", "2"] in rows
        assert ["URL", "Status", "Title"] in rows
        assert ["https://example.com/lonely", "200", "Lonely"] in rows

    def test_text(self):
        text = format_report_text(generate_report(make_result()))
        assert "Broken Links Found: 1" in text
        assert "[404] https://example.com/missing (linked from 2 pages)" in text
        assert "https://example.com/lonely" in text

    def test_clean_site(self):
        result = CrawlResult(crawl_id="x", start_url=ROOT, status=CrawlStatus.COMPLETED,
                             pages={ROOT: page("/")})
        text = format_report_text(generate_report(result))
        assert "No broken links found." in text
        assert "No orphaned pages found." in text
