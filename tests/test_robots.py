import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer
from src.linkauditor.config import CrawlConfig
from src.linkauditor.robots import (
    RobotsDirectives,
    SiteDiscoverer,
    matches_pattern,
    parse_robots_txt,
)

ROBOTS = """
# comment line
User-agent: *
Disallow: /private
Allow: /private/open
Crawl-delay: 1.5

User-agent: otherbot
Disallow: /

User-agent: TestBot
Disallow: /testbot-only

Sitemap: https://example.com/sitemap.xml
Sitemap: not-a-url
Host: example.com
"""


class TestParseRobotsTxt:
    def test_rules_for_wildcard_and_own_token(self):
        robots = parse_robots_txt(ROBOTS, "testbot")
        assert robots.disallow == ["/private", "/testbot-only"]
        assert robots.allow == ["/private/open"]
        assert robots.crawl_delay == 1.5
        assert robots.user_agent == "testbot"

    def test_other_agents_ignored(self):
        robots = parse_robots_txt(ROBOTS, "somebot")
        assert "/" not in robots.disallow
        assert robots.disallow == ["/private"]
        assert robots.user_agent == "*"

    def test_sitemaps_validated_and_host(self):
        robots = parse_robots_txt(ROBOTS, "testbot")
        assert robots.sitemaps == ["https://example.com/sitemap.xml"]
        assert robots.host == "example.com"

    def test_grouped_user_agents(self):
        content = "User-agent: otherbot\nUser-agent: testbot\nDisallow: /shared\n"
        assert parse_robots_txt(content, "testbot").disallow == ["/shared"]
        assert parse_robots_txt(content, "nobody").disallow == []

    def test_rules_before_any_user_agent_apply(self):
        assert parse_robots_txt("Disallow: /tmp\n", "testbot").disallow == ["/tmp"]

    def test_empty_disallow_and_bad_delay_ignored(self):
        robots = parse_robots_txt("User-agent: *\nDisallow:\nCrawl-delay: soon\n", "testbot")
        assert robots.disallow == []
        assert robots.crawl_delay is None


class TestMatching:
    def test_prefix(self):
        assert matches_pattern("/private/page", "/private") is True
        assert matches_pattern("/public", "/private") is False

    def test_wildcard(self):
        assert matches_pattern("/shop/item.php?id=1", "/*.php") is True
        assert matches_pattern("/shop/item.html", "/*.php") is False
        assert matches_pattern("/a/b/c", "/a/*/c") is True

    def test_end_anchor(self):
        assert matches_pattern("/exact", "/exact$") is True
        assert matches_pattern("/exact/more", "/exact$") is False
        assert matches_pattern("/a/file.pdf", "/*.pdf$") is True
        assert matches_pattern("/a/file.pdf?x=1", "/*.pdf$") is False

    def test_allow_checked_before_disallow(self):
        robots = RobotsDirectives(allow=["/private/open"], disallow=["/private"])
        assert robots.is_allowed("/private/open/page") is True
        assert robots.is_allowed("/private/secret") is False
        assert robots.is_allowed("https://example.com/elsewhere") is True

    def test_full_url_checked_by_path(self):
        robots = RobotsDirectives(disallow=["/search"])
        assert robots.is_allowed("https://example.com/search?q=x") is False


def make_site(sitemap_chain: bool = False, with_robots: bool = True):
    hits = {"sitemaps": 0}

    async def robots(request):
        if not with_robots:
            return web.Response(status=404)
        origin = str(request.url.origin())
        body = (
            "User-agent: *\nDisallow: /private\nCrawl-delay: 2\n"
            f"Sitemap: {origin}/sitemap_index.xml\n"
        )
        return web.Response(text=body)

    async def sitemap_index(request):
        hits["sitemaps"] += 1
        origin = str(request.url.origin())
        body = (
            '<sitemapindex xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">'
            f"<sitemap><loc>{origin}/pages-list</loc></sitemap>"
            "</sitemapindex>"
        )
        return web.Response(text=body, content_type="application/xml")

    async def pages_list(request):
        hits["sitemaps"] += 1
        origin = str(request.url.origin())
        body = (
            '<urlset xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">'
            f"<url><loc>{origin}/a</loc></url><url><loc>{origin}/b</loc></url>"
            f"<url><loc>{origin}/a</loc></url>"
            "</urlset>"
        )
        return web.Response(text=body, content_type="application/xml")

    async def fallback_sitemap(request):
        hits["sitemaps"] += 1
        origin = str(request.url.origin())
        body = f"<urlset><url><loc>{origin}/fallback</loc></url></urlset>"
        return web.Response(text=body, content_type="application/xml")

    async def chain(request):
        # every index points one level deeper, forever
        hits["sitemaps"] += 1
        origin = str(request.url.origin())
        n = int(request.match_info.get("n", "0"))
        body = (
            "<sitemapindex>"
            f"<sitemap><loc>{origin}/chain/{n + 1}/sitemap.xml</loc></sitemap>"
            "</sitemapindex>"
        )
        return web.Response(text=body, content_type="application/xml")

    app = web.Application()
    app.router.add_get("/robots.txt", robots)
    if sitemap_chain:
        app.router.add_get("/sitemap.xml", chain)
        app.router.add_get("/chain/{n}/sitemap.xml", chain)
    else:
        app.router.add_get("/sitemap_index.xml", sitemap_index)
        app.router.add_get("/pages-list", pages_list)
        app.router.add_get("/sitemap.xml", fallback_sitemap)
    return app, hits


class TestSiteDiscoverer:
    @pytest.mark.asyncio
    async def test_robots_and_nested_sitemaps(self):
        app, hits = make_site()
        server = TestServer(app)
        await server.start_server()
        try:
            origin = str(server.make_url("")).rstrip("/")
            discoverer = SiteDiscoverer(CrawlConfig(user_agent="TestBot/1.0"))
            result = await discoverer.discover(origin + "/start")
        finally:
            await server.close()

        assert result.robots.disallow == ["/private"]
        assert result.robots.crawl_delay == 2.0
        assert result.sitemap_urls == [origin + "/a", origin + "/b"]
        assert hits["sitemaps"] == 2

    @pytest.mark.asyncio
    async def test_missing_robots_falls_back_to_sitemap_xml(self):
        app, hits = make_site(with_robots=False)
        server = TestServer(app)
        await server.start_server()
        try:
            origin = str(server.make_url("")).rstrip("/")
            result = await SiteDiscoverer(CrawlConfig()).discover(origin + "/")
        finally:
            await server.close()

        assert result.robots is None
        assert result.sitemap_urls == [origin + "/fallback"]

    @pytest.mark.asyncio
    async def test_sitemap_recursion_is_bounded(self):
        app, hits = make_site(sitemap_chain=True, with_robots=False)
        server = TestServer(app)
        await server.start_server()
        try:
            origin = str(server.make_url("")).rstrip("/")
            result = await SiteDiscoverer(CrawlConfig()).discover(origin + "/")
        finally:
            await server.close()

        assert result.sitemap_urls == []
        # /sitemap.xml at depth 0 plus chain documents at depths 1 to 3
        assert hits["sitemaps"] == 4

    @pytest.mark.asyncio
    async def test_unreachable_site_is_permissive(self):
        result = await SiteDiscoverer(CrawlConfig(), verbose=True).discover("http://127.0.0.1:9/")
        assert result.robots is None
        assert result.sitemap_urls == []

    @pytest.mark.asyncio
    async def test_sitemaps_skipped_when_disabled(self):
        app, hits = make_site()
        server = TestServer(app)
        await server.start_server()
        try:
            origin = str(server.make_url("")).rstrip("/")
            result = await SiteDiscoverer(CrawlConfig(discover_sitemaps=False)).discover(origin + "/")
        finally:
            await server.close()

        assert result.robots is not None
        assert result.sitemap_urls == []
        assert hits["sitemaps"] == 0
