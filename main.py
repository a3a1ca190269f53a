import argparse, asyncio, json, os, signal, sys
from src.linkauditor.config import CrawlConfig, get_user_agent
from src.linkauditor.errors import CrawlSetupError
from src.linkauditor.models import CrawlStatus
from src.linkauditor.report import generate_report, format_report_text, format_report_csv, report_to_dict
from src.linkauditor.reporter import EventType
from src.linkauditor.scheduler import CrawlEngine
from src.linkauditor.storage import CrawlStore


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        description="Async link auditor: crawls a site and reports orphaned pages, broken links and empty pages",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s https://example.com
  %(prog)s https://example.com --max-pages 100 --concurrency 10
  %(prog)s https://example.com --page https://example.com/landing --save
  %(prog)s https://example.com --user-agent chrome --ignore-robots --report-json report.json
  %(prog)s --list-saved
        """
    )

    p.add_argument("start", nargs='?', help="Start URL (optional when --page is given)")
    p.add_argument("--page", action="append", default=[], dest="pages",
                   help="Additional page to crawl even if nothing links to it (repeatable)")

    # Crawl limits
    p.add_argument("--max-pages", type=int, default=None,
                   help="Maximum pages to crawl, 0 for no limit (default: 1000)")
    p.add_argument("--max-depth", type=int, default=None,
                   help="Maximum path depth below the start URL, -1 for unlimited (default: 10)")

    # HTTP configuration
    p.add_argument("--concurrency", type=int, default=None,
                   help="Maximum concurrent requests (default: 5)")
    p.add_argument("--timeout", type=float, default=None,
                   help="Request timeout in seconds (default: 10)")
    p.add_argument("--http-backend", choices=["aiohttp", "httpx"], default=None,
                   help="HTTP client backend; httpx negotiates HTTP/2 (default: aiohttp)")
    p.add_argument("--user-agent", choices=["default", "chrome", "firefox", "safari", "edge", "mobile", "random"],
                   default="default", help="User agent type to use (default: default)")
    p.add_argument("--custom-ua", type=str,
                   help="Custom user agent string (overrides --user-agent)")
    p.add_argument("--ignore-robots", action="store_true",
                   help="Ignore robots.txt rules and crawl-delay (still use robots.txt to find sitemaps)")
    p.add_argument("--skip-sitemaps", action="store_true",
                   help="Skip sitemap discovery")
    p.add_argument("--store-content", action="store_true",
                   help="Keep a compressed copy of every page body in the result")

    # Output and persistence
    p.add_argument("--save", action="store_true",
                   help="Save the crawl result to the local crawl store")
    p.add_argument("--db", type=str, default=None,
                   help="Crawl store path (default: $LINKAUDITOR_DATA/crawls.db)")
    p.add_argument("--list-saved", action="store_true",
                   help="List saved crawls and exit")
    p.add_argument("--load", type=str, default=None, metavar="CRAWL_ID",
                   help="Print the report of a saved crawl instead of crawling")
    p.add_argument("--report-json", type=str, default=None,
                   help="Write the report as JSON to this file")
    p.add_argument("--report-csv", type=str, default=None,
                   help="Write the report as CSV to this file")
    p.add_argument("--verbose", "-v", action="store_true",
                   help="Enable verbose output")
    p.add_argument("--quiet", "-q", action="store_true",
                   help="Suppress per-page output")
    return p


def build_config(args) -> CrawlConfig:
    defaults = CrawlConfig()
    max_depth = defaults.max_depth
    if args.max_depth is not None:
        max_depth = None if args.max_depth < 0 else args.max_depth
    return CrawlConfig(
        start_url=args.start,
        manual_pages=tuple(args.pages),
        max_depth=max_depth,
        max_pages=args.max_pages if args.max_pages is not None else defaults.max_pages,
        concurrency=args.concurrency if args.concurrency is not None else defaults.concurrency,
        timeout=args.timeout if args.timeout is not None else defaults.timeout,
        respect_robots_txt=not args.ignore_robots and defaults.respect_robots_txt,
        user_agent=args.custom_ua or (defaults.user_agent if args.user_agent == "default" else get_user_agent(args.user_agent)),
        discover_sitemaps=not args.skip_sitemaps and defaults.discover_sitemaps,
        http_backend=args.http_backend or defaults.http_backend,
        store_content=args.store_content or defaults.store_content,
    )


def print_event(event, quiet: bool = False):
    if event.type is EventType.LOG and not quiet:
        print(event.payload.message)
    elif event.type is EventType.PAUSED:
        print("Crawl paused")
    elif event.type is EventType.RESUMED:
        print("Crawl resumed")
    elif event.type is EventType.CANCELLED:
        print(f"Crawl cancelled after {event.payload.crawled_pages} pages")
    elif event.type is EventType.ERROR:
        print(f"Error: {event.payload['message']}")


def write_reports(result, args):
    report = generate_report(result)
    print()
    print(format_report_text(report))
    if args.report_json:
        with open(args.report_json, "w", encoding="utf-8") as f:
            json.dump(report_to_dict(report), f, indent=2)
        print(f"\nJSON report written to {args.report_json}")
    if args.report_csv:
        with open(args.report_csv, "w", encoding="utf-8", newline="") as f:
            f.write(format_report_csv(report))
        print(f"CSV report written to {args.report_csv}")


async def list_saved(store: CrawlStore) -> int:
    crawls = await store.list_crawls()
    if not crawls:
        print("No saved crawls")
    for entry in crawls:
        print(f"{entry['id']}  {entry['status']:<9}  {entry['page_count']:>6} pages  {entry['start_url'] or '-'}")
    return 0


async def show_saved(store: CrawlStore, crawl_id: str, args) -> int:
    result = await store.load(crawl_id)
    if result is None:
        print(f"Error: no saved crawl with id {crawl_id}")
        return 1
    write_reports(result, args)
    return 0


async def run_crawl(config: CrawlConfig, args) -> int:
    engine = CrawlEngine(verbose=args.verbose)
    engine.events.add_listener(lambda event: print_event(event, args.quiet))

    interrupted = False

    def handle_interrupt():
        nonlocal interrupted
        if interrupted:
            # Second Ctrl+C - force quit immediately
            print("\nForce quitting immediately...")
            os._exit(1)
        interrupted = True
        print("\nCancelling crawl... Press Ctrl+C again to force quit.")
        engine.cancel()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, handle_interrupt)
        except (NotImplementedError, RuntimeError):
            pass  # not supported on this platform

    if args.verbose:
        print("Starting crawl with configuration:")
        for key, value in config.to_dict().items():
            print(f"  {key}: {value}")
        print()

    try:
        session = await engine.start(config)
    except CrawlSetupError as e:
        print(f"Error: {e}")
        return 1

    result = await engine.wait()
    if result.status is CrawlStatus.FAILED:
        return 1

    write_reports(result, args)
    if args.save:
        store = CrawlStore(args.db)
        await store.save(session.id, result)
        print(f"\nSaved crawl {session.id} to {store.db_path}")
    return 0 if result.status is CrawlStatus.COMPLETED else 130


async def main(args) -> int:
    if args.list_saved:
        return await list_saved(CrawlStore(args.db))
    if args.load:
        return await show_saved(CrawlStore(args.db), args.load, args)
    if not args.start and not args.pages:
        print("Error: Either a start URL or --page must be specified")
        return 1
    return await run_crawl(build_config(args), args)


if __name__ == "__main__":
    sys.exit(asyncio.run(main(build_parser().parse_args())))
