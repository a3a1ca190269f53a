"""
Crawl engine: command surface plus the single coordinating dispatch loop.
"""
from __future__ import annotations
import asyncio
from enum import Enum
from typing import Any, Dict, Optional, Tuple
from .config import CrawlConfig, HTTP_BACKENDS
from .errors import CrawlInProgressError, CrawlSetupError
from .fetch import create_fetcher, network_message
from .models import CrawlResult, CrawlStatus, PageRecord, StatusSnapshot
from .reporter import CrawlEvent, EventStream, EventType, ProgressReporter
from .robots import SiteDiscoverer
from .session import CrawlSession
from .urls import is_valid_url


class Command(str, Enum):
    START = "start"
    PAUSE = "pause"
    RESUME = "resume"
    CANCEL = "cancel"
    GET_STATUS = "get_status"


class CrawlEngine:
    """Runs at most one crawl session at a time and reports it on ``events``.

    All session mutation happens in ``_run``; fetch tasks only produce
    PageRecords. pause/resume/cancel flip the lifecycle status and wake the
    loop, nothing else.
    """

    def __init__(self, fetcher_factory=create_fetcher, discoverer_factory=SiteDiscoverer,
                 verbose: bool = False, events: Optional[EventStream] = None):
        self.fetcher_factory = fetcher_factory
        self.discoverer_factory = discoverer_factory
        self.verbose = verbose
        self.events = events or EventStream()
        self._session: Optional[CrawlSession] = None
        self._reporter: Optional[ProgressReporter] = None
        self._task: Optional[asyncio.Task] = None
        self._wake: Optional[asyncio.Event] = None
        self._in_flight: Dict[asyncio.Task, str] = {}

    @property
    def session(self) -> Optional[CrawlSession]:
        return self._session

    def _log(self, message: str):
        if self.verbose:
            print(message)

    def _publish(self, event_type: EventType, payload: Any = None):
        self.events.publish(CrawlEvent(event_type, payload))

    def _notify(self):
        if self._wake is not None:
            self._wake.set()

    # ---- commands ----

    @staticmethod
    def validate(config: CrawlConfig):
        if not config.seeds:
            raise CrawlSetupError("No start URL or manual pages to crawl")
        for url in config.seeds:
            if not is_valid_url(url):
                raise CrawlSetupError(f"Invalid URL: {url}")
        if config.http_backend not in HTTP_BACKENDS:
            raise CrawlSetupError(f"Unknown HTTP backend: {config.http_backend}")

    async def start(self, config: CrawlConfig) -> CrawlSession:
        """Begin a new crawl in the background.

        Raises CrawlInProgressError if a crawl is running or paused and
        CrawlSetupError for unusable input; neither touches existing state.
        """
        if self._session is not None and self._session.is_active:
            raise CrawlInProgressError("A crawl is already in progress")
        self.validate(config)

        session = CrawlSession(config)
        session.transition(CrawlStatus.RUNNING)
        self._session = session
        self._reporter = ProgressReporter(session)
        self._wake = asyncio.Event()
        self._in_flight = {}
        self._log(f"[crawl] Starting {session.id} from {session.base_url}")
        self._publish(EventType.STARTED, config.to_dict())
        self._task = asyncio.create_task(self._run(session))
        return session

    def pause(self) -> Tuple[bool, str]:
        session = self._session
        if session is None or not session.is_active:
            return False, "No crawl in progress"
        if session.status is CrawlStatus.PAUSED:
            return False, "Crawl is already paused"
        session.transition(CrawlStatus.PAUSED)
        self._publish(EventType.PAUSED, self._reporter.snapshot())
        self._notify()
        return True, "Crawl paused"

    def resume(self) -> Tuple[bool, str]:
        session = self._session
        if session is None or not session.is_active:
            return False, "No crawl in progress"
        if session.status is not CrawlStatus.PAUSED:
            return False, "Crawl is not paused"
        session.transition(CrawlStatus.RUNNING)
        self._publish(EventType.RESUMED, self._reporter.snapshot())
        self._notify()
        return True, "Crawl resumed"

    def cancel(self) -> Tuple[bool, str]:
        session = self._session
        if session is None or not session.is_active:
            return False, "No crawl in progress"
        session.transition(CrawlStatus.CANCELLED)
        self._publish(EventType.CANCELLED, self._reporter.snapshot())
        self._notify()
        return True, "Crawl cancelled"

    def status(self) -> Optional[StatusSnapshot]:
        if self._session is None:
            return None
        return self._reporter.status(len(self._in_flight))

    async def wait(self) -> Optional[CrawlResult]:
        """Wait for the current crawl to reach a terminal state and return its result."""
        if self._task is not None:
            await asyncio.shield(self._task)
        return self._session.to_result() if self._session else None

    async def run(self, config: CrawlConfig) -> CrawlResult:
        await self.start(config)
        return await self.wait()

    async def send(self, command: Command, payload: Any = None):
        """Message-style entry point; setup failures become an error event."""
        command = Command(command)
        if command is Command.START:
            try:
                return await self.start(payload)
            except CrawlSetupError as e:
                self._publish(EventType.ERROR, {"message": str(e)})
                return None
        if command is Command.PAUSE:
            return self.pause()
        if command is Command.RESUME:
            return self.resume()
        if command is Command.CANCEL:
            return self.cancel()
        return self.status()

    # ---- coordinating loop ----

    async def _discover(self, session: CrawlSession):
        """Resolve robots.txt and sitemaps, then queue seeds followed by sitemap URLs.

        Seeds skip the domain and depth filters but not robots.txt rules.
        """
        discoverer = self.discoverer_factory(session.config, verbose=self.verbose)
        try:
            discovery = await discoverer.discover(session.base_url)
        except Exception as e:
            self._log(f"[crawl] Discovery failed, continuing without robots.txt and sitemaps: {e}")
            discovery = None
        if not session.is_active:
            # cancelled while discovery was running; the session is final
            return
        if discovery is not None:
            session.robots = discovery.robots
            session.add_sitemap_urls(discovery.sitemap_urls)

        for url in session.config.seeds:
            if session.enforce_robots and not session.robots.is_allowed(url):
                self._log(f"[robots.txt] Disallowed, not crawling {url}")
                continue
            session.seed(url)
        seeded = 0
        for url in session.sitemap_urls:
            if session.should_crawl(url) and session.seed(url):
                seeded += 1
        self._log(f"[crawl] {len(session.sitemap_urls)} sitemap URLs, {seeded} queued")
        if session.crawl_delay:
            self._log(f"[crawl] Crawl-delay {session.crawl_delay}s, fetching one page at a time")

    async def _fetch(self, fetcher, url: str, in_sitemap: bool) -> PageRecord:
        try:
            return await fetcher.fetch(url, in_sitemap=in_sitemap)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            return PageRecord.failed(url, network_message(e), 0.0, in_sitemap)

    def _complete(self, session: CrawlSession, record: PageRecord):
        session.record(record)
        if record.is_success:
            for link in record.internal_links:
                if session.should_crawl(link):
                    session.enqueue(link)
        self._publish(EventType.LOG, self._reporter.log_entry(record))
        # a listener may have cancelled on the log event
        if session.is_active:
            self._publish(EventType.PROGRESS, self._reporter.snapshot())

    def _finish(self, session: CrawlSession):
        session.transition(CrawlStatus.COMPLETED)
        stats = session.stats
        self._log(f"[crawl] Completed: {stats.crawled_pages} pages, {stats.error_count} errors, "
                  f"{session.skipped_count} skipped")
        self._publish(EventType.COMPLETED, session.to_result())

    async def _dispatch_loop(self, session: CrawlSession, fetcher):
        loop = asyncio.get_running_loop()
        in_flight = self._in_flight
        last_dispatch: Optional[float] = None

        while session.is_active:
            self._wake.clear()
            wait_for: Optional[float] = None

            if session.status is CrawlStatus.RUNNING:
                while (len(in_flight) < session.effective_concurrency
                       and not session.page_limit_reached(len(in_flight))):
                    delay = session.crawl_delay
                    if delay and last_dispatch is not None:
                        remaining = last_dispatch + delay - loop.time()
                        if remaining > 0:
                            wait_for = remaining
                            break
                    url = session.pop_next()
                    if url is None:
                        break
                    key = session.mark_visited(url)
                    task = asyncio.create_task(self._fetch(fetcher, url, key in session.sitemap_keys))
                    in_flight[task] = url
                    last_dispatch = loop.time()

                if not in_flight and wait_for is None and (not session.queue or session.page_limit_reached()):
                    self._finish(session)
                    break

            wake_task = asyncio.ensure_future(self._wake.wait())
            try:
                done, _ = await asyncio.wait(set(in_flight) | {wake_task}, timeout=wait_for,
                                             return_when=asyncio.FIRST_COMPLETED)
            finally:
                if not wake_task.done():
                    wake_task.cancel()

            for task in done:
                if task is wake_task:
                    continue
                in_flight.pop(task, None)
                if not session.is_active:
                    # cancelled: results of fetches that settle afterwards are discarded
                    continue
                self._complete(session, task.result())

    async def _run(self, session: CrawlSession):
        in_flight = self._in_flight
        try:
            await self._discover(session)
            if not session.is_active:
                return
            async with self.fetcher_factory(session.config) as fetcher:
                try:
                    await self._dispatch_loop(session, fetcher)
                finally:
                    if in_flight:
                        if session.status is not CrawlStatus.CANCELLED:
                            for task in in_flight:
                                task.cancel()
                        await asyncio.gather(*in_flight, return_exceptions=True)
                        in_flight.clear()
        except asyncio.CancelledError:
            if session.is_active:
                session.transition(CrawlStatus.CANCELLED)
                self._publish(EventType.CANCELLED, self._reporter.snapshot())
            raise
        except Exception as e:
            self._log(f"[crawl] Crawl failed: {e}")
            if not session.is_terminal:
                session.transition(CrawlStatus.FAILED)
                self._publish(EventType.ERROR, {"message": str(e)})
