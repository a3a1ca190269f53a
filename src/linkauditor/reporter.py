"""
Progress statistics and the engine's outbound event stream.
"""
from __future__ import annotations
import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional
from .models import LogEntry, PageRecord, ProgressSnapshot, StatusSnapshot


class EventType(str, Enum):
    STARTED = "started"
    PROGRESS = "progress"
    LOG = "log"
    PAUSED = "paused"
    RESUMED = "resumed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"
    ERROR = "error"


TERMINAL_EVENTS = (EventType.COMPLETED, EventType.CANCELLED, EventType.ERROR)


@dataclass(frozen=True)
class CrawlEvent:
    type: EventType
    payload: Any = None

    def to_dict(self) -> Dict[str, Any]:
        payload = self.payload.to_dict() if hasattr(self.payload, "to_dict") else self.payload
        return {"type": self.type.value, "payload": payload}


class Subscription:
    """Async iterator over events published after subscribing.

    Iteration stops after the first completed, cancelled or error event.
    """

    def __init__(self, stream: "EventStream"):
        self._stream = stream
        self._queue: asyncio.Queue = asyncio.Queue()
        self._finished = False

    def _put(self, event: CrawlEvent):
        self._queue.put_nowait(event)

    async def get(self) -> CrawlEvent:
        return await self._queue.get()

    def close(self):
        self._stream.unsubscribe(self)

    def __aiter__(self):
        return self

    async def __anext__(self) -> CrawlEvent:
        if self._finished:
            raise StopAsyncIteration
        event = await self._queue.get()
        if event.type in TERMINAL_EVENTS:
            self._finished = True
            self.close()
        return event


class EventStream:
    """Broadcast channel from the engine to any number of consumers.

    Listeners are plain callables invoked synchronously on publish;
    subscriptions buffer events for async consumers.
    """

    def __init__(self):
        self._listeners: List[Callable[[CrawlEvent], None]] = []
        self._subscriptions: List[Subscription] = []

    def add_listener(self, listener: Callable[[CrawlEvent], None]):
        self._listeners.append(listener)

    def remove_listener(self, listener: Callable[[CrawlEvent], None]):
        if listener in self._listeners:
            self._listeners.remove(listener)

    def subscribe(self) -> Subscription:
        subscription = Subscription(self)
        self._subscriptions.append(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription):
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)

    def publish(self, event: CrawlEvent):
        for subscription in list(self._subscriptions):
            subscription._put(event)
        for listener in list(self._listeners):
            listener(event)


class ProgressReporter:
    """Derives progress figures from a CrawlSession."""

    def __init__(self, session):
        self.session = session

    def eta(self) -> Optional[float]:
        stats = self.session.stats
        if stats.crawled_pages == 0:
            return None
        remaining = max(stats.total_pages - stats.crawled_pages, 0)
        return round(remaining * stats.avg_response_time / self.session.effective_concurrency, 2)

    def snapshot(self) -> ProgressSnapshot:
        session = self.session
        stats = session.stats
        progress = (stats.crawled_pages / stats.total_pages) * 100 if stats.total_pages > 0 else 0.0
        return ProgressSnapshot(
            crawled_pages=stats.crawled_pages,
            total_pages=stats.total_pages,
            error_count=stats.error_count,
            avg_response_time=stats.avg_response_time,
            progress=round(progress, 2),
            eta=self.eta(),
            current_page=session.queue[0] if session.queue else None,
            queue_size=len(session.queue),
        )

    def status(self, in_flight: int = 0) -> StatusSnapshot:
        return StatusSnapshot(
            crawl_id=self.session.id,
            status=self.session.status,
            progress=self.snapshot(),
            skipped_count=self.session.skipped_count,
            in_flight=in_flight,
            sitemap_url_count=len(self.session.sitemap_urls),
        )

    @staticmethod
    def log_entry(record: PageRecord) -> LogEntry:
        return LogEntry(
            url=record.url,
            status=record.status,
            success=not record.is_error,
            duration=record.duration,
            error_message=record.error_message,
        )
