"""
Exception types raised by the crawl engine.
"""


class CrawlError(Exception):
    """Base class for crawl engine errors."""


class CrawlSetupError(CrawlError, ValueError):
    """The crawl could not be started (unusable seed, nothing to crawl)."""


class CrawlInProgressError(CrawlSetupError):
    """A crawl is already running on this engine."""


class InvalidTransitionError(CrawlError):
    """A lifecycle transition that the session state machine does not allow."""

    def __init__(self, current, target):
        self.current = current
        self.target = target
        super().__init__(f"Cannot move crawl from {current.value} to {target.value}")
