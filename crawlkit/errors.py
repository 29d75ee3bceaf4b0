"""
Exceptions raised by the crawl engine.
"""

from __future__ import annotations

from typing import Optional


class CrawlError(Exception):
    """Base exception for all crawl-related errors."""

    pass


class RoutingError(CrawlError):
    """No route is registered for a URL that requires one."""

    def __init__(self, message: str, url: Optional[str] = None) -> None:
        super().__init__(message)
        self.url = url


class SpiderClosedError(CrawlError):
    """A URL was queued after shutdown began."""

    pass


class FetchError(CrawlError):
    """A fetch completed with a non-2xx status."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class UsageError(CrawlError):
    """Programming or construction error; not recoverable at runtime."""

    pass


class RecordShapeError(UsageError):
    """A record cannot be mapped onto a table row."""

    pass


class StorageSetupError(UsageError):
    """The storage backend could not be opened or its tables created."""

    pass
