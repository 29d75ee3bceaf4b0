from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Optional

import requests


class Spider(ABC):
    """The handle a DocParser gets back to the crawl."""

    @abstractmethod
    def queue(self, url: str) -> None:
        """Schedule a URL for crawling."""

    @abstractmethod
    def shutdown(self) -> None:
        """Stop accepting URLs and wait for the workers to drain the queue."""

    @abstractmethod
    def add_doc(self, url: str, doc: Any) -> None:
        """Store a record through the storage routed for `url`. For DocParsers only."""


class DocParser(ABC):
    """Turns a fetched response into records and follow-up URLs."""

    @abstractmethod
    def parse(self, url: str, response: Optional[Any], spider: Spider) -> None:
        """Process one crawled URL.

        `response` is None when every fetch attempt failed; parsers that track
        outstanding work must still account for the URL in that case. Raising
        is logged by the spider and does not stop the crawl.
        """


class Fetcher(ABC):
    """Fetch strategy selected per URL pattern."""

    @abstractmethod
    def fetch(self, session: requests.Session, url: str) -> Any:
        """Return a response with `status_code`, or raise on failure."""
