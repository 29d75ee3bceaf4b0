from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Optional

import requests

from .base import DocParser, Fetcher, Spider
from .errors import RoutingError, UsageError
from .fetchers import HttpFetcher
from .retrier import Retrier, SimpleRetrier
from .routing import RouteTable
from .stats import CrawlStats
from .storage import Storage
from .work_queue import WorkQueue

logger = logging.getLogger(__name__)


class SimpleSpider(Spider):
    """Crawls queued URLs with a fixed pool of worker threads.

    Each worker pulls a URL from the shared queue, looks up its DocParser
    (URLs without one are dropped unfetched), fetches it through the first
    matching Fetcher wrapped in the retrier, and hands the response (or None
    if every attempt failed) to the parser. Parsers store records through
    add_doc() and may queue more URLs.

    Routes must be registered before the first URL is queued.
    """

    def __init__(
        self,
        max_crawls: int,
        retrier: Optional[Retrier] = None,
        session: Optional[requests.Session] = None,
        stats: Optional[CrawlStats] = None,
        default_fetcher: Optional[Fetcher] = None,
    ) -> None:
        if max_crawls < 1:
            raise UsageError("max_crawls must be >= 1")
        self._session = session or requests.Session()
        self._retrier = retrier or SimpleRetrier()
        self._default_fetcher = default_fetcher or HttpFetcher()
        self.stats = stats or CrawlStats()

        self._parsers: RouteTable[DocParser] = RouteTable()
        self._storages: RouteTable[Storage] = RouteTable()
        self._crawlers: RouteTable[Fetcher] = RouteTable()

        self._queue = WorkQueue()
        self._started = False
        self._setup_lock = threading.Lock()
        self._worker = threading.local()

        self._executor = ThreadPoolExecutor(max_workers=max_crawls, thread_name_prefix="spider")
        for _ in range(max_crawls):
            self._executor.submit(self._crawl_loop)

    def add_doc_parser(self, pattern: str, parser: DocParser) -> None:
        self._add_route(self._parsers, pattern, parser)

    def add_storage(self, pattern: str, storage: Storage) -> None:
        self._add_route(self._storages, pattern, storage)

    def add_crawler(self, pattern: str, fetcher: Fetcher) -> None:
        self._add_route(self._crawlers, pattern, fetcher)

    def queue(self, url: str) -> None:
        with self._setup_lock:
            self._started = True
        self._queue.put(url)
        self.stats.incr("queued")

    def shutdown(self) -> None:
        """Close the queue and wait until the workers have drained it.

        Safe to call more than once. Called from inside a parser it only
        closes the queue, since a worker cannot wait for itself.
        """
        if self._queue.close():
            logger.info("Spider shutting down; draining queue")
        if getattr(self._worker, "active", False):
            return
        self._executor.shutdown(wait=True)

    def add_doc(self, url: str, doc: Any) -> None:
        storage = self._storages.match(url)
        if storage is None:
            self.stats.incr("docs_unrouted")
            raise RoutingError(f"no storage specified for '{url}'", url=url)
        storage.add_doc(doc)
        self.stats.incr("docs_stored")

    @property
    def closed(self) -> bool:
        return self._queue.closed

    def _add_route(self, table: RouteTable, pattern: str, target: Any) -> None:
        # A route either lands before the first queue() or is rejected.
        with self._setup_lock:
            if self._started:
                raise UsageError("routes must be registered before the first URL is queued")
            table.add(pattern, target)

    def _crawl_loop(self) -> None:
        self._worker.active = True
        while True:
            url = self._queue.get()
            if url is None:
                return
            parser = self._parsers.match(url)
            if parser is None:
                logger.debug(f"No parser for '{url}', skipping")
                self.stats.incr("skipped")
                continue
            try:
                self._process(url, parser)
            except Exception:  # noqa: BLE001
                logger.exception(f"Unexpected error while processing '{url}'")

    def _process(self, url: str, parser: DocParser) -> None:
        logger.debug(f"Crawling '{url}' ...")
        try:
            response = self._crawl(url)
        except Exception as exc:  # noqa: BLE001
            logger.warning(f"Failed to crawl '{url}': {type(exc).__name__}: {exc}")
            self.stats.incr("fetch_failed")
            self._parse(url, None, parser)
            return

        self.stats.incr("fetched")
        try:
            self._parse(url, response, parser)
        finally:
            close = getattr(response, "close", None)
            if close is not None:
                close()

    def _parse(self, url: str, response: Any, parser: DocParser) -> None:
        try:
            parser.parse(url, response, self)
        except Exception:  # noqa: BLE001
            logger.exception(f"Failed to parse '{url}'")
            self.stats.incr("parse_failed")

    def _crawl(self, url: str) -> Any:
        fetcher = self._crawlers.match(url) or self._default_fetcher
        return self._retrier.run_with_retry(lambda: fetcher.fetch(self._session, url))
