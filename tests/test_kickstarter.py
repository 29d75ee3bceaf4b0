"""Tests for the Kickstarter parser and records."""

import datetime as dt
import os
import sqlite3
import tempfile
import threading
import unittest
from unittest import mock

from crawlkit.base import Fetcher, Spider
from crawlkit.errors import RoutingError, SpiderClosedError
from crawlkit.kickstarter import (
    DISCOVER_URL_PATTERN,
    PROJECT_URL_PATTERN,
    PROJECTS_TABLE,
    JsonParser,
    ProjectRecord,
    category_url,
    next_page_url,
)
from crawlkit.retrier import SimpleRetrier
from crawlkit.spider import SimpleSpider
from crawlkit.storage import SqlStorage


def _project(**overrides) -> dict:
    """Helper to build a project JSON object with sensible defaults."""
    project = {
        "id": 101,
        "name": "Widget",
        "blurb": "A widget",
        "goal": 1000.0,
        "pledged": 1500.0,
        "state": "successful",
        "country": "US",
        "currency": "USD",
        "deadline": 1700000000,
        "created_at": 1690000000,
        "launched_at": 1695000000,
        "backers_count": 12,
        "static_usd_rate": 1.0,
        "category": {"id": 3, "name": "Gadgets", "slug": "technology/gadgets"},
        "urls": {"web": {"project": "https://www.kickstarter.com/projects/1/widget"}},
    }
    project.update(overrides)
    return project


class FakeSpider(Spider):
    def __init__(self, add_doc_error=None, queue_error=None):
        self.docs = []
        self.queued = []
        self.add_doc_error = add_doc_error
        self.queue_error = queue_error

    def queue(self, url):
        if self.queue_error:
            raise self.queue_error
        self.queued.append(url)

    def shutdown(self):
        pass

    def add_doc(self, url, doc):
        if self.add_doc_error:
            raise self.add_doc_error
        self.docs.append((url, doc))


def _response(payload, status_code=200):
    response = mock.Mock(status_code=status_code)
    response.json.return_value = payload
    return response


class TestNextPageUrl(unittest.TestCase):
    """Verify pagination URL rewriting."""

    def test_missing_page_goes_to_two(self):
        """The first page has no page parameter, so the next one is 2."""
        self.assertEqual(
            next_page_url(category_url("technology")),
            "https://www.kickstarter.com/discover/categories/technology?format=json&page=2&sort=end_date",
        )

    def test_increments_page(self):
        """An existing page number is advanced by one."""
        self.assertIn("page=8", next_page_url("https://host/list?page=7"))

    def test_unparsable_page_restarts_at_two(self):
        """A garbage page value is logged and reset to 2."""
        with self.assertLogs("crawlkit.kickstarter", level="INFO"):
            url = next_page_url("https://host/list?page=abc&x=1")
        self.assertEqual(url, "https://host/list?page=2&x=1")


class TestProjectRecord(unittest.TestCase):
    """Verify mapping of project JSON onto the projects table."""

    def test_from_json(self):
        """JSON fields map onto columns with UTC timestamps."""
        record = ProjectRecord.from_json(_project())
        row = record.sql_row()
        self.assertEqual(row.table, "projects")
        self.assertEqual(row.columns["id"], 101)
        self.assertEqual(row.columns["desc"], "A widget")
        self.assertEqual(row.columns["slug"], "technology/gadgets")
        self.assertEqual(row.columns["usd_rate"], 1.0)
        self.assertEqual(row.columns["deadline"], dt.datetime.fromtimestamp(1700000000, tz=dt.timezone.utc))

    def test_columns_match_table(self):
        """Every record column exists in the table definition."""
        row = ProjectRecord.from_json(_project()).sql_row()
        self.assertEqual(set(row.columns), set(PROJECTS_TABLE.columns))


class TestJsonParser(unittest.TestCase):
    """Verify parsing, storing and pagination."""

    def test_no_response_finishes_chain(self):
        """A failed fetch ends the chain without touching the spider."""
        parser = JsonParser()
        parser.expect(1)
        spider = FakeSpider()
        parser.parse(category_url("design"), None, spider)
        self.assertEqual(parser.outstanding, 0)
        self.assertEqual(spider.docs, [])

    def test_non_200_finishes_chain(self):
        """A non-200 response also ends the chain."""
        parser = JsonParser()
        parser.expect(1)
        parser.parse(category_url("design"), _response({}, status_code=404), FakeSpider())
        self.assertTrue(parser.wait(timeout=0))

    def test_stores_finished_projects_and_follows_pages(self):
        """Live projects are skipped; has_more queues the next page."""
        parser = JsonParser()
        parser.expect(1)
        spider = FakeSpider()
        payload = {"projects": [_project(), _project(id=102, state="live")], "has_more": True}
        url = category_url("crafts")
        parser.parse(url, _response(payload), spider)
        self.assertEqual([doc.id for _, doc in spider.docs], [101])
        self.assertEqual(spider.docs[0][0], "https://www.kickstarter.com/projects/1/widget")
        self.assertEqual(spider.queued, [next_page_url(url)])
        self.assertEqual(parser.outstanding, 1)

    def test_last_page_finishes_chain(self):
        """has_more false ends the chain."""
        parser = JsonParser()
        parser.expect(1)
        spider = FakeSpider()
        parser.parse(category_url("crafts"), _response({"projects": [], "has_more": False}), spider)
        self.assertEqual(spider.queued, [])
        self.assertEqual(parser.outstanding, 0)

    def test_store_failure_is_logged(self):
        """A record that cannot be stored is logged and parsing continues."""
        parser = JsonParser()
        parser.expect(1)
        spider = FakeSpider(add_doc_error=RoutingError("no storage specified"))
        with self.assertLogs("crawlkit.kickstarter", level="WARNING"):
            parser.parse(category_url("crafts"), _response({"projects": [_project()], "has_more": False}), spider)
        self.assertEqual(parser.outstanding, 0)

    def test_bad_project_is_skipped_and_paging_continues(self):
        """A project missing its id is logged; the rest of the page is stored and the next page queued."""
        parser = JsonParser()
        parser.expect(1)
        spider = FakeSpider()
        url = category_url("crafts")
        payload = {
            "projects": [_project(id=1), {"name": "no id", "state": "failed"}, _project(id=3)],
            "has_more": True,
        }
        with self.assertLogs("crawlkit.kickstarter", level="WARNING"):
            parser.parse(url, _response(payload), spider)
        self.assertEqual([doc.id for _, doc in spider.docs], [1, 3])
        self.assertEqual(spider.queued, [next_page_url(url)])
        self.assertEqual(parser.outstanding, 1)

    def test_malformed_payload_raises_and_finishes_chain(self):
        """Undecodable JSON is raised to the spider but the chain is still accounted for."""
        parser = JsonParser()
        parser.expect(1)
        response = mock.Mock(status_code=200)
        response.json.side_effect = ValueError("not json")
        with self.assertRaises(ValueError):
            parser.parse(category_url("crafts"), response, FakeSpider())
        self.assertEqual(parser.outstanding, 0)

    def test_closed_spider_finishes_chain(self):
        """If the next page cannot be queued the chain ends."""
        parser = JsonParser()
        parser.expect(1)
        spider = FakeSpider(queue_error=SpiderClosedError("closed"))
        with self.assertLogs("crawlkit.kickstarter", level="WARNING"):
            parser.parse(category_url("crafts"), _response({"projects": [], "has_more": True}), spider)
        self.assertEqual(parser.outstanding, 0)


class _PagedFetcher(Fetcher):
    """Serves two JSON pages per category."""

    def __init__(self):
        self.calls = []
        self._lock = threading.Lock()

    def fetch(self, session, url):
        with self._lock:
            self.calls.append(url)
        category = url.split("/categories/", 1)[1].split("?", 1)[0]
        base = sum(map(ord, category)) * 10
        if "page=2" in url:
            return _response({"projects": [_project(id=base + 2, urls={"web": {"project": f"https://www.kickstarter.com/projects/{base + 2}"}})], "has_more": False})
        return _response({"projects": [_project(id=base + 1, urls={"web": {"project": f"https://www.kickstarter.com/projects/{base + 1}"}})], "has_more": True})


class TestEndToEnd(unittest.TestCase):
    """Crawl fake category pages into a real SQLite file."""

    def test_crawl_into_sqlite(self):
        """Every page of every category ends up as rows in the projects table."""
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "ks.sqlite3")
            storage = SqlStorage(path, [PROJECTS_TABLE])
            fetcher = _PagedFetcher()
            spider = SimpleSpider(2, SimpleRetrier(times=0, interval=0))
            parser = JsonParser()
            spider.add_crawler(DISCOVER_URL_PATTERN, fetcher)
            spider.add_doc_parser(DISCOVER_URL_PATTERN, parser)
            spider.add_storage(PROJECT_URL_PATTERN, storage)

            categories = ["technology", "crafts", "design"]
            parser.expect(len(categories))
            for category in categories:
                spider.queue(category_url(category))
            self.assertTrue(parser.wait(timeout=5))
            spider.shutdown()
            storage.close()

            conn = sqlite3.connect(path)
            try:
                count = conn.execute("SELECT COUNT(*) FROM projects").fetchone()[0]
            finally:
                conn.close()
        self.assertEqual(count, 6)
        self.assertEqual(len(fetcher.calls), 6)
        self.assertEqual(spider.stats.snapshot().docs_stored, 6)


if __name__ == "__main__":
    unittest.main()
