"""
Kickstarter discover-page scraper built on the crawl engine.

Category listing pages are fetched as JSON; every finished (non-live)
project becomes a row in the `projects` table, and pages are followed
while the listing reports `has_more`.
"""

from __future__ import annotations

import datetime as _dt
import logging
import threading
from dataclasses import dataclass
from typing import Any, Dict, Optional
from urllib.parse import parse_qsl as _parse_qsl, urlencode as _urlencode, urlsplit as _urlsplit, urlunsplit as _urlunsplit

from .base import DocParser, Spider
from .errors import SpiderClosedError
from .models import TABLE_TAG, TableDef, TaggedRecord, sql_column

logger = logging.getLogger(__name__)

PROJECTS_TABLE_NAME = "projects"

DISCOVER_URL_PATTERN = "^https?://www[.]kickstarter[.]com/discover/categories/"
PROJECT_URL_PATTERN = "^https?://www[.]kickstarter[.]com/projects/"

DEFAULT_CATEGORIES = ["technology", "crafts", "design"]

PROJECTS_TABLE = TableDef(
    name=PROJECTS_TABLE_NAME,
    columns={
        "id": "INTEGER PRIMARY KEY",
        "name": "TEXT NOT NULL",
        "desc": "TEXT",
        "goal": "REAL NOT NULL",
        "pledged": "REAL NOT NULL",
        "currency": "TEXT NOT NULL",
        "country": "TEXT NOT NULL",
        "usd_rate": "REAL",
        "backers_count": "INTEGER",
        "created_at": "TIMESTAMP NOT NULL",
        "launched_at": "TIMESTAMP NOT NULL",
        "deadline": "TIMESTAMP NOT NULL",
        "category": "TEXT",
        "slug": "TEXT",
        "url": "TEXT",
    },
)


def category_url(category: str) -> str:
    return f"https://www.kickstarter.com/discover/categories/{category}?format=json&sort=end_date"


def _from_epoch(value: Any) -> _dt.datetime:
    return _dt.datetime.fromtimestamp(int(value or 0), tz=_dt.timezone.utc)


@dataclass(frozen=True)
class ProjectRecord(TaggedRecord):
    id: int = sql_column("id")
    name: str = sql_column("name")
    desc: str = sql_column("desc")
    goal: float = sql_column("goal")
    pledged: float = sql_column("pledged")
    currency: str = sql_column("currency")
    country: str = sql_column("country")
    usd_rate: Optional[float] = sql_column("usd_rate")
    backers_count: int = sql_column("backers_count")
    created_at: _dt.datetime = sql_column("created_at")
    launched_at: _dt.datetime = sql_column("launched_at")
    deadline: _dt.datetime = sql_column("deadline")
    category: str = sql_column("category")
    slug: str = sql_column("slug")
    url: str = sql_column("url")
    table: str = sql_column(TABLE_TAG, default=PROJECTS_TABLE_NAME)

    @classmethod
    def from_json(cls, project: Dict[str, Any]) -> "ProjectRecord":
        category = project.get("category") or {}
        urls = (project.get("urls") or {}).get("web") or {}
        return cls(
            id=int(project["id"]),
            name=project.get("name", ""),
            desc=project.get("blurb", ""),
            goal=float(project.get("goal") or 0.0),
            pledged=float(project.get("pledged") or 0.0),
            currency=project.get("currency", ""),
            country=project.get("country", ""),
            usd_rate=project.get("static_usd_rate"),
            backers_count=int(project.get("backers_count") or 0),
            created_at=_from_epoch(project.get("created_at")),
            launched_at=_from_epoch(project.get("launched_at")),
            deadline=_from_epoch(project.get("deadline")),
            category=category.get("name", ""),
            slug=category.get("slug", ""),
            url=urls.get("project", ""),
        )


def next_page_url(url: str) -> str:
    """Return `url` with its `page` query parameter advanced by one.

    A missing page means the first page, so the next one is 2. An unparsable
    page value is logged and also restarts at 2.
    """
    parts = _urlsplit(url)
    query = dict(_parse_qsl(parts.query, keep_blank_values=True))
    page = query.get("page", "")
    if not page:
        query["page"] = "2"
    else:
        try:
            query["page"] = str(int(page) + 1)
        except ValueError:
            logger.info(f"Failed to parse page parameter {page!r} in '{url}'")
            query["page"] = "2"
    return _urlunsplit((parts.scheme, parts.netloc, parts.path, _urlencode(sorted(query.items())), parts.fragment))


class JsonParser(DocParser):
    """Parses discover-page JSON into ProjectRecords and follows pagination.

    Each seeded category is a chain of pages. The parser counts chains still
    in flight so the caller can wait() for all of them before shutting the
    spider down.
    """

    def __init__(self) -> None:
        self._cv = threading.Condition()
        self._outstanding = 0

    def expect(self, n: int = 1) -> None:
        with self._cv:
            self._outstanding += n

    def done(self) -> None:
        with self._cv:
            self._outstanding = max(0, self._outstanding - 1)
            self._cv.notify_all()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until every expected chain finished. Returns False on timeout."""
        with self._cv:
            return self._cv.wait_for(lambda: self._outstanding == 0, timeout=timeout)

    @property
    def outstanding(self) -> int:
        return self._outstanding

    def parse(self, url: str, response: Optional[Any], spider: Spider) -> None:
        if response is None or getattr(response, "status_code", None) != 200:
            self.done()
            return

        try:
            payload = response.json()
            projects = list(payload.get("projects") or [])
        except Exception:
            # The chain ends here; a malformed page is not retried.
            self.done()
            raise

        for project in projects:
            try:
                if project.get("state") == "live":
                    continue
                record = ProjectRecord.from_json(project)
            except Exception as exc:  # noqa: BLE001
                logger.warning(f"Skipping malformed project on '{url}': {type(exc).__name__}: {exc}")
                continue
            logger.debug(f"Adding project {record.id}/{record.name} ...")
            try:
                spider.add_doc(record.url, record)
            except Exception as exc:  # noqa: BLE001
                logger.warning(f"Failed to add '{record.url}': {type(exc).__name__}: {exc}")

        if not payload.get("has_more"):
            self.done()
            return

        try:
            spider.queue(next_page_url(url))
        except SpiderClosedError:
            logger.warning(f"Spider closed before the page after '{url}' could be queued")
            self.done()
