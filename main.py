from __future__ import annotations

import argparse
import json
import logging
import sys
import time
from typing import Optional, Sequence

from crawlkit.errors import UsageError
from crawlkit.fetchers import CurlFetcher
from crawlkit.kickstarter import (
    DEFAULT_CATEGORIES,
    DISCOVER_URL_PATTERN,
    PROJECT_URL_PATTERN,
    PROJECTS_TABLE,
    JsonParser,
    category_url,
)
from crawlkit import report
from crawlkit.retrier import BackoffRetrier, Retrier, SimpleRetrier
from crawlkit.spider import SimpleSpider
from crawlkit.storage import SqlStorage

logger = logging.getLogger(__name__)

DEFAULT_MAX_CONCURRENT_CRAWLS = 2
DEFAULT_MAX_CRAWL_RETRIES = 3
DEFAULT_CRAWL_RETRY_INTERVAL = 3.0
DEFAULT_MAX_CRAWL_RETRY_INTERVAL = 60.0
DEFAULT_REPORT_COLUMNS = "name,goal,pledged,currency,usd_rate,launched_at,deadline,url,slug"
DEFAULT_GROUP_BY = "slug"
DEFAULT_OUTPUT_BASE = "kickstarter"


def _load_text(path: str) -> str:
    try:
        with open(path, "r", encoding="utf-8") as f:
            return f.read().strip()
    except FileNotFoundError:
        return ""


def default_output_file() -> str:
    return f"kickstarter-{time.strftime('%Y%m%d')}.sqlite3"


def build_retrier(max_crawl_retries: int, crawl_retry_interval: float, retry_backoff: bool = False) -> Retrier:
    if retry_backoff:
        return BackoffRetrier(
            times=max_crawl_retries,
            base_seconds=crawl_retry_interval,
            max_seconds=max(crawl_retry_interval, DEFAULT_MAX_CRAWL_RETRY_INTERVAL),
        )
    return SimpleRetrier(times=max_crawl_retries, interval=crawl_retry_interval)


def run_crawl(
    output_file: str,
    categories: Sequence[str],
    max_concurrent_crawls: int,
    max_crawl_retries: int,
    crawl_retry_interval: float,
    curl_config_path: Optional[str] = None,
    retry_backoff: bool = False,
) -> dict:
    storage = SqlStorage(output_file, [PROJECTS_TABLE])
    spider = SimpleSpider(
        max_concurrent_crawls,
        build_retrier(max_crawl_retries, crawl_retry_interval, retry_backoff),
    )
    parser = JsonParser()
    try:
        spider.add_doc_parser(DISCOVER_URL_PATTERN, parser)
        spider.add_storage(PROJECT_URL_PATTERN, storage)
        if curl_config_path:
            raw_curl = _load_text(curl_config_path)
            if raw_curl:
                spider.add_crawler(DISCOVER_URL_PATTERN, CurlFetcher.from_curl(raw_curl))
            else:
                logger.warning(f"No curl command in {curl_config_path}; using plain HTTP")

        logger.info(f"Crawling {len(categories)} categories into {output_file}")
        parser.expect(len(categories))
        for category in categories:
            spider.queue(category_url(category))
        parser.wait()
    finally:
        spider.shutdown()
        storage.close()

    return spider.stats.export_json()


def run_report(db_name: str, table: str, columns: str, group_by: str, output_base: str) -> None:
    groups = report.export(
        db_name,
        table=table,
        columns=[c.strip() for c in columns.split(",") if c.strip()],
        group_by=[g.strip() for g in group_by.split(",") if g.strip()],
        output_base=output_base,
    )
    print(f"Wrote {len(groups)} groups to {output_base}-*.csv")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Kickstarter crawler and report tool")
    parser.add_argument("--log-level", default="INFO", help="Logging level (DEBUG, INFO, WARNING, ...)")
    sub = parser.add_subparsers(dest="command", required=True)

    crawl = sub.add_parser("crawl", help="Crawl Kickstarter categories into SQLite")
    crawl.add_argument("--max-concurrent-crawls", type=int, default=DEFAULT_MAX_CONCURRENT_CRAWLS, help="Worker threads")
    crawl.add_argument("--max-crawl-retries", type=int, default=DEFAULT_MAX_CRAWL_RETRIES, help="Retries per fetch")
    crawl.add_argument(
        "--crawl-retry-interval", type=float, default=DEFAULT_CRAWL_RETRY_INTERVAL, help="Seconds between retries"
    )
    crawl.add_argument(
        "--retry-backoff",
        action="store_true",
        help="Double the retry interval after each failure, with jitter",
    )
    crawl.add_argument("--output-file", default="", help="SQLite file (default kickstarter-YYYYMMDD.sqlite3)")
    crawl.add_argument(
        "--category", action="append", dest="categories", help="Category to crawl; repeatable"
    )
    crawl.add_argument("--curl-config", default=None, help="File holding a curl command to replay headers/cookies")

    rep = sub.add_parser("report", help="Export scraped projects to per-group CSVs and monthly stats")
    rep.add_argument("--db-name", required=True, help="SQLite file written by 'crawl'")
    rep.add_argument("--table", default="projects")
    rep.add_argument("--columns", default=DEFAULT_REPORT_COLUMNS, help="Comma-separated columns to export")
    rep.add_argument("--group-by", default=DEFAULT_GROUP_BY, help="Comma-separated group columns")
    rep.add_argument("--output-base", default=DEFAULT_OUTPUT_BASE, help="Prefix of the CSV files")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    try:
        if args.command == "crawl":
            summary = run_crawl(
                output_file=args.output_file or default_output_file(),
                categories=args.categories or DEFAULT_CATEGORIES,
                max_concurrent_crawls=args.max_concurrent_crawls,
                max_crawl_retries=args.max_crawl_retries,
                crawl_retry_interval=args.crawl_retry_interval,
                curl_config_path=args.curl_config,
                retry_backoff=args.retry_backoff,
            )
            print(json.dumps(summary, ensure_ascii=False))
        else:
            run_report(args.db_name, args.table, args.columns, args.group_by, args.output_base)
    except UsageError as exc:
        logger.error(f"{exc}")
        return 2
    return 0


if __name__ == "__main__":
    sys.exit(main())
