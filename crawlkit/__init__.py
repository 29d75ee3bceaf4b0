"""Generic concurrent crawl engine.

Seed URLs are fetched by a fixed pool of worker threads, routed to a
URL-pattern matched parser, and the parser's records are routed to a
URL-pattern matched storage backend.

Key modules:
    spider      -- SimpleSpider worker pool and dispatch
    base        -- Spider, DocParser and Fetcher interfaces
    routing     -- RouteTable first-match pattern registry
    work_queue  -- WorkQueue closable URL queue
    retrier     -- SimpleRetrier fixed-interval retries, BackoffRetrier
    fetchers    -- HttpFetcher default fetch, CurlFetcher impersonating fetch
    storage     -- Storage, SqlStorage and JsonlStorage backends
    models      -- TableDef, SqlRow, SqlRecord, TaggedRecord
    stats       -- CrawlStats counters
    errors      -- exception hierarchy
    kickstarter -- Kickstarter discover-page parser and project records
    report      -- CSV export and monthly statistics
"""
