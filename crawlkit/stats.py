from __future__ import annotations

import time
from dataclasses import asdict, dataclass
from threading import Lock
from typing import Dict


@dataclass(frozen=True)
class CrawlSnapshot:
    queued: int
    skipped: int
    fetched: int
    fetch_failed: int
    parse_failed: int
    docs_stored: int
    docs_unrouted: int
    elapsed_secs: float


class CrawlStats:
    """Thread-safe counters describing what the worker pool has done so far."""

    _FIELDS = ("queued", "skipped", "fetched", "fetch_failed", "parse_failed", "docs_stored", "docs_unrouted")

    def __init__(self) -> None:
        self._lock = Lock()
        self._started = time.time()
        self._counts: Dict[str, int] = {name: 0 for name in self._FIELDS}

    def incr(self, name: str, n: int = 1) -> None:
        if name not in self._counts:
            raise KeyError(f"unknown counter: {name}")
        with self._lock:
            self._counts[name] += n

    def snapshot(self) -> CrawlSnapshot:
        with self._lock:
            counts = dict(self._counts)
        return CrawlSnapshot(elapsed_secs=round(time.time() - self._started, 3), **counts)

    def export_json(self) -> Dict:
        return asdict(self.snapshot())
