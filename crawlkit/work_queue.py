from __future__ import annotations

import threading
from collections import deque
from typing import Deque, Optional

from .errors import SpiderClosedError


class WorkQueue:
    """Unbounded FIFO of URLs shared by every worker.

    put() is safe from any number of producer threads. get() blocks while the
    queue is open and empty, and returns None once it is closed and drained.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._cv = threading.Condition(self._lock)
        self._items: Deque[str] = deque()
        self._closed = False

    def put(self, url: str) -> None:
        with self._cv:
            if self._closed:
                raise SpiderClosedError(f"queue is closed, cannot add '{url}'")
            self._items.append(url)
            self._cv.notify()

    def get(self) -> Optional[str]:
        with self._cv:
            while not self._items and not self._closed:
                self._cv.wait()
            if self._items:
                return self._items.popleft()
            return None

    def close(self) -> bool:
        """Close the queue. Returns False if it was already closed."""
        with self._cv:
            if self._closed:
                return False
            self._closed = True
            self._cv.notify_all()
            return True

    @property
    def closed(self) -> bool:
        return self._closed

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)
