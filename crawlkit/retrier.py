from __future__ import annotations

import logging
import random
import time
from abc import ABC, abstractmethod
from typing import Callable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Retrier(ABC):
    """Runs a fallible job with a bounded number of retries."""

    @abstractmethod
    def run_with_retry(self, job: Callable[[], T]) -> T:
        """Return the job's result, or re-raise the last error once retries are exhausted."""
        raise NotImplementedError


class SimpleRetrier(Retrier):
    """Retries up to `times` extra attempts, sleeping a fixed interval between them.

    `times=0` means the job runs exactly once."""

    def __init__(self, times: int = 3, interval: float = 3.0) -> None:
        if times < 0:
            raise ValueError("times must be >= 0")
        self.times = times
        self.interval = interval

    def run_with_retry(self, job: Callable[[], T]) -> T:
        attempt = 0
        while True:
            attempt += 1
            try:
                return job()
            except Exception as exc:  # noqa: BLE001
                if attempt > self.times:
                    raise
                sleep_s = self.get_sleep(attempt)
                logger.debug(f"Attempt {attempt} failed ({type(exc).__name__}: {exc}); retrying in {sleep_s:.3f}s")
                time.sleep(sleep_s)

    def get_sleep(self, attempt: int) -> float:
        """Seconds to wait after the given failed attempt."""
        return self.interval


class BackoffRetrier(SimpleRetrier):
    """SimpleRetrier whose wait doubles after every failed fetch.

    The first wait is `base_seconds`, growth stops at `max_seconds`, and a random
    share of up to `jitter` is added to each wait. Selected with
    `crawl --retry-backoff`."""

    def __init__(
        self, times: int = 3, base_seconds: float = 0.5, max_seconds: float = 10.0, jitter: float = 0.1
    ) -> None:
        super().__init__(times=times, interval=base_seconds)
        self.max_seconds = max_seconds
        self.jitter = jitter

    def get_sleep(self, attempt: int) -> float:
        doublings = max(attempt - 1, 0)
        delay = min(self.interval * 2**doublings, self.max_seconds)
        return delay * (1.0 + random.uniform(0, self.jitter))
