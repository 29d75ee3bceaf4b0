from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Generic, Iterator, List, Optional, TypeVar

T = TypeVar("T")


@dataclass(frozen=True)
class Route(Generic[T]):
    regex: re.Pattern
    target: T


class RouteTable(Generic[T]):
    """Ordered (pattern, target) routes; the first pattern that matches a URL wins.

    Patterns are searched, not fully matched, so callers anchor with `^` when
    they mean a prefix. Routes are append-only and never reordered.
    """

    def __init__(self) -> None:
        self._routes: List[Route[T]] = []

    def add(self, pattern: str, target: T) -> None:
        self._routes.append(Route(regex=re.compile(pattern), target=target))

    def match(self, url: str) -> Optional[T]:
        for route in self._routes:
            if route.regex.search(url):
                return route.target
        return None

    def __iter__(self) -> Iterator[Route[T]]:
        return iter(self._routes)

    def __len__(self) -> int:
        return len(self._routes)
