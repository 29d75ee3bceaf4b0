from __future__ import annotations

import logging
import shlex as _shlex
from typing import Any, Dict, Optional

from curl_cffi import requests as curl_requests
import requests

from .base import Fetcher
from .errors import FetchError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 20


class HttpFetcher(Fetcher):
    """Direct unauthenticated GET through the spider's shared session.

    Any non-2xx status is raised as requests.HTTPError so the retrier
    treats it like a network failure.
    """

    def __init__(self, timeout: float = DEFAULT_TIMEOUT) -> None:
        self._timeout = timeout

    def fetch(self, session: requests.Session, url: str) -> Any:
        response = session.get(url, timeout=self._timeout)
        try:
            response.raise_for_status()
        except requests.HTTPError:
            response.close()
            raise
        return response


class CurlFetcher(Fetcher):
    """Replays the headers and cookies of a captured curl command against each URL.

    Requests go through curl_cffi with browser impersonation, for sites that
    reject plain clients or need a logged-in session. The spider's shared
    session is not used.
    """

    def __init__(
        self,
        method: str = "GET",
        headers: Optional[Dict[str, str]] = None,
        cookies: Optional[Dict[str, str]] = None,
        impersonate: str = "chrome120",
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self._method = method
        self._headers = headers or {}
        self._cookies = cookies or {}
        self._impersonate = impersonate
        self._timeout = timeout

    @classmethod
    def from_curl(cls, curl_cmd: str, **kwargs: Any) -> "CurlFetcher":
        fields = _parse_curl_to_fields(curl_cmd)
        return cls(method=fields["METHOD"], headers=fields["HEADERS"], cookies=fields["COOKIES"], **kwargs)

    def fetch(self, session: requests.Session, url: str) -> Any:
        curl_session = curl_requests.Session()
        try:
            response = curl_session.request(
                method=self._method,
                url=url,
                headers=self._headers or None,
                cookies=self._cookies or None,
                impersonate=self._impersonate,
                timeout=self._timeout,
            )
        finally:
            curl_session.close()

        status_code = getattr(response, "status_code", None)
        if status_code is None or not 200 <= int(status_code) < 300:
            raise FetchError(f"HTTP_{status_code} for '{url}'", status_code=status_code)
        return response


def _parse_cookie_str(raw: str) -> dict[str, str]:
    cookies: dict[str, str] = {}
    for pair in raw.split(";"):
        part = pair.strip()
        if not part or "=" not in part:
            continue
        k, v = part.split("=", 1)
        cookies[k.strip()] = v.strip()
    return cookies


def _parse_curl_to_fields(curl_cmd: str) -> dict:
    """Pull method, headers and cookies out of a `curl ...` command line."""
    tokens = _shlex.split(curl_cmd, posix=True)
    if not tokens or tokens[0] != "curl":
        raise ValueError("curl command must start with 'curl'.")

    method = "GET"
    raw_url = ""
    headers: dict[str, str] = {}
    cookies: dict[str, str] = {}

    i = 1
    while i < len(tokens):
        t = tokens[i]
        if t in ("-X", "--request") and i + 1 < len(tokens):
            method = tokens[i + 1].upper()
            i += 2
            continue
        if t in ("-H", "--header") and i + 1 < len(tokens):
            hv = tokens[i + 1]
            if ":" in hv:
                k, v = hv.split(":", 1)
                if k.strip().lower() != "cookie":
                    headers[k.strip()] = v.strip()
                else:
                    cookies.update(_parse_cookie_str(v.strip()))
            i += 2
            continue
        if t in ("-b", "--cookie") and i + 1 < len(tokens):
            cookies.update(_parse_cookie_str(tokens[i + 1].strip()))
            i += 2
            continue
        if t == "--url" and i + 1 < len(tokens):
            raw_url = tokens[i + 1]
            i += 2
            continue
        if t.startswith("http://") or t.startswith("https://"):
            raw_url = t
        i += 1

    if not raw_url:
        logger.debug("curl command has no URL; only its headers and cookies are used")

    return {
        "METHOD": method,
        "URL": raw_url,
        "HEADERS": headers,
        "COOKIES": cookies,
    }
