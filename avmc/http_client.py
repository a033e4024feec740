"""HTTP client with a user-agent pool, proxy policy, bounded retries and a timeout."""

from __future__ import annotations

import random
from collections.abc import Mapping
from urllib.parse import urlsplit

import requests

DEFAULT_TIMEOUT = 20.0
DEFAULT_RETRY_MAX = 2

USER_AGENTS = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/122.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 13_6) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.3 Safari/605.1.15",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/122.0.0.0 Safari/537.36",
)

_RETRYABLE = (requests.exceptions.ConnectionError, requests.exceptions.Timeout)

_rng = random.Random()


def _validate_proxy(proxy_url: str) -> None:
    u = urlsplit(proxy_url)  # raises ValueError on a malformed host
    _ = u.port  # raises ValueError on a malformed port


class HttpClient:
    """A GET client.

    With a proxy every request uses a fresh connection (proxy pools rotate on
    that); each request without its own User-Agent gets a random one; transport
    failures are retried up to ``retry_max`` times.
    """

    def __init__(
        self,
        proxy_url: str = "",
        disable_keep_alives: bool = False,
        retry_max: int = DEFAULT_RETRY_MAX,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        proxy_url = proxy_url.strip()
        if proxy_url:
            _validate_proxy(proxy_url)
            disable_keep_alives = True
        self.proxy_url = proxy_url
        self.disable_keep_alives = disable_keep_alives
        self.retry_max = max(0, retry_max)
        self.timeout = timeout

        self._session = requests.Session()
        self._session.trust_env = False
        if proxy_url:
            self._session.proxies = {"http": proxy_url, "https": proxy_url}

    def get(
        self,
        url: str,
        headers: Mapping[str, str] | None = None,
        allow_redirects: bool = True,
    ) -> requests.Response:
        """Send a GET request, retrying transport failures."""
        last_error: Exception | None = None
        for _ in range(self.retry_max + 1):
            hdrs = dict(headers or {})
            if not any(k.lower() == "user-agent" for k in hdrs):
                hdrs["User-Agent"] = _rng.choice(USER_AGENTS)
            if self.disable_keep_alives:
                hdrs["Connection"] = "close"
            try:
                return self._session.get(
                    url, headers=hdrs, allow_redirects=allow_redirects, timeout=self.timeout
                )
            except _RETRYABLE as e:
                last_error = e
        assert last_error is not None
        raise last_error

    def close(self) -> None:
        self._session.close()

    def __enter__(self) -> HttpClient:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()


def new_meta_client(proxy_url: str = "") -> HttpClient:
    """Client for provider pages: uses the proxy when one is configured."""
    return HttpClient(proxy_url.strip())


def new_image_client(proxy_url: str = "", image_proxy: bool = False) -> HttpClient:
    """Client for images: direct unless ``image_proxy`` is set, which requires a proxy URL."""
    if not image_proxy:
        return HttpClient("")
    proxy_url = proxy_url.strip()
    if not proxy_url:
        raise ValueError("image_proxy=true 但 proxy.url 为空")
    return HttpClient(proxy_url)