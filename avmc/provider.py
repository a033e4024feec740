"""Site providers: the common contract, the registry and the fetch/parse fallback chain."""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from .domain import Code, MovieMeta

STAGE_FETCH = "fetch"
STAGE_PARSE = "parse"
STAGE_OK = "ok"

_FALLBACK_ORDER = {
    "javbus": ("javbus", "javdb"),
    "javdb": ("javdb", "javbus"),
}


def _quote(s: str) -> str:
    return json.dumps(s, ensure_ascii=False)


class HTTPStatusError(Exception):
    """The site answered with an unexpected HTTP status code."""

    def __init__(self, url: str, status_code: int, location: str = "") -> None:
        self.url = url
        self.status_code = status_code
        self.location = location
        loc = location.strip()
        if loc:
            message = f"HTTP {status_code} location={loc}"
        else:
            message = f"HTTP {status_code}"
        super().__init__(message)


class BlockedError(Exception):
    """The request landed on a verification or blocking page; it is never bypassed."""

    def __init__(self, url: str, reason: str = "") -> None:
        self.url = url
        self.reason = reason
        r = reason.strip()
        super().__init__(f"blocked: {r}" if r else "blocked")


class Provider(ABC):
    """A metadata site.

    ``fetch`` does no caching, retrying or rate limiting; ``parse`` is pure;
    the page URL returned by ``fetch`` is the detail page.
    """

    name: str = ""

    @abstractmethod
    def fetch(self, code: Code, client: Any) -> tuple[bytes, str]:
        """Return the detail page HTML and its URL."""

    @abstractmethod
    def parse(self, code: Code, html: bytes, page_url: str) -> MovieMeta:
        """Parse a detail page into metadata."""


class Registry:
    """A read-only lookup of providers by lower-case name."""

    def __init__(self, *args: Provider) -> None:
        self._by_name: dict[str, Provider] = {}
        for p in args:
            if p is None:
                raise ValueError("provider 不能为空")
            name = (p.name or "").strip().lower()
            if not name:
                raise ValueError("provider.Name 不能为空")
            if name in self._by_name:
                raise ValueError(f"重复的 provider：{_quote(name)}")
            self._by_name[name] = p

    def get(self, name: str) -> Provider | None:
        """Return the provider registered under ``name`` (case-insensitive), or ``None``."""
        return self._by_name.get(name.strip().lower())


@dataclass
class Attempt:
    """One step of the provider chain; ``error`` is ``None`` when ``stage == "ok"``."""

    provider: str
    stage: str
    error: BaseException | None = None


class ProviderError(Exception):
    """A provider failed at the fetch or parse stage."""

    def __init__(self, provider: str, stage: str, cause: BaseException) -> None:
        self.provider = provider
        self.stage = stage
        self.cause = cause
        super().__init__(f"provider={provider} stage={stage}: {cause}")
        self.__cause__ = cause


class ScrapeError(Exception):
    """Every provider in the chain failed; ``attempts`` records what was tried."""

    def __init__(
        self,
        message: str,
        attempts: list[Attempt] | None = None,
        last_error: BaseException | None = None,
    ) -> None:
        self.attempts: list[Attempt] = list(attempts or [])
        self.last_error = last_error
        super().__init__(message)
        if last_error is not None:
            self.__cause__ = last_error


@dataclass
class ScrapeResult:
    meta: MovieMeta
    provider_used: str
    website: str
    html: bytes
    attempts: list[Attempt] = field(default_factory=list)


def fetch_parse(registry: Registry, provider_requested: str, code: Code, client: Any = None) -> ScrapeResult:
    """Fetch and parse metadata, trying the requested provider first and then the fallback.

    Raises :class:`ScrapeError` (carrying the attempts made) when nothing succeeds.
    """
    requested = provider_requested.strip().lower()
    if not requested:
        raise ScrapeError("provider_requested 不能为空")
    if not code:
        raise ScrapeError("code 不能为空")
    order = _FALLBACK_ORDER.get(requested)
    if order is None:
        raise ScrapeError(f"未知 provider：{_quote(requested)}")

    attempts: list[Attempt] = []
    last_error: BaseException | None = None
    for name in order:
        p = registry.get(name)
        if p is None:
            last_error = LookupError(f"provider 未注册：{_quote(name)}")
            attempts.append(Attempt(name, STAGE_FETCH, last_error))
            continue

        try:
            html, page_url = p.fetch(code, client)
        except Exception as e:
            last_error = ProviderError(name, STAGE_FETCH, e)
            attempts.append(Attempt(name, STAGE_FETCH, e))
            continue

        try:
            meta = p.parse(code, html, page_url)
        except Exception as e:
            last_error = ProviderError(name, STAGE_PARSE, e)
            attempts.append(Attempt(name, STAGE_PARSE, e))
            continue

        meta.website = page_url
        attempts.append(Attempt(name, STAGE_OK))
        return ScrapeResult(meta=meta, provider_used=name, website=page_url, html=html, attempts=attempts)

    if last_error is None:
        last_error = LookupError("无可用 provider")
    raise ScrapeError(str(last_error), attempts, last_error)