"""JavDB provider: search for the code, follow the matching result, parse the detail page."""

from __future__ import annotations

import re
from datetime import datetime
from typing import Any
from urllib.parse import quote_plus, urljoin

from bs4 import BeautifulSoup

from .domain import Code, MovieMeta
from .provider import HTTPStatusError, Provider

DEFAULT_BASE_URL = "https://javdb.com"

_DATE_RE = re.compile(r"[0-9]{4}-[0-9]{2}-[0-9]{2}")
_DIGITS_RE = re.compile(r"[0-9]+")

_DATE_HEADERS = frozenset({"日期", "Date"})
_RUNTIME_HEADERS = frozenset({"時長", "时长", "Length", "Duration"})
_STUDIO_HEADERS = frozenset({"片商", "Maker", "Studio", "Manufacturer", "Label"})
_SERIES_HEADERS = frozenset({"系列", "Series"})
_ACTOR_HEADERS = frozenset({"演員", "演员", "Actor", "Actors", "Actress", "Cast"})
_TAG_HEADERS = frozenset(
    {"類別", "类别", "Tag", "Tags", "Genre", "Genres", "Category", "Categories"}
)


def _norm_space(s: str) -> str:
    return " ".join(s.split())


def _norm_header(s: str) -> str:
    s = _norm_space(s).removesuffix(":").removesuffix("：")
    return s.strip()


def _norm_list(values: list[str]) -> list[str]:
    seen: set[str] = set()
    out: list[str] = []
    for s in values:
        s = s.strip()
        if s and s not in seen:
            seen.add(s)
            out.append(s)
    return out


def _first_int(s: str) -> int:
    m = _DIGITS_RE.search(s.strip())
    return int(m.group()) if m else 0


def _year_from_release(release: str) -> int:
    release = release.strip()
    if not _DATE_RE.fullmatch(release):
        return 0
    try:
        return datetime.strptime(release, "%Y-%m-%d").year
    except ValueError:
        return 0


def _resolve_url(base: str, href: str) -> str:
    href = href.strip()
    if not href:
        return ""
    if href.startswith("//"):
        return "https:" + href
    if href.startswith(("http://", "https://")):
        return href
    try:
        return urljoin(base, href)
    except ValueError:
        return href


def _text(el: Any) -> str:
    return el.get_text() if el is not None else ""


def _soup(html: bytes) -> BeautifulSoup:
    return BeautifulSoup(html.decode("utf-8", "replace"), "html.parser")


def _first_attr(doc: BeautifulSoup, selector: str, attr: str) -> str | None:
    el = doc.select_one(selector)
    if el is None:
        return None
    value = el.get(attr)
    return None if value is None else str(value)


def _fetch_url(client: Any, url: str) -> bytes:
    with client.get(url) as resp:
        if resp.status_code < 200 or resp.status_code >= 300:
            raise HTTPStatusError(url, resp.status_code, resp.headers.get("Location") or "")
        return resp.content


def find_detail_href(search_html: bytes, code: Code) -> str:
    """Return the detail-page link of the search result whose code matches ``code``.

    Raises :class:`ValueError` when no result matches.
    """
    doc = _soup(search_html)
    want = code.upper()
    href: str | None = None
    for box in doc.select("div.movie-list div.item a.box"):
        got = _text(box.select_one("div.video-title strong")).strip().upper()
        if got != want:
            continue
        value = box.get("href")
        href = None if value is None else str(value)
        break
    if href is None or not href.strip():
        raise ValueError(f"搜索结果中未找到匹配的详情页：{want}")
    return href


class JavdbProvider(Provider):
    """Searches JavDB for a code and parses the matching detail page."""

    name = "javdb"

    def __init__(self, base_url: str = "") -> None:
        # An alternative mirror domain for when the default one is unreachable.
        self.base_url = base_url

    def _base(self) -> str:
        u = self.base_url.strip()
        return u.rstrip("/") if u else DEFAULT_BASE_URL

    def fetch(self, code: Code, client: Any) -> tuple[bytes, str]:
        """Search for ``code``, then return the detail page HTML and URL."""
        if client is None:
            raise ValueError("http client 不能为空")
        if not code:
            raise ValueError("code 不能为空")

        base = self._base()
        search_url = f"{base}/search?q={quote_plus(code)}&f=all"
        href = find_detail_href(_fetch_url(client, search_url), code)
        page_url = _resolve_url(base + "/", href)
        return _fetch_url(client, page_url), page_url

    def parse(self, code: Code, html: bytes, page_url: str) -> MovieMeta:
        """Parse a JavDB detail page into metadata."""
        if not code:
            raise ValueError("code 不能为空")
        if not html:
            raise ValueError("html 为空")
        if not page_url.strip():
            raise ValueError("pageURL 不能为空")

        doc = _soup(html)

        # Prefer the original title over the translated one shown by default.
        title = _norm_space(_text(doc.select_one("h2.title span.origin-title")))
        if not title:
            title = _norm_space(_text(doc.select_one("h2.title strong.current-title")))

        release = ""
        runtime_m = 0
        studio = ""
        series = ""
        actors: list[str] = []
        tags: list[str] = []

        for block in doc.select("nav.movie-panel-info .panel-block"):
            header = _norm_header(_text(block.select_one("strong")))
            if header in _DATE_HEADERS:
                release = _text(block.select_one("span.value")).strip()
            elif header in _RUNTIME_HEADERS:
                runtime_m = _first_int(_text(block.select_one("span.value")))
            elif header in _STUDIO_HEADERS:
                studio = _text(block.select_one("span.value a")).strip()
            elif header in _SERIES_HEADERS:
                series = _text(block.select_one("span.value a")).strip()
            elif header in _ACTOR_HEADERS:
                actors.extend(a.get_text().strip() for a in block.select("span.value a"))
            elif header in _TAG_HEADERS:
                tags.extend(a.get_text().strip() for a in block.select("span.value a"))

        actors = _norm_list(actors)
        tags = _norm_list(tags)

        cover_url = ""
        href = _first_attr(doc, ".column-video-cover a[data-fancybox='gallery']", "href")
        if href is not None:
            cover_url = href.strip()
        if not cover_url:
            src = _first_attr(doc, ".column-video-cover img.video-cover", "src")
            if src is not None:
                cover_url = src.strip()

        return MovieMeta(
            code=code,
            title=title,
            studio=studio,
            series=series,
            release=release,
            year=_year_from_release(release),
            runtime_m=runtime_m,
            actors=actors,
            genres=tags,
            tags=list(tags),
            website=page_url.strip(),
            cover_url=cover_url,
            fanart_url=cover_url,
        )