"""JavBus provider: fetch the detail page directly and parse it into metadata."""

from __future__ import annotations

import re
from datetime import datetime
from typing import Any
from urllib.parse import quote, urljoin, urlsplit

from bs4 import BeautifulSoup

from .domain import Code, MovieMeta
from .provider import BlockedError, HTTPStatusError, Provider

BASE_URL = "https://www.javbus.com/"

_DRIVER_VERIFY = "/doc/driver-verify"
_DATE_RE = re.compile(r"[0-9]{4}-[0-9]{2}-[0-9]{2}")
_DIGITS_RE = re.compile(r"[0-9]+")

_ID_HEADERS = ("識別碼", "识别码", "ID")
_RELEASE_HEADERS = ("發行日期", "发行日期", "Release Date", "発売日")
_RUNTIME_HEADERS = ("長度", "长度", "Length", "時長", "时长", "Duration")
_LABEL_HEADERS = ("發行商", "发行商", "Label", "Publisher")
_MAKER_HEADERS = ("製作商", "制作商", "Studio", "Maker", "Manufacturer")
_SERIES_HEADERS = ("系列", "Series")


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


def _find_info_value(doc: BeautifulSoup, headers: tuple[str, ...]) -> str:
    wanted = {h for h in map(_norm_header, headers) if h}
    if not wanted:
        return ""
    for p in doc.select("div.movie div.info p"):
        raw_header = _norm_space(_text(p.select_one("span.header")))
        if _norm_header(raw_header) not in wanted:
            continue
        # Prefer a link's text (e.g. a label); otherwise the text after the header.
        link_text = _text(p.select_one("a")).strip()
        if link_text:
            return link_text
        return _norm_space(p.get_text()).removeprefix(raw_header).strip()
    return ""


def _keyword_tags(doc: BeautifulSoup, code: Code, studio: str, series: str) -> list[str]:
    meta = doc.select_one("meta[name='keywords']")
    if meta is None:
        return []
    content = meta.get("content")
    if content is None:
        return []
    # Keywords look like "CODE,Studio,Series,Tag1,Tag2,..."; drop the known ones.
    out: list[str] = []
    seen: set[str] = set()
    for part in str(content).split(","):
        s = part.strip()
        if not s or s.casefold() == code.casefold():
            continue
        if (studio and s == studio) or (series and s == series):
            continue
        if s in seen:
            continue
        seen.add(s)
        out.append(s)
    return out


def _first_attr(doc: BeautifulSoup, selector: str, attr: str) -> str | None:
    el = doc.select_one(selector)
    if el is None:
        return None
    value = el.get(attr)
    return None if value is None else str(value)


def _fetch_url(client: Any, url: str) -> bytes:
    with client.get(url, allow_redirects=False) as resp:
        body = resp.content

    if resp.url and _DRIVER_VERIFY in urlsplit(resp.url).path:
        raise BlockedError(resp.url, "driver-verify")
    location = (resp.headers.get("Location") or "").strip()
    if 300 <= resp.status_code < 400 and _DRIVER_VERIFY in location:
        # A redirect body is often the full detail page; only a verification body blocks.
        if b'id="ageVerify"' in body or _DRIVER_VERIFY.encode() in body:
            raise BlockedError(location, "driver-verify")

    if resp.status_code < 200 or resp.status_code >= 400:
        raise HTTPStatusError(url, resp.status_code, location)
    if not body:
        raise ValueError("empty response body")
    return body


class JavbusProvider(Provider):
    """Fetches ``https://www.javbus.com/<CODE>`` and parses the detail page."""

    name = "javbus"

    def fetch(self, code: Code, client: Any) -> tuple[bytes, str]:
        """Return the detail page HTML and URL; redirects are not followed."""
        if client is None:
            raise ValueError("http client 不能为空")
        if not code:
            raise ValueError("code 不能为空")
        page_url = BASE_URL + quote(code, safe="")
        return _fetch_url(client, page_url), page_url

    def parse(self, code: Code, html: bytes, page_url: str) -> MovieMeta:
        """Parse a JavBus detail page; raises :class:`ValueError` for anything else."""
        if not code:
            raise ValueError("code 不能为空")
        if not html:
            raise ValueError("html 为空")
        if not page_url.strip():
            raise ValueError("pageURL 不能为空")

        doc = BeautifulSoup(html.decode("utf-8", "replace"), "html.parser")

        ident = _find_info_value(doc, _ID_HEADERS).strip()
        if not ident:
            raise ValueError("未找到識別碼（疑似返回了验证页/非详情页内容）")
        if ident.casefold() != code.casefold():
            raise ValueError("識別碼不匹配（疑似跳转/返回了其它页面）")

        title = _norm_space(_text(doc.select_one("h3")))
        if not title:
            raise ValueError("标题为空（疑似返回了验证页/非详情页内容）")
        if title.startswith(code):
            title = title[len(code):].strip()

        release = _find_info_value(doc, _RELEASE_HEADERS)
        runtime_m = _first_int(_find_info_value(doc, _RUNTIME_HEADERS))

        studio = _find_info_value(doc, _LABEL_HEADERS) or _find_info_value(doc, _MAKER_HEADERS)
        series = _find_info_value(doc, _SERIES_HEADERS)

        actors = _norm_list([a.get_text().strip() for a in doc.select("div.star-name a")])

        genres = _keyword_tags(doc, code, studio, series)
        if not genres:
            genres = [
                a.get_text().strip()
                for a in doc.find_all("a")
                if "/genre/" in str(a.get("href") or "")
            ]
        genres = _norm_list(genres)

        cover_url = ""
        href = _first_attr(doc, "a.bigImage", "href")
        if href is not None:
            cover_url = _resolve_url(page_url, href)
        if not cover_url:
            src = _first_attr(doc, "div.screencap img", "src")
            if src is not None:
                cover_url = _resolve_url(page_url, src)

        fanart_url = cover_url
        if not fanart_url:
            sample = _first_attr(doc, "#sample-waterfall a.sample-box", "href")
            if sample is not None:
                fanart_url = _resolve_url(page_url, sample)

        return MovieMeta(
            code=code,
            title=title,
            studio=studio,
            series=series,
            release=release,
            year=_year_from_release(release),
            runtime_m=runtime_m,
            actors=actors,
            genres=genres,
            tags=list(genres),
            website=page_url.strip(),
            cover_url=cover_url,
            fanart_url=fanart_url,
        )