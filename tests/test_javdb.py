import pytest
import responses
from responses import matchers

from avmc.http_client import HttpClient
from avmc.javdb import JavdbProvider, find_detail_href
from avmc.provider import HTTPStatusError

CODE = "SNOS-052"
BASE = "https://javdb.example.com"
DETAIL_HREF = "/v/ve39eW"

SEARCH = """<html><body><div class="movie-list">
<div class="item"><a class="box" href="/v/other1">
<div class="video-title"><strong>SNOS-520</strong> other</div></a></div>
<div class="item"><a class="box" href="/v/ve39eW">
<div class="video-title"><strong>snos-052</strong> match</div></a></div>
</div></body></html>"""

DETAIL = """<html><body>
<h2 class="title is-4"><strong>SNOS-052</strong>
<strong class="current-title">中文标题</strong>
<span class="origin-title">Original   Title</span></h2>
<div class="column column-video-cover">
<a data-fancybox="gallery" href=" https://c0.example.com/covers/big.jpg ">
<img class="video-cover" src="https://c0.example.com/covers/thumb.jpg"></a></div>
<nav class="panel movie-panel-info">
<div class="panel-block"><strong>番號:</strong> <span class="value">SNOS-052</span></div>
<div class="panel-block"><strong>日期:</strong> <span class="value">2025-01-02</span></div>
<div class="panel-block"><strong>時長:</strong> <span class="value"> 120 分鍾</span></div>
<div class="panel-block"><strong>片商:</strong> <span class="value"><a href="/makers/x">Maker M</a></span></div>
<div class="panel-block"><strong>系列:</strong> <span class="value"><a>Series S</a></span></div>
<div class="panel-block"><strong>演員:</strong> <span class="value"><a>Actor One</a> <a>Actor Two</a> <a>Actor One</a></span></div>
<div class="panel-block"><strong>類別:</strong> <span class="value"><a>Drama</a>, <a>Solo</a>, <a>Drama</a></span></div>
</nav></body></html>"""

PAGE_URL = BASE + DETAIL_HREF


def test_find_detail_href_from_search():
    assert find_detail_href(SEARCH.encode(), CODE) == "/v/ve39eW"


def test_find_detail_href_not_found():
    with pytest.raises(ValueError, match="ABCD-123"):
        find_detail_href(SEARCH.encode(), "ABCD-123")


def test_find_detail_href_empty_href():
    html = SEARCH.replace('href="/v/ve39eW"', 'href="  "')
    with pytest.raises(ValueError):
        find_detail_href(html.encode(), CODE)


def test_parse_detail_page():
    meta = JavdbProvider().parse(CODE, DETAIL.encode("utf-8"), PAGE_URL)
    assert meta.code == CODE
    assert meta.title == "Original Title"
    assert meta.release == "2025-01-02"
    assert meta.year == 2025
    assert meta.runtime_m == 120
    assert meta.studio == "Maker M"
    assert meta.series == "Series S"
    assert meta.actors == ["Actor One", "Actor Two"]
    assert meta.genres == ["Drama", "Solo"]
    assert meta.tags == meta.genres
    assert meta.cover_url == "https://c0.example.com/covers/big.jpg"
    assert meta.fanart_url == meta.cover_url
    assert meta.website == PAGE_URL


def test_parse_title_and_cover_fallbacks():
    html = (
        DETAIL.replace('<span class="origin-title">Original   Title</span>', "")
        .replace('data-fancybox="gallery" ', "")
    )
    meta = JavdbProvider().parse(CODE, html.encode("utf-8"), PAGE_URL)
    assert meta.title == "中文标题"
    assert meta.cover_url == "https://c0.example.com/covers/thumb.jpg"


def test_parse_page_without_panel_gives_empty_fields():
    meta = JavdbProvider().parse(CODE, b"<html><body></body></html>", PAGE_URL)
    assert meta.title == ""
    assert meta.actors == []
    assert meta.year == 0
    assert meta.cover_url == ""


def test_parse_rejects_empty_inputs():
    with pytest.raises(ValueError):
        JavdbProvider().parse(CODE, b"", PAGE_URL)
    with pytest.raises(ValueError):
        JavdbProvider().parse(CODE, DETAIL.encode(), "")
    with pytest.raises(ValueError):
        JavdbProvider().parse("", DETAIL.encode(), PAGE_URL)


def test_fetch_searches_then_loads_detail():
    with responses.RequestsMock() as rsps:
        rsps.add(
            responses.GET,
            BASE + "/search",
            body=SEARCH.encode(),
            match=[matchers.query_param_matcher({"q": CODE, "f": "all"})],
        )
        rsps.add(responses.GET, PAGE_URL, body=DETAIL.encode("utf-8"))
        with HttpClient() as client:
            body, url = JavdbProvider(BASE + "/").fetch(CODE, client)
    assert url == PAGE_URL
    assert body == DETAIL.encode("utf-8")


def test_fetch_search_http_error():
    with responses.RequestsMock() as rsps:
        rsps.add(
            responses.GET,
            BASE + "/search",
            body=b"denied",
            status=403,
            match=[matchers.query_param_matcher({"q": CODE, "f": "all"})],
        )
        with HttpClient() as client:
            with pytest.raises(HTTPStatusError) as ei:
                JavdbProvider(BASE).fetch(CODE, client)
    assert ei.value.status_code == 403


def test_fetch_default_base_url():
    with responses.RequestsMock() as rsps:
        rsps.add(
            responses.GET,
            "https://javdb.com/search",
            body=SEARCH.encode(),
            match=[matchers.query_param_matcher({"q": CODE, "f": "all"})],
        )
        rsps.add(responses.GET, "https://javdb.com" + DETAIL_HREF, body=DETAIL.encode("utf-8"))
        with HttpClient() as client:
            _, url = JavdbProvider().fetch(CODE, client)
    assert url == "https://javdb.com" + DETAIL_HREF


def test_fetch_requires_client_and_code():
    with pytest.raises(ValueError):
        JavdbProvider().fetch(CODE, None)
    with HttpClient() as client:
        with pytest.raises(ValueError):
            JavdbProvider().fetch("", client)


def test_name():
    assert JavdbProvider().name == "javdb"