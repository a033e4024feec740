import pytest
import requests

from avmc.domain import ERR_FETCH_FAILED, ERR_PARSE_FAILED
from avmc.humanize import (
    attempts_from_trace,
    classify_provider_error,
    humanize_fetch_error,
    humanize_parse_error,
    strip_provider_prefix,
)
from avmc.provider import Attempt, BlockedError, HTTPStatusError, ProviderError, ScrapeError


def test_fetch_error_none():
    assert humanize_fetch_error("javbus", None) == "javbus 抓取失败"


def test_fetch_error_404():
    msg = humanize_fetch_error("javbus", HTTPStatusError("u", 404))
    assert msg == "javbus 返回 HTTP 404（可能该 CODE 不存在/已下架）。"


@pytest.mark.parametrize("status", [403, 429])
def test_fetch_error_rate_limited(status):
    msg = humanize_fetch_error("javdb", HTTPStatusError("u", status))
    assert msg.startswith(f"javdb 返回 HTTP {status}")
    assert "proxy.url" in msg


def test_fetch_error_redirect_to_verify():
    msg = humanize_fetch_error("javbus", HTTPStatusError("u", 302, "https://example.test/doc/driver-verify"))
    assert "driver-verify" in msg
    assert msg.startswith("javbus 被站点跳转到验证页")


def test_fetch_error_other_redirect_shows_location():
    msg = humanize_fetch_error("javbus", HTTPStatusError("u", 301, "/elsewhere"))
    assert msg.endswith("/elsewhere")


def test_fetch_error_blocked():
    msg = humanize_fetch_error("javbus", BlockedError("u", "driver-verify"))
    assert msg.startswith("javbus 被站点引导到验证页（driver-verify）")
    other = humanize_fetch_error("javbus", BlockedError("u", "captcha"))
    assert "captcha" in other


def test_fetch_error_timeout_and_tls():
    assert "抓取超时" in humanize_fetch_error("javbus", requests.exceptions.ReadTimeout("x"))
    assert "抓取超时" in humanize_fetch_error("javbus", RuntimeError("i/o timeout"))
    assert humanize_fetch_error("javdb", RuntimeError("TLS handshake failed")).startswith("javdb 连接失败")
    assert "javdb_base_url" in humanize_fetch_error("javdb", RuntimeError("ssl error"))
    assert "TLS/SSL" in humanize_fetch_error("javbus", RuntimeError("ssl error"))


def test_fetch_error_generic():
    assert humanize_fetch_error("javbus", RuntimeError("nope")) == "javbus 抓取失败：nope"


def test_parse_error():
    assert humanize_parse_error("javdb", None) == "javdb 解析失败"
    msg = humanize_parse_error("javdb", ValueError("bad"))
    assert msg.startswith("javdb 解析失败")
    assert msg.endswith("bad")


def test_strip_provider_prefix():
    assert strip_provider_prefix("javbus", "javbus 抓取失败") == "抓取失败"
    assert strip_provider_prefix("javbus", "  other text ") == "other text"
    assert strip_provider_prefix("", " x ") == "x"
    assert strip_provider_prefix("javbus", "javbusX") == "javbusX"


def test_attempts_from_trace():
    trace = [
        Attempt("javdb", "fetch", HTTPStatusError("u", 403)),
        Attempt("javbus", "parse", ValueError("bad")),
        Attempt("javbus", "ok"),
    ]
    out = attempts_from_trace(trace)
    assert [(a.provider, a.stage, a.error_code) for a in out] == [
        ("javdb", "fetch", ERR_FETCH_FAILED),
        ("javbus", "parse", ERR_PARSE_FAILED),
        ("javbus", "ok", ""),
    ]
    assert out[0].error_msg.startswith("返回 HTTP 403")
    assert not out[1].error_msg.startswith("javbus")
    assert out[2].error_msg == ""


def test_attempts_from_empty_trace():
    assert attempts_from_trace([]) == []
    assert attempts_from_trace(None) == []


def test_classify_provider_error_through_scrape_error():
    pe = ProviderError("javbus", "parse", ValueError("bad"))
    code, msg = classify_provider_error(ScrapeError(str(pe), [], pe))
    assert code == ERR_PARSE_FAILED
    assert msg == humanize_parse_error("javbus", pe.cause)

    pe2 = ProviderError("javdb", "fetch", HTTPStatusError("u", 404))
    code2, msg2 = classify_provider_error(pe2)
    assert code2 == ERR_FETCH_FAILED
    assert msg2 == "javdb 返回 HTTP 404（可能该 CODE 不存在/已下架）。"


def test_classify_plain_error():
    code, msg = classify_provider_error(ScrapeError("code 不能为空"))
    assert code == ERR_FETCH_FAILED
    assert msg == "code 不能为空"