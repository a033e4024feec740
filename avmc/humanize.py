"""Turn provider failures into actionable error codes and messages for the report."""

from __future__ import annotations

from collections.abc import Iterable
from typing import TypeVar

import requests

from .domain import ERR_FETCH_FAILED, ERR_PARSE_FAILED, ProviderAttempt
from .provider import STAGE_FETCH, STAGE_OK, STAGE_PARSE, Attempt, BlockedError, HTTPStatusError, ProviderError

_E = TypeVar("_E", bound=BaseException)


def _find(err: BaseException | None, cls: type[_E]) -> _E | None:
    seen: set[int] = set()
    while err is not None and id(err) not in seen:
        if isinstance(err, cls):
            return err
        seen.add(id(err))
        err = err.__cause__
    return None


def humanize_fetch_error(provider_name: str, err: BaseException | None) -> str:
    """Explain a fetch failure with a hint the user can act on."""
    if err is None:
        return provider_name + " 抓取失败"

    be = _find(err, BlockedError)
    if be is not None:
        if be.reason == "driver-verify":
            return (
                f"{provider_name} 被站点引导到验证页（driver-verify）。当前不支持绕过；"
                "建议配置 proxy.url 代理池或改用另一 provider。"
            )
        return f"{provider_name} 被站点拦截（{be.reason}）。建议配置 proxy.url 或稍后重试。"

    hs = _find(err, HTTPStatusError)
    if hs is not None:
        loc = hs.location.strip()
        if 300 <= hs.status_code < 400 and "driver-verify" in loc:
            return (
                f"{provider_name} 被站点跳转到验证页（driver-verify）。当前不支持绕过；"
                "建议配置 proxy.url 代理池或改用另一 provider。"
            )
        if hs.status_code in (403, 429):
            return f"{provider_name} 返回 HTTP {hs.status_code}（可能触发反爬/限流）。建议降低并发或配置 proxy.url。"
        if hs.status_code == 404:
            return f"{provider_name} 返回 HTTP 404（可能该 CODE 不存在/已下架）。"
        if loc:
            return f"{provider_name} 返回 HTTP {hs.status_code}（重定向）：{loc}"
        return f"{provider_name} 返回 HTTP {hs.status_code}。"

    low = str(err).lower()
    timed_out = _find(err, TimeoutError) is not None or _find(err, requests.exceptions.Timeout) is not None
    if timed_out or "timeout" in low:
        return f"{provider_name} 抓取超时。建议检查网络/代理，或降低并发后重试。"
    if "tls" in low or "handshake" in low or "ssl" in low:
        if provider_name == "javdb":
            return (
                "javdb 连接失败（TLS/SSL 握手异常或域名不可达）。"
                "可在 avmc.json 设置 javdb_base_url 指向可用域名，或配置 proxy.url。"
            )
        return f"{provider_name} 连接失败（TLS/SSL）。建议配置 proxy.url 或稍后重试。"

    return f"{provider_name} 抓取失败：{err}"


def humanize_parse_error(provider_name: str, err: BaseException | None) -> str:
    """Explain a parse failure (usually a changed site layout or a non-detail page)."""
    if err is None:
        return provider_name + " 解析失败"
    return f"{provider_name} 解析失败（站点结构可能变化或返回了非详情页内容）：{err}"


def strip_provider_prefix(provider_name: str, msg: str) -> str:
    """Drop a leading ``"<provider> "`` from ``msg``; attempts already name the provider."""
    msg = msg.strip()
    p = provider_name.strip()
    if not p or not msg:
        return msg
    prefix = p + " "
    if msg.startswith(prefix):
        return msg[len(prefix):].strip()
    return msg


def attempts_from_trace(trace: Iterable[Attempt] | None) -> list[ProviderAttempt]:
    """Convert the provider chain trace into report attempts."""
    out: list[ProviderAttempt] = []
    for a in trace or ():
        at = ProviderAttempt(provider=a.provider, stage=a.stage)
        if a.stage == STAGE_FETCH:
            at.error_code = ERR_FETCH_FAILED
            at.error_msg = strip_provider_prefix(a.provider, humanize_fetch_error(a.provider, a.error))
        elif a.stage == STAGE_PARSE:
            at.error_code = ERR_PARSE_FAILED
            at.error_msg = strip_provider_prefix(a.provider, humanize_parse_error(a.provider, a.error))
        elif a.stage != STAGE_OK and a.error is not None:
            at.error_code = ERR_FETCH_FAILED
            at.error_msg = str(a.error)
        out.append(at)
    return out


def classify_provider_error(err: BaseException) -> tuple[str, str]:
    """Map a scrape failure to ``(error_code, error_msg)`` for a failed item."""
    pe = _find(err, ProviderError)
    if pe is not None:
        if pe.stage == STAGE_FETCH:
            return ERR_FETCH_FAILED, humanize_fetch_error(pe.provider, pe.cause)
        if pe.stage == STAGE_PARSE:
            return ERR_PARSE_FAILED, humanize_parse_error(pe.provider, pe.cause)
        return ERR_FETCH_FAILED, f"{pe.provider} 失败：{pe.cause}"
    return ERR_FETCH_FAILED, str(err)