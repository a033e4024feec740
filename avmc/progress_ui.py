"""Compact progress output for interactive terminals, driven by run events."""

from __future__ import annotations

import json
import os
import threading
import time
from collections.abc import Mapping, Sequence
from datetime import datetime
from typing import Any, TextIO
from urllib.parse import urlsplit

from .config import EffectiveConfig
from .domain import (
    STATUS_FAILED,
    STATUS_PROCESSED,
    STATUS_SKIPPED,
    ItemResult,
    ProviderAttempt,
)
from .observer import Observer

DEFAULT_KEEPALIVE_THRESHOLD = 6.0
DEFAULT_TICKER_INTERVAL = 2.0


def provider_chain(requested: str) -> str:
    """Describe the provider order actually tried for ``requested``."""
    if requested.strip().lower() == "javdb":
        return "javdb -> javbus"
    return "javbus -> javdb"


def truncate(s: str, limit: int) -> str:
    """Strip ``s`` and shorten it to ``limit`` characters, ending in ``...`` when cut."""
    s = s.strip()
    if limit <= 0 or len(s) <= limit:
        return s
    if limit <= 3:
        return s[:limit]
    return s[: limit - 3] + "..."


def format_proxy(raw: str) -> str:
    """Describe a proxy URL without revealing its credentials."""
    raw = raw.strip()
    if not raw:
        return "off"
    try:
        u = urlsplit(raw)
    except ValueError:
        u = None
    if u is None or not u.scheme or not u.netloc:
        return f"on ({truncate(raw, 120)})"
    _, at, host = u.netloc.rpartition("@")
    auth = "on" if at else "off"
    if not host:
        return f"on ({truncate(raw, 120)})"
    return f"on ({u.scheme}://{host}, auth={auth})"


def format_string_list_json(values: Sequence[str] | None) -> str:
    return json.dumps(list(values or []), ensure_ascii=False, separators=(",", ":"))


def format_fallback_note(result: ItemResult) -> str:
    """Explain why the requested provider was not the one used, or return ``""``."""
    req = result.provider_requested.strip().lower()
    used = result.provider_used.strip().lower()
    if not req or not used or req == used:
        return ""
    for a in result.attempts:
        if a.provider.strip().lower() != req or not a.error_code.strip():
            continue
        msg = a.error_msg.strip()
        msg = f"{a.error_code}: {msg}" if msg else a.error_code
        return f" fallback({req} {truncate(msg, 90)})"
    return f" fallback({req})"


def format_attempt_chain(attempts: Sequence[ProviderAttempt], limit: int) -> str:
    """Join attempts as ``provider:stage[:code][:msg]``; ``limit < 0`` means all."""
    if not attempts or limit == 0:
        return ""
    if limit < 0:
        limit = len(attempts)
    parts: list[str] = []
    for a in attempts[:limit]:
        s = f"{a.provider.strip()}:{a.stage.strip()}"
        code = a.error_code.strip()
        msg = a.error_msg.strip()
        if code:
            s += ":" + code
        if msg:
            s += ":" + truncate(msg, 80)
        parts.append(s)
    return ";".join(parts)


def format_short_duration(seconds: float) -> str:
    return f"{max(0.0, seconds):.1f}s"


def format_elapsed(seconds: float) -> str:
    sec = int(max(0.0, seconds))
    return f"{sec // 3600:02d}:{sec % 3600 // 60:02d}:{sec % 60:02d}"


def int_field(fields: Mapping[str, Any] | None, key: str) -> int:
    """Return ``fields[key]`` if it is an integer, else 0."""
    if not fields:
        return 0
    v = fields.get(key)
    if isinstance(v, int) and not isinstance(v, bool):
        return v
    return 0


class ProgressUI(Observer):
    """Writes run progress to a terminal stream, with a keepalive line during long waits."""

    def __init__(self, stream: TextIO) -> None:
        self.stream = stream
        self.keepalive_threshold = DEFAULT_KEEPALIVE_THRESHOLD
        self.ticker_interval = DEFAULT_TICKER_INTERVAL

        self._lock = threading.Lock()
        self._started_at: float | None = None
        self._last_printed = time.monotonic()
        self._workers = 0
        self._total = 0
        self._done = 0
        self._ok = 0
        self._fail = 0
        self._skip = 0
        self._stop = threading.Event()
        self._ticker: threading.Thread | None = None

    def _write(self, text: str) -> None:
        self.stream.write(text)
        self.stream.flush()

    def on_start(self, eff: EffectiveConfig) -> None:
        with self._lock:
            if self._started_at is None:
                self._started_at = time.monotonic()
            mode, hint = ("apply", "") if eff.apply else ("dry-run", " (不写入/不下载/不移动)")
            image_proxy = "on" if eff.image_proxy else "off"
            lines = [
                f"[{datetime.now().strftime('%H:%M:%S')}] AVMC run ({mode})",
                "配置（生效）:",
                f"  path: {eff.path}",
                f"  mode: {mode}{hint}",
                f"  provider: {provider_chain(eff.provider)}",
                f"  concurrency: {eff.concurrency}",
                f"  proxy: {format_proxy(eff.proxy_url)}",
                f"  image_proxy: {image_proxy}",
            ]
            if eff.javdb_base_url.strip():
                lines.append(f"  javdb_base_url: {truncate(eff.javdb_base_url, 120)}")
            lines.append(f"  exclude_dirs: {format_string_list_json(eff.exclude_dirs)} + 固定排除 out/, cache/")
            lines.append("输出:")
            lines.append(f"  out: {os.path.join(eff.path, 'out')}")
            lines.append(f"  cache: {os.path.join(eff.path, 'cache')}")
            if eff.apply:
                lines.append(f"  report: {os.path.join(eff.path, 'cache', 'report.json')}")
            self._write("\n".join(lines) + "\n\n")
            self._last_printed = time.monotonic()

    def on_phase_done(self, name: str, fields: Mapping[str, Any], duration: float) -> None:
        with self._lock:
            d = format_short_duration(duration)
            if name == "scan":
                self._write(
                    f"扫描: files={int_field(fields, 'files')} unmatched={int_field(fields, 'unmatched')} ({d})\n"
                )
            elif name == "group":
                self._write(f"分组: codes={int_field(fields, 'codes')} ({d})\n")
            elif name == "plan":
                self._write(
                    f"规划: items={int_field(fields, 'items')}"
                    f" need_scrape={int_field(fields, 'need_scrape')}"
                    f" need_nfo={int_field(fields, 'need_nfo')}"
                    f" need_fanart={int_field(fields, 'need_fanart')}"
                    f" need_poster={int_field(fields, 'need_poster')}"
                    f" moves={int_field(fields, 'moves')} ({d})\n"
                )
            elif name == "exec":
                self._workers = int_field(fields, "workers")
                self._total = int_field(fields, "total_items")
                self._write(f"执行: workers={self._workers} total_items={self._total}\n\n")
                if self._total > 0 and self._ticker is None:
                    self._start_ticker()
            else:
                self._write(f"{name} ({d})\n")
            self._last_printed = time.monotonic()

    def on_item_done(self, idx: int, total: int, code: str, result: ItemResult, duration: float) -> None:
        with self._lock:
            self._done = idx
            self._total = total
            status = result.status
            if status == STATUS_PROCESSED:
                self._ok += 1
                label = "OK"
            elif status == STATUS_FAILED:
                self._fail += 1
                label = "FAIL"
            elif status == STATUS_SKIPPED:
                self._skip += 1
                label = "SKIP"
            else:
                label = status.upper()

            prov = result.provider_used.strip() or result.provider_requested.strip()
            d = format_short_duration(duration)
            head = f"[{idx}/{total}] {code} {label}"

            if status == STATUS_FAILED:
                chain = format_attempt_chain(result.attempts, 1)
                if chain:
                    chain = " attempts=" + chain
                line = f"{head} {result.error_code}: {truncate(result.error_msg, 160)}{chain} ({d})"
            elif status == STATUS_SKIPPED:
                line = f"{head} (已完整，无需刮削/移动) ({d})"
            elif prov:
                note = format_fallback_note(result) if status == STATUS_PROCESSED else ""
                line = f"{head} provider={prov} move={len(result.files)}{note} ({d})"
            else:
                line = f"{head} move={len(result.files)} ({d})"
            self._write(line + "\n")
            self._last_printed = time.monotonic()

            # The last item stops the keepalive so nothing follows the final output.
            if self._done >= self._total:
                self._stop.set()

    def on_progress(
        self,
        done: int,
        total: int,
        ok: int,
        fail: int,
        skip: int,
        active: int,
        active_codes: Sequence[str],
        elapsed: float,
    ) -> None:
        with self._lock:
            self._write_progress(done, total, ok, fail, skip, active, elapsed)

    def _write_progress(self, done: int, total: int, ok: int, fail: int, skip: int, active: int, elapsed: float) -> None:
        self._write(
            f"进度: done={done}/{total} ok={ok} fail={fail} skip={skip}"
            f" active={active} elapsed={format_elapsed(elapsed)}\n"
        )
        self._last_printed = time.monotonic()

    def _start_ticker(self) -> None:
        self._stop.clear()
        self._ticker = threading.Thread(target=self._tick, name="avmc-progress", daemon=True)
        self._ticker.start()

    def _tick(self) -> None:
        interval = self.ticker_interval if self.ticker_interval > 0 else DEFAULT_TICKER_INTERVAL
        threshold = self.keepalive_threshold if self.keepalive_threshold > 0 else DEFAULT_KEEPALIVE_THRESHOLD
        while not self._stop.wait(interval):
            with self._lock:
                if self._total > 0 and self._done >= self._total:
                    return
                now = time.monotonic()
                if self._total > 0 and now - self._last_printed > threshold:
                    active = min(self._workers, self._total - self._done)
                    started = self._started_at if self._started_at is not None else now
                    self._write_progress(
                        self._done, self._total, self._ok, self._fail, self._skip, active, now - started
                    )

    def close(self) -> None:
        """Stop the keepalive thread, if one is running."""
        self._stop.set()
        ticker = self._ticker
        if ticker is not None:
            ticker.join()
            self._ticker = None

    def __enter__(self) -> ProgressUI:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()