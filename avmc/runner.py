"""End-to-end execution of one run (dry-run or apply) producing a :class:`RunReport`."""

from __future__ import annotations

import contextlib
import json
import os
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any
from urllib.parse import urlsplit

from .cache import CacheStore
from .config import EffectiveConfig
from .domain import (
    ERR_CONFIG_INVALID,
    ERR_FETCH_FAILED,
    ERR_IO_FAILED,
    ERR_MOVE_FAILED,
    ERR_PARSE_FAILED,
    ERR_TARGET_CONFLICT,
    ERR_UNMATCHED_CODE,
    FILE_STATUS_FAILED,
    FILE_STATUS_MOVED,
    FILE_STATUS_PLANNED,
    FILE_STATUS_ROLLED_BACK,
    STATUS_FAILED,
    STATUS_PROCESSED,
    STATUS_SKIPPED,
    STATUS_UNMATCHED,
    Code,
    FileResult,
    ItemPlan,
    ItemResult,
    MovePlan,
    MovieMeta,
    ProviderAttempt,
    RunReport,
    Unmatched,
    VideoFile,
    WorkItem,
)
from .fsx import PathTypeConflictError, rename, write_file_atomic_no_overwrite
from .grouping import group_by_code
from .http_client import HttpClient, new_image_client, new_meta_client
from .humanize import attempts_from_trace, classify_provider_error
from .imgx import poster_from_fanart_right_half_jpeg
from .nfo import encode as encode_nfo
from .observer import Observer
from .planner import plan_item, read_out_state
from .provider import STAGE_OK, Registry, ScrapeError, fetch_parse
from .scan import scan_videos


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class _Scraped:
    meta: MovieMeta
    provider_used: str
    website: str
    attempts: list[ProviderAttempt] = field(default_factory=list)


def _synthetic_failed(code: str, msg: str) -> ItemResult:
    return ItemResult(status=STATUS_FAILED, error_code=code, error_msg=msg)


def _unmatched_item(u: Unmatched) -> ItemResult:
    item = ItemResult(
        status=STATUS_UNMATCHED,
        error_code=ERR_UNMATCHED_CODE,
        files=[FileResult(src=u.file.rel_path, dst="", status=FILE_STATUS_FAILED)],
    )
    if u.kind == "ambiguous":
        item.candidates = list(u.candidates)
        item.error_msg = (
            f"解析到多个不同 CODE（ambiguous）：[{' '.join(item.candidates)}]"
            "；请重命名文件/目录使其只包含一个 CODE"
        )
    else:
        item.error_msg = "无法从文件名或父目录解析出 CODE；请确保文件名包含类似 CAWD-895 的片段"
    return item


def _failed_plan_item(
    provider_requested: str,
    work: WorkItem,
    files: list[VideoFile],
    abs_to_rel: dict[str, str],
    code: str,
    msg: str,
) -> ItemResult:
    out = ItemResult(
        code=work.code,
        provider_requested=provider_requested,
        status=STATUS_FAILED,
        error_code=code,
        error_msg=msg,
    )
    for idx in work.file_idx:
        if not 0 <= idx < len(files):
            continue
        f = files[idx]
        src = f.rel_path or abs_to_rel.get(f.abs_path, "")
        out.files.append(FileResult(src=src, dst="", status=FILE_STATUS_FAILED))
    return out


def _rel_or_abs(root: str, path: str) -> str:
    try:
        return os.path.relpath(path, root)
    except ValueError:
        return path


def _build_file_results(eff: EffectiveConfig, plan: ItemPlan, abs_to_rel: dict[str, str]) -> list[FileResult]:
    return [
        FileResult(
            src=abs_to_rel.get(mv.src_abs) or _rel_or_abs(eff.path, mv.src_abs),
            dst=_rel_or_abs(eff.path, mv.dst_abs),
            status=FILE_STATUS_PLANNED,
        )
        for mv in plan.moves
    ]


def _fail(item: ItemResult, code: str, msg: str) -> ItemResult:
    item.status = STATUS_FAILED
    item.error_code = code
    item.error_msg = msg
    for f in item.files:
        f.status = FILE_STATUS_FAILED
    return item


def _ensure_dir(directory: str) -> None:
    if os.path.exists(directory):
        if os.path.isdir(directory):
            return
        raise PathTypeConflictError(directory, "dir", "file")
    os.makedirs(directory, 0o755, exist_ok=True)


def _is_javbus_url(raw: str) -> bool:
    try:
        host = urlsplit(raw).netloc.strip().lower()
    except ValueError:
        return False
    return host == "javbus.com" or host.endswith(".javbus.com")


def _download(client: HttpClient | None, url: str, referer: str) -> bytes:
    if client is None:
        raise ValueError("image client 为空")
    headers: dict[str, str] = {}
    # JavBus images usually need the detail page as referer and the age cookie.
    if _is_javbus_url(url):
        if referer.strip():
            headers["Referer"] = referer
        headers["Cookie"] = "age=verified"
    with client.get(url, headers=headers) as resp:
        if resp.status_code < 200 or resp.status_code >= 300:
            raise ValueError(f"HTTP {resp.status_code}")
        return resp.content


def _scrape(
    store: CacheStore,
    registry: Registry,
    provider_requested: str,
    code: Code,
    client: Any,
    allow_write: bool,
) -> _Scraped:
    """Return cached metadata if present, else fetch and parse; raises :class:`ScrapeError`."""
    try:
        raw = store.read_provider_json(provider_requested, code)
    except (OSError, ValueError):
        raw = None
    if raw is not None:
        try:
            meta = MovieMeta.from_dict(json.loads(raw))
        except ValueError:
            meta = None  # a broken cache entry falls through to the network
        if meta is not None:
            return _Scraped(
                meta=meta,
                provider_used=provider_requested,
                website=meta.website,
                attempts=[ProviderAttempt(provider=provider_requested, stage=STAGE_OK)],
            )

    result = fetch_parse(registry, provider_requested, code, client)

    if allow_write and not store.read_only:
        with contextlib.suppress(OSError, ValueError):
            store.write_provider_html(result.provider_used, code, result.html)
        with contextlib.suppress(OSError, ValueError):
            payload = json.dumps(result.meta.to_dict(), ensure_ascii=False).encode("utf-8")
            store.write_provider_json(result.provider_used, code, payload)

    return _Scraped(
        meta=result.meta,
        provider_used=result.provider_used,
        website=result.website,
        attempts=attempts_from_trace(result.attempts),
    )


def _write_sidecar(out_dir: str, name: str, data: bytes, label: str) -> tuple[str, str] | None:
    """Write a sidecar without overwriting; return ``(error_code, msg)`` on failure."""
    try:
        write_file_atomic_no_overwrite(out_dir, name, data)
    except FileExistsError:
        return None  # already present counts as satisfied
    except PathTypeConflictError as e:
        return ERR_TARGET_CONFLICT, str(e)
    except OSError as e:
        return ERR_IO_FAILED, f"写入 {label} 失败：{e}"
    return None


def _rollback(item: ItemResult, moved: list[MovePlan]) -> None:
    for i in reversed(range(len(moved))):
        mv = moved[i]
        try:
            rename(mv.dst_abs, mv.src_abs)
        except OSError:
            item.files[i].status = FILE_STATUS_FAILED
        else:
            item.files[i].status = FILE_STATUS_ROLLED_BACK


def _exec_one(
    eff: EffectiveConfig,
    plan: ItemPlan,
    registry: Registry,
    meta_client: HttpClient,
    image_client: HttpClient | None,
    store: CacheStore,
    abs_to_rel: dict[str, str],
) -> ItemResult:
    item = ItemResult(
        code=plan.code,
        provider_requested=plan.provider_requested,
        status=STATUS_PROCESSED,
        files=_build_file_results(eff, plan, abs_to_rel),
    )
    need = plan.need

    if not (need.need_nfo or need.need_poster or need.need_fanart) and not plan.moves:
        item.status = STATUS_SKIPPED
        return item

    scraped: _Scraped | None = None
    if need.need_scrape:
        try:
            scraped = _scrape(store, registry, plan.provider_requested, plan.code, meta_client, eff.apply)
        except ScrapeError as e:
            item.attempts = attempts_from_trace(e.attempts)
            code, msg = classify_provider_error(e)
            return _fail(item, code, msg)
        item.attempts = scraped.attempts
        item.provider_used = scraped.provider_used
        item.website = scraped.website

    # Dry-run only validates fetch+parse: nothing is written, downloaded or moved.
    if not eff.apply:
        return item

    meta = scraped.meta if scraped is not None else MovieMeta()

    out_dir = os.path.join(eff.path, "out", plan.code)
    try:
        _ensure_dir(out_dir)
    except PathTypeConflictError as e:
        return _fail(item, ERR_TARGET_CONFLICT, str(e))
    except OSError as e:
        return _fail(item, ERR_IO_FAILED, str(e))

    if need.need_nfo:
        failure = _write_sidecar(out_dir, f"{plan.code}.nfo", encode_nfo(meta), "NFO")
        if failure is not None:
            return _fail(item, *failure)

    fanart_bytes = b""
    if need.need_fanart:
        if not meta.fanart_url.strip():
            return _fail(item, ERR_PARSE_FAILED, "provider 未提供 fanart_url，无法下载 fanart.jpg")
        try:
            fanart_bytes = _download(image_client, meta.fanart_url, meta.website)
        except (OSError, ValueError) as e:
            return _fail(item, ERR_FETCH_FAILED, f"下载 fanart 失败：{e}")
        failure = _write_sidecar(out_dir, "fanart.jpg", fanart_bytes, "fanart")
        if failure is not None:
            return _fail(item, *failure)

    # The poster is the right half of the fanart; the cover is never downloaded separately.
    if need.need_poster:
        src = fanart_bytes
        if not src:
            try:
                with open(os.path.join(out_dir, "fanart.jpg"), "rb") as fh:
                    src = fh.read()
            except OSError as e:
                return _fail(item, ERR_IO_FAILED, f"读取 fanart 失败，无法生成 poster：{e}")
        try:
            poster = poster_from_fanart_right_half_jpeg(src)
        except (OSError, ValueError) as e:
            return _fail(item, ERR_IO_FAILED, f"生成 poster 失败：{e}")
        failure = _write_sidecar(out_dir, "poster.jpg", poster, "poster")
        if failure is not None:
            return _fail(item, *failure)

    # Moving is always the last step; a failure rolls back what was already moved.
    moved: list[MovePlan] = []
    for i, mv in enumerate(plan.moves):
        try:
            rename(mv.src_abs, mv.dst_abs)
        except OSError as e:
            item.status = STATUS_FAILED
            item.error_code = ERR_MOVE_FAILED
            item.error_msg = str(e)
            item.files[i].status = FILE_STATUS_FAILED
            _rollback(item, moved)
            return item
        moved.append(mv)
        item.files[i].status = FILE_STATUS_MOVED

    return item


def execute(eff: EffectiveConfig, registry: Registry, observer: Observer | None = None) -> RunReport:
    """Run scan -> group -> plan -> execute and return the finalised report.

    Failures are reported per item wherever possible; one failing code does not
    stop the others.
    """
    if observer is not None:
        observer.on_start(eff)

    started = _now()
    report = RunReport(path=eff.path, dry_run=not eff.apply, started_at=started, finished_at=started)

    def finish() -> RunReport:
        report.finished_at = _now()
        report.finalize()
        return report

    try:
        meta_client = new_meta_client(eff.proxy_url)
    except ValueError as e:
        report.items.append(_synthetic_failed(ERR_CONFIG_INVALID, f"proxy.url 无效：{e}"))
        return finish()

    with contextlib.ExitStack() as stack:
        stack.callback(meta_client.close)

        image_client: HttpClient | None = None
        if eff.apply:
            try:
                image_client = new_image_client(eff.proxy_url, eff.image_proxy)
            except ValueError as e:
                report.items.append(_synthetic_failed(ERR_CONFIG_INVALID, str(e)))
                return finish()
            stack.callback(image_client.close)

        store = CacheStore(eff.path, not eff.apply)

        scan_started = time.monotonic()
        try:
            files = scan_videos(eff.path, eff.exclude_dirs)
        except Exception as e:
            report.items.append(_synthetic_failed(ERR_IO_FAILED, f"扫描失败：{e}"))
            return finish()
        scan_dur = time.monotonic() - scan_started

        abs_to_rel = {f.abs_path: f.rel_path for f in files}

        group_started = time.monotonic()
        try:
            work_items, unmatched = group_by_code(files)
        except Exception as e:
            report.items.append(_synthetic_failed(ERR_IO_FAILED, f"分组失败：{e}"))
            return finish()
        group_dur = time.monotonic() - group_started

        if observer is not None:
            observer.on_phase_done("scan", {"files": len(files), "unmatched": len(unmatched)}, scan_dur)
            observer.on_phase_done("group", {"codes": len(work_items)}, group_dur)

        report.items.extend(_unmatched_item(u) for u in unmatched)

        plan_started = time.monotonic()
        plans: list[ItemPlan] = []
        for work in work_items:
            try:
                state = read_out_state(eff.path, work.code)
            except Exception as e:
                report.items.append(
                    _failed_plan_item(
                        eff.provider, work, files, abs_to_rel, ERR_IO_FAILED, f"读取 out 状态失败：{e}"
                    )
                )
                continue
            try:
                plans.append(plan_item(eff.provider, files, work, state))
            except Exception as e:
                report.items.append(
                    _failed_plan_item(eff.provider, work, files, abs_to_rel, ERR_IO_FAILED, f"规划失败：{e}")
                )
        plan_dur = time.monotonic() - plan_started

        if observer is not None:
            observer.on_phase_done(
                "plan",
                {
                    "items": len(plans),
                    "need_scrape": sum(p.need.need_scrape for p in plans),
                    "need_nfo": sum(p.need.need_nfo for p in plans),
                    "need_fanart": sum(p.need.need_fanart for p in plans),
                    "need_poster": sum(p.need.need_poster for p in plans),
                    "moves": sum(len(p.moves) for p in plans),
                },
                plan_dur,
            )

        workers = max(1, eff.concurrency)
        if observer is not None:
            observer.on_phase_done("exec", {"workers": workers, "total_items": len(plans)}, 0.0)

        def run_one(plan: ItemPlan) -> tuple[ItemResult, float]:
            one_started = time.monotonic()
            res = _exec_one(eff, plan, registry, meta_client, image_client, store, abs_to_rel)
            return res, time.monotonic() - one_started

        with ThreadPoolExecutor(max_workers=workers) as pool:
            futures = {pool.submit(run_one, p): p.code for p in plans}
            for done, fut in enumerate(as_completed(futures), start=1):
                res, dur = fut.result()
                report.items.append(res)
                if observer is not None:
                    observer.on_item_done(done, len(plans), futures[fut], res, dur)

    return finish()