"""Inspect ``out/<CODE>/`` and plan moves and sidecars for each work item."""

from __future__ import annotations

import os

from .domain import Code, ItemPlan, MovePlan, OutState, SidecarNeed, VideoFile, WorkItem


def _ext(name: str) -> str:
    idx = name.rfind(".")
    return name[idx:] if idx >= 0 else ""


def read_out_state(root: str, code: Code) -> OutState:
    """Read the names present in ``out/<CODE>/``; a missing directory is an empty state."""
    out_dir = os.path.join(root, "out", code)
    try:
        names = set(os.listdir(out_dir))
    except FileNotFoundError:
        return OutState(out_dir=out_dir)

    return OutState(
        out_dir=out_dir,
        has_nfo=f"{code}.nfo" in names,
        has_poster="poster.jpg" in names,
        has_fanart="fanart.jpg" in names,
        existing_names=names,
    )


def _alloc_name(name: str, used: set[str]) -> str:
    if name not in used:
        return name
    ext = _ext(name)
    base = name[: len(name) - len(ext)]
    n = 2
    while True:
        candidate = f"{base}__{n}{ext}"
        if candidate not in used:
            return candidate
        n += 1


def plan_item(
    provider_requested: str,
    files: list[VideoFile],
    item: WorkItem,
    state: OutState,
) -> ItemPlan:
    """Build a deterministic plan for one work item without touching the filesystem."""
    used = set(state.existing_names)
    moves: list[MovePlan] = []
    for idx in item.file_idx:
        if not 0 <= idx < len(files):
            raise ValueError(f"非法 file index：{idx}")
        src_abs = files[idx].abs_path
        dst_name = _alloc_name(os.path.basename(src_abs), used)
        used.add(dst_name)
        moves.append(MovePlan(src_abs=src_abs, dst_abs=os.path.join(state.out_dir, dst_name)))

    need_nfo = not state.has_nfo
    need_poster = not state.has_poster
    need_fanart = not state.has_fanart
    return ItemPlan(
        code=item.code,
        provider_requested=provider_requested,
        moves=moves,
        need=SidecarNeed(
            # the poster is cut from the fanart, so it alone never requires scraping
            need_scrape=need_nfo or need_fanart,
            need_nfo=need_nfo,
            need_poster=need_poster,
            need_fanart=need_fanart,
        ),
    )


def sort_plans(plans: list[ItemPlan]) -> None:
    """Sort plans in place by code."""
    plans.sort(key=lambda p: p.code)