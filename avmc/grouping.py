"""Group scanned video files into work items by code."""

from __future__ import annotations

from .codes import UnmatchedCodeError, extract
from .domain import Code, Unmatched, VideoFile, WorkItem


def group_by_code(files: list[VideoFile]) -> tuple[list[WorkItem], list[Unmatched]]:
    """Group files by extracted code.

    Items are sorted by code; file indices inside an item are sorted by relative path.
    Files without a unique code are returned as unmatched entries.
    """
    by_code: dict[Code, WorkItem] = {}
    unmatched: list[Unmatched] = []

    for i, f in enumerate(files):
        try:
            code = extract(f)
        except UnmatchedCodeError as e:
            unmatched.append(Unmatched(file=f, kind=e.kind, candidates=list(e.candidates)))
            continue
        by_code.setdefault(code, WorkItem(code=code)).file_idx.append(i)

    items = sorted(by_code.values(), key=lambda it: it.code)
    for it in items:
        it.file_idx.sort(key=lambda idx: files[idx].rel_path)
    return items, unmatched