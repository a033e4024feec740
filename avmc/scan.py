"""Walk a directory tree and collect candidate video files."""

from __future__ import annotations

import os
from collections.abc import Iterable, Iterator

from .domain import VideoFile

_VIDEO_EXTS = frozenset({".mp4", ".mkv", ".avi"})


def _ext(name: str) -> str:
    idx = name.rfind(".")
    return name[idx:] if idx >= 0 else ""


def _build_excluded(root: str, exclude_dirs: Iterable[str]) -> list[str]:
    excluded = [
        os.path.normpath(os.path.join(root, "out")),
        os.path.normpath(os.path.join(root, "cache")),
    ]
    for x in exclude_dirs:
        x = x.strip()
        if not x:
            continue
        if os.path.isabs(x):
            excluded.append(os.path.normpath(x))
        else:
            excluded.append(os.path.normpath(os.path.join(root, x)))
    return sorted(excluded)


def _is_under(path: str, base: str) -> bool:
    return path == base or path.startswith(base + os.sep)


def _is_excluded(path: str, excluded: list[str]) -> bool:
    path = os.path.normpath(path)
    return any(_is_under(path, base) for base in excluded)


def _walk(directory: str, excluded: list[str]) -> Iterator[os.DirEntry]:
    with os.scandir(directory) as it:
        entries = sorted(it, key=lambda e: e.name)
    for entry in entries:
        if _is_excluded(entry.path, excluded):
            continue
        if entry.is_dir(follow_symlinks=False):
            yield from _walk(entry.path, excluded)
        else:
            yield entry


def scan_videos(root: str, exclude_dirs: Iterable[str] | None = None) -> list[VideoFile]:
    """Return the video files under ``root``, sorted by relative path.

    ``out/`` and ``cache/`` under the root are always excluded; ``exclude_dirs``
    are taken relative to the root unless absolute. Files are only stat'ed.
    """
    root = os.path.normpath(root)
    excluded = _build_excluded(root, exclude_dirs or ())
    if _is_excluded(root, excluded):
        return []

    files: list[VideoFile] = []
    for entry in _walk(root, excluded):
        name = entry.name
        raw_ext = _ext(name)
        ext = raw_ext.lower()
        if ext not in _VIDEO_EXTS:
            continue
        st = entry.stat(follow_symlinks=False)
        files.append(
            VideoFile(
                abs_path=entry.path,
                rel_path=os.path.relpath(entry.path, root),
                base=name[: len(name) - len(raw_ext)],
                ext=ext,
                size=st.st_size,
                mod_unix=int(st.st_mtime),
            )
        )

    files.sort(key=lambda f: f.rel_path)
    return files