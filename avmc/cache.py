"""On-disk cache of provider pages and metadata under ``<path>/cache/``."""

from __future__ import annotations

import json
import os
import re

from .domain import Code
from .fsx import write_file_atomic_replace

_PROVIDER_NAME_RE = re.compile(r"[a-z0-9_]+")


class ReadOnlyCacheError(PermissionError):
    """A write was attempted on a read-only (dry-run) cache."""

    def __init__(self) -> None:
        super().__init__("cache: read-only")


def _clean_provider(provider: str) -> str:
    p = provider.strip().lower()
    if not p:
        raise ValueError("provider 不能为空")
    # provider names are an enum; this only guards against path traversal
    if not _PROVIDER_NAME_RE.fullmatch(p):
        raise ValueError(f"非法 provider：{json.dumps(p, ensure_ascii=False)}")
    return p


def _check_code(code: Code) -> None:
    if not code:
        raise ValueError("code 不能为空")


class CacheStore:
    """Provider cache files; reads are always allowed, writes only when not read-only."""

    def __init__(self, root: str, read_only: bool = False) -> None:
        self.root = os.path.normpath(root.strip())
        self.read_only = read_only

    def _dir(self, provider: str) -> str:
        return os.path.join(self.root, "cache", "providers", _clean_provider(provider))

    def _path(self, provider: str, code: Code, ext: str) -> str:
        directory = self._dir(provider)
        _check_code(code)
        return os.path.join(directory, f"{code}{ext}")

    def provider_html_path(self, provider: str, code: Code) -> str:
        return self._path(provider, code, ".html")

    def provider_json_path(self, provider: str, code: Code) -> str:
        return self._path(provider, code, ".json")

    @staticmethod
    def _read(path: str) -> bytes | None:
        try:
            with open(path, "rb") as fh:
                return fh.read()
        except FileNotFoundError:
            return None

    def read_provider_html(self, provider: str, code: Code) -> bytes | None:
        """Return the cached HTML, or ``None`` when absent."""
        return self._read(self.provider_html_path(provider, code))

    def read_provider_json(self, provider: str, code: Code) -> bytes | None:
        """Return the cached JSON, or ``None`` when absent."""
        return self._read(self.provider_json_path(provider, code))

    def _write(self, provider: str, code: Code, ext: str, data: bytes) -> None:
        if self.read_only:
            raise ReadOnlyCacheError()
        directory = self._dir(provider)
        _check_code(code)
        write_file_atomic_replace(directory, f"{code}{ext}", data)

    def write_provider_html(self, provider: str, code: Code, html: bytes) -> None:
        self._write(provider, code, ".html", html)

    def write_provider_json(self, provider: str, code: Code, data: bytes) -> None:
        self._write(provider, code, ".json", data)