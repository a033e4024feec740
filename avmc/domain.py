"""Core data structures and invariants shared by every stage of a run (no IO)."""

from __future__ import annotations

import json
import re
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any

Code = str
"""A normalised work code such as ``CAWD-895``."""

_CODE_RE = re.compile(r"[A-Z]{2,6}-[0-9]{2,5}")

STATUS_PROCESSED = "processed"
STATUS_SKIPPED = "skipped"
STATUS_FAILED = "failed"
STATUS_UNMATCHED = "unmatched"

FILE_STATUS_PLANNED = "planned"
FILE_STATUS_MOVED = "moved"
FILE_STATUS_ROLLED_BACK = "rolled_back"
FILE_STATUS_FAILED = "failed"

ERR_UNMATCHED_CODE = "unmatched_code"
ERR_FETCH_FAILED = "fetch_failed"
ERR_PARSE_FAILED = "parse_failed"
ERR_TARGET_CONFLICT = "target_conflict"
ERR_IO_FAILED = "io_failed"
ERR_MOVE_FAILED = "move_failed"
ERR_CONFIG_NOT_FOUND = "config_not_found"
ERR_CONFIG_INVALID = "config_invalid"
ERR_CONFIG_MISSING_PATH = "config_missing_path"


def parse_code(s: str) -> Code | None:
    """Validate an already normalised code (upper case, ``-`` separated).

    Returns the code, or ``None`` when the string is not a valid code.
    """
    s = s.strip()
    if not _CODE_RE.fullmatch(s):
        return None
    return s


@dataclass
class MovieMeta:
    """Structured metadata parsed from a provider detail page."""

    code: Code = ""
    title: str = ""
    studio: str = ""
    series: str = ""
    release: str = ""
    year: int = 0
    runtime_m: int = 0
    actors: list[str] = field(default_factory=list)
    genres: list[str] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)
    website: str = ""
    cover_url: str = ""
    fanart_url: str = ""

    def to_dict(self) -> dict[str, Any]:
        """Return the cache representation of the metadata."""
        return {
            "Code": self.code,
            "Title": self.title,
            "Studio": self.studio,
            "Series": self.series,
            "Release": self.release,
            "Year": self.year,
            "RuntimeM": self.runtime_m,
            "Actors": list(self.actors),
            "Genres": list(self.genres),
            "Tags": list(self.tags),
            "Website": self.website,
            "CoverURL": self.cover_url,
            "FanartURL": self.fanart_url,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MovieMeta:
        """Build metadata from its cache representation."""
        if not isinstance(data, dict):
            raise ValueError("movie metadata must be a JSON object")

        def text(key: str) -> str:
            v = data.get(key)
            return v if isinstance(v, str) else ""

        def number(key: str) -> int:
            v = data.get(key)
            if v is None:
                return 0
            if isinstance(v, bool) or not isinstance(v, (int, float)):
                raise ValueError(f"{key} must be a number")
            return int(v)

        def strings(key: str) -> list[str]:
            v = data.get(key)
            if v is None:
                return []
            if not isinstance(v, list) or not all(isinstance(x, str) for x in v):
                raise ValueError(f"{key} must be a list of strings")
            return list(v)

        return cls(
            code=text("Code"),
            title=text("Title"),
            studio=text("Studio"),
            series=text("Series"),
            release=text("Release"),
            year=number("Year"),
            runtime_m=number("RuntimeM"),
            actors=strings("Actors"),
            genres=strings("Genres"),
            tags=strings("Tags"),
            website=text("Website"),
            cover_url=text("CoverURL"),
            fanart_url=text("FanartURL"),
        )


@dataclass
class OutState:
    """What already exists in ``out/<CODE>/``."""

    out_dir: str
    has_nfo: bool = False
    has_poster: bool = False
    has_fanart: bool = False
    existing_names: set[str] = field(default_factory=set)


@dataclass
class MovePlan:
    src_abs: str
    dst_abs: str


@dataclass
class SidecarNeed:
    need_scrape: bool = False
    need_nfo: bool = False
    need_poster: bool = False
    need_fanart: bool = False


@dataclass
class ItemPlan:
    """The minimal execution plan for one code."""

    code: Code
    provider_requested: str
    moves: list[MovePlan] = field(default_factory=list)
    need: SidecarNeed = field(default_factory=SidecarNeed)


@dataclass
class ReportSummary:
    processed: int = 0
    skipped: int = 0
    failed: int = 0
    unmatched: int = 0


@dataclass
class ProviderAttempt:
    """One provider attempt; error fields are empty when ``stage == "ok"``."""

    provider: str = ""
    stage: str = ""
    error_code: str = ""
    error_msg: str = ""


@dataclass
class FileResult:
    src: str = ""
    dst: str = ""
    status: str = ""


@dataclass
class ItemResult:
    code: str = ""
    provider_requested: str = ""
    provider_used: str = ""
    website: str = ""
    status: str = ""
    error_code: str = ""
    error_msg: str = ""
    attempts: list[ProviderAttempt] = field(default_factory=list)
    candidates: list[str] = field(default_factory=list)
    files: list[FileResult] = field(default_factory=list)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _to_utc(dt: datetime) -> datetime:
    return dt.astimezone(timezone.utc)


def _format_time(dt: datetime) -> str:
    """RFC 3339 with fractional seconds trimmed; naive values are taken as UTC."""
    text = (
        f"{dt.year:04d}-{dt.month:02d}-{dt.day:02d}"
        f"T{dt.hour:02d}:{dt.minute:02d}:{dt.second:02d}"
    )
    if dt.microsecond:
        text += f".{dt.microsecond:06d}".rstrip("0")
    offset = dt.utcoffset()
    if offset is None or not offset:
        return text + "Z"
    total = int(offset.total_seconds())
    sign = "+" if total >= 0 else "-"
    total = abs(total)
    return f"{text}{sign}{total // 3600:02d}:{(total % 3600) // 60:02d}"


@dataclass
class RunReport:
    """The stable externally visible result of a run."""

    path: str = ""
    dry_run: bool = True
    started_at: datetime = field(default_factory=_utc_now)
    finished_at: datetime = field(default_factory=_utc_now)
    summary: ReportSummary = field(default_factory=ReportSummary)
    items: list[ItemResult] = field(default_factory=list)

    def finalize(self) -> None:
        """Normalise times to UTC, sort items (empty code last) and recount the summary."""
        self.started_at = _to_utc(self.started_at)
        self.finished_at = _to_utc(self.finished_at)

        self.items.sort(key=lambda it: (it.code == "", it.code))

        summary = ReportSummary()
        for it in self.items:
            if it.status == STATUS_PROCESSED:
                summary.processed += 1
            elif it.status == STATUS_SKIPPED:
                summary.skipped += 1
            elif it.status == STATUS_FAILED:
                summary.failed += 1
            elif it.status == STATUS_UNMATCHED:
                summary.unmatched += 1
        self.summary = summary

    def to_dict(self) -> dict[str, Any]:
        return {
            "path": self.path,
            "dry_run": self.dry_run,
            "started_at": _format_time(self.started_at),
            "finished_at": _format_time(self.finished_at),
            "summary": asdict(self.summary),
            "items": [asdict(it) for it in self.items],
        }

    def to_json(self, indent: int | None = None) -> str:
        """Serialise the report; compact unless ``indent`` is given."""
        if indent is None:
            return json.dumps(self.to_dict(), ensure_ascii=False, separators=(",", ":"))
        return json.dumps(self.to_dict(), ensure_ascii=False, indent=indent)


@dataclass
class VideoFile:
    """A scanned video file (stat only, never read)."""

    abs_path: str
    rel_path: str
    base: str
    ext: str = ""
    size: int = 0
    mod_unix: int = 0


@dataclass
class Unmatched:
    """An input file from which no unique code could be extracted."""

    file: VideoFile
    kind: str
    candidates: list[Code] = field(default_factory=list)


@dataclass
class WorkItem:
    """Files grouped under one code; holds indices into the scanned file list."""

    code: Code
    file_idx: list[int] = field(default_factory=list)