"""Extract and normalise a work code from a video file's name and parent directory."""

from __future__ import annotations

import os
import re

from .domain import Code, VideoFile, parse_code

KIND_NO_MATCH = "no_match"
KIND_AMBIGUOUS = "ambiguous"

# Letter part, at least one separator, digit part; the separator keeps noise
# such as "SAMPLE123" from being taken for a code.
_CANDIDATE_RE = re.compile(r"([a-z]{2,6})[\s._-]+([0-9]{2,5})", re.IGNORECASE | re.ASCII)


class UnmatchedCodeError(Exception):
    """No unique code could be found: ``kind`` is ``no_match`` or ``ambiguous``."""

    def __init__(self, kind: str, candidates: list[Code] | None = None) -> None:
        self.kind = kind
        self.candidates: list[Code] = list(candidates or [])
        super().__init__(self._message())

    def _message(self) -> str:
        if self.kind == KIND_NO_MATCH:
            return "无法从文件名或父目录解析出 CODE"
        if self.kind == KIND_AMBIGUOUS:
            return "解析到多个不同 CODE（ambiguous）：" + ", ".join(self.candidates)
        return "unmatched"


def _candidates(s: str) -> set[Code]:
    s = s.strip()
    found: set[Code] = set()
    if not s:
        return found
    for m in _CANDIDATE_RE.finditer(s):
        code = parse_code(m.group(1).upper() + "-" + m.group(2))
        if code is not None:
            found.add(code)
    return found


def extract(video: VideoFile) -> Code:
    """Return the unique code found in the file name and its parent directory name.

    Raises :class:`UnmatchedCodeError` when there is none or more than one.
    """
    parent = os.path.basename(os.path.dirname(video.abs_path))
    found = _candidates(video.base) | _candidates(parent)

    if not found:
        raise UnmatchedCodeError(KIND_NO_MATCH)
    if len(found) > 1:
        raise UnmatchedCodeError(KIND_AMBIGUOUS, sorted(found))
    return next(iter(found))