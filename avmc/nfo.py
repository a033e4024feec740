"""Generate NFO sidecar files with a stable structure."""

from __future__ import annotations

from .domain import MovieMeta

DEFAULT_COUNTRY = "JP"
DEFAULT_MPAA = "R18+"

_HEADER = '<?xml version="1.0" encoding="UTF-8" standalone="yes" ?>\n'
_INDENT = "  "

_ESCAPES = {
    '"': "&#34;",
    "'": "&#39;",
    "&": "&amp;",
    "<": "&lt;",
    ">": "&gt;",
    "\t": "&#x9;",
    "\n": "&#xA;",
    "\r": "&#xD;",
}


def _is_xml_char(cp: int) -> bool:
    return (
        cp in (0x09, 0x0A, 0x0D)
        or 0x20 <= cp <= 0xD7FF
        or 0xE000 <= cp <= 0xFFFD
        or 0x10000 <= cp <= 0x10FFFF
    )


def _escape(s: str) -> str:
    out = []
    for ch in s:
        esc = _ESCAPES.get(ch)
        if esc is not None:
            out.append(esc)
        elif _is_xml_char(ord(ch)):
            out.append(ch)
        else:
            out.append("\ufffd")
    return "".join(out)


def _norm_list(values: list[str]) -> list[str]:
    seen: set[str] = set()
    out: list[str] = []
    for s in values:
        s = s.strip()
        if s and s not in seen:
            seen.add(s)
            out.append(s)
    return out


def _element(name: str, value: object, depth: int = 1) -> str:
    return f"{_INDENT * depth}<{name}>{_escape(str(value))}</{name}>"


def encode(meta: MovieMeta) -> bytes:
    """Encode metadata as a Kodi/Jellyfin/Emby NFO (XML) document.

    Missing fields are omitted; lists are stripped and de-duplicated in input
    order; the title falls back to the code and is always prefixed by it.
    """
    code = meta.code.strip()
    title = meta.title.strip()
    if not title:
        title = code
    elif code and not title.startswith(code):
        title = f"{code} {title}"

    release = meta.release.strip()
    actors = _norm_list(meta.actors)
    tags = _norm_list(list(meta.tags) + list(meta.actors))
    genres = _norm_list(list(meta.genres) + list(meta.actors))

    lines = ["<movie>", _element("title", title), _element("sorttitle", code), _element("num", code)]

    optional = [
        ("studio", meta.studio.strip()),
        ("set", meta.series.strip()),
        ("release", release),
        ("premiered", release),
        ("year", meta.year),
        ("runtime", meta.runtime_m),
        ("mpaa", DEFAULT_MPAA),
        ("country", DEFAULT_COUNTRY),
        ("poster", "poster.jpg"),
        ("thumb", "poster.jpg"),
        ("fanart", "fanart.jpg"),
    ]
    lines.extend(_element(name, value) for name, value in optional if value)

    lines.extend(_element(name, 0) for name in ("rating", "userrating", "votes"))

    for actor in actors:
        lines.append(f"{_INDENT}<actor>")
        lines.append(_element("name", actor, 2))
        lines.append(_element("role", actor, 2))
        lines.append(f"{_INDENT}</actor>")
    lines.extend(_element("tag", t) for t in tags)
    lines.extend(_element("genre", g) for g in genres)

    for name, value in (("cover", meta.cover_url.strip()), ("website", meta.website.strip())):
        if value:
            lines.append(_element(name, value))

    lines.append("</movie>")
    return (_HEADER + "\n".join(lines)).encode("utf-8")