"""Read ``avmc.json`` and merge it with command-line arguments into the effective configuration."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urlsplit

ERR_NOT_FOUND = "config_not_found"
ERR_INVALID = "config_invalid"
ERR_MISSING_PATH = "config_missing_path"

DEFAULT_PROVIDER = "javbus"
DEFAULT_CONCURRENCY = 4
MIN_CONCURRENCY = 1
MAX_CONCURRENCY = 32

CONFIG_FILE_NAME = "avmc.json"

_PROVIDERS = ("javbus", "javdb")


def _quote(s: str) -> str:
    return json.dumps(s, ensure_ascii=False)


@dataclass
class CLIArgs:
    """The command-line inputs, remembering whether each one was given explicitly."""

    path: str = ""
    provider: str = ""
    provider_set: bool = False
    apply: bool = False
    apply_set: bool = False


@dataclass
class FileConfig:
    """The contents of ``avmc.json``."""

    path: str = ""
    provider: str = ""
    apply: bool | None = None
    concurrency: int = 0
    proxy_url: str = ""
    image_proxy: bool = False
    exclude_dirs: list[str] = field(default_factory=list)
    javdb_base_url: str = ""


@dataclass
class EffectiveConfig:
    """The merged, normalised configuration a run consumes directly."""

    path: str = ""
    provider: str = DEFAULT_PROVIDER
    apply: bool = False
    concurrency: int = DEFAULT_CONCURRENCY
    proxy_url: str = ""
    image_proxy: bool = False
    exclude_dirs: list[str] = field(default_factory=list)
    javdb_base_url: str = ""


class ConfigError(Exception):
    """A configuration failure carrying a stable error code."""

    def __init__(self, code: str, path: str, cause: BaseException | str | None = None) -> None:
        self.code = code
        self.path = path
        self.cause = cause
        super().__init__(self._message())

    def _message(self) -> str:
        if self.code == ERR_NOT_FOUND:
            return f"{self.code}：未找到配置文件 {_quote(self.path)}"
        if self.code == ERR_MISSING_PATH:
            return f"{self.code}：配置文件 {_quote(self.path)} 缺少必填字段 path"
        if self.code == ERR_INVALID:
            if self.cause is not None:
                return f"{self.code}：配置文件 {_quote(self.path)} 无效：{self.cause}"
            return f"{self.code}：配置文件 {_quote(self.path)} 无效"
        if self.cause is not None:
            return f"{self.code}：{self.cause}"
        return self.code


def error_code(err: BaseException | None) -> str:
    """Return the configuration error code found in ``err`` or its causes, else ``""``."""
    seen: set[int] = set()
    while err is not None and id(err) not in seen:
        if isinstance(err, ConfigError):
            return err.code
        seen.add(id(err))
        err = err.__cause__ or err.__context__
    return ""


def _parse_url(raw: str):
    """Parse a URL strictly enough to reject malformed hosts and ports."""
    u = urlsplit(raw)
    _ = u.port  # raises ValueError on a malformed port
    return u


def _lookup(data: dict[str, Any], key: str) -> Any:
    if key in data:
        return data[key]
    for k, v in data.items():
        if isinstance(k, str) and k.lower() == key:
            return v
    return None


def _file_config_from_json(data: Any) -> FileConfig:
    if data is None:
        return FileConfig()
    if not isinstance(data, dict):
        raise ValueError("配置文件必须是 JSON 对象")

    def text(key: str) -> str:
        v = _lookup(data, key)
        if v is None:
            return ""
        if not isinstance(v, str):
            raise ValueError(f"{key} 必须是字符串")
        return v

    def flag(key: str) -> bool | None:
        v = _lookup(data, key)
        if v is None:
            return None
        if not isinstance(v, bool):
            raise ValueError(f"{key} 必须是布尔值")
        return v

    concurrency = _lookup(data, "concurrency")
    if concurrency is None:
        concurrency = 0
    elif isinstance(concurrency, bool) or not isinstance(concurrency, int):
        raise ValueError("concurrency 必须是整数")

    proxy = _lookup(data, "proxy")
    proxy_url = ""
    if proxy is not None:
        if not isinstance(proxy, dict):
            raise ValueError("proxy 必须是对象")
        raw = _lookup(proxy, "url")
        if raw is not None and not isinstance(raw, str):
            raise ValueError("proxy.url 必须是字符串")
        proxy_url = raw or ""

    exclude = _lookup(data, "exclude_dirs")
    exclude_dirs: list[str] = []
    if exclude is not None:
        if not isinstance(exclude, list):
            raise ValueError("exclude_dirs 必须是字符串数组")
        for x in exclude:
            if x is not None and not isinstance(x, str):
                raise ValueError("exclude_dirs 必须是字符串数组")
            exclude_dirs.append(x or "")

    return FileConfig(
        path=text("path"),
        provider=text("provider"),
        apply=flag("apply"),
        concurrency=concurrency,
        proxy_url=proxy_url,
        image_proxy=bool(flag("image_proxy")),
        exclude_dirs=exclude_dirs,
        javdb_base_url=text("javdb_base_url"),
    )


def _read_file_config(path: str) -> FileConfig | None:
    """Read and parse a config file; ``None`` means it does not exist."""
    try:
        with open(path, "rb") as fh:
            raw = fh.read()
    except FileNotFoundError:
        return None
    except OSError as e:
        raise ConfigError(ERR_INVALID, path, e) from e
    try:
        return _file_config_from_json(json.loads(raw))
    except ValueError as e:
        raise ConfigError(ERR_INVALID, path, e) from e


def _abs_clean_from(base: str, p: str) -> str:
    p = os.path.normpath(p.strip())
    if os.path.isabs(p):
        return p
    return os.path.normpath(os.path.join(base, p))


def _validate_provider(p: str) -> None:
    if p in _PROVIDERS:
        return
    if p == "":
        raise ValueError("provider 不能为空")
    raise ValueError(f"provider 只能是 javbus 或 javdb，实际是 {_quote(p)}")


def _merge(abs_path: str, cli: CLIArgs, fc: FileConfig, cfg_path: str) -> EffectiveConfig:
    provider = DEFAULT_PROVIDER
    if cli.provider_set:
        provider = cli.provider
    elif fc.provider.strip():
        provider = fc.provider
    try:
        _validate_provider(provider)
    except ValueError as e:
        raise ConfigError(ERR_INVALID, cfg_path, e) from e

    apply = False
    if cli.apply_set:
        apply = cli.apply
    elif fc.apply is not None:
        apply = fc.apply

    concurrency = fc.concurrency or DEFAULT_CONCURRENCY
    concurrency = max(MIN_CONCURRENCY, min(MAX_CONCURRENCY, concurrency))

    proxy_url = fc.proxy_url.strip()
    if proxy_url:
        try:
            _parse_url(proxy_url)
        except ValueError as e:
            raise ConfigError(ERR_INVALID, cfg_path, f"proxy.url 无效：{e}") from e
    if fc.image_proxy and not proxy_url:
        raise ConfigError(ERR_INVALID, cfg_path, "image_proxy=true 但 proxy.url 为空")

    javdb_base_url = fc.javdb_base_url.strip()
    if javdb_base_url:
        try:
            u = _parse_url(javdb_base_url)
        except ValueError:
            u = None
        if u is None or not u.scheme or not u.netloc:
            raise ConfigError(ERR_INVALID, cfg_path, f"javdb_base_url 无效：{_quote(javdb_base_url)}")
        if u.scheme not in ("http", "https"):
            raise ConfigError(
                ERR_INVALID, cfg_path, f"javdb_base_url 必须是 http/https：{_quote(javdb_base_url)}"
            )

    return EffectiveConfig(
        path=abs_path,
        provider=provider,
        apply=apply,
        concurrency=concurrency,
        proxy_url=proxy_url,
        image_proxy=fc.image_proxy,
        exclude_dirs=list(fc.exclude_dirs),
        javdb_base_url=javdb_base_url,
    )


def load_effective(cwd: str, cli: CLIArgs | None = None) -> EffectiveConfig:
    """Discover the config file, read it and merge it with the CLI arguments.

    With a CLI path, ``<path>/avmc.json`` is optional. Without one,
    ``<cwd>/avmc.json`` must exist and must name a path.
    Precedence: CLI over config over built-in defaults.
    Raises :class:`ConfigError` on failure.
    """
    cli = cli or CLIArgs()
    cwd_abs = os.path.abspath(cwd)

    if cli.path.strip():
        abs_path = _abs_clean_from(cwd_abs, cli.path)
        cfg_path = os.path.join(abs_path, CONFIG_FILE_NAME)
        fc = _read_file_config(cfg_path) or FileConfig()
        return _merge(abs_path, cli, fc, cfg_path)

    cfg_path = os.path.join(cwd_abs, CONFIG_FILE_NAME)
    fc = _read_file_config(cfg_path)
    if fc is None:
        raise ConfigError(ERR_NOT_FOUND, cfg_path, FileNotFoundError(cfg_path))
    if not fc.path.strip():
        raise ConfigError(ERR_MISSING_PATH, cfg_path)
    return _merge(_abs_clean_from(cwd_abs, fc.path), cli, fc, cfg_path)