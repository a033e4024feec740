import json
import os

import pytest

from avmc.config import (
    DEFAULT_PROVIDER,
    ERR_INVALID,
    ERR_MISSING_PATH,
    ERR_NOT_FOUND,
    CLIArgs,
    ConfigError,
    error_code,
    load_effective,
)


def write_config(directory, content):
    (directory / "avmc.json").write_text(content, encoding="utf-8")


def load_error(cwd, cli=None):
    with pytest.raises(ConfigError) as info:
        load_effective(str(cwd), cli or CLIArgs())
    return info.value


def test_config_not_found(tmp_path):
    err = load_error(tmp_path)
    assert error_code(err) == ERR_NOT_FOUND
    assert err.code == ERR_NOT_FOUND


def test_config_missing_path(tmp_path):
    write_config(tmp_path, '{"provider":"javdb"}')
    assert error_code(load_error(tmp_path)) == ERR_MISSING_PATH


def test_apply_cli_override(tmp_path):
    write_config(tmp_path, '{"path":"videos","apply":true}')
    eff = load_effective(str(tmp_path), CLIArgs(apply=False, apply_set=True))
    assert eff.apply is False
    assert eff.path == os.path.join(str(tmp_path), "videos")


def test_apply_from_config_when_cli_unset(tmp_path):
    write_config(tmp_path, '{"path":"videos","apply":true}')
    eff = load_effective(str(tmp_path), CLIArgs())
    assert eff.apply is True


def test_provider_merge_order(tmp_path):
    write_config(tmp_path, '{"path":"p","provider":"javdb"}')
    assert load_effective(str(tmp_path), CLIArgs()).provider == "javdb"
    eff = load_effective(str(tmp_path), CLIArgs(provider="javbus", provider_set=True))
    assert eff.provider == "javbus"


def test_cli_path_config_optional(tmp_path):
    root = tmp_path / "root"
    root.mkdir()
    eff = load_effective(str(tmp_path), CLIArgs(path=str(root)))
    assert eff.path == str(root)
    assert eff.provider == DEFAULT_PROVIDER
    assert eff.concurrency == 4
    assert eff.apply is False


def test_cli_relative_path_resolved_from_cwd(tmp_path):
    eff = load_effective(str(tmp_path), CLIArgs(path="  sub/../media  "))
    assert eff.path == os.path.join(str(tmp_path), "media")


def test_invalid_provider(tmp_path):
    write_config(tmp_path, '{"path":"p","provider":"nope"}')
    assert error_code(load_error(tmp_path)) == ERR_INVALID


def test_empty_cli_provider_invalid(tmp_path):
    write_config(tmp_path, '{"path":"p"}')
    err = load_error(tmp_path, CLIArgs(provider="", provider_set=True))
    assert err.code == ERR_INVALID


def test_cli_path_invalid_config(tmp_path):
    root = tmp_path / "root"
    root.mkdir()
    write_config(root, "{")
    err = load_error(tmp_path, CLIArgs(path=str(root)))
    assert error_code(err) == ERR_INVALID
    assert err.path == os.path.join(str(root), "avmc.json")


def test_wrong_field_type_invalid(tmp_path):
    write_config(tmp_path, '{"path":5}')
    assert error_code(load_error(tmp_path)) == ERR_INVALID


def test_image_proxy_requires_proxy_url(tmp_path):
    write_config(tmp_path, '{"path":"p","image_proxy":true}')
    assert error_code(load_error(tmp_path)) == ERR_INVALID


def test_invalid_proxy_url(tmp_path):
    write_config(tmp_path, '{"path":"p","proxy":{"url":"http://[::1"}}')
    assert error_code(load_error(tmp_path)) == ERR_INVALID


def test_proxy_and_image_proxy_accepted(tmp_path):
    cfg = {"path": "p", "proxy": {"url": "  http://127.0.0.1:8080  "}, "image_proxy": True}
    write_config(tmp_path, json.dumps(cfg))
    eff = load_effective(str(tmp_path), CLIArgs())
    assert eff.proxy_url == "http://127.0.0.1:8080"
    assert eff.image_proxy is True


@pytest.mark.parametrize("value,expected", [(0, 4), (-5, 1), (100, 32), (8, 8)])
def test_concurrency_default_and_clamp(tmp_path, value, expected):
    write_config(tmp_path, json.dumps({"path": "p", "concurrency": value}))
    assert load_effective(str(tmp_path), CLIArgs()).concurrency == expected


@pytest.mark.parametrize("url", ["ftp://javdb.example.com", "not a url", "https://"])
def test_javdb_base_url_invalid(tmp_path, url):
    write_config(tmp_path, json.dumps({"path": "p", "javdb_base_url": url}))
    assert error_code(load_error(tmp_path)) == ERR_INVALID


def test_javdb_base_url_and_exclude_dirs_kept(tmp_path):
    cfg = {"path": "p", "javdb_base_url": " https://javdb.example.com ", "exclude_dirs": ["tmp", "x/y"]}
    write_config(tmp_path, json.dumps(cfg))
    eff = load_effective(str(tmp_path), CLIArgs())
    assert eff.javdb_base_url == "https://javdb.example.com"
    assert eff.exclude_dirs == ["tmp", "x/y"]


def test_error_code_of_other_errors_is_empty():
    assert error_code(ValueError("x")) == ""
    assert error_code(None) == ""


def test_error_code_through_cause():
    try:
        try:
            raise ConfigError(ERR_NOT_FOUND, "/x/avmc.json")
        except ConfigError as inner:
            raise RuntimeError("wrapped") from inner
    except RuntimeError as outer:
        assert error_code(outer) == ERR_NOT_FOUND


def test_error_messages():
    assert str(ConfigError(ERR_NOT_FOUND, "/x/avmc.json")) == 'config_not_found：未找到配置文件 "/x/avmc.json"'
    assert str(ConfigError(ERR_MISSING_PATH, "/x/avmc.json")) == (
        'config_missing_path：配置文件 "/x/avmc.json" 缺少必填字段 path'
    )
    assert str(ConfigError(ERR_INVALID, "/x/avmc.json", "bad")) == 'config_invalid：配置文件 "/x/avmc.json" 无效：bad'