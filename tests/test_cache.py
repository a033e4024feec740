import os

import pytest

from avmc.cache import CacheStore, ReadOnlyCacheError
from avmc.domain import parse_code

CODE = parse_code("CAWD-895")


def test_read_write_provider_cache(tmp_path):
    s = CacheStore(str(tmp_path), False)
    s.write_provider_html("javbus", CODE, b"<html/>")

    assert s.read_provider_html("javbus", CODE) == b"<html/>"
    path = s.provider_html_path("javbus", CODE)
    assert os.path.isfile(path)
    assert path == os.path.join(str(tmp_path), "cache", "providers", "javbus", "CAWD-895.html")


def test_read_only_rejects_write(tmp_path):
    s = CacheStore(str(tmp_path), True)
    with pytest.raises(ReadOnlyCacheError):
        s.write_provider_json("javdb", CODE, b'{"ok":true}')
    assert not os.path.exists(s.provider_json_path("javdb", CODE))


def test_missing_entry_is_none(tmp_path):
    s = CacheStore(str(tmp_path), True)
    assert s.read_provider_json("javdb", CODE) is None
    assert s.read_provider_html("javdb", CODE) is None


def test_json_round_trip_and_overwrite(tmp_path):
    s = CacheStore(str(tmp_path))
    s.write_provider_json("JavDB", CODE, b"1")
    s.write_provider_json("javdb", CODE, b"2")
    assert s.read_provider_json("javdb", CODE) == b"2"


@pytest.mark.parametrize("provider", ["", "  ", "../x", "java/bus"])
def test_invalid_provider_rejected(tmp_path, provider):
    s = CacheStore(str(tmp_path))
    with pytest.raises(ValueError):
        s.provider_html_path(provider, CODE)


def test_empty_code_rejected(tmp_path):
    s = CacheStore(str(tmp_path))
    with pytest.raises(ValueError):
        s.provider_json_path("javbus", "")
    with pytest.raises(ValueError):
        s.write_provider_html("javbus", "", b"x")