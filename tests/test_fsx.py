import errno
import os
from unittest import mock

import pytest

from avmc.fsx import (
    CrossDeviceError,
    PathTypeConflictError,
    rename,
    write_file_atomic,
    write_file_atomic_no_overwrite,
    write_file_atomic_replace,
)


def temp_leftovers(directory, name):
    return [n for n in os.listdir(directory) if n.startswith(f".{name}.tmp-")]


def test_write_file_atomic_success_and_no_temp_left(tmp_path):
    write_file_atomic(str(tmp_path), "a.txt", b"hello")
    assert (tmp_path / "a.txt").read_bytes() == b"hello"
    assert temp_leftovers(tmp_path, "a.txt") == []


def test_write_file_atomic_creates_directory(tmp_path):
    target = tmp_path / "x" / "y"
    write_file_atomic(str(target), "r.json", b"{}")
    assert (target / "r.json").read_bytes() == b"{}"


def test_write_file_atomic_rename_fail_cleans_temp(tmp_path):
    with mock.patch("os.replace", side_effect=PermissionError(errno.EACCES, "denied")):
        with pytest.raises(PermissionError):
            write_file_atomic(str(tmp_path), "a.txt", b"hello")
    assert temp_leftovers(tmp_path, "a.txt") == []
    assert not (tmp_path / "a.txt").exists()


def test_replace_overwrites_existing(tmp_path):
    (tmp_path / "a.txt").write_bytes(b"old")
    write_file_atomic_replace(str(tmp_path), "a.txt", b"new")
    assert (tmp_path / "a.txt").read_bytes() == b"new"


def test_no_overwrite_target_conflict_dir(tmp_path):
    (tmp_path / "a.txt").mkdir()
    with pytest.raises(PathTypeConflictError) as info:
        write_file_atomic_no_overwrite(str(tmp_path), "a.txt", b"hello")
    assert info.value.want == "file"
    assert info.value.got == "dir"


def test_no_overwrite_existing_file_kept(tmp_path):
    (tmp_path / "a.txt").write_bytes(b"old")
    with pytest.raises(FileExistsError):
        write_file_atomic_no_overwrite(str(tmp_path), "a.txt", b"new")
    assert (tmp_path / "a.txt").read_bytes() == b"old"


def test_no_overwrite_writes_new_file(tmp_path):
    write_file_atomic_no_overwrite(str(tmp_path), "n.nfo", b"data")
    assert (tmp_path / "n.nfo").read_bytes() == b"data"
    assert temp_leftovers(tmp_path, "n.nfo") == []


def test_rename_cross_device_exdev():
    with mock.patch("os.replace", side_effect=OSError(errno.EXDEV, "Invalid cross-device link")):
        with pytest.raises(CrossDeviceError) as info:
            rename("/a", "/b")
    assert info.value.src == "/a"
    assert info.value.dst == "/b"
    assert info.value.cause.errno == errno.EXDEV
    assert "EXDEV" in str(info.value)


def test_rename_other_errors_pass_through(tmp_path):
    with pytest.raises(FileNotFoundError):
        rename(str(tmp_path / "missing"), str(tmp_path / "dst"))


def test_rename_moves_file(tmp_path):
    (tmp_path / "src").write_bytes(b"x")
    rename(str(tmp_path / "src"), str(tmp_path / "dst"))
    assert (tmp_path / "dst").read_bytes() == b"x"
    assert not (tmp_path / "src").exists()