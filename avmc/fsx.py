"""Filesystem primitives: atomic writes and renames that report cross-device moves."""

from __future__ import annotations

import contextlib
import errno
import json
import os
import stat
import tempfile

FILE_MODE = 0o644
DIR_MODE = 0o755


def _quote(s: str) -> str:
    return json.dumps(s, ensure_ascii=False)


class PathTypeConflictError(OSError):
    """The target path exists with the wrong type (e.g. a directory where a file was wanted)."""

    def __init__(self, path: str, want: str, got: str) -> None:
        self.path = path
        self.want = want
        self.got = got
        super().__init__(f"目标路径类型冲突：{_quote(path)}（期望 {want}，实际 {got}）")


class CrossDeviceError(OSError):
    """A rename failed because source and target are on different filesystems (EXDEV).

    Moves never fall back to copy+delete; the user has to fix the layout.
    """

    def __init__(self, src: str, dst: str, cause: OSError) -> None:
        self.src = src
        self.dst = dst
        self.cause = cause
        super().__init__(
            f"跨盘移动失败（EXDEV）：{_quote(src)} -> {_quote(dst)}；"
            f"请确保源与目标在同一文件系统（本工具不会隐式 copy+delete）：{cause}"
        )


def _is_exdev(err: OSError) -> bool:
    return err.errno == errno.EXDEV


def rename(src: str, dst: str) -> None:
    """Rename ``src`` to ``dst``, replacing ``dst``; EXDEV becomes :class:`CrossDeviceError`."""
    try:
        os.replace(src, dst)
    except OSError as e:
        if _is_exdev(e):
            raise CrossDeviceError(src, dst, e) from e
        raise


def _describe_type(mode: int) -> str:
    if stat.S_ISLNK(mode):
        return "symlink"
    if stat.S_ISSOCK(mode):
        return "socket"
    if stat.S_ISFIFO(mode):
        return "named pipe"
    if stat.S_ISCHR(mode):
        return "char device"
    if stat.S_ISBLK(mode):
        return "block device"
    return "irregular"


def _sync_dir_best_effort(directory: str) -> None:
    if os.name == "nt":
        return
    with contextlib.suppress(OSError):
        fd = os.open(directory, os.O_RDONLY)
        try:
            os.fsync(fd)
        finally:
            os.close(fd)


def _write_atomic(directory: str, name: str, data: bytes) -> None:
    os.makedirs(directory, DIR_MODE, exist_ok=True)
    dst = os.path.join(directory, name)

    # The temp file lives next to the target so the final rename is atomic;
    # the leading dot keeps it out of media library views.
    fd, tmp_path = tempfile.mkstemp(prefix=f".{name}.tmp-", dir=directory)
    try:
        with os.fdopen(fd, "wb") as fh:
            fh.write(data)
            fh.flush()
            os.chmod(tmp_path, FILE_MODE)
            os.fsync(fh.fileno())
        rename(tmp_path, dst)
    finally:
        with contextlib.suppress(OSError):
            os.remove(tmp_path)

    _sync_dir_best_effort(directory)


def write_file_atomic_replace(directory: str, name: str, data: bytes) -> None:
    """Atomically write ``directory/name``, replacing any existing file."""
    _write_atomic(directory, name, data)


def write_file_atomic(directory: str, name: str, data: bytes) -> None:
    """Atomically write ``directory/name`` (replace semantics; for cache and report files)."""
    write_file_atomic_replace(directory, name, data)


def write_file_atomic_no_overwrite(directory: str, name: str, data: bytes) -> None:
    """Atomically write ``directory/name`` unless something already exists there.

    Raises :class:`FileExistsError` if a regular file exists, and
    :class:`PathTypeConflictError` if the path is a directory or another non-regular file.
    """
    dst = os.path.join(os.path.normpath(directory), name)
    try:
        st = os.lstat(dst)
    except FileNotFoundError:
        pass
    else:
        if stat.S_ISDIR(st.st_mode):
            raise PathTypeConflictError(dst, "file", "dir")
        if not stat.S_ISREG(st.st_mode):
            raise PathTypeConflictError(dst, "regular file", _describe_type(st.st_mode))
        raise FileExistsError(errno.EEXIST, "file exists", dst)
    _write_atomic(directory, name, data)