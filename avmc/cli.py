"""Command-line entry point: ``avmc run [path] [--provider ...] [--apply[=true|false]]``."""

from __future__ import annotations

import json
import os
import sys
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TextIO

from .config import CLIArgs, ConfigError, EffectiveConfig, error_code, load_effective
from .domain import STATUS_FAILED, STATUS_UNMATCHED, ItemResult, RunReport
from .fsx import write_file_atomic_replace
from .javbus import JavbusProvider
from .javdb import JavdbProvider
from .progress_ui import ProgressUI
from .provider import Registry
from .runner import execute

USAGE = """用法：
  avmc run [path] [--provider javbus|javdb] [--apply[=true|false]]

命令：
  run    运行流程（默认 dry-run）

使用 "avmc run --help" 查看详细说明。
"""

RUN_USAGE = """用法：
  avmc run [path] [--provider javbus|javdb] [--apply[=true|false]]

参数：
  --provider  首选 provider：javbus|javdb（未指定则读配置文件；最终默认 javbus）
  --apply     执行落盘与移动（默认 dry-run）；支持 --apply=false 覆盖配置中的 apply=true
  -h, --help  显示帮助
"""


def _quote(s: str) -> str:
    return json.dumps(s, ensure_ascii=False)


@dataclass
class RunArgs:
    path: str = ""
    provider: str = ""
    provider_set: bool = False
    apply: bool = False
    apply_set: bool = False


def _is_help(s: str) -> bool:
    return s in ("-h", "--help", "help")


def parse_run_args(args: list[str]) -> RunArgs:
    """Parse the arguments of ``run``; raises :class:`ValueError` on bad input."""
    ra = RunArgs()
    it = iter(args)
    for a in it:
        if a == "--provider":
            value = next(it, None)
            if value is None:
                raise ValueError("--provider 需要一个值")
            ra.provider, ra.provider_set = value, True
        elif a.startswith("--provider="):
            ra.provider, ra.provider_set = a.removeprefix("--provider="), True
        elif a == "--apply":
            ra.apply, ra.apply_set = True, True
        elif a.startswith("--apply="):
            v = a.removeprefix("--apply=")
            if v not in ("true", "false"):
                raise ValueError(f"--apply 只能是 true 或 false，实际是 {_quote(v)}")
            ra.apply, ra.apply_set = v == "true", True
        elif a.startswith("-"):
            raise ValueError(f"未知参数 {_quote(a)}")
        else:
            if ra.path:
                raise ValueError(f"重复的 path：{_quote(ra.path)} 与 {_quote(a)}")
            ra.path = a

    if ra.provider_set:
        if ra.provider == "":
            raise ValueError("--provider 不能为空")
        if ra.provider not in ("javbus", "javdb"):
            raise ValueError(f"--provider 只能是 javbus 或 javdb，实际是 {_quote(ra.provider)}")
    return ra


def _is_tty(stream: TextIO) -> bool:
    try:
        return stream.isatty()
    except (AttributeError, ValueError, OSError):
        return False


def _summary_line(rr: RunReport) -> str:
    s = rr.summary
    return f"完成：processed={s.processed} skipped={s.skipped} failed={s.failed} unmatched={s.unmatched}\n"


def _emit_report(rr: RunReport) -> None:
    out, err = sys.stdout, sys.stderr
    if _is_tty(out):
        out.write(_summary_line(rr))
        out.flush()
        if rr.summary.failed > 0 or rr.summary.unmatched > 0:
            for it in rr.items:
                if it.status not in (STATUS_FAILED, STATUS_UNMATCHED):
                    continue
                # Synthetic entries have no code: anchor them on the first input file.
                key = it.code or (it.files[0].src if it.files else "") or "<unknown>"
                err.write(f"{key} {it.error_code}: {it.error_msg}\n")
            err.flush()
        return

    # Non-TTY stdout carries exactly one RunReport JSON; everything else goes to stderr.
    out.write(json.dumps(rr.to_dict(), ensure_ascii=False) + "\n")
    out.flush()
    err.write(_summary_line(rr))
    err.flush()


def report_for_config_error(cwd_abs: str, run_args: RunArgs, err: BaseException) -> RunReport:
    """Build a report holding a single failed item that describes a configuration error."""
    now = datetime.now(timezone.utc)
    rr = RunReport(
        path=cwd_abs,
        dry_run=not (run_args.apply_set and run_args.apply),
        started_at=now,
        finished_at=now,
    )
    rr.items.append(ItemResult(status=STATUS_FAILED, error_code=error_code(err), error_msg=str(err)))
    rr.finalize()
    return rr


def write_report_file(root: str, report: RunReport) -> None:
    """Write ``<root>/cache/report.json`` atomically, replacing any previous one."""
    text = json.dumps(report.to_dict(), ensure_ascii=False, indent=2) + "\n"
    write_file_atomic_replace(os.path.join(root, "cache"), "report.json", text.encode("utf-8"))


def _pick_progress_stream() -> TextIO | None:
    if _is_tty(sys.stderr):
        return sys.stderr
    if _is_tty(sys.stdout):
        return sys.stdout
    return None


def _emit_locations(stream: TextIO, eff: EffectiveConfig) -> None:
    if eff.apply:
        stream.write(f"report: {os.path.join(eff.path, 'cache', 'report.json')}\n")
    stream.write(f"out: {os.path.join(eff.path, 'out')}\n")
    stream.flush()


def run_command(args: list[str]) -> int:
    """Execute ``avmc run``; return the process exit code."""
    if any(_is_help(a) for a in args):
        sys.stdout.write(RUN_USAGE)
        return 0

    try:
        ra = parse_run_args(args)
    except ValueError as e:
        sys.stderr.write(f"参数错误：{e}\n\n")
        sys.stdout.write(RUN_USAGE)
        return 2

    try:
        cwd = os.getcwd()
    except OSError as e:
        sys.stderr.write(f"读取当前目录失败：{e}\n")
        return 1
    cwd_abs = os.path.abspath(cwd)

    try:
        eff = load_effective(
            cwd,
            CLIArgs(
                path=ra.path,
                provider=ra.provider,
                provider_set=ra.provider_set,
                apply=ra.apply,
                apply_set=ra.apply_set,
            ),
        )
    except ConfigError as e:
        _emit_report(report_for_config_error(cwd_abs, ra, e))
        return 1

    try:
        registry = Registry(JavbusProvider(), JavdbProvider(base_url=eff.javdb_base_url))
    except ValueError as e:
        sys.stderr.write(f"初始化 provider registry 失败：{e}\n")
        return 1

    progress_stream = _pick_progress_stream()
    ui = ProgressUI(progress_stream) if progress_stream is not None else None
    try:
        rr = execute(eff, registry, ui)
    finally:
        if ui is not None:
            ui.close()

    # Apply writes <path>/cache/report.json; a dry-run never touches the disk.
    if eff.apply:
        try:
            write_report_file(eff.path, rr)
        except OSError as e:
            sys.stderr.write(f"写入 report.json 失败：{e}\n")
            _emit_report(rr)
            return 1

    _emit_report(rr)
    if progress_stream is not None:
        _emit_locations(progress_stream, eff)
    return 0 if rr.summary.failed == 0 and rr.summary.unmatched == 0 else 1


def main(argv: list[str] | None = None) -> int:
    """Dispatch the command line; return the process exit code."""
    args = list(sys.argv[1:] if argv is None else argv)
    if not args or _is_help(args[0]):
        sys.stdout.write(USAGE)
        return 0
    if args[0] == "run":
        return run_command(args[1:])
    sys.stderr.write(f"未知命令：{_quote(args[0])}\n\n")
    sys.stdout.write(USAGE)
    return 2


if __name__ == "__main__":
    raise SystemExit(main())