import json
import os

import pytest

from avmc.cli import RunArgs, main, parse_run_args, report_for_config_error, run_command, write_report_file
from avmc.config import ConfigError


def test_parse_run_args_full():
    ra = parse_run_args(["videos", "--provider", "javdb", "--apply"])
    assert ra == RunArgs(path="videos", provider="javdb", provider_set=True, apply=True, apply_set=True)


def test_parse_run_args_apply_false_and_provider_equals():
    ra = parse_run_args(["--apply=false", "--provider=javbus"])
    assert ra.apply is False and ra.apply_set is True
    assert ra.provider == "javbus" and ra.provider_set is True
    assert ra.path == ""


@pytest.mark.parametrize(
    "args",
    [
        ["--provider"],
        ["--provider="],
        ["--provider=nope"],
        ["--apply=yes"],
        ["--verbose"],
        ["a", "b"],
    ],
)
def test_parse_run_args_errors(args):
    with pytest.raises(ValueError):
        parse_run_args(args)


def test_main_help_and_unknown(capsys):
    assert main([]) == 0
    assert "avmc run [path]" in capsys.readouterr().out
    assert main(["bogus"]) == 2
    captured = capsys.readouterr()
    assert "未知命令" in captured.err


def test_run_help(capsys):
    assert run_command(["--help"]) == 0
    assert "--provider  首选 provider" in capsys.readouterr().out


def test_run_bad_args_exit_2(capsys):
    assert run_command(["--nope"]) == 2
    assert "参数错误" in capsys.readouterr().err


def test_report_for_config_error():
    err = ConfigError("config_not_found", "/x/avmc.json")
    rr = report_for_config_error("/x", RunArgs(), err)
    assert rr.summary.failed == 1
    assert rr.dry_run is True
    assert rr.items[0].error_code == "config_not_found"
    assert rr.items[0].error_msg == str(err)

    rr2 = report_for_config_error("/x", RunArgs(apply=True, apply_set=True), err)
    assert rr2.dry_run is False


def test_write_report_file(tmp_path):
    rr = report_for_config_error(str(tmp_path), RunArgs(), ConfigError("config_invalid", "/x/avmc.json"))
    write_report_file(str(tmp_path), rr)
    raw = (tmp_path / "cache" / "report.json").read_text(encoding="utf-8")
    assert raw.endswith("\n")
    data = json.loads(raw)
    assert data["path"] == str(tmp_path)
    assert data["summary"]["failed"] == 1


def test_config_not_found_reports_json(tmp_path, monkeypatch, capsys):
    monkeypatch.chdir(tmp_path)
    assert run_command([]) == 1
    captured = capsys.readouterr()
    data = json.loads(captured.out)
    assert data["items"][0]["error_code"] == "config_not_found"
    assert "完成：processed=0" in captured.err


def test_no_tty_stdout_only_run_report_json(tmp_path, capsys):
    root = tmp_path / "root"
    video = root / "in" / "CAWD-895.mp4"
    video.parent.mkdir(parents=True)
    video.write_bytes(b"x")

    # Existing NFO and fanart mean no scraping is needed in dry-run.
    out_dir = root / "out" / "CAWD-895"
    out_dir.mkdir(parents=True)
    (out_dir / "CAWD-895.nfo").write_bytes(b"n")
    (out_dir / "fanart.jpg").write_bytes(b"f")

    code = run_command([str(root)])
    captured = capsys.readouterr()

    assert code == 0
    data = json.loads(captured.out)
    assert data["dry_run"] is True
    assert data["summary"]["processed"] == 1
    assert "配置（生效）" not in captured.out
    assert "进度:" not in captured.out
    assert "完成：processed=" in captured.err
    assert video.exists()
    assert not os.path.exists(root / "cache")
    assert not (out_dir / "CAWD-895.mp4").exists()