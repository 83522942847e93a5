from __future__ import annotations

import json
import os
import subprocess
from pathlib import Path

import pytest

from repo_weaver.cli import build_parser, config_from_args, main


def run_git(args: list[str], cwd: Path) -> None:
    env = os.environ.copy()
    env.setdefault("GIT_AUTHOR_NAME", "repo-weaver")
    env.setdefault("GIT_AUTHOR_EMAIL", "repo-weaver@example.com")
    env.setdefault("GIT_COMMITTER_NAME", env["GIT_AUTHOR_NAME"])
    env.setdefault("GIT_COMMITTER_EMAIL", env["GIT_AUTHOR_EMAIL"])
    subprocess.run(["git", *args], cwd=str(cwd), check=True, env=env)


def setup_repo(path: Path) -> None:
    path.mkdir(parents=True)
    run_git(["init", "--quiet", "--initial-branch=main"], path)
    (path / "file.txt").write_text(f"{path.name}\n")
    run_git(["add", "."], path)
    run_git(["commit", "--quiet", "-m", "init"], path)


def test_parser_defaults() -> None:
    args = build_parser().parse_args(["join", "root"])

    assert args.root == Path("root")
    assert args.suffix == ""
    assert args.target_branch == "main"
    assert args.on_unresolved == "abort"
    assert args.workers == 1
    assert args.checkout is True


def test_config_from_args_carries_report_and_dash_suffix(tmp_path: Path) -> None:
    report = tmp_path / "out" / "report.md"
    args = build_parser().parse_args(
        ["join", "root", "--suffix=-src", "--report", str(report), "--force", "--no-checkout"]
    )

    config = config_from_args(args)

    assert config.suffix == "-src"
    assert config.report == report
    assert config.force is True
    assert config.checkout is False
    assert config_from_args(build_parser().parse_args(["join", "root"])).report is None


def test_join_command_writes_json_report(tmp_path: Path) -> None:
    root = tmp_path / "src"
    setup_repo(root / "a")
    setup_repo(root / "b")
    report = tmp_path / "report.json"

    code = main(
        [
            "join",
            str(root),
            "--suffix=-src",
            "--identity",
            "CI <ci@example.com>",
            "--report",
            str(report),
        ]
    )

    assert code == 0
    data = json.loads(report.read_text())
    assert [source["prefix"] for source in data["sources"]] == ["a-src", "b-src"]
    assert data["merged_commit"]
    assert (tmp_path / "src_joined" / "b-src" / "file.txt").exists()


def test_dry_run_summary(tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
    root = tmp_path / "src"
    setup_repo(root / "a")

    caplog.set_level("INFO")
    code = main(["join", str(root), "--dry-run"])

    assert code == 0
    assert "Join Summary (dry-run)" in caplog.text
    assert not (tmp_path / "src_joined").exists()


@pytest.mark.parametrize(
    "extra",
    [[], ["--workers", "0"], ["--identity", "nobody"]],
)
def test_errors_return_exit_code_two(tmp_path: Path, extra: list[str]) -> None:
    root = tmp_path / "missing"
    if extra:
        setup_repo(tmp_path / "src" / "a")
        root = tmp_path / "src"

    assert main(["join", str(root), *extra]) == 2
