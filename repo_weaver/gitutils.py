from __future__ import annotations

import subprocess
from pathlib import Path
from typing import Optional, Sequence


def is_bare_repo(path: Path) -> bool:
    head = path / "HEAD"
    objects = path / "objects"
    refs = path / "refs"
    git_dir = path / ".git"
    return head.is_file() and objects.is_dir() and refs.is_dir() and not git_dir.exists()


def has_git_dir(path: Path) -> bool:
    git_dir = path / ".git"
    if git_dir.is_dir():
        return True
    # worktrees and submodules carry a "gitdir: <path>" pointer file
    if git_dir.is_file():
        return read_gitdir_pointer(git_dir) is not None
    return False


def read_gitdir_pointer(pointer_file: Path) -> Optional[str]:
    try:
        text = pointer_file.read_text().strip()
    except OSError:
        return None
    if not text.startswith("gitdir:"):
        return None
    return text.split(":", 1)[1].strip() or None


def run_git(
    repo: Path,
    args: Sequence[str],
    *,
    input: bytes | None = None,
) -> subprocess.CompletedProcess:
    if input is not None:
        return subprocess.run(
            ["git", "-C", str(repo)] + list(args),
            input=input,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
        )
    return subprocess.run(
        ["git", "-C", str(repo)] + list(args),
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
    )


def describe_failure(args: Sequence[str], result: subprocess.CompletedProcess) -> str:
    stderr = result.stderr
    if isinstance(stderr, bytes):
        stderr = stderr.decode("utf-8", "replace")
    return f"git {' '.join(args)} failed: {stderr.strip()}"
