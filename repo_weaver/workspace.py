from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from .gitutils import has_git_dir, run_git

DEFAULT_TARGET_SUFFIX = "_joined"


class RepoWeaverError(Exception):
    """Base exception for every failure raised by repo-weaver."""


class ObjectStoreError(RepoWeaverError):
    """The backing object store failed or returned corrupt data."""


class PathCollision(RepoWeaverError):
    """Two repositories resolve to the same (or a nested) prefix."""

    def __init__(self, first: str, second: str, detail: str = "") -> None:
        self.first = first
        self.second = second
        message = f"Path collision between {first} and {second}"
        if detail:
            message += f": {detail}"
        super().__init__(message)


class NoBranchResolved(RepoWeaverError):
    def __init__(self, repo: Path, branch: str | None = None) -> None:
        self.repo = repo
        self.branch = branch
        if branch:
            message = f"Branch '{branch}' does not exist in {repo}"
        else:
            message = f"No branch could be resolved for {repo}"
        super().__init__(message)


class EmptyRepository(RepoWeaverError):
    def __init__(self, repo: Path) -> None:
        self.repo = repo
        super().__init__(f"Repository has no commits: {repo}")


class ManifestParseError(RepoWeaverError):
    def __init__(self, path: Path, reason: str) -> None:
        self.path = path
        super().__init__(f"Failed to parse manifest {path}: {reason}")


def derive_target_path(root: Path, explicit: Optional[Path] = None) -> Path:
    if explicit:
        return explicit.expanduser().resolve()
    root = root.expanduser().resolve()
    return root.with_name(root.name + DEFAULT_TARGET_SUFFIX)


def prepare_target(target: Path, *, branch: str, force: bool = False) -> bool:
    """Create the merged repository, or reuse one left by an earlier run.

    Objects are only ever added to an existing repository; the one thing a
    run changes is ``branch``, so an existing branch is refused unless
    ``force`` is given. Returns True when a new repository was created.
    """
    target = target.expanduser()
    if target.exists():
        if not target.is_dir():
            raise RepoWeaverError(f"Existing target is not a directory: {target}")
        if has_git_dir(target):
            ref = f"refs/heads/{branch}"
            existing = run_git(target, ["rev-parse", "--verify", "--quiet", ref])
            if existing.returncode == 0 and not force:
                raise RepoWeaverError(
                    f"Branch {branch} already exists in {target}. "
                    "Use --force to move it to the new merge."
                )
            logging.info("Reusing merged repository at %s", target)
            return False
        if any(target.iterdir()):
            raise RepoWeaverError(
                f"Target directory is not empty and is not a git repository: {target}"
            )

    target.mkdir(parents=True, exist_ok=True)
    result = run_git(target, ["init", "--quiet", f"--initial-branch={branch}"])
    if result.returncode != 0:
        raise RepoWeaverError(f"git init failed for {target}: {result.stderr.strip()}")
    logging.info("Initialized merged repository at %s (branch %s)", target, branch)
    return True


def populate_worktree(target: Path, branch: str) -> None:
    """Check the freshly updated branch out into the merged working tree."""
    result = run_git(target, ["checkout", "--quiet", "--force", branch, "--"])
    if result.returncode != 0:
        raise RepoWeaverError(f"git checkout failed for {target}: {result.stderr.strip()}")
