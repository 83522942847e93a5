from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Iterable, List

from .gitutils import has_git_dir, is_bare_repo
from .workspace import RepoWeaverError

SKIPPED_DIRS = {".git", ".repo", ".hg", ".svn"}


def discover(root: Path, *, exclude: Iterable[Path] | None = None) -> List[Path]:
    """Return the repository roots below ``root`` in a deterministic order.

    A repository's own working tree is not searched for further
    repositories, and the root itself is never reported.
    """
    root = root.expanduser().resolve()
    if not root.is_dir():
        raise RepoWeaverError(f"Merge root does not exist or is not a directory: {root}")

    exclude_paths = {path.expanduser().resolve() for path in (exclude or [])}
    repos: List[Path] = []

    for current_root, dirs, _ in os.walk(root):
        current = Path(current_root)
        if current != root and _is_repository(current):
            repos.append(current)
            dirs[:] = []
            continue
        dirs[:] = sorted(
            d
            for d in dirs
            if d not in SKIPPED_DIRS and (current / d).resolve() not in exclude_paths
        )

    repos.sort()
    logging.info("Found %d repositories to merge below %s", len(repos), root)
    for repo in repos:
        logging.debug("  %s", repo.relative_to(root))
    return repos


def _is_repository(path: Path) -> bool:
    return has_git_dir(path) or is_bare_repo(path)
