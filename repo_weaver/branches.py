from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from .manifest import Manifest
from .objects import ObjectStore
from .paths import compute_prefix
from .weave import SourceRepository
from .workspace import EmptyRepository, NoBranchResolved


class BranchResolver:
    """Pick the branch to weave for each source repository.

    Precedence: explicit branch, then the branch the manifest declares for
    the repository, then the repository's own default branch. Resolution is
    independent per repository unless an explicit branch forces one name.
    """

    def __init__(
        self,
        store: ObjectStore,
        *,
        explicit_branch: str | None = None,
        manifest: Manifest | None = None,
        root: Path | None = None,
    ) -> None:
        self.store = store
        self.explicit_branch = explicit_branch
        self.manifest = manifest
        self.root = root

    def resolve(
        self,
        repo: Path,
        explicit_branch: str | None = None,
        manifest_branch: str | None = None,
    ) -> str:
        if not self.store.has_commits(repo):
            raise EmptyRepository(repo)

        explicit = explicit_branch or self.explicit_branch
        if explicit:
            return self._require(repo, explicit, "explicit")

        declared = manifest_branch or self._manifest_branch(repo)
        if declared:
            return self._require(repo, declared, "manifest")

        default = self.store.default_branch(repo)
        if default:
            return self._require(repo, default, "default")
        raise NoBranchResolved(repo)

    def describe(self, repo: Path, root: Path, *, suffix: str = "") -> SourceRepository:
        branch = self.resolve(repo)
        tip = self.store.resolve_ref(repo, branch)
        if tip is None:
            raise NoBranchResolved(repo, branch)
        return SourceRepository(
            path=repo,
            name=_relative_name(repo, root),
            branch=branch,
            ref=self.store.qualify_ref(repo, branch),
            tip=tip,
            prefix=compute_prefix(repo, root, suffix),
        )

    def _manifest_branch(self, repo: Path) -> Optional[str]:
        if self.manifest is not None:
            if self.root is not None:
                revision = self.manifest.revision_for(_relative_name(repo, self.root))
            else:
                revision = self.manifest.declared_branch
            if revision:
                return revision
        return self.store.manifest_branch(repo)

    def _require(self, repo: Path, branch: str, source: str) -> str:
        if self.store.resolve_ref(repo, branch) is None:
            raise NoBranchResolved(repo, branch)
        logging.debug("Resolved %s branch '%s' for %s", source, branch, repo)
        return branch


def _relative_name(repo: Path, root: Path) -> str:
    try:
        return repo.resolve().relative_to(root.resolve()).as_posix()
    except ValueError:
        return repo.name
