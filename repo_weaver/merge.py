from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Literal, Optional, Sequence

from .branches import BranchResolver
from .discovery import discover
from .manifest import Manifest, find_manifest
from .objects import ObjectStore, short_id
from .paths import check_prefixes, format_prefix
from .store import GitObjectStore
from .weave import HistoryWeaver, SourceRepository, WeaveResult, validate_identity
from .workspace import (
    EmptyRepository,
    NoBranchResolved,
    RepoWeaverError,
    derive_target_path,
    populate_worktree,
    prepare_target,
)

UnresolvedPolicy = Literal["abort", "skip"]


@dataclass
class JoinConfig:
    root: Path
    suffix: str = ""
    branch: Optional[str] = None
    target: Optional[Path] = None
    target_branch: str = "main"
    on_unresolved: UnresolvedPolicy = "abort"
    workers: int = 1
    identity: Optional[str] = None
    dry_run: bool = False
    force: bool = False
    checkout: bool = True
    report: Optional[Path] = None


@dataclass
class SkippedRepository:
    path: str
    reason: str


@dataclass
class JoinResult:
    target: Path
    target_branch: str
    sources: List[SourceRepository]
    skipped: List[SkippedRepository] = field(default_factory=list)
    weave: Optional[WeaveResult] = None
    dry_run: bool = False
    created_target: bool = False

    @property
    def merged_commit(self) -> Optional[str]:
        return self.weave.merged_commit.decode("ascii") if self.weave else None


def join_repositories(config: JoinConfig) -> JoinResult:
    """Merge every repository below ``config.root`` into one new repository.

    The target branch is the only reference that changes, and it only
    moves once every repository has been woven.
    """
    validate_identity(config.identity)
    root = config.root.expanduser().resolve()
    target = derive_target_path(root, config.target)
    logging.info("Repositories below %s will be merged into %s", root, target)

    manifest = find_manifest(root)
    repos = discover(root, exclude=[target])
    if not repos:
        raise RepoWeaverError(f"No repositories found below {root}")

    # reference lookups run against each source repository directly
    with GitObjectStore(root) as source_store:
        sources, skipped = resolve_sources(
            repos,
            root=root,
            store=source_store,
            explicit_branch=config.branch,
            manifest=manifest,
            suffix=config.suffix,
            on_unresolved=config.on_unresolved,
        )
    if not sources:
        raise RepoWeaverError("No repository left to merge after branch resolution")
    check_prefixes((str(source.path), source.prefix) for source in sources)

    result = JoinResult(
        target=target,
        target_branch=config.target_branch,
        sources=sources,
        skipped=skipped,
        dry_run=config.dry_run,
    )
    if config.dry_run:
        for source in sources:
            logging.info(
                "Dry run: would merge %s (%s @ %s) into %s/",
                source.name,
                source.branch,
                short_id(source.tip),
                source.destination,
            )
        return result

    result.created_target = prepare_target(
        target, branch=config.target_branch, force=config.force
    )
    with GitObjectStore(target) as store:
        for source in sources:
            logging.debug("Importing %s from %s", source.ref, source.path)
            store.import_history(source.path, source.ref)
        result.weave = weave_into(
            store,
            target,
            sources,
            branch=config.target_branch,
            workers=config.workers,
            identity=config.identity,
        )

    if config.checkout:
        populate_worktree(target, config.target_branch)
    logging.info("Merged %d repositories into %s (%s)", len(sources), target, config.target_branch)
    return result


def resolve_sources(
    repos: Sequence[Path],
    *,
    root: Path,
    store: ObjectStore,
    explicit_branch: str | None = None,
    manifest: Manifest | None = None,
    suffix: str = "",
    on_unresolved: UnresolvedPolicy = "abort",
) -> tuple[List[SourceRepository], List[SkippedRepository]]:
    resolver = BranchResolver(
        store,
        explicit_branch=explicit_branch,
        manifest=manifest,
        root=root,
    )
    sources: List[SourceRepository] = []
    skipped: List[SkippedRepository] = []
    for repo in repos:
        try:
            source = resolver.describe(repo, root, suffix=suffix)
        except (NoBranchResolved, EmptyRepository) as exc:
            if on_unresolved != "skip":
                raise
            logging.warning("Skipping %s: %s", repo, exc)
            skipped.append(SkippedRepository(path=str(repo), reason=str(exc)))
            continue
        logging.info(
            "Using branch %s of %s -> %s/", source.branch, source.name, format_prefix(source.prefix)
        )
        sources.append(source)
    return sources, skipped


def weave_into(
    store: ObjectStore,
    target: Path,
    sources: Sequence[SourceRepository],
    *,
    branch: str,
    workers: int = 1,
    identity: str | None = None,
) -> WeaveResult:
    """Weave ``sources`` and move ``branch`` of ``target`` to the result."""
    weaver = HistoryWeaver(store, workers=workers, identity=identity)
    result = weaver.weave(sources)
    store.update_ref(target, branch, result.merged_commit)
    logging.info("Branch %s now points at %s", branch, result.merged_commit.decode("ascii"))
    return result
