"""
History weaving: relocate every source history under its prefix and join
the rewritten tips with one synthetic merge commit.

A run has three phases. Ancestry walks collect each descriptor's history
in parents-before-children order; ownership of every distinct commit is
then assigned to the first descriptor (in input order) that reaches it;
finally one worker per descriptor rewrites the commits it owns. Workers
only ever wait on commits owned by earlier descriptors, which were
submitted first, so waits always terminate.
"""

from __future__ import annotations

import logging
import re
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from .objects import Commit, ObjectId, ObjectStore, relocate_commit, short_id
from .paths import PathRewriter, Prefix, check_prefixes, format_prefix
from .workspace import RepoWeaverError

PROGRESS_INTERVAL = 1000

_IDENTITY_RE = re.compile(r"^[^<>\n]+ <[^<>\n]*>$")


@dataclass(frozen=True)
class SourceRepository:
    path: Path
    name: str
    branch: str
    ref: str
    tip: ObjectId
    prefix: Prefix

    @property
    def destination(self) -> str:
        return format_prefix(self.prefix)


@dataclass
class RewrittenTip:
    source: SourceRepository
    original: ObjectId
    rewritten: ObjectId
    tree: ObjectId


@dataclass
class WeaveResult:
    merged_commit: ObjectId
    merged_tree: ObjectId
    tips: List[RewrittenTip]
    mapping: "RewriteMapping"
    signatures_dropped: int = 0
    # tips already rewritten under another repository's prefix
    relocated_tips: int = 0

    @property
    def rewritten_commits(self) -> int:
        return len(self.mapping) + self.relocated_tips


def validate_identity(identity: str | None) -> None:
    if identity is not None and not _IDENTITY_RE.match(identity):
        raise RepoWeaverError(f"Identity must look like 'Name <email>': {identity!r}")


class WeaveAborted(RepoWeaverError):
    """Raised inside a worker when another worker already failed."""


class RewriteMapping:
    """Original commit id -> rewritten commit id for one weaving run.

    Each key is claimed by exactly one owner and assigned exactly once;
    readers block until the owner publishes the value (or fails).
    """

    def __init__(self) -> None:
        self._entries: Dict[ObjectId, Future] = {}
        self._owners: Dict[ObjectId, int] = {}
        self._lock = threading.Lock()

    def claim(self, original: ObjectId, owner: int) -> bool:
        with self._lock:
            if original in self._entries:
                return False
            self._entries[original] = Future()
            self._owners[original] = owner
            return True

    def owner(self, original: ObjectId) -> Optional[int]:
        return self._owners.get(original)

    def assign(self, original: ObjectId, rewritten: ObjectId) -> None:
        entry = self._entry(original)
        if entry.done():
            raise RepoWeaverError(f"Commit {short_id(original)} was rewritten twice")
        entry.set_result(rewritten)

    def lookup(self, original: ObjectId) -> ObjectId:
        return self._entry(original).result()

    def fail_pending(self, owner: int, exc: BaseException) -> None:
        with self._lock:
            pending = [
                self._entries[oid]
                for oid, entry_owner in self._owners.items()
                if entry_owner == owner
            ]
        for entry in pending:
            if not entry.done():
                entry.set_exception(exc)

    def as_dict(self) -> Dict[ObjectId, ObjectId]:
        return {
            oid: entry.result()
            for oid, entry in self._entries.items()
            if entry.done() and entry.exception() is None
        }

    def _entry(self, original: ObjectId) -> Future:
        try:
            return self._entries[original]
        except KeyError:
            raise RepoWeaverError(
                f"Commit {short_id(original)} is not part of this weave"
            ) from None

    def __contains__(self, original: object) -> bool:
        return original in self._entries

    def __len__(self) -> int:
        return len(self._entries)


@dataclass
class _WorkerStats:
    rewritten: int = 0
    signatures_dropped: int = 0
    trees: Dict[ObjectId, ObjectId] = field(default_factory=dict)


class HistoryWeaver:
    def __init__(
        self,
        store: ObjectStore,
        rewriter: PathRewriter | None = None,
        *,
        workers: int = 1,
        identity: str | None = None,
    ) -> None:
        if workers < 1:
            raise ValueError("workers must be at least 1")
        validate_identity(identity)
        self.store = store
        self.rewriter = rewriter or PathRewriter(store)
        self.workers = workers
        self.identity = identity
        self._commits: Dict[ObjectId, Commit] = {}
        self._abort = threading.Event()

    def weave(self, descriptors: Sequence[SourceRepository]) -> WeaveResult:
        if not descriptors:
            raise RepoWeaverError("Nothing to weave: no source repositories given")
        check_prefixes((str(d.path), d.prefix) for d in descriptors)
        self._abort.clear()

        orders = self._walk_all(descriptors)
        mapping = RewriteMapping()
        owned: List[List[ObjectId]] = []
        for index, order in enumerate(orders):
            owned.append([oid for oid in order if mapping.claim(oid, index)])
            shared = len(order) - len(owned[-1])
            if shared:
                logging.info(
                    "%s shares %d commit(s) with previously woven repositories",
                    descriptors[index].name,
                    shared,
                )

        stats = self._rewrite_all(descriptors, owned, mapping)
        trees: Dict[ObjectId, ObjectId] = {}
        signatures_dropped = sum(s.signatures_dropped for s in stats)
        for worker_stats in stats:
            trees.update(worker_stats.trees)

        tips: List[RewrittenTip] = []
        relocated = 0
        for index, descriptor in enumerate(descriptors):
            owner = mapping.owner(descriptor.tip)
            if owner == index:
                rewritten = mapping.lookup(descriptor.tip)
                tree = trees[rewritten]
            else:
                rewritten, tree, dropped = self._relocate_tip(descriptor, mapping)
                relocated += 1
                signatures_dropped += dropped
                logging.warning(
                    "Tip of %s is part of the history of %s; wrote a separate tip under %s/",
                    descriptor.name,
                    descriptors[owner].name if owner is not None else "another repository",
                    descriptor.destination,
                )
            tips.append(
                RewrittenTip(
                    source=descriptor,
                    original=descriptor.tip,
                    rewritten=rewritten,
                    tree=tree,
                )
            )

        merged_tree = self.rewriter.overlay([tip.tree for tip in tips])
        merged = self._merge_commit(descriptors, tips, merged_tree)
        merged_commit = self.store.add_object(merged)
        logging.info(
            "Wove %d repositories (%d commit(s) rewritten) into %s",
            len(descriptors),
            len(mapping) + relocated,
            merged_commit.decode("ascii"),
        )
        return WeaveResult(
            merged_commit=merged_commit,
            merged_tree=merged_tree,
            tips=tips,
            mapping=mapping,
            signatures_dropped=signatures_dropped,
            relocated_tips=relocated,
        )

    # Phase 1: ancestry walks ----------------------------------------------
    def _walk_all(self, descriptors: Sequence[SourceRepository]) -> List[List[ObjectId]]:
        if self.workers == 1:
            return [self._walk(d.tip) for d in descriptors]
        with ThreadPoolExecutor(max_workers=self.workers) as pool:
            futures = [pool.submit(self._walk, d.tip) for d in descriptors]
        return [future.result() for future in futures]

    def _walk(self, tip: ObjectId) -> List[ObjectId]:
        """Return the ancestry of ``tip`` with parents before children."""
        order: List[ObjectId] = []
        visited = set()
        stack = [(tip, False)]
        while stack:
            oid, expanded = stack.pop()
            if expanded:
                order.append(oid)
                continue
            if oid in visited:
                continue
            visited.add(oid)
            commit = self._read_commit(oid)
            stack.append((oid, True))
            for parent in reversed(commit.parents):
                if parent not in visited:
                    stack.append((parent, False))
        return order

    def _read_commit(self, oid: ObjectId) -> Commit:
        commit = self._commits.get(oid)
        if commit is None:
            commit = self.store.read_commit(oid)
            self._commits[oid] = commit
        return commit

    # Phase 3: rewriting ---------------------------------------------------
    def _rewrite_all(
        self,
        descriptors: Sequence[SourceRepository],
        owned: Sequence[List[ObjectId]],
        mapping: RewriteMapping,
    ) -> List[_WorkerStats]:
        with ThreadPoolExecutor(max_workers=self.workers) as pool:
            futures = [
                pool.submit(self._rewrite_descriptor, index, descriptor, owned[index], mapping)
                for index, descriptor in enumerate(descriptors)
            ]
        failures = [future.exception() for future in futures]
        for exc in failures:
            if exc is not None and not isinstance(exc, WeaveAborted):
                raise exc
        for exc in failures:
            if exc is not None:
                raise exc
        return [future.result() for future in futures]

    def _rewrite_descriptor(
        self,
        index: int,
        descriptor: SourceRepository,
        owned: Sequence[ObjectId],
        mapping: RewriteMapping,
    ) -> _WorkerStats:
        stats = _WorkerStats()
        try:
            for oid in owned:
                if self._abort.is_set():
                    raise WeaveAborted(f"Weaving of {descriptor.name} aborted")
                commit = self._commits[oid]
                tree = self.rewriter.rewrite(commit.tree, descriptor.prefix)
                parents = [mapping.lookup(parent) for parent in commit.parents]
                relocated, dropped = relocate_commit(commit, tree, parents)
                if dropped:
                    stats.signatures_dropped += 1
                rewritten = self.store.add_object(relocated)
                stats.trees[rewritten] = tree
                mapping.assign(oid, rewritten)
                stats.rewritten += 1
                if stats.rewritten % PROGRESS_INTERVAL == 0:
                    logging.debug(
                        "%s: rewrote %d/%d commit(s)", descriptor.name, stats.rewritten, len(owned)
                    )
        except BaseException as exc:
            self._abort.set()
            mapping.fail_pending(index, exc)
            raise
        if stats.signatures_dropped:
            logging.warning(
                "%s: dropped %d commit signature(s) that cannot survive the rewrite",
                descriptor.name,
                stats.signatures_dropped,
            )
        logging.info(
            "Rewrote %d commit(s) of %s under %s/",
            stats.rewritten,
            descriptor.name,
            descriptor.destination,
        )
        return stats

    def _relocate_tip(
        self,
        descriptor: SourceRepository,
        mapping: RewriteMapping,
    ) -> tuple[ObjectId, ObjectId, int]:
        """Write ``descriptor``'s tip under its own prefix.

        Used when another repository already owns the tip; the parents are
        the already rewritten ones, and the commit is not part of the mapping.
        """
        commit = self._commits[descriptor.tip]
        tree = self.rewriter.rewrite(commit.tree, descriptor.prefix)
        parents = [mapping.lookup(parent) for parent in commit.parents]
        relocated, dropped = relocate_commit(commit, tree, parents)
        return self.store.add_object(relocated), tree, int(dropped)

    # Merge commit ---------------------------------------------------------
    def _merge_commit(
        self,
        descriptors: Sequence[SourceRepository],
        tips: Sequence[RewrittenTip],
        merged_tree: ObjectId,
    ) -> Commit:
        tip_commits = [self._commits[d.tip] for d in descriptors]
        newest = max(
            range(len(tip_commits)),
            key=lambda i: (tip_commits[i].commit_time, -i),
        )
        source = tip_commits[newest]
        identity = self.identity.encode("utf-8") if self.identity else source.committer

        lines = [f"Join {len(descriptors)} repositories", ""]
        for tip in tips:
            lines.append(
                f"{tip.source.destination}: {tip.source.branch} ({short_id(tip.original)})"
            )

        merged = Commit()
        merged.tree = merged_tree
        merged.parents = [tip.rewritten for tip in tips]
        merged.author = merged.committer = identity
        merged.author_time = merged.commit_time = source.commit_time
        merged.author_timezone = merged.commit_timezone = source.commit_timezone
        merged.message = ("\n".join(lines) + "\n").encode("utf-8")
        return merged
