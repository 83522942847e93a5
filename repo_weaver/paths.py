"""
Placement of each source repository under its own directory prefix.

Rewritten trees share every original subtree by identifier: relocating a
tree only creates the small single-entry directory objects of the prefix.
"""

from __future__ import annotations

import threading
from pathlib import Path, PurePosixPath
from typing import Dict, Iterable, List, Sequence, Tuple

from .objects import TREE_MODE, ObjectId, ObjectStore, Tree, is_tree_mode, short_id
from .workspace import PathCollision, RepoWeaverError

Prefix = Tuple[str, ...]


class EmptyPrefix(RepoWeaverError, ValueError):
    """A repository would be placed at the root of the merged tree."""


def compute_prefix(repo_path: Path, root: Path, suffix: str = "") -> Prefix:
    try:
        relative = repo_path.resolve().relative_to(root.resolve())
    except ValueError as exc:
        raise RepoWeaverError(f"{repo_path} is not located below {root}") from exc
    segments = list(PurePosixPath(relative.as_posix()).parts)
    if not segments:
        raise EmptyPrefix(f"Repository {repo_path} sits at the merge root and has no prefix")
    last = segments[-1]
    if last.endswith(".git") and len(last) > len(".git"):
        # bare repositories are conventionally named "<name>.git"
        last = last[: -len(".git")]
    segments[-1] = last + suffix
    prefix = tuple(segments)
    validate_prefix(prefix)
    return prefix


def validate_prefix(prefix: Sequence[str]) -> None:
    if not prefix:
        raise EmptyPrefix("Prefix is empty")
    for segment in prefix:
        if not segment or "/" in segment or "\0" in segment or segment in {".", "..", ".git"}:
            raise RepoWeaverError(f"Invalid path segment {segment!r} in prefix")


def format_prefix(prefix: Sequence[str]) -> str:
    return "/".join(prefix)


def check_prefixes(placements: Iterable[Tuple[str, Prefix]]) -> None:
    """Raise PathCollision if two prefixes are equal or nested.

    ``placements`` pairs a repository label (usually its path) with the
    prefix it would occupy.
    """
    seen: List[Tuple[str, Prefix]] = []
    for label, prefix in placements:
        if not prefix:
            raise EmptyPrefix(f"Repository {label} has an empty prefix")
        validate_prefix(prefix)
        for other_label, other in seen:
            if prefix == other:
                raise PathCollision(other_label, label, f"both map to '{format_prefix(prefix)}'")
            shorter, longer = sorted((prefix, other), key=len)
            if longer[: len(shorter)] == shorter:
                raise PathCollision(
                    other_label,
                    label,
                    f"'{format_prefix(shorter)}' contains '{format_prefix(longer)}'",
                )
        seen.append((label, prefix))


class PathRewriter:
    def __init__(self, store: ObjectStore) -> None:
        self.store = store
        self._cache: Dict[Tuple[ObjectId, Prefix], ObjectId] = {}
        self._lock = threading.Lock()

    def rewrite(self, tree_id: ObjectId, prefix: Sequence[str]) -> ObjectId:
        prefix = tuple(prefix)
        validate_prefix(prefix)
        key = (tree_id, prefix)
        with self._lock:
            cached = self._cache.get(key)
        if cached is not None:
            return cached

        current = tree_id
        for segment in reversed(prefix):
            wrapper = Tree()
            wrapper.add(segment.encode("utf-8"), TREE_MODE, current)
            current = self.store.add_object(wrapper)

        with self._lock:
            self._cache.setdefault(key, current)
        return current

    def overlay(self, tree_ids: Sequence[ObjectId]) -> ObjectId:
        """Union of several trees whose entries must not clash."""
        if not tree_ids:
            return self.store.add_object(Tree())
        unique = list(dict.fromkeys(tree_ids))
        if len(unique) == 1:
            return unique[0]
        return self._overlay(unique, "")

    def _overlay(self, tree_ids: Sequence[ObjectId], path: str) -> ObjectId:
        merged: Dict[bytes, List[Tuple[int, ObjectId]]] = {}
        for tree_id in tree_ids:
            for name, mode, oid in self.store.read_tree(tree_id).iteritems():
                merged.setdefault(name, []).append((mode, oid))

        result = Tree()
        for name, entries in merged.items():
            entry_path = path + name.decode("utf-8", "replace")
            distinct = list(dict.fromkeys(entries))
            if len(distinct) == 1:
                mode, oid = distinct[0]
                result.add(name, mode, oid)
                continue
            if all(is_tree_mode(mode) for mode, _ in distinct):
                oid = self._overlay([oid for _, oid in distinct], entry_path + "/")
                result.add(name, TREE_MODE, oid)
                continue
            raise PathCollision(
                short_id(distinct[0][1]),
                short_id(distinct[1][1]),
                f"conflicting entries at '{entry_path}'",
            )
        return self.store.add_object(result)
