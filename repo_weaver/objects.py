"""
Git object access for the weaving core.

Objects are dulwich ``Blob``/``Tree``/``Commit`` instances; identifiers are
dulwich's 40-character hex SHA-1 strings (``bytes``). Stores only differ in
where the objects live and how references are read.
"""

from __future__ import annotations

import abc
import stat
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from dulwich.errors import ObjectFormatException
from dulwich.objects import Blob, Commit, ShaFile, Tree, object_class, valid_hexsha

from .workspace import ObjectStoreError

__all__ = [
    "Blob",
    "Commit",
    "ObjectId",
    "ObjectStore",
    "ShaFile",
    "TREE_MODE",
    "Tree",
    "is_object_id",
    "is_tree_mode",
    "parse_object",
    "relocate_commit",
    "short_id",
]

ObjectId = bytes

TREE_MODE = stat.S_IFDIR


def is_object_id(value: bytes) -> bool:
    return len(value) == 40 and valid_hexsha(value)


def is_tree_mode(mode: int) -> bool:
    return stat.S_ISDIR(mode)


def short_id(oid: ObjectId) -> str:
    return oid.decode("ascii")[:12]


def parse_object(type_name: bytes, data: bytes) -> ShaFile:
    cls = object_class(type_name)
    if cls is None:
        raise ObjectStoreError(f"Unsupported object type: {type_name!r}")
    try:
        return cls.from_raw_string(cls.type_num, data)
    except (ObjectFormatException, ValueError) as exc:
        raise ObjectStoreError(f"Malformed {type_name.decode('ascii')} object: {exc}") from exc


def relocate_commit(
    commit: Commit,
    tree: ObjectId,
    parents: Sequence[ObjectId],
) -> Tuple[Commit, bool]:
    """Copy ``commit`` onto a new tree and parents, keeping its metadata.

    Returns the new commit and whether a signature had to be dropped; a
    signature covers the old tree and parents and would no longer verify.
    """
    rewritten = commit.copy()
    rewritten.tree = tree
    rewritten.parents = list(parents)
    signed = commit.gpgsig is not None
    if signed:
        rewritten.gpgsig = None
    return rewritten, signed


class ObjectStore(abc.ABC):
    """Capabilities the weaving core needs from a content-addressed store.

    ``repo`` arguments name the repository whose references are consulted;
    objects are always read from and written to the store itself.
    """

    @abc.abstractmethod
    def read_object(self, oid: ObjectId) -> ShaFile:
        ...

    @abc.abstractmethod
    def add_object(self, obj: ShaFile) -> ObjectId:
        """Store ``obj`` and return its id. Adding an existing object is a no-op."""

    @abc.abstractmethod
    def resolve_ref(self, repo: Path, branch: str) -> Optional[ObjectId]:
        """Return the commit a branch (or tag) points to, or None."""

    @abc.abstractmethod
    def update_ref(self, repo: Path, branch: str, oid: ObjectId) -> None:
        ...

    @abc.abstractmethod
    def default_branch(self, repo: Path) -> Optional[str]:
        ...

    @abc.abstractmethod
    def list_branches(self, repo: Path) -> List[str]:
        ...

    def has_commits(self, repo: Path) -> bool:
        return bool(self.list_branches(repo))

    def qualify_ref(self, repo: Path, branch: str) -> str:
        return f"refs/heads/{branch}"

    def manifest_branch(self, repo: Path) -> Optional[str]:
        return None

    def import_history(self, repo: Path, ref: str) -> None:
        """Make the history behind ``ref`` readable from this store."""

    def read_commit(self, oid: ObjectId) -> Commit:
        obj = self.read_object(oid)
        if not isinstance(obj, Commit):
            raise ObjectStoreError(f"Object {oid.decode('ascii')} is not a commit")
        return obj

    def read_tree(self, oid: ObjectId) -> Tree:
        obj = self.read_object(oid)
        if not isinstance(obj, Tree):
            raise ObjectStoreError(f"Object {oid.decode('ascii')} is not a tree")
        return obj

    def close(self) -> None:
        pass

    def __enter__(self) -> "ObjectStore":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
