from __future__ import annotations

import logging
import re
import subprocess
import threading
from collections import Counter
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from dulwich.object_store import MemoryObjectStore as DulwichMemoryObjectStore

from .gitutils import describe_failure, run_git
from .objects import ObjectId, ObjectStore, ShaFile, is_object_id, parse_object
from .workspace import ObjectStoreError

# Remote-tracking ref the repo tool creates for the manifest revision, as shown
# by `git branch -r`, e.g. "m/main -> origin/main".
MANIFEST_BRANCH_PATTERN = re.compile(r"m/\S* -> (\S*)")


class GitObjectStore(ObjectStore):
    """Object store backed by a git repository on disk.

    Objects are read through one long-lived ``git cat-file --batch`` process
    and written with ``git hash-object -w``; references are read and updated
    with plumbing commands run in the repository they belong to.
    """

    def __init__(self, repo: Path) -> None:
        self.repo = repo
        self._reader: subprocess.Popen | None = None
        self._lock = threading.Lock()
        self.writes: Counter[str] = Counter()

    # Objects --------------------------------------------------------------
    def read_object(self, oid: ObjectId) -> ShaFile:
        with self._lock:
            reader = self._ensure_reader()
            try:
                reader.stdin.write(oid + b"\n")
                reader.stdin.flush()
                header = reader.stdout.readline()
            except (BrokenPipeError, OSError) as exc:
                self._reader = None
                raise ObjectStoreError(f"git cat-file died while reading {oid!r}: {exc}") from exc
            if not header:
                self._reader = None
                raise ObjectStoreError(f"git cat-file closed unexpectedly while reading {oid!r}")
            parts = header.split()
            if len(parts) == 2 and parts[1] == b"missing":
                raise ObjectStoreError(f"Object {oid.decode('ascii')} is missing from {self.repo}")
            if len(parts) != 3:
                raise ObjectStoreError(f"Unexpected cat-file header for {oid!r}: {header!r}")
            size = int(parts[2])
            data = reader.stdout.read(size)
            reader.stdout.read(1)
        if len(data) != size:
            raise ObjectStoreError(f"Short read for object {oid.decode('ascii')}")
        return parse_object(parts[1], data)

    def add_object(self, obj: ShaFile) -> ObjectId:
        obj_type = obj.type_name.decode("ascii")
        args = ["hash-object", "-w", "--literally", "-t", obj_type, "--stdin"]
        result = run_git(self.repo, args, input=obj.as_raw_string())
        if result.returncode != 0:
            raise ObjectStoreError(describe_failure(args, result))
        oid = result.stdout.strip()
        if oid != obj.id:
            raise ObjectStoreError(
                f"git stored {obj_type} under unexpected id {oid.decode('ascii', 'replace')}"
            )
        self.writes[obj_type] += 1
        return oid

    # References -----------------------------------------------------------
    def qualify_ref(self, repo: Path, branch: str) -> str:
        found = self._find_ref(repo, branch)
        return found[0] if found else f"refs/heads/{branch}"

    def resolve_ref(self, repo: Path, branch: str) -> Optional[ObjectId]:
        found = self._find_ref(repo, branch)
        return found[1] if found else None

    def _find_ref(self, repo: Path, branch: str) -> Optional[Tuple[str, ObjectId]]:
        candidates = [f"refs/heads/{branch}", f"refs/tags/{branch}", f"refs/remotes/{branch}"]
        for ref in candidates:
            oid = self._rev_parse(repo, ref)
            if oid is not None:
                return ref, oid
        # like `git checkout <branch>`: remote-tracking branches of that name, all at one commit
        args = ["for-each-ref", "--format=%(refname)\t%(symref)", "refs/remotes"]
        result = run_git(repo, args)
        if result.returncode != 0:
            return None
        matches = []
        for line in result.stdout.splitlines():
            ref, _, symref = line.partition("\t")
            if symref:
                # aliases such as origin/HEAD or the repo tool's m/<manifest>
                continue
            if ref.endswith("/" + branch) and ref.count("/") == 3 + branch.count("/"):
                matches.append(ref)
        if not matches:
            return None
        resolved = {ref: self._rev_parse(repo, ref) for ref in sorted(matches)}
        if None in resolved.values() or len(set(resolved.values())) != 1:
            return None
        ref = next(iter(resolved))
        return ref, resolved[ref]

    def _rev_parse(self, repo: Path, ref: str) -> Optional[ObjectId]:
        result = run_git(repo, ["rev-parse", "--verify", "--quiet", f"{ref}^{{commit}}"])
        if result.returncode != 0:
            return None
        oid = result.stdout.strip().encode("ascii")
        return oid if is_object_id(oid) else None

    def has_commits(self, repo: Path) -> bool:
        result = run_git(repo, ["for-each-ref", "--count=1", "--format=%(objectname)"])
        if result.returncode == 0 and result.stdout.strip():
            return True
        return self._rev_parse(repo, "HEAD") is not None

    def update_ref(self, repo: Path, branch: str, oid: ObjectId) -> None:
        args = [
            "update-ref",
            "-m",
            "repo-weaver: join repositories",
            f"refs/heads/{branch}",
            oid.decode("ascii"),
        ]
        result = run_git(repo, args)
        if result.returncode != 0:
            raise ObjectStoreError(describe_failure(args, result))
        logging.debug("Updated %s refs/heads/%s -> %s", repo, branch, oid.decode("ascii"))

    def default_branch(self, repo: Path) -> Optional[str]:
        result = run_git(repo, ["symbolic-ref", "--quiet", "--short", "HEAD"])
        if result.returncode != 0:
            return None
        return result.stdout.strip() or None

    def list_branches(self, repo: Path) -> List[str]:
        args = ["for-each-ref", "--format=%(refname:short)", "refs/heads"]
        result = run_git(repo, args)
        if result.returncode != 0:
            raise ObjectStoreError(describe_failure(args, result))
        return [line.strip() for line in result.stdout.splitlines() if line.strip()]

    def manifest_branch(self, repo: Path) -> Optional[str]:
        result = run_git(repo, ["branch", "-r"])
        if result.returncode != 0:
            logging.debug("git branch -r failed for %s: %s", repo, result.stderr.strip())
            return None
        match = MANIFEST_BRANCH_PATTERN.search(result.stdout)
        if not match:
            return None
        revision = match.group(1)
        if "/" in revision:
            # remote-tracking branch such as "origin/main"
            return revision.split("/")[-1]
        return revision

    def import_history(self, repo: Path, ref: str) -> None:
        args = ["fetch", "--quiet", "--no-tags", "--no-write-fetch-head", str(repo.resolve()), ref]
        result = run_git(self.repo, args)
        if result.returncode != 0:
            raise ObjectStoreError(describe_failure(args, result))
        logging.debug("Imported %s from %s", ref, repo)

    # Lifecycle ------------------------------------------------------------
    def _ensure_reader(self) -> subprocess.Popen:
        if self._reader is None or self._reader.poll() is not None:
            try:
                self._reader = subprocess.Popen(
                    ["git", "-C", str(self.repo), "cat-file", "--batch"],
                    stdin=subprocess.PIPE,
                    stdout=subprocess.PIPE,
                    stderr=subprocess.DEVNULL,
                )
            except OSError as exc:
                raise ObjectStoreError(f"Failed to start git cat-file: {exc}") from exc
        return self._reader

    def close(self) -> None:
        with self._lock:
            reader, self._reader = self._reader, None
        if reader is None:
            return
        if reader.stdin:
            reader.stdin.close()
        reader.wait()
        if reader.stdout:
            reader.stdout.close()


class MemoryObjectStore(ObjectStore):
    """Objects in a dulwich ``MemoryObjectStore``, references in dicts.

    References are kept per repository path, so a single instance can stand
    in for several source repositories plus the merged one.
    """

    def __init__(self) -> None:
        self.objects = DulwichMemoryObjectStore()
        self.refs: Dict[str, Dict[str, ObjectId]] = {}
        self.tags: Dict[str, Dict[str, ObjectId]] = {}
        self.heads: Dict[str, str] = {}
        self.manifest_branches: Dict[str, str] = {}
        self.writes: Counter[str] = Counter()
        self._lock = threading.Lock()

    def add(self, obj: ShaFile) -> ObjectId:
        """Seed an object without counting it as a write."""
        with self._lock:
            self.objects.add_object(obj)
        return obj.id

    def read_object(self, oid: ObjectId) -> ShaFile:
        try:
            return self.objects[oid]
        except KeyError:
            raise ObjectStoreError(f"Object {oid.decode('ascii')} is missing") from None

    def add_object(self, obj: ShaFile) -> ObjectId:
        oid = self.add(obj)
        with self._lock:
            self.writes[obj.type_name.decode("ascii")] += 1
        return oid

    def set_branch(self, repo: Path, branch: str, oid: ObjectId, *, head: bool = False) -> None:
        self.refs.setdefault(str(repo), {})[branch] = oid
        if head or str(repo) not in self.heads:
            self.heads[str(repo)] = branch

    def set_tag(self, repo: Path, tag: str, oid: ObjectId) -> None:
        self.tags.setdefault(str(repo), {})[tag] = oid

    def qualify_ref(self, repo: Path, branch: str) -> str:
        if branch not in self.refs.get(str(repo), {}) and branch in self.tags.get(str(repo), {}):
            return f"refs/tags/{branch}"
        return f"refs/heads/{branch}"

    def resolve_ref(self, repo: Path, branch: str) -> Optional[ObjectId]:
        oid = self.refs.get(str(repo), {}).get(branch)
        if oid is None:
            oid = self.tags.get(str(repo), {}).get(branch)
        return oid

    def update_ref(self, repo: Path, branch: str, oid: ObjectId) -> None:
        if oid not in self.objects:
            raise ObjectStoreError(f"Cannot point {branch} at unknown object {oid.decode('ascii')}")
        self.refs.setdefault(str(repo), {})[branch] = oid

    def default_branch(self, repo: Path) -> Optional[str]:
        return self.heads.get(str(repo))

    def list_branches(self, repo: Path) -> List[str]:
        return sorted(self.refs.get(str(repo), {}))

    def has_commits(self, repo: Path) -> bool:
        return bool(self.refs.get(str(repo)) or self.tags.get(str(repo)))

    def manifest_branch(self, repo: Path) -> Optional[str]:
        return self.manifest_branches.get(str(repo))

    @property
    def write_count(self) -> int:
        return sum(self.writes.values())
