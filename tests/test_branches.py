from __future__ import annotations

from pathlib import Path

import pytest
from dulwich.objects import Commit, Tree

from repo_weaver.branches import BranchResolver
from repo_weaver.manifest import Manifest, ManifestProject
from repo_weaver.store import MemoryObjectStore
from repo_weaver.workspace import EmptyRepository, NoBranchResolved


def make_store(repo: Path, branches: dict, head: str | None = None) -> MemoryObjectStore:
    store = MemoryObjectStore()
    tree = store.add(Tree())
    for index, branch in enumerate(branches):
        commit = Commit()
        commit.tree = tree
        commit.author = commit.committer = b"C <c@example.com>"
        commit.author_time = commit.commit_time = index
        commit.author_timezone = commit.commit_timezone = 0
        commit.message = branch.encode()
        store.set_branch(repo, branch, store.add(commit), head=branch == head)
    return store


def test_manifest_branch_preferred_over_default(tmp_path: Path) -> None:
    repo = tmp_path / "repo"
    store = make_store(repo, {"main": 1, "dev": 1}, head="dev")
    manifest = Manifest(path=tmp_path / "default.xml", default_revision="main")

    resolver = BranchResolver(store, manifest=manifest, root=tmp_path)

    assert resolver.resolve(repo) == "main"


def test_explicit_branch_overrides_manifest(tmp_path: Path) -> None:
    repo = tmp_path / "repo"
    store = make_store(repo, {"main": 1, "release": 1})
    manifest = Manifest(path=tmp_path / "default.xml", default_revision="main")

    resolver = BranchResolver(store, explicit_branch="release", manifest=manifest, root=tmp_path)

    assert resolver.resolve(repo) == "release"


def test_explicit_branch_missing_fails(tmp_path: Path) -> None:
    repo = tmp_path / "repo"
    store = make_store(repo, {"main": 1})
    manifest = Manifest(path=tmp_path / "default.xml", default_revision="main")

    resolver = BranchResolver(store, explicit_branch="release", manifest=manifest, root=tmp_path)

    with pytest.raises(NoBranchResolved) as excinfo:
        resolver.resolve(repo)
    assert excinfo.value.branch == "release"


def test_call_arguments_take_precedence(tmp_path: Path) -> None:
    repo = tmp_path / "repo"
    store = make_store(repo, {"main": 1, "dev": 1, "stable": 1})
    resolver = BranchResolver(store, explicit_branch="dev")

    assert resolver.resolve(repo, explicit_branch="stable") == "stable"
    assert BranchResolver(store).resolve(repo, manifest_branch="dev") == "dev"


def test_falls_back_to_default_branch(tmp_path: Path) -> None:
    repo = tmp_path / "repo"
    store = make_store(repo, {"trunk": 1, "dev": 1}, head="trunk")

    assert BranchResolver(store).resolve(repo) == "trunk"


def test_project_revision_beats_manifest_default(tmp_path: Path) -> None:
    repo = tmp_path / "vendor" / "zlib"
    store = make_store(repo, {"main": 1, "v1.3": 1})
    manifest = Manifest(
        path=tmp_path / "default.xml",
        default_revision="main",
        projects=[ManifestProject(name="zlib", path="vendor/zlib", revision="refs/heads/v1.3")],
    )

    resolver = BranchResolver(store, manifest=manifest, root=tmp_path)

    assert resolver.resolve(repo) == "v1.3"


def test_repo_tool_remote_ref_used_without_manifest_file(tmp_path: Path) -> None:
    repo = tmp_path / "repo"
    store = make_store(repo, {"main": 1, "stable": 1}, head="main")
    store.manifest_branches[str(repo)] = "stable"

    assert BranchResolver(store).resolve(repo) == "stable"


def test_manifest_tag_is_accepted(tmp_path: Path) -> None:
    repo = tmp_path / "repo"
    store = make_store(repo, {"main": 1})
    store.set_tag(repo, "v2.0", store.resolve_ref(repo, "main"))
    manifest = Manifest(path=tmp_path / "default.xml", default_revision="refs/tags/v2.0")

    resolver = BranchResolver(store, manifest=manifest, root=tmp_path)

    assert resolver.resolve(repo) == "v2.0"
    assert store.qualify_ref(repo, "v2.0") == "refs/tags/v2.0"


def test_empty_repository(tmp_path: Path) -> None:
    store = MemoryObjectStore()

    with pytest.raises(EmptyRepository):
        BranchResolver(store).resolve(tmp_path / "empty")


def test_describe_builds_descriptor(tmp_path: Path) -> None:
    repo = tmp_path / "libs" / "core"
    store = make_store(repo, {"main": 1}, head="main")

    source = BranchResolver(store).describe(repo, tmp_path, suffix="-src")

    assert source.name == "libs/core"
    assert source.branch == "main"
    assert source.ref == "refs/heads/main"
    assert source.tip == store.resolve_ref(repo, "main")
    assert source.prefix == ("libs", "core-src")
