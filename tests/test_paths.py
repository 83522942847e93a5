from __future__ import annotations

from pathlib import Path

import pytest
from dulwich.objects import Blob, Tree

from repo_weaver.paths import (
    EmptyPrefix,
    PathRewriter,
    check_prefixes,
    compute_prefix,
)
from repo_weaver.store import MemoryObjectStore
from repo_weaver.workspace import PathCollision, RepoWeaverError


def make_tree(store: MemoryObjectStore, **files: str) -> bytes:
    tree = Tree()
    for name, content in files.items():
        tree.add(name.encode(), 0o100644, store.add(Blob.from_string(content.encode())))
    return store.add(tree)


def test_compute_prefix_appends_suffix_to_last_segment(tmp_path: Path) -> None:
    assert compute_prefix(tmp_path / "a", tmp_path, "-src") == ("a-src",)
    assert compute_prefix(tmp_path / "external" / "zlib", tmp_path, "_x") == ("external", "zlib_x")


def test_compute_prefix_strips_bare_repo_extension(tmp_path: Path) -> None:
    assert compute_prefix(tmp_path / "tools.git", tmp_path) == ("tools",)


def test_compute_prefix_rejects_root(tmp_path: Path) -> None:
    with pytest.raises(EmptyPrefix):
        compute_prefix(tmp_path, tmp_path)


@pytest.mark.parametrize("suffix", ["/nested", "-a/b", "\0"])
def test_compute_prefix_rejects_suffix_that_is_not_a_name(tmp_path: Path, suffix: str) -> None:
    with pytest.raises(RepoWeaverError):
        compute_prefix(tmp_path / "a", tmp_path, suffix)


def test_check_prefixes_reports_both_paths() -> None:
    with pytest.raises(PathCollision) as excinfo:
        check_prefixes([("/r/a", ("a",)), ("/r/b", ("b",)), ("/r/x/a", ("a",))])
    assert excinfo.value.first == "/r/a"
    assert excinfo.value.second == "/r/x/a"


def test_check_prefixes_rejects_invalid_segments() -> None:
    with pytest.raises(RepoWeaverError):
        check_prefixes([("/r/a", ("a/b",))])


def test_check_prefixes_accepts_siblings_below_common_parent() -> None:
    check_prefixes([("/r/ext/a", ("ext", "a")), ("/r/ext/b", ("ext", "b"))])


def test_rewrite_wraps_tree_without_copying() -> None:
    store = MemoryObjectStore()
    tree = make_tree(store, **{"file.txt": "data"})
    rewriter = PathRewriter(store)

    new_tree = rewriter.rewrite(tree, ("third_party", "lib"))

    outer = store.read_tree(new_tree)
    assert [entry.path for entry in outer.iteritems()] == [b"third_party"]
    inner = store.read_tree(outer[b"third_party"][1])
    assert list(inner.iteritems()) == [(b"lib", 0o040000, tree)]
    assert store.writes["tree"] == 2


def test_rewrite_is_deterministic() -> None:
    store = MemoryObjectStore()
    tree = make_tree(store, a="1")

    first = PathRewriter(store).rewrite(tree, ("pkg",))
    second = PathRewriter(store).rewrite(tree, ("pkg",))

    assert first == second


def test_rewrite_is_memoized() -> None:
    store = MemoryObjectStore()
    tree = make_tree(store, a="1")
    rewriter = PathRewriter(store)

    rewriter.rewrite(tree, ("pkg",))
    rewriter.rewrite(tree, ("pkg",))

    assert store.writes["tree"] == 1


def test_rewrite_rejects_empty_prefix() -> None:
    store = MemoryObjectStore()
    tree = make_tree(store, a="1")
    with pytest.raises(ValueError):
        PathRewriter(store).rewrite(tree, ())


def test_overlay_merges_disjoint_prefixes() -> None:
    store = MemoryObjectStore()
    rewriter = PathRewriter(store)
    a = rewriter.rewrite(make_tree(store, x="1"), ("ext", "a"))
    b = rewriter.rewrite(make_tree(store, y="2"), ("ext", "b"))
    c = rewriter.rewrite(make_tree(store, z="3"), ("c",))

    merged = store.read_tree(rewriter.overlay([a, b, c]))

    assert [entry.path for entry in merged.iteritems()] == [b"c", b"ext"]
    ext = store.read_tree(merged[b"ext"][1])
    assert [entry.path for entry in ext.iteritems()] == [b"a", b"b"]


def test_overlay_reports_conflicting_entries() -> None:
    store = MemoryObjectStore()
    first = make_tree(store, **{"README": "one"})
    second = make_tree(store, **{"README": "two"})

    with pytest.raises(PathCollision):
        PathRewriter(store).overlay([first, second])
