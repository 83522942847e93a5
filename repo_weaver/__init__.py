"""
repo_weaver package

Provides the CLI entrypoint (`python -m repo_weaver.cli`) and the history
weaving engine that joins several git repositories into one.
"""

from .cli import main
from .merge import JoinConfig, join_repositories
from .weave import HistoryWeaver, SourceRepository
from .workspace import (
    EmptyRepository,
    ManifestParseError,
    NoBranchResolved,
    ObjectStoreError,
    PathCollision,
    RepoWeaverError,
)

__all__ = [
    "main",
    "JoinConfig",
    "join_repositories",
    "HistoryWeaver",
    "SourceRepository",
    "EmptyRepository",
    "ManifestParseError",
    "NoBranchResolved",
    "ObjectStoreError",
    "PathCollision",
    "RepoWeaverError",
]
