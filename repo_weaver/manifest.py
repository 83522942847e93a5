from __future__ import annotations

import logging
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Dict, List, Optional

from .workspace import ManifestParseError

REPO_DIR = ".repo"
CANDIDATE_FILES = (
    Path(REPO_DIR) / "manifest.xml",
    Path("default.xml"),
    Path("manifest.xml"),
)
MAX_INCLUDE_DEPTH = 8


@dataclass
class ManifestProject:
    name: str
    path: str
    revision: Optional[str] = None


@dataclass
class Manifest:
    path: Path
    default_revision: Optional[str] = None
    projects: List[ManifestProject] = field(default_factory=list)

    @property
    def declared_branch(self) -> Optional[str]:
        return normalize_revision(self.default_revision)

    def project_for(self, relative_path: str) -> Optional[ManifestProject]:
        wanted = PurePosixPath(relative_path).as_posix()
        for project in self.projects:
            if PurePosixPath(project.path).as_posix() == wanted:
                return project
        return None

    def revision_for(self, relative_path: str) -> Optional[str]:
        project = self.project_for(relative_path)
        if project and project.revision:
            return normalize_revision(project.revision)
        return self.declared_branch


def normalize_revision(revision: Optional[str]) -> Optional[str]:
    if not revision:
        return None
    revision = revision.strip()
    for prefix in ("refs/heads/", "refs/tags/"):
        if revision.startswith(prefix):
            return revision[len(prefix) :] or None
    return revision or None


def find_manifest(root: Path) -> Optional[Manifest]:
    """Locate and load the manifest below ``root``.

    A missing manifest is not an error. A malformed one is reported and
    treated as missing so repositories that do not need it still merge.
    """
    root = root.expanduser()
    for candidate in CANDIDATE_FILES:
        path = root / candidate
        if not path.is_file():
            continue
        try:
            manifest = load_manifest(path)
        except ManifestParseError as exc:
            logging.warning("%s; ignoring manifest", exc)
            return None
        logging.info(
            "Using manifest %s (default revision: %s)",
            path,
            manifest.declared_branch or "none",
        )
        return manifest
    logging.debug("No manifest found below %s", root)
    return None


def load_manifest(path: Path) -> Manifest:
    manifest = Manifest(path=path)
    _load_into(manifest, path, depth=0)
    return manifest


def _load_into(manifest: Manifest, path: Path, *, depth: int) -> None:
    if depth > MAX_INCLUDE_DEPTH:
        raise ManifestParseError(path, "includes nested too deeply")
    try:
        tree = ET.parse(path)
    except ET.ParseError as exc:
        raise ManifestParseError(path, str(exc)) from exc
    except OSError as exc:
        raise ManifestParseError(path, exc.strerror or str(exc)) from exc

    root = tree.getroot()
    if root.tag != "manifest":
        raise ManifestParseError(path, f"unexpected root element <{root.tag}>")

    remote_revisions: Dict[str, str] = {}
    for element in root:
        if element.tag == "remote" and element.get("name") and element.get("revision"):
            remote_revisions[element.get("name")] = element.get("revision")

    default_remote = None
    for element in root:
        if element.tag == "default":
            default_remote = element.get("remote")
            if element.get("revision"):
                manifest.default_revision = element.get("revision")
        elif element.tag == "include":
            name = element.get("name")
            if not name:
                raise ManifestParseError(path, "<include> without a name")
            _load_into(manifest, _include_path(path, name), depth=depth + 1)

    if manifest.default_revision is None and default_remote in remote_revisions:
        manifest.default_revision = remote_revisions[default_remote]

    for element in root.iter("project"):
        name = element.get("name")
        if not name:
            raise ManifestParseError(path, "<project> without a name")
        revision = element.get("revision")
        if revision is None and element.get("remote") in remote_revisions:
            revision = remote_revisions[element.get("remote")]
        manifest.projects.append(
            ManifestProject(name=name, path=element.get("path") or name, revision=revision)
        )


def _include_path(manifest_path: Path, name: str) -> Path:
    # .repo/manifest.xml includes files from the .repo/manifests checkout
    if manifest_path.parent.name == REPO_DIR:
        candidate = manifest_path.parent / "manifests" / name
        if candidate.is_file():
            return candidate
    return manifest_path.parent / name
