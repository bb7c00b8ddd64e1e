"""
Maps (branch, version) pairs onto the on-disk layout:

    <root>/branches/<branch folder>/<build_|manifest_><version id>/...

Every helper that deletes or creates directories checks containment in the
install root first and raises `PathEscapeError` before touching anything.
"""

import logging
import os
import shutil
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING

from pathvalidate import ValidationError, validate_filename

from depot_cli.exceptions import InvalidArgumentError, PathEscapeError
from depot_cli.models.branch import (
    Branch,
    BranchVersionInfo,
    VersionIdentifier,
    VersionKind,
)

if TYPE_CHECKING:
    from depot_cli.storage.version_state import VersionStateStore

log = logging.getLogger(__name__)

BRANCHES_DIR = "branches"
STAGING_SUFFIX = ".staging"


def branch_path(root: Path, branch: Branch) -> Path:
    return Path(root) / BRANCHES_DIR / branch.folder_name


def normalize_version_identifier(version_id: str, kind: VersionKind) -> str:
    """
    Strips whitespace and a redundant kind prefix, then checks the id can be
    used as a single path component.

    Raises:
        InvalidArgumentError: For empty ids or ids that are not safe filenames.
    """
    value = str(version_id).strip()
    if value.startswith(kind.prefix):
        value = value[len(kind.prefix) :]
    if not value:
        raise InvalidArgumentError("Version identifier cannot be empty.")
    if value in (".", "..") or "/" in value or "\\" in value:
        raise InvalidArgumentError(f"Invalid version identifier: {version_id!r}")
    try:
        validate_filename(f"{kind.prefix}{value}", platform="universal")
    except ValidationError as e:
        raise InvalidArgumentError(
            f"Invalid version identifier {version_id!r}: {e}"
        ) from e
    return value


def version_path(
    root: Path, branch: Branch, version_id: str, kind: VersionKind
) -> Path:
    value = normalize_version_identifier(version_id, kind)
    return branch_path(root, branch) / f"{kind.prefix}{value}"


def detect_version_identifier_type(name: str) -> VersionKind | None:
    """`build`/`manifest` from a directory name's prefix; None when unprefixed."""
    identifier = VersionIdentifier.from_directory_name(name)
    return identifier.kind if identifier else None


def is_staging_directory(name: str) -> bool:
    return name.startswith(".") and name.endswith(STAGING_SUFFIX)


def validate_path_within_root(root: Path, candidate: Path) -> bool:
    """True when `candidate` resolves to `root` itself or somewhere beneath it."""
    resolved_root = Path(root).resolve()
    resolved = Path(candidate).resolve()
    if resolved == resolved_root:
        return True
    return str(resolved).startswith(str(resolved_root).rstrip(os.sep) + os.sep)


def ensure_within_root(root: Path, candidate: Path) -> None:
    if not validate_path_within_root(root, candidate):
        raise PathEscapeError(
            f"Refusing to operate on '{candidate}': outside of install root '{root}'."
        )


def detect_legacy_structure(path: Path) -> bool:
    """At least one regular file directly inside and no subdirectories."""
    if not path.is_dir():
        return False
    has_files = False
    try:
        with os.scandir(path) as entries:
            for entry in entries:
                if entry.is_dir(follow_symlinks=False):
                    return False
                if entry.is_file(follow_symlinks=False):
                    has_files = True
    except OSError as e:
        log.warning(f"[yellow]Could not scan {path}: {e}[/yellow]")
        return False
    return has_files


def has_version_directories(path: Path) -> bool:
    if not path.is_dir():
        return False
    return any(
        child.is_dir() and detect_version_identifier_type(child.name) is not None
        for child in path.iterdir()
    )


def directory_size(path: Path) -> int:
    """Recursive sum of regular file sizes. Unreadable entries are skipped."""
    total = 0
    try:
        with os.scandir(path) as entries:
            for entry in entries:
                try:
                    if entry.is_dir(follow_symlinks=False):
                        total += directory_size(Path(entry.path))
                    elif entry.is_file(follow_symlinks=False):
                        total += entry.stat(follow_symlinks=False).st_size
                except OSError:
                    continue
    except OSError as e:
        log.debug(f"Could not size {path}: {e}")
    return total


def _created_at(path: Path) -> datetime:
    stat = path.stat()
    timestamp = getattr(stat, "st_birthtime", None) or stat.st_ctime
    return datetime.fromtimestamp(timestamp)


def list_versions(
    root: Path, branch: Branch, active: VersionIdentifier | None = None
) -> list[BranchVersionInfo]:
    """
    Enumerates the version directories of a branch, newest first.

    Unprefixed directories are reported as legacy build ids. Hidden
    directories (staging areas, tool metadata) are skipped.

    Args:
        root: The install root.
        branch: Which branch folder to scan.
        active: The branch's active version, flagged with `is_active`.

    Returns:
        One `BranchVersionInfo` per version directory.
    """
    folder = branch_path(root, branch)
    if not folder.is_dir():
        return []

    versions = []
    for child in folder.iterdir():
        if not child.is_dir() or child.name.startswith("."):
            continue
        identifier = VersionIdentifier.from_directory_name(child.name)
        if identifier is None:
            identifier = VersionIdentifier(child.name, VersionKind.BUILD)
        try:
            created = _created_at(child)
        except OSError as e:
            log.warning(f"[yellow]Skipping unreadable version {child}: {e}[/yellow]")
            continue
        versions.append(
            BranchVersionInfo(
                version=identifier,
                path=child,
                download_date=created,
                size_bytes=directory_size(child),
                is_active=active is not None and identifier == active,
            )
        )

    versions.sort(key=lambda info: info.download_date, reverse=True)
    return versions


def ensure_version_directory(root: Path, path: Path) -> Path:
    ensure_within_root(root, path)
    path.mkdir(parents=True, exist_ok=True)
    return path


def remove_version_directory(root: Path, path: Path) -> None:
    """
    Deletes a version directory, e.g. the remains of a cancelled download.

    Raises:
        PathEscapeError: If `path` is the root itself or lies outside it.
    """
    ensure_within_root(root, path)
    if Path(path).resolve() == Path(root).resolve():
        raise PathEscapeError("Refusing to delete the install root itself.")
    if path.exists():
        shutil.rmtree(path)
        log.info(f"[yellow]Removed {path}[/yellow]")


def active_version_path(
    root: Path, branch: Branch, state: "VersionStateStore"
) -> Path | None:
    """Directory of the branch's active version, if one is set and present."""
    active = state.get_active_version(branch)
    if active is None:
        return None
    path = branch_path(root, branch) / active.directory_name
    return path if path.is_dir() else None
