from __future__ import annotations

from pathlib import Path

import pytest

from depot_cli.exceptions import InvalidArgumentError, PathEscapeError
from depot_cli.models.branch import Branch, VersionIdentifier, VersionKind
from depot_cli.storage.layout import (
    active_version_path,
    branch_path,
    detect_legacy_structure,
    detect_version_identifier_type,
    ensure_version_directory,
    has_version_directories,
    is_staging_directory,
    list_versions,
    normalize_version_identifier,
    remove_version_directory,
    validate_path_within_root,
    version_path,
)
from depot_cli.storage.version_state import JsonVersionStateStore


def test_version_path_layout(tmp_path):
    path = version_path(tmp_path, Branch.BETA, "123", VersionKind.MANIFEST)
    assert path == tmp_path / "branches" / "beta-branch" / "manifest_123"


def test_version_path_name_parses_back():
    path = version_path(Path("/games"), Branch.ALTERNATE, " build_987 ", VersionKind.BUILD)
    assert path.name == "build_987"
    assert VersionIdentifier.from_directory_name(path.name) == VersionIdentifier(
        "987", VersionKind.BUILD
    )
    assert detect_version_identifier_type(path.name) is VersionKind.BUILD


def test_detect_identifier_type_of_unprefixed_names():
    assert detect_version_identifier_type("18234567") is None
    assert detect_version_identifier_type("manifest_") is None


@pytest.mark.parametrize("bad", ["", "   ", "..", "a/b", "a\\b", "a?b", "manifest_"])
def test_normalize_rejects_unsafe_ids(bad):
    with pytest.raises(InvalidArgumentError):
        normalize_version_identifier(bad, VersionKind.MANIFEST)


def test_containment(tmp_path):
    root = tmp_path / "install"
    root.mkdir()
    assert validate_path_within_root(root, root)
    assert validate_path_within_root(root, root / "branches" / "x")
    assert not validate_path_within_root(root, root / ".." / ".." / "etc")
    assert not validate_path_within_root(root, tmp_path / "install-evil")


def test_legacy_detection(tmp_path):
    flat = tmp_path / "flat"
    flat.mkdir()
    (flat / "Game.exe").write_text("x")
    nested = tmp_path / "nested"
    (nested / "manifest_1").mkdir(parents=True)
    (nested / "leftover.txt").write_text("x")
    empty = tmp_path / "empty"
    empty.mkdir()

    assert detect_legacy_structure(flat)
    assert not detect_legacy_structure(nested)
    assert not detect_legacy_structure(empty)
    assert not detect_legacy_structure(tmp_path / "missing")
    assert has_version_directories(nested)
    assert not has_version_directories(flat)


def test_staging_directory_names():
    assert is_staging_directory(".manifest_1.staging")
    assert not is_staging_directory("manifest_1.staging")
    assert not is_staging_directory(".DepotDownloader")


def test_list_versions(tmp_path):
    folder = branch_path(tmp_path, Branch.MAIN)
    (folder / "manifest_1").mkdir(parents=True)
    (folder / "manifest_1" / "data.bin").write_bytes(b"0123456789")
    (folder / "build_2").mkdir()
    (folder / "18234567").mkdir()
    (folder / ".manifest_9.staging").mkdir()
    (folder / "notes.txt").write_text("not a version")

    versions = list_versions(
        tmp_path, Branch.MAIN, active=VersionIdentifier("1", VersionKind.MANIFEST)
    )

    by_name = {v.version.directory_name: v for v in versions}
    assert set(by_name) == {"manifest_1", "build_2", "build_18234567"}
    assert by_name["manifest_1"].is_active
    assert by_name["manifest_1"].size_bytes == 10
    assert not by_name["build_2"].is_active
    assert list_versions(tmp_path, Branch.BETA) == []


def test_ensure_version_directory(tmp_path):
    target = version_path(tmp_path, Branch.MAIN, "1", VersionKind.MANIFEST)
    assert ensure_version_directory(tmp_path, target).is_dir()
    with pytest.raises(PathEscapeError):
        ensure_version_directory(tmp_path / "root", tmp_path / "elsewhere")
    assert not (tmp_path / "elsewhere").exists()


def test_remove_version_directory(tmp_path):
    target = version_path(tmp_path, Branch.MAIN, "1", VersionKind.MANIFEST)
    target.mkdir(parents=True)
    (target / "file").write_text("x")

    with pytest.raises(PathEscapeError):
        remove_version_directory(tmp_path, tmp_path)
    with pytest.raises(PathEscapeError):
        remove_version_directory(tmp_path / "branches", tmp_path / "other")

    remove_version_directory(tmp_path, target)
    assert not target.exists()
    remove_version_directory(tmp_path, target)


def test_active_version_path(tmp_path):
    state = JsonVersionStateStore(tmp_path / "state.json")
    assert active_version_path(tmp_path, Branch.MAIN, state) is None

    state.set_active_version(Branch.MAIN, "1", VersionKind.MANIFEST)
    assert active_version_path(tmp_path, Branch.MAIN, state) is None

    target = version_path(tmp_path, Branch.MAIN, "1", VersionKind.MANIFEST)
    target.mkdir(parents=True)
    assert active_version_path(tmp_path, Branch.MAIN, state) == target
