"""
Persistent record of installed versions and which one is active per branch.
"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Protocol

from depot_cli.exceptions import ConfigurationError
from depot_cli.models.branch import (
    Branch,
    BranchVersionInfo,
    VersionIdentifier,
    VersionKind,
)

log = logging.getLogger(__name__)


class VersionStateStore(Protocol):
    """The read/write contract the installer and migration engine rely on."""

    def get_active_version(self, branch: Branch) -> VersionIdentifier | None: ...

    def set_active_version(
        self, branch: Branch, version_id: str, kind: VersionKind
    ) -> None: ...

    def record_version(self, branch: Branch, info: BranchVersionInfo) -> None: ...


class JsonVersionStateStore:
    """
    Stores version state in a single JSON document:

        {"branches": {"main-branch": {"active": {"id": "...", "kind": "manifest"},
                                      "versions": {"manifest_123": {...}}}}}

    Writes go to a temporary file and are swapped in with `os.replace`.
    """

    def __init__(self, state_file_path: Path):
        self.state_file_path = state_file_path
        self._data: dict[str, Any] = self._load()

    def _load(self) -> dict[str, Any]:
        if not self.state_file_path.is_file():
            return {"branches": {}}
        try:
            with open(self.state_file_path, encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise ConfigurationError(
                f"Version state file '{self.state_file_path}' is corrupt: {e}"
            ) from e
        except OSError as e:
            raise ConfigurationError(f"Could not read version state: {e}") from e
        if not isinstance(data.get("branches"), dict):
            data["branches"] = {}
        return data

    def _save(self) -> None:
        tmp_path = self.state_file_path.with_suffix(".tmp")
        try:
            self.state_file_path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(self._data, f, indent=2)
            os.replace(tmp_path, self.state_file_path)
        except OSError as e:
            raise ConfigurationError(f"Failed to save version state: {e}") from e

    def _branch(self, branch: Branch) -> dict[str, Any]:
        entry = self._data["branches"].setdefault(branch.folder_name, {})
        entry.setdefault("active", None)
        entry.setdefault("versions", {})
        return entry

    def get_active_version(self, branch: Branch) -> VersionIdentifier | None:
        active = self._data["branches"].get(branch.folder_name, {}).get("active")
        if not active:
            return None
        try:
            return VersionIdentifier(str(active["id"]), VersionKind(active["kind"]))
        except (KeyError, ValueError):
            log.warning(
                f"[yellow]Ignoring malformed active version for {branch}[/yellow]"
            )
            return None

    def set_active_version(
        self, branch: Branch, version_id: str, kind: VersionKind
    ) -> None:
        entry = self._branch(branch)
        identifier = VersionIdentifier(version_id, kind)
        entry["active"] = {"id": version_id, "kind": kind.value}
        for name, info in entry["versions"].items():
            info["is_active"] = name == identifier.directory_name
        self._save()
        log.debug(f"Active version for {branch} set to {identifier}")

    def record_version(self, branch: Branch, info: BranchVersionInfo) -> None:
        entry = self._branch(branch)
        data = info.to_dict()
        if info.is_active:
            for other in entry["versions"].values():
                other["is_active"] = False
            entry["active"] = {"id": info.version.value, "kind": info.version.kind.value}
        entry["versions"][info.version.directory_name] = data
        self._save()

    def list_recorded_versions(self, branch: Branch) -> list[BranchVersionInfo]:
        versions = self._data["branches"].get(branch.folder_name, {}).get("versions", {})
        return [BranchVersionInfo.from_dict(v) for v in versions.values()]
