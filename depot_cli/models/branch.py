"""
Branch and version identity models.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any


class Branch(Enum):
    """The fixed set of distribution branches, keyed by folder name."""

    MAIN = ("main-branch", "public")
    BETA = ("beta-branch", "beta")
    ALTERNATE = ("alternate-branch", "alternate")
    ALTERNATE_BETA = ("alternate-beta-branch", "alternate-beta")

    def __init__(self, folder_name: str, platform_key: str):
        self.folder_name = folder_name
        self.platform_key = platform_key

    @classmethod
    def from_folder(cls, folder_name: str) -> "Branch | None":
        for branch in cls:
            if branch.folder_name == folder_name:
                return branch
        return None

    @classmethod
    def parse(cls, value: str) -> "Branch":
        """
        Accepts a folder name, a platform key or the short enum name
        ('main', 'alternate-beta', 'public'...). Raises ValueError otherwise.
        """
        needle = value.strip().lower()
        for branch in cls:
            names = {
                branch.folder_name,
                branch.platform_key,
                branch.name.lower().replace("_", "-"),
            }
            if needle in names:
                return branch
        raise ValueError(
            f"Unknown branch '{value}'. Expected one of: "
            + ", ".join(b.name.lower().replace("_", "-") for b in cls)
        )

    def __str__(self) -> str:
        return self.name.lower().replace("_", "-")


class VersionKind(str, Enum):
    """Which identifier a version directory is named after."""

    BUILD = "build"
    MANIFEST = "manifest"

    @property
    def prefix(self) -> str:
        return f"{self.value}_"


UNKNOWN_VERSION = "unknown"


@dataclass(frozen=True)
class VersionIdentifier:
    """A version id tagged with its kind; maps 1:1 onto a directory name."""

    value: str
    kind: VersionKind

    @property
    def directory_name(self) -> str:
        return f"{self.kind.prefix}{self.value}"

    @property
    def is_known(self) -> bool:
        return bool(self.value) and self.value != UNKNOWN_VERSION

    @classmethod
    def from_directory_name(cls, name: str) -> "VersionIdentifier | None":
        """Inverse of `directory_name`. Returns None for unprefixed names."""
        for kind in VersionKind:
            if name.startswith(kind.prefix) and len(name) > len(kind.prefix):
                return cls(name[len(kind.prefix) :], kind)
        return None

    def __str__(self) -> str:
        return self.directory_name


@dataclass
class BranchVersionInfo:
    """An installed, finalized version directory of a branch."""

    version: VersionIdentifier
    path: Path
    download_date: datetime
    size_bytes: int = 0
    is_active: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "version_id": self.version.value,
            "kind": self.version.kind.value,
            "path": str(self.path),
            "download_date": self.download_date.isoformat(),
            "size_bytes": self.size_bytes,
            "is_active": self.is_active,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "BranchVersionInfo":
        return cls(
            version=VersionIdentifier(
                str(data["version_id"]), VersionKind(data["kind"])
            ),
            path=Path(data["path"]),
            download_date=datetime.fromisoformat(data["download_date"]),
            size_bytes=int(data.get("size_bytes", 0)),
            is_active=bool(data.get("is_active", False)),
        )


@dataclass
class LegacyInstallation:
    """A branch folder still holding files directly (pre-versioned layout)."""

    branch: Branch
    path: Path
    version: VersionIdentifier = field(
        default_factory=lambda: VersionIdentifier(UNKNOWN_VERSION, VersionKind.MANIFEST)
    )

    @property
    def branch_name(self) -> str:
        return self.branch.folder_name

    @property
    def is_identified(self) -> bool:
        return self.version.is_known
