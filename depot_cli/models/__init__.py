"""
Data Models Layer.

This package contains the dataclasses and the Pydantic configuration model
that define the core data structures used throughout the application.
"""

from .branch import (
    UNKNOWN_VERSION,
    Branch,
    BranchVersionInfo,
    LegacyInstallation,
    VersionIdentifier,
    VersionKind,
)
from .config import AppConfig
from .events import EventType, MigrationProgress, ProgressEvent
from .manifest import DepotManifestInfo, DownloaderMetadata, ManifestRecord
from .results import ErrorCondition

__all__ = [
    "UNKNOWN_VERSION",
    "AppConfig",
    "Branch",
    "BranchVersionInfo",
    "DepotManifestInfo",
    "DownloaderMetadata",
    "ErrorCondition",
    "EventType",
    "LegacyInstallation",
    "ManifestRecord",
    "MigrationProgress",
    "ProgressEvent",
    "VersionIdentifier",
    "VersionKind",
]
