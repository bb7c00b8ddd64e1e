"""
Storage Layer.

This package handles all data persistence: the INI configuration file, the
JSON version-state record and the versioned directory layout on disk.
"""

from .config_manager import ConfigManager
from .version_state import JsonVersionStateStore, VersionStateStore

__all__ = ["ConfigManager", "JsonVersionStateStore", "VersionStateStore"]
