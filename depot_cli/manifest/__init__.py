"""
Manifest Layer.

Parses Steam app manifests (ACF/VDF) and turns them into version identifiers.
"""

from .parser import PARSE_STRATEGIES, parse_library_folders, parse_manifest
from .registry import ManifestRegistry, branch_from_beta_key

__all__ = [
    "PARSE_STRATEGIES",
    "ManifestRegistry",
    "branch_from_beta_key",
    "parse_library_folders",
    "parse_manifest",
]
