"""
Version identity lookups on top of the manifest parsers: primary-depot
selection, beta-key to branch mapping and the on-disk manifest locations
DepotDownloader and the Steam client leave behind.
"""

import logging
import re
from pathlib import Path
from typing import Iterable

import aiofiles

from depot_cli.manifest.parser import parse_manifest
from depot_cli.models.branch import Branch, VersionIdentifier, VersionKind
from depot_cli.models.config import DEFAULT_APP_ID, DEFAULT_PRIORITY_DEPOTS
from depot_cli.models.manifest import DownloaderMetadata, ManifestRecord

log = logging.getLogger(__name__)

DOWNLOADER_METADATA_DIR = ".DepotDownloader"
APP_MANIFEST_GLOB = "appmanifest_*.acf"

BETA_KEY_BRANCHES = {
    "beta": Branch.BETA,
    "alternate": Branch.ALTERNATE,
    "alternate-beta": Branch.ALTERNATE_BETA,
    "alternatebeta": Branch.ALTERNATE_BETA,
}

_MANIFEST_REQUEST = re.compile(
    r"Got manifest request code for depot (\d+) from app \d+, manifest (\d+), "
    r"result: \d+",
    re.IGNORECASE,
)
_DEPOT_FILE = re.compile(r"depot_(\d+)", re.IGNORECASE)
_BUILD_ID_PATTERNS = (
    re.compile(r'"buildid":\s*"?(\d+)"?', re.IGNORECASE),
    re.compile(r"BuildID[^\d]*(\d+)", re.IGNORECASE),
    re.compile(r"build[_\s]*id[^\d]*(\d+)", re.IGNORECASE),
)
_MANIFEST_ID_PATTERNS = (
    re.compile(r'"manifestid":\s*"?(\d+)"?', re.IGNORECASE),
    re.compile(r"ManifestID[^\d]*(\d+)", re.IGNORECASE),
    re.compile(r"manifest[_\s]*id[^\d]*(\d+)", re.IGNORECASE),
)


def branch_from_beta_key(beta_key: str | None) -> Branch:
    """Maps a manifest beta key to its branch. Unknown or empty means public."""
    return BETA_KEY_BRANCHES.get((beta_key or "").strip().lower(), Branch.MAIN)


def parse_manifest_request_output(text: str) -> dict[str, str]:
    """depot id -> manifest id pairs from manifest-only downloader output."""
    return {depot: manifest for depot, manifest in _MANIFEST_REQUEST.findall(text)}


def _first_match(patterns: Iterable[re.Pattern], text: str) -> str | None:
    for pattern in patterns:
        if match := pattern.search(text):
            return match.group(1)
    return None


async def _read_text(path: Path) -> str | None:
    try:
        async with aiofiles.open(path, encoding="utf-8", errors="replace") as f:
            return await f.read()
    except OSError as e:
        log.debug(f"Could not read {path}: {e}")
        return None


class ManifestRegistry:
    """
    Derives version identifiers from parsed manifests.

    Args:
        priority_depots: Depot ids in the order they are preferred when picking
            the manifest id that names a version.
        app_id: Steam app id, used to locate `appmanifest_<appid>.acf`.
    """

    def __init__(
        self,
        priority_depots: Iterable[str] | None = None,
        app_id: str = DEFAULT_APP_ID,
    ):
        self.priority_depots = list(
            priority_depots if priority_depots is not None else DEFAULT_PRIORITY_DEPOTS
        )
        self.app_id = app_id

    def primary_manifest_id(self, record: ManifestRecord) -> str | None:
        depots = record.installed_depots
        for depot_id in self.priority_depots:
            depot = depots.get(str(depot_id))
            if depot and depot.manifest_id:
                return depot.manifest_id
        for depot in depots.values():
            if depot.manifest_id:
                return depot.manifest_id
        return None

    def primary_from_pairs(self, manifest_ids: dict[str, str]) -> str | None:
        """Same selection as `primary_manifest_id` for a bare depot->manifest map."""
        for depot_id in self.priority_depots:
            if manifest_ids.get(str(depot_id)):
                return manifest_ids[str(depot_id)]
        return next((m for m in manifest_ids.values() if m), None)

    @staticmethod
    def installed_manifest_ids(record: ManifestRecord) -> list[str]:
        return [d.manifest_id for d in record.installed_depots.values() if d.manifest_id]

    @staticmethod
    def branch_for_manifest(record: ManifestRecord) -> Branch:
        return branch_from_beta_key(record.beta_key)

    def version_for_record(self, record: ManifestRecord) -> VersionIdentifier | None:
        """Manifest id of the primary depot, else the build id, else None."""
        if manifest_id := self.primary_manifest_id(record):
            return VersionIdentifier(manifest_id, VersionKind.MANIFEST)
        if record.build_id is not None:
            return VersionIdentifier(str(record.build_id), VersionKind.BUILD)
        return None

    @staticmethod
    def find_app_manifest(directory: Path) -> Path | None:
        """First `appmanifest_*.acf` directly inside `directory`, by name."""
        if not directory.is_dir():
            return None
        candidates = sorted(p for p in directory.glob(APP_MANIFEST_GLOB) if p.is_file())
        return candidates[0] if candidates else None

    async def read_app_manifest(self, path: Path) -> ManifestRecord | None:
        """Parses an ACF file. Missing or empty files yield None, never raise."""
        raw = await _read_text(path)
        if raw is None:
            return None
        record = parse_manifest(raw)
        return None if record.is_empty else record

    async def read_downloader_metadata(self, install_dir: Path) -> DownloaderMetadata:
        """
        Recovers the build id and per-depot manifest ids of a finished download.

        Looks in DepotDownloader's hidden metadata folder first (`depot_*`
        `.manifest`/`.json`/`.txt` files) and falls back to a legacy
        `appmanifest_<appid>.acf` at the directory root.

        Args:
            install_dir: The directory the downloader wrote into.

        Returns:
            Whatever could be found; empty fields when nothing matched.
        """
        metadata = DownloaderMetadata()
        metadata_dir = install_dir / DOWNLOADER_METADATA_DIR

        if metadata_dir.is_dir():
            files = sorted(p for p in metadata_dir.iterdir() if p.is_file())
            # .manifest/.json carry both ids; .txt files only help with the build id.
            for path in files:
                depot_match = _DEPOT_FILE.search(path.name)
                if not depot_match or path.suffix.lower() not in (".manifest", ".json"):
                    continue
                data = await _read_text(path)
                if data is None:
                    continue
                if metadata.build_id is None:
                    metadata.build_id = _first_match(_BUILD_ID_PATTERNS, data)
                if manifest_id := _first_match(_MANIFEST_ID_PATTERNS, data):
                    metadata.manifest_ids.setdefault(depot_match.group(1), manifest_id)

            if metadata.build_id is None:
                for path in files:
                    if _DEPOT_FILE.search(path.name) and path.suffix.lower() == ".txt":
                        data = await _read_text(path)
                        if data and (build_id := _first_match(_BUILD_ID_PATTERNS, data)):
                            metadata.build_id = build_id
                            break

        if metadata.build_id is None or not metadata.manifest_ids:
            legacy = install_dir / f"appmanifest_{self.app_id}.acf"
            if legacy.is_file() and (record := await self.read_app_manifest(legacy)):
                if metadata.build_id is None and record.build_id is not None:
                    metadata.build_id = str(record.build_id)
                if not metadata.manifest_ids:
                    metadata.manifest_ids = {
                        d.depot_id: d.manifest_id
                        for d in record.installed_depots.values()
                        if d.manifest_id
                    }

        log.debug(
            f"Downloader metadata for {install_dir}: build={metadata.build_id} "
            f"depots={len(metadata.manifest_ids)}"
        )
        return metadata
