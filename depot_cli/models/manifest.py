"""
Data shapes produced by the manifest parsers.
"""

from dataclasses import dataclass, field


@dataclass
class DepotManifestInfo:
    """One depot entry of an `InstalledDepots` block."""

    depot_id: str
    manifest_id: str
    size: int | None = None
    last_updated: int | None = None


@dataclass
class ManifestRecord:
    """
    Fields extracted from an app manifest (ACF). Both parse strategies fill
    the same fields; anything they could not find keeps its default.
    """

    build_id: int | None = None
    name: str | None = None
    state_flags: int | None = None
    last_updated: int | None = None
    app_id: str | None = None
    beta_key: str | None = None
    installed_depots: dict[str, DepotManifestInfo] = field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return (
            self.build_id is None
            and self.name is None
            and self.state_flags is None
            and not self.installed_depots
        )


@dataclass
class DownloaderMetadata:
    """What could be recovered from DepotDownloader's hidden metadata folder."""

    build_id: str | None = None
    manifest_ids: dict[str, str] = field(default_factory=dict)
