"""
Install service tying the orchestrator, manifest lookup and version layout
together: look up the branch's manifest, create its version directory,
download into it and record it as the active version.
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Optional, Sequence

from depot_cli.core.binary import Credentials, validate_depot_pin
from depot_cli.core.orchestrator import DepotDownloaderOrchestrator
from depot_cli.exceptions import ConfigurationError, PathEscapeError
from depot_cli.models.branch import (
    Branch,
    BranchVersionInfo,
    VersionIdentifier,
    VersionKind,
)
from depot_cli.models.events import ProgressListener
from depot_cli.models.results import ErrorCondition, InstallResult, OperationResult
from depot_cli.storage.layout import (
    branch_path,
    detect_legacy_structure,
    directory_size,
    ensure_version_directory,
    has_version_directories,
    normalize_version_identifier,
    remove_version_directory,
    version_path,
)
from depot_cli.storage.version_state import VersionStateStore

log = logging.getLogger(__name__)


class BranchInstaller:
    """Installs and switches versions of branches below one install root."""

    def __init__(
        self,
        orchestrator: DepotDownloaderOrchestrator,
        state: VersionStateStore,
        install_root: Path,
    ):
        self.orchestrator = orchestrator
        self.state = state
        self.install_root = Path(install_root)

    async def install_branch(
        self,
        branch: Branch,
        credentials: Credentials,
        repair: bool = False,
        guard_code: Optional[str] = None,
        confirm_mobile: bool = False,
        on_event: Optional[ProgressListener] = None,
    ) -> InstallResult:
        """
        Downloads the current version of `branch` into its own version directory.

        Args:
            branch: Branch to install.
            credentials: Steam account.
            repair: Re-download into an existing, non-empty version directory.
            guard_code: Steam Guard code, if already known.
            confirm_mobile: Wait for mobile approval instead of failing.
            on_event: Progress listener for both the lookup and the download.

        Returns:
            An InstallResult carrying the recorded BranchVersionInfo on success.
        """
        legacy = self._legacy_layout(branch)
        if legacy is not None:
            return legacy

        lookup = await self.orchestrator.fetch_manifest_ids(
            credentials,
            branch.platform_key,
            guard_code=guard_code,
            confirm_mobile=confirm_mobile,
            on_event=on_event,
        )
        if not lookup.ok:
            return InstallResult(
                ok=False,
                error=lookup.error,
                condition=lookup.condition,
                requires_guard=lookup.requires_guard,
                guard_type=lookup.guard_type,
            )

        if lookup.primary_manifest_id:
            identifier = VersionIdentifier(lookup.primary_manifest_id, VersionKind.MANIFEST)
        elif lookup.build_id:
            identifier = VersionIdentifier(lookup.build_id, VersionKind.BUILD)
        else:
            return InstallResult(
                ok=False,
                error=f"No manifest or build id could be determined for {branch}.",
                condition=ErrorCondition.MANIFEST_NOT_FOUND,
            )

        return await self._install(
            branch,
            identifier,
            credentials,
            repair=repair,
            guard_code=guard_code,
            confirm_mobile=confirm_mobile,
            on_event=on_event,
        )

    async def install_version(
        self,
        branch: Branch,
        credentials: Credentials,
        manifest_id: str,
        depot_id: Optional[str] = None,
        repair: bool = False,
        guard_code: Optional[str] = None,
        confirm_mobile: bool = False,
        on_event: Optional[ProgressListener] = None,
    ) -> InstallResult:
        """
        Downloads a specific, possibly historic, manifest of `branch` into
        `manifest_<id>`, pinning the depot to that manifest.

        `depot_id` defaults to the first priority depot.

        Raises:
            InvalidArgumentError: If the manifest or depot id is not numeric.
        """
        value = normalize_version_identifier(manifest_id, VersionKind.MANIFEST)
        depot = depot_id or self.orchestrator.registry.priority_depots[0]
        validate_depot_pin(depot, value)

        legacy = self._legacy_layout(branch)
        if legacy is not None:
            return legacy
        return await self._install(
            branch,
            VersionIdentifier(value, VersionKind.MANIFEST),
            credentials,
            depots=[(depot, value)],
            repair=repair,
            guard_code=guard_code,
            confirm_mobile=confirm_mobile,
            on_event=on_event,
        )

    def _legacy_layout(self, branch: Branch) -> Optional[InstallResult]:
        folder = branch_path(self.install_root, branch)
        if detect_legacy_structure(folder) and not has_version_directories(folder):
            return InstallResult(
                ok=False,
                error=(
                    f"{branch.folder_name} still uses the legacy flat layout. "
                    "Run 'depot-cli migrate run' first."
                ),
                condition=ErrorCondition.LEGACY_LAYOUT,
            )
        return None

    async def _install(
        self,
        branch: Branch,
        identifier: VersionIdentifier,
        credentials: Credentials,
        depots: Sequence[tuple[str, str]] = (),
        repair: bool = False,
        guard_code: Optional[str] = None,
        confirm_mobile: bool = False,
        on_event: Optional[ProgressListener] = None,
    ) -> InstallResult:
        target = version_path(
            self.install_root, branch, identifier.value, identifier.kind
        )
        if target.is_dir() and any(target.iterdir()) and not repair:
            return InstallResult(
                ok=False,
                error=f"{identifier} is already installed at {target}. Use --repair to re-download.",
                condition=ErrorCondition.ALREADY_INSTALLED,
            )
        created = not target.exists()
        try:
            ensure_version_directory(self.install_root, target)
        except PathEscapeError as e:
            return InstallResult(ok=False, error=str(e), condition=ErrorCondition.PATH_ESCAPE)

        log.info(f"[cyan]Installing {branch} ({identifier}) into {target}[/cyan]")
        download = await self.orchestrator.download_branch(
            credentials,
            target,
            branch.platform_key,
            depots=depots,
            guard_code=guard_code,
            confirm_mobile=confirm_mobile,
            on_event=on_event,
        )
        if not download.ok:
            if download.condition is ErrorCondition.CANCELLED:
                log.warning(
                    f"[yellow]Partial files remain in {target}; remove them or "
                    "re-run with --repair.[/yellow]"
                )
            elif created and not any(target.iterdir()):
                self._discard(target)
            return InstallResult(
                ok=False,
                error=download.error,
                condition=download.condition,
                requires_guard=download.requires_guard,
                guard_type=download.guard_type,
            )

        info = BranchVersionInfo(
            version=identifier,
            path=target,
            download_date=datetime.now(),
            size_bytes=directory_size(target),
            is_active=True,
        )
        try:
            self.state.record_version(branch, info)
            self.state.set_active_version(branch, identifier.value, identifier.kind)
        except ConfigurationError as e:
            return InstallResult(ok=False, error=str(e), version_info=info)
        log.info(f"[green]✓ {branch} is now at {identifier}[/green]")
        return InstallResult(ok=True, version_info=info)

    def _discard(self, target: Path) -> None:
        """Drops an empty version directory left by a failed download."""
        try:
            remove_version_directory(self.install_root, target)
        except OSError as e:
            log.warning(f"[yellow]Could not remove {target}: {e}[/yellow]")

    def switch_version(self, branch: Branch, directory_name: str) -> OperationResult:
        """Marks an installed version directory as the active one."""
        identifier = VersionIdentifier.from_directory_name(directory_name)
        if identifier is None:
            return OperationResult(
                ok=False,
                error=f"'{directory_name}' is not a build_ or manifest_ directory.",
            )
        path = branch_path(self.install_root, branch) / identifier.directory_name
        if not path.is_dir():
            return OperationResult(
                ok=False,
                error=f"Version {identifier} of {branch} is not installed.",
            )
        if not any(path.iterdir()):
            return OperationResult(
                ok=False,
                error=f"Version directory {path} is empty; reinstall {identifier} first.",
            )
        try:
            self.state.set_active_version(branch, identifier.value, identifier.kind)
        except ConfigurationError as e:
            return OperationResult(ok=False, error=str(e))
        log.info(f"[green]✓ {branch} switched to {identifier}[/green]")
        return OperationResult(ok=True)
