"""
Migration of flat, pre-versioned branch folders into the versioned layout.

A legacy branch folder holds the game files directly:

    <root>/branches/main-branch/Game.exe ...

and is rewritten to:

    <root>/branches/main-branch/manifest_<id>/Game.exe ...

Entries are first moved into a hidden staging directory, the staged set is
compared with the original listing, and only then is the staging directory
renamed to its final name and the version state updated. An interrupted run
leaves the staging directory behind, which `validate_migration` reports and
`rollback` restores.
"""

import asyncio
import logging
import shutil
from datetime import datetime
from pathlib import Path
from typing import Optional

from depot_cli.exceptions import ConfigurationError, PathEscapeError
from depot_cli.manifest.registry import ManifestRegistry
from depot_cli.models.branch import (
    Branch,
    BranchVersionInfo,
    LegacyInstallation,
    VersionIdentifier,
)
from depot_cli.models.events import MigrationListener, MigrationProgress
from depot_cli.models.results import (
    ErrorCondition,
    MigrationOutcome,
    MigrationReport,
    RollbackReport,
    ValidationReport,
)
from depot_cli.storage.layout import (
    STAGING_SUFFIX,
    branch_path,
    detect_legacy_structure,
    detect_version_identifier_type,
    directory_size,
    ensure_within_root,
    has_version_directories,
    is_staging_directory,
    normalize_version_identifier,
)
from depot_cli.storage.version_state import VersionStateStore
from depot_cli.utils.structured_logger import MigrationLogger

log = logging.getLogger(__name__)

MIGRATION_STEPS = 3


def staging_path(folder: Path, identifier: VersionIdentifier) -> Path:
    return folder / f".{identifier.directory_name}{STAGING_SUFFIX}"


def _report(
    listener: Optional[MigrationListener],
    branch: Branch,
    step: str,
    completed: int,
    total: int,
) -> None:
    if listener is None:
        return
    try:
        listener(MigrationProgress(branch.folder_name, step, completed, total))
    except Exception as e:
        log.warning(f"Migration progress listener raised: {e}")


class MigrationEngine:
    """
    Detects, migrates, validates and rolls back legacy branch folders.

    Args:
        registry: Reads `appmanifest_*.acf` files to name the migrated version.
        state: Receives the recorded version and the new active version.
        migration_logger: Optional structured event log.
    """

    def __init__(
        self,
        registry: ManifestRegistry,
        state: VersionStateStore,
        migration_logger: Optional[MigrationLogger] = None,
    ):
        self.registry = registry
        self.state = state
        self.events = migration_logger

    async def detect_legacy_installations(self, root: Path) -> list[LegacyInstallation]:
        """
        Lists branch folders that still hold files directly and have no
        version directories yet.

        Installations whose version cannot be read from an app manifest are
        still returned, with the `unknown` placeholder identifier.
        """
        installations = []
        for branch in Branch:
            folder = branch_path(root, branch)
            if not detect_legacy_structure(folder) or has_version_directories(folder):
                continue
            version = await self._identify(folder)
            if version is None:
                log.warning(
                    f"[yellow]Legacy install in {branch.folder_name} has no readable "
                    f"app manifest; an explicit version id is needed.[/yellow]"
                )
                installations.append(LegacyInstallation(branch, folder))
            else:
                installations.append(LegacyInstallation(branch, folder, version))
        log.debug(f"Found {len(installations)} legacy installation(s) under {root}")
        return installations

    async def _identify(self, folder: Path) -> Optional[VersionIdentifier]:
        manifest_path = self.registry.find_app_manifest(folder)
        if manifest_path is None:
            return None
        record = await self.registry.read_app_manifest(manifest_path)
        if record is None:
            return None
        return self.registry.version_for_record(record)

    async def migrate(
        self,
        installation: LegacyInstallation,
        version: Optional[VersionIdentifier] = None,
        on_progress: Optional[MigrationListener] = None,
    ) -> MigrationOutcome:
        """
        Moves a legacy branch folder's entries into a version directory.

        Args:
            installation: A result of `detect_legacy_installations`.
            version: Overrides the detected identifier; required when the
                installation could not be identified.
            on_progress: Receives one event per step.

        Returns:
            A MigrationOutcome with the new version directory on success.

        Raises:
            InvalidArgumentError: If `version` is not a usable directory name.
        """
        branch = installation.branch
        folder = installation.path
        identifier = version or installation.version
        if not identifier.is_known:
            return self._failed(
                branch,
                f"Cannot migrate {branch.folder_name}: its version is unknown. "
                "Supply a build or manifest id explicitly.",
            )

        value = normalize_version_identifier(identifier.value, identifier.kind)
        identifier = VersionIdentifier(value, identifier.kind)
        root = folder.parent.parent
        target = folder / identifier.directory_name
        staging = staging_path(folder, identifier)

        try:
            ensure_within_root(root, target)
            ensure_within_root(root, staging)
        except PathEscapeError as e:
            return MigrationOutcome(
                ok=False, error=str(e), condition=ErrorCondition.PATH_ESCAPE
            )
        if target.exists():
            return self._failed(branch, f"Version directory already exists: {target}")

        if self.events:
            self.events.started(branch.folder_name, folder, str(identifier))
        log.info(f"[cyan]Migrating {branch.folder_name} to {identifier}...[/cyan]")

        try:
            _report(on_progress, branch, f"Staging into {staging.name}", 0, MIGRATION_STEPS)
            staging.mkdir(exist_ok=True)
            entries = {p.name for p in folder.iterdir() if p.name != staging.name}
            # Entries staged by an earlier interrupted run count as moved.
            expected = entries | {p.name for p in staging.iterdir()}
            for name in sorted(entries):
                await asyncio.to_thread(shutil.move, str(folder / name), str(staging / name))

            _report(on_progress, branch, "Verifying staged files", 1, MIGRATION_STEPS)
            staged = {p.name for p in staging.iterdir()}
            if staged != expected:
                missing = sorted(expected - staged)
                return self._failed(
                    branch,
                    f"Staged files do not match the original listing "
                    f"(missing: {', '.join(missing) or 'none'}); "
                    f"staging left at {staging}",
                )

            _report(on_progress, branch, f"Finalizing {target.name}", 2, MIGRATION_STEPS)
            await asyncio.to_thread(staging.rename, target)
            info = BranchVersionInfo(
                version=identifier,
                path=target,
                download_date=datetime.now(),
                size_bytes=directory_size(target),
                is_active=True,
            )
            self.state.record_version(branch, info)
            self.state.set_active_version(branch, identifier.value, identifier.kind)
        except (OSError, shutil.Error, ConfigurationError) as e:
            return self._failed(branch, f"Migration of {branch.folder_name} failed: {e}")

        _report(on_progress, branch, "Migration complete", MIGRATION_STEPS, MIGRATION_STEPS)
        if self.events:
            self.events.completed(branch.folder_name, target, len(expected))
        log.info(f"[green]✓ Migrated {branch.folder_name} -> {target.name}[/green]")
        return MigrationOutcome(ok=True, new_path=target)

    def _failed(self, branch: Branch, error: str) -> MigrationOutcome:
        log.error(f"[red]✗ {error}[/red]")
        if self.events:
            self.events.failed(branch.folder_name, error)
        return MigrationOutcome(
            ok=False, error=error, condition=ErrorCondition.MIGRATION_FAILED
        )

    async def migrate_all(
        self, root: Path, on_progress: Optional[MigrationListener] = None
    ) -> MigrationReport:
        """Detects and migrates every legacy installation under `root`."""
        installations = await self.detect_legacy_installations(root)
        report = MigrationReport(success=True)
        total = len(installations)
        for index, installation in enumerate(installations):
            _report(
                on_progress,
                installation.branch,
                f"Migrating {index + 1}/{total}: {installation.branch_name}",
                index,
                total,
            )
            outcome = await self.migrate(installation)
            if outcome.ok:
                report.migrated += 1
            else:
                report.failed += 1
                report.errors.append(outcome.error or "Unknown migration error")

        report.success = report.failed == 0
        log.info(f"Migration finished: {report.migrated} migrated, {report.failed} failed")
        return report

    async def validate_migration(self, root: Path) -> ValidationReport:
        """
        Re-scans the layout after a migration.

        Remaining legacy folders, empty version directories and leftover
        staging directories are each reported with their own message.
        """
        errors = []
        for branch in Branch:
            folder = branch_path(root, branch)
            if not folder.is_dir():
                continue
            if detect_legacy_structure(folder) and not has_version_directories(folder):
                errors.append(
                    f"Legacy structure still present in {branch.folder_name}: {folder}"
                )
            for child in sorted(folder.iterdir()):
                if not child.is_dir():
                    continue
                if is_staging_directory(child.name):
                    errors.append(
                        f"Leftover staging directory from an interrupted migration: {child}"
                    )
                elif detect_version_identifier_type(child.name) and not any(
                    child.iterdir()
                ):
                    errors.append(
                        f"Empty version directory (failed or partial move): {child}"
                    )
        return ValidationReport(valid=not errors, errors=errors)

    async def rollback(self, root: Path) -> RollbackReport:
        """
        Best-effort inverse of `migrate`: moves the contents of every version
        and staging directory back into the branch folder.

        Each branch is handled independently; errors accumulate. The active
        version record is left untouched.
        """
        report = RollbackReport(ok=True)
        for branch in Branch:
            folder = branch_path(root, branch)
            if not folder.is_dir():
                continue
            try:
                sources = [
                    child
                    for child in sorted(folder.iterdir())
                    if child.is_dir()
                    and (
                        is_staging_directory(child.name)
                        or detect_version_identifier_type(child.name) is not None
                    )
                ]
                for source in sources:
                    if await self._restore(root, folder, source, report):
                        report.restored += 1
            except OSError as e:
                report.errors.append(f"{branch.folder_name}: {e}")

        report.ok = not report.errors
        if self.events:
            self.events.rollback_completed(report.restored, len(report.errors))
        log.info(
            f"Rollback finished: {report.restored} restored, {len(report.errors)} error(s)"
        )
        return report

    async def _restore(
        self, root: Path, folder: Path, source: Path, report: RollbackReport
    ) -> bool:
        try:
            ensure_within_root(root, source)
        except PathEscapeError as e:
            report.errors.append(str(e))
            return False

        clean = True
        for entry in sorted(source.iterdir()):
            destination = folder / entry.name
            if destination.exists():
                report.errors.append(
                    f"Cannot restore {entry}: {destination} already exists"
                )
                clean = False
                continue
            try:
                await asyncio.to_thread(shutil.move, str(entry), str(destination))
            except (OSError, shutil.Error) as e:
                report.errors.append(f"Cannot restore {entry}: {e}")
                clean = False
        if clean:
            source.rmdir()
            log.info(f"[yellow]Restored {source.name} into {folder}[/yellow]")
        return clean
