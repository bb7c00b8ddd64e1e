"""
Structured results returned for expected failure modes instead of raising.
"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from depot_cli import exceptions
from depot_cli.models.branch import BranchVersionInfo


class ErrorCondition(str, Enum):
    MISSING_BINARY = "missing_binary"
    PLATFORM_PROCESS_CONFLICT = "platform_process_conflict"
    AUTHENTICATION_FAILURE = "authentication_failure"
    GUARD_REQUIRED = "guard_required"
    MANIFEST_NOT_FOUND = "manifest_not_found"
    PATH_ESCAPE = "path_escape"
    OPERATION_IN_PROGRESS = "operation_in_progress"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"
    PROCESS_FAILED = "process_failed"
    ALREADY_INSTALLED = "already_installed"
    LEGACY_LAYOUT = "legacy_layout"
    MIGRATION_FAILED = "migration_failed"


_CONDITION_ERRORS: dict[ErrorCondition, type[exceptions.DepotCliError]] = {
    ErrorCondition.MISSING_BINARY: exceptions.MissingBinaryError,
    ErrorCondition.PLATFORM_PROCESS_CONFLICT: exceptions.PlatformProcessConflictError,
    ErrorCondition.AUTHENTICATION_FAILURE: exceptions.AuthenticationError,
    ErrorCondition.MANIFEST_NOT_FOUND: exceptions.ManifestNotFoundError,
    ErrorCondition.PATH_ESCAPE: exceptions.PathEscapeError,
    ErrorCondition.OPERATION_IN_PROGRESS: exceptions.OperationInProgressError,
    ErrorCondition.MIGRATION_FAILED: exceptions.MigrationError,
    ErrorCondition.LEGACY_LAYOUT: exceptions.MigrationError,
}


@dataclass
class OperationResult:
    """Base shape: `ok` plus an optional, already-redacted error string."""

    ok: bool
    error: str | None = None
    condition: ErrorCondition | None = None

    def raise_for_error(self) -> None:
        """Raises the exception matching `condition` if the operation failed."""
        if self.ok:
            return
        message = self.error or "Operation failed."
        if self.condition is ErrorCondition.GUARD_REQUIRED:
            raise exceptions.GuardRequiredError(
                message, getattr(self, "guard_type", None)
            )
        error_cls = _CONDITION_ERRORS.get(
            self.condition, exceptions.ProcessFailedError
        )
        raise error_cls(message)


@dataclass
class ValidationResult(OperationResult):
    executable: Path | None = None
    version: str | None = None


@dataclass
class LoginResult(OperationResult):
    requires_guard: bool = False
    guard_type: str | None = None


@dataclass
class DownloadResult(LoginResult):
    attempts: int = 0
    exit_code: int | None = None


@dataclass
class ManifestLookupResult(LoginResult):
    manifest_ids: dict[str, str] = field(default_factory=dict)
    primary_manifest_id: str | None = None
    build_id: str | None = None


@dataclass
class InstallResult(LoginResult):
    version_info: BranchVersionInfo | None = None


@dataclass
class MigrationOutcome(OperationResult):
    new_path: Path | None = None


@dataclass
class MigrationReport:
    success: bool
    migrated: int = 0
    failed: int = 0
    errors: list[str] = field(default_factory=list)


@dataclass
class ValidationReport:
    valid: bool
    errors: list[str] = field(default_factory=list)


@dataclass
class RollbackReport:
    ok: bool
    restored: int = 0
    errors: list[str] = field(default_factory=list)
