"""
Defines custom exceptions for the application to allow for more specific error handling.
"""


class DepotCliError(Exception):
    """Base exception for all application-specific errors."""


class MissingBinaryError(DepotCliError):
    """Raised when the DepotDownloader executable cannot be resolved."""


class PlatformProcessConflictError(DepotCliError):
    """Raised when the Steam client keeps running after every preflight check."""


class AuthenticationError(DepotCliError):
    """Raised when login fails due to invalid credentials or a rejected account."""


class GuardRequiredError(AuthenticationError):
    """
    Raised when a Steam Guard challenge must be answered before login can finish.
    """

    def __init__(self, message: str, guard_type: str | None = None):
        super().__init__(message)
        self.guard_type = guard_type


class ManifestNotFoundError(DepotCliError):
    """Raised when no manifest id could be determined for a branch."""


class PathEscapeError(DepotCliError):
    """Raised when a destructive operation targets a path outside the install root."""


class ConfigurationError(DepotCliError):
    """Raised for issues related to configuration loading or validation."""


class OperationInProgressError(DepotCliError):
    """Raised when a downloader process is already running."""


class ProcessFailedError(DepotCliError):
    """Raised when the downloader exits unsuccessfully or times out."""


class MigrationError(DepotCliError):
    """Raised when a legacy branch could not be migrated or restored."""


class InvalidArgumentError(DepotCliError, ValueError):
    """Raised for malformed arguments passed to the library surface."""
