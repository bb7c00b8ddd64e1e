"""
Locating the DepotDownloader executable and building its argument lists.

Arguments are always produced as a list for `create_subprocess_exec`; nothing
here ever joins them into a shell string.
"""

import logging
import re
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Sequence

from depot_cli.exceptions import InvalidArgumentError, MissingBinaryError

log = logging.getLogger(__name__)

EXECUTABLE_NAMES = ("DepotDownloader.exe", "DepotDownloader")
PATH_ALIASES = ("DepotDownloader", "depotdownloader", "DepotDownloader.exe")
MISSING_BINARY_MESSAGE = (
    "DepotDownloader not found in PATH or alias. Please install it "
    "(e.g. winget install --exact --id SteamRE.DepotDownloader) or set "
    "'downloader_path' in the configuration."
)

_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")
_APP_ID = re.compile(r"\d{1,10}")
_BRANCH_KEY = re.compile(r"[A-Za-z0-9_-]{1,64}")
_NUMERIC_ID = re.compile(r"\d{1,32}")


@dataclass(frozen=True)
class Credentials:
    username: str
    password: str

    def __repr__(self) -> str:
        return f"Credentials(username={self.username!r}, password='***')"


def resolve_executable(configured_path: str | Path | None = None) -> Path:
    """
    Finds the DepotDownloader binary.

    An explicit path may name the executable itself or the directory holding
    it. Without one, a short list of aliases is looked up on PATH.

    Raises:
        MissingBinaryError: When nothing usable is found.
    """
    if configured_path and str(configured_path).strip():
        path = Path(str(configured_path).strip()).expanduser()
        if path.is_file():
            return path
        if path.is_dir():
            for name in EXECUTABLE_NAMES:
                candidate = path / name
                if candidate.is_file():
                    return candidate
        raise MissingBinaryError(
            f"DepotDownloader not found at '{path}'. {MISSING_BINARY_MESSAGE}"
        )

    for alias in PATH_ALIASES:
        if found := shutil.which(alias):
            log.debug(f"Resolved DepotDownloader via PATH alias '{alias}': {found}")
            return Path(found)
    raise MissingBinaryError(MISSING_BINARY_MESSAGE)


def _check_text(label: str, value: str, max_length: int) -> None:
    if not value:
        raise InvalidArgumentError(f"{label} is required.")
    if len(value) > max_length:
        raise InvalidArgumentError(f"{label} must be at most {max_length} characters.")
    if _CONTROL_CHARS.search(value):
        raise InvalidArgumentError(f"{label} contains control characters.")


def validate_credentials(credentials: Credentials) -> None:
    _check_text("Username", credentials.username, 64)
    _check_text("Password", credentials.password, 256)


def validate_app_id(app_id: str) -> None:
    if not _APP_ID.fullmatch(str(app_id)):
        raise InvalidArgumentError(f"App ID must be 1-10 digits, got {app_id!r}.")


def validate_branch_key(branch_key: str) -> None:
    if not _BRANCH_KEY.fullmatch(branch_key):
        raise InvalidArgumentError(f"Invalid branch key {branch_key!r}.")


def validate_directory(install_dir: Path) -> None:
    _check_text("Install directory", str(install_dir), 1024)


def validate_depot_pin(depot_id: str, manifest_id: str) -> None:
    if not all(_NUMERIC_ID.fullmatch(str(value)) for value in (depot_id, manifest_id)):
        raise InvalidArgumentError(
            f"Depot pin must be numeric, got {depot_id!r}/{manifest_id!r}."
        )


def build_download_arguments(
    credentials: Credentials,
    app_id: str,
    install_dir: Path,
    branch_key: str = "public",
    max_downloads: int = 8,
    manifest_only: bool = False,
    depots: Sequence[tuple[str, str]] = (),
) -> list[str]:
    """
    Builds the downloader argument list (without the executable).

    Args:
        credentials: Steam account; the password follows `-password`.
        app_id: Steam application id.
        install_dir: Target directory for `-dir`.
        branch_key: Platform branch key; `-beta` is omitted for `public`.
        max_downloads: Parallelism hint.
        manifest_only: Only fetch manifests, no content.
        depots: Optional (depot id, manifest id) pins for a specific version.

    Returns:
        The argument list.

    Raises:
        InvalidArgumentError: If any argument fails validation.
    """
    validate_credentials(credentials)
    validate_app_id(app_id)
    validate_branch_key(branch_key)
    validate_directory(install_dir)
    if not 1 <= int(max_downloads) <= 64:
        raise InvalidArgumentError("max_downloads must be between 1 and 64.")

    args = ["-app", str(app_id)]
    if branch_key != "public":
        args += ["-beta", branch_key]
    args += [
        "-username",
        credentials.username,
        "-password",
        credentials.password,
        "-dir",
        str(install_dir),
    ]
    if manifest_only:
        args.append("-manifest-only")
    else:
        for depot_id, manifest_id in depots:
            validate_depot_pin(depot_id, manifest_id)
            args += ["-depot", depot_id, "-manifest", manifest_id]
        args += ["-max-downloads", str(int(max_downloads))]
    return args


def build_login_arguments(
    credentials: Credentials, app_id: str, work_dir: Path
) -> list[str]:
    """Login drives the manifest-only mode so no content is downloaded."""
    validate_credentials(credentials)
    validate_app_id(app_id)
    return [
        "-app",
        str(app_id),
        "-username",
        credentials.username,
        "-password",
        credentials.password,
        "-dir",
        str(work_dir),
        "-manifest-only",
    ]
