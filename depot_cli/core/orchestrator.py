"""
Drives the DepotDownloader CLI through login, Steam Guard, manifest lookup
and full downloads.

Each operation runs the same way: claim the process slot, preflight for a
running Steam client, resolve the executable, spawn it with an argument list
and pump stdout/stderr continuously until it exits. Expected failures come
back as result objects; only malformed arguments raise.
"""

import asyncio
import inspect
import logging
import re
import tempfile
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional, Sequence, Union

from depot_cli.core.binary import (
    Credentials,
    build_download_arguments,
    build_login_arguments,
    resolve_executable,
    validate_branch_key,
    validate_credentials,
)
from depot_cli.core.process_slot import ProcessSlot, request_stop, terminate_process
from depot_cli.core.progress import ProgressCoalescer, clean_output
from depot_cli.exceptions import (
    InvalidArgumentError,
    MissingBinaryError,
    OperationInProgressError,
)
from depot_cli.manifest.registry import ManifestRegistry, parse_manifest_request_output
from depot_cli.models.config import DEFAULT_APP_ID, DEFAULT_BACKOFFS, AppConfig
from depot_cli.models.events import EventType, ProgressEvent, ProgressListener
from depot_cli.models.results import (
    DownloadResult,
    ErrorCondition,
    LoginResult,
    ManifestLookupResult,
    OperationResult,
    ValidationResult,
)
from depot_cli.utils.formatting import format_duration
from depot_cli.utils.redaction import Redactor, mask_arguments
from depot_cli.utils.structured_logger import OrchestratorLogger

log = logging.getLogger(__name__)

GUARD_PROMPT = re.compile(
    r"steam guard|two[- ]?factor|2 factor auth|mobile authenticator", re.IGNORECASE
)
EMAIL_GUARD = re.compile(r"sent to the email|email code|code from your email", re.IGNORECASE)
LOGIN_SUCCESS = re.compile(
    r"Successfully logged in|Login successful|Logged in as", re.IGNORECASE
)
LOGIN_FAILURE_LINE = re.compile(
    r"^.*(?:login failed|invalid password|invalid username|access denied).*$",
    re.IGNORECASE | re.MULTILINE,
)
RETRYABLE_AUTH = re.compile(r"login failed|invalid password|access denied", re.IGNORECASE)
PLATFORM_CONFLICT_OUTPUT = re.compile(r"steam is running|steam client", re.IGNORECASE)
VERSION_PATTERN = re.compile(r"DepotDownloader[^\d]*(\d+\.\d+\.\d+)", re.IGNORECASE)
GUARD_CODE = re.compile(r"[A-Za-z0-9]{4,10}")

STEAM_RUNNING_MESSAGE = (
    "Steam is running. Close the Steam client completely and try again."
)
_WINDOW_TAIL = 256
_OUTPUT_TAIL = 8192
_READ_CHUNK = 4096
GUARD_SETTLE_SECONDS = 2.0

PlatformCheck = Callable[[], Union[bool, Awaitable[bool]]]
Spawner = Callable[..., Awaitable[Any]]
Sleeper = Callable[[float], Awaitable[Any]]


class SessionMode(Enum):
    LOGIN = "login"
    MANIFEST = "manifest lookup"
    DOWNLOAD = "download"


@dataclass
class _Session:
    """Mutable state of one spawned downloader run."""

    mode: SessionMode
    redactor: Redactor
    coalescer: ProgressCoalescer
    guard_code: Optional[str] = None
    confirm_mobile: bool = False
    keep_output: bool = False
    chunks: list[str] = field(default_factory=list)
    recent: str = ""
    tail: str = ""
    exit_code: Optional[int] = None
    login_confirmed: bool = False
    failure_line: Optional[str] = None
    auth_failure_seen: bool = False
    conflict_seen: bool = False
    guard_type: Optional[str] = None
    guard_pending: bool = False
    requires_guard: bool = False
    timed_out: bool = False

    def record(self, text: str) -> None:
        if self.keep_output:
            self.chunks.append(text)
        self.recent = (self.recent + text)[-_OUTPUT_TAIL:]

    @property
    def text(self) -> str:
        """Whole output when `keep_output` is set, else only the recent tail."""
        return clean_output("".join(self.chunks) if self.keep_output else self.recent)

    def last_line(self) -> str:
        for line in reversed(clean_output(self.recent).splitlines()):
            if line.strip():
                return self.redactor(line.strip())
        return ""


def _notify(listener: Optional[ProgressListener], event: ProgressEvent) -> None:
    if listener is None:
        return
    try:
        listener(event)
    except Exception as e:
        log.warning(f"Progress listener raised: {e}")


class DepotDownloaderOrchestrator:
    """
    Runs DepotDownloader with at most one child process alive at a time.

    Args:
        downloader_path: Configured executable or directory; PATH aliases otherwise.
        app_id: Steam application id.
        registry: Selects the primary manifest id during manifest lookups.
        is_platform_running: Returns (or resolves to) True while Steam is open.
        spawn: Process factory with the `create_subprocess_exec` signature.
        sleep: Awaitable used for every backoff delay.
        event_log: Optional structured event log.
    """

    def __init__(
        self,
        downloader_path: str | Path | None = None,
        app_id: str = DEFAULT_APP_ID,
        registry: ManifestRegistry | None = None,
        is_platform_running: PlatformCheck | None = None,
        spawn: Spawner = asyncio.create_subprocess_exec,
        sleep: Sleeper = asyncio.sleep,
        preflight_backoffs: Sequence[float] = DEFAULT_BACKOFFS,
        retry_backoffs: Sequence[float] = DEFAULT_BACKOFFS,
        login_timeout: float = 30.0,
        probe_timeout: float = 10.0,
        manifest_timeout: float = 120.0,
        progress_interval: float = 0.05,
        max_downloads: int = 8,
        event_log: OrchestratorLogger | None = None,
    ):
        self.downloader_path = downloader_path
        self.app_id = app_id
        self.registry = registry or ManifestRegistry(app_id=app_id)
        self.preflight_backoffs = list(preflight_backoffs)
        self.retry_backoffs = list(retry_backoffs)
        self.login_timeout = login_timeout
        self.probe_timeout = probe_timeout
        self.manifest_timeout = manifest_timeout
        self.progress_interval = progress_interval
        self.max_downloads = max_downloads
        self.event_log = event_log
        self._is_platform_running = is_platform_running
        self._spawn = spawn
        self._sleep = sleep
        self._slot = ProcessSlot()

    @classmethod
    def from_config(
        cls,
        config: AppConfig,
        is_platform_running: PlatformCheck | None = None,
        event_log: OrchestratorLogger | None = None,
    ) -> "DepotDownloaderOrchestrator":
        return cls(
            downloader_path=config.downloader_path or None,
            app_id=config.app_id,
            registry=ManifestRegistry(config.priority_depots, config.app_id),
            is_platform_running=is_platform_running,
            preflight_backoffs=config.preflight_backoffs,
            retry_backoffs=config.retry_backoffs,
            login_timeout=config.login_timeout,
            probe_timeout=config.probe_timeout,
            progress_interval=config.progress_interval_ms / 1000,
            max_downloads=config.max_downloads,
            event_log=event_log,
        )

    @property
    def busy(self) -> bool:
        return self._slot.busy

    # --- Public operations ---

    async def validate_installation(
        self, path: str | Path | None = None
    ) -> ValidationResult:
        """
        Resolves the executable and runs `--version` with a bounded timeout.

        Succeeds when the check exits zero or names itself in its output.
        """
        try:
            executable = resolve_executable(path or self.downloader_path)
        except MissingBinaryError as e:
            return ValidationResult(
                ok=False, error=str(e), condition=ErrorCondition.MISSING_BINARY
            )

        try:
            process = await self._spawn(
                str(executable),
                "--version",
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
        except OSError as e:
            return ValidationResult(
                ok=False,
                error=f"Could not run '{executable}': {e}",
                condition=ErrorCondition.PROCESS_FAILED,
                executable=executable,
            )

        try:
            stdout, _ = await asyncio.wait_for(
                process.communicate(), timeout=self.probe_timeout
            )
        except asyncio.TimeoutError:
            await terminate_process(process)
            return ValidationResult(
                ok=False,
                error=(
                    f"'{executable}' did not answer a version check within "
                    f"{self.probe_timeout:g}s."
                ),
                condition=ErrorCondition.TIMEOUT,
                executable=executable,
            )

        output = (stdout or b"").decode("utf-8", errors="replace")
        if process.returncode == 0 or "depotdownloader" in output.lower():
            match = VERSION_PATTERN.search(output)
            version = match.group(1) if match else None
            log.debug(f"DepotDownloader at {executable} reports version {version}")
            return ValidationResult(ok=True, executable=executable, version=version)

        return ValidationResult(
            ok=False,
            error=f"'{executable}' exited with code {process.returncode}.",
            condition=ErrorCondition.PROCESS_FAILED,
            executable=executable,
        )

    async def login(
        self,
        credentials: Credentials,
        guard_code: str | None = None,
        confirm_mobile: bool = False,
        on_event: ProgressListener | None = None,
    ) -> LoginResult:
        """
        Authenticates only, using manifest-only mode in a throwaway directory.

        Args:
            credentials: Steam account.
            guard_code: Steam Guard code to answer an email (or mobile) prompt.
            confirm_mobile: Keep waiting while the user approves in the mobile app.
            on_event: Progress listener.

        Returns:
            A LoginResult; `requires_guard`/`guard_type` are set when the caller
            has to retry with a code or confirmation.
        """
        validate_credentials(credentials)
        self._check_guard_code(guard_code)
        try:
            async with self._slot.claim(SessionMode.LOGIN.value):
                return await self._login(
                    credentials, guard_code, confirm_mobile, on_event
                )
        except OperationInProgressError as e:
            return LoginResult(
                ok=False, error=str(e), condition=ErrorCondition.OPERATION_IN_PROGRESS
            )

    async def download_branch(
        self,
        credentials: Credentials,
        install_dir: Path,
        branch_key: str = "public",
        depots: Sequence[tuple[str, str]] = (),
        guard_code: str | None = None,
        confirm_mobile: bool = False,
        on_event: ProgressListener | None = None,
    ) -> DownloadResult:
        """
        Downloads a branch into `install_dir`, retrying authentication and
        Steam-conflict failures on the configured backoff schedule.

        Args:
            credentials: Steam account.
            install_dir: Target directory.
            branch_key: Platform branch key (`public` omits `-beta`).
            depots: Optional (depot, manifest) pins for a specific version.
            guard_code: Steam Guard code, if already known.
            confirm_mobile: Wait for mobile approval instead of failing.
            on_event: Progress listener.

        Returns:
            A DownloadResult with the number of attempts made.
        """
        args = build_download_arguments(
            credentials,
            self.app_id,
            install_dir,
            branch_key,
            self.max_downloads,
            depots=depots,
        )
        self._check_guard_code(guard_code)
        try:
            async with self._slot.claim(f"{SessionMode.DOWNLOAD.value} ({branch_key})"):
                return await self._download(
                    args, credentials, guard_code, confirm_mobile, on_event
                )
        except OperationInProgressError as e:
            return DownloadResult(
                ok=False, error=str(e), condition=ErrorCondition.OPERATION_IN_PROGRESS
            )

    async def fetch_manifest_ids(
        self,
        credentials: Credentials,
        branch_key: str = "public",
        guard_code: str | None = None,
        confirm_mobile: bool = False,
        on_event: ProgressListener | None = None,
    ) -> ManifestLookupResult:
        """
        Runs a manifest-only download to learn the depot manifest ids of a branch.

        A lookup that succeeds but finds no ids is still `ok`; the primary
        manifest id is then None.
        """
        validate_credentials(credentials)
        validate_branch_key(branch_key)
        self._check_guard_code(guard_code)
        try:
            async with self._slot.claim(SessionMode.MANIFEST.value):
                return await self._fetch_manifest_ids(
                    credentials, branch_key, guard_code, confirm_mobile, on_event
                )
        except OperationInProgressError as e:
            return ManifestLookupResult(
                ok=False, error=str(e), condition=ErrorCondition.OPERATION_IN_PROGRESS
            )

    async def cancel(self) -> OperationResult:
        """Terminates the running child, if any. Leaves partial files in place."""
        if await self._slot.cancel():
            return OperationResult(ok=True)
        return OperationResult(ok=False, error="No DepotDownloader process is running.")

    # --- Operation bodies (slot held) ---

    async def _login(
        self,
        credentials: Credentials,
        guard_code: str | None,
        confirm_mobile: bool,
        on_event: ProgressListener | None,
    ) -> LoginResult:
        if await self._platform_running():
            return LoginResult(
                ok=False,
                error=STEAM_RUNNING_MESSAGE,
                condition=ErrorCondition.PLATFORM_PROCESS_CONFLICT,
            )
        try:
            executable = resolve_executable(self.downloader_path)
        except MissingBinaryError as e:
            return LoginResult(
                ok=False, error=str(e), condition=ErrorCondition.MISSING_BINARY
            )

        log.info(f"[cyan]Logging in to Steam as {credentials.username}...[/cyan]")
        with tempfile.TemporaryDirectory(prefix="depot-cli-login-") as work_dir:
            args = build_login_arguments(credentials, self.app_id, Path(work_dir))
            session = self._new_session(
                SessionMode.LOGIN, credentials, guard_code, confirm_mobile, on_event
            )
            spawn_error = await self._run_session(
                executable, args, session, timeout=self.login_timeout
            )
        if spawn_error:
            return LoginResult(
                ok=False, error=spawn_error, condition=ErrorCondition.PROCESS_FAILED
            )

        result = self._login_result(session, LoginResult)
        if result.ok:
            log.info(f"[green]✓ Logged in as {credentials.username}.[/green]")
        return result

    async def _download(
        self,
        args: list[str],
        credentials: Credentials,
        guard_code: str | None,
        confirm_mobile: bool,
        on_event: ProgressListener | None,
    ) -> DownloadResult:
        conflict = await self._preflight(on_event)
        if conflict is not None:
            return conflict
        try:
            executable = resolve_executable(self.downloader_path)
        except MissingBinaryError as e:
            return DownloadResult(
                ok=False, error=str(e), condition=ErrorCondition.MISSING_BINARY
            )

        started = time.monotonic()
        max_attempts = len(self.retry_backoffs)
        error, condition, exit_code = None, ErrorCondition.PROCESS_FAILED, None
        attempt = 0

        for attempt, delay in enumerate(self.retry_backoffs, 1):
            if await self._slot.pause(self._sleep(delay)):
                break
            _notify(
                on_event,
                ProgressEvent(
                    EventType.INFO,
                    message=f"Starting download (attempt {attempt}/{max_attempts})",
                ),
            )
            if self.event_log:
                self.event_log.attempt_started("download", attempt, mask_arguments(args))

            session = self._new_session(
                SessionMode.DOWNLOAD, credentials, guard_code, confirm_mobile, on_event
            )
            spawn_error = await self._run_session(executable, args, session)
            if spawn_error:
                return DownloadResult(
                    ok=False,
                    error=spawn_error,
                    condition=ErrorCondition.PROCESS_FAILED,
                    attempts=attempt,
                )
            exit_code = session.exit_code

            if self._slot.cancel_requested:
                break
            if session.requires_guard:
                return self._guard_result(session, DownloadResult, attempts=attempt)
            if exit_code == 0:
                duration = time.monotonic() - started
                log.info(f"[green]✓ Download finished in {format_duration(duration)}.[/green]")
                if self.event_log:
                    self.event_log.completed("download", attempt, duration)
                return DownloadResult(ok=True, attempts=attempt, exit_code=0)

            if session.auth_failure_seen:
                condition = ErrorCondition.AUTHENTICATION_FAILURE
            elif session.conflict_seen:
                condition = ErrorCondition.PLATFORM_PROCESS_CONFLICT
            else:
                condition = ErrorCondition.PROCESS_FAILED
            retryable = condition is not ErrorCondition.PROCESS_FAILED
            error = session.redactor(
                f"DepotDownloader exited with code {exit_code}: "
                f"{session.failure_line or session.last_line() or 'no output'}"
            )
            if self.event_log:
                self.event_log.attempt_failed("download", attempt, error, retryable)
            if not retryable:
                break
            if attempt < max_attempts:
                log.warning(
                    f"[yellow]Attempt {attempt}/{max_attempts} failed, retrying in "
                    f"{self.retry_backoffs[attempt]:g}s: {error}[/yellow]"
                )

        if self._slot.cancel_requested:
            return DownloadResult(
                ok=False,
                error="Download cancelled.",
                condition=ErrorCondition.CANCELLED,
                attempts=attempt,
                exit_code=exit_code,
            )
        log.error(f"[red]✗ Download failed after {attempt} attempt(s): {error}[/red]")
        return DownloadResult(
            ok=False,
            error=error,
            condition=condition,
            attempts=attempt,
            exit_code=exit_code,
        )

    async def _fetch_manifest_ids(
        self,
        credentials: Credentials,
        branch_key: str,
        guard_code: str | None,
        confirm_mobile: bool,
        on_event: ProgressListener | None,
    ) -> ManifestLookupResult:
        if await self._platform_running():
            return ManifestLookupResult(
                ok=False,
                error=STEAM_RUNNING_MESSAGE,
                condition=ErrorCondition.PLATFORM_PROCESS_CONFLICT,
            )
        try:
            executable = resolve_executable(self.downloader_path)
        except MissingBinaryError as e:
            return ManifestLookupResult(
                ok=False, error=str(e), condition=ErrorCondition.MISSING_BINARY
            )

        with tempfile.TemporaryDirectory(prefix="depot-cli-manifest-") as work_dir:
            args = build_download_arguments(
                credentials,
                self.app_id,
                Path(work_dir),
                branch_key,
                self.max_downloads,
                manifest_only=True,
            )
            session = self._new_session(
                SessionMode.MANIFEST, credentials, guard_code, confirm_mobile, on_event
            )
            spawn_error = await self._run_session(
                executable, args, session, timeout=self.manifest_timeout
            )
            metadata = await self.registry.read_downloader_metadata(Path(work_dir))

        if spawn_error:
            return ManifestLookupResult(
                ok=False, error=spawn_error, condition=ErrorCondition.PROCESS_FAILED
            )

        manifest_ids = dict(metadata.manifest_ids)
        manifest_ids.update(parse_manifest_request_output(session.text))
        if not manifest_ids:
            result = self._login_result(session, ManifestLookupResult)
            if not result.ok:
                return result
            log.warning(
                f"[yellow]No manifest ids reported for branch '{branch_key}'.[/yellow]"
            )

        primary = self.registry.primary_from_pairs(manifest_ids)
        log.debug(f"Manifest lookup for {branch_key}: {manifest_ids} primary={primary}")
        return ManifestLookupResult(
            ok=True,
            manifest_ids=manifest_ids,
            primary_manifest_id=primary,
            build_id=metadata.build_id,
        )

    # --- Process plumbing ---

    def _new_session(
        self,
        mode: SessionMode,
        credentials: Credentials,
        guard_code: str | None,
        confirm_mobile: bool,
        on_event: ProgressListener | None,
    ) -> _Session:
        redactor = Redactor([credentials.password, guard_code])
        coalescer = ProgressCoalescer(
            on_event,
            redactor,
            interval=self.progress_interval,
            track_percent=mode is SessionMode.DOWNLOAD,
        )
        return _Session(
            mode=mode,
            redactor=redactor,
            coalescer=coalescer,
            guard_code=guard_code,
            confirm_mobile=confirm_mobile,
            keep_output=mode is SessionMode.MANIFEST,
        )

    async def _run_session(
        self,
        executable: Path,
        args: list[str],
        session: _Session,
        timeout: float | None = None,
    ) -> str | None:
        """
        Spawns the child and pumps its output until it exits.

        Returns:
            None once the process has been reaped, or a redacted error string
            if it could not be started at all.
        """
        log.debug(f"Running {session.redactor.command_line([str(executable), *args])}")
        try:
            process = await self._spawn(
                str(executable),
                *args,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            session.coalescer.close()
            return session.redactor(f"Failed to start DepotDownloader: {e}")

        self._slot.attach(process)
        if self._slot.cancel_requested:
            request_stop(process)
        readers = [
            asyncio.create_task(self._pump(process.stdout, "stdout", process, session)),
            asyncio.create_task(self._pump(process.stderr, "stderr", process, session)),
        ]
        try:
            await asyncio.wait_for(
                asyncio.gather(*readers, process.wait()), timeout=timeout
            )
        except asyncio.TimeoutError:
            session.timed_out = True
            log.warning(
                f"[yellow]{session.mode.value.capitalize()} timed out after "
                f"{timeout:g}s.[/yellow]"
            )
        finally:
            if process.returncode is None:
                await terminate_process(process)
            for reader in readers:
                reader.cancel()
            await asyncio.gather(*readers, return_exceptions=True)
            session.coalescer.close()
            self._slot.detach()

        session.exit_code = process.returncode
        return None

    async def _pump(
        self, stream: Any, name: str, process: Any, session: _Session
    ) -> None:
        if stream is None:
            return
        while True:
            if session.guard_pending:
                try:
                    chunk = await asyncio.wait_for(
                        stream.read(_READ_CHUNK), timeout=GUARD_SETTLE_SECONDS
                    )
                except asyncio.TimeoutError:
                    await self._handle_guard("mobile", process, session)
                    continue
            else:
                chunk = await stream.read(_READ_CHUNK)
            if not chunk:
                break
            text = chunk.decode("utf-8", errors="replace")
            session.record(text)
            session.coalescer.feed(text, name)
            await self._inspect(text, process, session)
        if session.guard_pending:
            await self._handle_guard("mobile", process, session)

    async def _inspect(self, text: str, process: Any, session: _Session) -> None:
        """Scans new output (plus a short tail) for guard prompts and login phrases."""
        window = session.tail + clean_output(text)
        session.tail = window[-_WINDOW_TAIL:]

        if session.guard_type is None and (prompt := GUARD_PROMPT.search(window)):
            guard_type = self._classify_guard(window, prompt)
            session.guard_pending = guard_type is None
            if guard_type is not None:
                await self._handle_guard(guard_type, process, session)

        if not session.login_confirmed and LOGIN_SUCCESS.search(window):
            session.login_confirmed = True
            if session.mode is SessionMode.LOGIN:
                # Authentication is all a login needs; skip the manifest fetch.
                request_stop(process)

        if session.failure_line is None:
            if match := LOGIN_FAILURE_LINE.search(window):
                session.failure_line = session.redactor(match.group(0).strip())
        if RETRYABLE_AUTH.search(window):
            session.auth_failure_seen = True
        if PLATFORM_CONFLICT_OUTPUT.search(window):
            session.conflict_seen = True

    @staticmethod
    def _classify_guard(window: str, prompt: re.Match) -> Optional[str]:
        """
        `email` or `mobile` once the prompt can be told apart, None while the
        prompt line is still incomplete.
        """
        if EMAIL_GUARD.search(window):
            return "email"
        if "\n" in window[prompt.end():]:
            return "mobile"
        return None

    async def _handle_guard(self, guard_type: str, process: Any, session: _Session) -> None:
        session.guard_type = guard_type
        session.guard_pending = False
        if guard_type == "email":
            message = "Steam Guard code required: check your email."
        else:
            message = "Steam Guard confirmation required in the Steam mobile app."
        session.coalescer.emit(
            ProgressEvent(EventType.STEAM_GUARD, message=message, guard_type=guard_type)
        )
        if self.event_log:
            self.event_log.guard_required(session.mode.value, guard_type)

        if session.guard_code:
            log.info("[cyan]Submitting Steam Guard code...[/cyan]")
            await self._write_stdin(process, f"{session.guard_code}\n")
        elif guard_type == "mobile" and session.confirm_mobile:
            log.info("[cyan]Waiting for confirmation in the Steam mobile app...[/cyan]")
        else:
            session.requires_guard = True
            request_stop(process)

    @staticmethod
    async def _write_stdin(process: Any, data: str) -> None:
        if process.stdin is None:
            return
        try:
            process.stdin.write(data.encode("utf-8"))
            await process.stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as e:
            log.warning(f"[yellow]Could not write to DepotDownloader: {e}[/yellow]")

    async def _preflight(
        self, on_event: ProgressListener | None
    ) -> DownloadResult | None:
        """None when Steam is not running, else the conflict or cancel result."""
        max_checks = len(self.preflight_backoffs)
        for check, delay in enumerate(self.preflight_backoffs, 1):
            if await self._slot.pause(self._sleep(delay)):
                return DownloadResult(
                    ok=False,
                    error="Download cancelled.",
                    condition=ErrorCondition.CANCELLED,
                )
            if not await self._platform_running():
                return None
            log.warning(
                f"[yellow]Steam client is running (check {check}/{max_checks}).[/yellow]"
            )
            next_delay = (
                self.preflight_backoffs[check] if check < max_checks else 0.0
            )
            if self.event_log:
                self.event_log.preflight_conflict(check, max_checks, next_delay)
            _notify(
                on_event,
                ProgressEvent(
                    EventType.INFO,
                    message=f"Waiting for Steam to close ({check}/{max_checks})",
                ),
            )
        return DownloadResult(
            ok=False,
            error=STEAM_RUNNING_MESSAGE,
            condition=ErrorCondition.PLATFORM_PROCESS_CONFLICT,
        )

    async def _platform_running(self) -> bool:
        if self._is_platform_running is None:
            return False
        result = self._is_platform_running()
        if inspect.isawaitable(result):
            result = await result
        return bool(result)

    @staticmethod
    def _check_guard_code(guard_code: str | None) -> None:
        if guard_code is not None and not GUARD_CODE.fullmatch(guard_code):
            raise InvalidArgumentError("Steam Guard codes are 4-10 letters or digits.")

    def _guard_result(self, session: _Session, result_cls, **extra):
        return result_cls(
            ok=False,
            error=f"Steam Guard {session.guard_type} confirmation required.",
            condition=ErrorCondition.GUARD_REQUIRED,
            requires_guard=True,
            guard_type=session.guard_type,
            **extra,
        )

    def _login_result(self, session: _Session, result_cls):
        """Interprets a login-style session: phrases first, exit code last."""
        if self._slot.cancel_requested:
            return result_cls(
                ok=False,
                error=f"{session.mode.value.capitalize()} cancelled.",
                condition=ErrorCondition.CANCELLED,
            )
        if session.requires_guard:
            return self._guard_result(session, result_cls)
        if session.login_confirmed:
            return result_cls(ok=True)
        if session.timed_out:
            return result_cls(
                ok=False,
                error=f"{session.mode.value.capitalize()} timed out.",
                condition=ErrorCondition.TIMEOUT,
            )
        if session.failure_line:
            return result_cls(
                ok=False,
                error=session.failure_line,
                condition=ErrorCondition.AUTHENTICATION_FAILURE,
            )
        if session.exit_code == 0:
            return result_cls(ok=True)
        return result_cls(
            ok=False,
            error=session.redactor(
                f"Login failed (exit code {session.exit_code}): "
                f"{session.last_line() or 'no output'}"
            ),
            condition=ErrorCondition.AUTHENTICATION_FAILURE,
        )
