"""
Defines the command-line interface for the application using Typer.
"""

import asyncio
import logging
import os
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from depot_cli import __version__
from depot_cli.core.binary import Credentials, validate_depot_pin
from depot_cli.core.installer import BranchInstaller
from depot_cli.core.migration import MigrationEngine
from depot_cli.core.orchestrator import DepotDownloaderOrchestrator
from depot_cli.core.platform_process import steam_client_running
from depot_cli.exceptions import DepotCliError
from depot_cli.manifest.registry import ManifestRegistry
from depot_cli.models.branch import Branch, VersionIdentifier, VersionKind
from depot_cli.models.config import DEFAULT_APP_ID, AppConfig
from depot_cli.models.events import EventType, ProgressEvent
from depot_cli.models.results import LoginResult, MigrationReport
from depot_cli.storage.config_manager import ConfigManager
from depot_cli.storage.layout import (
    branch_path,
    detect_legacy_structure,
    has_version_directories,
    list_versions,
)
from depot_cli.storage.version_state import JsonVersionStateStore
from depot_cli.utils.redaction import Redactor
from depot_cli.utils.structured_logger import (
    MigrationLogger,
    OrchestratorLogger,
    create_structured_logger,
)

from .formatters import (
    print_config,
    print_legacy_table,
    print_migration_report,
    print_validation_table,
    print_versions_table,
)
from .progress_manager import ProgressManager

console = Console()

logging.basicConfig(
    level="INFO",
    format="%(message)s",
    datefmt="[%X]",
    handlers=[
        RichHandler(
            console=console,
            rich_tracebacks=True,
            show_path=False,
            show_level=False,
            markup=True,
        )
    ],
)
log = logging.getLogger("depot_cli")

PASSWORD_ENV = "DEPOT_CLI_PASSWORD"

app = typer.Typer(
    name="depot-cli",
    help=(
        "Manage side-by-side versioned installs of Steam branches with"
        " DepotDownloader. Use 'depot-cli <command> --help' for more info."
    ),
    rich_markup_mode="rich",
    pretty_exceptions_show_locals=False,
    add_completion=False,
)
migrate_app = typer.Typer(
    help="Convert flat legacy branch folders into versioned directories.",
    add_completion=False,
)
app.add_typer(migrate_app, name="migrate")


def get_config_dir() -> Path:
    if os.name == "nt":
        base_dir = Path(os.getenv("APPDATA", "~\\AppData\\Roaming"))
    else:
        base_dir = Path(os.getenv("XDG_CONFIG_HOME", "~/.config"))
    return base_dir.expanduser() / "depot-cli"


CONFIG_DIR = get_config_dir()
CONFIG_FILE = CONFIG_DIR / "config.ini"
STATE_FILE = CONFIG_DIR / "state.json"
LOG_DIR = CONFIG_DIR / "logs"

# Set by the global callback; read by the commands.
_options: dict[str, Any] = {"log_json": False, "verbose": 0}


@app.callback(invoke_without_command=True)
def main_callback(
    ctx: typer.Context,
    verbose: int = typer.Option(
        0,
        "--verbose",
        "-v",
        count=True,
        help="Increase logging verbosity (-v shows debug logs, -vv also downloader output).",
    ),
    version: bool = typer.Option(
        False, "--version", help="Show version and exit.", is_eager=True
    ),
    show_config: bool = typer.Option(
        False, "--show-config", help="Display the current configuration."
    ),
    log_json: bool = typer.Option(
        False, "--log-json", help="Also write structured JSONL event logs."
    ),
):
    """DepotDownloader version manager"""
    if version:
        console.print(f"[bold]depot-cli[/bold] version [cyan]{__version__}[/cyan]")
        raise typer.Exit()

    _options["verbose"] = verbose
    _options["log_json"] = log_json
    logging.getLogger("depot_cli").setLevel("DEBUG" if verbose >= 1 else "INFO")

    if show_config:
        if not CONFIG_FILE.is_file():
            console.print(
                "[red]✗ Config file not found.[/] Run [cyan]depot-cli init[/cyan]"
                " first."
            )
            raise typer.Exit(code=1)
        config_manager = ConfigManager(CONFIG_FILE)
        config_manager.load_config()
        print_config(CONFIG_FILE, config_manager._get_config_as_dict())
        raise typer.Exit()

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())


# --- Shared helpers ---


def _load_config(require_account: bool = False) -> AppConfig:
    return ConfigManager(CONFIG_FILE).load_config(require_account=require_account)


def _parse_branch(value: str) -> Branch:
    try:
        return Branch.parse(value)
    except ValueError as e:
        raise typer.BadParameter(str(e)) from e


def _credentials(config: AppConfig) -> Credentials:
    password = os.getenv(PASSWORD_ENV) or typer.prompt(
        f"Steam password for {config.username}", hide_input=True
    )
    return Credentials(config.username, password)


@contextmanager
def _event_logs(
    redactor: Redactor,
) -> Iterator[tuple[OrchestratorLogger, MigrationLogger]]:
    base, orchestrator_log, migration_log = create_structured_logger(
        log_dir=LOG_DIR, enable_json=_options["log_json"], redactor=redactor
    )
    try:
        yield orchestrator_log, migration_log
    finally:
        base.close()
        if base.json_log_path:
            console.print(f"[dim]Event log written to {base.json_log_path}[/dim]")


def _orchestrator(
    config: AppConfig, event_log: OrchestratorLogger | None = None
) -> DepotDownloaderOrchestrator:
    return DepotDownloaderOrchestrator.from_config(
        config, is_platform_running=steam_client_running, event_log=event_log
    )


def _print_event(event: ProgressEvent) -> None:
    if event.type is EventType.STEAM_GUARD:
        console.print(f"[bold yellow]🔐 {event.message}[/bold yellow]")
    elif event.type is EventType.ERROR and event.message:
        console.print(event.message, style="red", markup=False)
    elif event.type is EventType.OUTPUT and event.message and _options["verbose"] >= 2:
        console.print(event.message, style="dim", markup=False)


def _ask_guard(result: LoginResult) -> tuple[str | None, bool]:
    """Prompts for what a guarded login needs; returns (code, confirm_mobile)."""
    if result.guard_type == "email":
        code = typer.prompt("Steam Guard code from your email").strip()
        return code, False
    typer.confirm(
        "Approve the sign-in in the Steam mobile app (or have a code ready). Continue?",
        abort=True,
    )
    return None, True


def _install_root(config: AppConfig) -> Path:
    if not config.install_root:
        console.print("[red]✗ install_root is not configured.[/] Run `depot-cli init`.")
        raise typer.Exit(code=1)
    return Path(config.install_root).expanduser()


def _migration_engine(
    config: AppConfig, migration_log: MigrationLogger | None = None
) -> MigrationEngine:
    return MigrationEngine(
        ManifestRegistry(config.priority_depots, config.app_id),
        JsonVersionStateStore(STATE_FILE),
        migration_log,
    )


# --- Commands ---


@app.command()
def init(
    username: str = typer.Option(..., "--username", "-u", help="Steam account name."),
    root: Path = typer.Option(  # noqa: B008
        ..., "--root", "-r", help="Install root holding the branches/ folder."
    ),
    downloader: str = typer.Option(
        "", "--downloader", help="Path to DepotDownloader (default: search PATH)."
    ),
    app_id: str = typer.Option(DEFAULT_APP_ID, "--app-id", help="Steam app id."),
    force: bool = typer.Option(
        False, "--force", "-f", help="Overwrite an existing configuration without asking."
    ),
):
    """Initialize the configuration file."""
    if (
        CONFIG_FILE.exists()
        and not force
        and not typer.confirm("Configuration file already exists. Overwrite it?")
    ):
        raise typer.Abort()

    settings = {
        "username": username,
        "install_root": str(root.expanduser().resolve()),
        "downloader_path": downloader,
        "app_id": app_id,
    }
    try:
        AppConfig(**settings, require_account=True)
    except ValueError as e:
        console.print(f"[red]✗ Invalid settings: {e}[/red]")
        raise typer.Exit(code=1) from e

    ConfigManager(CONFIG_FILE).save_new_config(settings)
    console.print(f"\n[bold green]✓ Configuration saved to '{CONFIG_FILE}'[/bold green]")
    console.print("Check the downloader next: [cyan]depot-cli validate[/cyan]")


@app.command()
def validate():
    """Validate the configuration and check the DepotDownloader binary."""
    try:
        config = _load_config()
    except DepotCliError as e:
        console.print(f"[red]✗ Configuration is invalid: {e}[/red]")
        raise typer.Exit(code=1) from e

    validation = asyncio.run(_orchestrator(config).validate_installation())
    print_validation_table(config, validation)
    if not validation.ok:
        raise typer.Exit(code=1)


@app.command()
def diagnose():
    """Diagnose configuration, binary, Steam client and layout issues."""
    console.print("\n[bold cyan]Running diagnostics...[/bold cyan]\n")
    issues_found = False
    if CONFIG_FILE.is_file():
        console.print(f"[green]✓[/] Config file exists at: [dim]{CONFIG_FILE}[/dim]")
    else:
        console.print("[red]✗ Config file not found.[/] Run [cyan]depot-cli init[/cyan].")
        raise typer.Exit(code=1)

    try:
        config = _load_config(require_account=True)
        console.print("[green]✓[/] Configuration file is valid and can be loaded.")
    except DepotCliError as e:
        console.print(f"[red]✗ Configuration validation failed: {e}[/red]")
        raise typer.Exit(code=1) from e

    async def _checks():
        validation = await _orchestrator(config).validate_installation()
        steam_running = await steam_client_running()
        return validation, steam_running

    validation, steam_running = asyncio.run(_checks())
    if validation.ok:
        console.print(
            f"[green]✓[/] DepotDownloader found: [dim]{validation.executable}[/dim]"
            f" ({validation.version or 'unknown version'})"
        )
    else:
        console.print(f"[red]✗ {validation.error}[/red]")
        issues_found = True

    if steam_running:
        console.print("[yellow]⚠️  The Steam client is running; downloads will wait for it.[/yellow]")
    else:
        console.print("[green]✓[/] Steam client is not running.")

    root = Path(config.install_root).expanduser()
    state = JsonVersionStateStore(STATE_FILE)
    for branch in Branch:
        folder = branch_path(root, branch)
        if detect_legacy_structure(folder) and not has_version_directories(folder):
            console.print(
                f"[yellow]⚠️  {branch.folder_name} uses the legacy layout."
                " Run `depot-cli migrate run`.[/yellow]"
            )
            issues_found = True
            continue
        versions = list_versions(root, branch, state.get_active_version(branch))
        if versions:
            active = next((v for v in versions if v.is_active), None)
            active_name = active.version.directory_name if active else "none"
            console.print(
                f"[green]✓[/] {branch.folder_name}: {len(versions)} version(s),"
                f" active: [cyan]{active_name}[/cyan]"
            )
        else:
            console.print(f"[dim]○ {branch.folder_name}: nothing installed[/dim]")

    console.print()
    if not issues_found:
        console.print("[bold green]✓ All checks passed! Your setup looks good.[/bold green]\n")
    else:
        console.print(
            "[bold red]✗ Some issues were found. "
            "Please review the messages above.[/bold red]\n"
        )


@app.command()
def login(
    code: Optional[str] = typer.Option(None, "--code", help="Steam Guard code."),
    confirm_mobile: bool = typer.Option(
        False, "--confirm-mobile", help="Wait for approval in the Steam mobile app."
    ),
):
    """Check the Steam credentials without downloading anything."""
    config = _load_config(require_account=True)
    credentials = _credentials(config)
    redactor = Redactor([credentials.password])

    async def _login_async():
        with _event_logs(redactor) as (orchestrator_log, _):
            orchestrator = _orchestrator(config, orchestrator_log)
            result = await orchestrator.login(
                credentials, code, confirm_mobile, on_event=_print_event
            )
            if result.requires_guard:
                guard_code, mobile = _ask_guard(result)
                result = await orchestrator.login(
                    credentials, guard_code, mobile, on_event=_print_event
                )
            result.raise_for_error()
        console.print(f"[green]✓ Logged in as {config.username}.[/green]")

    asyncio.run(_login_async())


@app.command()
def install(
    branch: str = typer.Argument(..., help="main, beta, alternate or alternate-beta."),
    repair: bool = typer.Option(
        False, "--repair", help="Re-download into an existing version directory."
    ),
    code: Optional[str] = typer.Option(None, "--code", help="Steam Guard code."),
    confirm_mobile: bool = typer.Option(
        False, "--confirm-mobile", help="Wait for approval in the Steam mobile app."
    ),
    manifest: Optional[str] = typer.Option(
        None, "--manifest", help="Install this manifest id instead of the branch head."
    ),
    depot: Optional[str] = typer.Option(
        None, "--depot", help="Depot the manifest belongs to (with --manifest)."
    ),
):
    """Download a branch (or one of its manifests) into its own directory."""
    selected = _parse_branch(branch)
    if depot and not manifest:
        raise typer.BadParameter("--depot needs --manifest.")
    if manifest:
        try:
            validate_depot_pin(depot or "0", manifest)
        except ValueError as e:
            raise typer.BadParameter(str(e)) from e
    config = _load_config(require_account=True)
    credentials = _credentials(config)
    redactor = Redactor([credentials.password])

    async def _install_async():
        with _event_logs(redactor) as (orchestrator_log, _):
            installer = BranchInstaller(
                _orchestrator(config, orchestrator_log),
                JsonVersionStateStore(STATE_FILE),
                _install_root(config),
            )
            guard_code, mobile = code, confirm_mobile
            for attempt in range(2):
                async with ProgressManager(
                    console, f"Installing {selected}", show_output=_options["verbose"] >= 2
                ) as progress:
                    options = dict(
                        repair=repair,
                        guard_code=guard_code,
                        confirm_mobile=mobile,
                        on_event=progress.handle_event,
                    )
                    if manifest:
                        result = await installer.install_version(
                            selected, credentials, manifest, depot, **options
                        )
                    else:
                        result = await installer.install_branch(
                            selected, credentials, **options
                        )
                if not result.requires_guard or attempt:
                    break
                guard_code, mobile = _ask_guard(result)
            result.raise_for_error()

        info = result.version_info
        console.print(
            f"\n[bold green]✓ {selected} installed as {info.version.directory_name}"
            f"[/bold green] [dim]({info.path})[/dim]"
        )

    asyncio.run(_install_async())


@app.command()
def manifests(
    branch: str = typer.Argument(..., help="main, beta, alternate or alternate-beta."),
    code: Optional[str] = typer.Option(None, "--code", help="Steam Guard code."),
    confirm_mobile: bool = typer.Option(
        False, "--confirm-mobile", help="Wait for approval in the Steam mobile app."
    ),
):
    """Look up the current manifest ids of a branch (manifest-only download)."""
    selected = _parse_branch(branch)
    config = _load_config(require_account=True)
    credentials = _credentials(config)
    redactor = Redactor([credentials.password])

    async def _lookup_async():
        with _event_logs(redactor) as (orchestrator_log, _):
            orchestrator = _orchestrator(config, orchestrator_log)
            result = await orchestrator.fetch_manifest_ids(
                credentials, selected.platform_key, code, confirm_mobile, _print_event
            )
            if result.requires_guard:
                guard_code, mobile = _ask_guard(result)
                result = await orchestrator.fetch_manifest_ids(
                    credentials, selected.platform_key, guard_code, mobile, _print_event
                )
            result.raise_for_error()

        if not result.manifest_ids:
            console.print(f"[yellow]No manifest ids reported for {selected}.[/yellow]")
            return
        table = Table(title=f"Manifests: {selected}")
        table.add_column("Depot", style="cyan")
        table.add_column("Manifest")
        table.add_column("Primary", justify="center")
        for depot_id, manifest_id in sorted(result.manifest_ids.items()):
            primary = manifest_id == result.primary_manifest_id
            table.add_row(depot_id, manifest_id, "[green]●[/green]" if primary else "")
        console.print(table)
        if result.build_id:
            console.print(f"Build id: [cyan]{result.build_id}[/cyan]")

    asyncio.run(_lookup_async())


@app.command()
def versions(
    branch: str = typer.Argument(..., help="main, beta, alternate or alternate-beta."),
):
    """List the installed versions of a branch."""
    selected = _parse_branch(branch)
    config = _load_config()
    root = _install_root(config)
    state = JsonVersionStateStore(STATE_FILE)
    print_versions_table(
        str(selected), list_versions(root, selected, state.get_active_version(selected))
    )


@app.command()
def use(
    branch: str = typer.Argument(..., help="main, beta, alternate or alternate-beta."),
    directory_name: str = typer.Argument(..., help="e.g. manifest_1234567890"),
):
    """Make an installed version the active one for its branch."""
    selected = _parse_branch(branch)
    config = _load_config()
    installer = BranchInstaller(
        _orchestrator(config), JsonVersionStateStore(STATE_FILE), _install_root(config)
    )
    result = installer.switch_version(selected, directory_name)
    if not result.ok:
        console.print(f"[red]✗ {result.error}[/red]")
        raise typer.Exit(code=1)


# --- Migration commands ---


@migrate_app.command("detect")
def migrate_detect():
    """List branch folders that still use the flat legacy layout."""
    config = _load_config()
    root = _install_root(config)
    installations = asyncio.run(_migration_engine(config).detect_legacy_installations(root))
    print_legacy_table(installations)


@migrate_app.command("run")
def migrate_run(
    branch: Optional[str] = typer.Option(
        None, "--branch", "-b", help="Only migrate this branch."
    ),
    version_id: Optional[str] = typer.Option(
        None, "--id", help="Version id to use when none can be detected."
    ),
    kind: VersionKind = typer.Option(  # noqa: B008
        VersionKind.MANIFEST, "--kind", help="Whether --id is a build or manifest id."
    ),
):
    """Migrate legacy branch folders into versioned directories."""
    config = _load_config()
    root = _install_root(config)
    selected = _parse_branch(branch) if branch else None
    if version_id and selected is None:
        console.print("[red]✗ --id requires --branch.[/red]")
        raise typer.Exit(code=1)

    async def _migrate_async() -> MigrationReport:
        with _event_logs(Redactor()) as (_, migration_log):
            engine = _migration_engine(config, migration_log)
            async with ProgressManager(console, "Migrating") as progress:
                if selected is None:
                    return await engine.migrate_all(root, progress.handle_migration)

                report = MigrationReport(success=True)
                override = VersionIdentifier(version_id, kind) if version_id else None
                for installation in await engine.detect_legacy_installations(root):
                    if installation.branch is not selected:
                        continue
                    outcome = await engine.migrate(
                        installation, override, progress.handle_migration
                    )
                    if outcome.ok:
                        report.migrated += 1
                    else:
                        report.failed += 1
                        report.errors.append(outcome.error or "Unknown migration error")
                report.success = report.failed == 0
                return report

    report = asyncio.run(_migrate_async())
    print_migration_report(report)
    if not report.success:
        raise typer.Exit(code=1)


@migrate_app.command("validate")
def migrate_validate():
    """Check for leftover legacy folders, empty versions and staging directories."""
    config = _load_config()
    root = _install_root(config)
    report = asyncio.run(_migration_engine(config).validate_migration(root))
    print_migration_report(report)
    if not report.valid:
        raise typer.Exit(code=1)


@migrate_app.command("rollback")
def migrate_rollback(
    force: bool = typer.Option(False, "--force", "-f", help="Bypass the confirmation prompt."),
):
    """Move version directory contents back into their branch folders."""
    if not force and not typer.confirm(
        "Move every version directory's files back into its branch folder?"
    ):
        console.print("[yellow]Operation cancelled.[/yellow]")
        raise typer.Abort()

    config = _load_config()
    root = _install_root(config)

    async def _rollback_async():
        with _event_logs(Redactor()) as (_, migration_log):
            return await _migration_engine(config, migration_log).rollback(root)

    report = asyncio.run(_rollback_async())
    print_migration_report(report)
    if not report.ok:
        raise typer.Exit(code=1)
