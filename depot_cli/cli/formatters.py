"""
Functions for formatting and displaying data in the console using Rich.
"""

from pathlib import Path
from typing import Any

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from depot_cli.models.branch import BranchVersionInfo, LegacyInstallation
from depot_cli.models.config import AppConfig
from depot_cli.models.results import (
    MigrationReport,
    RollbackReport,
    ValidationReport,
    ValidationResult,
)
from depot_cli.utils.formatting import format_size, format_timestamp

HIDDEN_KEYS = ("password",)


def format_error_with_suggestions(
    error: Exception, context: dict | None = None
) -> Panel:
    """Formats an error with actionable suggestions into a Rich Panel."""
    error_type = type(error).__name__
    error_msg = str(error)

    suggestions_map = {
        "MissingBinaryError": [
            "• Install DepotDownloader: winget install --exact --id SteamRE.DepotDownloader",
            "• Or point `downloader_path` in the config at the executable.",
            "• Run `depot-cli validate` to check the binary.",
        ],
        "PlatformProcessConflictError": [
            "• Close the Steam client completely (including the tray icon).",
            "• Run `depot-cli diagnose` to see whether Steam is still detected.",
        ],
        "AuthenticationError": [
            "• Check the username in the configuration and re-enter the password.",
            "• Too many failed logins can temporarily lock the account; wait a while.",
        ],
        "GuardRequiredError": [
            "• Re-run with `--code <CODE>` using the code from your email.",
            "• For the mobile app, re-run with `--confirm-mobile` and approve the login.",
        ],
        "ManifestNotFoundError": [
            "• The branch may be unavailable to this account.",
            "• Run `depot-cli manifests <BRANCH>` with -vv to see the downloader output.",
        ],
        "PathEscapeError": [
            "• Check `install_root` in the configuration.",
            "• Version ids must be plain directory names.",
        ],
        "ConfigurationError": [
            "• Run `depot-cli init --force` to recreate the configuration.",
            "• Run `depot-cli --show-config` to inspect the current values.",
        ],
        "OperationInProgressError": [
            "• Wait for the running download to finish or cancel it first.",
        ],
        "MigrationError": [
            "• Run `depot-cli migrate validate` to see what is left over.",
            "• `depot-cli migrate rollback` restores the flat layout.",
        ],
        "InvalidArgumentError": [
            "• Check the command arguments; run the command with --help.",
        ],
        "ProcessFailedError": [
            "• Run the command again with -vv to see the downloader output.",
            "• Check free disk space and your network connection.",
        ],
    }

    suggestions = suggestions_map.get(
        error_type, ["• Run the command with -vv for detailed logs."]
    )
    guard_type = (context or {}).get("guard_type")
    if error_type == "GuardRequiredError" and guard_type == "email":
        suggestions = suggestions[:1]
    elif error_type == "GuardRequiredError" and guard_type == "mobile":
        suggestions = suggestions[1:]

    error_text = Text()
    error_text.append(f"{error_type}: ", style="bold red")
    error_text.append(error_msg)

    content = Table.grid(padding=(1, 0))
    content.add_row(error_text)
    content.add_row()
    content.add_row(Text("Suggestions", style="bold yellow"))
    content.add_row(Text("\n".join(suggestions)))

    if context:
        content.add_row()
        content.add_row(Text(f"Context: {context}", style="dim"))

    return Panel(
        content,
        title="[bold red]An Error Occurred[/bold red]",
        border_style="red",
        expand=False,
    )


def print_config(config_path: Path, config_data: dict[str, Any]):
    """Displays the current configuration, hiding sensitive data."""
    console = Console()
    content = ""
    for key, value in config_data.items():
        if key in HIDDEN_KEYS:
            value = "[hidden]"
        elif isinstance(value, list):
            value = ", ".join(str(v) for v in value)
        content += f"{key} = {value}\n"

    console.print(
        Panel(
            Text(content.strip()),
            title=f"Configuration ([dim]{config_path}[/dim])",
            border_style="cyan",
        )
    )


def print_validation_table(config: AppConfig, validation: ValidationResult | None = None):
    """Displays a summary of the current settings and the binary check."""
    console = Console()
    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column(style="bold cyan")
    table.add_column()

    table.add_row("Username:", config.username or "[red]not set[/red]")
    table.add_row("Install Root:", config.install_root or "[red]not set[/red]")
    table.add_row("App ID:", config.app_id)
    table.add_row("Max Downloads:", str(config.max_downloads))
    table.add_row("Priority Depots:", ", ".join(config.priority_depots))
    if validation is not None:
        if validation.ok:
            version = validation.version or "unknown version"
            table.add_row(
                "DepotDownloader:", f"[green]✓ {validation.executable} ({version})[/green]"
            )
        else:
            table.add_row("DepotDownloader:", f"[red]✗ {validation.error}[/red]")

    ok = validation is None or validation.ok
    console.print(
        Panel(
            table,
            title=(
                "[bold green]✓ Validated Settings[/bold green]"
                if ok
                else "[bold red]✗ Validation Problems[/bold red]"
            ),
            border_style="green" if ok else "red",
        )
    )


def print_versions_table(branch: str, versions: list[BranchVersionInfo]):
    """Lists installed versions of one branch, newest first."""
    console = Console()
    if not versions:
        console.print(f"[dim]No versions of {branch} are installed.[/dim]")
        return

    table = Table(title=f"Installed versions: {branch}", box=box.ROUNDED)
    table.add_column("Directory", style="cyan")
    table.add_column("Kind")
    table.add_column("Size", justify="right", style="green")
    table.add_column("Downloaded", style="dim")
    table.add_column("Active", justify="center")
    for info in versions:
        table.add_row(
            info.version.directory_name,
            info.version.kind.value,
            format_size(info.size_bytes),
            format_timestamp(info.download_date),
            "[bold green]●[/bold green]" if info.is_active else "",
        )
    console.print(table)


def print_legacy_table(installations: list[LegacyInstallation]):
    console = Console()
    if not installations:
        console.print("[green]✓ No legacy installations found.[/green]")
        return

    table = Table(title="Legacy installations", box=box.ROUNDED)
    table.add_column("Branch", style="cyan")
    table.add_column("Detected Version")
    table.add_column("Path", style="dim")
    for installation in installations:
        version = (
            installation.version.directory_name
            if installation.is_identified
            else "[yellow]unknown (use --id)[/yellow]"
        )
        table.add_row(installation.branch_name, version, str(installation.path))
    console.print(table)


def print_migration_report(report: MigrationReport | ValidationReport | RollbackReport):
    """Summarizes the outcome of a migrate, validate or rollback run."""
    console = Console()
    if isinstance(report, MigrationReport):
        ok = report.success
        summary = f"{report.migrated} migrated, {report.failed} failed"
    elif isinstance(report, ValidationReport):
        ok = report.valid
        summary = "Layout is valid" if ok else f"{len(report.errors)} problem(s) found"
    else:
        ok = report.ok
        summary = f"{report.restored} version directories restored"

    content = Table.grid(padding=(0, 0))
    content.add_row(Text(summary, style="bold green" if ok else "bold red"))
    for error in report.errors:
        content.add_row(Text(f"• {error}", style="red"))

    console.print(
        Panel(
            content,
            title="[bold]Migration[/bold]",
            border_style="green" if ok else "red",
            expand=False,
        )
    )
