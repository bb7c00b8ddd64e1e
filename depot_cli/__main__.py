"""
Entry point for `depot-cli` and `python -m depot_cli`.

Application errors that escape a command are rendered as a suggestion panel
and turned into exit code 1.
"""

import asyncio
import logging
import os
import sys

from rich.console import Console

from depot_cli.cli.app import app
from depot_cli.cli.formatters import format_error_with_suggestions
from depot_cli.exceptions import DepotCliError, GuardRequiredError

log = logging.getLogger("depot_cli")


def _force_utf8_streams() -> None:
    if os.name != "nt":
        return
    for stream in (sys.stdout, sys.stderr):
        try:
            stream.reconfigure(encoding="utf-8")
        except (TypeError, AttributeError):
            continue


def main() -> None:
    _force_utf8_streams()
    console = Console()

    try:
        app()
    except (KeyboardInterrupt, asyncio.CancelledError):
        console.print(
            "\n[yellow]⚠️  Cancelled. Partially downloaded files were left in place."
            "[/yellow]"
        )
        sys.exit(0)
    except GuardRequiredError as e:
        context = {"guard_type": e.guard_type} if e.guard_type else None
        console.print(f"\n{format_error_with_suggestions(e, context)}")
        sys.exit(1)
    except DepotCliError as e:
        console.print(f"\n{format_error_with_suggestions(e)}")
        sys.exit(1)
    except Exception as e:
        console.print(f"\n{format_error_with_suggestions(e, {'type': 'Unexpected'})}")
        log.debug("Full traceback:", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
