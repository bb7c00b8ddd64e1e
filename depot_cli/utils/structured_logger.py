"""
Structured logging system for better log analysis and debugging.
Provides JSON-formatted logs with context and metadata.
"""

import json
import logging
import sys
import time
from datetime import datetime
from pathlib import Path
from typing import Any

from depot_cli.utils.redaction import Redactor


class StructuredLogger:
    """
    Logger that outputs both human-readable and machine-parseable logs.

    Usage:
        logger = StructuredLogger("depot_cli", log_dir=Path("logs"))
        logger.info("download_completed",
                    branch="beta",
                    attempts=2,
                    install_dir="/games/branches/beta-branch/manifest_123")
    """

    def __init__(
        self,
        name: str,
        log_dir: Path | None = None,
        enable_json: bool = True,
        enable_console: bool = True,
        redactor: Redactor | None = None,
    ):
        """
        Initialize structured logger.

        Args:
            name: Logger name
            log_dir: Directory for JSON log files (None = disabled)
            enable_json: Enable JSON file logging
            enable_console: Enable console output
            redactor: Applied to every string value before it is written
        """
        self.name = name
        self.log_dir = log_dir
        self.enable_json = enable_json and log_dir is not None
        self.enable_console = enable_console
        self.redactor = redactor or Redactor()

        self._logger = logging.getLogger(name)

        self._json_file = None
        self.json_log_path: Path | None = None
        if self.enable_json:
            log_dir.mkdir(parents=True, exist_ok=True)
            timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
            self.json_log_path = log_dir / f"depot_cli_{timestamp}.jsonl"
            self._json_file = open(self.json_log_path, "a", encoding="utf-8")  # noqa: SIM115

        self._session_context: dict[str, Any] = {
            "session_id": f"{int(time.time())}_{id(self)}",
            "start_time": datetime.now().isoformat(),
        }

    def set_session_context(self, **kwargs) -> None:
        """Set session-level context that appears in all logs."""
        self._session_context.update(self._scrub(kwargs))

    def _scrub(self, context: dict[str, Any]) -> dict[str, Any]:
        cleaned = {}
        for key, value in context.items():
            if isinstance(value, str):
                value = self.redactor(value)
            elif isinstance(value, (list, tuple)):
                value = [self.redactor(v) if isinstance(v, str) else v for v in value]
            elif isinstance(value, Path):
                value = str(value)
            cleaned[key] = value
        return cleaned

    @staticmethod
    def _console_line(event: str, context: dict[str, Any]) -> str:
        """`[event] key=value ...`, with brackets escaped for the rich handler."""
        fields = " ".join(f"{key}={value}" for key, value in context.items())
        return rf"\[{event}] {fields}".rstrip()

    def _write_json(self, level: str, event: str, **context) -> None:
        """Write structured log entry to JSON file."""
        if not self._json_file or self._json_file.closed:
            return

        entry = {
            "timestamp": datetime.now().isoformat(),
            "level": level,
            "event": event,
            **self._session_context,
            **context,
        }

        try:
            self._json_file.write(json.dumps(entry, default=str) + "\n")
            self._json_file.flush()
        except (OSError, TypeError, ValueError) as e:
            print(f"JSON logging failed: {e}", file=sys.stderr)

    def _emit(self, level: int, event: str, context: dict[str, Any]) -> None:
        context = self._scrub(context)
        if self.enable_console:
            self._logger.log(level, self._console_line(event, context))
        if self.enable_json:
            self._write_json(logging.getLevelName(level), event, **context)

    def debug(self, event: str, **context) -> None:
        self._emit(logging.DEBUG, event, context)

    def info(self, event: str, **context) -> None:
        self._emit(logging.INFO, event, context)

    def warning(self, event: str, **context) -> None:
        self._emit(logging.WARNING, event, context)

    def error(self, event: str, **context) -> None:
        self._emit(logging.ERROR, event, context)

    def close(self) -> None:
        """Close JSON log file."""
        if self._json_file and not self._json_file.closed:
            self._json_file.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False


class OrchestratorLogger:
    """Specialized logger for downloader process events."""

    def __init__(self, logger: StructuredLogger):
        self.logger = logger

    def preflight_conflict(self, attempt: int, max_attempts: int, delay_s: float):
        self.logger.warning(
            "preflight_conflict",
            attempt=attempt,
            max_attempts=max_attempts,
            next_delay_s=delay_s,
        )

    def attempt_started(self, operation: str, attempt: int, masked_args: list[str]):
        """Log a downloader spawn. `masked_args` must already be masked."""
        self.logger.info(
            "download_attempt_started",
            operation=operation,
            attempt=attempt,
            args=masked_args,
        )

    def attempt_failed(
        self, operation: str, attempt: int, error: str, retryable: bool
    ):
        self.logger.error(
            "download_attempt_failed",
            operation=operation,
            attempt=attempt,
            error=error,
            retryable=retryable,
        )

    def completed(self, operation: str, attempts: int, duration_s: float):
        self.logger.info(
            "download_completed",
            operation=operation,
            attempts=attempts,
            duration_s=round(duration_s, 2),
        )

    def guard_required(self, operation: str, guard_type: str):
        self.logger.warning(
            "guard_required", operation=operation, guard_type=guard_type
        )


class MigrationLogger:
    """Specialized logger for legacy layout migration events."""

    def __init__(self, logger: StructuredLogger):
        self.logger = logger

    def started(self, branch: str, source: Path, version: str):
        self.logger.info(
            "migration_started", branch=branch, source=source, version=version
        )

    def completed(self, branch: str, target: Path, entries_moved: int):
        self.logger.info(
            "migration_completed",
            branch=branch,
            target=target,
            entries_moved=entries_moved,
        )

    def failed(self, branch: str, error: str):
        self.logger.error("migration_failed", branch=branch, error=error)

    def rollback_completed(self, restored: int, errors: int):
        self.logger.info("rollback_completed", restored=restored, errors=errors)


def create_structured_logger(
    log_dir: Path | None = None,
    enable_json: bool = False,
    enable_console: bool = False,
    redactor: Redactor | None = None,
) -> tuple[StructuredLogger, OrchestratorLogger, MigrationLogger]:
    """
    Create all structured loggers.

    Returns:
        Tuple of (base_logger, orchestrator_logger, migration_logger)
    """
    base = StructuredLogger(
        "depot_cli.events",
        log_dir=log_dir,
        enable_json=enable_json,
        enable_console=enable_console,
        redactor=redactor,
    )
    return base, OrchestratorLogger(base), MigrationLogger(base)
