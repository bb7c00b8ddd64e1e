"""
Manages loading, validation, and migration of the INI configuration file.
"""

import configparser
import logging
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from depot_cli.exceptions import ConfigurationError
from depot_cli.models.config import AppConfig

log = logging.getLogger(__name__)

LIST_KEYS = ("priority_depots", "preflight_backoffs", "retry_backoffs")


def _split_list(raw: str) -> list[str]:
    return [item.strip() for item in raw.split(",") if item.strip()]


def _format_value(value: Any) -> str:
    if isinstance(value, list):
        return ",".join(
            f"{v:g}" if isinstance(v, float) else str(v) for v in value
        )
    if isinstance(value, float):
        return f"{value:g}"
    return str(value)


class ConfigManager:
    """Handles all operations related to the application's INI config file."""

    def __init__(self, config_file_path: Path):
        self.config_file_path = config_file_path
        self._parser = configparser.ConfigParser(interpolation=None)

    def load_config(
        self,
        cli_options: dict[str, Any] | None = None,
        require_account: bool = False,
    ) -> AppConfig:
        """
        Loads configuration from the INI file, applies CLI overrides, and validates it.

        Args:
            cli_options: A dictionary of options provided via the command line.
            require_account: Fail validation when username or install root are unset.

        Returns:
            A validated AppConfig object.

        Raises:
            ConfigurationError: If the config file is missing, invalid, or validation
            fails.
        """
        if not self.config_file_path.is_file():
            raise ConfigurationError(
                f"Configuration file not found at '{self.config_file_path}'. "
                "Please run 'depot-cli init' first."
            )

        try:
            self._parser.read(self.config_file_path, encoding="utf-8")
        except configparser.Error as e:
            raise ConfigurationError(f"Error parsing configuration file: {e}") from e

        if self._migrate_if_needed():
            log.info(
                "[yellow]Configuration file was updated with new default values."
                "[/yellow]"
            )

        config_from_file = self._get_config_as_dict()

        if cli_options:
            config_from_file.update(cli_options)

        try:
            return AppConfig(
                **config_from_file,
                config_path=str(self.config_file_path.parent),
                require_account=require_account,
            )
        except ValidationError as e:
            raise ConfigurationError(f"Configuration validation failed:\n{e}") from e

    def save_new_config(self, settings: dict[str, Any]) -> None:
        """
        Creates and saves a new configuration file.

        Args:
            settings: A dictionary of settings to save. Unset keys get defaults.
        """
        config = configparser.ConfigParser(interpolation=None)
        config["DEFAULT"] = {}
        defaults = AppConfig()

        for key in sorted(AppConfig.get_ini_keys()):
            value = settings.get(key, getattr(defaults, key, None))
            if value is not None:
                config["DEFAULT"][key] = _format_value(value)

        try:
            self.config_file_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.config_file_path, "w", encoding="utf-8") as configfile:
                config.write(configfile)
        except OSError as e:
            raise ConfigurationError(f"Failed to save configuration file: {e}") from e

    def _get_config_as_dict(self) -> dict[str, Any]:
        """Reads the 'DEFAULT' section of the INI file into a dictionary."""
        section = self._parser["DEFAULT"]
        defaults = AppConfig()
        try:
            return {
                "username": section.get("username", ""),
                "install_root": section.get("install_root", ""),
                "downloader_path": section.get("downloader_path", ""),
                "app_id": section.get("app_id", defaults.app_id),
                "max_downloads": section.getint("max_downloads", 8),
                "priority_depots": _split_list(
                    section.get(
                        "priority_depots", _format_value(defaults.priority_depots)
                    )
                ),
                "preflight_backoffs": _split_list(
                    section.get(
                        "preflight_backoffs",
                        _format_value(defaults.preflight_backoffs),
                    )
                ),
                "retry_backoffs": _split_list(
                    section.get(
                        "retry_backoffs", _format_value(defaults.retry_backoffs)
                    )
                ),
                "login_timeout": section.getfloat("login_timeout", 30.0),
                "probe_timeout": section.getfloat("probe_timeout", 10.0),
                "progress_interval_ms": section.getint("progress_interval_ms", 50),
            }
        except ValueError as e:
            raise ConfigurationError(f"Invalid value in configuration file: {e}") from e

    def _migrate_if_needed(self) -> bool:
        """Adds missing default values to an existing config file."""
        defaults = AppConfig()
        needs_saving = False
        config_section = self._parser["DEFAULT"]

        for key in sorted(AppConfig.get_ini_keys()):
            if key not in config_section:
                config_section[key] = _format_value(getattr(defaults, key))
                needs_saving = True
                log.debug(
                    f"Migrating config: added missing key '{key}' with "
                    f"value '{config_section[key]}'."
                )

        if needs_saving:
            try:
                with open(self.config_file_path, "w", encoding="utf-8") as f:
                    self._parser.write(f)
            except OSError as e:
                log.error(f"Could not save migrated configuration file: {e}")
                return False

        return needs_saving
