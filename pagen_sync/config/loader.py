"""
Configuration loader module for pagen-sync.

Provides YAML-based configuration file loading with support for:
- Loading configuration from default or custom paths
- Graceful handling of missing configuration files
- Type and range validation of known keys
"""

import logging
from pathlib import Path
from typing import Any

import yaml

from pagen_sync.utils.paths import resolve_config_dir

# Default configuration file name
DEFAULT_CONFIG_FILE = "config.yaml"

logger = logging.getLogger(__name__)


class ConfigError(Exception):
    """Raised when configuration loading or validation fails."""

    pass


# Known configuration keys and their expected types
VALID_KEYS: dict[str, type[Any] | tuple[type[Any], ...]] = {
    # General options
    "verbose": bool,
    "db_path": str,
    # Logging options
    "log_dir": str,
    "log_retention_count": int,
    # Import windows (days)
    "mailbox_lookback_days": int,
    "calendar_lookback_days": int,
    "directory_lookback_days": int,
    # Filtering and bookkeeping
    "max_recipients": int,
    "lock_ttl_seconds": int,
    "ledger_retention_days": int,
    # Outbound push
    "auto_sync": bool,
    "auto_sync_timeout": (int, float),
    "outbox_path": str,
    # API options
    "api_page_size": int,
    "api_max_retries": int,
    "api_initial_retry_delay": (int, float),
    "api_max_retry_delay": (int, float),
    # Auth options
    "auth_timeout": int,
}

POSITIVE_INT_KEYS = [
    "mailbox_lookback_days",
    "calendar_lookback_days",
    "directory_lookback_days",
    "max_recipients",
    "lock_ttl_seconds",
    "ledger_retention_days",
    "api_page_size",
    "api_max_retries",
    "auth_timeout",
]

POSITIVE_FLOAT_KEYS = [
    "auto_sync_timeout",
    "api_initial_retry_delay",
    "api_max_retry_delay",
]


class ConfigLoader:
    """
    YAML configuration file loader.

    Handles loading and basic validation of YAML configuration files
    for the pagen-sync application.

    Attributes:
        config_dir: Directory containing the configuration file
        config_file: Name of the configuration file

    Usage:
        loader = ConfigLoader()
        config = loader.load_and_validate()

        # With custom path
        loader = ConfigLoader(config_dir=Path("/custom/path"))
        config = loader.load()
    """

    def __init__(
        self, config_dir: Path | None = None, config_file: str = DEFAULT_CONFIG_FILE
    ):
        """
        Initialize the configuration loader.

        Args:
            config_dir: Directory containing the configuration file.
                       Defaults to ~/.pagen-sync/ or $PAGEN_SYNC_CONFIG_DIR
            config_file: Name of the configuration file (default: config.yaml)
        """
        self.config_dir = resolve_config_dir(config_dir)
        self.config_file = config_file

    @property
    def config_path(self) -> Path:
        return self.config_dir / self.config_file

    def load(self) -> dict[str, Any]:
        """
        Load configuration from the default configuration file.

        Returns:
            Dictionary containing configuration values, or empty dict if file
            doesn't exist

        Raises:
            ConfigError: If the configuration file exists but cannot be parsed
        """
        return self.load_from_file(self.config_path)

    def load_from_file(self, path: Path | str) -> dict[str, Any]:
        """
        Load configuration from a specific file.

        Returns an empty dict if the file doesn't exist, allowing
        graceful operation with defaults.

        Args:
            path: Path to the configuration file

        Returns:
            Dictionary containing configuration values

        Raises:
            ConfigError: If the configuration file exists but cannot be parsed
        """
        path = Path(path)

        if not path.exists():
            logger.debug(f"Configuration file not found: {path}")
            return {}

        try:
            with open(path, encoding="utf-8") as f:
                config = yaml.safe_load(f)

            if config is None:
                logger.debug(f"Configuration file is empty: {path}")
                return {}

            if not isinstance(config, dict):
                raise ConfigError(
                    f"Configuration file must contain a YAML dictionary, "
                    f"got {type(config).__name__}"
                )

            logger.debug(f"Loaded configuration from {path}")
            return config

        except yaml.YAMLError as e:
            raise ConfigError(f"Failed to parse YAML configuration file: {e}") from e
        except OSError as e:
            raise ConfigError(f"Failed to read configuration file: {e}") from e

    def validate(self, config: dict[str, Any]) -> None:
        """
        Validate configuration types and values.

        Unknown keys are ignored.

        Args:
            config: Configuration dictionary to validate

        Raises:
            ConfigError: If configuration is invalid
        """
        if not isinstance(config, dict):
            raise ConfigError(
                f"Configuration must be a dictionary, got {type(config).__name__}"
            )

        for key, value in config.items():
            if key not in VALID_KEYS:
                continue
            expected_type = VALID_KEYS[key]
            # bool is an int subclass; never accept it for numeric keys
            if isinstance(value, bool) and expected_type is not bool:
                wrong_type = True
            else:
                wrong_type = not isinstance(value, expected_type)
            if wrong_type:
                if isinstance(expected_type, tuple):
                    type_name = " or ".join(t.__name__ for t in expected_type)
                else:
                    type_name = expected_type.__name__
                raise ConfigError(
                    f"Invalid type for '{key}': expected {type_name}, "
                    f"got {type(value).__name__}"
                )

        for key in POSITIVE_INT_KEYS:
            if key in config and config[key] < 1:
                raise ConfigError(f"{key} must be >= 1, got {config[key]}")

        for key in POSITIVE_FLOAT_KEYS:
            if key in config and config[key] <= 0:
                raise ConfigError(f"{key} must be > 0, got {config[key]}")

        if "log_retention_count" in config and config["log_retention_count"] < 0:
            raise ConfigError(
                f"log_retention_count must be >= 0, got {config['log_retention_count']}"
            )

    def load_and_validate(self) -> dict[str, Any]:
        """
        Load configuration and validate it.

        Returns:
            Validated configuration dictionary

        Raises:
            ConfigError: If configuration cannot be loaded or is invalid
        """
        config = self.load()
        if config:
            self.validate(config)
        return config
