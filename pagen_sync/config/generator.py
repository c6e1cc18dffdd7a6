"""
Configuration file generator for pagen-sync.

Provides functionality to generate a default configuration file with
documentation for all available options.
"""

import logging
from pathlib import Path

logger = logging.getLogger(__name__)


def generate_default_config() -> str:
    """
    Generate default YAML configuration with all options documented.

    Every option is commented out, so the generated file loads as an
    empty configuration until the user edits it.

    Returns:
        String containing YAML configuration with comments
    """
    return """# pagen-sync Configuration
# ========================
#
# Default options for pagen-sync. CLI arguments override these values.
#
# To use this configuration:
#   1. Save as ~/.pagen-sync/config.yaml (or $PAGEN_SYNC_CONFIG_DIR/config.yaml)
#   2. Uncomment and modify options as needed

# General
# -------

# Path to the SQLite database
# Default: ~/.pagen-sync/pagen.db
# db_path: ~/.pagen-sync/pagen.db

# Enable verbose output with detailed logging
# Default: false
# verbose: false


# Logging
# -------

# Directory for daily log files
# Default: ~/.pagen-sync/logs
# log_dir: ~/.pagen-sync/logs

# Number of log files to keep (0 disables cleanup)
# Default: 10
# log_retention_count: 10


# Import Windows
# --------------
# How far back the first import (or an import whose sync cursor expired
# before any successful run) reaches, in days.

# Default: 30
# mailbox_lookback_days: 30

# Default: 180
# calendar_lookback_days: 180

# Default: 3650
# directory_lookback_days: 3650


# Filtering
# ---------

# Emails with more To + Cc recipients than this are treated as group mail
# Default: 4
# max_recipients: 4


# Bookkeeping
# -----------

# Seconds before a run lock left by a crashed run can be taken over
# Default: 3600
# lock_ttl_seconds: 3600

# Drop import ledger entries older than this many days after each run.
# Unset keeps the ledger forever.
# ledger_retention_days: 365


# Outbound Changes
# ----------------

# Start a background push after each queued local change
# Default: false
# auto_sync: false

# Time budget for one background push, in seconds
# Default: 30
# auto_sync_timeout: 30

# JSON Lines file that receives pushed changes
# Default: ~/.pagen-sync/outbox.jsonl
# outbox_path: ~/.pagen-sync/outbox.jsonl


# Google API
# ----------

# Page size for list requests
# Default: 100
# api_page_size: 100

# Retries for rate-limited or failing requests
# Default: 5
# api_max_retries: 5

# Initial and maximum backoff delay, in seconds
# Default: 1.0 and 60.0
# api_initial_retry_delay: 1.0
# api_max_retry_delay: 60.0

# Seconds to wait for the OAuth browser flow
# Default: 300
# auth_timeout: 300
"""


def save_config_file(
    config_path: Path, overwrite: bool = False
) -> tuple[bool, str | None]:
    """
    Save default configuration file to specified path.

    Creates parent directories if they don't exist and saves
    the configuration with secure permissions.

    Args:
        config_path: Path where the config file should be saved
        overwrite: If True, overwrite existing file. If False, fail if file exists.

    Returns:
        Tuple of (success: bool, error_message: Optional[str])
    """
    try:
        config_path = config_path.expanduser().resolve()

        if config_path.exists() and not overwrite:
            return (
                False,
                f"Configuration file already exists: {config_path}\n"
                "Use --force to overwrite.",
            )

        config_path.parent.mkdir(parents=True, mode=0o700, exist_ok=True)
        config_path.write_text(generate_default_config(), encoding="utf-8")
        config_path.chmod(0o600)

        logger.info(f"Created configuration file: {config_path}")
        return (True, None)

    except OSError as e:
        error_msg = f"Failed to create configuration file: {e}"
        logger.error(error_msg)
        return (False, error_msg)
