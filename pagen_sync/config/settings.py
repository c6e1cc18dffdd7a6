"""
Typed runtime settings built from the loaded configuration.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Any

from pagen_sync.utils.paths import resolve_db_path


@dataclass
class ImportSettings:
    """
    Settings for import runs, with defaults for every key.

    Usage:
        config = ConfigLoader(config_dir).load_and_validate()
        settings = ImportSettings.from_config(config, config_dir)
    """

    config_dir: Path
    db_path: Path
    log_dir: Path | None = None
    log_retention_count: int = 10
    verbose: bool = False
    mailbox_lookback_days: int = 30
    calendar_lookback_days: int = 180
    directory_lookback_days: int = 3650
    max_recipients: int = 4
    lock_ttl_seconds: int = 3600
    ledger_retention_days: int | None = None
    auto_sync: bool = False
    auto_sync_timeout: float = 30.0
    outbox_path: Path | None = None
    api_page_size: int = 100
    api_max_retries: int = 5
    api_initial_retry_delay: float = 1.0
    api_max_retry_delay: float = 60.0
    auth_timeout: int = 300

    @classmethod
    def from_config(cls, config: dict[str, Any], config_dir: Path) -> ImportSettings:
        """
        Build settings from a validated configuration dict.

        Args:
            config: Output of ConfigLoader.load_and_validate()
            config_dir: Resolved configuration directory

        Returns:
            ImportSettings instance
        """
        defaults = cls(config_dir=config_dir, db_path=resolve_db_path(config_dir))
        log_dir = config.get("log_dir")
        outbox_path = config.get("outbox_path")

        return cls(
            config_dir=config_dir,
            db_path=resolve_db_path(config_dir, config.get("db_path")),
            log_dir=Path(log_dir).expanduser() if log_dir else None,
            log_retention_count=config.get(
                "log_retention_count", defaults.log_retention_count
            ),
            verbose=config.get("verbose", defaults.verbose),
            mailbox_lookback_days=config.get(
                "mailbox_lookback_days", defaults.mailbox_lookback_days
            ),
            calendar_lookback_days=config.get(
                "calendar_lookback_days", defaults.calendar_lookback_days
            ),
            directory_lookback_days=config.get(
                "directory_lookback_days", defaults.directory_lookback_days
            ),
            max_recipients=config.get("max_recipients", defaults.max_recipients),
            lock_ttl_seconds=config.get("lock_ttl_seconds", defaults.lock_ttl_seconds),
            ledger_retention_days=config.get("ledger_retention_days"),
            auto_sync=config.get("auto_sync", defaults.auto_sync),
            auto_sync_timeout=float(
                config.get("auto_sync_timeout", defaults.auto_sync_timeout)
            ),
            outbox_path=Path(outbox_path).expanduser() if outbox_path else None,
            api_page_size=config.get("api_page_size", defaults.api_page_size),
            api_max_retries=config.get("api_max_retries", defaults.api_max_retries),
            api_initial_retry_delay=float(
                config.get("api_initial_retry_delay", defaults.api_initial_retry_delay)
            ),
            api_max_retry_delay=float(
                config.get("api_max_retry_delay", defaults.api_max_retry_delay)
            ),
            auth_timeout=config.get("auth_timeout", defaults.auth_timeout),
        )

    @property
    def lock_ttl(self) -> timedelta:
        return timedelta(seconds=self.lock_ttl_seconds)

    @property
    def ledger_retention(self) -> timedelta | None:
        if self.ledger_retention_days is None:
            return None
        return timedelta(days=self.ledger_retention_days)

    @property
    def outbox_file(self) -> Path:
        """JSON Lines file that receives pushed outbound changes."""
        return self.outbox_path or self.config_dir / "outbox.jsonl"

    def lookback_for(self, source: str) -> timedelta:
        """Bootstrap lookback window for a source name."""
        days = {
            "gmail": self.mailbox_lookback_days,
            "calendar": self.calendar_lookback_days,
            "contacts": self.directory_lookback_days,
        }[source]
        return timedelta(days=days)
