"""
Command-line interface for pagen_sync.

Provides CLI commands for authentication, importing and status checking
of the Gmail, Google Calendar and Google Contacts sources.

Usage:
    # Show help
    pagen-sync --help

    # Authenticate the Google account
    pagen-sync auth

    # Check status
    pagen-sync status

    # Run imports
    pagen-sync sync all
    pagen-sync sync gmail --initial
"""

import sys
from datetime import timedelta
from pathlib import Path
from typing import Any, Optional

import click
from google.oauth2.credentials import Credentials

from pagen_sync import __version__
from pagen_sync.auth.google_auth import AuthenticationError, GoogleAuth
from pagen_sync.config.generator import save_config_file
from pagen_sync.config.loader import DEFAULT_CONFIG_FILE, ConfigError, ConfigLoader
from pagen_sync.config.settings import ImportSettings
from pagen_sync.connectors.google import (
    CalendarConnector,
    GmailConnector,
    PeopleConnector,
)
from pagen_sync.storage.db import SyncDatabase, utcnow
from pagen_sync.storage.entities import EntityStore
from pagen_sync.storage.ledger import SyncLedger
from pagen_sync.storage.state import SyncStateStore, SyncStatus
from pagen_sync.sync.calendar import CALENDAR_SOURCE, CalendarImporter
from pagen_sync.sync.directory import DIRECTORY_SOURCE, DirectoryImporter
from pagen_sync.sync.engine import IncrementalImporter
from pagen_sync.sync.errors import SyncInProgressError
from pagen_sync.sync.mailbox import MAILBOX_SOURCE, MailboxImporter
from pagen_sync.sync.outbound import (
    BackgroundSyncTrigger,
    OutboundQueue,
    OutboxFilePush,
)
from pagen_sync.utils.logging import cleanup_old_logs, get_logger, setup_logging
from pagen_sync.utils.paths import resolve_config_dir

# Import order for 'all': directory first so people get their listed
# names and organizations before mail and meetings create them
SOURCES = (DIRECTORY_SOURCE, CALENDAR_SOURCE, MAILBOX_SOURCE)
SOURCE_CHOICES = SOURCES + ("all",)


def create_importer(
    source: str,
    credentials: Credentials,
    database: SyncDatabase,
    store: EntityStore,
    settings: ImportSettings,
    user_email: Optional[str] = None,
) -> IncrementalImporter:
    """
    Build the connector and importer for a source.

    Args:
        source: One of SOURCES
        credentials: Valid Google credentials
        database: Initialized database
        store: Entity store shared by every importer of the run
        settings: Import settings
        user_email: Account email; asked from the API when None

    Returns:
        Importer ready to run
    """
    connector_options: dict[str, Any] = {
        "page_size": settings.api_page_size,
        "max_retries": settings.api_max_retries,
        "initial_retry_delay": settings.api_initial_retry_delay,
        "max_retry_delay": settings.api_max_retry_delay,
    }
    importer_options: dict[str, Any] = {
        "store": store,
        "lookback": settings.lookback_for(source),
        "lock_ttl": settings.lock_ttl,
        "ledger_retention": settings.ledger_retention,
    }

    if source == MAILBOX_SOURCE:
        return MailboxImporter(
            GmailConnector(credentials, **connector_options),
            database,
            user_email=user_email,
            max_recipients=settings.max_recipients,
            **importer_options,
        )
    if source == CALENDAR_SOURCE:
        return CalendarImporter(
            CalendarConnector(credentials, **connector_options),
            database,
            user_email=user_email,
            **importer_options,
        )
    if source == DIRECTORY_SOURCE:
        return DirectoryImporter(
            PeopleConnector(credentials, **connector_options),
            database,
            **importer_options,
        )
    raise ValueError(f"Unknown source: {source}")


def open_database(settings: ImportSettings) -> SyncDatabase:
    """Open and initialize the database, creating its directory."""
    settings.db_path.parent.mkdir(parents=True, exist_ok=True)
    database = SyncDatabase(str(settings.db_path))
    database.initialize()
    return database


def format_timestamp(value: Any) -> str:
    if value is None:
        return "Never"
    return str(value.strftime("%Y-%m-%d %H:%M:%S UTC"))


@click.group()
@click.version_option(version=__version__, prog_name="pagen-sync")
@click.option(
    "--verbose", "-v", is_flag=True, help="Enable verbose output with detailed logging."
)
@click.option(
    "--config-dir",
    "-c",
    type=click.Path(exists=False, file_okay=False, dir_okay=True),
    envvar="PAGEN_SYNC_CONFIG_DIR",
    help="Configuration directory path (default: ~/.pagen-sync).",
)
@click.pass_context
def cli(ctx: click.Context, verbose: bool, config_dir: Optional[str]) -> None:
    """
    Incremental import of Gmail, Calendar and Contacts into pagen.

    Imports conversational mail, meetings and directory contacts into a
    local contact store, resuming from the last sync on every run.
    """
    ctx.ensure_object(dict)

    resolved_config_dir = resolve_config_dir(config_dir)
    ctx.obj["config_dir"] = resolved_config_dir
    ctx.obj["config_file"] = resolved_config_dir / DEFAULT_CONFIG_FILE

    config: dict[str, Any] = {}
    try:
        config = ConfigLoader(config_dir=resolved_config_dir).load_and_validate()
    except ConfigError as e:
        # Show error but don't fail - allow CLI to work without config file
        click.echo(
            click.style(f"Warning: Configuration error: {e}", fg="yellow"), err=True
        )
        config = {}

    settings = ImportSettings.from_config(config, resolved_config_dir)
    settings.verbose = verbose or settings.verbose
    ctx.obj["settings"] = settings

    log_dir = settings.log_dir or resolved_config_dir / "logs"
    setup_logging(verbose=settings.verbose, log_dir=log_dir, enable_file_logging=True)
    if settings.log_retention_count > 0:
        cleanup_old_logs(log_dir=log_dir, keep_count=settings.log_retention_count)


# =============================================================================
# Auth Command
# =============================================================================


@cli.command("auth")
@click.option(
    "--force",
    "-f",
    is_flag=True,
    help="Force re-authentication even if already authenticated.",
)
@click.pass_context
def auth_command(ctx: click.Context, force: bool) -> None:
    """
    Authenticate the Google account.

    Opens a browser window to complete the OAuth flow and stores
    the credentials for future use.

    Examples:

        pagen-sync auth

        # Force re-authentication
        pagen-sync auth --force
    """
    logger = get_logger(__name__)
    settings: ImportSettings = ctx.obj["settings"]
    config_dir = settings.config_dir

    click.echo("Authenticating Google account...")

    try:
        auth = GoogleAuth(config_dir=config_dir, auth_timeout=settings.auth_timeout)

        if not force and auth.is_authenticated():
            click.echo(click.style("Already authenticated.", fg="green"))
            click.echo("Use --force to re-authenticate.")
            return

        auth.authenticate(force_reauth=force)

        email = auth.get_account_email()
        if email:
            click.echo(click.style(f"Successfully authenticated {email}!", fg="green"))
        else:
            click.echo(click.style("Successfully authenticated!", fg="green"))

        logger.info("Authentication completed")

    except FileNotFoundError as e:
        click.echo(click.style(f"Error: {e}", fg="red"), err=True)
        click.echo("\nTo get started:", err=True)
        click.echo("1. Go to https://console.cloud.google.com/", err=True)
        click.echo(
            "2. Create a project and enable the Gmail, Calendar and People APIs",
            err=True,
        )
        click.echo("3. Create OAuth 2.0 credentials (Desktop application)", err=True)
        click.echo(
            f"4. Download and save as: {config_dir / 'credentials.json'}", err=True
        )
        sys.exit(1)

    except AuthenticationError as e:
        logger.error(f"Authentication failed: {e}")
        click.echo(click.style(f"Authentication failed: {e}", fg="red"), err=True)
        sys.exit(1)

    except Exception as e:
        logger.exception(f"Unexpected error during authentication: {e}")
        click.echo(click.style(f"Error: {e}", fg="red"), err=True)
        sys.exit(1)


# =============================================================================
# Status Command
# =============================================================================


@cli.command("status")
@click.pass_context
def status_command(ctx: click.Context) -> None:
    """
    Show authentication and per-source sync status.

    Example:

        pagen-sync status
    """
    logger = get_logger(__name__)
    settings: ImportSettings = ctx.obj["settings"]

    try:
        auth = GoogleAuth(config_dir=settings.config_dir)

        click.echo("=== pagen-sync Status ===\n")
        click.echo(f"Configuration directory: {settings.config_dir}")

        if auth.is_authenticated():
            email = auth.get_account_email() or "Google account"
            click.echo(f"Account: {email} ({click.style('Authenticated', fg='green')})")
        elif auth.token_path.exists():
            click.echo(
                f"Account: {click.style('Token expired or invalid', fg='yellow')}"
            )
        else:
            click.echo(f"Account: {click.style('Not authenticated', fg='red')}")
        click.echo()

        if not settings.db_path.exists():
            click.echo("Sync database: Not initialized (no syncs performed yet)")
            return

        database = open_database(settings)
        state_store = SyncStateStore(database)
        ledger = SyncLedger(database)
        outbound = OutboundQueue(database)

        click.echo("=== Sources ===\n")
        for source in SOURCES:
            state = state_store.get(source)
            if state is None:
                click.echo(f"{source}: Never synced")
                continue

            color = {
                SyncStatus.IDLE: "green",
                SyncStatus.SYNCING: "cyan",
                SyncStatus.ERROR: "red",
            }[state.status]
            click.echo(
                f"{source}: {click.style(state.status.value, fg=color)}, "
                f"Last sync: {format_timestamp(state.last_sync_at)}, "
                f"Cursor: {'Yes' if state.has_cursor else 'No'}, "
                f"Imported: {ledger.count(source)}"
            )
            if state.status is SyncStatus.SYNCING and state_store.is_locked(source):
                click.echo("  A sync is in progress")
            if state.last_error:
                click.echo(click.style(f"  Last error: {state.last_error}", fg="red"))

        entities = EntityStore(database)
        click.echo(
            f"\nContacts: {entities.count_contacts()}, "
            f"Organizations: {entities.count_organizations()}, "
            f"Interactions: {entities.count_interactions()}"
        )
        click.echo(f"Pending outbound changes: {outbound.pending_count()}")

    except Exception as e:
        logger.exception(f"Error getting status: {e}")
        click.echo(click.style(f"Error: {e}", fg="red"), err=True)
        sys.exit(1)


# =============================================================================
# Init-Config Command
# =============================================================================


@cli.command("init-config")
@click.option(
    "--force",
    "-f",
    is_flag=True,
    help="Overwrite existing configuration file if it exists.",
)
@click.pass_context
def init_config_command(ctx: click.Context, force: bool) -> None:
    """
    Generate a default configuration file.

    Creates a configuration file with all available options documented
    and commented out.

    Examples:

        pagen-sync init-config
        pagen-sync init-config --force
    """
    logger = get_logger(__name__)
    config_file: Path = ctx.obj["config_file"]

    click.echo(f"Creating configuration file: {config_file}")

    success, error = save_config_file(config_file, overwrite=force)

    if success:
        click.echo(click.style("Configuration file created successfully!", fg="green"))
        click.echo(f"\nLocation: {config_file}")
        logger.info(f"Created configuration file: {config_file}")
    else:
        click.echo(click.style(f"Error: {error}", fg="red"), err=True)
        logger.error(f"Failed to create configuration file: {error}")
        sys.exit(1)


# =============================================================================
# Sync Command
# =============================================================================


@cli.command("sync")
@click.argument("source", type=click.Choice(SOURCE_CHOICES, case_sensitive=False))
@click.option(
    "--initial",
    "-i",
    is_flag=True,
    help="Ignore stored cursors and import the full lookback window.",
)
@click.pass_context
def sync_command(ctx: click.Context, source: str, initial: bool) -> None:
    """
    Import new records from a source.

    Resumes from the stored cursor when there is one, otherwise imports
    everything since the last sync (or the lookback window on a first run).
    Already imported records are skipped.

    Examples:

        pagen-sync sync all
        pagen-sync sync gmail
        pagen-sync sync calendar --initial
    """
    logger = get_logger(__name__)
    settings: ImportSettings = ctx.obj["settings"]
    sources = SOURCES if source == "all" else (source.lower(),)

    try:
        auth = GoogleAuth(config_dir=settings.config_dir)
        credentials = auth.get_credentials()
        if credentials is None:
            click.echo(
                click.style("Not authenticated. Run 'pagen-sync auth' first.", fg="red"),
                err=True,
            )
            sys.exit(1)

        database = open_database(settings)
        outbound = OutboundQueue(database)
        trigger = None
        if settings.auto_sync:
            trigger = BackgroundSyncTrigger(
                outbound,
                push=OutboxFilePush(settings.outbox_file),
                timeout=settings.auto_sync_timeout,
            )
            outbound.trigger = trigger
        store = EntityStore(database, outbound=outbound)
        user_email = auth.get_account_email()
    except Exception as e:
        logger.exception(f"Sync setup failed: {e}")
        click.echo(click.style(f"\nSync failed: {e}", fg="red"), err=True)
        sys.exit(1)

    failed = []
    for name in sources:
        click.echo(f"\nImporting {name}...")
        try:
            importer = create_importer(
                name, credentials, database, store, settings, user_email=user_email
            )
            result = importer.run(initial=initial)
        except SyncInProgressError as e:
            click.echo(click.style(f"Skipped: {e}", fg="yellow"), err=True)
            failed.append(name)
            continue
        except Exception as e:
            logger.exception(f"{name} import failed: {e}")
            click.echo(click.style(f"{name} import failed: {e}", fg="red"), err=True)
            failed.append(name)
            continue

        click.echo(result.summary())

    if trigger is not None:
        task = trigger.drain()
        if task is not None and task.error is not None:
            click.echo(click.style(f"\nPush failed: {task.error}", fg="yellow"), err=True)
        elif task is not None:
            click.echo(f"\nPushed changes to {settings.outbox_file}")

    pending = outbound.pending_count()
    if pending:
        click.echo(f"\n{pending} change(s) queued for push")

    if failed:
        click.echo(
            click.style(f"\nSync failed for: {', '.join(failed)}", fg="red"), err=True
        )
        sys.exit(1)

    click.echo(click.style("\nSync completed successfully!", fg="green"))


# =============================================================================
# Reset Command
# =============================================================================


@cli.command("reset")
@click.option(
    "--source",
    "-s",
    type=click.Choice(SOURCES, case_sensitive=False),
    help="Source to reset (default: all sources).",
)
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation prompt.")
@click.pass_context
def reset_command(ctx: click.Context, source: Optional[str], yes: bool) -> None:
    """
    Clear stored cursors and errors.

    The next sync falls back to a time-window import since the last sync.
    Imported records and the import ledger are kept.

    Example:

        pagen-sync reset --source gmail
    """
    logger = get_logger(__name__)
    settings: ImportSettings = ctx.obj["settings"]

    if not settings.db_path.exists():
        click.echo("No sync database found. Nothing to reset.")
        return

    target = source.lower() if source else None
    if not yes:
        click.confirm(
            f"This will clear the sync cursor for {target or 'all sources'}.\n"
            "Continue?",
            abort=True,
        )

    try:
        database = open_database(settings)
        count = SyncStateStore(database).reset(target)

        click.echo(click.style(f"Reset {count} source(s).", fg="green"))
        logger.info(f"Sync state reset for {target or 'all sources'}")

    except Exception as e:
        logger.exception(f"Reset failed: {e}")
        click.echo(click.style(f"Error: {e}", fg="red"), err=True)
        sys.exit(1)


# =============================================================================
# Prune-Ledger Command
# =============================================================================


@cli.command("prune-ledger")
@click.option(
    "--days",
    "-d",
    required=True,
    type=click.IntRange(min=1),
    help="Remove ledger entries older than this many days.",
)
@click.option(
    "--source",
    "-s",
    type=click.Choice(SOURCES, case_sensitive=False),
    help="Source to prune (default: all sources).",
)
@click.pass_context
def prune_ledger_command(ctx: click.Context, days: int, source: Optional[str]) -> None:
    """
    Remove old import ledger entries.

    Records whose ledger entry is pruned may be imported again if a later
    time-window fetch lists them.

    Example:

        pagen-sync prune-ledger --days 365
    """
    logger = get_logger(__name__)
    settings: ImportSettings = ctx.obj["settings"]

    if not settings.db_path.exists():
        click.echo("No sync database found. Nothing to prune.")
        return

    try:
        database = open_database(settings)
        removed = SyncLedger(database).prune(
            utcnow() - timedelta(days=days), source=source.lower() if source else None
        )
        database.vacuum()

        click.echo(click.style(f"Removed {removed} ledger entries.", fg="green"))
        logger.info(f"Pruned {removed} ledger entries older than {days} days")

    except Exception as e:
        logger.exception(f"Prune failed: {e}")
        click.echo(click.style(f"Error: {e}", fg="red"), err=True)
        sys.exit(1)


# Module entry point (for python -m pagen_sync.cli)
if __name__ == "__main__":
    cli()
