"""CLI package for pagen_sync."""

from pagen_sync.cli.main import SOURCES, cli, create_importer

__all__ = [
    "SOURCES",
    "cli",
    "create_importer",
]
