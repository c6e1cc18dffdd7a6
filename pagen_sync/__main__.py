"""
Entry point for running pagen_sync as a module.

Usage:
    python -m pagen_sync --help
    python -m pagen_sync auth
    python -m pagen_sync sync gmail --initial
"""

from pagen_sync.cli import cli

if __name__ == "__main__":
    cli()
