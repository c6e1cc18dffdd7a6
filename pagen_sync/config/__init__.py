"""
pagen_sync.config - Configuration management module

Contains configuration loading, validation, and default settings.
"""

from pagen_sync.config.loader import ConfigError, ConfigLoader
from pagen_sync.config.settings import ImportSettings

__all__ = ["ConfigError", "ConfigLoader", "ImportSettings"]
