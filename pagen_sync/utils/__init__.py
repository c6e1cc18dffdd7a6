"""
pagen_sync.utils - Utility module

Common utilities including logging configuration and email normalization.
"""

from pagen_sync.utils.normalization import (
    extract_domain,
    is_valid_email,
    normalize_email,
)
from pagen_sync.utils.paths import DEFAULT_CONFIG_DIR, resolve_config_dir

__all__ = [
    "normalize_email",
    "extract_domain",
    "is_valid_email",
    "resolve_config_dir",
    "DEFAULT_CONFIG_DIR",
]
