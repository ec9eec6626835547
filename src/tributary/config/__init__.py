"""Configuration loading and sync settings."""

from tributary.config.loader import Config, load_catalog, load_catalog_file, load_config_file, load_document
from tributary.config.resolver import redact_config, resolve_config
from tributary.config.settings import COMMON_PROPERTIES, UNLIMITED, SyncSettings, budget_exceeded

__all__ = [
    "Config",
    "load_config_file",
    "load_catalog",
    "load_catalog_file",
    "load_document",
    "resolve_config",
    "redact_config",
    "SyncSettings",
    "COMMON_PROPERTIES",
    "UNLIMITED",
    "budget_exceeded",
]
