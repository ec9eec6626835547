"""
Configuration file loading.

Connector configs, configured catalogs and state files are JSON documents;
YAML is accepted as well since it is a superset.
"""

from collections.abc import Iterator
from pathlib import Path
from typing import Any

import yaml

from tributary.config.resolver import resolve_config
from tributary.exceptions import ConfigurationError
from tributary.protocol import ConfiguredCatalog, ConfiguredStream


class Config:
    """Connector configuration container with dict-like access."""

    def __init__(self, data: dict[str, Any]):
        self.data = data

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value using dot notation."""
        keys = key.split(".")
        value = self.data
        for k in keys:
            if isinstance(value, dict):
                value = value.get(k)
                if value is None:
                    return default
            else:
                return default
        return value

    def __getitem__(self, key: str) -> Any:
        """Dict-like access: config['key'] or config['nested.key']."""
        if isinstance(key, str) and "." in key:
            return self.get(key)
        if key in self.data:
            value = self.data[key]
            # Return nested dicts as Config objects for chaining
            if isinstance(value, dict):
                return Config(value)
            return value
        raise KeyError(f"Config key '{key}' not found")

    def __contains__(self, key: str) -> bool:
        if isinstance(key, str) and "." in key:
            value = self.data
            for k in key.split("."):
                if not isinstance(value, dict) or k not in value:
                    return False
                value = value[k]
            return True
        return key in self.data

    def __iter__(self) -> Iterator[str]:
        return iter(self.data)

    def keys(self):
        return self.data.keys()

    def values(self):
        return self.data.values()

    def items(self):
        return self.data.items()


def load_document(path: str | Path) -> Any:
    """
    Load a JSON or YAML document from disk.

    Args:
        path: File to read

    Returns:
        The parsed document (``None`` for an empty file)

    Raises:
        ConfigurationError: If the file is missing, unreadable or malformed
    """
    path = Path(path)
    if not path.exists():
        raise ConfigurationError(f"File not found: {path}", details={"path": str(path)})
    if not path.is_file():
        raise ConfigurationError(f"Path is not a file: {path}", details={"path": str(path)})

    try:
        with open(path) as f:
            return yaml.safe_load(f)
    except yaml.YAMLError as e:
        mark = getattr(e, "problem_mark", None)
        if mark is not None:
            raise ConfigurationError(
                f"Error parsing {path.name} at line {mark.line + 1}, column {mark.column + 1}:\n"
                f"  {e}\n"
                f"  File: {path}",
                details={"path": str(path)},
            ) from e
        raise ConfigurationError(f"Error parsing {path.name}: {e}", details={"path": str(path)}) from e
    except PermissionError as e:
        raise ConfigurationError(
            f"Permission denied reading {path}\n  Suggestion: Check file permissions", details={"path": str(path)}
        ) from e


def load_config_file(path: str | Path) -> Config:
    """Load a connector config, substituting ``${ENV_VAR}`` references."""
    data = load_document(path)
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigurationError(
            f"Configuration must be a mapping, got {type(data).__name__}", details={"path": str(path)}
        )
    return Config(resolve_config(data))


def load_catalog(data: Any) -> ConfiguredCatalog:
    """
    Parse a configured catalog document.

    Args:
        data: ``{"streams": [{"stream": {"name": ...}, "sync_mode": ...}, ...]}``

    Returns:
        ConfiguredCatalog in the order the streams were listed

    Raises:
        ConfigurationError: If the document is not a valid configured catalog
    """
    if not isinstance(data, dict) or not isinstance(data.get("streams"), list):
        raise ConfigurationError("Configured catalog must be an object with a 'streams' list")
    streams = []
    for index, entry in enumerate(data["streams"]):
        if not isinstance(entry, dict):
            raise ConfigurationError(f"Configured catalog entry {index} must be an object")
        try:
            streams.append(ConfiguredStream.from_dict(entry))
        except ValueError as e:
            raise ConfigurationError(f"Invalid configured catalog entry {index}: {e}") from e
    return ConfiguredCatalog(streams=tuple(streams))


def load_catalog_file(path: str | Path) -> ConfiguredCatalog:
    return load_catalog(load_document(path))
