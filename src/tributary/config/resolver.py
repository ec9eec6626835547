"""
Configuration resolution and environment variable substitution.
"""

import os
import re
from typing import Any

_ENV_VAR = re.compile(r"\${([^}]+)}")


def resolve_config(config_data: Any) -> Any:
    """
    Resolve configuration with environment variable substitution.

    ``${VAR_NAME}`` is replaced by the variable's value; unset variables are
    left as written so the error surfaces where the value is used.

    Args:
        config_data: Configuration value (dicts and lists are walked)

    Returns:
        Resolved configuration
    """
    if isinstance(config_data, dict):
        return {k: resolve_config(v) for k, v in config_data.items()}
    elif isinstance(config_data, list):
        return [resolve_config(item) for item in config_data]
    elif isinstance(config_data, str):
        return _ENV_VAR.sub(lambda m: os.getenv(m.group(1), m.group(0)), config_data)
    else:
        return config_data


REDACTED = "REDACTED"


def redact_config(config: Any, spec: dict[str, Any] | None) -> Any:
    """
    Replace secret values in a config with ``"REDACTED"``.

    Secrets are properties marked ``airbyte_secret: true`` in the connection
    specification (a JSON schema). Objects, arrays of strings and arrays of
    objects are followed.

    Args:
        config: Connector configuration
        spec: Connection specification schema (``connectionSpecification``)

    Returns:
        A redacted copy of the config
    """
    if not spec:
        return config
    if isinstance(config, dict):
        properties = dict(spec.get("properties") or {})
        # oneOf alternatives may declare secrets too
        for alternative in spec.get("oneOf") or []:
            for key, prop in (alternative.get("properties") or {}).items():
                properties.setdefault(key, prop)
        redacted = {}
        for key, value in config.items():
            prop = properties.get(key)
            if prop is None:
                redacted[key] = value
            elif prop.get("airbyte_secret"):
                redacted[key] = [REDACTED for _ in value] if isinstance(value, list) else REDACTED
            else:
                redacted[key] = redact_config(value, prop)
        return redacted
    if isinstance(config, list):
        items = spec.get("items")
        if isinstance(items, dict):
            if items.get("airbyte_secret"):
                return [REDACTED for _ in config]
            return [redact_config(item, items) for item in config]
    return config
