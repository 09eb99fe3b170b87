"""Configuration loading and validation for the calculator host.

Configuration comes from an optional JSON file, with a few settings
overridable through environment variables. Example ``calchost.json``:

```json
{
    "plugin_root": "./plugins",
    "missing_root": "error",
    "on_error": "skip",
    "overflow": "error",
    "entry_points": true,
    "workers": 1
}
```
"""

import json
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from .base import OverflowPolicy
from .errors import ConfigValidationError
from .locator import DEFAULT_EXTENSIONS, PLUGIN_FILE_PREFIX

# Plugins shipped with the host live next to this package's modules
DEFAULT_PLUGIN_ROOT = Path(__file__).resolve().parent / "plugins"

DEFAULT_CONFIG_ENV_VAR = "CALCHOST_CONFIG"

MISSING_ROOT_POLICIES = ("error", "empty")
ON_ERROR_POLICIES = ("skip", "abort")

# Environment variable -> config key
ENV_OVERRIDES = {
    "CALCHOST_PLUGIN_ROOT": "plugin_root",
    "CALCHOST_MISSING_ROOT": "missing_root",
    "CALCHOST_ON_ERROR": "on_error",
    "CALCHOST_OVERFLOW": "overflow",
}


@dataclass
class HostConfig:
    """Structured representation of the host configuration."""

    plugin_root: Path = DEFAULT_PLUGIN_ROOT
    file_prefix: str = PLUGIN_FILE_PREFIX
    extensions: List[str] = field(default_factory=lambda: list(DEFAULT_EXTENSIONS))

    # Policies
    missing_root: str = "error"  # "error" or "empty"
    on_error: str = "skip"  # "skip" or "abort"
    overflow: OverflowPolicy = OverflowPolicy.ERROR

    # Discovery
    entry_points: bool = True
    workers: int = 1


def validate_config(config: Dict[str, Any]) -> Tuple[bool, List[str]]:
    """Validate a raw configuration dict.

    Args:
        config: Raw configuration dict loaded from JSON

    Returns:
        Tuple of (is_valid, list_of_errors)
    """
    errors: List[str] = []

    if not isinstance(config, dict):
        return False, ["Configuration must be a JSON object"]

    plugin_root = config.get("plugin_root")
    if plugin_root is not None and (not isinstance(plugin_root, str) or not plugin_root):
        errors.append("'plugin_root' must be a non-empty string")

    file_prefix = config.get("file_prefix")
    if file_prefix is not None:
        if not isinstance(file_prefix, str) or not file_prefix:
            errors.append("'file_prefix' must be a non-empty string")
        else:
            try:
                re.compile(file_prefix)
            except re.error as e:
                errors.append(f"'file_prefix' is not a valid regular expression: {e}")

    extensions = config.get("extensions")
    if extensions is not None:
        if not isinstance(extensions, list) or not extensions:
            errors.append("'extensions' must be a non-empty array")
        elif not all(isinstance(ext, str) and ext.startswith(".") for ext in extensions):
            errors.append("'extensions' must contain strings starting with '.'")

    missing_root = config.get("missing_root", "error")
    if missing_root not in MISSING_ROOT_POLICIES:
        errors.append(f"Invalid missing_root '{missing_root}'. Must be 'error' or 'empty'")

    on_error = config.get("on_error", "skip")
    if on_error not in ON_ERROR_POLICIES:
        errors.append(f"Invalid on_error '{on_error}'. Must be 'skip' or 'abort'")

    overflow = config.get("overflow", "error")
    valid_overflow = [p.value for p in OverflowPolicy]
    if overflow not in valid_overflow:
        errors.append(f"Invalid overflow '{overflow}'. Must be one of: {', '.join(valid_overflow)}")

    entry_points = config.get("entry_points", True)
    if not isinstance(entry_points, bool):
        errors.append("'entry_points' must be a boolean")

    workers = config.get("workers", 1)
    if isinstance(workers, bool) or not isinstance(workers, int) or workers < 1:
        errors.append("'workers' must be a positive integer")

    return len(errors) == 0, errors


def _apply_env_overrides(raw_config: Dict[str, Any]) -> Dict[str, Any]:
    merged = dict(raw_config)
    for env_var, key in ENV_OVERRIDES.items():
        value = os.environ.get(env_var)
        if value:
            merged[key] = value
    return merged


def _resolve_root(plugin_root: Optional[str], base_path: Path) -> Path:
    if not plugin_root:
        return DEFAULT_PLUGIN_ROOT
    root = Path(plugin_root).expanduser()
    if not root.is_absolute():
        root = base_path / root
    return root


def load_config(
    path: Optional[str] = None,
    env_var: str = DEFAULT_CONFIG_ENV_VAR
) -> HostConfig:
    """Load and validate the host configuration.

    Searches for a config file in this order:
    1. Explicit path if provided
    2. The environment variable named by env_var
    3. ./calchost.json, then ./.calchost/config.json

    If no file is found, defaults are used. Environment overrides
    (CALCHOST_PLUGIN_ROOT and friends) apply in every case. A relative
    plugin_root is resolved against the config file's directory, or the
    current directory when it comes from the environment or defaults.

    Args:
        path: Direct path to config file.
        env_var: Environment variable name for config path

    Returns:
        HostConfig instance

    Raises:
        FileNotFoundError: If an explicitly named config file doesn't exist
        ConfigValidationError: If config validation fails
        json.JSONDecodeError: If config file is not valid JSON
    """
    if path is None:
        path = os.environ.get(env_var)

    if path is None:
        default_paths = [
            Path.cwd() / "calchost.json",
            Path.cwd() / ".calchost" / "config.json",
        ]
        for default_path in default_paths:
            if default_path.exists():
                path = str(default_path)
                break

    raw_config: Dict[str, Any] = {}
    base_path = Path.cwd()
    if path is not None:
        config_path = Path(path)
        if not config_path.exists():
            raise FileNotFoundError(f"Calculator host config file not found: {path}")

        with open(config_path, 'r', encoding='utf-8') as f:
            raw_config = json.load(f)

        if isinstance(raw_config, dict) and raw_config.get("plugin_root"):
            base_path = config_path.resolve().parent

    env_root = os.environ.get("CALCHOST_PLUGIN_ROOT")
    if env_root:
        base_path = Path.cwd()

    if isinstance(raw_config, dict):
        raw_config = _apply_env_overrides(raw_config)

    is_valid, errors = validate_config(raw_config)
    if not is_valid:
        raise ConfigValidationError(errors)

    return HostConfig(
        plugin_root=_resolve_root(raw_config.get("plugin_root"), base_path),
        file_prefix=raw_config.get("file_prefix", PLUGIN_FILE_PREFIX),
        extensions=list(raw_config.get("extensions", DEFAULT_EXTENSIONS)),
        missing_root=raw_config.get("missing_root", "error"),
        on_error=raw_config.get("on_error", "skip"),
        overflow=OverflowPolicy(raw_config.get("overflow", "error")),
        entry_points=raw_config.get("entry_points", True),
        workers=raw_config.get("workers", 1),
    )
