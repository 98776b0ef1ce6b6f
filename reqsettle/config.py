"""reqsettle configuration.

Settlement timing is configured in layers (later wins):
    1. SettlementConfig defaults
    2. `settlement:` section of a YAML file
    3. REQSETTLE_* environment variables
    4. Per-invocation overrides passed to SettlementOrchestrator.settle()

Example settle.yaml:
    settlement:
      confirmation_depth: 2
      poll_interval: 1.0
      poll_deadline: 5.0
      confirmation_timeout: 120

The settlement core never reads the environment itself; only load_config()
and the CLI do.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Mapping, MutableMapping, Optional

import yaml

from .errors import ConfigError


ENV_PREFIX = "REQSETTLE_"

DEFAULT_CONFIRMATION_DEPTH = 2
DEFAULT_POLL_INTERVAL = 1.0
DEFAULT_POLL_DEADLINE = 5.0
DEFAULT_CONFIRMATION_TIMEOUT = 120.0


@dataclass(frozen=True)
class SettlementConfig:
    """Timing knobs for one settlement run."""
    confirmation_depth: int = DEFAULT_CONFIRMATION_DEPTH
    poll_interval: float = DEFAULT_POLL_INTERVAL
    poll_deadline: float = DEFAULT_POLL_DEADLINE
    confirmation_timeout: float = DEFAULT_CONFIRMATION_TIMEOUT

    def __post_init__(self):
        if isinstance(self.confirmation_depth, bool) or not isinstance(self.confirmation_depth, int):
            raise ConfigError(f"confirmation_depth must be an integer, got {self.confirmation_depth!r}")
        if self.confirmation_depth < 1:
            raise ConfigError("confirmation_depth must be at least 1")
        if self.poll_interval <= 0:
            raise ConfigError("poll_interval must be greater than zero")
        if self.poll_deadline < 0:
            raise ConfigError("poll_deadline must not be negative")
        if self.confirmation_timeout <= 0:
            raise ConfigError("confirmation_timeout must be greater than zero")

    def with_overrides(self, **overrides: Any) -> "SettlementConfig":
        """Return a copy with the non-None overrides applied."""
        known = {f.name for f in fields(self)}
        changes = {}
        for key, value in overrides.items():
            if key not in known:
                raise ConfigError(f"Unknown settlement option: {key}")
            if value is not None:
                changes[key] = value
        if not changes:
            return self
        return replace(self, **changes)

    def to_dict(self) -> dict:
        return {f.name: getattr(self, f.name) for f in fields(self)}


_CASTS = {
    "confirmation_depth": int,
    "poll_interval": float,
    "poll_deadline": float,
    "confirmation_timeout": float,
}


def _coerce(values: Mapping[str, Any], source: str) -> dict:
    coerced = {}
    for key, value in values.items():
        if key not in _CASTS:
            raise ConfigError(f"Unknown settlement option '{key}' in {source}")
        try:
            coerced[key] = _CASTS[key](value)
        except (TypeError, ValueError) as exc:
            raise ConfigError(f"Invalid value for {key} in {source}: {value!r}") from exc
    return coerced


def load_config(
    path: Optional[str] = None,
    *,
    environ: Optional[Mapping[str, str]] = None,
) -> SettlementConfig:
    """Load a SettlementConfig from YAML and REQSETTLE_* variables.

    Args:
        path: Optional YAML file with a `settlement:` section
        environ: Mapping to read variables from (default: os.environ)

    Raises:
        ConfigError: If the file is malformed or a value is invalid
    """
    values: dict = {}

    if path is not None:
        config_path = Path(path)
        if not config_path.exists():
            raise ConfigError(f"Config file not found: {path}")
        with open(config_path) as f:
            try:
                data = yaml.safe_load(f) or {}
            except yaml.YAMLError as exc:
                raise ConfigError(f"Invalid YAML in {path}: {exc}") from exc
        if not isinstance(data, dict):
            raise ConfigError(f"Top level of {path} must be a mapping")
        section = data.get("settlement") or {}
        if not isinstance(section, dict):
            raise ConfigError(f"'settlement' in {path} must be a mapping")
        values.update(_coerce(section, path))

    env = os.environ if environ is None else environ
    from_env = {
        key: env[ENV_PREFIX + key.upper()]
        for key in _CASTS
        if env.get(ENV_PREFIX + key.upper())
    }
    values.update(_coerce(from_env, "environment"))

    return SettlementConfig(**values)


def load_env(environ: Optional[MutableMapping[str, str]] = None) -> None:
    """Load a .env file into the environment if not already done.

    Searches the current directory, its parent, then the home directory and
    stops at the first file found. Existing variables are never overwritten.
    """
    target = os.environ if environ is None else environ
    if target.get("_REQSETTLE_ENV_LOADED"):
        return

    search_paths = [
        Path.cwd() / ".env",
        Path.cwd().parent / ".env",
        Path.home() / ".env",
    ]

    for env_path in search_paths:
        if env_path.exists():
            with open(env_path) as f:
                for line in f:
                    line = line.strip()
                    if line and not line.startswith("#") and "=" in line:
                        key, value = line.split("=", 1)
                        key = key.strip()
                        value = value.strip().strip('"').strip("'")
                        if key not in target:
                            target[key] = value
            break

    target["_REQSETTLE_ENV_LOADED"] = "1"
