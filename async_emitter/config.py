"""
Emitter Configuration

Loads emitter settings from:
1. Default values
2. Config file (YAML or JSON)
3. Environment variables (ASYNC_EMITTER_*), only when an environment is passed

Later sources override earlier ones. get_config() never reads the
environment; install a loaded config with set_config().

Usage:
    from async_emitter.config import load_config, set_config

    config = load_config(Path("emitter.yaml"), environ=os.environ)
    set_config(config)
"""

import json
import logging
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

from async_emitter.errors import ConfigurationError

logger = logging.getLogger(__name__)

ENV_PREFIX = "ASYNC_EMITTER"


@dataclass
class EmitterConfig:
    """Tunables shared by emitter instances."""
    default_timeout: Optional[float] = None  # seconds, applied to wait/race when none is given
    max_listeners: int = 0  # warn above this many listeners per event, 0 disables
    log_failures: bool = True  # log listener failures routed to the "error" event

    def __post_init__(self):
        self.validate()

    def validate(self) -> None:
        if self.default_timeout is not None:
            if isinstance(self.default_timeout, bool) or not isinstance(self.default_timeout, (int, float)):
                raise ConfigurationError(
                    f"default_timeout must be a number of seconds: {self.default_timeout!r}"
                )
            if self.default_timeout <= 0:
                raise ConfigurationError(f"default_timeout must be positive: {self.default_timeout}")
        if isinstance(self.max_listeners, bool) or not isinstance(self.max_listeners, int):
            raise ConfigurationError(f"max_listeners must be an integer: {self.max_listeners!r}")
        if self.max_listeners < 0:
            raise ConfigurationError(f"max_listeners cannot be negative: {self.max_listeners}")
        if not isinstance(self.log_failures, bool):
            raise ConfigurationError(f"log_failures must be a boolean: {self.log_failures!r}")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EmitterConfig":
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ConfigurationError(
                f"Unknown emitter setting(s): {', '.join(sorted(unknown))}",
                {"unknown": sorted(unknown)},
            )
        return cls(**data)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _parse_env_value(value: str) -> Any:
    """Parse environment variable value to appropriate type."""
    lowered = value.lower()
    if lowered in ("true", "yes"):
        return True
    if lowered in ("false", "no"):
        return False
    if lowered in ("", "none", "null"):
        return None

    try:
        if "." in value:
            return float(value)
        return int(value)
    except ValueError:
        pass

    if value.startswith(("{", "[")):
        try:
            return json.loads(value)
        except json.JSONDecodeError:
            pass

    return value


def _load_file(path: Path) -> Dict[str, Any]:
    """Load a YAML or JSON config file."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            if path.suffix in (".yaml", ".yml"):
                data = yaml.safe_load(f) or {}
            elif path.suffix == ".json":
                data = json.load(f)
            else:
                raise ConfigurationError(f"Unsupported config format: {path.suffix}")
    except (OSError, yaml.YAMLError, json.JSONDecodeError) as e:
        raise ConfigurationError(f"Failed to load config from {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigurationError(f"Config file {path} must contain a mapping")

    # Allow either a flat file or one nested under an "emitter" section
    section = data.get("emitter", data)
    if not isinstance(section, dict):
        raise ConfigurationError(f"Section 'emitter' in {path} must be a mapping")

    logger.debug(f"Loaded emitter config from {path}")
    return section


def _load_env(environ: Mapping[str, str]) -> Dict[str, Any]:
    """Collect ASYNC_EMITTER_<FIELD> overrides."""
    prefix = f"{ENV_PREFIX}_"
    known = {f.name for f in fields(EmitterConfig)}

    values: Dict[str, Any] = {}
    for key, value in environ.items():
        if not key.startswith(prefix):
            continue
        name = key[len(prefix):].lower()
        if name not in known:
            logger.warning(f"Ignoring unknown emitter setting {key}")
            continue
        values[name] = _parse_env_value(value)
    return values


def load_config(path: Optional[Path] = None, environ: Optional[Mapping[str, str]] = None) -> EmitterConfig:
    """
    Build an EmitterConfig from the given sources.

    The environment is only read when passed in, e.g.
    load_config(environ=os.environ).

    Args:
        path: Optional YAML/JSON file
        environ: Optional environment mapping, applied over the file

    Raises:
        ConfigurationError: If a source holds an invalid value
    """
    values: Dict[str, Any] = {}
    if path is not None:
        values.update(_load_file(Path(path)))
    if environ is not None:
        values.update(_load_env(environ))

    if isinstance(values.get("default_timeout"), int) and not isinstance(values["default_timeout"], bool):
        values["default_timeout"] = float(values["default_timeout"])

    return EmitterConfig.from_dict(values)


# Global configuration instance
_global_config: Optional[EmitterConfig] = None


def get_config() -> EmitterConfig:
    """Get the global configuration instance (defaults until set_config)."""
    global _global_config
    if _global_config is None:
        _global_config = EmitterConfig()
    return _global_config


def set_config(config: EmitterConfig) -> None:
    """Set the global configuration instance."""
    global _global_config
    _global_config = config


def reset_config() -> None:
    """Drop the global configuration so the next get_config() returns defaults."""
    global _global_config
    _global_config = None
