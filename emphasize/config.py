import logging
import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Mapping, Optional

import yaml

from emphasize.errors import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_PORT = 8080  # matches the deployed container's exposed port
DEFAULT_DB_URL = "sqlite:///.emphasize/content.db"

TRUE_VALUES = {"1", "true", "yes", "on"}
FALSE_VALUES = {"0", "false", "no", "off", ""}

# OPERATING_MODE values accepted for compatibility with older deployments
OPERATING_MODES = {
    "Read": False,       # read-only: never write to the DB
    "ReadWrite": True,
}


@dataclass(frozen=True)
class PublicationMode:
    """
    Process-wide publication switches. Fixed for the lifetime of the process
    and passed explicitly into the resolver, gate and pipeline.
    """
    drafts_visible: bool = False
    persistence_enabled: bool = True


@dataclass(frozen=True)
class Config:
    db_url: str = DEFAULT_DB_URL
    content_dir: Path = Path("blog")
    host: str = "0.0.0.0"
    port: int = DEFAULT_PORT
    debug: bool = False
    sync_interval: float = 5.0   # seconds between content directory checks
    store_timeout: float = 5.0   # upper bound for a single store call
    mode: PublicationMode = field(default_factory=PublicationMode)


# ---------------------------------------------------------------------------
# Value parsing
# ---------------------------------------------------------------------------

def parse_bool(name: str, value) -> bool:
    """Accept real booleans from YAML and the usual spellings from env vars."""
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in TRUE_VALUES:
        return True
    if text in FALSE_VALUES:
        return False
    raise ConfigError(f"{name}: {value!r} is not a valid boolean")


def _parse_number(name: str, value, kind):
    try:
        number = kind(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{name}: {value!r} is not a valid {kind.__name__}") from None
    if number < 0:
        raise ConfigError(f"{name}: must not be negative, got {number}")
    return number


def parse_operating_mode(value: str) -> bool:
    """Map an OPERATING_MODE value to persistence_enabled."""
    try:
        return OPERATING_MODES[value.strip()]
    except KeyError:
        raise ConfigError(f"{value} is not valid option (Read or ReadWrite)") from None


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------

def _apply(config: Config, values: Mapping, source: str) -> Config:
    """Return a copy of config with every recognised key in values applied."""
    updates = {}
    mode_updates = {}

    if values.get("db") is not None:
        updates["db_url"] = str(values["db"])
    if values.get("content_dir") is not None:
        updates["content_dir"] = Path(values["content_dir"])
    if values.get("host") is not None:
        updates["host"] = str(values["host"])
    if values.get("port") is not None:
        port = _parse_number(f"{source}:port", values["port"], int)
        if not 0 <= port <= 65535:
            raise ConfigError(f"{source}:port: {port} is out of range")
        updates["port"] = port
    if values.get("debug") is not None:
        updates["debug"] = parse_bool(f"{source}:debug", values["debug"])
    if values.get("sync_interval") is not None:
        updates["sync_interval"] = _parse_number(f"{source}:sync_interval", values["sync_interval"], float)
    if values.get("store_timeout") is not None:
        updates["store_timeout"] = _parse_number(f"{source}:store_timeout", values["store_timeout"], float)

    if values.get("operating_mode") is not None:
        mode_updates["persistence_enabled"] = parse_operating_mode(str(values["operating_mode"]))
    # An explicit persistence_enabled wins over operating_mode
    if values.get("persistence_enabled") is not None:
        mode_updates["persistence_enabled"] = parse_bool(
            f"{source}:persistence_enabled", values["persistence_enabled"]
        )
    if values.get("drafts_visible") is not None:
        mode_updates["drafts_visible"] = parse_bool(f"{source}:drafts_visible", values["drafts_visible"])

    if mode_updates:
        updates["mode"] = replace(config.mode, **mode_updates)
    return replace(config, **updates)


def load_yaml(path: Path) -> dict:
    """Load a YAML config file. An empty file is an empty config."""
    try:
        with open(path) as f:
            data = yaml.safe_load(f)
    except FileNotFoundError:
        raise ConfigError(f"Config file not found: {path}") from None
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must contain a mapping")
    return data


def env_values(environ: Mapping[str, str]) -> dict:
    """Pick the recognised settings out of the environment."""
    names = {
        "DB": "db",
        "CONTENT_DIR": "content_dir",
        "HOST": "host",
        "PORT": "port",
        "DEBUG": "debug",
        "SYNC_INTERVAL": "sync_interval",
        "STORE_TIMEOUT": "store_timeout",
        "OPERATING_MODE": "operating_mode",
        "PERSISTENCE_ENABLED": "persistence_enabled",
        "DRAFTS_VISIBLE": "drafts_visible",
    }
    return {key: environ[var] for var, key in names.items() if var in environ}


def load_config(path: Optional[Path] = None, environ: Optional[Mapping[str, str]] = None) -> Config:
    """
    Build the process configuration.

    Precedence, lowest to highest: built-in defaults, the YAML file at path
    (if given), then environment variables.
    """
    if environ is None:
        environ = os.environ

    config = Config()
    if path is not None:
        config = _apply(config, load_yaml(Path(path)), str(path))
    config = _apply(config, env_values(environ), "env")

    logger.debug(f"Loaded configuration: {config}")
    return config
