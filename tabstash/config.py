"""
Configuration management for tab stash stores.

The configuration is stored as a TOML file in the store directory.
It specifies the retry policy for store writes and the expiration
sweep interval. Product-level user settings (TTL choice, exclude
patterns, ...) live in the key-value store itself; see settings.py.
"""

import os
import tomllib
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path

import tomli_w


CONFIG_FILENAME = "tabstash.toml"
CONFIG_VERSION = 1
DB_FILENAME = "tabstash.db"


@dataclass
class RetryConfig:
    """Bounded retry for read-modify-write cycles.

    Delay before attempt n (n >= 2): min(backoff_base * 2^(n-2), backoff_max) seconds.
    """
    max_attempts: int = 5
    backoff_base: float = 0.05
    backoff_max: float = 1.0


@dataclass
class StoreConfig:
    """Complete store configuration."""
    path: Path
    version: int = CONFIG_VERSION
    created: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    retry: RetryConfig = field(default_factory=RetryConfig)
    sweep_interval_seconds: float = 30.0
    default_project_name: str = "Default Project"

    @property
    def config_path(self) -> Path:
        """Path to the TOML config file."""
        return self.path / CONFIG_FILENAME

    @property
    def db_path(self) -> Path:
        """Path to the SQLite key-value database."""
        return self.path / DB_FILENAME

    def exists(self) -> bool:
        """Check if config file exists."""
        return self.config_path.exists()


def get_default_store_path() -> Path:
    """Store directory: TABSTASH_STORE_PATH if set, else ~/.tabstash."""
    env = os.environ.get("TABSTASH_STORE_PATH")
    if env:
        return Path(env).expanduser().resolve()
    return Path.home() / ".tabstash"


def load_config(store_path: Path) -> StoreConfig:
    """
    Load configuration from a store directory.

    Raises:
        FileNotFoundError: If config doesn't exist
        ValueError: If config is invalid
    """
    config_path = store_path / CONFIG_FILENAME

    if not config_path.exists():
        raise FileNotFoundError(f"Config not found: {config_path}")

    with open(config_path, "rb") as f:
        data = tomllib.load(f)

    store = data.get("store", {})
    version = store.get("version", 1)
    if version > CONFIG_VERSION:
        raise ValueError(f"Config version {version} is newer than supported ({CONFIG_VERSION})")

    retry_section = data.get("retry", {})
    defaults = RetryConfig()
    retry = RetryConfig(
        max_attempts=int(retry_section.get("max_attempts", defaults.max_attempts)),
        backoff_base=float(retry_section.get("backoff_base", defaults.backoff_base)),
        backoff_max=float(retry_section.get("backoff_max", defaults.backoff_max)),
    )
    if retry.max_attempts < 1:
        raise ValueError(f"retry.max_attempts must be at least 1, got {retry.max_attempts}")

    expiration = data.get("expiration", {})
    projects = data.get("projects", {})

    return StoreConfig(
        path=store_path,
        version=version,
        created=store.get("created", ""),
        retry=retry,
        sweep_interval_seconds=float(expiration.get("sweep_interval_seconds", 30.0)),
        default_project_name=projects.get("default_name", "Default Project"),
    )


def save_config(config: StoreConfig) -> None:
    """
    Save configuration to the store directory.

    Creates the directory if it doesn't exist.
    """
    config.path.mkdir(parents=True, exist_ok=True)

    data = {
        "store": {
            "version": config.version,
            "created": config.created,
        },
        "retry": {
            "max_attempts": config.retry.max_attempts,
            "backoff_base": config.retry.backoff_base,
            "backoff_max": config.retry.backoff_max,
        },
        "expiration": {
            "sweep_interval_seconds": config.sweep_interval_seconds,
        },
        "projects": {
            "default_name": config.default_project_name,
        },
    }

    with open(config.config_path, "wb") as f:
        tomli_w.dump(data, f)


def load_or_create_config(store_path: Path) -> StoreConfig:
    """
    Load existing config or create a new one with defaults.

    This is the main entry point for config management.
    """
    config_path = store_path / CONFIG_FILENAME

    if config_path.exists():
        return load_config(store_path)
    else:
        config = StoreConfig(path=store_path)
        save_config(config)
        return config
