"""Configuration management using TOML + environment variables."""

from __future__ import annotations

import os
import sys
from collections.abc import Mapping
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any

if sys.version_info >= (3, 11):
    import tomllib
else:
    try:
        import tomllib
    except ModuleNotFoundError:
        import tomli as tomllib  # type: ignore[no-redef]

import tomli_w

from claudecode_client.errors import ConfigurationError

CONFIG_DIR = Path.home() / ".claudecode-client"
CONFIG_FILE = CONFIG_DIR / "config.toml"

DEFAULT_EXECUTABLE = "claude"


@dataclass
class ClientConfig:
    """Process-wide defaults. All durations are in milliseconds."""

    executable: str = DEFAULT_EXECUTABLE
    default_timeout: int = 30000
    max_concurrent_sessions: int = 10
    default_working_directory: str = field(default_factory=os.getcwd)
    enable_streaming_by_default: bool = False
    stream_buffer_size: int = 1024
    session_cleanup_interval: int = 60000
    max_session_idle_time: int = 300000
    probe_timeout: int = 5000


@dataclass
class StorageConfig:
    enabled: bool = False
    db_path: str = "~/.claudecode-client/history.db"


@dataclass
class LoggingConfig:
    level: str = "WARNING"
    file: str = "~/.claudecode-client/client.log"


@dataclass
class AppConfig:
    client: ClientConfig = field(default_factory=ClientConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def ensure_config_dir() -> None:
    """Create config directory with secure permissions."""
    CONFIG_DIR.mkdir(parents=True, exist_ok=True)
    os.chmod(CONFIG_DIR, 0o700)


def merge_client_config(
    base: ClientConfig | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> ClientConfig:
    """Build a ClientConfig from a base plus partial overrides.

    ``None`` values in ``overrides`` are ignored so callers can pass sparse
    option dicts straight through.
    """
    base = base or ClientConfig()
    overrides = overrides or {}

    known = {f.name for f in fields(ClientConfig)}
    unknown = sorted(set(overrides) - known)
    if unknown:
        raise ConfigurationError(f"Unknown client config keys: {', '.join(unknown)}")

    changes = {k: v for k, v in overrides.items() if v is not None}
    config = replace(base, **changes)
    validate_client_config(config)
    return config


def validate_client_config(config: ClientConfig) -> None:
    """Reject values the client cannot run with."""
    positive = (
        "default_timeout",
        "max_concurrent_sessions",
        "stream_buffer_size",
        "session_cleanup_interval",
        "max_session_idle_time",
        "probe_timeout",
    )
    for name in positive:
        value = getattr(config, name)
        if not isinstance(value, int) or isinstance(value, bool) or value <= 0:
            raise ConfigurationError(f"{name} must be a positive integer, got {value!r}")
    if not config.executable:
        raise ConfigurationError("executable must not be empty")


def _section(data: dict[str, Any], obj: Any, name: str) -> None:
    section = data.get(name, {})
    for f in fields(obj):
        if f.name in section:
            setattr(obj, f.name, section[f.name])


def load_config() -> AppConfig:
    """Load configuration from TOML file with env var overrides."""
    config = AppConfig()

    if CONFIG_FILE.exists():
        with open(CONFIG_FILE, "rb") as f:
            data = tomllib.load(f)

        _section(data, config.client, "client")
        _section(data, config.storage, "storage")
        _section(data, config.logging, "logging")

    # Environment variable overrides
    if env_exe := os.environ.get("CLAUDECODE_EXECUTABLE"):
        config.client.executable = env_exe
    if env_timeout := os.environ.get("CLAUDECODE_TIMEOUT"):
        config.client.default_timeout = int(env_timeout)
    if env_sessions := os.environ.get("CLAUDECODE_MAX_SESSIONS"):
        config.client.max_concurrent_sessions = int(env_sessions)
    if env_cwd := os.environ.get("CLAUDECODE_WORKING_DIR"):
        config.client.default_working_directory = env_cwd
    if env_streaming := os.environ.get("CLAUDECODE_STREAMING"):
        config.client.enable_streaming_by_default = env_streaming.lower() in ("true", "1", "yes")
    if env_buffer := os.environ.get("CLAUDECODE_BUFFER_SIZE"):
        config.client.stream_buffer_size = int(env_buffer)
    if env_db := os.environ.get("CLAUDECODE_DB_PATH"):
        config.storage.db_path = env_db
    if env_history := os.environ.get("CLAUDECODE_HISTORY"):
        config.storage.enabled = env_history.lower() in ("true", "1", "yes")
    if env_log_level := os.environ.get("CLAUDECODE_LOG_LEVEL"):
        config.logging.level = env_log_level

    return config


def save_config(config: AppConfig) -> None:
    """Save configuration to TOML file."""
    ensure_config_dir()

    data = {
        "client": {f.name: getattr(config.client, f.name) for f in fields(config.client)},
        "storage": {
            "enabled": config.storage.enabled,
            "db_path": config.storage.db_path,
        },
        "logging": {
            "level": config.logging.level,
            "file": config.logging.file,
        },
    }

    with open(CONFIG_FILE, "wb") as f:
        tomli_w.dump(data, f)

    os.chmod(CONFIG_FILE, 0o600)


# Global singleton
_config: AppConfig | None = None


def get_config() -> AppConfig:
    """Get or load the global config singleton."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reset_config() -> None:
    """Reset the global config (for testing)."""
    global _config
    _config = None
