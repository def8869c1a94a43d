"""Client configuration management with XDG-compliant storage."""

import json
import os
from pathlib import Path
from typing import Any

DEFAULT_API_BASE_URL = "https://grideditor.com/api"
DEFAULT_SYNC_INTERVAL_SECONDS = 300
DEFAULT_SYNC_MAX_ATTEMPTS = 3
DEFAULT_REQUEST_TIMEOUT_SECONDS = 30.0


def get_config_dir() -> Path:
    """Get XDG-compliant config directory for grid-cloud.

    Returns:
        Path to ~/.config/grid-cloud/
    """
    config_home = Path.home() / ".config"
    config_dir = config_home / "grid-cloud"
    config_dir.mkdir(parents=True, exist_ok=True)
    return config_dir


def get_config_file() -> Path:
    """Get path to config file.

    Returns:
        Path to ~/.config/grid-cloud/config.json
    """
    return get_config_dir() / "config.json"


def load_config() -> dict[str, Any]:
    """Load configuration from file.

    Returns:
        Dictionary of configuration values, or empty dict if file doesn't exist.
    """
    config_file = get_config_file()
    if not config_file.exists():
        return {}

    with config_file.open("r") as f:
        data: dict[str, Any] = json.load(f)
        return data


def save_config(config: dict[str, Any]) -> None:
    """Save configuration to file.

    Args:
        config: Dictionary of configuration values to save.
    """
    config_file = get_config_file()
    with config_file.open("w") as f:
        json.dump(config, f, indent=2)


def get_config_value(key: str, default: Any = None) -> Any:
    """Get a single configuration value.

    Args:
        key: Configuration key to retrieve.
        default: Default value if key doesn't exist.

    Returns:
        Configuration value or default.
    """
    config = load_config()
    return config.get(key, default)


def set_config_value(key: str, value: Any) -> None:
    """Set a single configuration value.

    Args:
        key: Configuration key to set.
        value: Value to store.
    """
    config = load_config()
    config[key] = value
    save_config(config)


def delete_config_value(key: str) -> bool:
    """Remove a configuration value.

    Returns:
        True if the key existed.
    """
    config = load_config()
    if key not in config:
        return False
    del config[key]
    save_config(config)
    return True


def get_api_base_url() -> str:
    """Return the API base URL, honouring the GRID_API_BASE_URL override."""
    env_url = os.environ.get("GRID_API_BASE_URL")
    if env_url:
        return env_url.rstrip("/")
    return str(get_config_value("api_base_url", DEFAULT_API_BASE_URL)).rstrip("/")


def get_sync_interval() -> float:
    """Seconds between automatic sync cycles."""
    return float(get_config_value("sync_interval_seconds", DEFAULT_SYNC_INTERVAL_SECONDS))


def get_sync_max_attempts() -> int:
    """Network attempts per sync cycle before giving up."""
    return int(get_config_value("sync_max_attempts", DEFAULT_SYNC_MAX_ATTEMPTS))


def get_request_timeout() -> float:
    """Timeout for a single HTTP round trip."""
    return float(get_config_value("request_timeout_seconds", DEFAULT_REQUEST_TIMEOUT_SECONDS))
