"""Provides functions for loading and accessing configuration settings.

Supports loading from .env files, environment variables, and a dedicated
YAML configuration file (~/.tmdbgov/config.yaml).
"""

import logging
import os
from pathlib import Path
from typing import Any, Optional, Dict

import yaml
from dotenv import load_dotenv

from tmdbgov.domain.models.common import GovernorSettings

logger = logging.getLogger(__name__)

# --- Configuration Constants ---
DEFAULT_CONFIG_DIR = Path.home() / ".tmdbgov"
DEFAULT_CONFIG_FILE = DEFAULT_CONFIG_DIR / "config.yaml"
ENV_FILE_NAME = ".env"
ENV_PREFIX = "TMDBGOV_"

DEFAULTS: Dict[str, Any] = {
    'governor.timeout_ms': 30000,
    'governor.max_timeout_ms': 5 * 60 * 1000,
    'governor.min_interval_ms': 25,  # ~40 requests/second, safely under the 50/sec limit
    'governor.max_backoff_ms': 8000,
    'governor.default_retries': 3,
    'governor.stats_capacity': 100,
    'governor.retry_priority': 'head',
    'governor.timeout_warning.enabled': False,
    'governor.timeout_warning.threshold': 0.8,
    'http.user_agent': 'tmdbgov/0.1',
    'logging.level': 'INFO',
    'logging.format': '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    'logging.file': None,
}

# --- Global Configuration Store ---
_config: Dict[str, Any] = {}
_test_config: Dict[str, Any] = {}
_loaded = False

def _flatten(data: Dict[str, Any], prefix: str = "") -> Dict[str, Any]:
    """Turns nested YAML mappings into dotted keys ('governor': {'timeout_ms': 1} -> 'governor.timeout_ms')."""
    flat: Dict[str, Any] = {}
    for key, value in data.items():
        dotted = f"{prefix}{key}"
        if isinstance(value, dict):
            flat.update(_flatten(value, prefix=f"{dotted}."))
        else:
            flat[dotted] = value
    return flat

def load_configuration(config_file: Path = DEFAULT_CONFIG_FILE, env_file: Optional[Path] = None, force: bool = False) -> None:
    """Loads configuration from environment, .env file, and YAML file.

    Priority order (highest to lowest):
    1. Test overrides
    2. Environment Variables (TMDBGOV_GOVERNOR_TIMEOUT_MS, ...)
    3. .env file
    4. YAML configuration file
    5. Built-in defaults

    Args:
        config_file: Path to the YAML configuration file.
        env_file: Path to the .env file (searches upwards from cwd if None).
        force: Reload even if configuration was already loaded.
    """
    global _config, _loaded
    if _loaded and not force:
        logger.debug("Configuration already loaded.")
        return

    _config = {}

    # 1. Load from YAML file (Lowest priority)
    if config_file.exists():
        try:
            with open(config_file, 'r') as f:
                yaml_config = yaml.safe_load(f)
            if isinstance(yaml_config, dict):
                _config.update(_flatten(yaml_config))
                logger.info(f"Loaded configuration from YAML: {config_file}")
            elif yaml_config is not None:
                logger.warning(f"YAML config file {config_file} did not contain a dictionary.")
        except (OSError, yaml.YAMLError) as e:
            logger.error(f"Failed to load or parse YAML config {config_file}: {e}")
    else:
        logger.debug(f"YAML config file not found: {config_file}")

    # 2. Load from .env file (Medium priority)
    dotenv_path = env_file or find_dotenv_path()
    if dotenv_path:
        if load_dotenv(dotenv_path=dotenv_path, override=False):  # ENV VARS take precedence
            logger.info(f"Loaded environment variables from: {dotenv_path}")
    else:
        logger.debug("Skipping .env file loading (no file found).")

    # 3. Environment Variables (Highest priority) are handled in get_config

    _loaded = True
    logger.debug("Configuration loading process completed.")

def env_var_name(key: str) -> str:
    """'governor.timeout_ms' -> 'TMDBGOV_GOVERNOR_TIMEOUT_MS'."""
    return ENV_PREFIX + key.upper().replace('.', '_')

def _coerce(value: str) -> Any:
    """Converts environment strings into bools and numbers where possible."""
    lowered = value.lower()
    if lowered == 'true':
        return True
    if lowered == 'false':
        return False
    try:
        if '.' in value:
            return float(value)
        return int(value)
    except (ValueError, TypeError):
        return value

def get_config(key: str, default: Any = None) -> Any:
    """
    Get a configuration value by key.

    Args:
        key: The dotted configuration key (e.g. 'governor.timeout_ms')
        default: Default value if the key is not found anywhere,
            falls back to the built-in DEFAULTS when None

    Returns:
        The configuration value
    """
    if key in _test_config:
        return _test_config[key]

    env_key = env_var_name(key)
    if env_key in os.environ:
        return _coerce(os.environ[env_key])

    if key in _config:
        return _config[key]

    if default is None:
        default = DEFAULTS.get(key)
    logger.debug(f"Config key '{key}' not found in environment or loaded config. Returning default: {default}")
    return default

def find_dotenv_path() -> Optional[Path]:
    """Searches for the .env file upwards from the current directory."""
    cwd = Path.cwd()
    for path in [cwd] + list(cwd.parents):
        env_path = path / ENV_FILE_NAME
        if env_path.is_file():
            return env_path
    return None

# --- Convenience Functions ---

def _as_bool(value: Any, default: bool) -> bool:
    if isinstance(value, str):
        if value.lower() in ('true', '1', 'yes', 'on'):
            return True
        if value.lower() in ('false', '0', 'no', 'off'):
            return False
        logger.warning(f"Unexpected boolean value '{value}'. Defaulting to {default}.")
        return default
    if value is None:
        return default
    return bool(value)

def get_governor_settings() -> GovernorSettings:
    """Collects the governor tuning values into one value object.

    Values are passed through as configured; the governor validates them.
    """
    return GovernorSettings(
        timeout_ms=get_config('governor.timeout_ms'),
        max_timeout_ms=get_config('governor.max_timeout_ms'),
        min_interval_ms=get_config('governor.min_interval_ms'),
        max_backoff_ms=get_config('governor.max_backoff_ms'),
        default_retries=get_config('governor.default_retries'),
        stats_capacity=get_config('governor.stats_capacity'),
        retry_priority=str(get_config('governor.retry_priority')).lower(),
        timeout_warning_enabled=_as_bool(get_config('governor.timeout_warning.enabled'), False),
        timeout_warning_threshold=get_config('governor.timeout_warning.threshold'),
    )

def get_user_agent() -> str:
    return str(get_config('http.user_agent'))

def set_config_for_testing(config_dict: Dict[str, Any]) -> None:
    """
    Set configuration values for testing purposes.
    These values will override any existing configuration.

    Args:
        config_dict: Dictionary of configuration values to set
    """
    _test_config.update(config_dict)
    logger.debug(f"Set testing configuration: {config_dict}")

def clear_test_config() -> None:
    """Clear all testing configuration values."""
    _test_config.clear()
    logger.debug("Cleared testing configuration")
