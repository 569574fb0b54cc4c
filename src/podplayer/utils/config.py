import yaml
import os
import logging
from typing import Any, Dict, Optional
from dotenv import load_dotenv

from podplayer.utils.constants import DEFAULTS

"""
Configuration management for the player controller.

This module loads the controller settings from environment variables (with an
optional .env file) and merges an optional YAML file over them.
"""

# Environment variable -> (config key, converter)
ENV_OVERRIDES = {
    'MPV_PATH': ('mpv_path', str),
    'MPV_SOCKET_PATH': ('socket_path', str),
    'MPV_AUDIO_OUTPUT': ('audio_output', str),
    'MPV_STARTUP_TIMEOUT': ('startup_timeout', float),
    'MPV_CONNECT_TIMEOUT': ('connect_timeout', float),
    'MPV_COMMAND_TIMEOUT': ('command_timeout', float),
    'MPV_POSITION_SAVE_INTERVAL': ('position_save_interval', float),
    'MPV_COMPLETION_THRESHOLD': ('completion_threshold', float),
    'MPV_SETTLE_DELAY': ('settle_delay', float),
    'MPV_LOAD_SETTLE_DELAY': ('load_settle_delay', float),
    'PODPLAYER_DB_PATH': ('db_path', str),
    'PODPLAYER_COMMAND_ADDRESS': ('command_address', str),
    'PODPLAYER_EVENT_ADDRESS': ('event_address', str),
    'LOG_LEVEL': ('log_level', str),
    'LOG_DIR': ('log_dir', str),
    'VERIFY_FILES': ('verify_files', lambda value: value.lower() == 'true'),
}


def _env_config() -> Dict[str, Any]:
    """Build the default configuration, applying environment overrides."""
    logger = logging.getLogger(__name__)
    config = dict(DEFAULTS)

    for env_name, (key, convert) in ENV_OVERRIDES.items():
        raw = os.getenv(env_name)
        if raw is None or raw == '':
            continue
        try:
            config[key] = convert(raw)
        except ValueError:
            raise ValueError(f"Invalid value for {env_name}: {raw!r}")
        logger.debug(f"Config {key} overridden from {env_name}")

    return config


def _validate(config: Dict[str, Any]) -> None:
    """Reject values the controller cannot work with."""
    for key in ('startup_timeout', 'connect_timeout', 'command_timeout', 'position_save_interval'):
        if float(config[key]) <= 0:
            raise ValueError(f"{key} must be positive, got {config[key]}")

    for key in ('settle_delay', 'load_settle_delay'):
        if float(config[key]) < 0:
            raise ValueError(f"{key} cannot be negative, got {config[key]}")

    threshold = float(config['completion_threshold'])
    if not 0 < threshold <= 1:
        raise ValueError(f"completion_threshold must be in (0, 1], got {threshold}")

    if not config.get('socket_path'):
        raise ValueError("socket_path is required in configuration")


def load_config(config_path: Optional[str] = None) -> dict:
    """
    Loads configuration from the environment (.env supported) and config.yaml.

    Args:
        config_path: Optional YAML file. Defaults to $PODPLAYER_CONFIG or
            config/config.yaml in the working directory.

    Returns:
        dict: Dictionary containing controller configuration

    Raises:
        ValueError: If a value is invalid
    """
    logger = logging.getLogger(__name__)

    # Load .env file if it exists
    env_path = os.path.join(os.getcwd(), '.env')
    if os.path.exists(env_path):
        logger.debug(f"Loading .env file from: {env_path}")
        load_dotenv(env_path)

    config = _env_config()

    yaml_path = config_path or os.getenv('PODPLAYER_CONFIG') or os.path.join('config', 'config.yaml')
    if os.path.exists(yaml_path):
        with open(yaml_path, 'r') as f:
            yaml_config = yaml.safe_load(f) or {}
        if not isinstance(yaml_config, dict):
            raise ValueError(f"{yaml_path} must contain a mapping")
        unknown = set(yaml_config) - set(DEFAULTS)
        if unknown:
            logger.warning(f"Ignoring unknown config keys in {yaml_path}: {sorted(unknown)}")
        config.update({key: value for key, value in yaml_config.items() if key in DEFAULTS})
        logger.info(f"Loaded configuration from {yaml_path}")
    elif config_path:
        raise ValueError(f"Config file not found: {config_path}")

    _validate(config)
    return config
