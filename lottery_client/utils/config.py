"""
Configuration Management
"""

import json
import os
from pathlib import Path
from typing import Any, Dict, Optional

from lottery_client.utils.logger import get_logger

logger = get_logger(__name__)

DEFAULT_CONFIG_FILE = Path(__file__).parent.parent.parent / "config" / "client.conf"

# Environment prefixes mapped onto config sections
_ENV_SECTIONS = {
    "BLOCKCHAIN_": "blockchain",
    "SIGNER_": "signer",
    "LOTTERY_": "lottery",
    "SERVER_": "server",
}

# Never echoed back when the effective configuration is logged
_SECRET_KEYS = {"private_key"}


def load_config(config_file: Optional[str] = None) -> Dict[str, Any]:
    """Load configuration from a JSON file and environment variables"""
    config: Dict[str, Any] = {}

    path = Path(config_file or os.getenv("LOTTERY_CLIENT_CONFIG", "") or DEFAULT_CONFIG_FILE)
    if path.exists():
        try:
            with open(path, "r", encoding="utf-8") as f:
                config.update(json.load(f))
            logger.info(f"Loaded configuration from {path}")
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Error loading config file {path}: {e}")
    else:
        logger.warning(f"Config file {path} not found. Will only use environment variables.")

    config = _apply_env_overrides(config)

    logger.debug("Effective configuration: %s", json.dumps(_redact(config), indent=2))
    return config


def _apply_env_overrides(config: Dict[str, Any], environ: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
    """Apply environment variable overrides to configuration"""
    environ = os.environ if environ is None else environ
    for key, value in environ.items():
        for prefix, section in _ENV_SECTIONS.items():
            if key.startswith(prefix):
                config.setdefault(section, {})[key[len(prefix):].lower()] = value
                break

    return config


def _redact(config: Dict[str, Any]) -> Dict[str, Any]:
    redacted: Dict[str, Any] = {}
    for section, values in config.items():
        if isinstance(values, dict):
            redacted[section] = {k: ("***" if k in _SECRET_KEYS else v) for k, v in values.items()}
        else:
            redacted[section] = values
    return redacted


def get_config_value(config: Dict[str, Any], key_path: str, default=None):
    """Get configuration value by dot-separated key path"""
    keys = key_path.split('.')
    value = config

    try:
        for key in keys:
            value = value[key]
        return value
    except (KeyError, TypeError):
        return default
