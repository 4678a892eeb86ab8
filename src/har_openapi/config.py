"""
Configuration loading and validation.
"""

import json
import logging
from typing import Any, Dict, Optional

import yaml

from .errors import ConfigurationError
from .sanitiser import ACTIONS


logger = logging.getLogger(__name__)

DEFAULTS = {
    "min_variants": 2,
    "streaming_threshold_mb": 10,
    "title": "Inferred API",
    "api_version": "1.0.0",
    "redact_binary_content": True,
}

KNOWN_KEYS = set(DEFAULTS) | {
    "rules", "replace_default_rules", "sensitive_headers", "sensitive_params",
    "value_patterns", "sanitisation_options", "log_level",
}


def validate_config(config: Dict[str, Any]) -> Dict[str, Any]:
    """
    Check a configuration dictionary and fill in defaults.

    Args:
        config: Raw configuration

    Returns:
        New dictionary with defaults applied

    Raises:
        ConfigurationError: If a value has the wrong shape
    """
    if not isinstance(config, dict):
        raise ConfigurationError("Configuration must be a mapping")

    for key in config:
        if key not in KNOWN_KEYS:
            logger.warning(f"Ignoring unknown configuration key: {key}")

    rules = config.get("rules") or {}
    if not isinstance(rules, dict):
        raise ConfigurationError("'rules' must map field-name patterns to actions")
    for pattern, action in rules.items():
        if str(action).lower() not in ACTIONS:
            raise ConfigurationError(f"Invalid action '{action}' for '{pattern}', expected one of {', '.join(ACTIONS)}")

    for key in ("sensitive_headers", "sensitive_params"):
        if not isinstance(config.get(key) or [], list):
            raise ConfigurationError(f"'{key}' must be a list")

    try:
        min_variants = int(config.get("min_variants", DEFAULTS["min_variants"]))
    except (TypeError, ValueError):
        raise ConfigurationError("'min_variants' must be an integer")
    if min_variants < 2:
        raise ConfigurationError("'min_variants' must be at least 2")

    try:
        threshold = float(config.get("streaming_threshold_mb", DEFAULTS["streaming_threshold_mb"]))
    except (TypeError, ValueError):
        raise ConfigurationError("'streaming_threshold_mb' must be a number")
    if threshold <= 0:
        raise ConfigurationError("'streaming_threshold_mb' must be positive")

    merged = dict(DEFAULTS)
    merged.update(config)
    merged["min_variants"] = min_variants
    merged["streaming_threshold_mb"] = threshold
    return merged


def load_config(config_path: Optional[str]) -> Dict[str, Any]:
    """
    Load configuration from a JSON or YAML file.

    Args:
        config_path: Path to the configuration file, or None for defaults

    Returns:
        Configuration dictionary with defaults applied

    Raises:
        ConfigurationError: If the file cannot be read or is invalid
    """
    if not config_path:
        return dict(DEFAULTS)

    try:
        with open(config_path, 'r', encoding='utf-8') as config_file:
            if config_path.lower().endswith(('.yaml', '.yml')):
                config = yaml.safe_load(config_file) or {}
            else:
                config = json.load(config_file)
    except (OSError, ValueError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Failed to load configuration: {str(e)}")

    logger.info(f"Loaded configuration from {config_path}")
    return validate_config(config)


def apply_log_level(config: Dict[str, Any], package_logger: logging.Logger) -> None:
    """Set the package logger level from the ``log_level`` key, if present"""
    if 'log_level' not in config:
        return
    level_name = str(config['log_level']).upper()
    level = getattr(logging, level_name, None)
    if not isinstance(level, int):
        package_logger.warning(f"Invalid log level in config: {level_name}")
        package_logger.setLevel(logging.INFO)
        return
    package_logger.setLevel(level)
