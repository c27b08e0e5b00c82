"""
Configuration management for SiteSight
"""

import copy
import yaml
import os
import re
from pathlib import Path
from typing import Dict, Any, Optional, Union
import logging

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path(__file__).parent / "config.yaml"

def _expand_env_vars(obj: Union[Dict, Any]) -> Union[Dict, Any]:
    """
    Recursively expand environment variables in config values.
    Supports ${VAR_NAME} syntax.
    """
    if isinstance(obj, dict):
        return {key: _expand_env_vars(value) for key, value in obj.items()}
    elif isinstance(obj, list):
        return [_expand_env_vars(item) for item in obj]
    elif isinstance(obj, str):
        # Replace ${VAR_NAME} with environment variable values
        pattern = r'\$\{([^}]+)\}'
        def replace_var(match):
            var_name = match.group(1)
            return os.getenv(var_name, match.group(0))  # Return original if not found
        return re.sub(pattern, replace_var, obj)
    else:
        return obj

def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Merge ``override`` into a copy of ``base``, recursing into dicts."""
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged

def load_config(config_path: Optional[Union[str, Path]] = None) -> Dict[str, Any]:
    """
    Load configuration from YAML file

    Values from the file are merged over the defaults, so a file only
    needs to list the settings it changes.

    Args:
        config_path: Path to config file. If None, uses the bundled config.yaml

    Returns:
        Configuration dictionary
    """
    if config_path is None:
        config_path = DEFAULT_CONFIG_PATH
    config_path = Path(config_path)

    if not config_path.exists():
        logger.warning(f"Config file not found: {config_path}. Using defaults.")
        return get_default_config()

    try:
        with open(config_path, 'r', encoding='utf-8') as f:
            config = yaml.safe_load(f) or {}
        logger.info(f"Loaded configuration from {config_path}")
        # Expand environment variables in config values
        config = _expand_env_vars(config)
        return _deep_merge(get_default_config(), config)
    except (OSError, yaml.YAMLError) as e:
        logger.error(f"Failed to load config from {config_path}: {e}")
        return get_default_config()

def get_default_config() -> Dict[str, Any]:
    """
    Get default configuration values

    Returns:
        Default configuration dictionary
    """
    return {
        'inference': {
            'provider': 'gemini',
            'api_key': None,  # Falls back to GEMINI_API_KEY
            'primary_model': 'gemini-2.5-flash',
            'fallback_model': 'gemini-2.5-flash-lite',
            'max_attempts': 3,
            'retry_delay': 2.0,
            'temperature': 0.1,
            'max_output_tokens': 8192,
            'request_timeout': 300,
        },
        'pipeline': {
            'batch_size': 6,
            'spatial_batch_size': 4,
            'inter_batch_delay': 1.0,
            'extract_landmarks': True,
            'select_work_types': True,
            'work_type_min_photos': 3,
        },
        'pairing': {
            'match_distance': 15.0,
            'size_normalizer': 300.0,
            'match_weight': 0.9,
            'viewpoint_bonus': 0.1,
            'cluster_threshold': 0.6,
            'low_similarity_warning': 0.8,
            'use_station_keys': True,
        },
        'consensus': {
            'enabled': True,
            'rounds': 3,
            'base_temperature': 0.3,
            'temperature_step': 0.1,
            'target_remarks': ['上層路盤工出来形測定', '砕石厚測定'],
            'description_prefix': '{value}測定',
            'description_prefixes': {'t': '砕石厚測定'},
            'verify_descriptions': True,
            'verify_temperature': 0.1,
        },
        'refinement': {
            'repair_remarks': True,
            'normalize_by_majority': True,
            'fill_temperature_stations': True,
            'temperature_remark': 'アスファルト合材温度管理',
        },
        'vocabulary': {
            'path': None,  # Bundled work_hierarchy.yaml
        },
        'cache': {
            'backend': 'memory',  # memory, json, redis
            'path': '.sitesight_cache.json',
            'redis_url': 'redis://localhost:6379/0',
            'ttl': None,
        },
        'logging': {
            'level': 'INFO',
            'format': '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
            'file': None,
        },
    }

def save_config(config: Dict[str, Any], config_path: Path) -> bool:
    """
    Save configuration to YAML file

    Args:
        config: Configuration dictionary to save
        config_path: Path where to save the config

    Returns:
        True if successful, False otherwise
    """
    try:
        with open(config_path, 'w', encoding='utf-8') as f:
            yaml.safe_dump(config, f, default_flow_style=False, indent=2, allow_unicode=True)
        logger.info(f"Saved configuration to {config_path}")
        return True
    except OSError as e:
        logger.error(f"Failed to save config to {config_path}: {e}")
        return False

def get_config_value(config: Dict[str, Any], key_path: str, default: Any = None) -> Any:
    """
    Get a nested configuration value using dot notation

    Args:
        config: Configuration dictionary
        key_path: Dot-separated key path (e.g., 'pairing.cluster_threshold')
        default: Default value if key not found

    Returns:
        Configuration value or default
    """
    keys = key_path.split('.')
    value = config

    try:
        for key in keys:
            value = value[key]
        return value
    except (KeyError, TypeError):
        return default

def update_config_value(config: Dict[str, Any], key_path: str, value: Any) -> None:
    """
    Update a nested configuration value using dot notation

    Args:
        config: Configuration dictionary to update
        key_path: Dot-separated key path (e.g., 'consensus.rounds')
        value: New value to set
    """
    keys = key_path.split('.')
    current = config

    # Navigate to the parent of the target key
    for key in keys[:-1]:
        if key not in current:
            current[key] = {}
        current = current[key]

    # Set the final value
    current[keys[-1]] = value
