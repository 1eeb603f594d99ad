# config.py
# Description: Configuration loading for the catalog sync service and its device client.
#
# Settings come from, in increasing precedence: DEFAULT_CONFIG, the TOML file
# (~/.config/hive_sync/config.toml, or $HIVE_SYNC_CONFIG), then HIVE_SYNC_* environment variables.
#
# Imports
import copy
import os
import tomllib
from pathlib import Path
from typing import Any, Dict, Optional, Union

import toml
from loguru import logger

from hive_sync.Constants import DEFAULT_PULL_PAGE_SIZE
#
#######################################################################################################################
#
# Constants:

CONFIG_PATH_ENV_VAR = "HIVE_SYNC_CONFIG"
DEFAULT_CONFIG_PATH = Path.home() / ".config" / "hive_sync" / "config.toml"
BASE_DATA_DIR = Path.home() / ".local" / "share" / "hive_sync"

DEFAULT_CONFIG: Dict[str, Dict[str, Any]] = {
    "database": {
        "catalog_db_path": str(BASE_DATA_DIR / "catalog.db"),
        "sync_db_path": str(BASE_DATA_DIR / "sync_state.db"),
    },
    "sync": {
        "pull_page_size": DEFAULT_PULL_PAGE_SIZE,
        # 0 keeps completed delete records forever (pulls never require a full sync)
        "deletion_retention_days": 0,
        "audit_retention_days": 0,
    },
    "server": {
        "host": "127.0.0.1",
        "port": 8000,
    },
    "logging": {
        "level": "INFO",
        "log_file": "",
        "max_bytes": 10485760,  # 10 MB
        "backup_count": 5,
    },
    "client": {
        "server_url": "http://127.0.0.1:8000",
        "business_id": "",
        "device_id": "",
        "user_id": "",
        "state_file": str(BASE_DATA_DIR / "client_sync_state.json"),
        "request_timeout": 30,
        "push_batch_size": 50,
        "max_pull_rounds": 20,
    },
}

# env var -> (section, key, type)
ENV_OVERRIDES = {
    "HIVE_SYNC_CATALOG_DB": ("database", "catalog_db_path", str),
    "HIVE_SYNC_SYNC_DB": ("database", "sync_db_path", str),
    "HIVE_SYNC_LOG_LEVEL": ("logging", "level", str),
    "HIVE_SYNC_PULL_PAGE_SIZE": ("sync", "pull_page_size", int),
}

# section -> key -> type, for values coerced after merging
_TYPED_KEYS = {
    "sync": {"pull_page_size": int, "deletion_retention_days": int, "audit_retention_days": int},
    "server": {"host": str, "port": int},
    "logging": {"level": str, "log_file": str, "max_bytes": int, "backup_count": int},
    "client": {"request_timeout": float, "push_batch_size": int, "max_pull_rounds": int},
}
#
#######################################################################################################################
#
# Functions:


def deep_merge_dicts(base: Dict, update: Dict) -> Dict:
    """Recursively merges update_dict into base_dict."""
    merged = copy.deepcopy(base)
    for key, value in update.items():
        if isinstance(value, dict) and key in merged and isinstance(merged[key], dict):
            merged[key] = deep_merge_dicts(merged[key], value)
        else:
            merged[key] = value
    return merged


def _get_typed_value(data_dict: Dict, key: str, default: Any, target_type: type = str) -> Any:
    """Helper to get value from dict and cast to type, with logging for type errors."""
    value = data_dict.get(key, default)
    if value is None:
        return default
    try:
        if target_type == bool:
            if isinstance(value, bool):
                return value
            return str(value).lower() in ['true', '1', 't', 'y', 'yes']
        if target_type in (int, float) and isinstance(value, bool):
            raise TypeError("booleans are not numbers")
        return target_type(value)
    except (ValueError, TypeError) as e:
        logger.warning(f"Config key '{key}' has value '{value}' which could not be converted to {target_type}. "
                       f"Using default: '{default}'. Error: {e}")
        return default


def resolve_config_path(config_path: Optional[Union[str, Path]] = None) -> Path:
    if config_path:
        return Path(config_path).expanduser()
    from_env = os.environ.get(CONFIG_PATH_ENV_VAR)
    return Path(from_env).expanduser() if from_env else DEFAULT_CONFIG_PATH


def ensure_default_config(config_path: Optional[Union[str, Path]] = None) -> Path:
    """Writes DEFAULT_CONFIG to `config_path` unless a file is already there."""
    path = resolve_config_path(config_path)
    if path.exists():
        return path
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            toml.dump(DEFAULT_CONFIG, f)
        logger.info(f"Created default config file at {path}")
    except OSError as e:
        logger.error(f"Could not create default config file {path}: {e}. Using internal defaults.")
    return path


def _apply_env_overrides(config: Dict[str, Any]) -> None:
    for env_var, (section, key, target_type) in ENV_OVERRIDES.items():
        raw = os.environ.get(env_var)
        if raw is None or raw == "":
            continue
        current = config[section][key]
        config[section][key] = _get_typed_value({key: raw}, key, current, target_type)
        logger.debug(f"Config [{section}].{key} overridden from {env_var}")


def _validate(config: Dict[str, Any]) -> None:
    for section, keys in _TYPED_KEYS.items():
        section_data = config.setdefault(section, {})
        for key, target_type in keys.items():
            section_data[key] = _get_typed_value(section_data, key, DEFAULT_CONFIG[section][key], target_type)

    sync = config["sync"]
    if sync["pull_page_size"] < 1:
        logger.warning(f"[sync].pull_page_size must be at least 1, got {sync['pull_page_size']}. "
                       f"Using default: {DEFAULT_PULL_PAGE_SIZE}")
        sync["pull_page_size"] = DEFAULT_PULL_PAGE_SIZE
    for key in ("deletion_retention_days", "audit_retention_days"):
        if sync[key] < 0:
            logger.warning(f"[sync].{key} cannot be negative, got {sync[key]}. Using default: 0")
            sync[key] = 0

    database = config["database"]
    for key in ("catalog_db_path", "sync_db_path"):
        value = str(database.get(key) or DEFAULT_CONFIG["database"][key])
        database[key] = value if value == ":memory:" else str(Path(value).expanduser())
    config["logging"]["level"] = config["logging"]["level"].upper()


def load_settings(config_path: Optional[Union[str, Path]] = None) -> Dict[str, Any]:
    """
    Loads settings from the TOML config file merged over DEFAULT_CONFIG, then applies
    environment overrides. A missing or unreadable file leaves the defaults in place.
    """
    loaded_config = copy.deepcopy(DEFAULT_CONFIG)
    path = resolve_config_path(config_path)

    if path.exists():
        logger.info(f"Attempting to load config from: {path}")
        try:
            with open(path, "rb") as f:
                user_config_from_file = tomllib.load(f)
            loaded_config = deep_merge_dicts(loaded_config, user_config_from_file)
            logger.info(f"Successfully loaded and merged config from {path}")
        except tomllib.TOMLDecodeError as e:
            logger.error(f"Error decoding TOML config file {path}: {e}. Using internal defaults.")
        except OSError as e:
            logger.error(f"Could not read config file {path}: {e}. Using internal defaults.")
    else:
        logger.info(f"Config file not found at {path}. Using internal defaults.")

    _apply_env_overrides(loaded_config)
    _validate(loaded_config)
    logger.debug(f"load_settings returning config with top-level keys: {list(loaded_config.keys())}")
    return loaded_config


def get_setting(settings: Dict[str, Any], section: str, key: str, default: Any = None) -> Any:
    """Helper to get a specific setting from a loaded configuration."""
    section_data = settings.get(section)
    if isinstance(section_data, dict):
        return section_data.get(key, default)
    return default

#
# End of config.py
#######################################################################################################################
