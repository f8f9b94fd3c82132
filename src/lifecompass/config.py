# src/lifecompass/config.py
"""
Configuration: YAML file + .env + environment overrides.

A missing or malformed file is never an error; defaults apply. `${VAR}`
values resolve from the environment, unresolved ones become None.
"""

import copy
import logging
import os
import re
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

DEFAULT_CONFIG: Dict[str, Any] = {
    'supabase': {
        'url': '${SUPABASE_URL}',
        'anon_key': '${SUPABASE_ANON_KEY}',
        'access_token': '${SUPABASE_ACCESS_TOKEN}',
        'user_id': '${LIFECOMPASS_USER_ID}',
        'timeout': 30.0,
    },
    'storage': {
        'snapshot_path': '~/.lifecompass/lifecompass-storage.json',
    },
    'logging': {
        'level': 'INFO',
    },
}

ENV_OVERRIDES = {
    ('supabase', 'url'): 'SUPABASE_URL',
    ('supabase', 'anon_key'): 'SUPABASE_ANON_KEY',
    ('supabase', 'access_token'): 'SUPABASE_ACCESS_TOKEN',
    ('supabase', 'user_id'): 'LIFECOMPASS_USER_ID',
    ('storage', 'snapshot_path'): 'LIFECOMPASS_SNAPSHOT_PATH',
    ('logging', 'level'): 'LIFECOMPASS_LOG_LEVEL',
}

_TEMPLATE = re.compile(r"^\$\{([A-Za-z_][A-Za-z0-9_]*)\}$")


def load_env() -> Optional[Path]:
    """Load the first .env found. Returns its path, or None."""
    possible_paths = [
        Path.cwd() / ".env",                  # Current directory
        Path.home() / ".lifecompass.env",     # User home directory
    ]
    for env_path in possible_paths:
        if env_path.exists():
            load_dotenv(dotenv_path=env_path)
            logger.debug(f"Loaded .env from: {env_path}")
            return env_path
    logger.debug("No .env file found in standard locations")
    return None


def resolve_template(value: Any) -> Any:
    if not isinstance(value, str):
        return value
    match = _TEMPLATE.match(value.strip())
    if not match:
        return value
    return os.getenv(match.group(1)) or None


def load_config(config_path: Union[str, Path] = "config.yaml") -> Dict[str, Any]:
    """Load configuration merged over defaults, with env overrides applied."""
    load_env()
    config = copy.deepcopy(DEFAULT_CONFIG)

    path = Path(config_path).expanduser()
    if path.exists():
        try:
            with open(path, 'r', encoding='utf-8') as f:
                loaded = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            logger.warning(f"Failed to read config {path}: {e}")
            loaded = None
        if isinstance(loaded, dict):
            for section, values in loaded.items():
                if section not in config:
                    config[section] = values
                elif isinstance(values, dict) and isinstance(config[section], dict):
                    config[section].update(values)
                else:
                    logger.warning(f"Ignoring config section {section}: expected a mapping")
        elif loaded is not None:
            logger.warning(f"Config {path} is not a mapping, using defaults")
    else:
        logger.debug(f"No config file at {path}, using defaults")

    for section, values in config.items():
        if isinstance(values, dict):
            for key, value in values.items():
                values[key] = resolve_template(value)

    for (section, key), env_var in ENV_OVERRIDES.items():
        env_value = os.getenv(env_var)
        if env_value:
            config.setdefault(section, {})[key] = env_value

    return config


def write_default_config(path: Union[str, Path] = "config.yaml") -> Path:
    path = Path(path).expanduser()
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, 'w', encoding='utf-8') as f:
        yaml.dump(DEFAULT_CONFIG, f, default_flow_style=False, sort_keys=False)
    return path


def remote_enabled(config: Dict[str, Any]) -> bool:
    supabase = config.get('supabase') or {}
    return bool(supabase.get('url') and supabase.get('anon_key'))


def snapshot_path(config: Dict[str, Any]) -> Path:
    storage = config.get('storage') or {}
    return Path(storage.get('snapshot_path') or DEFAULT_CONFIG['storage']['snapshot_path']).expanduser()
