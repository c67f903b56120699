"""Configuration loading for the Endless service.

Configuration is a plain nested dictionary. Values come from three layers,
later layers winning:

1. ``DEFAULT_CONFIG`` below
2. an optional YAML file (see ``configs/endless.yaml``)
3. environment variables (``ENDLESS_DB_PATH``, ``HOST``, ``PORT``)
"""

import copy
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

logger = logging.getLogger(__name__)

DEFAULT_CONFIG: Dict[str, Any] = {
    "server": {
        "host": "127.0.0.1",
        "port": 8080,
        "max_concurrent_streams": 32,
    },
    "store": {
        "db_path": "./data/endless.db",
    },
    "generation": {
        # Upper bound on words per generated sentence
        "max_sentence_tokens": 1000,
        "home_page_posts": 6,
    },
    "streaming": {
        "title_seconds": 2.0,
        "body_seconds": 12.0,
        "link_seconds": 1.0,
        "jitter": 0.3,
    },
}

# env var -> (section, key, type)
_ENV_OVERRIDES = {
    "ENDLESS_DB_PATH": ("store", "db_path", str),
    "HOST": ("server", "host", str),
    "PORT": ("server", "port", int),
}


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively merge ``override`` into a copy of ``base``."""
    result = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(result.get(key), dict):
            result[key] = _merge(result[key], value)
        else:
            result[key] = value
    return result


def load_config(config_path: Optional[Union[str, Path]] = None) -> Dict[str, Any]:
    """Load configuration from a YAML file merged over the defaults.

    Args:
        config_path: Optional path to a YAML file. Missing sections fall back
            to ``DEFAULT_CONFIG``.

    Returns:
        Fully populated configuration dictionary
    """
    config = copy.deepcopy(DEFAULT_CONFIG)

    if config_path is not None:
        with open(config_path, "r", encoding="utf-8") as f:
            loaded = yaml.safe_load(f) or {}
        if not isinstance(loaded, dict):
            raise ValueError(f"Expected a mapping at the root of {config_path}")
        config = _merge(config, loaded)
        logger.info(f"Loaded config from {config_path}")

    for env_name, (section, key, cast) in _ENV_OVERRIDES.items():
        raw = os.environ.get(env_name)
        if raw:
            config[section][key] = cast(raw)

    return config
