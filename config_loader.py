"""Loads the desk configuration.

Defaults live in this module; an optional ``config.json`` (next to this
file, or wherever ``CARGO_DESK_CONFIG`` points) overrides them key by key.
"""

import json
import logging
import os

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = 'CARGO_DESK_CONFIG'

DEFAULT_CONFIG = {
    'spot_prices': {
        'BRIPE': 78.50,
        'JCC': 81.00,
        'Dated Brent': 79.20,
        'HH': 3.10,
        'NBP': 11.50,
        'JKM': 13.50,
        'TTF': 12.00,
        'AECO': 1.85,
        'STN 2': 2.10,
    },
    'storage_dir': '.cargo_desk',
    'market_refresh_max_move': 0.02,
    'log_level': 'INFO',
}


def _default_path() -> str:
    env_path = os.environ.get(CONFIG_ENV_VAR)
    if env_path:
        return env_path
    return os.path.join(os.path.dirname(os.path.abspath(__file__)), 'config.json')


def load_config(path: str = None) -> dict:
    """Returns the default configuration merged with the JSON file at ``path``.

    A missing file is not an error. An unreadable or malformed file is
    logged and the defaults are returned unchanged. ``spot_prices`` is
    merged per index so a file can override a single price.
    """
    config = json.loads(json.dumps(DEFAULT_CONFIG))
    config_path = path or _default_path()
    if not os.path.exists(config_path):
        return config

    try:
        with open(config_path, 'r', encoding='utf-8') as f:
            overrides = json.load(f)
    except (OSError, ValueError) as e:
        logger.error(f"Failed to load {config_path}: {e}")
        return config

    if not isinstance(overrides, dict):
        logger.error(f"Ignoring {config_path}: expected a JSON object")
        return config

    for key, value in overrides.items():
        if key == 'spot_prices' and isinstance(value, dict):
            for code, price in value.items():
                try:
                    config['spot_prices'][code] = float(price)
                except (TypeError, ValueError):
                    logger.warning(f"Ignoring non-numeric spot price for {code}: {price!r}")
        else:
            config[key] = value
    logger.info(f"Loaded configuration overrides from {config_path}")
    return config
