"""
JSON key-value persistence for the cargo book and market data.
One file per key under a storage directory.
"""

import json
import logging
from pathlib import Path

from market_data import MarketDataStore
from profile_engine import CargoProfile

logger = logging.getLogger(__name__)

PROFILES_KEY = 'cargo_profiles'
CURVES_KEY = 'forward_curve_history'
MARKET_KEY = 'market_data'


class JsonStore:
    def __init__(self, directory):
        self.directory = Path(directory)

    def _path(self, key: str) -> Path:
        return self.directory / f'{key}.json'

    def get(self, key: str, default=None):
        path = self._path(key)
        if not path.exists():
            return default
        try:
            with open(path, 'r', encoding='utf-8') as f:
                return json.load(f)
        except (OSError, ValueError) as e:
            logger.error(f"Failed to read {path}: {e}")
            return default

    def set(self, key: str, value):
        self.directory.mkdir(parents=True, exist_ok=True)
        path = self._path(key)
        tmp = path.with_suffix('.json.tmp')
        with open(tmp, 'w', encoding='utf-8') as f:
            json.dump(value, f, indent=2)
        tmp.replace(path)

    def delete(self, key: str):
        self._path(key).unlink(missing_ok=True)


def load_profiles(store: JsonStore) -> list:
    """Saved cargo book; records that no longer load are logged and dropped."""
    profiles = []
    for record in store.get(PROFILES_KEY, []) or []:
        if not isinstance(record, dict):
            logger.warning(f"Skipping malformed cargo record: {record!r}")
            continue
        try:
            profiles.append(CargoProfile.from_dict(record))
        except (TypeError, ValueError) as e:
            logger.warning(f"Skipping unreadable cargo record {record.get('id')!r}: {e}")
    return profiles


def save_profiles(store: JsonStore, profiles: list):
    store.set(PROFILES_KEY, [p.to_dict() for p in profiles])


def load_market(store: JsonStore, default_spot: dict = None) -> MarketDataStore:
    """Market store from the saved spot prices and curve history, falling back to ``default_spot``."""
    spot = dict(default_spot or {})
    spot.update(store.get(MARKET_KEY, {}) or {})
    try:
        return MarketDataStore(spot, store.get(CURVES_KEY, {}) or {})
    except (KeyError, TypeError, ValueError) as e:
        logger.error(f"Saved forward curves are unreadable, starting without them: {e}")
        return MarketDataStore(spot)


def save_market(store: JsonStore, market: MarketDataStore):
    data = market.to_dict()
    store.set(MARKET_KEY, data['spot_prices'])
    store.set(CURVES_KEY, data['curve_history'])
