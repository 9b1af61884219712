import json

import pytest

from market_data import ForwardCurveRow, MarketDataStore
from profile_engine import CargoProfile, PnLBucket
from storage import (
    CURVES_KEY, MARKET_KEY, PROFILES_KEY, JsonStore, load_market, load_profiles,
    save_market, save_profiles,
)


@pytest.fixture
def store(tmp_path):
    return JsonStore(tmp_path / 'desk')


def test_get_missing_key_returns_default(store):
    assert store.get('nothing', default=[]) == []


def test_set_get_delete(store):
    store.set('k', {'a': 1})
    assert store.get('k') == {'a': 1}
    store.delete('k')
    assert store.get('k') is None
    store.delete('k')


def test_corrupt_file_returns_default(store, caplog):
    store.directory.mkdir(parents=True)
    (store.directory / 'k.json').write_text('{not json', encoding='utf-8')
    assert store.get('k', default={}) == {}
    assert 'Failed to read' in caplog.text


def test_profiles_round_trip(store):
    profiles = [CargoProfile(id='1', strategy_name='A', pnl_bucket=PnLBucket.REALIZED,
                             delivered_volume=3_400_000.0)]
    save_profiles(store, profiles)
    assert load_profiles(store) == profiles


def test_load_profiles_skips_bad_records(store):
    store.set(PROFILES_KEY, [{'id': 'ok'}, 'junk', {'id': 'bad', 'pnl_bucket': 'Pending'}])
    assert [p.id for p in load_profiles(store)] == ['ok']


def test_market_round_trip(store):
    market = MarketDataStore({'TTF': 12.0})
    market.save_forward_curve('2025-07-31', [ForwardCurveRow('2025-08', {'TTF': 14.5})])
    save_market(store, market)

    restored = load_market(store, default_spot={'TTF': 1.0, 'HH': 3.1})
    assert restored.get_spot_prices() == {'TTF': 12.0, 'HH': 3.1}
    assert restored.get_forward_curve() == market.get_forward_curve()


def test_load_market_ignores_corrupt_curves(store):
    store.set(MARKET_KEY, {'TTF': 12.0})
    store.set(CURVES_KEY, {'2025-07-31': [{'month': 'August', 'prices': {}}]})

    market = load_market(store)
    assert market.get_spot_prices() == {'TTF': 12.0}
    assert market.available_curve_dates() == []


def test_saved_files_are_plain_json(store):
    save_profiles(store, [CargoProfile(id='1')])
    data = json.loads((store.directory / f'{PROFILES_KEY}.json').read_text(encoding='utf-8'))
    assert data[0]['pnl_bucket'] == 'Unrealized'
