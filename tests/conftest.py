import numpy as np
import pytest

from config_loader import DEFAULT_CONFIG
from market_data import ForwardCurveRow, MarketDataStore
from profile_engine import CargoProfile, PnLBucket


@pytest.fixture
def market():
    return MarketDataStore(DEFAULT_CONFIG['spot_prices'])


@pytest.fixture
def curve_market():
    """Spot TTF 12.00 with an August 2025 forward row at 14.50."""
    store = MarketDataStore({'TTF': 12.00, 'HH': 3.00, 'JKM': 13.50, 'NBP': 11.50})
    store.save_forward_curve('2025-07-31', [
        ForwardCurveRow('2025-08', {'TTF': 14.50, 'HH': 3.40}),
        ForwardCurveRow('2025-09', {'TTF': 15.00}),
    ])
    return store


@pytest.fixture
def rng():
    return np.random.default_rng(42)


@pytest.fixture
def open_cargo():
    return CargoProfile(
        id='c-1', source='US Gulf', strategy_name='SN2025_USGulf_11(PLL)', buyer='EuroGas Ltd',
        delivery_date='2025-09-10', loading_date='2025-08-20',
        delivered_volume=3_400_000, loaded_volume=3_500_000,
        sell_formula='TTF - 0.50', buy_formula='115% HH + 2.5',
        pnl_bucket=PnLBucket.UNREALIZED, total_hedging_pnl=-25_000,
    )
