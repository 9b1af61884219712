"""
Cargo Profile Engine
Cargo profile record, the recalculation pipeline that re-derives prices,
revenue, cost and P&L from formulas, and actualization.
"""

import logging
import re
import time
from dataclasses import asdict, dataclass, fields, replace
from enum import Enum

import numpy as np
import pandas as pd

from formula_engine import detect_unit, estimate_pricing_date, evaluate_formula
from market_data import MarketDataStore

logger = logging.getLogger(__name__)

VOLUME_UNITS = ('MMBtu', 'm3', 'MT', 'bbl')


class PnLBucket(str, Enum):
    REALIZED = 'Realized'
    UNREALIZED = 'Unrealized'
    UNSPECIFIED = 'Unspecified'


@dataclass
class CargoProfile:
    id: str = ''
    source: str = ''
    strategy_name: str = ''
    buyer: str = ''
    optimized: bool = False
    incoterms: str = ''
    src: str = ''

    delivery_date: str = ''
    delivery_month: str = ''
    delivery_window_start: str = ''
    delivery_window_end: str = ''
    loading_date: str = ''
    loading_month: str = ''
    loading_window_start: str = ''
    loading_window_end: str = ''
    pricing_end_date: str = ''

    volume_unit: str = ''
    delivered_volume: float = 0.0
    loaded_volume: float = 0.0

    sell_formula: str = ''
    buy_formula: str = ''
    absolute_sell_price: float = 0.0
    absolute_buy_price: float = 0.0

    pnl_bucket: PnLBucket = PnLBucket.UNREALIZED

    sales_revenue: float = 0.0
    reconciled_purchase_cost: float = 0.0
    final_sales_revenue: float = 0.0
    reconciled_sales_revenue: float = 0.0
    final_total_cost: float = 0.0
    final_physical_pnl: float = 0.0
    total_hedging_pnl: float = 0.0
    final_total_pnl: float = 0.0

    @property
    def is_realized(self) -> bool:
        return self.pnl_bucket == PnLBucket.REALIZED

    @property
    def unit(self) -> str:
        """Explicit volume unit, else the one implied by the formulas."""
        return self.volume_unit or detect_unit(self.sell_formula or self.buy_formula)

    def to_dict(self) -> dict:
        data = asdict(self)
        data['pnl_bucket'] = self.pnl_bucket.value
        return data

    @classmethod
    def from_dict(cls, data: dict) -> 'CargoProfile':
        """Build a profile from a plain dict; unknown keys are ignored."""
        kwargs = {}
        for f in fields(cls):
            if f.name not in data:
                continue
            value = data[f.name]
            if f.name == 'pnl_bucket':
                value = PnLBucket(value) if value else PnLBucket.UNSPECIFIED
            elif f.type is float:
                value = float(value or 0.0)
            elif f.type is bool:
                value = bool(value)
            else:
                value = '' if value is None else str(value)
            kwargs[f.name] = value
        return cls(**kwargs)


# ============================================================
# RECALCULATION
# ============================================================

def recalculate_profile(profile: CargoProfile, market: MarketDataStore,
                        force_calc: bool = False) -> CargoProfile:
    """Re-derive prices, revenue, cost and P&L. Returns a new profile.

    Formula pricing runs unless the profile is Realized (``force_calc``
    overrides that). A formula that cannot be priced leaves the existing
    price alone. Physical and total P&L are always recomputed.
    """
    updated = replace(profile)
    is_realized = updated.is_realized

    # 1. Prices from formulas
    if not is_realized or force_calc:
        if updated.sell_formula:
            price = evaluate_formula(updated.sell_formula, market, updated.delivery_date)
            if price is not None:
                updated.absolute_sell_price = price

        if updated.buy_formula:
            # Buy side fixes off the loading month
            price = evaluate_formula(updated.buy_formula, market,
                                     updated.loading_date or updated.delivery_date)
            if price is not None:
                updated.absolute_buy_price = price

        if not updated.pricing_end_date and updated.delivery_date:
            updated.pricing_end_date = estimate_pricing_date(
                updated.sell_formula or updated.buy_formula, updated.delivery_date)

    # 2. Sales revenue
    if updated.delivered_volume and updated.absolute_sell_price:
        updated.sales_revenue = updated.delivered_volume * updated.absolute_sell_price

    # 3. Purchase cost; a reconciled realized cost is kept
    if updated.loaded_volume and updated.absolute_buy_price:
        if not updated.reconciled_purchase_cost or not is_realized or force_calc:
            updated.reconciled_purchase_cost = updated.loaded_volume * updated.absolute_buy_price

    # 4. Defaults for the "final" figures, never over a manual entry
    if not updated.final_sales_revenue and updated.sales_revenue:
        updated.final_sales_revenue = updated.sales_revenue
    if not updated.reconciled_sales_revenue and updated.final_sales_revenue:
        updated.reconciled_sales_revenue = updated.final_sales_revenue
    if not updated.final_total_cost and updated.reconciled_purchase_cost:
        updated.final_total_cost = updated.reconciled_purchase_cost

    # 5-6. P&L
    updated.final_physical_pnl = (updated.final_sales_revenue or 0.0) - (updated.final_total_cost or 0.0)
    updated.final_total_pnl = updated.final_physical_pnl + (updated.total_hedging_pnl or 0.0)
    return updated


def actualize_profile(profile: CargoProfile, market: MarketDataStore) -> CargoProfile:
    """Lock a cargo's economics: mark it Realized and backfill the reconciled figures."""
    updated = replace(profile, pnl_bucket=PnLBucket.REALIZED)
    if not updated.reconciled_sales_revenue:
        updated.reconciled_sales_revenue = updated.sales_revenue
    if not updated.final_sales_revenue:
        updated.final_sales_revenue = updated.reconciled_sales_revenue
    if not updated.reconciled_purchase_cost and updated.loaded_volume and updated.absolute_buy_price:
        updated.reconciled_purchase_cost = updated.loaded_volume * updated.absolute_buy_price
    if not updated.final_total_cost:
        updated.final_total_cost = updated.reconciled_purchase_cost
    logger.info(f"Actualized cargo {updated.id or updated.strategy_name}")
    return recalculate_profile(updated, market)


def refresh_profiles(profiles: list, market: MarketDataStore) -> list:
    """Recalculate every non-Realized profile after a market or curve change."""
    refreshed = [p if p.is_realized else recalculate_profile(p, market) for p in profiles]
    logger.info(f"Refreshed {sum(not p.is_realized for p in profiles)} open cargoes")
    return refreshed


# ============================================================
# CREATION HELPERS
# ============================================================

def new_profile_id(rng=None) -> str:
    """Millisecond timestamp plus four random digits."""
    rng = rng if rng is not None else np.random.default_rng()
    return f"{int(time.time() * 1000)}{int(rng.integers(0, 10000)):04d}"


def format_month_label(date_str: str) -> str:
    """'2023-11-15' -> 'Nov-23'; '' when the date is not ISO."""
    m = re.match(r'^(\d{4})-(\d{2})-(\d{2})$', date_str or '')
    if not m:
        return ''
    try:
        day = pd.Timestamp(year=int(m.group(1)), month=int(m.group(2)), day=int(m.group(3)))
    except ValueError:
        return ''
    return day.strftime('%b-%y')


def generate_strategy_name(profile: CargoProfile, rng=None) -> str:
    """SN<year>_<portfolio>_<10..99>(PLL)"""
    rng = rng if rng is not None else np.random.default_rng()
    date_str = profile.delivery_date or profile.loading_date
    year = pd.Timestamp.now().year
    if date_str:
        try:
            year = pd.Timestamp(date_str).year
        except ValueError:
            pass

    portfolio = re.sub(r'[^a-zA-Z0-9]', '', (profile.source or 'Portfolio').split(' ')[0])
    if len(portfolio) < 3:
        portfolio = 'Global'
    return f"SN{year}_{portfolio}_{int(rng.integers(10, 100))}(PLL)"


def fill_month_labels(profile: CargoProfile) -> CargoProfile:
    updated = replace(profile)
    if updated.delivery_date and not updated.delivery_month:
        updated.delivery_month = format_month_label(updated.delivery_date)
    if updated.loading_date and not updated.loading_month:
        updated.loading_month = format_month_label(updated.loading_date)
    return updated


def apply_form_edits(profile: CargoProfile, values: dict, market: MarketDataStore,
                     rng=None) -> CargoProfile:
    """Save a cargo edited by hand.

    Every submitted field replaces the stored one, blanks and zeros
    included, so manual revenue, cost and bucket entries survive the
    recalculation that follows.
    """
    merged = {**profile.to_dict(), **values}
    merged['id'] = profile.id or new_profile_id(rng)
    updated = fill_month_labels(CargoProfile.from_dict(merged))
    if not updated.strategy_name:
        updated.strategy_name = generate_strategy_name(updated, rng)
    return recalculate_profile(updated, market, force_calc=not updated.is_realized)


def delete_profiles(profiles: list, ids) -> list:
    ids = set(ids)
    remaining = [p for p in profiles if p.id not in ids]
    logger.info(f"Deleted {len(profiles) - len(remaining)} cargoes")
    return remaining


def merge_extracted_fields(profile: CargoProfile, extracted: dict, market: MarketDataStore,
                           rng=None) -> CargoProfile:
    """Overlay fields pulled from a deal document, then recalculate.

    Only non-empty extracted values replace what the profile holds.
    """
    merged = profile.to_dict()
    merged.update({k: v for k, v in extracted.items()
                   if k in merged and v is not None and v != ''})
    updated = fill_month_labels(CargoProfile.from_dict(merged))
    if not updated.strategy_name:
        updated.strategy_name = generate_strategy_name(updated, rng)
    return recalculate_profile(updated, market)


# ============================================================
# TRADE MATCHING
# ============================================================

def unmatched_buys(profiles: list) -> list:
    """Open purchases: a load source but no buyer yet."""
    return [p for p in profiles if p.source and not p.buyer.strip()]


def unmatched_sells(profiles: list) -> list:
    """Open sales: a buyer but no load source yet."""
    return [p for p in profiles if p.buyer and not p.source.strip()]


def _as_timestamp(*candidates):
    for value in candidates:
        if value:
            try:
                return pd.Timestamp(value)
            except ValueError:
                continue
    return pd.Timestamp.now().normalize()


def suggest_matches(profiles: list, max_days: int = 30, volume_tolerance: float = 0.10) -> list:
    """Greedy buy/sell pairs with close dates and volumes, as (buy, sell) tuples."""
    sells = unmatched_sells(profiles)
    used = set()
    suggestions = []
    for buy in unmatched_buys(profiles):
        buy_date = _as_timestamp(buy.loading_date, buy.delivery_date)
        threshold = (buy.loaded_volume or 0) * volume_tolerance
        for sell in sells:
            if sell.id in used:
                continue
            sell_date = _as_timestamp(sell.delivery_date, sell.loading_date)
            days = abs((buy_date - sell_date).total_seconds()) / 86400
            volume_gap = abs((buy.loaded_volume or 0) - (sell.delivered_volume or 0))
            if days < max_days and volume_gap < threshold:
                suggestions.append((buy, sell))
                used.add(sell.id)
                break
    return suggestions


def match_trades(buy: CargoProfile, sell: CargoProfile, market: MarketDataStore) -> CargoProfile:
    """Fold a sell-side profile into a buy-side one and recalculate once."""
    merged = replace(
        buy,
        buyer=sell.buyer,
        delivery_date=sell.delivery_date or buy.delivery_date,
        delivery_month=sell.delivery_month or buy.delivery_month,
        delivered_volume=sell.delivered_volume or buy.loaded_volume,
        sell_formula=sell.sell_formula,
        absolute_sell_price=sell.absolute_sell_price,
        sales_revenue=sell.sales_revenue,
        final_sales_revenue=sell.final_sales_revenue,
    )
    return recalculate_profile(merged, market)


def apply_match(profiles: list, buy: CargoProfile, sell: CargoProfile,
                market: MarketDataStore) -> tuple:
    """Replace the buy profile with the matched one and drop the sell profile."""
    merged = match_trades(buy, sell, market)
    result = [merged if p.id == buy.id else p for p in profiles if p.id != sell.id]
    logger.info(f"Matched buy {buy.id} with sell {sell.id}")
    return result, merged
