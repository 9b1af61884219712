"""
Exposure & P&L Reporting Engine
Aggregates the cargo book into volume exposure by pricing month and index,
headline P&L figures and export tables.
"""

import io
import logging

import pandas as pd

from formula_engine import estimate_pricing_date
from profile_engine import PnLBucket

logger = logging.getLogger(__name__)

# Approximate conversion factors to MMBtu
MMBTU_PER_UNIT = {
    'MMBtu': 1.0,
    'bbl': 5.8,
    'm3': 24.0,   # LNG m3, density dependent
    'MT': 52.0,   # LNG tonne
}

INDEX_FAMILIES = ['JKM', 'TTF', 'NBP', 'HH', 'Oil', 'AECO', 'Other']

EXPORT_COLUMNS = {
    'strategy_name': 'Strategy',
    'source': 'Source',
    'buyer': 'Buyer',
    'pnl_bucket': 'Status',
    'loading_date': 'Loading Date',
    'delivery_date': 'Delivery Date',
    'delivered_volume': 'Delivered Volume',
    'volume_unit': 'Unit',
    'sell_formula': 'Sell Formula',
    'absolute_sell_price': 'Sell Price',
    'buy_formula': 'Buy Formula',
    'absolute_buy_price': 'Buy Price',
    'final_sales_revenue': 'Final Sales Revenue',
    'final_total_cost': 'Final Total Cost',
    'final_physical_pnl': 'Physical P&L',
    'total_hedging_pnl': 'Hedging P&L',
    'final_total_pnl': 'Total P&L',
}


def volume_in_mmbtu(volume: float, unit: str) -> float:
    return (volume or 0.0) * MMBTU_PER_UNIT.get(unit, 1.0)


def classify_index(formula: str) -> str:
    """Index family a formula is exposed to, first match wins."""
    f = (formula or '').upper()
    for code in ('JKM', 'TTF', 'NBP', 'HH'):
        if code in f:
            return code
    if 'BRENT' in f or 'JCC' in f:
        return 'Oil'
    if 'AECO' in f:
        return 'AECO'
    return 'Other'


def exposure_table(profiles: list, today=None) -> pd.DataFrame:
    """MMBtu exposure by pricing month (rows) and index family (columns).

    Only open cargoes whose pricing date is today or later are exposed.
    """
    today = pd.Timestamp(today if today is not None else pd.Timestamp.now()).normalize()
    records = []
    for p in profiles:
        if p.pnl_bucket == PnLBucket.REALIZED:
            continue
        formula = p.sell_formula or p.buy_formula
        pricing_date = p.pricing_end_date or estimate_pricing_date(formula, p.delivery_date)
        if not pricing_date:
            continue
        try:
            fixing = pd.Timestamp(pricing_date)
        except ValueError:
            continue
        if fixing < today:
            continue
        records.append({
            'Month': pricing_date[:7],
            'Index': classify_index(formula),
            'Volume_MMBtu': volume_in_mmbtu(p.delivered_volume, p.unit),
        })

    if not records:
        return pd.DataFrame(columns=['Month'])

    table = pd.DataFrame(records).pivot_table(
        index='Month', columns='Index', values='Volume_MMBtu', aggfunc='sum', fill_value=0.0)
    ordered = [c for c in INDEX_FAMILIES if c in table.columns]
    table = table[ordered].sort_index().reset_index()
    table.columns.name = None
    return table


def portfolio_stats(profiles: list) -> dict:
    total_pnl = sum(p.final_total_pnl or 0.0 for p in profiles)
    return {
        'total_pnl': total_pnl,
        'total_volume': sum(p.delivered_volume or 0.0 for p in profiles),
        'realized_pnl': sum(p.final_total_pnl or 0.0 for p in profiles
                            if p.pnl_bucket == PnLBucket.REALIZED),
        'unrealized_pnl': sum(p.final_total_pnl or 0.0 for p in profiles
                              if p.pnl_bucket == PnLBucket.UNREALIZED),
    }


def profiles_frame(profiles: list) -> pd.DataFrame:
    """One row per cargo, snake_case columns."""
    if not profiles:
        return pd.DataFrame(columns=list(EXPORT_COLUMNS))
    return pd.DataFrame([p.to_dict() for p in profiles])


def pnl_breakdown(profiles: list, bucket: str = 'All', start_date: str = None,
                  end_date: str = None) -> tuple:
    """Filter by bucket and delivery-date range.

    Returns (DataFrame sorted by total P&L descending, totals dict with
    revenue, cost and pnl).
    """
    selected = []
    for p in profiles:
        if bucket != 'All' and p.pnl_bucket.value != bucket:
            continue
        if start_date and (not p.delivery_date or p.delivery_date < start_date):
            continue
        if end_date and (not p.delivery_date or p.delivery_date > end_date):
            continue
        selected.append(p)

    df = profiles_frame(selected)
    if not df.empty:
        df = df.sort_values('final_total_pnl', ascending=False).reset_index(drop=True)
    totals = {
        'revenue': sum(p.final_sales_revenue or 0.0 for p in selected),
        'cost': sum(p.final_total_cost or 0.0 for p in selected),
        'pnl': sum(p.final_total_pnl or 0.0 for p in selected),
    }
    return df, totals


def profiles_to_workbook(profiles: list) -> bytes:
    """Excel workbook (Cargoes + Exposure sheets) as bytes."""
    cargoes = profiles_frame(profiles)
    cargoes = cargoes[[c for c in EXPORT_COLUMNS if c in cargoes.columns]].rename(columns=EXPORT_COLUMNS)
    buffer = io.BytesIO()
    with pd.ExcelWriter(buffer, engine='openpyxl') as writer:
        cargoes.to_excel(writer, sheet_name='Cargoes', index=False)
        exposure_table(profiles).to_excel(writer, sheet_name='Exposure', index=False)
    logger.info(f"Exported {len(profiles)} cargoes to workbook")
    return buffer.getvalue()
