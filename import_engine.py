"""
Bulk Import Engine
Turns a pasted deal sheet (tab or comma separated, with a header row) into
cargo profiles, diffs them against the existing book and merges the
accepted rows by id.
"""

import io
import logging
import re
from dataclasses import dataclass, field

import pandas as pd

from market_data import MONTHS, MarketDataStore
from profile_engine import (
    CargoProfile, PnLBucket, fill_month_labels, generate_strategy_name,
    new_profile_id, recalculate_profile,
)

logger = logging.getLogger(__name__)

# --- Column header aliases (substring match on the lower-cased header) ---

COLUMN_MAPPING = {
    'strategy_name': ['strategy', 'name', 'deal', 'id', 'ref'],
    'source': ['source', 'origin', 'load port', 'loading port'],
    'buyer': ['buyer', 'customer', 'client', 'destination', 'disport'],

    'delivery_date': ['delivery date', 'arrival', 'end date', 'del date'],
    'delivery_window_start': ['delivery start', 'del start'],
    'delivery_window_end': ['delivery end', 'del end'],
    'loading_date': ['loading date', 'load date', 'bl date'],
    'loading_window_start': ['loading start', 'load start'],
    'loading_window_end': ['loading end', 'load end'],

    'delivered_volume': ['volume', 'vol', 'quantity', 'qty', 'mmbtu', 'bbl', 'delivered volume'],
    'loaded_volume': ['loaded volume', 'load vol'],

    'sell_formula': ['sell formula', 'sales formula'],
    'absolute_sell_price': ['sell price', 'sales price', 'unit price', 'final price'],
    'buy_formula': ['buy formula', 'purchase formula'],
    'absolute_buy_price': ['buy price', 'purchase price', 'cost price'],

    'sales_revenue': ['sales revenue', 'revenue', 'invoice value'],
    'reconciled_purchase_cost': ['purchase cost', 'cost', 'total cost'],
    'final_total_pnl': ['total pnl', 'final pnl', 'profit', 'p&l', 'net pnl'],

    'incoterms': ['incoterms', 'terms'],
    'pnl_bucket': ['status', 'bucket', 'state'],
}

VOLUME_FIELDS = ('delivered_volume', 'loaded_volume')
DATE_FIELDS = ('delivery_date', 'delivery_window_start', 'delivery_window_end',
               'loading_date', 'loading_window_start', 'loading_window_end')
NUMERIC_FIELDS = ('absolute_sell_price', 'absolute_buy_price', 'sales_revenue',
                  'reconciled_purchase_cost', 'final_total_pnl')

STATUS_NEW = 'New'
STATUS_UPDATE = 'Update'
STATUS_NO_CHANGE = 'No Change'

_DD_MMM_YY = re.compile(r'^(\d{1,2})[\s\-/]+([a-zA-Z]{3,})[\s\-/]+(\d{2,4})$')
_MMM_YY = re.compile(r"^([a-zA-Z]{3,})[\s\-']+(\d{2})$")
_MMBTU = re.compile(r'([\d,.]+)\s*(mmbtu)', re.IGNORECASE)
_M3 = re.compile(r'([\d,.]+)\s*(m3|cbm|cubic)', re.IGNORECASE)


@dataclass
class ImportRow:
    profile: CargoProfile
    status: str
    changes: dict = field(default_factory=dict)


# ============================================================
# CELL PARSING
# ============================================================

def parse_import_date(raw: str) -> str:
    """'15-Nov-23', '15 November 2023', 'Nov-23', ISO and other pandas dates -> 'YYYY-MM-DD'."""
    text = (raw or '').strip()
    if not text:
        return ''

    m = _DD_MMM_YY.match(text)
    if m:
        month = MONTHS.get(m.group(2).lower()[:3])
        year = m.group(3)
        if len(year) == 2:
            year = f'20{year}'
        if month:
            return f'{year}-{month}-{int(m.group(1)):02d}'

    m = _MMM_YY.match(text)
    if m:
        month = MONTHS.get(m.group(1).lower()[:3])
        if month:
            return f'20{m.group(2)}-{month}-01'

    try:
        ts = pd.to_datetime(text)
    except (ValueError, TypeError, OverflowError):
        return ''
    if pd.isna(ts):
        return ''
    return ts.strftime('%Y-%m-%d')


def parse_number(raw: str):
    cleaned = re.sub(r'[^0-9.\-]', '', raw or '')
    try:
        return float(cleaned)
    except ValueError:
        return None


def parse_volume(raw: str) -> tuple:
    """Returns (volume or None, unit or '') for cells like '3,400,000 MMBtu' or '140000 m3'."""
    for pattern, unit in ((_MMBTU, 'MMBtu'), (_M3, 'm3')):
        m = pattern.search(raw)
        if m:
            return parse_number(m.group(1).replace(',', '')), unit
    return parse_number(raw), ''


def parse_bucket(raw: str):
    value = raw.lower()
    if 'unreal' in value:
        return PnLBucket.UNREALIZED
    if 'real' in value:
        return PnLBucket.REALIZED
    return None


def map_columns(headers: list) -> dict:
    """Field name -> column index; first matching header wins for each field."""
    mapping = {}
    for index, header in enumerate(headers):
        h = re.sub(r'[\'"]+', '', str(header)).strip().lower()
        for key, aliases in COLUMN_MAPPING.items():
            if key not in mapping and any(alias in h for alias in aliases):
                mapping[key] = index
    return mapping


def read_table(text: str) -> pd.DataFrame:
    """Pasted text -> DataFrame of raw string cells, header row as column names."""
    lines = [ln for ln in (text or '').strip().splitlines() if ln.strip()]
    if not lines:
        return pd.DataFrame()
    sep = '\t' if '\t' in lines[0] else ','
    width = max(ln.count(sep) + 1 for ln in lines)
    df = pd.read_csv(io.StringIO('\n'.join(lines)), sep=sep, header=None, names=range(width),
                     dtype=str, keep_default_na=False, engine='python')
    df = df.fillna('').apply(lambda col: col.str.strip())
    header = df.iloc[0].tolist()
    body = df.iloc[1:].reset_index(drop=True)
    body.columns = header
    return body


def parse_row(cells: list, mapping: dict) -> dict:
    """Typed profile fields for one sheet row; empty or unreadable cells are skipped."""
    parsed = {}
    for key, index in mapping.items():
        raw = cells[index] if index < len(cells) else ''
        if not raw:
            continue
        if key in VOLUME_FIELDS:
            volume, unit = parse_volume(raw)
            if unit and not parsed.get('volume_unit'):
                parsed['volume_unit'] = unit
            if volume is not None:
                parsed[key] = volume
        elif key in DATE_FIELDS:
            parsed[key] = parse_import_date(raw)
        elif key in NUMERIC_FIELDS:
            number = parse_number(raw)
            if number is not None:
                parsed[key] = number
        elif key == 'pnl_bucket':
            bucket = parse_bucket(raw)
            if bucket is not None:
                parsed[key] = bucket
        else:
            parsed[key] = raw

    for prefix in ('delivery', 'loading'):
        day = parsed.get(f'{prefix}_date')
        if day:
            if not parsed.get(f'{prefix}_window_start'):
                parsed[f'{prefix}_window_start'] = day
            if not parsed.get(f'{prefix}_window_end'):
                parsed[f'{prefix}_window_end'] = day
    return parsed


# ============================================================
# DIFF & MERGE
# ============================================================

def _is_empty(value) -> bool:
    return value is None or value == '' or value == 0 or value is False


def diff_profiles(old: CargoProfile, new: CargoProfile) -> dict:
    """Field -> {'old', 'new'} for meaningful changes (id excluded)."""
    old_data, new_data = old.to_dict(), new.to_dict()
    changes = {}
    for key, new_val in new_data.items():
        if key == 'id':
            continue
        old_val = old_data.get(key)
        if old_val == new_val:
            continue
        if isinstance(old_val, (int, float)) and isinstance(new_val, (int, float)) \
                and abs(old_val - new_val) < 0.001:
            continue
        if _is_empty(old_val) and _is_empty(new_val):
            continue
        changes[key] = {'old': old_val, 'new': new_val}
    return changes


def parse_import_text(text: str, existing: list, market: MarketDataStore, rng=None) -> list:
    """Preview a pasted sheet: one ImportRow per data row, with New/Update/No Change status.

    Rows are matched to the existing book by strategy name (case-insensitive).
    Matched rows are recalculated with force unless Realized; new rows always
    with force.
    """
    table = read_table(text)
    if table.empty:
        return []
    mapping = map_columns(list(table.columns))
    by_name = {p.strategy_name.lower(): p for p in existing if p.strategy_name}

    rows = []
    for cells in table.itertuples(index=False, name=None):
        parsed = parse_row(list(cells), mapping)
        if not parsed:
            continue
        match = by_name.get(str(parsed.get('strategy_name', '')).lower())

        if match is not None:
            merged = fill_month_labels(CargoProfile.from_dict({**match.to_dict(), **parsed}))
            profile = recalculate_profile(merged, market, force_calc=not merged.is_realized)
            changes = diff_profiles(match, profile)
            rows.append(ImportRow(profile, STATUS_UPDATE if changes else STATUS_NO_CHANGE, changes))
        else:
            base = fill_month_labels(CargoProfile.from_dict({**parsed, 'id': new_profile_id(rng)}))
            if not base.strategy_name:
                base.strategy_name = generate_strategy_name(base, rng)
            if not base.loaded_volume and base.delivered_volume:
                base.loaded_volume = base.delivered_volume
            rows.append(ImportRow(recalculate_profile(base, market, force_calc=True), STATUS_NEW))

    counts = pd.Series([r.status for r in rows], dtype=object).value_counts().to_dict()
    logger.info(f"Parsed import sheet: {counts}")
    return rows


def finalize_import(rows: list, existing: list, market: MarketDataStore,
                    selected=None, ignored: dict = None) -> list:
    """Profiles to write back for the selected preview rows.

    ``ignored`` maps a row index to field names whose incoming change is
    rejected; those fields are restored from the existing profile.
    """
    if selected is None:
        selected = {i for i, r in enumerate(rows) if r.status in (STATUS_NEW, STATUS_UPDATE)}
    ignored = ignored or {}
    by_id = {p.id: p for p in existing}

    result = []
    for index, row in enumerate(rows):
        if index not in selected:
            continue
        skip = ignored.get(index) or set()
        if row.status != STATUS_UPDATE or not skip:
            result.append(row.profile)
            continue
        original = by_id.get(row.profile.id)
        if original is None:
            continue
        mixed = row.profile.to_dict()
        original_data = original.to_dict()
        for name in skip:
            mixed[name] = original_data[name]
        result.append(recalculate_profile(CargoProfile.from_dict(mixed), market, force_calc=True))
    return result


def merge_profiles(existing: list, imported: list) -> list:
    """Merge by id, last write wins; existing order kept, new ids appended."""
    by_id = {p.id: p for p in existing}
    for p in imported:
        by_id[p.id] = p
    logger.info(f"Merged {len(imported)} imported cargoes into book of {len(existing)}")
    return list(by_id.values())
