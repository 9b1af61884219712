"""
Market Data Store
Spot index prices plus dated forward-curve snapshots, and the helpers that
turn pasted curve tables into curve rows.
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import date, datetime

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)

# Column order of a pasted forward curve table (after the Month column)
CURVE_COLUMNS = ['BRIPE', 'JCC', 'Dated Brent', 'HH', 'NBP', 'JKM', 'TTF', 'AECO', 'STN 2']

MONTHS = {
    'jan': '01', 'feb': '02', 'mar': '03', 'apr': '04', 'may': '05', 'jun': '06',
    'jul': '07', 'aug': '08', 'sep': '09', 'oct': '10', 'nov': '11', 'dec': '12',
}

_ISO_PREFIX = re.compile(r'^(\d{4})-(\d{2})')
_MONTH_KEY = re.compile(r'^\d{4}-(0[1-9]|1[0-2])$')
_MMM_YY = re.compile(r"^([a-zA-Z]+)[\s\-']+(\d{2,4})$")
_MM_YY = re.compile(r'^(\d{1,2})[/\-](\d{2})$')


def normalize_date_to_month(value) -> str:
    """Map a date-like value to a 'YYYY-MM' month key.

    ISO strings are sliced, never converted to a datetime first, so
    '2025-11-01' stays in November whatever the host time zone. Other
    strings go through pandas in UTC. Returns '' when nothing parses.
    """
    if value is None or value == '':
        return ''
    if isinstance(value, (date, datetime)):
        return f'{value.year:04d}-{value.month:02d}'

    text = str(value).strip()
    iso = _ISO_PREFIX.match(text)
    if iso:
        return f'{iso.group(1)}-{iso.group(2)}'

    try:
        ts = pd.to_datetime(text, utc=True)
    except (ValueError, TypeError, OverflowError):
        return ''
    if pd.isna(ts):
        return ''
    return f'{ts.year:04d}-{ts.month:02d}'


@dataclass
class ForwardCurveRow:
    month: str
    prices: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {'month': self.month, 'prices': dict(self.prices)}

    @classmethod
    def from_dict(cls, data: dict) -> 'ForwardCurveRow':
        return cls(month=str(data['month']),
                   prices={k: float(v) for k, v in data.get('prices', {}).items()})


class MarketDataStore:
    """Spot prices and forward-curve history owned by the host.

    The evaluator reads through ``get_spot_prices`` and
    ``get_forward_curve``; only the host mutates the store.
    """

    def __init__(self, spot_prices: dict = None, curve_history: dict = None):
        self._spot = {k: float(v) for k, v in (spot_prices or {}).items()}
        self._curves = {}
        self._selected = None
        for as_of, rows in (curve_history or {}).items():
            self.save_forward_curve(as_of, rows)

    # --- spot ---

    def get_spot_prices(self) -> dict:
        return dict(self._spot)

    def update_spot_prices(self, prices: dict):
        """Merge ``prices`` into the current spot set."""
        self._spot.update({k: float(v) for k, v in prices.items()})
        logger.info(f"Spot prices updated for {len(prices)} indices")

    def set_spot_prices(self, prices: dict):
        self._spot = {k: float(v) for k, v in prices.items()}
        logger.info(f"Spot prices replaced ({len(prices)} indices)")

    # --- forward curves ---

    def save_forward_curve(self, as_of, rows):
        """Store a curve snapshot under its as-of date.

        Rows may be ForwardCurveRow objects or plain dicts. A month that
        appears twice keeps its last row; rows are stored in month order.
        """
        key = as_of.isoformat() if isinstance(as_of, (date, datetime)) else str(as_of)
        by_month = {}
        for row in rows:
            if not isinstance(row, ForwardCurveRow):
                row = ForwardCurveRow.from_dict(row)
            if not _MONTH_KEY.match(row.month):
                raise ValueError(f"Invalid curve month {row.month!r}, expected YYYY-MM")
            by_month[row.month] = ForwardCurveRow(row.month, dict(row.prices))
        self._curves[key] = [by_month[m] for m in sorted(by_month)]
        logger.info(f"Saved forward curve as of {key} ({len(by_month)} months)")

    def delete_forward_curve(self, as_of: str):
        if self._curves.pop(as_of, None) is not None:
            logger.info(f"Deleted forward curve as of {as_of}")
        if self._selected == as_of:
            self._selected = None

    def available_curve_dates(self) -> list:
        return sorted(self._curves, reverse=True)

    def select_curve(self, as_of: str = None):
        """Pin the snapshot used for pricing; None goes back to the latest."""
        if as_of is not None and as_of not in self._curves:
            raise KeyError(f"No forward curve saved as of {as_of}")
        self._selected = as_of

    @property
    def selected_curve_date(self):
        if self._selected is not None:
            return self._selected
        dates = self.available_curve_dates()
        return dates[0] if dates else None

    def get_forward_curve(self, as_of: str = None) -> list:
        if as_of and as_of in self._curves:
            return list(self._curves[as_of])
        key = self.selected_curve_date
        return list(self._curves[key]) if key else []

    # --- persistence ---

    def to_dict(self) -> dict:
        return {
            'spot_prices': self.get_spot_prices(),
            'curve_history': {k: [r.to_dict() for r in rows] for k, rows in self._curves.items()},
            'selected_curve': self._selected,
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'MarketDataStore':
        store = cls(data.get('spot_prices'), data.get('curve_history'))
        selected = data.get('selected_curve')
        if selected in store._curves:
            store._selected = selected
        return store


def curve_frame(rows: list) -> pd.DataFrame:
    """One row per month, one column per index (known indices first)."""
    if not rows:
        return pd.DataFrame(columns=['Month'])
    df = pd.DataFrame([{'Month': r.month, **r.prices} for r in rows])
    known = [c for c in CURVE_COLUMNS if c in df.columns]
    extra = [c for c in df.columns if c not in known and c != 'Month']
    return df[['Month'] + known + extra].sort_values('Month').reset_index(drop=True)


def simulate_market_refresh(market: MarketDataStore, rng=None, max_move: float = 0.02) -> dict:
    """Move every spot price by a uniform random factor in +/- ``max_move``.

    Prices are rounded to 2 decimals and written back to the store.
    """
    rng = rng if rng is not None else np.random.default_rng()
    current = market.get_spot_prices()
    changes = 1 + rng.uniform(-max_move, max_move, size=len(current))
    updated = {k: round(float(p * c), 2) for (k, p), c in zip(current.items(), changes)}
    market.update_spot_prices(updated)
    logger.info("Simulated market refresh applied")
    return updated


# ============================================================
# PASTED CURVE TABLES
# ============================================================

def parse_curve_month(raw: str) -> str:
    """'Nov-25', "Nov '25", 'November 2025', '11/25', '2025-11-01' -> '2025-11'."""
    text = (raw or '').strip()
    if not text:
        return ''

    m = _MMM_YY.match(text)
    if m:
        month = MONTHS.get(m.group(1).lower()[:3])
        if month:
            year = int(m.group(2))
            if year < 100:
                year += 2000
            return f'{year}-{month}'

    m = _MM_YY.match(text)
    if m:
        month, year = int(m.group(1)), int(m.group(2)) + 2000
        if 1 <= month <= 12:
            return f'{year}-{month:02d}'

    return normalize_date_to_month(text)


def _clean_number(cell: str):
    cleaned = re.sub(r'[^0-9.\-]', '', cell)
    try:
        return float(cleaned)
    except ValueError:
        return None


def parse_curve_text(text: str) -> list:
    """Parse a pasted tab/comma separated curve table into ForwardCurveRow objects.

    Columns: Month, then CURVE_COLUMNS in order. A first line mentioning
    'month' is treated as the header. Unparseable rows are skipped.
    """
    lines = (text or '').strip().splitlines()
    if not lines:
        return []
    start = 1 if 'month' in lines[0].lower() else 0

    rows = []
    for line in lines[start:]:
        line = line.strip()
        if not line:
            continue
        values = [v.strip() for v in re.split(r'[\t,]', line)]
        if len(values) < 2:
            continue
        month = parse_curve_month(values[0])
        if not month:
            logger.warning(f"Could not parse curve month: {values[0]!r}")
            continue
        prices = {}
        for code, cell in zip(CURVE_COLUMNS, values[1:]):
            if cell:
                num = _clean_number(cell)
                if num is not None:
                    prices[code] = num
        rows.append(ForwardCurveRow(month, prices))
    return rows
