import io

import pandas as pd
import pytest

from exposure_engine import (
    classify_index, exposure_table, pnl_breakdown, portfolio_stats, profiles_frame,
    profiles_to_workbook, volume_in_mmbtu,
)
from profile_engine import CargoProfile, PnLBucket


@pytest.fixture
def book():
    return [
        CargoProfile(id='1', strategy_name='TTF-Oct', sell_formula='TTF - 0.5',
                     delivery_date='2025-10-20', delivered_volume=3_400_000,
                     final_sales_revenue=40_000_000, final_total_cost=30_000_000,
                     final_total_pnl=10_000_000),
        CargoProfile(id='2', strategy_name='JKM-Oct', sell_formula='JKM + 0.2',
                     delivery_date='2025-10-05', delivered_volume=3_300_000,
                     final_sales_revenue=45_000_000, final_total_cost=41_000_000,
                     final_total_pnl=4_000_000),
        CargoProfile(id='3', strategy_name='Brent-Nov', sell_formula='13% Brent',
                     delivery_date='2025-11-10', delivered_volume=1_000_000,
                     final_total_pnl=-500_000),
        CargoProfile(id='4', strategy_name='Done', sell_formula='TTF',
                     delivery_date='2025-10-01', delivered_volume=3_000_000,
                     pnl_bucket=PnLBucket.REALIZED,
                     final_sales_revenue=36_000_000, final_total_cost=33_000_000,
                     final_total_pnl=3_000_000),
        CargoProfile(id='5', strategy_name='Past', sell_formula='TTF',
                     delivery_date='2025-06-10', delivered_volume=3_000_000),
        CargoProfile(id='6', strategy_name='AECO-Dec', sell_formula='AECO + 0.1',
                     delivery_date='2025-12-20', pricing_end_date='2025-12-15',
                     delivered_volume=100, volume_unit='m3'),
    ]


@pytest.mark.parametrize('formula, family', [
    ('TTF - 0.5', 'TTF'),
    ('115% HH + 2.5', 'HH'),
    ('JKM vs TTF', 'JKM'),
    ('13% Brent + 0.8', 'Oil'),
    ('JCC + 1', 'Oil'),
    ('AECO', 'AECO'),
    ('4.50 fixed', 'Other'),
    ('', 'Other'),
])
def test_classify_index(formula, family):
    assert classify_index(formula) == family


def test_volume_in_mmbtu():
    assert volume_in_mmbtu(1_000, 'bbl') == pytest.approx(5_800)
    assert volume_in_mmbtu(100, 'm3') == pytest.approx(2_400)
    assert volume_in_mmbtu(100, 'unknown') == 100
    assert volume_in_mmbtu(None, 'MMBtu') == 0.0


def test_exposure_table_by_pricing_month(book):
    table = exposure_table(book, today='2025-09-01')

    assert list(table.columns) == ['Month', 'JKM', 'TTF', 'Oil', 'AECO']
    assert table['Month'].tolist() == ['2025-09', '2025-11', '2025-12']
    sep = table.set_index('Month').loc['2025-09']
    assert sep['TTF'] == pytest.approx(3_400_000)
    assert sep['JKM'] == pytest.approx(3_300_000)
    assert sep['Oil'] == 0
    assert table.set_index('Month').loc['2025-11', 'Oil'] == pytest.approx(5_800_000)
    assert table.set_index('Month').loc['2025-12', 'AECO'] == pytest.approx(2_400)


def test_exposure_table_excludes_everything_in_the_past(book):
    table = exposure_table(book, today='2030-01-01')
    assert table.empty
    assert list(table.columns) == ['Month']


def test_portfolio_stats(book):
    stats = portfolio_stats(book)
    assert stats['total_pnl'] == pytest.approx(16_500_000)
    assert stats['realized_pnl'] == pytest.approx(3_000_000)
    assert stats['unrealized_pnl'] == pytest.approx(13_500_000)
    assert stats['total_volume'] == pytest.approx(13_700_100)


def test_pnl_breakdown_filters_and_sorts(book):
    df, totals = pnl_breakdown(book, bucket='Unrealized', start_date='2025-10-01',
                               end_date='2025-10-31')

    assert df['strategy_name'].tolist() == ['TTF-Oct', 'JKM-Oct']
    assert totals == {'revenue': 85_000_000, 'cost': 71_000_000, 'pnl': 14_000_000}


def test_pnl_breakdown_all(book):
    df, totals = pnl_breakdown(book)
    assert len(df) == len(book)
    assert df['final_total_pnl'].iloc[0] == 10_000_000
    assert totals['pnl'] == pytest.approx(16_500_000)


def test_profiles_frame_empty_has_export_columns():
    assert 'final_total_pnl' in profiles_frame([]).columns


def test_profiles_to_workbook(book):
    data = profiles_to_workbook(book)
    sheets = pd.read_excel(io.BytesIO(data), sheet_name=None)

    assert set(sheets) == {'Cargoes', 'Exposure'}
    assert sheets['Cargoes']['Strategy'].tolist() == [p.strategy_name for p in book]
    assert sheets['Cargoes']['Status'].iloc[3] == 'Realized'
