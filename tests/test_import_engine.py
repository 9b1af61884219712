from dataclasses import replace

import pytest

from import_engine import (
    STATUS_NEW, STATUS_NO_CHANGE, STATUS_UPDATE, diff_profiles, finalize_import,
    map_columns, merge_profiles, parse_bucket, parse_import_date, parse_import_text,
    parse_row, parse_volume, read_table,
)
from profile_engine import CargoProfile, PnLBucket, fill_month_labels, recalculate_profile

HEADER = 'Strategy\tSource\tBuyer\tDelivery Date\tLoading Date\tVolume\tSell Formula\tBuy Formula\tStatus'


@pytest.fixture
def existing(market):
    profiles = [
        CargoProfile(id='e-1', strategy_name='SN2025_Sabine_11(PLL)', source='Sabine Pass',
                     buyer='EuroGas', delivery_date='2025-09-10', loading_date='2025-08-20',
                     delivered_volume=3_400_000, loaded_volume=3_500_000,
                     sell_formula='TTF - 0.50', buy_formula='115% HH + 2.5'),
        CargoProfile(id='e-2', strategy_name='SN2025_Qatar_42(PLL)', source='Ras Laffan',
                     buyer='AsiaCo', delivery_date='2025-10-05', delivered_volume=3_300_000,
                     sell_formula='JKM + 0.2'),
    ]
    return [recalculate_profile(fill_month_labels(p), market) for p in profiles]


@pytest.fixture
def sheet():
    rows = [
        HEADER,
        'SN2025_Sabine_11(PLL)\t\t\t\t\t\tTTF + 0.25\t\tUnrealized',
        'SN2025_Qatar_42(PLL)\t\t\t\t\t\tJKM + 0.2\t\t',
        'NEW-CARGO-1\tQatar\tAsiaCo\t15-Nov-25\t\t3,200,000 MMBtu\tJKM + 0.2\t\tRealized',
    ]
    return '\n'.join(rows)


# --- cell parsing ---

@pytest.mark.parametrize('raw, expected', [
    ('15-Nov-23', '2023-11-15'),
    ('15 November 2023', '2023-11-15'),
    ('3/Jan/2024', '2024-01-03'),
    ('Nov-23', '2023-11-01'),
    ('2025-03-04', '2025-03-04'),
    ('garbage', ''),
    ('', ''),
])
def test_parse_import_date(raw, expected):
    assert parse_import_date(raw) == expected


@pytest.mark.parametrize('raw, expected', [
    ('3,400,000 MMBtu', (3_400_000.0, 'MMBtu')),
    ('140000 m3', (140_000.0, 'm3')),
    ('3,400,000', (3_400_000.0, '')),
    ('n/a', (None, '')),
])
def test_parse_volume(raw, expected):
    assert parse_volume(raw) == expected


def test_parse_bucket():
    assert parse_bucket('Unrealised') == PnLBucket.UNREALIZED
    assert parse_bucket('REALIZED') == PnLBucket.REALIZED
    assert parse_bucket('open') is None


def test_map_columns_uses_header_aliases():
    mapping = map_columns(['Deal Ref', 'Origin', 'Customer', 'Arrival', 'Qty', 'Sales Price', 'P&L'])
    assert mapping == {
        'strategy_name': 0, 'source': 1, 'buyer': 2, 'delivery_date': 3,
        'delivered_volume': 4, 'absolute_sell_price': 5, 'final_total_pnl': 6,
    }


def test_read_table_comma_separated_pads_short_rows():
    table = read_table('Strategy,Buyer,Volume\nA,EuroGas\n')
    assert list(table.columns) == ['Strategy', 'Buyer', 'Volume']
    assert table.iloc[0].tolist() == ['A', 'EuroGas', '']


def test_read_table_empty():
    assert read_table('  \n').empty


def test_parse_row_defaults_windows_to_dates():
    mapping = map_columns(HEADER.split('\t'))
    cells = 'X\tQatar\t\t15-Nov-25\t01-Nov-25\t140000 m3\t\t\t'.split('\t')
    parsed = parse_row(cells, mapping)

    assert parsed['delivery_window_start'] == parsed['delivery_window_end'] == '2025-11-15'
    assert parsed['loading_window_start'] == '2025-11-01'
    assert parsed['volume_unit'] == 'm3'
    assert 'buyer' not in parsed


# --- preview & merge ---

def test_parse_import_text_statuses(sheet, existing, market, rng):
    rows = parse_import_text(sheet, existing, market, rng)
    assert [r.status for r in rows] == [STATUS_UPDATE, STATUS_NO_CHANGE, STATUS_NEW]


def test_update_row_is_repriced_and_diffed(sheet, existing, market, rng):
    update = parse_import_text(sheet, existing, market, rng)[0]

    assert update.profile.id == 'e-1'
    assert update.profile.absolute_sell_price == pytest.approx(12.25)
    assert update.changes['sell_formula'] == {'old': 'TTF - 0.50', 'new': 'TTF + 0.25'}
    assert 'absolute_sell_price' in update.changes
    assert 'id' not in update.changes


def test_strategy_name_match_is_case_insensitive(existing, market, rng):
    text = HEADER + '\nsn2025_qatar_42(pll)\t\t\t\t\t\tJKM + 0.2\t\t'
    row = parse_import_text(text, existing, market, rng)[0]
    assert row.status == STATUS_UPDATE
    assert row.profile.id == 'e-2'
    assert set(row.changes) == {'strategy_name'}


def test_new_row_is_built_and_priced(sheet, existing, market, rng):
    new = parse_import_text(sheet, existing, market, rng)[2]
    profile = new.profile

    assert profile.id not in {'e-1', 'e-2'}
    assert profile.strategy_name == 'NEW-CARGO-1'
    assert profile.delivery_date == '2025-11-15'
    assert profile.delivery_month == 'Nov-25'
    assert profile.volume_unit == 'MMBtu'
    assert profile.loaded_volume == profile.delivered_volume == 3_200_000
    assert profile.pnl_bucket == PnLBucket.REALIZED
    assert profile.absolute_sell_price == pytest.approx(13.7)
    assert profile.sales_revenue == pytest.approx(3_200_000 * 13.7)


def test_new_row_without_name_gets_strategy_name(existing, market, rng):
    text = 'Source\tDelivery Date\tSell Formula\nRas Laffan\t2025-12-01\tJKM'
    profile = parse_import_text(text, existing, market, rng)[0].profile
    assert profile.strategy_name.startswith('SN2025_Ras_')


def test_finalize_import_defaults_to_new_and_update(sheet, existing, market, rng):
    rows = parse_import_text(sheet, existing, market, rng)
    accepted = finalize_import(rows, existing, market)
    assert [p.strategy_name for p in accepted] == ['SN2025_Sabine_11(PLL)', 'NEW-CARGO-1']


def test_finalize_import_restores_ignored_fields(sheet, existing, market, rng):
    rows = parse_import_text(sheet, existing, market, rng)
    accepted = finalize_import(rows, existing, market, selected={0}, ignored={0: {'sell_formula'}})

    assert len(accepted) == 1
    assert accepted[0].sell_formula == 'TTF - 0.50'
    assert accepted[0].absolute_sell_price == pytest.approx(11.5)


def test_finalize_import_ignored_fields_apply_per_row(sheet, existing, market, rng):
    rows = parse_import_text(sheet, existing, market, rng)
    ignored = {0: {'sell_formula', 'absolute_sell_price'}, 2: {'buyer'}}
    updated, new = finalize_import(rows, existing, market, ignored=ignored)

    assert updated.id == 'e-1'
    assert updated.sell_formula == 'TTF - 0.50'
    assert updated.absolute_sell_price == pytest.approx(11.5)
    # only Update rows have a stored value to fall back to
    assert new.buyer == 'AsiaCo'
    assert new.sell_formula == 'JKM + 0.2'


def test_merge_profiles_by_id(sheet, existing, market, rng):
    rows = parse_import_text(sheet, existing, market, rng)
    merged = merge_profiles(existing, finalize_import(rows, existing, market))

    assert [p.id for p in merged][:2] == ['e-1', 'e-2']
    assert len(merged) == 3
    assert merged[0].sell_formula == 'TTF + 0.25'


def test_diff_profiles_ignores_rounding_and_empty_values():
    old = CargoProfile(id='a', absolute_sell_price=11.5, buyer='')
    new = replace(old, id='b', absolute_sell_price=11.5004, src='')
    assert diff_profiles(old, new) == {}
