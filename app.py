"""
Cargo P&L Desk
Tabs: Dashboard | Cargo Book | Cargo Entry | Market & Curves | Bulk Import | Trade Matching
"""

from datetime import date

import numpy as np
import pandas as pd
import plotly.graph_objects as go
import streamlit as st
from scipy import interpolate

from config_loader import load_config
from exposure_engine import (
    exposure_table, pnl_breakdown, portfolio_stats, profiles_to_workbook,
)
from formula_engine import detect_unit, evaluate_formula
from import_engine import (
    STATUS_NO_CHANGE, STATUS_UPDATE, finalize_import, merge_profiles, parse_import_text,
)
from logging_config import setup_logging
from market_data import CURVE_COLUMNS, curve_frame, parse_curve_text, simulate_market_refresh
from profile_engine import (
    VOLUME_UNITS, CargoProfile, PnLBucket, actualize_profile, apply_form_edits,
    apply_match, delete_profiles, recalculate_profile,
    refresh_profiles, suggest_matches, unmatched_buys, unmatched_sells,
)
from storage import JsonStore, load_market, load_profiles, save_market, save_profiles

st.set_page_config(
    page_title="Cargo P&L Desk",
    page_icon=".",
    layout="wide",
    initial_sidebar_state="expanded"
)

STYLES = """
<style>
    .stApp { background-color: #f8f9fc; }
    div[data-testid="metric-container"] {
        background: #ffffff;
        border: 1px solid #e2e6ed; border-radius: 12px; padding: 20px;
        box-shadow: 0 2px 8px rgba(0,0,0,0.06);
    }
    section[data-testid="stSidebar"] { background: #ffffff; border-right: 1px solid #e2e6ed; }
    h1, h2, h3 { color: #1a2332 !important; }
    .gain { color: #16a34a !important; }
    .loss { color: #dc2626 !important; }
</style>
"""
st.markdown(STYLES, unsafe_allow_html=True)

# Sample book used when nothing has been saved yet; prices come from the formulas
DEMO_PROFILES = [
    {
        'id': '1', 'source': 'North Sea', 'strategy_name': 'SN2023_NorthSea_01(PLL)',
        'buyer': 'Global Energy Corp', 'optimized': True, 'incoterms': 'DES', 'src': 'SRC-001',
        'delivery_date': '2023-11-15', 'delivery_month': 'Nov-23', 'delivered_volume': 50000,
        'sell_formula': '95% NBP', 'loaded_volume': 50000, 'loading_date': '2023-10-20',
        'loading_month': 'Oct-23', 'buy_formula': 'TTF - 1.5', 'pnl_bucket': 'Realized',
        'reconciled_purchase_cost': 5260000, 'final_total_cost': 5300000,
        'total_hedging_pnl': -50000,
    },
    {
        'id': '2', 'source': 'US Gulf', 'strategy_name': 'SN2024_USGulf_05(PLL)',
        'buyer': 'EuroGas Ltd', 'incoterms': 'FOB', 'src': 'SRC-002',
        'delivery_date': '2024-01-10', 'delivery_month': 'Jan-24', 'delivered_volume': 75000,
        'sell_formula': 'JKM + 0.5', 'loaded_volume': 75000, 'loading_date': '2023-12-15',
        'loading_month': 'Dec-23', 'buy_formula': 'HH + 20%', 'pnl_bucket': 'Unrealized',
    },
]

GRID_COLOR = 'rgba(0,0,0,0.07)'
FONT_COLOR = '#4a5568'
INDEX_COLORS = {'JKM': '#2563eb', 'TTF': '#16a34a', 'NBP': '#f59e0b', 'HH': '#dc2626',
                'Oil': '#1a2332', 'AECO': '#8b5cf6', 'Other': '#94a3b8'}


def chart_layout(fig, title, height=450, yaxis_title='Price'):
    fig.update_layout(
        title=dict(text=title, font=dict(size=16, color='#1a2332'), x=0.5),
        xaxis=dict(gridcolor=GRID_COLOR, tickfont=dict(color=FONT_COLOR, size=11)),
        yaxis=dict(title=yaxis_title, gridcolor=GRID_COLOR, tickfont=dict(color=FONT_COLOR, size=11),
                   title_font=dict(color=FONT_COLOR)),
        plot_bgcolor='#ffffff', paper_bgcolor='#ffffff',
        legend=dict(orientation='h', yanchor='bottom', y=1.02, x=0.5, xanchor='center'),
        hovermode='x unified', margin=dict(l=60, r=40, t=80, b=50), height=height
    )
    return fig


def create_exposure_chart(exposure):
    fig = go.Figure()
    for col in exposure.columns:
        if col == 'Month':
            continue
        fig.add_trace(go.Bar(x=exposure['Month'], y=exposure[col], name=col,
                             marker=dict(color=INDEX_COLORS.get(col, '#94a3b8')),
                             hovertemplate='%{x}<br>' + col + ': %{y:,.0f} MMBtu<extra></extra>'))
    fig.update_layout(barmode='stack')
    return chart_layout(fig, '<b>Open Exposure by Pricing Month</b>', yaxis_title='Volume (MMBtu)')


def create_pnl_chart(df):
    colors = ['#16a34a' if v >= 0 else '#dc2626' for v in df['final_total_pnl']]
    fig = go.Figure()
    fig.add_trace(go.Bar(x=df['strategy_name'], y=df['final_total_pnl'],
                         marker=dict(color=colors, line=dict(color='white', width=0.5)),
                         hovertemplate='<b>%{x}</b><br>P&L: $%{y:,.0f}<extra></extra>'))
    fig.add_hline(y=0, line=dict(color='#94a3b8', width=1))
    return chart_layout(fig, '<b>Total P&L by Cargo</b>', yaxis_title='P&L ($)')


def smooth_curve(x, prices, points=120):
    """Cubic line through the curve points for display; linear when too few points."""
    x = np.asarray(x, dtype=float)
    prices = np.asarray(prices, dtype=float)
    if len(x) < 2:
        return x, prices
    kind = 'cubic' if len(x) >= 4 else 'linear'
    f = interpolate.interp1d(x, prices, kind=kind)
    xs = np.linspace(x[0], x[-1], points)
    return xs, f(xs)


def create_curve_chart(frame, codes):
    fig = go.Figure()
    months = frame['Month'].tolist()
    for code in codes:
        valid = frame[['Month', code]].dropna()
        if valid.empty:
            continue
        positions = [months.index(m) for m in valid['Month']]
        xs, ys = smooth_curve(positions, valid[code].values)
        fig.add_trace(go.Scatter(x=xs, y=ys, mode='lines', name=code, hoverinfo='skip',
                                 line=dict(width=2, color=INDEX_COLORS.get(code))))
        fig.add_trace(go.Scatter(x=positions, y=valid[code], mode='markers', showlegend=False,
                                 marker=dict(size=6, color=INDEX_COLORS.get(code)),
                                 hovertemplate=code + ': %{y:.2f}<extra></extra>'))
    fig.update_xaxes(tickmode='array', tickvals=list(range(len(months))), ticktext=months)
    return chart_layout(fig, '<b>Forward Curve</b>')


# --- SESSION STATE ---

def init_state():
    if 'market' in st.session_state:
        return
    config = load_config()
    setup_logging(config.get('log_level', 'INFO'))
    store = JsonStore(config['storage_dir'])
    market = load_market(store, config['spot_prices'])
    profiles = load_profiles(store)
    if not profiles:
        profiles = [recalculate_profile(CargoProfile.from_dict(d), market) for d in DEMO_PROFILES]
    st.session_state.config = config
    st.session_state.store = store
    st.session_state.market = market
    st.session_state.profiles = profiles
    st.session_state.import_rows = None


def persist():
    save_profiles(st.session_state.store, st.session_state.profiles)
    save_market(st.session_state.store, st.session_state.market)


def upsert(profile):
    profiles = st.session_state.profiles
    if any(p.id == profile.id for p in profiles):
        st.session_state.profiles = [profile if p.id == profile.id else p for p in profiles]
    else:
        st.session_state.profiles = [profile] + profiles
    persist()


# --- TABS ---

def render_dashboard(profiles):
    stats = portfolio_stats(profiles)
    c1, c2, c3, c4 = st.columns(4)
    c1.metric("Total Net P&L", f"${stats['total_pnl']:,.0f}")
    c2.metric("Realized P&L", f"${stats['realized_pnl']:,.0f}")
    c3.metric("Unrealized P&L", f"${stats['unrealized_pnl']:,.0f}")
    c4.metric("Total Volume", f"{stats['total_volume']:,.0f}")

    exposure = exposure_table(profiles)
    if len(exposure.columns) > 1:
        st.plotly_chart(create_exposure_chart(exposure), use_container_width=True)
    else:
        st.info("No open exposure after today.")


def render_book(profiles, market):
    f1, f2, f3 = st.columns(3)
    bucket = f1.selectbox("Bucket", ['All'] + [b.value for b in PnLBucket], key='bk_bucket')
    start = f2.date_input("Delivery from", value=None, key='bk_start')
    end = f3.date_input("Delivery to", value=None, key='bk_end')
    df, totals = pnl_breakdown(profiles, bucket,
                               start.isoformat() if start else None,
                               end.isoformat() if end else None)

    t1, t2, t3 = st.columns(3)
    t1.metric("Revenue", f"${totals['revenue']:,.0f}")
    t2.metric("Cost", f"${totals['cost']:,.0f}")
    t3.metric("P&L", f"${totals['pnl']:,.0f}")
    if df.empty:
        st.info("No data matches the selected filters.")
        return

    st.plotly_chart(create_pnl_chart(df), use_container_width=True)
    st.dataframe(df[['strategy_name', 'pnl_bucket', 'delivery_date', 'sell_formula',
                     'absolute_sell_price', 'buy_formula', 'absolute_buy_price',
                     'final_physical_pnl', 'total_hedging_pnl', 'final_total_pnl']],
                 use_container_width=True, hide_index=True)

    open_cargoes = {p.strategy_name or p.id: p for p in profiles if not p.is_realized}
    if open_cargoes:
        a1, a2 = st.columns([3, 1])
        name = a1.selectbox("Actualize cargo", list(open_cargoes), key='bk_actualize')
        if a2.button("Actualize", use_container_width=True, type="primary"):
            upsert(actualize_profile(open_cargoes[name], market))
            st.success(f"{name} actualized")
            st.rerun()

    labels = {p.id: p.strategy_name or p.id for p in profiles}
    r1, r2 = st.columns([3, 1])
    doomed = r1.multiselect("Delete cargoes", list(labels), format_func=labels.get, key='bk_delete')
    if r2.button(f"Delete {len(doomed)}", use_container_width=True, disabled=not doomed):
        st.session_state.profiles = delete_profiles(profiles, doomed)
        persist()
        st.success(f"{len(doomed)} cargoes deleted")
        st.rerun()

    st.download_button("Download workbook", profiles_to_workbook(profiles),
                       file_name=f"cargo_book_{date.today().isoformat()}.xlsx")


def render_entry(profiles, market):
    options = ['<New cargo>'] + [p.strategy_name or p.id for p in profiles]
    choice = st.selectbox("Cargo", options, key='entry_choice')
    current = CargoProfile() if choice == '<New cargo>' else \
        next(p for p in profiles if (p.strategy_name or p.id) == choice)

    with st.form('cargo_form'):
        st.markdown("**Deal**")
        c1, c2, c3 = st.columns(3)
        strategy = c1.text_input("Strategy name", current.strategy_name)
        source = c2.text_input("Source", current.source)
        buyer = c3.text_input("Buyer", current.buyer)
        o1, o2, o3 = st.columns(3)
        incoterms = o1.text_input("Incoterms", current.incoterms)
        src = o2.text_input("SRC code", current.src)
        optimized = o3.checkbox("Optimized", value=current.optimized)

        st.markdown("**Logistics** (dates as YYYY-MM-DD)")
        l1, l2, l3 = st.columns(3)
        loading_date = l1.text_input("Loading date", current.loading_date)
        loading_start = l2.text_input("Loading window start", current.loading_window_start)
        loading_end = l3.text_input("Loading window end", current.loading_window_end)
        d1, d2, d3 = st.columns(3)
        delivery_date = d1.text_input("Delivery date", current.delivery_date)
        delivery_start = d2.text_input("Delivery window start", current.delivery_window_start)
        delivery_end = d3.text_input("Delivery window end", current.delivery_window_end)
        v1, v2, v3 = st.columns(3)
        loaded = v1.number_input("Loaded volume", value=float(current.loaded_volume), step=1000.0)
        delivered = v2.number_input("Delivered volume", value=float(current.delivered_volume), step=1000.0)
        unit_options = [''] + list(VOLUME_UNITS)
        unit = v3.selectbox("Volume unit", unit_options, index=unit_options.index(current.volume_unit)
                            if current.volume_unit in unit_options else 0)

        st.markdown("**Pricing**")
        p1, p2 = st.columns(2)
        buy_formula = p1.text_input("Buy formula", current.buy_formula)
        sell_formula = p2.text_input("Sell formula", current.sell_formula)
        p3, p4 = st.columns(2)
        buy_price = p3.number_input("Buy price", value=float(current.absolute_buy_price), format="%.3f")
        sell_price = p4.number_input("Sell price", value=float(current.absolute_sell_price), format="%.3f")

        st.markdown("**Financials**")
        buckets = [b.value for b in PnLBucket]
        bucket = st.selectbox("Status", buckets, index=buckets.index(current.pnl_bucket.value))
        f1, f2, f3 = st.columns(3)
        sales_revenue = f1.number_input("Sales revenue", value=float(current.sales_revenue))
        final_sales = f2.number_input("Final sales revenue", value=float(current.final_sales_revenue))
        reconciled_sales = f3.number_input("Reconciled sales revenue",
                                           value=float(current.reconciled_sales_revenue))
        f4, f5, f6 = st.columns(3)
        reconciled_cost = f4.number_input("Reconciled purchase cost",
                                          value=float(current.reconciled_purchase_cost))
        final_cost = f5.number_input("Final total cost", value=float(current.final_total_cost))
        hedging = f6.number_input("Hedging P&L", value=float(current.total_hedging_pnl), step=1000.0)
        submitted = st.form_submit_button("Save cargo", type="primary")

    if buy_formula or sell_formula:
        buy_px = evaluate_formula(buy_formula, market, loading_date or delivery_date) if buy_formula else None
        sell_px = evaluate_formula(sell_formula, market, delivery_date) if sell_formula else None
        unit_label = unit or detect_unit(sell_formula or buy_formula)
        st.caption(f"Buy: {buy_px if buy_px is not None else 'no price'} | "
                   f"Sell: {sell_px if sell_px is not None else 'no price'} | unit {unit_label}")

    if submitted:
        saved = apply_form_edits(current, {
            'strategy_name': strategy, 'source': source, 'buyer': buyer,
            'incoterms': incoterms, 'src': src, 'optimized': optimized,
            'loading_date': loading_date, 'loading_window_start': loading_start,
            'loading_window_end': loading_end, 'delivery_date': delivery_date,
            'delivery_window_start': delivery_start, 'delivery_window_end': delivery_end,
            'loaded_volume': loaded, 'delivered_volume': delivered, 'volume_unit': unit,
            'buy_formula': buy_formula, 'sell_formula': sell_formula,
            'absolute_buy_price': buy_price, 'absolute_sell_price': sell_price,
            'pnl_bucket': bucket, 'sales_revenue': sales_revenue,
            'final_sales_revenue': final_sales, 'reconciled_sales_revenue': reconciled_sales,
            'reconciled_purchase_cost': reconciled_cost, 'final_total_cost': final_cost,
            'total_hedging_pnl': hedging,
        }, market)
        upsert(saved)
        st.success("Cargo saved")
        st.rerun()


def render_market(profiles, market):
    spot = market.get_spot_prices()
    st.dataframe(pd.DataFrame([spot]), use_container_width=True, hide_index=True)
    if st.button("Refresh market data"):
        simulate_market_refresh(market, max_move=st.session_state.config['market_refresh_max_move'])
        st.session_state.profiles = refresh_profiles(profiles, market)
        persist()
        st.rerun()

    st.markdown("### Forward Curve")
    dates = market.available_curve_dates()
    if dates:
        as_of = st.selectbox("Curve as of", dates, index=dates.index(market.selected_curve_date))
        if as_of != market.selected_curve_date:
            market.select_curve(as_of)
            st.session_state.profiles = refresh_profiles(profiles, market)
            persist()
            st.rerun()
        frame = curve_frame(market.get_forward_curve())
        codes = st.multiselect("Indices", [c for c in CURVE_COLUMNS if c in frame.columns],
                               default=[c for c in ('TTF', 'JKM', 'NBP', 'HH') if c in frame.columns])
        st.plotly_chart(create_curve_chart(frame, codes), use_container_width=True)

    with st.form('curve_form'):
        curve_date = st.date_input("As-of date", value=date.today())
        text = st.text_area("Paste curve (Month, " + ", ".join(CURVE_COLUMNS) + ")", height=200)
        saved = st.form_submit_button("Save curve", type="primary")
    if saved:
        rows = parse_curve_text(text)
        if not rows:
            st.error("Could not parse valid rows. Check date format.")
            return
        market.save_forward_curve(curve_date, rows)
        st.session_state.profiles = refresh_profiles(profiles, market)
        persist()
        st.success(f"Saved {len(rows)} curve months and repriced open cargoes")
        st.rerun()


def render_import(profiles, market):
    text = st.text_area("Paste deal sheet with header row", height=200, key='import_text')
    if st.button("Review changes"):
        st.session_state.import_rows = parse_import_text(text, profiles, market)

    rows = st.session_state.import_rows
    if not rows:
        return
    preview = pd.DataFrame([{
        'Status': r.status, 'Strategy': r.profile.strategy_name,
        'Delivery': r.profile.delivery_date, 'Volume': r.profile.delivered_volume,
        'P&L': r.profile.final_total_pnl, 'Changed': ', '.join(r.changes),
    } for r in rows])
    st.dataframe(preview, use_container_width=True)
    actionable = [i for i, r in enumerate(rows) if r.status != STATUS_NO_CHANGE]
    selected = st.multiselect("Rows to import", actionable, default=actionable,
                              format_func=lambda i: f"{i}: {rows[i].profile.strategy_name}")

    ignored = {}
    for i in selected:
        row = rows[i]
        if row.status != STATUS_UPDATE or not row.changes:
            continue
        keep = st.multiselect(f"Keep current values for {row.profile.strategy_name}",
                              list(row.changes), key=f'import_keep_{i}',
                              format_func=lambda name, c=row.changes:
                              f"{name}: {c[name]['old']} -> {c[name]['new']}")
        if keep:
            ignored[i] = set(keep)

    if st.button(f"Confirm {len(selected)} updates", type="primary", disabled=not selected):
        imported = finalize_import(rows, profiles, market, selected=set(selected), ignored=ignored)
        st.session_state.profiles = merge_profiles(profiles, imported)
        st.session_state.import_rows = None
        persist()
        st.success(f"{len(imported)} cargoes processed")
        st.rerun()


def render_matching(profiles, market):
    buys = {p.strategy_name or p.id: p for p in unmatched_buys(profiles)}
    sells = {p.strategy_name or p.id: p for p in unmatched_sells(profiles)}
    if not buys or not sells:
        st.info("Need at least one open purchase and one open sale to match.")
        return
    suggestions = suggest_matches(profiles)
    if suggestions:
        st.caption("Suggested: " + ", ".join(
            f"{b.strategy_name} -> {s.strategy_name}" for b, s in suggestions))
    c1, c2 = st.columns(2)
    buy_name = c1.selectbox("Buy (source)", list(buys))
    sell_name = c2.selectbox("Sell (buyer)", list(sells))
    if st.button("Confirm match", type="primary"):
        st.session_state.profiles, _ = apply_match(profiles, buys[buy_name], sells[sell_name], market)
        persist()
        st.success("Trades successfully matched")
        st.rerun()


def main():
    init_state()
    st.markdown("<h1 style='color: #2563eb; text-align: center;'>Cargo P&L Desk</h1>",
                unsafe_allow_html=True)
    profiles = st.session_state.profiles
    market = st.session_state.market

    tabs = st.tabs(["Dashboard", "Cargo Book", "Cargo Entry", "Market & Curves",
                    "Bulk Import", "Trade Matching"])
    with tabs[0]:
        render_dashboard(profiles)
    with tabs[1]:
        render_book(profiles, market)
    with tabs[2]:
        render_entry(profiles, market)
    with tabs[3]:
        render_market(profiles, market)
    with tabs[4]:
        render_import(profiles, market)
    with tabs[5]:
        render_matching(profiles, market)


if __name__ == "__main__":
    main()
