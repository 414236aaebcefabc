"""
Physio Revenue Simulator — Switzerland
Canton-specific annual revenue of synthetic physiotherapy practices (TPW 2024, KVG)
"""

import streamlit as st
import pandas as pd

import charts
from analysis import fit_revenue_regression, summarize
from simulation import NumericDomainError, SimulationConfig, run_simulation, sensitivity_grid
from tariffs import ConfigurationError, UnknownCodeError, load_reference_tables

# ── Page config ───────────────────────────────────────────────────────────────
st.set_page_config(
    page_title="Physio Revenue Simulator",
    page_icon="🩺",
    layout="wide",
    initial_sidebar_state="expanded",
)

st.markdown("""
<style>
[data-testid="stMetricValue"] { font-size: 1.5rem; font-weight: 700; }
h1 { color: #1e3a5f; }
h2 { color: #1e3a5f; border-bottom: 2px solid #3b82f6; padding-bottom:4px; }
h3 { color: #1e3a5f; }
.stTabs [data-baseweb="tab"] { font-size: 0.92rem; font-weight: 600; }
div[data-testid="stExpander"] > div { background: #f8fafc; }
</style>
""", unsafe_allow_html=True)

TABLES   = load_reference_tables()
DEFAULTS = SimulationConfig()


@st.cache_data(show_spinner=False)
def simulate_cached(n_practices: int, seed: int, working_days: float, chf_rate: float):
    cfg = SimulationConfig(n_practices=n_practices, seed=seed,
                           working_days_per_month=working_days,
                           point_to_chf_rate=chf_rate)
    return run_simulation(cfg, TABLES).to_frame()


# ══════════════════════════════════════════════════════════════════════════════
# SIDEBAR
# ══════════════════════════════════════════════════════════════════════════════
with st.sidebar:
    st.title("🩺 Simulation Setup")

    with st.expander("🎲 Monte Carlo", expanded=True):
        n_practices = st.number_input("Practices to Simulate", 10, 5000,
                                      DEFAULTS.n_practices, 10)
        seed        = st.number_input("Random Seed", 0, 2**31 - 1, DEFAULTS.seed, 1,
                                      help="Same seed + same inputs = identical dataset")

    with st.expander("📅 Calendar & Conversion", expanded=True):
        working_days = st.number_input("Working Days/Month", 10.0, 26.0,
                                       float(DEFAULTS.working_days_per_month), 1.0,
                                       help="Excludes weekends (~5 weeks × 4.2 days)")
        chf_rate     = st.number_input("CHF per Tariff Point", 0.10, 3.00,
                                       float(DEFAULTS.point_to_chf_rate), 0.05,
                                       help="Simplification: 1 point = 1 CHF")

    with st.expander("📋 Reference Tables"):
        st.caption("**Main tariff positions**")
        st.dataframe(pd.DataFrame([{"Code": t.code, "Treatment": t.name,
                                    "Points": t.points, "Share": f"{t.probability:.0%}"}
                                   for t in TABLES.all_tariffs()]),
                     use_container_width=True, hide_index=True)
        st.caption("**Supplements (Zuschläge)**")
        st.dataframe(pd.DataFrame([{"Code": s.code, "Supplement": s.name,
                                    "Value": s.raw_text, "P(trigger)": s.trigger_probability}
                                   for s in TABLES.all_supplements()]),
                     use_container_width=True, hide_index=True)

    st.divider()
    st.caption("**Session**")
    st.caption(f"Cantons: **{len(TABLES.canton_codes())}** · "
               f"Treatments: **{len(TABLES.all_tariffs())}** · "
               f"Supplements: **{len(TABLES.all_supplements())}**")

# ── Run ───────────────────────────────────────────────────────────────────────
try:
    df = simulate_cached(int(n_practices), int(seed), float(working_days), float(chf_rate))
except ConfigurationError as exc:
    st.error(f"Invalid inputs:\n\n{exc}")
    st.stop()
except (UnknownCodeError, NumericDomainError) as exc:
    st.error(f"Simulation failed: {exc}")
    st.stop()

cfg = SimulationConfig(n_practices=int(n_practices), seed=int(seed),
                       working_days_per_month=float(working_days),
                       point_to_chf_rate=float(chf_rate))
summaries = summarize(df, TABLES)
grid      = sensitivity_grid(cfg, TABLES)

st.title("Physiotherapy Practice Revenue — Switzerland")
st.caption(f"{len(df)} simulated practices · seed {int(seed)} · "
           f"{working_days:g} working days/month · {chf_rate:g} CHF/point")

o = summaries.overall.iloc[0]
m1, m2, m3, m4, m5 = st.columns(5)
m1.metric("Mean Revenue",   f"CHF {o['mean_revenue']:,.0f}")
m2.metric("Median Revenue", f"CHF {o['median_revenue']:,.0f}")
m3.metric("SD",             f"CHF {o['sd_revenue']:,.0f}")
m4.metric("Min",            f"CHF {o['min_revenue']:,.0f}")
m5.metric("Max",            f"CHF {o['max_revenue']:,.0f}")

tabs = st.tabs(["📈 Distribution", "🗺️ Cantons", "💆 Treatments", "👥 Staffing",
                "📐 Regression", "🎛️ Sensitivity", "📄 Data"])

# ══════════════════════════════════════════════════════════════════════════════
# TAB 1 — Distribution
# ══════════════════════════════════════════════════════════════════════════════
with tabs[0]:
    st.subheader("Annual Revenue Distribution")
    st.plotly_chart(charts.revenue_distribution(df), use_container_width=True)
    supp = df[(df["supplement_points_annual"] > 0) | (df["supplement_flat_annual"] > 0)]
    c1, c2, c3 = st.columns(3)
    c1.metric("Practices with Supplements", f"{len(supp)} / {len(df)}")
    c2.metric("Avg Point Supplements", f"CHF {df['supplement_points_annual'].mean():,.0f}")
    c3.metric("Avg Flat Supplements",  f"CHF {df['supplement_flat_annual'].mean():,.2f}")

# ══════════════════════════════════════════════════════════════════════════════
# TAB 2 — Cantons
# ══════════════════════════════════════════════════════════════════════════════
with tabs[1]:
    st.subheader("Revenue by Canton")
    st.plotly_chart(charts.revenue_by_canton(df), use_container_width=True)
    st.dataframe(summaries.by_canton.round(0), use_container_width=True, hide_index=True)
    st.download_button("⬇️ Download Canton Summary CSV",
                       summaries.by_canton.to_csv(index=False),
                       "results_by_canton.csv", "text/csv")

# ══════════════════════════════════════════════════════════════════════════════
# TAB 3 — Treatments
# ══════════════════════════════════════════════════════════════════════════════
with tabs[2]:
    st.subheader("Revenue by Treatment Type")
    st.plotly_chart(charts.revenue_by_treatment(df), use_container_width=True)
    st.dataframe(summaries.by_treatment.round(0), use_container_width=True, hide_index=True)
    st.download_button("⬇️ Download Treatment Summary CSV",
                       summaries.by_treatment.to_csv(index=False),
                       "results_by_treatment.csv", "text/csv")

# ══════════════════════════════════════════════════════════════════════════════
# TAB 4 — Staffing
# ══════════════════════════════════════════════════════════════════════════════
with tabs[3]:
    st.subheader("Staffing & Volume")
    col_l, col_r = st.columns(2)
    with col_l:
        st.plotly_chart(charts.physios_vs_revenue(df), use_container_width=True)
    with col_r:
        st.plotly_chart(charts.treatments_vs_revenue(df), use_container_width=True)
    st.dataframe(summaries.by_physio.round(0), use_container_width=True, hide_index=True)
    st.download_button("⬇️ Download Staffing Summary CSV",
                       summaries.by_physio.to_csv(index=False),
                       "results_by_physio.csv", "text/csv")

# ══════════════════════════════════════════════════════════════════════════════
# TAB 5 — Regression
# ══════════════════════════════════════════════════════════════════════════════
with tabs[4]:
    st.subheader("Revenue Drivers (OLS)")
    try:
        reg = fit_revenue_regression(df, TABLES)
    except ValueError as exc:
        st.warning(f"Regression not available: {exc}")
    else:
        eff = reg.interpretation()
        r1, r2, r3, r4 = st.columns(4)
        r1.metric("+1 Physiotherapist",   f"CHF {eff['per_additional_physio']:,.0f}")
        r2.metric("+1 Treatment/Day",     f"CHF {eff['per_additional_treatment']:,.0f}")
        r3.metric("+0.1 TPW",             f"CHF {eff['per_tpw_plus_0_1']:,.0f}")
        r4.metric("R²",                   f"{eff['r_squared']:.4f}")
        s1, s2, s3 = st.columns(3)
        s1.metric("Adjusted R²",          f"{eff['adj_r_squared']:.4f}")
        s2.metric("Residual SE",          f"CHF {eff['residual_se']:,.0f}")
        s3.metric("Residual df",          f"{reg.df_resid}")
        baseline_name = TABLES.tariff_for(reg.baseline).name
        st.caption(f"Treatment dummies relative to baseline **{reg.baseline} {baseline_name}**.")
        if reg.aliased:
            st.caption("Not estimable (collinear with other terms): "
                       + ", ".join(reg.aliased))
        st.dataframe(reg.coefficient_table(), use_container_width=True, hide_index=True)

# ══════════════════════════════════════════════════════════════════════════════
# TAB 6 — Sensitivity
# ══════════════════════════════════════════════════════════════════════════════
with tabs[5]:
    st.subheader("Staffing Scenarios (7301 in ZH, no supplements)")
    st.plotly_chart(charts.sensitivity_lines(grid), use_container_width=True)
    st.dataframe(grid.pivot(index="n_treatments_per_day", columns="n_physio",
                            values="expected_revenue").round(0),
                 use_container_width=True)

# ══════════════════════════════════════════════════════════════════════════════
# TAB 7 — Data
# ══════════════════════════════════════════════════════════════════════════════
with tabs[6]:
    st.subheader("Simulated Practices")
    st.dataframe(df, use_container_width=True, hide_index=True)
    st.download_button("⬇️ Download Dataset CSV", df.to_csv(index=False),
                       "practices.csv", "text/csv")
