"""
plotly figures for the simulated practice dataset.

Used by the Streamlit dashboard (app.py) and by the batch export (export.py).
"""

from typing import Optional, Sequence, Tuple

import numpy as np
import pandas as pd
import plotly.graph_objects as go
from scipy.stats import gaussian_kde

REVENUE_COLOR = "#2E86AB"
DENSITY_COLOR = "darkred"
TPW_LOW       = (255, 107, 107)   # #FF6B6B
TPW_HIGH      = (78, 205, 196)    # #4ECDC4
TPW_COLORSCALE = [[0.0, "#FF6B6B"], [1.0, "#4ECDC4"]]
LINE_COLORS   = ["#1e3a5f", "#3b82f6", "#10b981", "#f59e0b", "#ef4444",
                 "#6366f1", "#dc2626", "#94a3b8"]


def _tpw_color(value: float, lo: float, hi: float) -> str:
    t = 0.5 if hi <= lo else (value - lo) / (hi - lo)
    r, g, b = (int(round(a + (b_ - a) * t)) for a, b_ in zip(TPW_LOW, TPW_HIGH))
    return f"rgb({r},{g},{b})"


def _fit_line(x: Sequence[float], y: Sequence[float]) -> Optional[Tuple[np.ndarray, np.ndarray]]:
    """Least-squares line through (x, y); None if x has no spread."""
    x = np.asarray(x, dtype=float)
    y = np.asarray(y, dtype=float)
    if len(x) < 2 or np.ptp(x) == 0:
        return None
    slope, intercept = np.polyfit(x, y, 1)
    xs = np.linspace(x.min(), x.max(), 50)
    return xs, slope * xs + intercept


def _density_curve(values: Sequence[float], bin_size: float,
                   points: int = 200) -> Optional[Tuple[np.ndarray, np.ndarray]]:
    """Gaussian KDE scaled to histogram counts; None without spread."""
    v = np.asarray(values, dtype=float)
    v = v[np.isfinite(v)]
    if len(v) < 2 or np.ptp(v) == 0:
        return None
    kde = gaussian_kde(v)
    xs  = np.linspace(v.min(), v.max(), points)
    return xs, kde(xs) * len(v) * bin_size


def revenue_distribution(df: pd.DataFrame, bins: int = 30) -> go.Figure:
    """Histogram with a density overlay and mean/median markers."""
    rev = df["total_annual_revenue"]
    lo, hi = float(rev.min()), float(rev.max())
    size = (hi - lo) / bins if hi > lo else 1.0
    fig = go.Figure()
    fig.add_histogram(x=rev, xbins=dict(start=lo, end=hi + size, size=size), name="Practices",
                      marker=dict(color=REVENUE_COLOR, line=dict(color="black", width=1)),
                      opacity=0.7)
    curve = _density_curve(rev, size)
    if curve is not None:
        fig.add_scatter(x=curve[0], y=curve[1], mode="lines", name="Density",
                        line=dict(color=DENSITY_COLOR, width=2))
    fig.add_vline(x=rev.mean(), line_dash="dash", line_color=DENSITY_COLOR,
                  annotation_text=f"Mean {rev.mean():,.0f}")
    fig.add_vline(x=rev.median(), line_dash="dot", line_color="#1e3a5f",
                  annotation_text=f"Median {rev.median():,.0f}",
                  annotation_position="bottom right")
    fig.update_layout(height=420, template="plotly_white", showlegend=False,
                      title=f"Distribution of Annual Revenue (n={len(df)})",
                      xaxis_title="Annual Revenue (CHF)", yaxis_title="Frequency")
    return fig


def revenue_by_canton(df: pd.DataFrame) -> go.Figure:
    """Box per canton, ordered by median revenue, coloured by TPW."""
    keys   = df["canton_code"].astype(str)
    order  = (df.assign(_k=keys).groupby("_k")["total_annual_revenue"]
              .median().sort_values(ascending=False).index.tolist())
    tpw    = df.assign(_k=keys).groupby("_k")["multiplier"].first()
    lo, hi = float(df["multiplier"].min()), float(df["multiplier"].max())

    fig = go.Figure()
    for code in order:
        color = _tpw_color(float(tpw[code]), lo, hi)
        fig.add_box(y=df.loc[keys == code, "total_annual_revenue"], name=code,
                    marker_color=color, fillcolor=color, line=dict(color="#334155"),
                    opacity=0.8, showlegend=False,
                    hovertemplate=f"{code} (TPW {tpw[code]:.2f})<br>%{{y:,.0f}} CHF<extra></extra>")
    fig.update_layout(height=420, template="plotly_white",
                      title="Annual Revenue by Canton",
                      xaxis_title="Canton", yaxis_title="Annual Revenue (CHF)",
                      xaxis_tickangle=-45)
    return fig


def _scatter_with_fit(df: pd.DataFrame, x_col: str, title: str, x_title: str,
                      line_color: str) -> go.Figure:
    fig = go.Figure()
    fig.add_scatter(x=df[x_col], y=df["total_annual_revenue"], mode="markers",
                    name="Practices", opacity=0.6,
                    marker=dict(size=9, color=df["multiplier"], colorscale=TPW_COLORSCALE,
                                showscale=True, colorbar=dict(title="TPW")))
    fit = _fit_line(df[x_col], df["total_annual_revenue"])
    if fit is not None:
        fig.add_scatter(x=fit[0], y=fit[1], mode="lines", name="Linear fit",
                        line=dict(color=line_color, width=2.5))
    fig.update_layout(height=420, template="plotly_white", title=title,
                      xaxis_title=x_title, yaxis_title="Annual Revenue (CHF)",
                      legend=dict(orientation="h", y=-0.2))
    return fig


def physios_vs_revenue(df: pd.DataFrame) -> go.Figure:
    return _scatter_with_fit(df, "n_physio", "Number of Physiotherapists vs. Annual Revenue",
                             "Number of Physiotherapists", "darkblue")


def treatments_vs_revenue(df: pd.DataFrame) -> go.Figure:
    return _scatter_with_fit(df, "n_treatments_per_day",
                             "Daily Treatments per Physio vs. Annual Revenue",
                             "Treatments per Physio per Day", "darkred")


def revenue_by_treatment(df: pd.DataFrame) -> go.Figure:
    """Horizontal box per tariff position, highest median on top."""
    names = df["treatment_name"].astype(str)
    order = (df.assign(_n=names).groupby("_n")["total_annual_revenue"]
             .median().sort_values(ascending=True).index.tolist())
    fig = go.Figure()
    for i, name in enumerate(order):
        fig.add_box(x=df.loc[names == name, "total_annual_revenue"], name=name,
                    orientation="h", marker_color=LINE_COLORS[i % len(LINE_COLORS)],
                    opacity=0.75, showlegend=False)
    fig.update_layout(height=420, template="plotly_white",
                      title="Annual Revenue by Treatment Type",
                      xaxis_title="Annual Revenue (CHF)", yaxis_title="Treatment Type")
    return fig


def sensitivity_lines(grid: pd.DataFrame) -> go.Figure:
    """Expected revenue vs head count, one line per daily treatment volume."""
    fig = go.Figure()
    for i, (n_beh, g) in enumerate(grid.groupby("n_treatments_per_day")):
        g = g.sort_values("n_physio")
        fig.add_scatter(x=g["n_physio"], y=g["expected_revenue"], mode="lines+markers",
                        name=f"{n_beh}/day",
                        line=dict(color=LINE_COLORS[i % len(LINE_COLORS)], width=2.5),
                        marker=dict(size=8))
    fig.update_layout(height=420, template="plotly_white",
                      title="Sensitivity: Revenue Under Different Staffing Scenarios",
                      xaxis_title="Number of Physiotherapists",
                      yaxis_title="Expected Annual Revenue (CHF)",
                      legend_title_text="Treatments/Day")
    return fig


def standard_figures(df: pd.DataFrame, grid: pd.DataFrame):
    """The six standard plots, keyed by export file stem."""
    return {
        "01_revenue_distribution":  revenue_distribution(df),
        "02_revenue_by_canton":     revenue_by_canton(df),
        "03_physios_vs_revenue":    physios_vs_revenue(df),
        "04_treatments_vs_revenue": treatments_vs_revenue(df),
        "05_revenue_by_treatment":  revenue_by_treatment(df),
        "06_sensitivity_analysis":  sensitivity_lines(grid),
    }
