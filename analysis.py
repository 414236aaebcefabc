"""
Summary statistics and regression on the simulated practice dataset.

Grouped summaries (overall / canton / tariff position / head count) and an
OLS fit of total revenue on staffing, volume, TPW, points and treatment
dummies. Dummy encoding is explicit: the most probable tariff position is the
baseline and every other position gets one 0/1 column, whether or not it was
sampled.
"""

from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

import numpy as np
import pandas as pd
from scipy.stats import t as student_t
from sklearn.linear_model import LinearRegression

from tariffs import ReferenceTables, load_reference_tables

REVENUE_COL = "total_annual_revenue"
NUMERIC_PREDICTORS = ["n_physio", "n_treatments_per_day", "multiplier", "points"]
GROUP_STAT_COLS = ["n_practices", "mean_revenue", "median_revenue", "sd_revenue"]
INTERCEPT = "(Intercept)"
COEF_TABLE_COLS = ["term", "estimate", "std_error", "t_value", "p_value"]


# ══════════════════════════════════════════════════════════════════════════════
# SUMMARIES
# ══════════════════════════════════════════════════════════════════════════════
def overall_summary(df: pd.DataFrame) -> pd.DataFrame:
    rev = df[REVENUE_COL]
    return pd.DataFrame([{
        "metric":         "Overall",
        "n_practices":    int(rev.count()),
        "mean_revenue":   rev.mean(),
        "median_revenue": rev.median(),
        "sd_revenue":     rev.std(ddof=1),
        "min_revenue":    rev.min(),
        "max_revenue":    rev.max(),
    }])


def _group_stats(df: pd.DataFrame, key: str) -> pd.DataFrame:
    """count / mean / median / sample SD of revenue per key value."""
    keys = df[key].astype(object) if isinstance(df[key].dtype, pd.CategoricalDtype) else df[key]
    g = df[REVENUE_COL].groupby(keys, sort=False)
    out = pd.DataFrame({
        "n_practices":    g.count(),
        "mean_revenue":   g.mean(),
        "median_revenue": g.median(),
        "sd_revenue":     g.std(ddof=1),
    })
    out.index.name = key
    return out


def _with_reference_groups(stats: pd.DataFrame, all_keys: Iterable,
                           include_empty: bool) -> pd.DataFrame:
    """
    Reindex onto every reference key plus every observed key when
    include_empty; empty groups count 0 and no observed group is dropped.
    """
    if not include_empty:
        return stats
    name  = stats.index.name
    stats = stats.reindex(list(dict.fromkeys([*all_keys, *stats.index])))
    stats.index.name = name
    stats["n_practices"] = stats["n_practices"].fillna(0)
    return stats


def _finish(stats: pd.DataFrame) -> pd.DataFrame:
    stats = stats.reset_index()
    stats["n_practices"] = stats["n_practices"].astype("int64")
    return stats


def summary_by_canton(df: pd.DataFrame, tables: Optional[ReferenceTables] = None,
                      include_empty: bool = False) -> pd.DataFrame:
    """Revenue per canton with its TPW, highest mean first."""
    tables = tables or load_reference_tables()
    stats = _group_stats(df, "canton_code")
    stats = _with_reference_groups(stats, tables.canton_codes(), include_empty)
    stats.insert(0, "multiplier", [tables.multiplier_for(c) for c in stats.index])
    stats = _finish(stats)
    return stats.sort_values("mean_revenue", ascending=False, na_position="last",
                             kind="mergesort").reset_index(drop=True)


def summary_by_treatment(df: pd.DataFrame, tables: Optional[ReferenceTables] = None,
                         include_empty: bool = False) -> pd.DataFrame:
    """Revenue per tariff position, highest mean first."""
    tables = tables or load_reference_tables()
    stats = _group_stats(df, "treatment_code")
    stats = _with_reference_groups(stats, [t.code for t in tables.all_tariffs()], include_empty)
    stats.insert(0, "treatment_name", [tables.tariff_for(c).name for c in stats.index])
    stats = _finish(stats)
    return stats.sort_values("mean_revenue", ascending=False, na_position="last",
                             kind="mergesort").reset_index(drop=True)


def summary_by_physio(df: pd.DataFrame, include_empty: bool = False,
                      physio_values: Iterable[int] = range(1, 7)) -> pd.DataFrame:
    """Revenue per physiotherapist head count, ascending."""
    stats = _group_stats(df, "n_physio")
    stats = _with_reference_groups(stats, physio_values, include_empty)
    return _finish(stats.sort_index()).reset_index(drop=True)


@dataclass
class SummaryTables:
    overall:      pd.DataFrame
    by_canton:    pd.DataFrame
    by_treatment: pd.DataFrame
    by_physio:    pd.DataFrame

    def as_dict(self) -> Dict[str, pd.DataFrame]:
        return {
            "overall":      self.overall,
            "by_canton":    self.by_canton,
            "by_treatment": self.by_treatment,
            "by_physio":    self.by_physio,
        }


def summarize(df: pd.DataFrame, tables: Optional[ReferenceTables] = None,
              include_empty: bool = False) -> SummaryTables:
    tables = tables or load_reference_tables()
    return SummaryTables(
        overall=overall_summary(df),
        by_canton=summary_by_canton(df, tables, include_empty),
        by_treatment=summary_by_treatment(df, tables, include_empty),
        by_physio=summary_by_physio(df, include_empty),
    )


# ══════════════════════════════════════════════════════════════════════════════
# REGRESSION
# ══════════════════════════════════════════════════════════════════════════════
def dummy_column(code: str) -> str:
    return f"treatment_{code}"


def encode_for_regression(df: pd.DataFrame, tables: Optional[ReferenceTables] = None,
                          baseline: Optional[str] = None) -> pd.DataFrame:
    """
    Design matrix: numeric predictors + one dummy per non-baseline position.

    Categories come from the reference table, so the columns are the same for
    every dataset. `points` is fully determined by the tariff position, so the
    last dummy that completes the span is aliased; the fit reports it as NaN
    while staffing/volume/TPW effects stay identified.
    """
    tables   = tables or load_reference_tables()
    codes    = [t.code for t in tables.all_tariffs()]
    baseline = baseline or tables.baseline_treatment().code
    if baseline not in codes:
        raise ValueError(f"Baseline {baseline!r} is not a tariff position")

    ordered = [baseline] + [c for c in codes if c != baseline]
    treatment = pd.Categorical(df["treatment_code"].astype(str), categories=ordered)
    if treatment.isna().any():
        unknown = sorted(set(df["treatment_code"].astype(str)) - set(codes))
        raise ValueError(f"Unknown tariff positions in dataset: {unknown}")

    dummies = pd.get_dummies(treatment, drop_first=True, dtype=float)
    dummies.columns = [dummy_column(c) for c in ordered[1:]]
    dummies.index   = df.index
    X = df[NUMERIC_PREDICTORS].astype(float)
    return pd.concat([X, dummies], axis=1)


@dataclass
class RegressionResult:
    """
    OLS fit with per-term inference. Aliased terms (linear combinations of
    earlier columns) carry NaN in every per-term statistic.
    """
    coefficients:  pd.Series
    intercept:     float
    r_squared:     float
    n_obs:         int
    baseline:      str
    std_errors:    pd.Series
    t_values:      pd.Series
    p_values:      pd.Series
    adj_r_squared: float
    residual_se:   float
    df_resid:      int

    @property
    def aliased(self) -> List[str]:
        return [k for k, v in self.coefficients.items() if np.isnan(v)]

    def coefficient_table(self) -> pd.DataFrame:
        """One row per term, intercept first, in the shape of R's summary(lm)."""
        terms = [INTERCEPT] + list(self.coefficients.index)
        estimates = pd.concat([pd.Series({INTERCEPT: self.intercept}), self.coefficients])
        return pd.DataFrame({
            "term":      terms,
            "estimate":  estimates.reindex(terms).to_numpy(),
            "std_error": self.std_errors.reindex(terms).to_numpy(),
            "t_value":   self.t_values.reindex(terms).to_numpy(),
            "p_value":   self.p_values.reindex(terms).to_numpy(),
        }, columns=COEF_TABLE_COLS)

    def interpretation(self) -> Dict[str, float]:
        """Headline effects in CHF per year."""
        return {
            "per_additional_physio":    float(self.coefficients["n_physio"]),
            "per_additional_treatment": float(self.coefficients["n_treatments_per_day"]),
            "per_tpw_plus_0_1":         float(self.coefficients["multiplier"] * 0.1),
            "r_squared":                float(self.r_squared),
            "adj_r_squared":            float(self.adj_r_squared),
            "residual_se":              float(self.residual_se),
        }


def non_aliased_columns(X: pd.DataFrame) -> List[str]:
    """
    Columns kept by a left-to-right rank scan with an intercept in front,
    the order R's lm uses to decide which terms are aliased.
    """
    kept: List[str] = []
    basis = np.ones((len(X), 1))
    for col in X.columns:
        candidate = np.column_stack([basis, X[col].to_numpy(dtype=float)])
        if np.linalg.matrix_rank(candidate) > basis.shape[1]:
            kept.append(col)
            basis = candidate
    return kept


def fit_revenue_regression(df: pd.DataFrame, tables: Optional[ReferenceTables] = None,
                           baseline: Optional[str] = None) -> RegressionResult:
    """OLS (with intercept) of total annual revenue on the encoded predictors."""
    tables = tables or load_reference_tables()
    baseline = baseline or tables.baseline_treatment().code
    X = encode_for_regression(df, tables, baseline)
    y = df[REVENUE_COL].astype(float).to_numpy()
    if len(y) <= len(NUMERIC_PREDICTORS):
        raise ValueError(f"Need more than {len(NUMERIC_PREDICTORS)} practices for regression, got {len(y)}")

    kept = non_aliased_columns(X)
    n, p = len(y), len(kept) + 1
    df_resid = n - p
    if df_resid <= 0:
        raise ValueError(f"Need more than {p} practices for {p} estimable terms, got {n}")

    Xk = X[kept].to_numpy(dtype=float)
    model = LinearRegression(fit_intercept=True)
    model.fit(Xk, y)
    r2 = model.score(Xk, y)

    # Classical OLS inference on the full-rank design [1 | X_kept]
    resid  = y - model.predict(Xk)
    sigma2 = float(resid @ resid) / df_resid
    design = np.column_stack([np.ones(n), Xk])
    cov    = sigma2 * np.linalg.inv(design.T @ design)
    se     = np.sqrt(np.diag(cov))
    est    = np.concatenate([[model.intercept_], model.coef_])
    with np.errstate(divide="ignore", invalid="ignore"):
        t = est / se
    pvals = 2.0 * student_t.sf(np.abs(t), df_resid)

    names     = [INTERCEPT] + kept
    all_terms = [INTERCEPT] + list(X.columns)

    def as_series(values) -> pd.Series:
        return pd.Series(values, index=names, dtype=float).reindex(all_terms)

    coefs = pd.Series(np.nan, index=list(X.columns), dtype=float)
    coefs[kept] = model.coef_

    return RegressionResult(
        coefficients=coefs,
        intercept=float(model.intercept_),
        r_squared=float(r2),
        n_obs=int(n),
        baseline=baseline,
        std_errors=as_series(se),
        t_values=as_series(t),
        p_values=as_series(pvals),
        adj_r_squared=float(1.0 - (1.0 - r2) * (n - 1) / df_resid),
        residual_se=float(np.sqrt(sigma2)),
        df_resid=int(df_resid),
    )


def format_summary_lines(summaries: SummaryTables,
                         regression: Optional[RegressionResult] = None) -> List[str]:
    """Plain-text report lines for the console."""
    o = summaries.overall.iloc[0]
    lines = [
        f"Mean annual revenue:   {o['mean_revenue']:,.2f} CHF",
        f"Median annual revenue: {o['median_revenue']:,.2f} CHF",
        f"SD annual revenue:     {o['sd_revenue']:,.2f} CHF",
        f"Min: {o['min_revenue']:,.2f} CHF   Max: {o['max_revenue']:,.2f} CHF",
    ]
    top = summaries.by_canton.dropna(subset=["mean_revenue"]).head(3)
    if not top.empty:
        lines.append("Top cantons by mean revenue: " + ", ".join(
            f"{r.canton_code} ({r.mean_revenue:,.0f})" for r in top.itertuples()))
    if regression is not None:
        eff = regression.interpretation()
        lines += [
            f"Each additional physiotherapist: ~{eff['per_additional_physio']:,.0f} CHF/yr",
            f"Each additional daily treatment: ~{eff['per_additional_treatment']:,.0f} CHF/yr",
            f"+0.1 TPW: ~{eff['per_tpw_plus_0_1']:,.0f} CHF/yr",
            f"R-squared: {eff['r_squared']:.4f}   Adjusted R-squared: {eff['adj_r_squared']:.4f}",
            f"Residual standard error: {eff['residual_se']:,.1f} on {regression.df_resid} degrees of freedom",
            f"{'term':<24}{'estimate':>14}{'std_error':>14}{'t_value':>10}{'p_value':>12}",
        ]
        for r in regression.coefficient_table().itertuples():
            if np.isnan(r.estimate):
                lines.append(f"{r.term:<24}{'NA':>14}{'NA':>14}{'NA':>10}{'NA':>12}"
                             "   (aliased)")
                continue
            lines.append(f"{r.term:<24}{r.estimate:>14,.1f}{r.std_error:>14,.1f}"
                         f"{r.t_value:>10.2f}{r.p_value:>12.3g}")
    return lines
