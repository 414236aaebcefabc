"""Grouped summaries, dummy encoding and the revenue regression."""

import numpy as np
import pandas as pd
import pytest

from analysis import (COEF_TABLE_COLS, NUMERIC_PREDICTORS, encode_for_regression,
                      fit_revenue_regression, format_summary_lines,
                      overall_summary, summarize, summary_by_canton,
                      summary_by_physio, summary_by_treatment)
from simulation import SimulationConfig, run_simulation
from tariffs import load_reference_tables

TABLES = load_reference_tables()


@pytest.fixture(scope="module")
def df():
    return run_simulation(SimulationConfig()).to_frame()


@pytest.fixture(scope="module")
def small_df():
    return run_simulation(SimulationConfig(n_practices=5)).to_frame()


class TestOverall:

    def test_matches_pandas(self, df):
        row = overall_summary(df).iloc[0]
        rev = df["total_annual_revenue"]
        assert row["n_practices"] == 160
        assert row["mean_revenue"] == pytest.approx(rev.mean())
        assert row["median_revenue"] == pytest.approx(rev.median())
        assert row["sd_revenue"] == pytest.approx(np.std(rev, ddof=1))
        assert row["min_revenue"] == rev.min()
        assert row["max_revenue"] == rev.max()


class TestGroupCoverage:

    def test_row_limits_and_counts(self, df):
        s = summarize(df, TABLES)
        assert len(s.by_canton) <= 26
        assert len(s.by_treatment) <= 7
        assert len(s.by_physio) <= 6
        for table in (s.by_canton, s.by_treatment, s.by_physio):
            assert table["n_practices"].sum() == len(df)
            assert (table["n_practices"] > 0).all()

    def test_canton_carries_multiplier(self, df):
        by_canton = summary_by_canton(df, TABLES)
        for row in by_canton.itertuples():
            assert row.multiplier == TABLES.multiplier_for(row.canton_code)

    def test_sorted_by_mean_descending(self, df):
        for table in (summary_by_canton(df, TABLES), summary_by_treatment(df, TABLES)):
            assert table["mean_revenue"].is_monotonic_decreasing

    def test_physio_ascending(self, df):
        assert summary_by_physio(df)["n_physio"].is_monotonic_increasing

    def test_group_mean_matches(self, df):
        by_t = summary_by_treatment(df, TABLES).set_index("treatment_code")
        sub = df[df["treatment_code"] == "7301"]["total_annual_revenue"]
        assert by_t.loc["7301", "mean_revenue"] == pytest.approx(sub.mean())
        assert by_t.loc["7301", "treatment_name"] == "Allgemeine Physiotherapie"

    def test_empty_groups_reported(self, small_df):
        s = summarize(small_df, TABLES, include_empty=True)
        assert len(s.by_canton) == 26
        assert len(s.by_treatment) == 7
        assert len(s.by_physio) == 6
        for table in (s.by_canton, s.by_treatment, s.by_physio):
            assert table["n_practices"].sum() == 5
            empty = table[table["n_practices"] == 0]
            assert empty["mean_revenue"].isna().all()
        assert (s.by_canton["n_practices"] == 0).sum() >= 21

    def test_empty_groups_omitted_by_default(self, small_df):
        by_canton = summary_by_canton(small_df, TABLES)
        assert len(by_canton) <= 5
        assert by_canton["n_practices"].sum() == 5

    def test_head_counts_outside_default_range_kept(self):
        """Observed head counts above 6 survive include_empty."""
        wide = run_simulation(SimulationConfig(n_practices=200, physio_range=(1.0, 8.0))).to_frame()
        by_physio = summary_by_physio(wide, include_empty=True)
        assert by_physio["n_practices"].sum() == 200
        assert {7, 8} <= set(by_physio["n_physio"])
        assert by_physio["n_physio"].is_monotonic_increasing
        s = summarize(wide, TABLES, include_empty=True)
        assert s.by_physio["n_practices"].sum() == 200


class TestEncoding:

    def test_columns(self, df):
        X = encode_for_regression(df, TABLES)
        dummies = [f"treatment_{t.code}" for t in TABLES.all_tariffs() if t.code != "7301"]
        assert list(X.columns) == NUMERIC_PREDICTORS + dummies
        assert X.shape == (len(df), len(NUMERIC_PREDICTORS) + 6)

    def test_dummies_one_hot_with_baseline(self, df):
        X = encode_for_regression(df, TABLES)
        dummy_cols = [c for c in X.columns if c.startswith("treatment_")]
        row_sums = X[dummy_cols].sum(axis=1)
        is_baseline = (df["treatment_code"].astype(str) == "7301").to_numpy()
        assert (row_sums[is_baseline] == 0).all()
        assert (row_sums[~is_baseline] == 1).all()

    def test_shape_independent_of_sample(self, small_df):
        X = encode_for_regression(small_df, TABLES)
        assert X.shape[1] == len(NUMERIC_PREDICTORS) + 6

    def test_custom_baseline(self, df):
        X = encode_for_regression(df, TABLES, baseline="7330")
        assert "treatment_7330" not in X.columns
        assert "treatment_7301" in X.columns

    def test_unknown_baseline(self, df):
        with pytest.raises(ValueError):
            encode_for_regression(df, TABLES, baseline="1234")


class TestRegression:

    def test_fit_on_simulated_data(self, df):
        reg = fit_revenue_regression(df, TABLES)
        assert reg.n_obs == 160
        assert reg.baseline == "7301"
        assert 0.0 < reg.r_squared <= 1.0
        assert reg.interpretation()["per_additional_physio"] > 0
        assert reg.coefficient_table()["term"].iloc[0] == "(Intercept)"

    def test_recovers_linear_effects(self, df):
        synth = df.copy()
        synth["total_annual_revenue"] = (1000.0
                                         + 5000.0 * synth["n_physio"]
                                         + 300.0 * synth["n_treatments_per_day"]
                                         + 20000.0 * synth["multiplier"])
        reg = fit_revenue_regression(synth, TABLES)
        eff = reg.interpretation()
        assert eff["per_additional_physio"] == pytest.approx(5000.0, rel=1e-6)
        assert eff["per_additional_treatment"] == pytest.approx(300.0, rel=1e-6)
        assert eff["per_tpw_plus_0_1"] == pytest.approx(2000.0, rel=1e-6)
        assert eff["r_squared"] == pytest.approx(1.0)

    def test_too_few_rows(self, small_df):
        with pytest.raises(ValueError):
            fit_revenue_regression(small_df.head(3), TABLES)


class TestInference:

    @pytest.fixture(scope="class")
    def large_df(self):
        return run_simulation(SimulationConfig(n_practices=1000, seed=11)).to_frame()

    @pytest.fixture(scope="class")
    def noisy(self, df):
        noise = np.random.default_rng(0).normal(0.0, 2500.0, len(df))
        out = df.copy()
        out["total_annual_revenue"] = (1000.0
                                       + 5000.0 * out["n_physio"]
                                       + 300.0 * out["n_treatments_per_day"]
                                       + 20000.0 * out["multiplier"]
                                       + noise)
        return out

    def test_standard_errors_match_closed_form(self, noisy):
        reg = fit_revenue_regression(noisy, TABLES)
        kept = list(reg.coefficients.dropna().index)
        X = encode_for_regression(noisy, TABLES)[kept].to_numpy(dtype=float)
        D = np.column_stack([np.ones(len(X)), X])
        y = noisy["total_annual_revenue"].to_numpy(dtype=float)
        beta, *_ = np.linalg.lstsq(D, y, rcond=None)
        resid = y - D @ beta
        dof = len(y) - D.shape[1]
        sigma2 = resid @ resid / dof
        se = np.sqrt(np.diag(sigma2 * np.linalg.inv(D.T @ D)))

        table = reg.coefficient_table().set_index("term").loc[["(Intercept)"] + kept]
        np.testing.assert_allclose(table["estimate"], beta, rtol=1e-6, atol=1e-6)
        np.testing.assert_allclose(table["std_error"], se, rtol=1e-6)
        np.testing.assert_allclose(table["t_value"], beta / se, rtol=1e-6)
        assert reg.df_resid == dof
        assert reg.residual_se == pytest.approx(np.sqrt(sigma2))

    def test_p_values_and_adjusted_r_squared(self, noisy):
        reg = fit_revenue_regression(noisy, TABLES)
        p = reg.p_values.dropna()
        assert ((p >= 0.0) & (p <= 1.0)).all()
        assert reg.p_values["n_physio"] < 1e-6
        n = reg.n_obs
        expected = 1.0 - (1.0 - reg.r_squared) * (n - 1) / reg.df_resid
        assert reg.adj_r_squared == pytest.approx(expected)
        assert reg.adj_r_squared < reg.r_squared

    def test_collinear_treatment_term_aliased(self, large_df):
        """points is a function of the tariff position, so the last dummy is not estimable."""
        assert large_df["treatment_code"].astype(str).nunique() == 7
        reg = fit_revenue_regression(large_df, TABLES)
        assert reg.aliased == ["treatment_7340"]
        table = reg.coefficient_table().set_index("term")
        assert table.loc["treatment_7340"].isna().all()
        assert table.drop(index="treatment_7340").notna().all().all()
        assert reg.df_resid == reg.n_obs - 10

    def test_coefficient_table_shape(self, df):
        table = fit_revenue_regression(df, TABLES).coefficient_table()
        assert list(table.columns) == COEF_TABLE_COLS
        assert len(table) == 1 + len(NUMERIC_PREDICTORS) + 6


def test_summary_lines(df):
    s = summarize(df, TABLES)
    lines = format_summary_lines(s, fit_revenue_regression(df, TABLES))
    assert lines[0].startswith("Mean annual revenue")
    assert any(line.startswith("R-squared") for line in lines)
    assert any("Adjusted R-squared" in line for line in lines)
    assert any(line.startswith("Residual standard error") for line in lines)
    assert any(line.startswith("(Intercept)") for line in lines)
    assert any(line.startswith("n_physio") for line in lines)
    assert any("Top cantons" in line for line in lines)
