from dataclasses import replace

import numpy as np
import pandas as pd
import pytest

from transition_convexity import cli
from transition_convexity.config import DEFAULT_CONFIG, IntegrationSettings
from transition_convexity.curves import simple_forward
from transition_convexity.export import export_series
from transition_convexity.scenarios import (
    adjusted_forward_by_correlation,
    adjusted_forward_by_fixing_date,
    adjusted_forward_by_mean_reversion,
    adjusted_forward_by_volatility,
    adjusted_forward_by_volatility_ratio,
    analytic_numerical_comparison,
    big_bang_fixing_grid,
    correlation_volatility_grid,
    default_curves,
    g2pp_adjusted_forward_by_fixing_date,
    g2pp_models,
    g2pp_pair_models,
    hull_white_models,
    hybrid_correlation_grid,
    hybrid_volatility_mean_reversion_grid,
    transition_inputs,
)
from transition_convexity.utils import accrual_period


@pytest.fixture(scope="module")
def curves():
    return default_curves(DEFAULT_CONFIG)


def test_transition_inputs_reproduce_ibor_forward(curves):
    start, end = accrual_period(DEFAULT_CONFIG.fixing_date, 3, 2)
    inputs = transition_inputs(curves, start, end, DEFAULT_CONFIG)
    assert inputs.forward == pytest.approx(simple_forward(curves.ibor_projection, start, end), rel=1e-12)
    assert inputs.spread > 0.0, "IBOR curve sits above the new discounting curve"


def test_hull_white_models_ratio():
    old, new = hull_white_models(DEFAULT_CONFIG, new_volatility_ratio=1.5)
    assert old.volatility.values == (0.01,)
    assert new.volatility.values[0] == pytest.approx(0.015)
    assert old.mean_reversion == new.mean_reversion == 0.05


def test_correlation_sweep_shrinks_to_zero(curves):
    out = adjusted_forward_by_correlation(DEFAULT_CONFIG, curves, correlations=[0.0, 0.5, 1.0])
    assert out["error"].isna().all()
    assert list(out["rho_12"]) == [0.0, 0.5, 1.0]
    sizes = out["adjustment"].abs().to_numpy()
    assert sizes[0] > sizes[1] > sizes[2]
    # rho_13 == rho_23 and rho_12 == 1 leave nothing to adjust
    assert sizes[2] < 1e-10


def test_failed_points_are_isolated(curves):
    config = replace(DEFAULT_CONFIG, rho_13=0.9, rho_23=0.9)
    out = adjusted_forward_by_correlation(config, curves, correlations=[-0.9, 0.9])
    assert "InvalidCovarianceMatrix" in out.loc[0, "error"]
    assert np.isnan(out.loc[0, "adjustment"])
    assert pd.isna(out.loc[1, "error"])
    assert np.isfinite(out.loc[1, "adjustment"])


def test_overflowing_point_does_not_abort_grid(curves):
    out = adjusted_forward_by_volatility(DEFAULT_CONFIG, curves, volatilities=[0.01, 10.0])
    assert len(out) == 2
    assert pd.isna(out.loc[0, "error"])
    assert np.isfinite(out.loc[0, "adjustment"])
    assert pd.notna(out.loc[1, "error"])
    assert np.isnan(out.loc[1, "adjustment"])


def test_mean_reversion_and_volatility_sweeps(curves):
    by_kappa = adjusted_forward_by_mean_reversion(DEFAULT_CONFIG, curves, mean_reversions=[0.0, 0.05])
    assert by_kappa["error"].isna().all()
    # stronger mean reversion damps long-dated volatility
    assert abs(by_kappa.loc[1, "adjustment"]) < abs(by_kappa.loc[0, "adjustment"])

    by_ratio = adjusted_forward_by_volatility_ratio(DEFAULT_CONFIG, curves, ratios=[0.8, 1.0, 1.2])
    assert by_ratio["error"].isna().all()
    assert len(by_ratio) == 3


def test_fixing_date_sweep_parallel_matches_sequential(curves):
    dates = [pd.Timestamp("2025-10-16"), pd.Timestamp("2030-10-16")]
    sequential = adjusted_forward_by_fixing_date(DEFAULT_CONFIG, curves, fixing_dates=dates)
    parallel = adjusted_forward_by_fixing_date(DEFAULT_CONFIG, curves, fixing_dates=dates, max_workers=2)
    assert list(parallel["fixing_date"]) == dates
    assert np.allclose(parallel["adjustment"], sequential["adjustment"], rtol=1e-14, atol=0.0)


def test_big_bang_fixing_grid_zero_before_gap(curves):
    big_bangs = [pd.Timestamp("2020-10-16"), pd.Timestamp("2022-10-16")]
    fixings = [pd.Timestamp("2021-01-16"), pd.Timestamp("2025-10-16")]
    grid = big_bang_fixing_grid(DEFAULT_CONFIG, curves, big_bang_dates=big_bangs, fixing_dates=fixings)
    assert grid.shape == (2, 2)
    assert grid.loc[big_bangs[0], fixings[0]] == 0.0
    assert grid.loc[big_bangs[1], fixings[0]] == 0.0
    assert grid.loc[big_bangs[0], fixings[1]] != 0.0
    assert grid.loc[big_bangs[1], fixings[1]] != 0.0


def test_correlation_volatility_grid_shape(curves):
    grid = correlation_volatility_grid(DEFAULT_CONFIG, curves, correlations=[0.8, 0.9], ratios=[0.9, 1.1])
    assert grid.shape == (2, 2)
    assert np.isfinite(grid.to_numpy()).all()


def test_analytic_numerical_comparison(curves):
    settings = IntegrationSettings(abs_tol=1e-13, rel_tol=1e-10, limit=200, half_width=10.0)
    out = analytic_numerical_comparison(DEFAULT_CONFIG, curves, settings)
    assert list(out["leg"]) == ["start", "end", "spread"]
    assert (out["difference"].abs() < 1e-7).all()


def test_export_series_round_trip(tmp_path):
    dates = [pd.Timestamp("2021-01-15"), pd.Timestamp("2021-04-15")]
    path = export_series("adjustment", dates, [0.1, 0.2], tmp_path / "nested" / "series.csv")
    back = pd.read_csv(path, parse_dates=["date"])
    assert list(back.columns) == ["date", "adjustment"]
    assert list(back["date"]) == dates
    with pytest.raises(ValueError):
        export_series("x", dates, [0.1], tmp_path / "bad.csv")


def test_cli_writes_csv(tmp_path):
    cli.main(["volatility", "--output-dir", str(tmp_path), "--log-level", "WARNING"])
    out = pd.read_csv(tmp_path / "volatility.csv")
    assert {"volatility", "forward", "forward_adjusted", "adjustment_bp", "error"} <= set(out.columns)
    assert len(out) == 8


def test_g2pp_models_share_first_factor():
    old, new = g2pp_models(DEFAULT_CONFIG, volatility_2=0.001, factor_correlation=-0.3)
    assert new.factors()[0] == old.factors()[0]
    assert new.correlation == -0.3
    first, second = g2pp_pair_models(DEFAULT_CONFIG)
    assert first.correlation == second.correlation == DEFAULT_CONFIG.g2pp_pair_correlation


def test_hybrid_correlation_grid(curves):
    grid = hybrid_correlation_grid(
        DEFAULT_CONFIG, curves, factor_correlations=[-0.5, 0.5], spread_correlations=[0.0, 0.25]
    )
    assert grid.shape == (2, 2)
    assert list(grid.index) == [-0.5, 0.5]
    assert np.isfinite(grid.to_numpy()).all()


def test_hybrid_grid_without_second_factor_has_no_adjustment(curves):
    grid = hybrid_volatility_mean_reversion_grid(
        DEFAULT_CONFIG, curves, volatilities_2=[0.0, 0.001], mean_reversions_2=[0.05, 0.15]
    )
    assert grid.shape == (2, 2)
    # identical curves driven by one Brownian motion
    flat = np.abs(grid.loc[0.0].to_numpy()).max()
    assert flat < 1e-5
    assert (np.abs(grid.loc[0.001].to_numpy()) > 100 * flat).all()


def test_g2pp_fixing_date_sweep(curves):
    dates = [pd.Timestamp("2025-10-16"), pd.Timestamp("2030-10-16")]
    out = g2pp_adjusted_forward_by_fixing_date(DEFAULT_CONFIG, curves, fixing_dates=dates)
    assert out["error"].isna().all()
    assert np.isfinite(out["adjustment"]).all()
    assert out.loc[1, "adjustment"] != out.loc[0, "adjustment"]


def test_cli_lists_g2pp_analyses():
    parser = cli.build_parser()
    for name in ("g2pp-fixing-dates", "hybrid-correlation", "hybrid-volatility-mean-reversion"):
        assert parser.parse_args([name]).analysis == name
