import numpy as np
import pandas as pd
import pytest

from transition_convexity.curves import ZeroCurve, flat_curve, simple_forward
from transition_convexity.utils import yearfrac


@pytest.fixture(scope="module")
def val_date():
    return pd.Timestamp("2019-10-04")


@pytest.fixture(scope="module")
def curve(val_date):
    dates = [pd.Timestamp("2020-10-04"), pd.Timestamp("2024-10-04"), pd.Timestamp("2029-10-04")]
    return ZeroCurve.from_zero_rates(val_date, dates, [0.015, 0.020, 0.025])


def test_knot_discount_factors_match_zero_rates(curve, val_date):
    knots = pd.to_datetime(curve.knot_dates)
    dfs = curve.df(knots)
    taus = np.array([yearfrac(val_date, d, "ACT/365") for d in knots])
    assert np.allclose(dfs, np.exp(-np.array([0.015, 0.020, 0.025]) * taus), rtol=1e-14)
    assert np.all(np.diff(dfs) < 0), "Discount factors should decrease across knots"


def test_log_linear_between_knots(curve):
    d1, d2 = pd.to_datetime(curve.knot_dates[:2])
    mid = d1 + (d2 - d1) / 2
    df1, df_mid, df2 = curve.df([d1, mid, d2])
    assert df_mid == pytest.approx(np.sqrt(df1 * df2), rel=1e-12)


def test_short_end_extrapolation_flat_zero(curve, val_date):
    t = val_date + pd.Timedelta(days=30)
    df_t = curve.discount_factor(t)
    assert df_t == pytest.approx(np.exp(-0.015 * 30 / 365.0), rel=1e-12)


def test_df_raises_beyond_last_knot_and_before_valuation(curve, val_date):
    last_knot = pd.Timestamp(pd.to_datetime(curve.knot_dates[-1]))
    with pytest.raises(ValueError):
        curve.df([last_knot + pd.DateOffset(days=1)])
    with pytest.raises(ValueError):
        curve.df([val_date - pd.DateOffset(days=1)])


def test_flat_curve_constant_zero_rate(val_date):
    curve = flat_curve(val_date, 0.02, horizon_years=20)
    dates = [val_date + pd.DateOffset(months=m) for m in (3, 18, 61, 199)]
    taus = np.array([yearfrac(val_date, d, "ACT/365") for d in dates])
    assert np.allclose(curve.df(dates), np.exp(-0.02 * taus), rtol=1e-12)


def test_simple_forward_on_flat_curve(val_date):
    curve = flat_curve(val_date, 0.02, horizon_years=20)
    start, end = pd.Timestamp("2025-01-15"), pd.Timestamp("2025-04-15")
    delta = yearfrac(start, end, "ACT/360")
    expected = (np.exp(0.02 * (end - start).days / 365.0) - 1.0) / delta
    assert simple_forward(curve, start, end) == pytest.approx(expected, rel=1e-12)
    with pytest.raises(ValueError):
        simple_forward(curve, start, start)


def test_from_zero_rates_validation(val_date):
    with pytest.raises(ValueError):
        ZeroCurve.from_zero_rates(val_date, [pd.Timestamp("2021-01-01"), pd.Timestamp("2020-01-01")], [0.01, 0.01])
    with pytest.raises(ValueError):
        ZeroCurve.from_zero_rates(val_date, [val_date], [0.01])
