import math

import numpy as np
import pytest

from transition_convexity.config import IntegrationSettings
from transition_convexity.convexity import (
    AdjustmentRequest,
    CorrelationSpec,
    TransitionInputs,
    adjust,
    adjusted_forward,
    adjustment_factors,
    check_correlation_matrix,
    convexity_adjustment,
    convexity_adjustment_numerical,
    correlation_from_covariance,
    leg_correlations,
    truncation_error,
)
from transition_convexity.errors import IntegrationFailure, InvalidCovarianceMatrix
from transition_convexity.formulas import model_coefficients_for_times
from transition_convexity.models import G2ppParameters, HullWhiteOneFactorParameters

TIGHT = IntegrationSettings(abs_tol=1e-13, rel_tol=1e-10, limit=200, half_width=10.0)

# identical Hull-White models: A(v, v) and A(v, u) over [0, t] for t=1, u=10, v=10.25
A_VV = 0.007851316875
A_VU = 0.0076686778625


@pytest.fixture(scope="module")
def hw():
    return HullWhiteOneFactorParameters(0.02, 0.01)


@pytest.fixture(scope="module")
def coefficients(hw):
    return model_coefficients_for_times(hw, hw, 1.0, 10.0, 10.0, 10.25)


@pytest.fixture(scope="module")
def correlation():
    return CorrelationSpec(0.25, 0.25, 0.25)


@pytest.fixture(scope="module")
def inputs():
    delta = 0.25
    df_new_start, df_new_end, df_old_end = math.exp(-0.018 * 10.0), math.exp(-0.018 * 10.25), math.exp(-0.019 * 10.25)
    return TransitionInputs.from_forward(df_new_start, df_old_end, df_new_end, 0.021, delta)


def _scenarios():
    g2pp = G2ppParameters(0.02, 0.2, 0.01, 0.008, -0.5)
    return [
        (HullWhiteOneFactorParameters(0.02, 0.01), HullWhiteOneFactorParameters(0.02, 0.01), CorrelationSpec(0.25, 0.25, 0.25), 0.5),
        (HullWhiteOneFactorParameters(0.05, 0.01), HullWhiteOneFactorParameters(0.03, 0.015), CorrelationSpec(0.9, 0.3, 0.1), 0.5),
        (HullWhiteOneFactorParameters(0.03, 0.01), g2pp, CorrelationSpec(0.9, 0.25, 0.25), 0.3),
    ]


def test_regression_identical_models(coefficients, correlation):
    factors = adjustment_factors(coefficients, correlation, 0.5)
    assert math.log(factors["start"]) == pytest.approx(0.75 * (A_VV - A_VU), rel=1e-5)
    assert factors["end"] == pytest.approx(1.0, abs=1e-12)
    # rho_13 == rho_23 removes the spread cross term
    assert math.log(factors["spread"]) == pytest.approx(0.75 * A_VV, rel=1e-6)


def test_spread_correlation_difference_enters_spread_leg(coefficients):
    base = adjustment_factors(coefficients, CorrelationSpec(0.25, 0.25, 0.25), 0.5)["spread"]
    tilted = adjustment_factors(coefficients, CorrelationSpec(0.25, 0.35, 0.15), 0.5)["spread"]
    expected_shift = 0.5 * coefficients.cross_old_spread * (0.35 - 0.15)
    assert math.log(tilted) - math.log(base) == pytest.approx(expected_shift, rel=1e-9)


def test_adjusted_forward_combines_legs(coefficients, correlation, inputs):
    factors = adjustment_factors(coefficients, correlation, 0.5)
    expected = (
        inputs.df_new_start / (inputs.df_new_end * inputs.accrual_factor) * factors["start"]
        - factors["end"] / inputs.accrual_factor
        + inputs.spread * factors["spread"]
    )
    value = adjusted_forward(coefficients, inputs, correlation, 0.5)
    assert value == pytest.approx(expected, rel=1e-13)
    assert value > inputs.forward, "positive convexity expected for rho_12 < 1"
    # a few basis points
    assert 1e-5 < value - inputs.forward < 2e-3


def test_unit_factors_reproduce_forward(inputs):
    assert inputs.forward == pytest.approx(0.021, rel=1e-13)
    hw = HullWhiteOneFactorParameters(0.02, 0.0)
    coefficients = model_coefficients_for_times(hw, hw, 1.0, 10.0, 10.0, 10.25)
    result = adjust(AdjustmentRequest(inputs, coefficients, CorrelationSpec(0.0, 0.0, 0.0), 0.0))
    assert all(leg.factor == 1.0 for leg in result.legs)
    assert result.forward_adjusted == pytest.approx(result.forward, rel=1e-14)
    assert result.adjustment == pytest.approx(0.0, abs=1e-15)


def test_perfect_correlation_without_spread_vol_gives_no_adjustment(coefficients):
    factors = adjustment_factors(coefficients, CorrelationSpec(1.0, 0.0, 0.0), 0.0)
    for name, factor in factors.items():
        assert factor == pytest.approx(1.0, abs=1e-12), name


def test_result_frame(coefficients, correlation, inputs):
    result = adjust(AdjustmentRequest(inputs, coefficients, correlation, 0.5))
    frame = result.to_frame()
    assert list(frame["part"]) == ["start", "end", "spread"]
    assert frame["result"].sum() == pytest.approx(result.forward_adjusted, rel=1e-14)
    assert frame["non_adjusted"].sum() == pytest.approx(result.forward, rel=1e-14)


@pytest.mark.parametrize("scenario", range(3))
def test_analytic_matches_numerical(scenario):
    old, new, corr, scale = _scenarios()[scenario]
    coefficients = model_coefficients_for_times(old, new, 1.0, 10.0, 10.0, 10.25)
    analytic = adjustment_factors(coefficients, corr, scale, "analytic")
    numerical = adjustment_factors(coefficients, corr, scale, "numerical", TIGHT, dimension=2)
    for name in analytic:
        assert numerical[name] == pytest.approx(analytic[name], rel=1e-7), name


def test_three_dimensional_integration_matches(coefficients, correlation):
    start_leg = leg_correlations(coefficients, correlation, 0.5)[0]
    settings = IntegrationSettings(abs_tol=1e-10, rel_tol=1e-6, limit=100, half_width=6.0)
    numerical = convexity_adjustment_numerical(start_leg.correlation, start_leg.alphas, settings=settings, dimension=3)
    analytic = convexity_adjustment(start_leg.correlation, start_leg.alphas)
    assert numerical == pytest.approx(analytic, rel=1e-5)


def test_truncation_check(coefficients, correlation):
    leg = leg_correlations(coefficients, correlation, 0.5)[2]
    assert truncation_error(leg.correlation, leg.alphas, settings=TIGHT) < 1e-9
    checked = IntegrationSettings(abs_tol=1e-12, rel_tol=1e-8, limit=200, half_width=10.0, check_truncation=True)
    value = convexity_adjustment_numerical(leg.correlation, leg.alphas, settings=checked)
    assert value == pytest.approx(convexity_adjustment(leg.correlation, leg.alphas), rel=1e-6)


def test_truncation_check_rejects_narrow_box(coefficients, correlation):
    leg = leg_correlations(coefficients, correlation, 0.5)[2]
    narrow = IntegrationSettings(abs_tol=1e-12, rel_tol=1e-8, limit=200, half_width=1.0, check_truncation=True)
    with pytest.raises(IntegrationFailure):
        convexity_adjustment_numerical(leg.correlation, leg.alphas, settings=narrow)


def test_inconsistent_correlations_rejected(coefficients):
    corr = CorrelationSpec(1.0, 1.0, -1.0)
    with pytest.raises(InvalidCovarianceMatrix) as info:
        adjustment_factors(coefficients, corr, 0.5)
    assert info.value.matrix.shape == (3, 3)
    assert info.value.min_eigenvalue < 0.0


def test_correlation_spec_range():
    with pytest.raises(ValueError):
        CorrelationSpec(1.2, 0.0, 0.0)


def test_numerical_path_requires_positive_definite(coefficients):
    start_leg = leg_correlations(coefficients, CorrelationSpec(1.0, 0.0, 0.0), 0.5)[0]
    # singular but valid for the closed form
    assert convexity_adjustment(start_leg.correlation, start_leg.alphas) == pytest.approx(1.0, abs=1e-12)
    with pytest.raises(InvalidCovarianceMatrix):
        convexity_adjustment_numerical(start_leg.correlation, start_leg.alphas, settings=TIGHT)


def test_check_correlation_matrix_rejections():
    with pytest.raises(InvalidCovarianceMatrix):
        check_correlation_matrix([[1.0, 0.2], [0.3, 1.0]])
    with pytest.raises(InvalidCovarianceMatrix):
        check_correlation_matrix([[2.0, 0.0], [0.0, 1.0]])
    with pytest.raises(InvalidCovarianceMatrix):
        check_correlation_matrix(np.ones((2, 3)))
    ok = check_correlation_matrix(np.eye(3))
    assert ok.shape == (3, 3)


def test_zero_alpha_gives_zero_correlation():
    cov = np.array([[0.0, 0.1, 0.0], [0.1, 0.0, 0.2], [0.0, 0.2, 0.0]])
    corr = correlation_from_covariance([0.0, 1.0, 1.0], cov)
    assert corr[0, 1] == 0.0 and corr[1, 0] == 0.0
    assert corr[1, 2] == pytest.approx(0.2)
    assert np.all(np.diag(corr) == 1.0)


def test_convexity_adjustment_single_variable():
    # E[exp(X + a^2 / 2)] = exp(a^2)
    assert convexity_adjustment([[1.0]], [0.3], [1.0]) == pytest.approx(math.exp(0.09), rel=1e-14)


def test_numerical_dimension_must_fit():
    with pytest.raises(ValueError):
        convexity_adjustment_numerical(np.eye(3), [0.1, 0.1, 0.1], dimension=1)


def test_unknown_method(coefficients, correlation):
    with pytest.raises(ValueError):
        adjustment_factors(coefficients, correlation, 0.5, method="simulation")
