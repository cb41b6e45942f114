"""
Variance and covariance terms of Gaussian short-rate models.

For a factor with mean reversion kappa and volatility sigma(s), the bond
volatility kernel is

    nu(s, T) = sigma(s) * g(kappa, T - s),    g(k, x) = (1 - exp(-k x)) / k      (g(0, x) = x)

and the state variable of a curve model observed at t for maturity T is
X(t, T) = sum_k int_0^t nu_k(s, T) dW_k(s). All integrals are evaluated in
closed form on each constant-volatility sub-interval.

The closed forms are written in x = upper - s with the shift rule
g(k, c + x) = g(k, c) + exp(-k c) g(k, x), so that every piece is a sum of
non-negative terms and kappa = 0 needs no separate formula. Where kappa * span
is small, the pieces that would cancel are evaluated from their Taylor series.
"""

from __future__ import annotations

import logging
import math
from dataclasses import astuple, dataclass, fields
from typing import Iterator, Optional, Tuple

import numpy as np
import pandas as pd
from scipy.special import gammainc

from .integration import Integrator1D
from .models import PiecewiseConstantVolatility, ShortRateModelParameters

logger = logging.getLogger(__name__)

# kappa * span below which the series expansions are used
SERIES_THRESHOLD = 0.5
_SERIES_TERMS = 40
_SERIES_EPS = 1e-17

# negative variances down to this level are rounding and read as zero
VARIANCE_TOLERANCE = 1e-14

_CHECK_INTEGRATOR = Integrator1D(abs_tol=1e-15, rel_tol=1e-10, limit=200)


def _phi1(z: float) -> float:
    """(exp(z) - 1) / z, continuous at 0."""
    if z == 0.0:
        return 1.0
    return math.expm1(z) / z


def _phi2(z: float) -> float:
    """(exp(z) - 1 - z) / z^2, continuous at 0."""
    if abs(z) < SERIES_THRESHOLD:
        term = total = 0.5
        for j in range(1, _SERIES_TERMS):
            term *= z / (j + 2)
            total += term
            if abs(term) <= _SERIES_EPS * abs(total):
                break
        return total
    return (math.expm1(z) - z) / (z * z)


def _g(kappa: float, x: float) -> float:
    return x * _phi1(-kappa * x)


def _exp_moment(n: int, kappa: float, h: float) -> float:
    """int_0^h x^n exp(-kappa x) dx."""
    z = kappa * h
    if z <= 1.0:
        term, total = 1.0, 1.0 / (n + 1)
        for j in range(1, _SERIES_TERMS):
            term *= -z / j
            piece = term / (n + 1 + j)
            total += piece
            if abs(piece) <= _SERIES_EPS * abs(total):
                break
        return h ** (n + 1) * total
    return math.factorial(n) * float(gammainc(n + 1, z)) / kappa ** (n + 1)


def _kernel_moment(n: int, kappa: float, h: float) -> float:
    # int_0^h x^n g(kappa, x) dx; the subtraction removes at most 1 / (n + 2) of the first term
    return (h ** (n + 1) * _exp_moment(0, kappa, h) - _exp_moment(n + 1, kappa, h)) / (n + 1)


def _kernel_area(kappa: float, h: float) -> float:
    """int_0^h g(kappa, x) dx."""
    return h * h * _phi2(-kappa * h)


def _kernel_product_area(kappa_a: float, kappa_b: float, h: float) -> float:
    """int_0^h g(kappa_a, x) g(kappa_b, x) dx."""
    small, large = sorted((kappa_a, kappa_b))
    if small * h >= SERIES_THRESHOLD:
        def weighted(k: float) -> float:
            return k * _kernel_area(k, h)

        return (weighted(small) + weighted(large) - weighted(small + large)) / (small * large)

    # g(small, x) = sum_m (-small)^m x^(m+1) / (m+1)!
    total, coefficient = 0.0, 1.0
    for m in range(_SERIES_TERMS):
        term = coefficient * _kernel_moment(m + 1, large, h)
        total += term
        if abs(term) <= _SERIES_EPS * abs(total):
            break
        coefficient *= -small / (m + 2)
    return total


def bond_volatility_kernel(kappa: float, sigma: float, s: float, maturity: float) -> float:
    return sigma * _g(kappa, maturity - s)


def kernel_integral(kappa: float, maturity: float, lower: float, upper: float) -> float:
    """int_lower^upper g(kappa, T - s) ds."""
    if upper <= lower:
        return 0.0
    h = upper - lower
    offset = maturity - upper
    return _g(kappa, offset) * h + math.exp(-kappa * offset) * _kernel_area(kappa, h)


def kernel_product_integral(
    kappa_a: float,
    kappa_b: float,
    maturity_a: float,
    maturity_b: float,
    lower: float,
    upper: float,
) -> float:
    """int_lower^upper g(kappa_a, T_a - s) * g(kappa_b, T_b - s) ds."""
    if upper <= lower:
        return 0.0
    h = upper - lower
    offset_a, offset_b = maturity_a - upper, maturity_b - upper
    ga, gb = _g(kappa_a, offset_a), _g(kappa_b, offset_b)
    ea, eb = math.exp(-kappa_a * offset_a), math.exp(-kappa_b * offset_b)
    return (
        ga * gb * h
        + ga * eb * _kernel_area(kappa_b, h)
        + gb * ea * _kernel_area(kappa_a, h)
        + ea * eb * _kernel_product_area(kappa_a, kappa_b, h)
    )


def standard_deviation(variance: float) -> float:
    """Square root of a variance, rejecting negatives beyond VARIANCE_TOLERANCE."""
    if variance < -VARIANCE_TOLERANCE:
        raise ValueError(f"Negative variance {variance:.6e}: inconsistent model parameters or times.")
    return math.sqrt(max(variance, 0.0))


def _segments(
    vol_a: PiecewiseConstantVolatility,
    vol_b: PiecewiseConstantVolatility,
    lower: float,
    upper: float,
) -> Iterator[Tuple[float, float, float, float]]:
    """Sub-intervals of [lower, upper] on which both volatilities are constant."""
    if upper <= lower:
        return
    edges = sorted({lower, upper, *vol_a.breakpoints_within(lower, upper), *vol_b.breakpoints_within(lower, upper)})
    for lo, hi in zip(edges[:-1], edges[1:]):
        mid = 0.5 * (lo + hi)
        yield lo, hi, vol_a.value_at(mid), vol_b.value_at(mid)


def factor_alignment(model_a: ShortRateModelParameters, model_b: ShortRateModelParameters) -> np.ndarray:
    """
    Correlations between the factors of two curve models, per unit of
    inter-curve correlation (identical to the factor correlation when both
    models share their factor structure).

    A one-factor driver is aligned with the first factor of a two-factor model.
    """
    na, nb = model_a.n_factors, model_b.n_factors
    if na == 1 and nb == 1:
        return np.array([[1.0]])
    if na == 1:
        return model_b.factor_correlation()[:1, :]
    if nb == 1:
        return model_a.factor_correlation()[:, :1]

    corr_a, corr_b = model_a.factor_correlation(), model_b.factor_correlation()
    if not np.allclose(corr_a, corr_b, rtol=0.0, atol=1e-12):
        raise ValueError("Two-factor models with different factor correlations cannot be aligned.")
    return corr_a


def cross_term(
    model_a: ShortRateModelParameters,
    model_b: ShortRateModelParameters,
    start: float,
    end: float,
    maturity_a: float,
    maturity_b: float,
) -> float:
    """
    int_start^end of sum_kl K_kl nu_a^k(s, T_a) nu_b^l(s, T_b) ds.

    With model_a == model_b this is the covariance of the two state variables;
    for two different curve models it is the covariance per unit of the
    inter-curve Brownian correlation.
    """
    if end <= start:
        return 0.0
    alignment = factor_alignment(model_a, model_b)
    total = 0.0
    for k, (kappa_a, vol_a) in enumerate(model_a.factors()):
        for l, (kappa_b, vol_b) in enumerate(model_b.factors()):
            weight = alignment[k, l]
            if weight == 0.0:
                continue
            for lo, hi, sigma_a, sigma_b in _segments(vol_a, vol_b, start, end):
                if sigma_a == 0.0 or sigma_b == 0.0:
                    continue
                total += weight * sigma_a * sigma_b * kernel_product_integral(
                    kappa_a, kappa_b, maturity_a, maturity_b, lo, hi
                )
    return total


def alpha(model: ShortRateModelParameters, start: float, end: float, maturity: float) -> float:
    """Standard deviation of int_start^end nu(s, maturity) dW(s)."""
    variance = cross_term(model, model, start, end, maturity, maturity)
    return standard_deviation(variance)


def spread_cross_term(model: ShortRateModelParameters, start: float, end: float, maturity: float) -> float:
    """
    Covariance of the state variable with a Brownian motion correlated to the
    model's first factor, per unit of that correlation.
    """
    if end <= start:
        return 0.0
    weights = model.factor_correlation()[0]
    total = 0.0
    for k, (kappa, vol) in enumerate(model.factors()):
        for lo, hi, sigma, _ in _segments(vol, vol, start, end):
            total += weights[k] * sigma * kernel_integral(kappa, maturity, lo, hi)
    return total


def cross_term_numerical(
    model_a: ShortRateModelParameters,
    model_b: ShortRateModelParameters,
    start: float,
    end: float,
    maturity_a: float,
    maturity_b: float,
    integrator: Optional[Integrator1D] = None,
) -> float:
    """Same quantity as cross_term, integrated numerically."""
    integrator = integrator or _CHECK_INTEGRATOR
    if end <= start:
        return 0.0
    alignment = factor_alignment(model_a, model_b)
    total = 0.0
    for k, (kappa_a, vol_a) in enumerate(model_a.factors()):
        for l, (kappa_b, vol_b) in enumerate(model_b.factors()):
            for lo, hi, sigma_a, sigma_b in _segments(vol_a, vol_b, start, end):
                value = integrator.integrate(
                    lambda s: bond_volatility_kernel(kappa_a, sigma_a, s, maturity_a)
                    * bond_volatility_kernel(kappa_b, sigma_b, s, maturity_b),
                    lo,
                    hi,
                )
                total += alignment[k, l] * value
    return total


def alpha_numerical(
    model: ShortRateModelParameters,
    start: float,
    end: float,
    maturity: float,
    integrator: Optional[Integrator1D] = None,
) -> float:
    variance = cross_term_numerical(model, model, start, end, maturity, maturity, integrator)
    return standard_deviation(variance)


def spread_cross_term_numerical(
    model: ShortRateModelParameters,
    start: float,
    end: float,
    maturity: float,
    integrator: Optional[Integrator1D] = None,
) -> float:
    integrator = integrator or _CHECK_INTEGRATOR
    if end <= start:
        return 0.0
    weights = model.factor_correlation()[0]
    total = 0.0
    for k, (kappa, vol) in enumerate(model.factors()):
        for lo, hi, sigma, _ in _segments(vol, vol, start, end):
            total += weights[k] * integrator.integrate(
                lambda s: bond_volatility_kernel(kappa, sigma, s, maturity), lo, hi
            )
    return total


@dataclass(frozen=True)
class ModelCoefficients:
    """
    Model quantities for big bang t, fixing theta, accrual start u and accrual end v.

    Variables: Xo = X_old(t, v), Xn = X_new(t, v), Xu = X_new(theta, u),
    Xv = X_new(theta, v) and S = W_spread(theta).

    - alpha_*: standard deviations (alpha_spread per unit of spread scale).
    - cross_old_new_*: covariances between old and new curve variables per
      unit of the inter-curve correlation.
    - cross_new_*: covariances between new curve variables.
    - cross_*_spread: covariances with S per unit of spread correlation and scale.
    """
    alpha_old_tv: float
    alpha_new_tv: float
    alpha_new_thetau: float
    alpha_new_thetav: float
    alpha_spread: float
    cross_old_new_tv_tv: float
    cross_old_new_tv_thetau: float
    cross_old_new_tv_thetav: float
    cross_new_tv_thetau: float
    cross_new_tv_thetav: float
    cross_old_spread: float
    cross_new_spread: float
    big_bang_time: float
    fixing_time: float
    start_time: float
    end_time: float

    def as_array(self) -> np.ndarray:
        return np.array(astuple(self), dtype=float)

    def to_series(self) -> pd.Series:
        return pd.Series(self.as_array(), index=[f.name for f in fields(self)])


def model_coefficients_for_times(
    old_model: ShortRateModelParameters,
    new_model: ShortRateModelParameters,
    big_bang_time: float,
    fixing_time: float,
    start_time: float,
    end_time: float,
    integrator: Optional[Integrator1D] = None,
) -> ModelCoefficients:
    """
    Coefficients in closed form, or by numerical integration of the same
    kernels when an integrator is given.
    """
    if end_time < start_time:
        raise ValueError(f"Accrual end {end_time} before accrual start {start_time}.")
    if fixing_time < 0.0:
        raise ValueError(f"Fixing time {fixing_time} is before the valuation date.")

    t, theta, u, v = float(big_bang_time), float(fixing_time), float(start_time), float(end_time)
    t_theta = min(t, theta)

    if integrator is None:
        def _alpha(model, end, maturity):
            return alpha(model, 0.0, end, maturity)

        def _cross(model_a, model_b, end, maturity_a, maturity_b):
            return cross_term(model_a, model_b, 0.0, end, maturity_a, maturity_b)

        def _spread(model, end, maturity):
            return spread_cross_term(model, 0.0, end, maturity)
    else:
        def _alpha(model, end, maturity):
            return alpha_numerical(model, 0.0, end, maturity, integrator)

        def _cross(model_a, model_b, end, maturity_a, maturity_b):
            return cross_term_numerical(model_a, model_b, 0.0, end, maturity_a, maturity_b, integrator)

        def _spread(model, end, maturity):
            return spread_cross_term_numerical(model, 0.0, end, maturity, integrator)

    coefficients = ModelCoefficients(
        alpha_old_tv=_alpha(old_model, t, v),
        alpha_new_tv=_alpha(new_model, t, v),
        alpha_new_thetau=_alpha(new_model, theta, u),
        alpha_new_thetav=_alpha(new_model, theta, v),
        alpha_spread=math.sqrt(theta),
        cross_old_new_tv_tv=_cross(old_model, new_model, t, v, v),
        cross_old_new_tv_thetau=_cross(old_model, new_model, t_theta, v, u),
        cross_old_new_tv_thetav=_cross(old_model, new_model, t_theta, v, v),
        cross_new_tv_thetau=_cross(new_model, new_model, t_theta, v, u),
        cross_new_tv_thetav=_cross(new_model, new_model, t_theta, v, v),
        cross_old_spread=_spread(old_model, t_theta, v),
        cross_new_spread=_spread(new_model, t_theta, v),
        big_bang_time=t,
        fixing_time=theta,
        start_time=u,
        end_time=v,
    )
    logger.debug("Model coefficients t=%.4f theta=%.4f u=%.4f v=%.4f: %s", t, theta, u, v, coefficients)
    return coefficients


def model_coefficients(
    old_model: ShortRateModelParameters,
    new_model: ShortRateModelParameters,
    big_bang_date: pd.Timestamp,
    fixing_date: pd.Timestamp,
    start_date: pd.Timestamp,
    end_date: pd.Timestamp,
    integrator: Optional[Integrator1D] = None,
) -> ModelCoefficients:
    """Coefficients for calendar dates, converted with the old curve model's time measure."""
    to_time = old_model.relative_time
    return model_coefficients_for_times(
        old_model,
        new_model,
        to_time(big_bang_date),
        to_time(fixing_date),
        to_time(start_date),
        to_time(end_date),
        integrator,
    )
