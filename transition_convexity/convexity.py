"""
Convexity adjustment of a forward rate across a discounting benchmark transition.

The forward fixed after the big bang decomposes into three discounted legs

    F = [ R * P2(u) / delta * c_start - R * P2(v) / delta * c_end + R * spread_pv * c_spread ] / P1(v),
    R = P1(v) / P2(v)

where P1 / P2 are the old / new benchmark discount factors. Each factor c is
E[exp(sum_i s_i (X_i + alpha_i^2 / 2))] for three jointly Gaussian variables
with signs s = (-1, +1, -1):

- start leg:  X_old(t, v), X_new(t, v), X_new(theta, u)
- end leg:    X_old(t, v), X_new(t, v), X_new(theta, v)
- spread leg: X_old(t, v), X_new(t, v), A * W_spread(theta)

The analytic path uses E[exp(Y)] = exp(mean + var / 2) for Gaussian Y; the
numerical path integrates the same expectation against the joint density.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Dict, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from .config import IntegrationSettings
from .errors import IntegrationFailure, InvalidCovarianceMatrix
from .formulas import ModelCoefficients
from .integration import Integrator1D, RepeatedIntegrator

logger = logging.getLogger(__name__)

LEG_SIGNS = (-1.0, 1.0, -1.0)
LEG_NAMES = ("start", "end", "spread")
PSD_TOLERANCE = 1e-10


@dataclass(frozen=True)
class CorrelationSpec:
    """
    Correlations between the Brownian motions driving the old benchmark
    discounting curve (1), the new benchmark discounting curve (2) and the
    IBOR / overnight spread (3).
    """
    rho_12: float
    rho_13: float
    rho_23: float

    def __post_init__(self):
        for name in ("rho_12", "rho_13", "rho_23"):
            value = getattr(self, name)
            if not -1.0 <= value <= 1.0:
                raise ValueError(f"{name} must be in [-1, 1], got {value}.")

    def matrix(self) -> np.ndarray:
        return np.array(
            [
                [1.0, self.rho_12, self.rho_13],
                [self.rho_12, 1.0, self.rho_23],
                [self.rho_13, self.rho_23, 1.0],
            ]
        )


@dataclass(frozen=True)
class TransitionInputs:
    """
    Market inputs for one forward.

    df_new_start: P2(u), df_old_end: P1(v), df_new_end: P2(v);
    spread_pv: (IBOR forward - overnight forward) * P2(v).
    """
    df_new_start: float
    df_old_end: float
    df_new_end: float
    accrual_factor: float
    spread_pv: float

    def __post_init__(self):
        for name in ("df_new_start", "df_old_end", "df_new_end"):
            if not getattr(self, name) > 0:
                raise ValueError(f"{name} must be positive.")
        if not self.accrual_factor > 0:
            raise ValueError("accrual_factor must be positive.")

    @classmethod
    def from_forward(
        cls,
        df_new_start: float,
        df_old_end: float,
        df_new_end: float,
        forward: float,
        accrual_factor: float,
    ) -> "TransitionInputs":
        overnight = (df_new_start / df_new_end - 1.0) / accrual_factor
        return cls(df_new_start, df_old_end, df_new_end, accrual_factor, (forward - overnight) * df_new_end)

    @property
    def overnight_forward(self) -> float:
        return (self.df_new_start / self.df_new_end - 1.0) / self.accrual_factor

    @property
    def spread(self) -> float:
        return self.spread_pv / self.df_new_end

    @property
    def forward(self) -> float:
        return self.overnight_forward + self.spread


@dataclass(frozen=True)
class AdjustmentRequest:
    inputs: TransitionInputs
    coefficients: ModelCoefficients
    correlation: CorrelationSpec
    spread_vol_scale: float

    def __post_init__(self):
        if not self.spread_vol_scale >= 0:
            raise ValueError("spread_vol_scale must be non-negative.")


@dataclass(frozen=True)
class LegDefinition:
    name: str
    alphas: Tuple[float, float, float]
    correlation: np.ndarray


@dataclass(frozen=True)
class LegAdjustment:
    name: str
    non_adjusted: float
    factor: float

    @property
    def result(self) -> float:
        return self.non_adjusted * self.factor


@dataclass(frozen=True)
class AdjustmentResult:
    forward: float
    forward_adjusted: float
    legs: Tuple[LegAdjustment, ...]

    @property
    def adjustment(self) -> float:
        return self.forward - self.forward_adjusted

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame(
            {
                "part": [leg.name for leg in self.legs],
                "non_adjusted": [leg.non_adjusted for leg in self.legs],
                "adjustment": [leg.factor for leg in self.legs],
                "result": [leg.result for leg in self.legs],
            }
        )


def check_correlation_matrix(matrix, tol: float = PSD_TOLERANCE) -> np.ndarray:
    """Validate a correlation matrix (symmetric, unit diagonal, PSD up to tol)."""
    m = np.asarray(matrix, dtype=float)
    if m.ndim != 2 or m.shape[0] != m.shape[1]:
        raise InvalidCovarianceMatrix(f"Correlation matrix must be square, got shape {m.shape}", np.atleast_2d(m))
    if not np.all(np.isfinite(m)):
        raise InvalidCovarianceMatrix("Correlation matrix has non-finite entries", m)
    if not np.allclose(m, m.T, rtol=0.0, atol=tol):
        raise InvalidCovarianceMatrix("Correlation matrix is not symmetric", m)
    if not np.allclose(np.diag(m), 1.0, rtol=0.0, atol=tol):
        raise InvalidCovarianceMatrix("Correlation matrix must have a unit diagonal", m)
    if np.any(np.abs(m) > 1.0 + tol):
        raise InvalidCovarianceMatrix("Correlation entries must lie in [-1, 1]", m)
    min_eig = float(np.linalg.eigvalsh(m).min())
    if min_eig < -tol:
        raise InvalidCovarianceMatrix("Correlation matrix is not positive semi-definite", m)
    return m


def correlation_from_covariance(alphas: Sequence[float], covariance) -> np.ndarray:
    """Normalise off-diagonal covariances by alpha_i * alpha_j; zero-variance pairs get zero correlation."""
    a = np.asarray(alphas, dtype=float)
    cov = np.asarray(covariance, dtype=float)
    scale = np.outer(a, a)
    with np.errstate(divide="ignore", invalid="ignore"):
        corr = np.where(scale > 0.0, cov / scale, 0.0)
    np.fill_diagonal(corr, 1.0)
    return corr


def _leg(name: str, alphas: Tuple[float, float, float], cov_01: float, cov_02: float, cov_12: float) -> LegDefinition:
    cov = np.array(
        [
            [0.0, cov_01, cov_02],
            [cov_01, 0.0, cov_12],
            [cov_02, cov_12, 0.0],
        ]
    )
    return LegDefinition(name, alphas, correlation_from_covariance(alphas, cov))


def leg_correlations(
    coefficients: ModelCoefficients,
    correlation: CorrelationSpec,
    spread_vol_scale: float,
) -> Tuple[LegDefinition, LegDefinition, LegDefinition]:
    c = coefficients
    rho_12 = correlation.rho_12
    a = spread_vol_scale
    old_new = rho_12 * c.cross_old_new_tv_tv

    start = _leg(
        "start",
        (c.alpha_old_tv, c.alpha_new_tv, c.alpha_new_thetau),
        old_new,
        rho_12 * c.cross_old_new_tv_thetau,
        c.cross_new_tv_thetau,
    )
    end = _leg(
        "end",
        (c.alpha_old_tv, c.alpha_new_tv, c.alpha_new_thetav),
        old_new,
        rho_12 * c.cross_old_new_tv_thetav,
        c.cross_new_tv_thetav,
    )
    spread = _leg(
        "spread",
        (c.alpha_old_tv, c.alpha_new_tv, a * c.alpha_spread),
        old_new,
        a * correlation.rho_13 * c.cross_old_spread,
        a * correlation.rho_23 * c.cross_new_spread,
    )
    return start, end, spread


def convexity_adjustment(matrix, alphas: Sequence[float], signs: Sequence[float] = LEG_SIGNS) -> float:
    """E[exp(sum_i s_i (X_i + alpha_i^2 / 2))] for X ~ N(0, diag(alpha) R diag(alpha))."""
    corr = check_correlation_matrix(matrix)
    a = np.asarray(alphas, dtype=float)
    s = np.asarray(signs, dtype=float)
    if a.shape != (corr.shape[0],) or s.shape != a.shape:
        raise ValueError("alphas and signs must match the correlation matrix dimension.")
    b = s * a
    log_adj = 0.5 * float(np.dot(s, a * a)) + 0.5 * float(b @ corr @ b)
    return math.exp(log_adj)


def _gaussian_integrand(corr: np.ndarray, alphas: np.ndarray, signs: np.ndarray, reduce_first: bool):
    """
    Integrand in standardised coordinates z (X_i = alpha_i z_i).

    With reduce_first the first variable is integrated analytically:
    int exp(-a z0^2 / 2 + beta z0) dz0 = sqrt(2 pi / a) exp(beta^2 / (2 a)).
    """
    if float(np.linalg.eigvalsh(corr).min()) <= PSD_TOLERANCE:
        raise InvalidCovarianceMatrix("Numerical integration needs a positive definite correlation matrix", corr)

    n = corr.shape[0]
    precision = np.linalg.inv(corr)
    norm = (2.0 * math.pi) ** (0.5 * n) * math.sqrt(float(np.linalg.det(corr)))
    b = [float(x) for x in signs * alphas]
    c = 0.5 * float(np.dot(signs, alphas * alphas))
    p = [[float(precision[i, j]) for j in range(n)] for i in range(n)]

    if not reduce_first:
        def full(*z: float) -> float:
            quad = 0.0
            for i in range(n):
                row = p[i]
                quad += z[i] * sum(row[j] * z[j] for j in range(n))
            linear = sum(b[i] * z[i] for i in range(n))
            return math.exp(linear + c - 0.5 * quad) / norm

        return full

    a = p[0][0]
    factor = math.sqrt(2.0 * math.pi / a) / norm

    def reduced(*rest: float) -> float:
        z = (0.0,) + rest
        beta = b[0] - sum(p[0][j] * z[j] for j in range(1, n))
        quad = 0.0
        for i in range(1, n):
            row = p[i]
            quad += z[i] * sum(row[j] * z[j] for j in range(1, n))
        linear = sum(b[i] * z[i] for i in range(1, n))
        return factor * math.exp(0.5 * beta * beta / a + linear + c - 0.5 * quad)

    return reduced


def _integrate_box(corr, alphas, signs, settings: IntegrationSettings, dimension: int, half_width: float) -> float:
    n = corr.shape[0]
    if dimension not in (n, n - 1) or dimension < 1:
        raise ValueError(f"dimension must be {n} or {n - 1} for a {n}-variable expectation, got {dimension}.")
    integrand = _gaussian_integrand(corr, alphas, signs, reduce_first=(dimension == n - 1))
    integrator = RepeatedIntegrator(Integrator1D.from_settings(settings), dimension)
    box = [(-half_width, half_width)] * dimension
    return integrator.integrate(integrand, *box)


def truncation_error(
    matrix,
    alphas: Sequence[float],
    signs: Sequence[float] = LEG_SIGNS,
    settings: Optional[IntegrationSettings] = None,
    dimension: int = 2,
) -> float:
    """|I(h) - I(2h)| for box half-width h = settings.half_width."""
    settings = settings or IntegrationSettings()
    corr = check_correlation_matrix(matrix)
    a = np.asarray(alphas, dtype=float)
    s = np.asarray(signs, dtype=float)
    narrow = _integrate_box(corr, a, s, settings, dimension, settings.half_width)
    wide = _integrate_box(corr, a, s, settings, dimension, 2.0 * settings.half_width)
    return abs(wide - narrow)


def convexity_adjustment_numerical(
    matrix,
    alphas: Sequence[float],
    signs: Sequence[float] = LEG_SIGNS,
    settings: Optional[IntegrationSettings] = None,
    dimension: int = 2,
) -> float:
    """
    Same expectation as convexity_adjustment by repeated numerical integration
    over [-h, h]^dimension in standardised coordinates. dimension = n - 1
    integrates the first variable in closed form.
    """
    settings = settings or IntegrationSettings()
    corr = check_correlation_matrix(matrix)
    a = np.asarray(alphas, dtype=float)
    s = np.asarray(signs, dtype=float)
    if a.shape != (corr.shape[0],) or s.shape != a.shape:
        raise ValueError("alphas and signs must match the correlation matrix dimension.")

    value = _integrate_box(corr, a, s, settings, dimension, settings.half_width)
    if settings.check_truncation:
        wide = _integrate_box(corr, a, s, settings, dimension, 2.0 * settings.half_width)
        error = abs(wide - value)
        allowed = max(settings.abs_tol, settings.rel_tol * abs(wide))
        if error > allowed:
            raise IntegrationFailure(
                f"Truncation error {error:.3e} above tolerance {allowed:.3e} for half-width {settings.half_width}",
                -settings.half_width,
                settings.half_width,
                settings.abs_tol,
                settings.rel_tol,
                settings.limit,
            )
    return value


def adjustment_factors(
    coefficients: ModelCoefficients,
    correlation: CorrelationSpec,
    spread_vol_scale: float,
    method: str = "analytic",
    settings: Optional[IntegrationSettings] = None,
    dimension: int = 2,
) -> Dict[str, float]:
    """Convexity factor of each leg, keyed by leg name."""
    check_correlation_matrix(correlation.matrix())
    factors: Dict[str, float] = {}
    for leg in leg_correlations(coefficients, correlation, spread_vol_scale):
        if method == "analytic":
            factor = convexity_adjustment(leg.correlation, leg.alphas, LEG_SIGNS)
        elif method == "numerical":
            factor = convexity_adjustment_numerical(leg.correlation, leg.alphas, LEG_SIGNS, settings, dimension)
        else:
            raise ValueError(f"Unknown method: {method}")
        logger.debug("Leg %s (%s): factor=%.12f", leg.name, method, factor)
        factors[leg.name] = factor
    return factors


def adjust(
    request: AdjustmentRequest,
    method: str = "analytic",
    settings: Optional[IntegrationSettings] = None,
    dimension: int = 2,
) -> AdjustmentResult:
    inputs = request.inputs
    factors = adjustment_factors(
        request.coefficients, request.correlation, request.spread_vol_scale, method, settings, dimension
    )

    # each leg R * X / P1(v) simplifies to X / P2(v)
    ratio = inputs.df_old_end / inputs.df_new_end
    parts = {
        "start": ratio * inputs.df_new_start / inputs.accrual_factor / inputs.df_old_end,
        "end": -ratio * inputs.df_new_end / inputs.accrual_factor / inputs.df_old_end,
        "spread": ratio * inputs.spread_pv / inputs.df_old_end,
    }
    legs = tuple(LegAdjustment(name, parts[name], factors[name]) for name in LEG_NAMES)
    forward_adjusted = sum(leg.result for leg in legs)
    return AdjustmentResult(forward=sum(parts.values()), forward_adjusted=forward_adjusted, legs=legs)


def adjusted_forward(
    coefficients: ModelCoefficients,
    inputs: TransitionInputs,
    correlation: CorrelationSpec,
    spread_vol_scale: float,
) -> float:
    """Forward rate including the benchmark transition convexity adjustment."""
    request = AdjustmentRequest(inputs, coefficients, correlation, spread_vol_scale)
    return adjust(request).forward_adjusted
