"""
Repeated numerical integration.

A 1-D adaptive integrator (scipy QUADPACK) is composed recursively: an N-D
integral peels off its first variable as a 1-D integration and hands the
resulting function of the remaining N-1 variables to the (N-1)-D integrator.

The first argument of the integrand is always the innermost variable.
"""

from __future__ import annotations

import logging
import math
import warnings
from typing import Callable, Optional, Sequence, Tuple

from scipy import integrate
from scipy.integrate import IntegrationWarning

from .config import IntegrationSettings
from .errors import DegenerateInterval, IntegrationFailure

logger = logging.getLogger(__name__)

Bounds = Tuple[float, float]


def _check_bounds(lower: float, upper: float) -> None:
    if not (math.isfinite(lower) and math.isfinite(upper)):
        raise ValueError(f"Integration bounds must be finite: [{lower}, {upper}]")
    if lower >= upper:
        raise DegenerateInterval(lower, upper)


class Integrator1D:
    """Adaptive Gauss-Kronrod integration of a scalar function on a finite interval."""

    def __init__(self, abs_tol: float = 1e-10, rel_tol: float = 1e-6, limit: int = 100):
        if abs_tol < 0 or rel_tol < 0:
            raise ValueError("Tolerances must be non-negative.")
        if limit < 1:
            raise ValueError("limit must be positive.")
        self.abs_tol = float(abs_tol)
        self.rel_tol = float(rel_tol)
        self.limit = int(limit)

    @classmethod
    def from_settings(cls, settings: IntegrationSettings) -> "Integrator1D":
        return cls(settings.abs_tol, settings.rel_tol, settings.limit)

    def __repr__(self) -> str:
        return f"Integrator1D(abs_tol={self.abs_tol}, rel_tol={self.rel_tol}, limit={self.limit})"

    def integrate(self, f: Callable[[float], float], lower: float, upper: float) -> float:
        """
        Integral of f over [lower, upper].

        An empty or inverted interval integrates to 0.0. Failure to meet the
        tolerances within `limit` subintervals raises IntegrationFailure.
        """
        try:
            _check_bounds(lower, upper)
        except DegenerateInterval as exc:
            logger.debug("Skipping integration: %s", exc)
            return 0.0

        with warnings.catch_warnings():
            warnings.simplefilter("error", IntegrationWarning)
            try:
                value, _ = integrate.quad(
                    f, lower, upper, epsabs=self.abs_tol, epsrel=self.rel_tol, limit=self.limit
                )
            except IntegrationWarning as exc:
                reason = str(exc).strip().splitlines()[0]
                logger.error("1-D integration failed on [%s, %s]: %s", lower, upper, reason)
                raise IntegrationFailure(
                    reason, lower, upper, self.abs_tol, self.rel_tol, self.limit
                ) from exc
        return float(value)


class RepeatedIntegrator:
    """
    N-dimensional integration over a box by repeated 1-D integration.

    `inner` integrates the first (innermost) variable; `outer` integrates all
    the others and defaults to `inner`.
    """

    def __init__(self, inner: Integrator1D, dimension: int, outer: Optional[Integrator1D] = None):
        if dimension < 1:
            raise ValueError("dimension must be at least 1.")
        self.inner = inner
        self.outer = outer if outer is not None else inner
        self.dimension = int(dimension)

    def integrate(self, f: Callable[..., float], *bounds: Sequence[float]) -> float:
        if len(bounds) != self.dimension:
            raise ValueError(f"Expected {self.dimension} bound pairs, got {len(bounds)}.")
        pairs = [_as_pair(b) for b in bounds]

        for lo, hi in pairs:
            try:
                _check_bounds(lo, hi)
            except DegenerateInterval as exc:
                logger.debug("Collapsed %d-D box: %s", self.dimension, exc)
                return 0.0

        (lo, hi), rest = pairs[0], pairs[1:]
        if not rest:
            return self.inner.integrate(f, lo, hi)

        inner = self.inner

        def peeled(*others: float) -> float:
            return inner.integrate(lambda x: f(x, *others), lo, hi)

        reduced = RepeatedIntegrator(self.outer, self.dimension - 1)
        return reduced.integrate(peeled, *rest)


class IntegratorRepeated2D(RepeatedIntegrator):
    """Integrates g(x, y): x inner, y outer."""

    def __init__(self, inner: Integrator1D, outer: Optional[Integrator1D] = None):
        super().__init__(inner, 2, outer)

    def integrate(self, g: Callable[[float, float], float], x_bounds: Bounds, y_bounds: Bounds) -> float:
        return super().integrate(g, x_bounds, y_bounds)


class IntegratorRepeated3D(RepeatedIntegrator):
    """Integrates f(x, y, z): x innermost, then the 2-D integral over (y, z)."""

    def __init__(self, inner: Integrator1D, outer: Optional[Integrator1D] = None):
        super().__init__(inner, 3, outer)

    def integrate(
        self,
        f: Callable[[float, float, float], float],
        x_bounds: Bounds,
        y_bounds: Bounds,
        z_bounds: Bounds,
    ) -> float:
        return super().integrate(f, x_bounds, y_bounds, z_bounds)


def _as_pair(bounds: Sequence[float]) -> Bounds:
    if len(bounds) != 2:
        raise ValueError(f"Bounds must be a (lower, upper) pair, got {bounds!r}")
    return float(bounds[0]), float(bounds[1])


def integrate_1d(
    f: Callable[[float], float],
    bounds: Bounds,
    abs_tol: float = 1e-10,
    rel_tol: float = 1e-6,
    limit: int = 100,
) -> float:
    lo, hi = _as_pair(bounds)
    return Integrator1D(abs_tol, rel_tol, limit).integrate(f, lo, hi)


def integrate_2d(
    g: Callable[[float, float], float],
    x_bounds: Bounds,
    y_bounds: Bounds,
    abs_tol: float = 1e-10,
    rel_tol: float = 1e-6,
    limit: int = 100,
) -> float:
    return IntegratorRepeated2D(Integrator1D(abs_tol, rel_tol, limit)).integrate(g, x_bounds, y_bounds)


def integrate_3d(
    f: Callable[[float, float, float], float],
    x_bounds: Bounds,
    y_bounds: Bounds,
    z_bounds: Bounds,
    abs_tol: float = 1e-10,
    rel_tol: float = 1e-6,
    limit: int = 100,
) -> float:
    return IntegratorRepeated3D(Integrator1D(abs_tol, rel_tol, limit)).integrate(f, x_bounds, y_bounds, z_bounds)
