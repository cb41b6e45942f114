"""
Gaussian short-rate model parameters.

- PiecewiseConstantVolatility: left-closed, right-open volatility steps.
- TimeMeasure: calendar date -> model time (years from valuation).
- HullWhiteOneFactorParameters / G2ppParameters: one- and two-factor
  mean-reverting Gaussian models of one discounting curve.
"""

from __future__ import annotations

import datetime
from bisect import bisect_right
from dataclasses import dataclass
from typing import Optional, Tuple, Union

import numpy as np
import pandas as pd

from .utils import signed_yearfrac

SECONDS_PER_YEAR = 365.0 * 24.0 * 3600.0


@dataclass(frozen=True)
class PiecewiseConstantVolatility:
    """
    values[0] on (-inf, times[0]), values[i] on [times[i-1], times[i]),
    values[-1] on [times[-1], +inf).
    """
    values: Tuple[float, ...]
    times: Tuple[float, ...] = ()

    def __post_init__(self):
        values = tuple(float(v) for v in np.atleast_1d(np.asarray(self.values, dtype=float)))
        times = tuple(float(t) for t in np.atleast_1d(np.asarray(self.times, dtype=float)))
        if len(values) != len(times) + 1:
            raise ValueError(
                f"Need len(values) == len(times) + 1, got {len(values)} values and {len(times)} times."
            )
        if any(not np.isfinite(v) or v < 0 for v in values):
            raise ValueError("Volatility values must be finite and non-negative.")
        if any(not np.isfinite(t) for t in times):
            raise ValueError("Volatility breakpoints must be finite.")
        if np.any(np.diff(times) <= 0):
            raise ValueError("Volatility breakpoints must be strictly increasing.")
        object.__setattr__(self, "values", values)
        object.__setattr__(self, "times", times)

    @classmethod
    def constant(cls, sigma: float) -> "PiecewiseConstantVolatility":
        return cls((sigma,), ())

    def value_at(self, t: float) -> float:
        return self.values[bisect_right(self.times, t)]

    def breakpoints_within(self, lower: float, upper: float) -> Tuple[float, ...]:
        """Breakpoints strictly inside (lower, upper)."""
        return tuple(t for t in self.times if lower < t < upper)

    def scaled(self, factor: float) -> "PiecewiseConstantVolatility":
        return PiecewiseConstantVolatility(tuple(v * factor for v in self.values), self.times)


@dataclass(frozen=True)
class TimeMeasure:
    """
    Converts dates into model time.

    Without a zone the measure is the day count year fraction from the
    valuation date. With valuation_time and valuation_zone it is the elapsed
    seconds between the zoned instants over the seconds in a 365-day year.
    """
    valuation_date: pd.Timestamp
    day_count: str = "ACT/365F"
    valuation_time: Optional[datetime.time] = None
    valuation_zone: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, "valuation_date", pd.Timestamp(self.valuation_date).normalize())
        if (self.valuation_time is None) != (self.valuation_zone is None):
            raise ValueError("valuation_time and valuation_zone must be given together.")

    def _instant(self, date: pd.Timestamp) -> pd.Timestamp:
        local = pd.Timestamp.combine(pd.Timestamp(date).date(), self.valuation_time)
        return local.tz_localize(self.valuation_zone, ambiguous=False, nonexistent="shift_forward")

    def relative_time(self, date: pd.Timestamp) -> float:
        date = pd.Timestamp(date).normalize()
        if self.valuation_zone is not None:
            elapsed = self._instant(date) - self._instant(self.valuation_date)
            return elapsed.total_seconds() / SECONDS_PER_YEAR
        return signed_yearfrac(self.valuation_date, date, self.day_count)


Factor = Tuple[float, PiecewiseConstantVolatility]


def _as_volatility(vol) -> PiecewiseConstantVolatility:
    if isinstance(vol, PiecewiseConstantVolatility):
        return vol
    return PiecewiseConstantVolatility.constant(float(vol))


def _check_mean_reversion(kappa: float) -> None:
    if not np.isfinite(kappa) or kappa < 0:
        raise ValueError(f"Mean reversion must be finite and non-negative, got {kappa}.")


class _ModelTime:
    time_measure: Optional[TimeMeasure]

    def relative_time(self, date: pd.Timestamp) -> float:
        if self.time_measure is None:
            raise ValueError("Model has no time measure; pass model times directly.")
        return self.time_measure.relative_time(date)


@dataclass(frozen=True)
class HullWhiteOneFactorParameters(_ModelTime):
    mean_reversion: float
    volatility: PiecewiseConstantVolatility
    time_measure: Optional[TimeMeasure] = None

    def __post_init__(self):
        _check_mean_reversion(self.mean_reversion)
        object.__setattr__(self, "mean_reversion", float(self.mean_reversion))
        object.__setattr__(self, "volatility", _as_volatility(self.volatility))

    @property
    def n_factors(self) -> int:
        return 1

    def factors(self) -> Tuple[Factor, ...]:
        return ((self.mean_reversion, self.volatility),)

    def factor_correlation(self) -> np.ndarray:
        return np.array([[1.0]])


@dataclass(frozen=True)
class G2ppParameters(_ModelTime):
    """Two-factor Gaussian (G2++) model; factors driven by Brownian motions with correlation `correlation`."""
    mean_reversion_1: float
    mean_reversion_2: float
    volatility_1: PiecewiseConstantVolatility
    volatility_2: PiecewiseConstantVolatility
    correlation: float
    time_measure: Optional[TimeMeasure] = None

    def __post_init__(self):
        _check_mean_reversion(self.mean_reversion_1)
        _check_mean_reversion(self.mean_reversion_2)
        if not -1.0 <= self.correlation <= 1.0:
            raise ValueError(f"Factor correlation must be in [-1, 1], got {self.correlation}.")
        object.__setattr__(self, "mean_reversion_1", float(self.mean_reversion_1))
        object.__setattr__(self, "mean_reversion_2", float(self.mean_reversion_2))
        object.__setattr__(self, "correlation", float(self.correlation))
        object.__setattr__(self, "volatility_1", _as_volatility(self.volatility_1))
        object.__setattr__(self, "volatility_2", _as_volatility(self.volatility_2))

    @property
    def n_factors(self) -> int:
        return 2

    def factors(self) -> Tuple[Factor, ...]:
        return (
            (self.mean_reversion_1, self.volatility_1),
            (self.mean_reversion_2, self.volatility_2),
        )

    def factor_correlation(self) -> np.ndarray:
        rho = self.correlation
        return np.array([[1.0, rho], [rho, 1.0]])


ShortRateModelParameters = Union[HullWhiteOneFactorParameters, G2ppParameters]
