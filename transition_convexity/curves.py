from __future__ import annotations

import numpy as np
import pandas as pd
from dataclasses import dataclass
from typing import Iterable, Sequence

from .utils import yearfrac


@dataclass(frozen=True)
class ZeroCurve:
    """
    Discount curve given by knot discount factors, interpolated linearly in
    log discount factor space.

    - Within knot range: log-linear interpolation on DF.
    - Short-end extrapolation: flat cc zero implied by first knot.
    - Long-end extrapolation: NOT allowed (raises).
    """
    val_date: pd.Timestamp
    knot_dates: np.ndarray          # dtype datetime64[ns]
    knot_log_dfs: np.ndarray        # log(D)
    zero_day_count: str = "ACT/365"

    @classmethod
    def from_zero_rates(
        cls,
        val_date: pd.Timestamp,
        dates: Sequence[pd.Timestamp],
        zero_rates: Sequence[float],
        zero_day_count: str = "ACT/365",
    ) -> "ZeroCurve":
        val_date = pd.Timestamp(val_date)
        dates = [pd.Timestamp(d) for d in dates]
        if len(dates) != len(zero_rates) or not dates:
            raise ValueError("Need one zero rate per knot date.")
        if any(b <= a for a, b in zip(dates[:-1], dates[1:])):
            raise ValueError("Knot dates must be strictly increasing.")
        taus = np.array([yearfrac(val_date, d, zero_day_count) for d in dates], dtype=float)
        if np.any(taus <= 0):
            raise ValueError("Knot dates must be after valuation date.")
        kd = np.array([d.to_datetime64() for d in dates], dtype="datetime64[ns]")
        return cls(val_date, kd, -np.asarray(zero_rates, dtype=float) * taus, zero_day_count)

    def _to_datetime64(self, dates: Iterable[pd.Timestamp]) -> np.ndarray:
        return np.array([pd.Timestamp(d).to_datetime64() for d in dates], dtype="datetime64[ns]")

    def df(self, dates: Iterable[pd.Timestamp]) -> np.ndarray:
        dates_list = [pd.Timestamp(d) for d in dates]
        x = self._to_datetime64(dates_list).astype("datetime64[ns]").astype("int64")
        kx = self.knot_dates.astype("datetime64[ns]").astype("int64")
        kv = self.knot_log_dfs

        if x.max() > kx.max():
            raise ValueError("Requested date beyond curve knot range (no long-end extrapolation).")

        first_date = pd.Timestamp(pd.to_datetime(self.knot_dates[0]))
        tau1 = yearfrac(self.val_date, first_date, self.zero_day_count)
        if tau1 <= 0:
            raise ValueError("First knot must be after valuation date.")
        z1 = -kv[0] / tau1

        out = np.empty_like(x, dtype=float)

        mask_short = x < kx.min()
        if np.any(mask_short):
            idxs = np.where(mask_short)[0]
            if any(dates_list[i] < self.val_date for i in idxs):
                raise ValueError("Requested date before valuation date.")
            taus = np.array([yearfrac(self.val_date, dates_list[i], self.zero_day_count) for i in idxs], dtype=float)
            out[mask_short] = np.exp(-z1 * taus)

        mask_in = ~mask_short
        if np.any(mask_in):
            out[mask_in] = np.exp(np.interp(x[mask_in], kx, kv))

        return out

    def discount_factor(self, date: pd.Timestamp) -> float:
        return float(self.df([date])[0])


def flat_curve(
    val_date: pd.Timestamp,
    rate: float,
    horizon_years: int = 40,
    zero_day_count: str = "ACT/365",
) -> ZeroCurve:
    """Curve with a constant continuously-compounded zero rate and annual knots."""
    if horizon_years < 1:
        raise ValueError("horizon_years must be at least 1.")
    val_date = pd.Timestamp(val_date)
    dates = [val_date + pd.DateOffset(years=k) for k in range(1, horizon_years + 1)]
    return ZeroCurve.from_zero_rates(val_date, dates, [rate] * len(dates), zero_day_count)


def simple_forward(curve: ZeroCurve, start: pd.Timestamp, end: pd.Timestamp, day_count: str = "ACT/360") -> float:
    """Simply-compounded forward rate over [start, end] implied by the curve."""
    delta = yearfrac(start, end, day_count)
    if delta <= 0:
        raise ValueError("Forward period must have positive length.")
    df_start, df_end = curve.df([start, end])
    return float((df_start / df_end - 1.0) / delta)


@dataclass(frozen=True)
class TransitionCurves:
    """Old and new benchmark discounting curves plus the IBOR projection curve."""
    old_discount: ZeroCurve
    new_discount: ZeroCurve
    ibor_projection: ZeroCurve
