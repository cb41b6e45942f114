from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Tuple

import pandas as pd


@dataclass(frozen=True)
class IntegrationSettings:
    """
    Tolerances and truncation for the numerical convexity adjustment.

    half_width is the box half-width in standard deviations: the Gaussian
    integrals run over [-half_width, half_width] per dimension.
    """
    abs_tol: float = 1e-10
    rel_tol: float = 1e-6
    limit: int = 100
    half_width: float = 10.0
    check_truncation: bool = False

    def __post_init__(self):
        if self.abs_tol < 0 or self.rel_tol < 0:
            raise ValueError("Tolerances must be non-negative.")
        if self.abs_tol == 0 and self.rel_tol == 0:
            raise ValueError("At least one tolerance must be positive.")
        if self.limit < 1:
            raise ValueError("limit must be a positive number of subintervals.")
        if not self.half_width > 0:
            raise ValueError("half_width must be positive.")


@dataclass(frozen=True)
class TransitionAnalysisConfig:
    """Inputs of the benchmark transition analyses (dates, model and correlation levels)."""
    valuation_date: pd.Timestamp = pd.Timestamp("2019-10-04")
    big_bang_date: pd.Timestamp = pd.Timestamp("2020-10-16")
    fixing_date: pd.Timestamp = pd.Timestamp("2030-10-16")
    accrual_months: int = 3
    settlement_lag_days: int = 2
    accrual_day_count: str = "ACT/360"

    mean_reversion: float = 0.05
    volatility: float = 0.01
    rho_12: float = 0.90
    rho_13: float = 0.25
    rho_23: float = 0.25
    spread_vol_scale: float = 0.50

    # hybrid set-up: old curve on the first factor of the new curve G2++ model
    g2pp_mean_reversion_2: float = 0.15
    g2pp_volatility_2: float = 0.0005
    g2pp_correlation: float = 0.25

    # two G2++ curve models sharing their factor correlation, (first, second) factor volatilities
    g2pp_pair_volatilities_old: Tuple[float, float] = (0.01, 0.0001)
    g2pp_pair_volatilities_new: Tuple[float, float] = (0.0099, 0.0005)
    g2pp_pair_mean_reversion_2: float = 0.20
    g2pp_pair_correlation: float = -0.50

    # flat continuously-compounded levels of the demo curves
    old_discount_rate: float = 0.0190
    new_discount_rate: float = 0.0180
    ibor_rate: float = 0.0210
    curve_horizon_years: int = 40

    output_dir: Path = Path("outputs")


DEFAULT_CONFIG = TransitionAnalysisConfig()
DEFAULT_INTEGRATION = IntegrationSettings()
