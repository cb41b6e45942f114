"""
Analyses of the transition convexity adjustment over parameter grids.

Each grid point is independent; run_grid evaluates them sequentially or in a
process pool and reports failures per point in an `error` column.
"""

from __future__ import annotations

import logging
from concurrent.futures import ProcessPoolExecutor
from dataclasses import dataclass, replace
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from .config import DEFAULT_CONFIG, IntegrationSettings, TransitionAnalysisConfig
from .convexity import (
    AdjustmentRequest,
    CorrelationSpec,
    TransitionInputs,
    adjust,
    adjustment_factors,
)
from .curves import TransitionCurves, flat_curve, simple_forward
from .errors import TransitionConvexityError
from .formulas import model_coefficients
from .models import (
    G2ppParameters,
    HullWhiteOneFactorParameters,
    PiecewiseConstantVolatility,
    ShortRateModelParameters,
    TimeMeasure,
)
from .utils import accrual_period, yearfrac

logger = logging.getLogger(__name__)

MIN_FIXING_GAP = pd.DateOffset(months=6)


def default_curves(config: TransitionAnalysisConfig = DEFAULT_CONFIG) -> TransitionCurves:
    """Flat demo curves at the configured levels."""
    return TransitionCurves(
        old_discount=flat_curve(config.valuation_date, config.old_discount_rate, config.curve_horizon_years),
        new_discount=flat_curve(config.valuation_date, config.new_discount_rate, config.curve_horizon_years),
        ibor_projection=flat_curve(config.valuation_date, config.ibor_rate, config.curve_horizon_years),
    )


def hull_white_models(
    config: TransitionAnalysisConfig = DEFAULT_CONFIG,
    mean_reversion: Optional[float] = None,
    volatility: Optional[float] = None,
    new_volatility_ratio: float = 1.0,
) -> Tuple[HullWhiteOneFactorParameters, HullWhiteOneFactorParameters]:
    """Old and new curve Hull-White models; the new curve volatility is scaled by new_volatility_ratio."""
    kappa = config.mean_reversion if mean_reversion is None else mean_reversion
    sigma = config.volatility if volatility is None else volatility
    time_measure = TimeMeasure(config.valuation_date)
    vol = PiecewiseConstantVolatility.constant(sigma)
    old = HullWhiteOneFactorParameters(kappa, vol, time_measure)
    new = HullWhiteOneFactorParameters(kappa, vol.scaled(new_volatility_ratio), time_measure)
    return old, new


def g2pp_models(
    config: TransitionAnalysisConfig = DEFAULT_CONFIG,
    mean_reversion_2: Optional[float] = None,
    volatility_2: Optional[float] = None,
    factor_correlation: Optional[float] = None,
) -> Tuple[HullWhiteOneFactorParameters, G2ppParameters]:
    """
    Hybrid set-up: the old curve is a Hull-White model driven by the first
    factor of the new curve G2++ model, so the two curves differ by the
    second factor only.
    """
    time_measure = TimeMeasure(config.valuation_date)
    old = HullWhiteOneFactorParameters(config.mean_reversion, config.volatility, time_measure)
    new = G2ppParameters(
        config.mean_reversion,
        config.g2pp_mean_reversion_2 if mean_reversion_2 is None else mean_reversion_2,
        config.volatility,
        config.g2pp_volatility_2 if volatility_2 is None else volatility_2,
        config.g2pp_correlation if factor_correlation is None else factor_correlation,
        time_measure,
    )
    return old, new


def g2pp_pair_models(config: TransitionAnalysisConfig = DEFAULT_CONFIG) -> Tuple[G2ppParameters, G2ppParameters]:
    """Old and new curve G2++ models sharing their factor correlation."""
    time_measure = TimeMeasure(config.valuation_date)
    old_1, old_2 = config.g2pp_pair_volatilities_old
    new_1, new_2 = config.g2pp_pair_volatilities_new
    kappa_1, kappa_2, rho = config.mean_reversion, config.g2pp_pair_mean_reversion_2, config.g2pp_pair_correlation
    return (
        G2ppParameters(kappa_1, kappa_2, old_1, old_2, rho, time_measure),
        G2ppParameters(kappa_1, kappa_2, new_1, new_2, rho, time_measure),
    )


def config_correlation(config: TransitionAnalysisConfig = DEFAULT_CONFIG) -> CorrelationSpec:
    return CorrelationSpec(config.rho_12, config.rho_13, config.rho_23)


def hybrid_correlation(spread_correlation: float) -> CorrelationSpec:
    # one Brownian motion drives the old curve and the first new curve factor
    return CorrelationSpec(1.0, spread_correlation, spread_correlation)


def transition_inputs(
    curves: TransitionCurves,
    start: pd.Timestamp,
    end: pd.Timestamp,
    config: TransitionAnalysisConfig = DEFAULT_CONFIG,
) -> TransitionInputs:
    """Discount factors and forward over the accrual period [start, end]."""
    delta = yearfrac(start, end, config.accrual_day_count)
    df_new_start, df_new_end = curves.new_discount.df([start, end])
    df_old_end = curves.old_discount.discount_factor(end)
    forward = simple_forward(curves.ibor_projection, start, end, config.accrual_day_count)
    return TransitionInputs.from_forward(float(df_new_start), df_old_end, float(df_new_end), forward, delta)


@dataclass(frozen=True)
class GridPoint:
    labels: Tuple[Tuple[str, object], ...]
    old_model: ShortRateModelParameters
    new_model: ShortRateModelParameters
    curves: TransitionCurves
    correlation: CorrelationSpec
    spread_vol_scale: float
    big_bang_date: pd.Timestamp
    fixing_date: pd.Timestamp
    config: TransitionAnalysisConfig = DEFAULT_CONFIG


def evaluate_point(point: GridPoint) -> Dict[str, float]:
    config = point.config
    start, end = accrual_period(point.fixing_date, config.accrual_months, config.settlement_lag_days)
    inputs = transition_inputs(point.curves, start, end, config)
    coefficients = model_coefficients(
        point.old_model, point.new_model, point.big_bang_date, point.fixing_date, start, end
    )
    result = adjust(AdjustmentRequest(inputs, coefficients, point.correlation, point.spread_vol_scale))
    return {
        "forward": result.forward,
        "forward_adjusted": result.forward_adjusted,
        "adjustment": result.adjustment,
        "adjustment_bp": result.adjustment * 1e4,
    }


def _evaluate_safely(evaluate: Callable[[GridPoint], Dict[str, float]], point: GridPoint) -> Dict[str, object]:
    record: Dict[str, object] = dict(point.labels)
    try:
        record.update(evaluate(point))
        record["error"] = None
    except (TransitionConvexityError, ValueError, ArithmeticError) as exc:
        logger.warning("Grid point %s failed: %s", dict(point.labels), exc)
        record.update({"forward": np.nan, "forward_adjusted": np.nan, "adjustment": np.nan, "adjustment_bp": np.nan})
        record["error"] = f"{type(exc).__name__}: {exc}"
    return record


def run_grid(
    points: Sequence[GridPoint],
    evaluate: Callable[[GridPoint], Dict[str, float]] = evaluate_point,
    max_workers: Optional[int] = None,
) -> pd.DataFrame:
    """
    Evaluate independent grid points, in input order.

    max_workers None or 1 runs in-process; larger values use a process pool,
    which needs a picklable (module-level) `evaluate`.
    """
    points = list(points)
    logger.info("Evaluating %d grid points (max_workers=%s)", len(points), max_workers)
    if max_workers is None or max_workers <= 1 or len(points) <= 1:
        records = [_evaluate_safely(evaluate, p) for p in points]
    else:
        with ProcessPoolExecutor(max_workers=max_workers) as pool:
            records = list(pool.map(_evaluate_safely, [evaluate] * len(points), points))
    out = pd.DataFrame.from_records(records)
    n_failed = int(out["error"].notna().sum()) if "error" in out else 0
    logger.info("Grid finished: %d points, %d failed", len(points), n_failed)
    return out


def _base_point(
    config: TransitionAnalysisConfig,
    curves: Optional[TransitionCurves],
    labels: Tuple[Tuple[str, object], ...],
    **overrides,
) -> GridPoint:
    old, new = hull_white_models(config)
    point = GridPoint(
        labels=labels,
        old_model=old,
        new_model=new,
        curves=curves if curves is not None else default_curves(config),
        correlation=config_correlation(config),
        spread_vol_scale=config.spread_vol_scale,
        big_bang_date=config.big_bang_date,
        fixing_date=config.fixing_date,
        config=config,
    )
    return replace(point, **overrides)


def _annual_dates(first: pd.Timestamp, last: pd.Timestamp) -> List[pd.Timestamp]:
    dates = []
    d = pd.Timestamp(first)
    while d <= pd.Timestamp(last):
        dates.append(d)
        d = d + pd.DateOffset(years=1)
    return dates


def adjusted_forward_by_fixing_date(
    config: TransitionAnalysisConfig = DEFAULT_CONFIG,
    curves: Optional[TransitionCurves] = None,
    fixing_dates: Optional[Iterable[pd.Timestamp]] = None,
    old_model: Optional[ShortRateModelParameters] = None,
    new_model: Optional[ShortRateModelParameters] = None,
    max_workers: Optional[int] = None,
) -> pd.DataFrame:
    if fixing_dates is None:
        fixing_dates = _annual_dates(config.big_bang_date + MIN_FIXING_GAP, config.fixing_date)
    curves = curves if curves is not None else default_curves(config)
    default_old, default_new = hull_white_models(config)
    points = [
        _base_point(
            config,
            curves,
            (("fixing_date", pd.Timestamp(d)),),
            fixing_date=pd.Timestamp(d),
            old_model=old_model or default_old,
            new_model=new_model or default_new,
        )
        for d in fixing_dates
    ]
    return run_grid(points, max_workers=max_workers)


def adjusted_forward_by_correlation(
    config: TransitionAnalysisConfig = DEFAULT_CONFIG,
    curves: Optional[TransitionCurves] = None,
    correlations: Optional[Iterable[float]] = None,
    max_workers: Optional[int] = None,
) -> pd.DataFrame:
    """Sweep of the old/new curve correlation rho_12."""
    if correlations is None:
        correlations = np.round(np.linspace(0.0, 1.0, 11), 2)
    curves = curves if curves is not None else default_curves(config)
    points = [
        _base_point(
            config,
            curves,
            (("rho_12", float(rho)),),
            correlation=CorrelationSpec(float(rho), config.rho_13, config.rho_23),
        )
        for rho in correlations
    ]
    return run_grid(points, max_workers=max_workers)


def adjusted_forward_by_mean_reversion(
    config: TransitionAnalysisConfig = DEFAULT_CONFIG,
    curves: Optional[TransitionCurves] = None,
    mean_reversions: Optional[Iterable[float]] = None,
    max_workers: Optional[int] = None,
) -> pd.DataFrame:
    if mean_reversions is None:
        mean_reversions = np.round(np.linspace(0.0, 0.10, 11), 3)
    curves = curves if curves is not None else default_curves(config)
    points = []
    for kappa in mean_reversions:
        old, new = hull_white_models(config, mean_reversion=float(kappa))
        points.append(_base_point(config, curves, (("mean_reversion", float(kappa)),), old_model=old, new_model=new))
    return run_grid(points, max_workers=max_workers)


def adjusted_forward_by_volatility(
    config: TransitionAnalysisConfig = DEFAULT_CONFIG,
    curves: Optional[TransitionCurves] = None,
    volatilities: Optional[Iterable[float]] = None,
    max_workers: Optional[int] = None,
) -> pd.DataFrame:
    """Same volatility on both curves."""
    if volatilities is None:
        volatilities = np.round(np.linspace(0.0025, 0.02, 8), 4)
    curves = curves if curves is not None else default_curves(config)
    points = []
    for sigma in volatilities:
        old, new = hull_white_models(config, volatility=float(sigma))
        points.append(_base_point(config, curves, (("volatility", float(sigma)),), old_model=old, new_model=new))
    return run_grid(points, max_workers=max_workers)


def adjusted_forward_by_volatility_ratio(
    config: TransitionAnalysisConfig = DEFAULT_CONFIG,
    curves: Optional[TransitionCurves] = None,
    ratios: Optional[Iterable[float]] = None,
    max_workers: Optional[int] = None,
) -> pd.DataFrame:
    """New curve volatility = ratio * old curve volatility."""
    if ratios is None:
        ratios = np.round(np.linspace(0.5, 1.5, 11), 2)
    curves = curves if curves is not None else default_curves(config)
    points = []
    for ratio in ratios:
        old, new = hull_white_models(config, new_volatility_ratio=float(ratio))
        points.append(_base_point(config, curves, (("vol_ratio", float(ratio)),), old_model=old, new_model=new))
    return run_grid(points, max_workers=max_workers)


def correlation_volatility_grid(
    config: TransitionAnalysisConfig = DEFAULT_CONFIG,
    curves: Optional[TransitionCurves] = None,
    correlations: Optional[Iterable[float]] = None,
    ratios: Optional[Iterable[float]] = None,
    max_workers: Optional[int] = None,
) -> pd.DataFrame:
    """Adjustment in bp, rho_12 in rows and new/old volatility ratio in columns."""
    correlations = np.round(np.linspace(0.5, 1.0, 6), 2) if correlations is None else correlations
    ratios = np.round(np.linspace(0.8, 1.2, 5), 2) if ratios is None else list(ratios)
    curves = curves if curves is not None else default_curves(config)
    points = []
    for rho in correlations:
        for ratio in ratios:
            old, new = hull_white_models(config, new_volatility_ratio=float(ratio))
            points.append(
                _base_point(
                    config,
                    curves,
                    (("rho_12", float(rho)), ("vol_ratio", float(ratio))),
                    old_model=old,
                    new_model=new,
                    correlation=CorrelationSpec(float(rho), config.rho_13, config.rho_23),
                )
            )
    frame = run_grid(points, max_workers=max_workers)
    return frame.pivot(index="rho_12", columns="vol_ratio", values="adjustment_bp")


def fixing_date_mean_reversion_grid(
    config: TransitionAnalysisConfig = DEFAULT_CONFIG,
    curves: Optional[TransitionCurves] = None,
    fixing_dates: Optional[Iterable[pd.Timestamp]] = None,
    mean_reversions: Optional[Iterable[float]] = None,
    max_workers: Optional[int] = None,
) -> pd.DataFrame:
    """Adjustment in bp, fixing dates in rows and mean reversion in columns."""
    if fixing_dates is None:
        fixing_dates = _annual_dates(config.big_bang_date + MIN_FIXING_GAP, config.fixing_date)
    mean_reversions = [0.0, 0.025, 0.05, 0.075, 0.10] if mean_reversions is None else list(mean_reversions)
    curves = curves if curves is not None else default_curves(config)
    points = []
    for d in fixing_dates:
        for kappa in mean_reversions:
            old, new = hull_white_models(config, mean_reversion=float(kappa))
            points.append(
                _base_point(
                    config,
                    curves,
                    (("fixing_date", pd.Timestamp(d)), ("mean_reversion", float(kappa))),
                    old_model=old,
                    new_model=new,
                    fixing_date=pd.Timestamp(d),
                )
            )
    frame = run_grid(points, max_workers=max_workers)
    return frame.pivot(index="fixing_date", columns="mean_reversion", values="adjustment_bp")


def big_bang_fixing_grid(
    config: TransitionAnalysisConfig = DEFAULT_CONFIG,
    curves: Optional[TransitionCurves] = None,
    big_bang_dates: Optional[Iterable[pd.Timestamp]] = None,
    fixing_dates: Optional[Iterable[pd.Timestamp]] = None,
    old_model: Optional[ShortRateModelParameters] = None,
    new_model: Optional[ShortRateModelParameters] = None,
    max_workers: Optional[int] = None,
) -> pd.DataFrame:
    """
    Adjustment in bp, big bang dates in rows and fixing dates in columns.

    Fixings less than six months after the big bang are reported as 0.
    """
    if big_bang_dates is None:
        big_bang_dates = _annual_dates(config.big_bang_date, config.big_bang_date + pd.DateOffset(years=4))
    if fixing_dates is None:
        fixing_dates = _annual_dates(config.big_bang_date + MIN_FIXING_GAP, config.fixing_date)
    big_bang_dates = [pd.Timestamp(d) for d in big_bang_dates]
    fixing_dates = [pd.Timestamp(d) for d in fixing_dates]
    curves = curves if curves is not None else default_curves(config)
    default_old, default_new = hull_white_models(config)

    points = []
    skipped = []
    for bb in big_bang_dates:
        for fx in fixing_dates:
            if fx < bb + MIN_FIXING_GAP:
                skipped.append({"big_bang_date": bb, "fixing_date": fx, "adjustment_bp": 0.0, "error": None})
                continue
            points.append(
                _base_point(
                    config,
                    curves,
                    (("big_bang_date", bb), ("fixing_date", fx)),
                    old_model=old_model or default_old,
                    new_model=new_model or default_new,
                    big_bang_date=bb,
                    fixing_date=fx,
                )
            )
    frame = pd.concat([run_grid(points, max_workers=max_workers), pd.DataFrame(skipped)], ignore_index=True)
    return frame.pivot(index="big_bang_date", columns="fixing_date", values="adjustment_bp")


def analytic_numerical_comparison(
    config: TransitionAnalysisConfig = DEFAULT_CONFIG,
    curves: Optional[TransitionCurves] = None,
    settings: Optional[IntegrationSettings] = None,
    dimension: int = 2,
) -> pd.DataFrame:
    """Leg factors from the closed form and from numerical integration, side by side."""
    point = _base_point(config, curves, ())
    start, end = accrual_period(point.fixing_date, config.accrual_months, config.settlement_lag_days)
    coefficients = model_coefficients(
        point.old_model, point.new_model, point.big_bang_date, point.fixing_date, start, end
    )
    analytic = adjustment_factors(coefficients, point.correlation, point.spread_vol_scale, "analytic")
    numerical = adjustment_factors(
        coefficients, point.correlation, point.spread_vol_scale, "numerical", settings, dimension
    )
    out = pd.DataFrame(
        {
            "leg": list(analytic.keys()),
            "analytic": list(analytic.values()),
            "numerical": [numerical[k] for k in analytic],
        }
    )
    out["difference"] = out["numerical"] - out["analytic"]
    return out


def g2pp_adjusted_forward_by_fixing_date(
    config: TransitionAnalysisConfig = DEFAULT_CONFIG,
    curves: Optional[TransitionCurves] = None,
    fixing_dates: Optional[Iterable[pd.Timestamp]] = None,
    max_workers: Optional[int] = None,
) -> pd.DataFrame:
    """Fixing date sweep with G2++ models on both curves."""
    old, new = g2pp_pair_models(config)
    return adjusted_forward_by_fixing_date(
        config, curves, fixing_dates, old_model=old, new_model=new, max_workers=max_workers
    )


def hybrid_correlation_grid(
    config: TransitionAnalysisConfig = DEFAULT_CONFIG,
    curves: Optional[TransitionCurves] = None,
    factor_correlations: Optional[Iterable[float]] = None,
    spread_correlations: Optional[Iterable[float]] = None,
    max_workers: Optional[int] = None,
) -> pd.DataFrame:
    """
    Hybrid G2++ adjustment in bp, factor correlation of the new curve model
    in rows and spread correlation in columns.
    """
    grid = np.round(np.linspace(-0.7, 0.7, 15), 2)
    factor_correlations = grid if factor_correlations is None else factor_correlations
    spread_correlations = grid if spread_correlations is None else list(spread_correlations)
    curves = curves if curves is not None else default_curves(config)
    points = []
    for rho in factor_correlations:
        old, new = g2pp_models(config, factor_correlation=float(rho))
        for rho_spread in spread_correlations:
            points.append(
                _base_point(
                    config,
                    curves,
                    (("factor_correlation", float(rho)), ("spread_correlation", float(rho_spread))),
                    old_model=old,
                    new_model=new,
                    correlation=hybrid_correlation(float(rho_spread)),
                )
            )
    frame = run_grid(points, max_workers=max_workers)
    return frame.pivot(index="factor_correlation", columns="spread_correlation", values="adjustment_bp")


def hybrid_volatility_mean_reversion_grid(
    config: TransitionAnalysisConfig = DEFAULT_CONFIG,
    curves: Optional[TransitionCurves] = None,
    volatilities_2: Optional[Iterable[float]] = None,
    mean_reversions_2: Optional[Iterable[float]] = None,
    max_workers: Optional[int] = None,
) -> pd.DataFrame:
    """
    Hybrid G2++ adjustment in bp, second factor volatility in rows and second
    factor mean reversion in columns.
    """
    if volatilities_2 is None:
        volatilities_2 = np.round(np.linspace(0.0001, 0.0015, 15), 4)
    if mean_reversions_2 is None:
        mean_reversions_2 = np.round(np.linspace(0.01, 0.15, 15), 2)
    mean_reversions_2 = list(mean_reversions_2)
    curves = curves if curves is not None else default_curves(config)
    correlation = hybrid_correlation(config.rho_23)
    points = []
    for sigma_2 in volatilities_2:
        for kappa_2 in mean_reversions_2:
            old, new = g2pp_models(config, mean_reversion_2=float(kappa_2), volatility_2=float(sigma_2))
            points.append(
                _base_point(
                    config,
                    curves,
                    (("volatility_2", float(sigma_2)), ("mean_reversion_2", float(kappa_2))),
                    old_model=old,
                    new_model=new,
                    correlation=correlation,
                )
            )
    frame = run_grid(points, max_workers=max_workers)
    return frame.pivot(index="volatility_2", columns="mean_reversion_2", values="adjustment_bp")
