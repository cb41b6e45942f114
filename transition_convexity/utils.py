from __future__ import annotations

import pandas as pd
from typing import Tuple


def yearfrac(start: pd.Timestamp, end: pd.Timestamp, convention: str) -> float:
    """
    Year fraction between two dates under a day count convention.

    Supported:
    - ACT/365, ACT/365F
    - ACT/360
    - 30/360, 30/360US (US bond basis)
    """
    start = pd.Timestamp(start)
    end = pd.Timestamp(end)

    convention = convention.upper().replace(" ", "")
    if end < start:
        raise ValueError(f"end < start: {start=} {end=}")

    if convention in ("ACT/365", "ACT/365F"):
        return (end - start).days / 365.0

    if convention == "ACT/360":
        return (end - start).days / 360.0

    if convention in ("30/360", "30/360US"):
        y1, m1, d1 = start.year, start.month, start.day
        y2, m2, d2 = end.year, end.month, end.day

        if d1 == 31:
            d1 = 30
        if d2 == 31 and d1 == 30:
            d2 = 30

        return ((y2 - y1) * 360 + (m2 - m1) * 30 + (d2 - d1)) / 360.0

    raise ValueError(f"Unsupported day count convention: {convention}")


def signed_yearfrac(start: pd.Timestamp, end: pd.Timestamp, convention: str) -> float:
    """Year fraction that is negative when end is before start."""
    start = pd.Timestamp(start)
    end = pd.Timestamp(end)
    if end < start:
        return -yearfrac(end, start, convention)
    return yearfrac(start, end, convention)


def settlement_date(trade_date: pd.Timestamp, lag_days: int = 2) -> pd.Timestamp:
    """
    Simplified settlement date: trade date + lag_days (calendar days).
    In production: use business-day calendars + holiday schedules.
    """
    return pd.Timestamp(trade_date) + pd.Timedelta(days=lag_days)


def accrual_period(
    fixing_date: pd.Timestamp,
    tenor_months: int = 3,
    lag_days: int = 2,
) -> Tuple[pd.Timestamp, pd.Timestamp]:
    """Start and end of the deposit period fixed on fixing_date (no business-day adjustment)."""
    if tenor_months <= 0:
        raise ValueError("tenor_months must be positive")
    start = settlement_date(fixing_date, lag_days)
    end = start + pd.DateOffset(months=tenor_months)
    return start, end
