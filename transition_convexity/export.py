from __future__ import annotations

from pathlib import Path
from typing import Iterable, Sequence

import pandas as pd


def ensure_dirs_exist(paths: Iterable[Path]) -> None:
    """
    Create directories if they do not exist.
    Safe to run multiple times.
    """
    for p in paths:
        Path(p).mkdir(parents=True, exist_ok=True)


def export_frame(frame: pd.DataFrame, path: Path, index: bool = False) -> Path:
    path = Path(path)
    ensure_dirs_exist([path.parent])
    frame.to_csv(path, index=index)
    return path


def export_series(name: str, dates: Sequence[pd.Timestamp], values: Sequence[float], path: Path) -> Path:
    """Write a (date, value) series as a two-column CSV with `name` as the value header."""
    if len(dates) != len(values):
        raise ValueError("dates and values must have the same length.")
    frame = pd.DataFrame({"date": pd.to_datetime(list(dates)), name: list(values)})
    return export_frame(frame, path)
