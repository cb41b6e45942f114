"""Exceptions raised by the integration engine and the convexity calculator."""

from __future__ import annotations

from typing import Optional

import numpy as np


class TransitionConvexityError(Exception):
    """Base class for errors raised by this package."""


class IntegrationFailure(TransitionConvexityError, ArithmeticError):
    """Raised when an adaptive integration does not reach its tolerance."""

    def __init__(
        self,
        message: str,
        lower: Optional[float] = None,
        upper: Optional[float] = None,
        abs_tol: Optional[float] = None,
        rel_tol: Optional[float] = None,
        limit: Optional[int] = None,
    ):
        details = []
        if lower is not None and upper is not None:
            details.append(f"interval=[{lower}, {upper}]")
        if abs_tol is not None:
            details.append(f"abs_tol={abs_tol}")
        if rel_tol is not None:
            details.append(f"rel_tol={rel_tol}")
        if limit is not None:
            details.append(f"limit={limit}")
        full = message if not details else f"{message} ({', '.join(details)})"
        super().__init__(full)
        self.lower = lower
        self.upper = upper
        self.abs_tol = abs_tol
        self.rel_tol = rel_tol
        self.limit = limit


class InvalidCovarianceMatrix(TransitionConvexityError, ValueError):
    """Raised when a correlation matrix is not a valid (PSD) correlation matrix."""

    def __init__(self, message: str, matrix):
        self.matrix = np.array(matrix, dtype=float, copy=True)
        try:
            self.min_eigenvalue = float(np.linalg.eigvalsh(self.matrix).min())
        except (np.linalg.LinAlgError, ValueError):
            self.min_eigenvalue = float("nan")
        super().__init__(f"{message} (min eigenvalue={self.min_eigenvalue:.3e})")


class DegenerateInterval(TransitionConvexityError, ValueError):
    """Signals an empty or inverted integration interval; integrators map it to 0."""

    def __init__(self, lower: float, upper: float):
        super().__init__(f"degenerate interval [{lower}, {upper}]")
        self.lower = lower
        self.upper = upper
