"""Wald-type inference against t or normal reference distributions."""

from __future__ import annotations

import math
from typing import Optional, Tuple

import numpy as np
from scipy.stats import norm
from scipy.stats import t as student_t


def _check_level(level: float) -> float:
    level = float(level)
    if not 0.0 < level < 1.0:
        raise ValueError(f"Confidence level must lie in (0, 1), got {level!r}.")
    return level


def critical_value(level: float = 0.95, df: Optional[float] = None) -> float:
    """Two-sided critical value for a ``level`` confidence interval.

    Args:
        level: Coverage probability, for example ``0.95``.
        df: Degrees of freedom of a Student t reference. ``None`` or infinity
            selects the standard normal.

    Returns:
        float: Quantile ``q`` with ``P(|T| <= q) = level``; NaN when ``df`` is
        finite but not positive.
    """
    level = _check_level(level)
    upper = 0.5 + level / 2.0
    if df is None or not math.isfinite(df):
        return float(norm.ppf(upper))
    if df <= 0:
        return math.nan
    return float(student_t.ppf(upper, df))


def wald_interval(
    estimate: float,
    std_error: float,
    level: float = 0.95,
    df: Optional[float] = None,
) -> Tuple[float, float]:
    """Symmetric Wald interval ``estimate -/+ q * std_error``."""
    q = critical_value(level, df)
    if not (np.isfinite(estimate) and np.isfinite(std_error) and np.isfinite(q)):
        return math.nan, math.nan
    half = q * float(std_error)
    return float(estimate) - half, float(estimate) + half


def wald_p_value(
    estimate: float, std_error: float, df: Optional[float] = None
) -> float:
    """Two-sided p-value for ``H0: parameter = 0``."""
    if not (np.isfinite(estimate) and np.isfinite(std_error)) or std_error <= 0:
        return math.nan
    stat = abs(float(estimate) / float(std_error))
    if df is None or not math.isfinite(df):
        return float(2.0 * norm.sf(stat))
    if df <= 0:
        return math.nan
    return float(2.0 * student_t.sf(stat, df))
