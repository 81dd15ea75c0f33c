"""Format and validate result tables for publication-style reporting.

This module is used after estimation to render point estimates with their
confidence intervals consistently in exported tables. Numeric columns are
kept untouched; formatted strings are added alongside them.
"""

from __future__ import annotations

from typing import Iterable

import numpy as np
import pandas as pd

from .schema import COLUMNS

INTERVAL_TRIPLE = (COLUMNS.estimate, COLUMNS.ci_low, COLUMNS.ci_high)


def format_estimate_with_ci(
    value: float,
    ci_low: float,
    ci_high: float,
    digits: int = 2,
    percent: bool = False,
) -> str:
    """Render ``value (low-high)`` with a fixed number of decimals.

    Args:
        value (float): Point estimate.
        ci_low (float): Lower confidence limit, same scale as ``value``.
        ci_high (float): Upper confidence limit, same scale as ``value``.
        digits (int, optional): Decimal places. Defaults to ``2``.
        percent (bool, optional): Multiply by 100 and append ``%`` to each
            number. Defaults to ``False``.

    Returns:
        str: For example ``"1.52 (1.31-1.76)"`` or ``"40.1% (39.2%-41.0%)"``.
        The interval part is ``"(undefined)"`` when a limit is not finite.

    References:
        Estimate-with-interval convention of epidemiological tables.
    """
    scale = 100.0 if percent else 1.0
    unit = "%" if percent else ""

    def fmt(x: float) -> str:
        return f"{float(x) * scale:.{digits}f}{unit}"

    if not np.isfinite(value):
        return "undefined"
    if not (np.isfinite(ci_low) and np.isfinite(ci_high)):
        return f"{fmt(value)} (undefined)"
    return f"{fmt(value)} ({fmt(ci_low)}-{fmt(ci_high)})"


def format_p_value(p_value: float, threshold: float = 0.001) -> str:
    """Format a p-value, collapsing small values to ``"<0.001"``."""
    if not np.isfinite(p_value):
        return ""
    if p_value < threshold:
        return f"<{threshold:g}"
    return f"{p_value:.3f}"


def validate_interval_columns(
    df: pd.DataFrame,
    triples: Iterable[tuple[str, str, str]],
) -> None:
    """Validate estimate/interval column triples for reporting safety.

    Args:
        df (pandas.DataFrame): Result table.
        triples (Iterable[tuple[str, str, str]]): ``(estimate, ci_low,
            ci_high)`` column names to check.

    Raises:
        KeyError: If any named column is missing.
        ValueError: If a row has a finite estimate with an interval that is
            missing only on one side or does not contain the estimate.

    Note:
        Rows whose interval is missing on both sides are allowed; they are
        rendered as undefined rather than rejected, matching the engine's
        undefined-variance results.
    """
    for est_col, low_col, high_col in triples:
        for col in (est_col, low_col, high_col):
            if col not in df.columns:
                raise KeyError(f"Missing column '{col}' for interval formatting.")

        est = pd.to_numeric(df[est_col], errors="coerce")
        low = pd.to_numeric(df[low_col], errors="coerce")
        high = pd.to_numeric(df[high_col], errors="coerce")

        one_sided = est.notna() & (low.isna() ^ high.isna())
        outside = est.notna() & low.notna() & high.notna() & (
            (low > est) | (high < est)
        )
        bad = one_sided | outside
        if bool(bad.any()):
            bad_rows = list(df.index[bad][:5])
            raise ValueError(
                f"Confidence interval metadata invalid for '{est_col}' "
                f"('{low_col}', '{high_col}'). Example row indices: {bad_rows}."
            )


def add_formatted_ci_columns(
    df: pd.DataFrame,
    triples: Iterable[tuple[str, str, str]] = (INTERVAL_TRIPLE,),
    digits: int = 2,
    percent: bool = False,
    suffix: str = " (95% CI)",
) -> pd.DataFrame:
    """Add reporting-ready ``estimate (low-high)`` string columns.

    Args:
        df (pandas.DataFrame): Result table with numeric interval columns.
        triples (Iterable[tuple[str, str, str]], optional): Column triples to
            format. Defaults to the standard result columns.
        digits (int, optional): Decimal places. Defaults to ``2``.
        percent (bool, optional): Render as percentages. Defaults to ``False``.
        suffix (str, optional): Suffix appended to the estimate column name
            for the new column. Defaults to ``" (95% CI)"``.

    Returns:
        pandas.DataFrame: Copy of ``df`` with formatted columns added, plus a
        ``p_value (reported)`` column when ``p_value`` is present.

    Raises:
        KeyError: If required columns are absent.
        ValueError: If interval metadata is inconsistent.
    """
    triples = list(triples)
    out = df.copy()
    validate_interval_columns(out, triples)

    for est_col, low_col, high_col in triples:
        est = pd.to_numeric(out[est_col], errors="coerce")
        low = pd.to_numeric(out[low_col], errors="coerce")
        high = pd.to_numeric(out[high_col], errors="coerce")
        out[f"{est_col}{suffix}"] = [
            format_estimate_with_ci(v, lo, hi, digits=digits, percent=percent)
            for v, lo, hi in zip(est, low, high)
        ]

    if COLUMNS.p_value in out.columns:
        p_values = pd.to_numeric(out[COLUMNS.p_value], errors="coerce")
        out[f"{COLUMNS.p_value} (reported)"] = [format_p_value(p) for p in p_values]
    return out
