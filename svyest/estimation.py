"""Weighted descriptive estimation with design-based standard errors.

Means and proportions are ratio estimators ``sum(w x) / sum(w)``; their
linearized contribution for unit ``i`` is ``w_i (x_i - estimate) / sum(w)``.
Totals are linear, with contribution ``w_i x_i``. Both are handed to
:func:`svyest.stats.linearized_covariance` for the variance.

Rows with a missing value in the analysed column are dropped for that one
statistic through :meth:`SurveyDesign.subset`, which treats them as outside
the domain and therefore keeps the full-sample cluster layout.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Tuple

import numpy as np
import pandas as pd

from .config import DEFAULT_LEVEL
from .design import SurveyDesign
from .schema import COLUMNS
from .stats import linearized_covariance, wald_interval, wald_p_value

logger = logging.getLogger(__name__)

ESTIMATE_COLUMNS = (
    COLUMNS.estimate,
    COLUMNS.std_error,
    COLUMNS.ci_low,
    COLUMNS.ci_high,
    COLUMNS.p_value,
    COLUMNS.dof,
    COLUMNS.n_obs,
    COLUMNS.note,
)


@dataclass(frozen=True)
class Estimate:
    """Design-based estimate of a single weighted statistic.

    ``defined`` is False when the estimate or its variance cannot be
    computed (empty domain, no degrees of freedom); ``note`` says why and
    the numeric fields are NaN.
    """

    column: str
    statistic: str
    estimate: float
    variance: float
    degrees_of_freedom: int
    n_obs: int
    n_excluded: int = 0
    note: str = ""

    @property
    def defined(self) -> bool:
        return math.isfinite(self.estimate) and math.isfinite(self.variance)

    @property
    def std_error(self) -> float:
        if not math.isfinite(self.variance):
            return math.nan
        return math.sqrt(max(self.variance, 0.0))

    @property
    def p_value(self) -> float:
        return wald_p_value(self.estimate, self.std_error, self.degrees_of_freedom)

    def confint(self, level: float = DEFAULT_LEVEL) -> Tuple[float, float]:
        """Wald interval with a t reference on the design degrees of freedom."""
        return wald_interval(
            self.estimate, self.std_error, level, self.degrees_of_freedom
        )

    def as_row(self, level: float = DEFAULT_LEVEL) -> dict:
        low, high = self.confint(level)
        return {
            COLUMNS.estimate: self.estimate,
            COLUMNS.std_error: self.std_error,
            COLUMNS.ci_low: low,
            COLUMNS.ci_high: high,
            COLUMNS.p_value: self.p_value,
            COLUMNS.dof: self.degrees_of_freedom,
            COLUMNS.n_obs: self.n_obs,
            COLUMNS.note: self.note,
        }


def _complete_case(column: str, design: SurveyDesign) -> Tuple[SurveyDesign, int]:
    values = pd.to_numeric(design.column(column), errors="coerce")
    present = values.notna().to_numpy()
    n_excluded = int((~present).sum())
    if n_excluded:
        logger.info(
            "Excluded %d row(s) with missing '%s' from this estimate.",
            n_excluded,
            column,
        )
        design = design.subset(present)
    return design, n_excluded


def _undefined(column: str, statistic: str, n_excluded: int, note: str) -> Estimate:
    return Estimate(
        column=column,
        statistic=statistic,
        estimate=math.nan,
        variance=math.nan,
        degrees_of_freedom=0,
        n_obs=0,
        n_excluded=n_excluded,
        note=note,
    )


def weighted_mean(column: str, design: SurveyDesign) -> Estimate:
    """Estimate the weighted mean (or proportion, for 0/1 columns).

    Args:
        column: Numeric column of ``design.data``.
        design: Survey design, possibly restricted to a domain.

    Returns:
        Estimate: ``sum(w x) / sum(w)`` with Taylor-linearized variance. An
        empty design or one without degrees of freedom yields an undefined
        estimate instead of raising.

    Raises:
        KeyError: If ``column`` is not in the design table.
    """
    design, n_excluded = _complete_case(column, design)
    if design.is_empty:
        return _undefined(column, "mean", n_excluded, "empty domain")

    x = pd.to_numeric(design.column(column), errors="coerce").to_numpy(dtype=float)
    w = design.weights
    total_weight = float(np.sum(w))
    estimate = float(np.sum(w * x) / total_weight)

    residuals = w * (x - estimate) / total_weight
    lin = linearized_covariance(design, residuals)
    variance = float(lin.covariance[0, 0])
    note = "" if lin.is_defined else "variance undefined: no degrees of freedom"
    return Estimate(
        column=column,
        statistic="mean",
        estimate=estimate,
        variance=variance,
        degrees_of_freedom=lin.degrees_of_freedom,
        n_obs=design.n_rows,
        n_excluded=n_excluded,
        note=note,
    )


def weighted_total(column: str, design: SurveyDesign) -> Estimate:
    """Estimate the weighted total ``sum(w x)`` with linearized variance."""
    design, n_excluded = _complete_case(column, design)
    if design.is_empty:
        return _undefined(column, "total", n_excluded, "empty domain")

    x = pd.to_numeric(design.column(column), errors="coerce").to_numpy(dtype=float)
    w = design.weights
    lin = linearized_covariance(design, w * x)
    note = "" if lin.is_defined else "variance undefined: no degrees of freedom"
    return Estimate(
        column=column,
        statistic="total",
        estimate=float(np.sum(w * x)),
        variance=float(lin.covariance[0, 0]),
        degrees_of_freedom=lin.degrees_of_freedom,
        n_obs=design.n_rows,
        n_excluded=n_excluded,
        note=note,
    )


def domain_levels(values: pd.Series) -> list:
    """Distinct domain labels in presentation order.

    Categorical columns keep their declared category order, including
    categories with no rows; other columns are sorted.
    """
    if isinstance(values.dtype, pd.CategoricalDtype):
        return list(values.cat.categories)
    return sorted(values.dropna().unique().tolist())


def by_domain(
    column: str,
    group_by: str,
    design: SurveyDesign,
    statistic: str = "mean",
    level: float = DEFAULT_LEVEL,
) -> pd.DataFrame:
    """Estimate ``column`` separately within each level of ``group_by``.

    Args:
        column: Column to summarise.
        group_by: Domain-defining column.
        design: Parent design; each domain is ``design.subset(group == g)``.
        statistic: ``"mean"`` or ``"total"``.
        level: Confidence level for the interval columns.

    Returns:
        pandas.DataFrame: One row per non-empty domain with the standard
        result columns and ``group`` as the domain label. Domains without
        rows are omitted and logged at warning level.

    Raises:
        ValueError: If ``statistic`` is not recognised.
    """
    estimators = {"mean": weighted_mean, "total": weighted_total}
    if statistic not in estimators:
        raise ValueError("statistic must be 'mean' or 'total'")
    estimator = estimators[statistic]

    groups = design.column(group_by)
    n_missing_group = int(groups.isna().sum())
    if n_missing_group:
        logger.info(
            "%d row(s) with missing '%s' belong to no domain.",
            n_missing_group,
            group_by,
        )

    rows = []
    for value in domain_levels(groups):
        domain = design.subset((groups == value).to_numpy())
        if domain.is_empty:
            logger.warning(
                "Domain %s=%r has no rows; omitted from the table.", group_by, value
            )
            continue
        result = estimator(column, domain)
        row = {COLUMNS.group: value, COLUMNS.variable: column}
        row.update(result.as_row(level))
        rows.append(row)

    out = pd.DataFrame(rows)
    if out.empty:
        out = pd.DataFrame(columns=[COLUMNS.group, COLUMNS.variable, *ESTIMATE_COLUMNS])
    return out.reset_index(drop=True)


def estimate_table(
    estimates: list[Estimate], level: float = DEFAULT_LEVEL
) -> pd.DataFrame:
    """Stack several estimates into one result table keyed by column name."""
    rows = []
    for est in estimates:
        row = {COLUMNS.variable: est.column}
        row.update(est.as_row(level))
        rows.append(row)
    return pd.DataFrame(rows)
