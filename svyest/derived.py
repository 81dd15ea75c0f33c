"""Epidemiological quantities derived from fitted models and estimates.

Every metric here propagates uncertainty from an upstream covariance
(a :class:`~svyest.glm.GLMFit` or an :class:`~svyest.estimation.Estimate`)
and never goes back to the raw data for a variance.

Ratio-type metrics are built on the log-odds scale and exponentiated, so
their intervals are asymmetric around the point estimate.
"""

from __future__ import annotations

import logging
import math
import warnings
from dataclasses import dataclass
from typing import Mapping, Optional, Sequence, Union

import numpy as np
import pandas as pd

from .config import DEFAULT_LEVEL
from .design import SurveyDesign
from .errors import (
    ConvergenceError,
    InsufficientDataError,
    SeparationError,
)
from .estimation import Estimate
from .glm import GLMFit, fit_weighted_glm
from .model_matrix import INTERCEPT
from .schema import COLUMNS
from .stats import critical_value

logger = logging.getLogger(__name__)

PAF_NOTE = (
    "odds ratio substituted for the relative risk; biased upward when the "
    "outcome is not rare"
)
RARE_OUTCOME_THRESHOLD = 0.10
MODEL_FAILURES = (InsufficientDataError, ConvergenceError, SeparationError)


@dataclass(frozen=True)
class DerivedMetric:
    """A derived quantity with its confidence interval.

    ``std_error`` is on the scale the interval was constructed on (log-odds
    for odds ratios and percentage change).
    """

    name: str
    value: float
    ci_low: float
    ci_high: float
    p_value: float = math.nan
    std_error: float = math.nan
    note: str = ""

    def as_row(self) -> dict:
        return {
            COLUMNS.term: self.name,
            COLUMNS.estimate: self.value,
            COLUMNS.std_error: self.std_error,
            COLUMNS.ci_low: self.ci_low,
            COLUMNS.ci_high: self.ci_high,
            COLUMNS.p_value: self.p_value,
            COLUMNS.note: self.note,
        }


def odds_ratio(fit: GLMFit, term: str, level: float = DEFAULT_LEVEL) -> DerivedMetric:
    """Odds ratio ``exp(beta)`` with a log-scale Wald interval.

    Args:
        fit: Fitted weighted GLM.
        term: Design-matrix term, for example ``"arthritis"`` or
            ``"sex[Female]"``.
        level: Confidence level.

    Returns:
        DerivedMetric: ``exp(beta)`` with interval
        ``exp(beta -/+ q * SE)`` where ``SE`` is the sandwich standard error
        and ``q`` the t quantile on the fit's residual design degrees of
        freedom, the same reference as ``p_value``.
    """
    beta = fit.coef(term)
    se = fit.std_error(term)
    q = critical_value(level, fit.df_residual)
    return DerivedMetric(
        name=term,
        value=math.exp(beta),
        ci_low=math.exp(beta - q * se),
        ci_high=math.exp(beta + q * se),
        p_value=fit.p_value(term),
        std_error=se,
    )


def odds_ratio_table(
    fit: GLMFit, level: float = DEFAULT_LEVEL, include_intercept: bool = False
) -> pd.DataFrame:
    """Odds ratios for every term of a fit, one row per term."""
    terms = [t for t in fit.terms if include_intercept or t != INTERCEPT]
    rows = [odds_ratio(fit, t, level).as_row() for t in terms]
    out = pd.DataFrame(rows)
    out[COLUMNS.dof] = fit.df_residual
    return out


def annual_percent_change(
    fit: GLMFit, term: str = "survey_year", level: float = DEFAULT_LEVEL
) -> DerivedMetric:
    """Annual percentage change ``exp(beta_year) - 1`` of the odds.

    The year coefficient comes from either a crude trend model (year as the
    sole predictor) or an adjusted one with additional covariates; the
    adjusted version is the one to interpret when composition shifts over
    time. Values are fractions (``0.02`` is +2 % per year).
    """
    beta = fit.coef(term)
    se = fit.std_error(term)
    q = critical_value(level, fit.df_residual)
    return DerivedMetric(
        name=term,
        value=math.expm1(beta),
        ci_low=math.expm1(beta - q * se),
        ci_high=math.expm1(beta + q * se),
        p_value=fit.p_value(term),
        std_error=se,
    )


def population_attributable_fraction(
    prevalence: Union[Estimate, float],
    odds_ratio: Union[DerivedMetric, float],
    level: float = DEFAULT_LEVEL,
    outcome_prevalence: Optional[float] = None,
) -> DerivedMetric:
    """Approximate population attributable fraction.

    ``PAF = p (OR - 1) / (1 + p (OR - 1))`` with ``p`` the weighted exposure
    prevalence and ``OR`` the adjusted odds ratio standing in for the
    relative risk. The substitution overstates the relative risk, and hence
    the PAF, when the outcome is common; the result is an approximation and
    is labelled as such in ``note``.

    Args:
        prevalence: Exposure prevalence, as an :class:`Estimate` (enables the
            interval) or a plain proportion.
        odds_ratio: Adjusted odds ratio, as a :class:`DerivedMetric` from
            :func:`odds_ratio` (enables the interval) or a plain number.
        level: Confidence level for the delta-method interval.
        outcome_prevalence: Optional outcome prevalence; above 10 % a
            ``UserWarning`` flags the upward bias.

    Returns:
        DerivedMetric: Point value always. The interval is reported only when
        both inputs carry a variance, using the delta method with the
        prevalence and log odds ratio treated as independent; otherwise the
        limits are NaN.

    Raises:
        ValueError: If the prevalence is outside ``[0, 1]`` or the odds ratio
            is not positive.
    """
    p = float(prevalence.estimate if isinstance(prevalence, Estimate) else prevalence)
    ratio = float(odds_ratio.value if isinstance(odds_ratio, DerivedMetric) else odds_ratio)
    if not (np.isfinite(p) and 0.0 <= p <= 1.0):
        raise ValueError(f"Exposure prevalence must lie in [0, 1], got {p!r}.")
    if not (np.isfinite(ratio) and ratio > 0.0):
        raise ValueError(f"Odds ratio must be positive, got {ratio!r}.")

    if outcome_prevalence is not None and outcome_prevalence > RARE_OUTCOME_THRESHOLD:
        warnings.warn(
            f"Outcome prevalence {outcome_prevalence:.1%} is not rare; the odds "
            "ratio overstates the relative risk and the PAF is biased upward.",
            UserWarning,
            stacklevel=2,
        )

    excess = p * (ratio - 1.0)
    paf = excess / (1.0 + excess)

    var_p = prevalence.variance if isinstance(prevalence, Estimate) else math.nan
    se_log_or = (
        odds_ratio.std_error if isinstance(odds_ratio, DerivedMetric) else math.nan
    )
    low = high = se = math.nan
    if np.isfinite(var_p) and np.isfinite(se_log_or):
        # dPAF/dk = 1/(1+k)^2 with k = p (OR - 1)
        scale = 1.0 / (1.0 + excess) ** 2
        grad_p = scale * (ratio - 1.0)
        grad_log_or = scale * p * ratio
        se = math.sqrt(grad_p**2 * var_p + grad_log_or**2 * se_log_or**2)
        q = critical_value(level)
        low, high = paf - q * se, paf + q * se

    return DerivedMetric(
        name="population_attributable_fraction",
        value=float(paf),
        ci_low=low,
        ci_high=high,
        std_error=se,
        note=PAF_NOTE,
    )


def sensitivity_comparison(
    design: SurveyDesign,
    outcomes: Union[Mapping[str, str], Sequence[str]],
    exposure: str,
    covariates: Sequence[str] = (),
    reference_levels: Optional[Mapping[str, object]] = None,
    level: float = DEFAULT_LEVEL,
    **fit_kwargs,
) -> pd.DataFrame:
    """Refit the same adjusted model for alternative outcome definitions.

    Args:
        design: Survey design.
        outcomes: Outcome columns, or a mapping of display label to column.
        exposure: Exposure column whose odds ratio is compared.
        covariates: Adjustment covariates shared by every model.
        reference_levels: Reference levels for categorical predictors.
        level: Confidence level.
        **fit_kwargs: Passed to :func:`fit_weighted_glm`.

    Returns:
        pandas.DataFrame: One row per outcome with the exposure odds ratio,
        interval, p-value and fitted row count. A model that cannot be
        fitted yields a row with NaN values and the failure in ``note``;
        other rows are unaffected.
    """
    if not isinstance(outcomes, Mapping):
        outcomes = {name: name for name in outcomes}

    rows = []
    for label, column in outcomes.items():
        row = {"model": label, "outcome": column}
        try:
            fit = fit_weighted_glm(
                design,
                column,
                [exposure, *covariates],
                reference_levels=reference_levels,
                **fit_kwargs,
            )
        except MODEL_FAILURES as exc:
            logger.warning("Sensitivity model '%s' failed: %s", label, exc)
            row.update(
                {
                    COLUMNS.estimate: math.nan,
                    COLUMNS.std_error: math.nan,
                    COLUMNS.ci_low: math.nan,
                    COLUMNS.ci_high: math.nan,
                    COLUMNS.p_value: math.nan,
                    COLUMNS.n_obs: 0,
                    COLUMNS.note: f"{type(exc).__name__}: {exc}",
                }
            )
            rows.append(row)
            continue

        metric = odds_ratio(fit, exposure, level)
        row.update(
            {
                COLUMNS.estimate: metric.value,
                COLUMNS.std_error: metric.std_error,
                COLUMNS.ci_low: metric.ci_low,
                COLUMNS.ci_high: metric.ci_high,
                COLUMNS.p_value: metric.p_value,
                COLUMNS.n_obs: fit.n_obs,
                COLUMNS.note: "",
            }
        )
        rows.append(row)
    return pd.DataFrame(rows)
