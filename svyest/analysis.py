"""
Analysis recipes for the arthritis/disability survey study.

Each recipe composes the engine entry points (``weighted_mean``,
``by_domain``, ``fit_weighted_glm`` and the derived metrics) into one of
the tables the study reports:

- prevalence of binary indicators overall and by domain,
- linear trends on the logit scale with annual percentage change,
- crude and adjusted exposure/outcome associations,
- effect modification through models fitted within strata of a modifier.

Recipes hold no state and never modify the design they receive; the
per-stratum fits only read from ``design.subset`` snapshots and may be run
concurrently by a caller.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Sequence

import pandas as pd

from .config import DEFAULT_LEVEL
from .derived import MODEL_FAILURES, annual_percent_change, odds_ratio
from .design import SurveyDesign
from .estimation import by_domain, domain_levels, estimate_table, weighted_mean
from .glm import GLMFit, fit_weighted_glm
from .schema import COLUMNS

logger = logging.getLogger(__name__)


def prevalence_table(
    design: SurveyDesign,
    columns: Sequence[str],
    group_by: Optional[str] = None,
    level: float = DEFAULT_LEVEL,
) -> pd.DataFrame:
    """Weighted prevalence of several indicators, overall or per domain."""
    if group_by is None:
        return estimate_table([weighted_mean(c, design) for c in columns], level)
    frames = [by_domain(c, group_by, design, level=level) for c in columns]
    out = pd.concat(frames, ignore_index=True)
    return out.rename(columns={COLUMNS.group: group_by})


def trend_analysis(
    design: SurveyDesign,
    outcomes: Sequence[str],
    year_col: str,
    covariates: Sequence[str] = (),
    reference_levels: Optional[Mapping[str, object]] = None,
    level: float = DEFAULT_LEVEL,
) -> pd.DataFrame:
    """Logit-linear trend in year per outcome, with annual percentage change.

    With no ``covariates`` this is the crude trend; listing covariates gives
    the adjusted trend.
    """
    rows = []
    for outcome in outcomes:
        fit = fit_weighted_glm(
            design, outcome, [year_col, *covariates], reference_levels
        )
        apc = annual_percent_change(fit, year_col, level)
        rows.append(
            {
                "outcome": outcome,
                "beta": fit.coef(year_col),
                COLUMNS.std_error: fit.std_error(year_col),
                COLUMNS.p_value: fit.p_value(year_col),
                "apc": apc.value,
                "apc_ci_low": apc.ci_low,
                "apc_ci_high": apc.ci_high,
                COLUMNS.dof: fit.df_residual,
                COLUMNS.n_obs: fit.n_obs,
            }
        )
    return pd.DataFrame(rows)


@dataclass(frozen=True)
class AssociationModels:
    crude: GLMFit
    adjusted: GLMFit


def association_models(
    design: SurveyDesign,
    outcome: str,
    exposure: str,
    covariates: Sequence[str],
    reference_levels: Optional[Mapping[str, object]] = None,
) -> AssociationModels:
    """Fit ``outcome ~ exposure`` and ``outcome ~ exposure + covariates``."""
    crude = fit_weighted_glm(design, outcome, [exposure], reference_levels)
    adjusted = fit_weighted_glm(
        design, outcome, [exposure, *covariates], reference_levels
    )
    return AssociationModels(crude=crude, adjusted=adjusted)


@dataclass(frozen=True)
class StratumFit:
    """Outcome of fitting one stratum of an effect-modification analysis.

    Exactly one of ``fit`` and ``reason`` is set: ``fit`` when the model was
    estimated, ``reason`` when the stratum was empty or the model failed.
    """

    group: object
    fit: Optional[GLMFit]
    reason: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.fit is not None


def stratified_fits(
    design: SurveyDesign,
    by: str,
    outcome: str,
    predictors: Sequence[str],
    reference_levels: Optional[Mapping[str, object]] = None,
    **fit_kwargs,
) -> List[StratumFit]:
    """Fit the same model separately within each level of ``by``.

    A level without rows, or whose model fails with an
    :class:`InsufficientDataError`, :class:`ConvergenceError` or
    :class:`SeparationError`, is reported as a ``StratumFit`` without a fit;
    remaining levels are still fitted.
    """
    groups = design.column(by)
    results = []
    for value in domain_levels(groups):
        domain = design.subset((groups == value).to_numpy())
        if domain.is_empty:
            logger.warning("Stratum %s=%r has no rows; not fitted.", by, value)
            results.append(StratumFit(group=value, fit=None, reason="empty stratum"))
            continue
        try:
            fit = fit_weighted_glm(
                domain, outcome, predictors, reference_levels, **fit_kwargs
            )
        except MODEL_FAILURES as exc:
            logger.warning("Stratum %s=%r not fitted: %s", by, value, exc)
            results.append(
                StratumFit(group=value, fit=None, reason=f"{type(exc).__name__}: {exc}")
            )
            continue
        results.append(StratumFit(group=value, fit=fit))
    return results


def stratified_odds_ratios(
    results: Sequence[StratumFit], term: str, level: float = DEFAULT_LEVEL
) -> pd.DataFrame:
    """Tabulate the odds ratio of ``term`` across stratum fits."""
    rows = []
    for result in results:
        row: Dict[str, object] = {COLUMNS.group: result.group, COLUMNS.term: term}
        if result.fit is None:
            row.update(
                {
                    COLUMNS.estimate: math.nan,
                    COLUMNS.std_error: math.nan,
                    COLUMNS.ci_low: math.nan,
                    COLUMNS.ci_high: math.nan,
                    COLUMNS.p_value: math.nan,
                    COLUMNS.dof: math.nan,
                    COLUMNS.n_obs: 0,
                    COLUMNS.note: result.reason,
                }
            )
        else:
            metric = odds_ratio(result.fit, term, level)
            row.update(metric.as_row())
            row[COLUMNS.term] = term
            row[COLUMNS.dof] = result.fit.df_residual
            row[COLUMNS.n_obs] = result.fit.n_obs
        rows.append(row)
    return pd.DataFrame(rows)
