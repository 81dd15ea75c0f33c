"""Define standardized column names for engine inputs and result tables."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class ResultColumns:
    """Container for standardized result-table column labels.

    Every table the engine returns (domain estimates, coefficient tables,
    derived metrics, sensitivity comparisons) uses these names so the
    reporting collaborator can render them without per-table mappings.

    Attributes:
        term: Design-matrix term a coefficient or odds ratio belongs to.
        group: Domain or stratum label for subgroup results.
        estimate: Point estimate on the reported scale (proportion, log-odds,
            odds ratio, percentage change, attributable fraction).
        std_error: Standard error on the scale the estimate was computed on.
            For exponentiated metrics this is the log-scale SE.
        ci_low: Lower confidence limit on the reported scale.
        ci_high: Upper confidence limit on the reported scale.
        p_value: Two-sided Wald p-value.
        dof: Degrees of freedom of the reference distribution,
            ``#clusters - #strata`` for estimators and the design df minus
            the number of coefficients plus one for regression terms.
        n_obs: Rows that entered the statistic after per-statistic
            complete-case exclusion.
        note: Free-text diagnostic (undefined variance, failed group).
    """

    term: str = "term"
    group: str = "group"
    variable: str = "variable"
    estimate: str = "estimate"
    std_error: str = "std_error"
    ci_low: str = "ci_low"
    ci_high: str = "ci_high"
    p_value: str = "p_value"
    dof: str = "degrees_of_freedom"
    n_obs: str = "n_obs"
    note: str = "note"


COLUMNS = ResultColumns()

# Column layout of one sampled unit as handed over by data preparation.
ANALYSIS_ROW_COLUMNS: tuple[str, ...] = (
    "disability",
    "adl_limitation",
    "iadl_limitation",
    "arthritis",
    "age_group",
    "sex",
    "race_ethnicity",
    "education",
    "poverty",
    "survey_year",
    "weight",
    "stratum",
    "cluster",
)
