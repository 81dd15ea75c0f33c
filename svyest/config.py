"""Analysis defaults shared by the recipes and the command line."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple

DEFAULT_LEVEL = 0.95
DEFAULT_MAX_ITER = 25
DEFAULT_TOL = 1e-8


@dataclass(frozen=True)
class StudyConfig:
    """Column choices for the arthritis/disability survey analysis.

    The survey design defaults reproduce the simplified design of the
    source study: survey year as the stratum and one row per cluster.
    Set ``strata_col``/``cluster_col`` to real design variables when they
    are available; the estimation code does not change.
    """

    outcome: str = "disability"
    exposure: str = "arthritis"
    covariates: Tuple[str, ...] = (
        "age_group",
        "sex",
        "race_ethnicity",
        "education",
        "poverty",
    )
    alternate_outcomes: Dict[str, str] = field(
        default_factory=lambda: {
            "Main (any disability)": "disability",
            "ADL only": "adl_limitation",
            "IADL only": "iadl_limitation",
        }
    )
    year_col: str = "survey_year"
    weight_col: str = "weight"
    strata_col: Optional[str] = "survey_year"
    cluster_col: Optional[str] = None
    reference_levels: Dict[str, object] = field(
        default_factory=lambda: {
            "age_group": "65-74",
            "sex": "Male",
            "race_ethnicity": "Non-Hispanic White",
            "education": "Less than high school",
            "poverty": "Below poverty",
        }
    )
    stratify_by: Tuple[str, ...] = ("age_group", "sex")
    prevalence_groups: Tuple[str, ...] = (
        "survey_year",
        "age_group",
        "sex",
        "race_ethnicity",
    )


DEFAULT_CONFIG = StudyConfig()
