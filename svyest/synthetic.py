"""Deterministic synthetic analysis tables for tests and demonstrations.

The generated table follows the analysis-row layout handed over by data
preparation (outcomes, exposure, categorical covariates, survey year,
normalized weight, stratum and cluster ids). Disability is generated from
age, sex, poverty and a mild secular trend; its dependence on arthritis is
controlled by ``arthritis_log_odds_ratio`` and is absent by default.
"""

from __future__ import annotations

from typing import Optional, Tuple

import numpy as np
import pandas as pd
from scipy.special import expit

from .schema import ANALYSIS_ROW_COLUMNS

AGE_GROUPS = ("65-74", "75-84", "85+")
SEXES = ("Male", "Female")
RACE_ETHNICITY = (
    "Non-Hispanic White",
    "Non-Hispanic Black",
    "Hispanic",
    "Non-Hispanic Other",
)
EDUCATION = (
    "Less than high school",
    "High school graduate",
    "Some college",
    "College graduate",
)
POVERTY = ("Below poverty", "Near poverty (1-1.99)", "At or above 2x poverty")


def _categorical(rng, levels, probs, n) -> pd.Categorical:
    draws = rng.choice(len(levels), size=n, p=probs)
    return pd.Categorical.from_codes(draws, categories=list(levels))


def simulate_analysis_table(
    n_rows: int = 11_000,
    years: Tuple[int, int] = (2010, 2020),
    seed: int = 2024,
    arthritis_prevalence: float = 0.4,
    arthritis_log_odds_ratio: float = 0.0,
    weight_range: Tuple[float, float] = (0.5, 2.0),
    clusters_per_stratum: Optional[int] = None,
) -> pd.DataFrame:
    """Simulate a complete-case analysis table.

    Args:
        n_rows: Number of sampled units.
        years: Inclusive range of survey years; the year doubles as stratum.
        seed: Seed for :func:`numpy.random.default_rng`; equal seeds give
            identical tables.
        arthritis_prevalence: Probability of the arthritis exposure.
        arthritis_log_odds_ratio: Effect of arthritis on the log odds of each
            of the ADL and IADL limitations.
        weight_range: Bounds of the uniform raw weights before normalization
            to mean 1.
        clusters_per_stratum: When given, rows are spread over this many
            clusters per year; otherwise every row is its own cluster.

    Returns:
        pandas.DataFrame: Table with the analysis-row columns.
    """
    rng = np.random.default_rng(seed)
    n = int(n_rows)

    year = rng.integers(years[0], years[1] + 1, size=n)
    age = _categorical(rng, AGE_GROUPS, [0.52, 0.34, 0.14], n)
    sex = _categorical(rng, SEXES, [0.45, 0.55], n)
    race = _categorical(rng, RACE_ETHNICITY, [0.72, 0.10, 0.10, 0.08], n)
    education = _categorical(rng, EDUCATION, [0.20, 0.32, 0.26, 0.22], n)
    poverty = _categorical(rng, POVERTY, [0.10, 0.22, 0.68], n)
    arthritis = (rng.random(n) < arthritis_prevalence).astype(int)

    base = (
        -1.9
        + 0.6 * age.codes
        + 0.25 * (sex.codes == 1)
        + np.select([poverty.codes == 0, poverty.codes == 1], [0.5, 0.25], 0.0)
        - 0.02 * (year - years[0])
    )
    adl = (rng.random(n) < expit(base - 0.5 + arthritis_log_odds_ratio * arthritis))
    iadl = (rng.random(n) < expit(base + arthritis_log_odds_ratio * arthritis))

    raw_weight = rng.uniform(weight_range[0], weight_range[1], size=n)

    if clusters_per_stratum is None:
        cluster = np.arange(n)
    else:
        cluster = year * 1000 + rng.integers(0, clusters_per_stratum, size=n)

    table = pd.DataFrame(
        {
            "disability": (adl | iadl).astype(int),
            "adl_limitation": adl.astype(int),
            "iadl_limitation": iadl.astype(int),
            "arthritis": arthritis,
            "age_group": age,
            "sex": sex,
            "race_ethnicity": race,
            "education": education,
            "poverty": poverty,
            "survey_year": year.astype(int),
            "weight": raw_weight / raw_weight.mean(),
            "stratum": year.astype(int),
            "cluster": cluster.astype(int),
        }
    )
    return table[list(ANALYSIS_ROW_COLUMNS)]
