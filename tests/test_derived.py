import logging
import math
import warnings

import numpy as np
import pandas as pd
import pytest

from svyest.derived import (
    DerivedMetric,
    annual_percent_change,
    odds_ratio,
    odds_ratio_table,
    population_attributable_fraction,
    sensitivity_comparison,
)
from svyest.design import build_design
from svyest.estimation import Estimate
from svyest.glm import fit_weighted_glm


@pytest.fixture
def design():
    rng = np.random.default_rng(21)
    n = 600
    year = rng.integers(2010, 2021, size=n)
    x = rng.integers(0, 2, size=n)
    eta = -1.0 + 0.7 * x + 0.05 * (year - 2010)
    y = (rng.random(n) < 1.0 / (1.0 + np.exp(-eta))).astype(int)
    y_alt = (rng.random(n) < 1.0 / (1.0 + np.exp(-(eta - 0.5)))).astype(int)
    table = pd.DataFrame(
        {
            "y": y,
            "y_alt": y_alt,
            "never": 0,
            "x": x,
            "survey_year": year,
            "weight": rng.uniform(0.5, 2.0, size=n),
        }
    )
    return build_design(table, "weight", strata_col="survey_year")


def test_odds_ratio_interval_is_asymmetric(design):
    fit = fit_weighted_glm(design, "y", ["x"])
    metric = odds_ratio(fit, "x")
    assert metric.value == pytest.approx(math.exp(fit.coef("x")))
    assert metric.ci_low < metric.value < metric.ci_high
    assert metric.ci_high - metric.value > metric.value - metric.ci_low
    assert metric.ci_high / metric.value == pytest.approx(metric.value / metric.ci_low)
    assert metric.std_error == pytest.approx(fit.std_error("x"))


def test_odds_ratio_table_skips_intercept(design):
    fit = fit_weighted_glm(design, "y", ["x", "survey_year"])
    table = odds_ratio_table(fit)
    assert list(table["term"]) == ["x", "survey_year"]
    assert (table["degrees_of_freedom"] == fit.df_residual).all()


def test_annual_percent_change(design):
    fit = fit_weighted_glm(design, "y", ["survey_year"])
    apc = annual_percent_change(fit)
    beta = fit.coef("survey_year")
    assert apc.value == pytest.approx(math.expm1(beta))
    assert apc.ci_low < apc.value < apc.ci_high
    assert apc.ci_low > -1.0


def test_paf_is_zero_when_odds_ratio_is_one():
    metric = population_attributable_fraction(0.4, 1.0)
    assert metric.value == pytest.approx(0.0)
    assert math.isnan(metric.ci_low) and math.isnan(metric.ci_high)
    assert "odds ratio" in metric.note


def test_paf_known_value_and_monotonicity():
    assert population_attributable_fraction(0.4, 2.0).value == pytest.approx(0.4 / 1.4)
    by_prevalence = [
        population_attributable_fraction(p, 2.0).value for p in (0.1, 0.3, 0.6)
    ]
    by_ratio = [
        population_attributable_fraction(0.3, r).value for r in (1.2, 1.8, 3.0)
    ]
    assert by_prevalence == sorted(by_prevalence)
    assert by_ratio == sorted(by_ratio)
    assert population_attributable_fraction(0.3, 0.5).value < 0


def test_paf_delta_method_interval():
    prevalence = Estimate(
        column="x",
        statistic="mean",
        estimate=0.4,
        variance=1e-4,
        degrees_of_freedom=100,
        n_obs=1000,
    )
    ratio = DerivedMetric(
        name="x",
        value=2.0,
        ci_low=2.0 * math.exp(-0.196),
        ci_high=2.0 * math.exp(0.196),
        std_error=0.1,
    )
    metric = population_attributable_fraction(prevalence, ratio)

    def paf(p, log_or):
        k = p * (math.exp(log_or) - 1.0)
        return k / (1.0 + k)

    h = 1e-6
    d_p = (paf(0.4 + h, math.log(2.0)) - paf(0.4 - h, math.log(2.0))) / (2 * h)
    d_or = (paf(0.4, math.log(2.0) + h) - paf(0.4, math.log(2.0) - h)) / (2 * h)
    expected_se = math.sqrt(d_p**2 * 1e-4 + d_or**2 * 0.1**2)
    assert metric.std_error == pytest.approx(expected_se, rel=1e-5)
    assert metric.ci_low < metric.value < metric.ci_high


def test_paf_warns_for_common_outcome():
    with pytest.warns(UserWarning, match="not rare"):
        population_attributable_fraction(0.4, 2.0, outcome_prevalence=0.3)
    with warnings.catch_warnings():
        warnings.simplefilter("error")
        population_attributable_fraction(0.4, 2.0, outcome_prevalence=0.05)


@pytest.mark.parametrize("p, ratio", [(-0.1, 2.0), (1.2, 2.0), (0.4, 0.0), (0.4, -1.0)])
def test_paf_rejects_invalid_inputs(p, ratio):
    with pytest.raises(ValueError):
        population_attributable_fraction(p, ratio)


def test_sensitivity_comparison_keeps_going_after_a_failed_model(design, caplog):
    outcomes = {"Main": "y", "Alternate": "y_alt", "Degenerate": "never"}
    with caplog.at_level(logging.WARNING, logger="svyest.derived"):
        table = sensitivity_comparison(design, outcomes, "x", ["survey_year"])
    assert list(table["model"]) == ["Main", "Alternate", "Degenerate"]
    main = table.iloc[0]
    assert main["ci_low"] < main["estimate"] < main["ci_high"]
    assert main["n_obs"] == design.n_rows
    failed = table.iloc[2]
    assert math.isnan(failed["estimate"])
    assert failed["note"].startswith("InsufficientDataError")
    assert "Degenerate" in caplog.text
