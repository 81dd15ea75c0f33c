import logging
import math

import numpy as np
import pandas as pd
import pytest

from svyest.design import build_design
from svyest.estimation import by_domain, weighted_mean, weighted_total
from svyest.stats import critical_value, stratified_cluster_covariance


def test_equal_weight_srs_matches_classical_standard_error():
    x = np.array([2.0, 4.0, 4.0, 5.0, 7.0, 9.0, 1.0, 3.0])
    design = build_design(pd.DataFrame({"x": x, "weight": 1.0}), "weight")
    est = weighted_mean("x", design)
    assert est.estimate == pytest.approx(x.mean())
    assert est.variance == pytest.approx(x.var(ddof=1) / len(x), rel=1e-9)
    assert est.degrees_of_freedom == len(x) - 1
    assert est.n_obs == len(x)


def test_weighted_proportion_linearized_variance():
    y = np.array([1, 0, 1, 1, 0, 0, 1, 0, 1, 1])
    w = np.array([0.5, 1.5, 1.0, 2.0, 0.8, 1.2, 0.6, 1.4, 0.9, 1.1])
    design = build_design(pd.DataFrame({"y": y, "weight": w}), "weight")
    est = weighted_mean("y", design)

    p = np.sum(w * y) / np.sum(w)
    u = w * (y - p) / np.sum(w)
    n = len(y)
    assert est.estimate == pytest.approx(p)
    assert est.variance == pytest.approx(n / (n - 1) * np.sum(u**2), rel=1e-9)

    low, high = est.confint()
    q = critical_value(0.95, df=n - 1)
    assert low == pytest.approx(p - q * est.std_error)
    assert high == pytest.approx(p + q * est.std_error)


def test_weighted_total(clustered_table, clustered_design):
    est = weighted_total("y", clustered_design)
    expected = float((clustered_table["weight"] * clustered_table["y"]).sum())
    assert est.statistic == "total"
    assert est.estimate == pytest.approx(expected)
    assert est.defined


def test_domain_estimates_partition_the_population(clustered_table, clustered_design):
    totals = by_domain("y", "group", clustered_design, statistic="total")
    overall = weighted_total("y", clustered_design)
    assert list(totals["group"]) == ["g1", "g2"]
    assert totals["estimate"].sum() == pytest.approx(overall.estimate)
    assert totals["n_obs"].sum() == clustered_design.n_rows

    means = by_domain("y", "group", clustered_design)
    domain_weights = clustered_table.groupby("group")["weight"].sum()
    recombined = np.sum(means["estimate"].to_numpy() * domain_weights.to_numpy())
    overall_mean = weighted_mean("y", clustered_design).estimate
    assert recombined / clustered_table["weight"].sum() == pytest.approx(overall_mean)


def test_domain_variance_uses_full_sample_layout(clustered_table, clustered_design):
    in_domain = (clustered_table["group"] == "g1").to_numpy()
    est = weighted_mean("y", clustered_design.subset(in_domain))

    w = clustered_table["weight"].to_numpy()
    y = clustered_table["y"].to_numpy(dtype=float)
    w_d = np.sum(w[in_domain])
    u = np.where(in_domain, w * (y - est.estimate) / w_d, 0.0)
    full = stratified_cluster_covariance(
        u,
        clustered_design.strata,
        clustered_design.clusters,
        clustered_design.structure.clusters_per_stratum,
    )
    assert est.variance == pytest.approx(full.covariance[0, 0], rel=1e-9)


def test_empty_category_is_omitted_with_warning(caplog):
    table = pd.DataFrame(
        {
            "y": [1, 0, 1, 0, 1, 1],
            "age_group": pd.Categorical(
                ["65-74", "65-74", "65-74", "75-84", "75-84", "75-84"],
                categories=["65-74", "75-84", "85+"],
            ),
            "weight": 1.0,
        }
    )
    design = build_design(table, "weight")
    with caplog.at_level(logging.WARNING, logger="svyest.estimation"):
        out = by_domain("y", "age_group", design)
    assert list(out["group"]) == ["65-74", "75-84"]
    assert "85+" in caplog.text


def test_missing_values_are_excluded_and_logged(caplog):
    table = pd.DataFrame(
        {"x": [1.0, np.nan, 3.0, 4.0, np.nan, 6.0], "weight": [1.0] * 6}
    )
    design = build_design(table, "weight")
    with caplog.at_level(logging.INFO, logger="svyest.estimation"):
        est = weighted_mean("x", design)
    assert est.n_excluded == 2
    assert est.n_obs == 4
    assert est.estimate == pytest.approx(3.5)
    assert "Excluded 2 row(s)" in caplog.text


def test_single_cluster_domain_has_undefined_variance(clustered_design):
    domain = clustered_design.subset(lambda df: df["cluster"] == 0)
    est = weighted_mean("y", domain)
    assert math.isfinite(est.estimate)
    assert est.degrees_of_freedom == 0
    assert not est.defined
    assert "undefined" in est.note
    assert all(math.isnan(v) for v in est.confint())


def test_empty_domain_estimate_is_undefined(clustered_design):
    domain = clustered_design.subset(lambda df: df["group"] == "none")
    est = weighted_mean("y", domain)
    assert est.note == "empty domain"
    assert est.n_obs == 0
    assert math.isnan(est.estimate)


def test_unknown_statistic_and_column_raise(clustered_design):
    with pytest.raises(ValueError):
        by_domain("y", "group", clustered_design, statistic="median")
    with pytest.raises(KeyError):
        weighted_mean("not_a_column", clustered_design)
