import dataclasses
import logging

import numpy as np
import pandas as pd
import pytest

from svyest.design import build_design, normalize_weights
from svyest.errors import DesignError


def test_build_design_records_structure(clustered_design):
    design = clustered_design
    assert design.n_rows == 35
    assert design.n_clusters == 6
    assert design.n_strata == 2
    assert design.degrees_of_freedom == 4
    assert list(design.structure.clusters_per_stratum) == [3, 3]
    assert list(design.structure.stratum_labels) == ["A", "B"]
    assert not design.has_fpc
    assert np.allclose(design.structure.sampling_fraction, 0.0)


def test_default_design_is_one_stratum_one_row_per_cluster():
    table = pd.DataFrame({"y": [0, 1, 1, 0], "weight": [1.0, 1.0, 2.0, 0.5]})
    design = build_design(table, "weight")
    assert design.n_clusters == 4
    assert design.n_strata == 1
    assert design.degrees_of_freedom == 3


def test_missing_column_raises(clustered_table):
    with pytest.raises(DesignError, match="not found"):
        build_design(clustered_table, "weight", strata_col="psu_stratum")


def test_empty_table_raises():
    table = pd.DataFrame({"y": [], "weight": []})
    with pytest.raises(DesignError, match="empty"):
        build_design(table, "weight")


@pytest.mark.parametrize("bad_weight", [0.0, -1.0, np.nan])
def test_non_positive_or_missing_weight_raises(clustered_table, bad_weight):
    table = clustered_table.copy()
    table.loc[3, "weight"] = bad_weight
    with pytest.raises(DesignError):
        build_design(table, "weight", strata_col="stratum", cluster_col="cluster")


def test_missing_stratum_id_raises(clustered_table):
    table = clustered_table.copy()
    table["stratum"] = table["stratum"].astype(object)
    table.loc[0, "stratum"] = None
    with pytest.raises(DesignError, match="missing ids"):
        build_design(table, "weight", strata_col="stratum", cluster_col="cluster")


def test_cluster_spanning_strata_raises(clustered_table):
    table = clustered_table.copy()
    table.loc[0, "stratum"] = "B"
    with pytest.raises(DesignError, match="nested within strata"):
        build_design(table, "weight", strata_col="stratum", cluster_col="cluster")


def test_singleton_stratum_is_logged(caplog):
    table = pd.DataFrame(
        {
            "y": [0, 1, 1, 0, 1],
            "weight": [1.0] * 5,
            "stratum": ["a", "a", "b", "b", "c"],
            "cluster": [1, 2, 3, 4, 5],
        }
    )
    with caplog.at_level(logging.WARNING, logger="svyest.design"):
        design = build_design(table, "weight", "stratum", "cluster")
    assert "single cluster" in caplog.text
    assert list(design.structure.clusters_per_stratum) == [2, 2, 1]


def test_subset_keeps_full_sample_structure(clustered_design):
    domain = clustered_design.subset(lambda df: df["cluster"] != 1)
    assert domain.n_rows == 35 - 7
    assert domain.n_clusters == 5
    # n_h still counts the cluster that has no rows in the domain
    assert list(domain.structure.clusters_per_stratum) == [3, 3]
    assert domain.degrees_of_freedom == 3


def test_subset_accepts_series_and_array_masks(clustered_design):
    mask = clustered_design.data["group"] == "g1"
    from_series = clustered_design.subset(mask)
    from_array = clustered_design.subset(mask.to_numpy())
    assert from_series.n_rows == from_array.n_rows == int(mask.sum())


def test_empty_subset_is_not_an_error(clustered_design):
    domain = clustered_design.subset(np.zeros(clustered_design.n_rows, dtype=bool))
    assert domain.is_empty
    assert domain.n_clusters == 0


def test_subset_rejects_misaligned_mask(clustered_design):
    with pytest.raises(ValueError, match="shape"):
        clustered_design.subset(np.ones(3, dtype=bool))


def test_design_is_immutable(clustered_table, clustered_design):
    with pytest.raises(dataclasses.FrozenInstanceError):
        clustered_design.weight_col = "other"
    with pytest.raises(ValueError):
        clustered_design.strata[0] = 1
    clustered_table.loc[0, "weight"] = 100.0
    assert clustered_design.data.loc[0, "weight"] != 100.0


def test_fpc_population_counts_and_fractions(clustered_table):
    table = clustered_table.copy()
    table["fpc"] = np.where(table["stratum"] == "A", 10.0, 0.5)
    design = build_design(table, "weight", "stratum", "cluster", fpc_col="fpc")
    assert design.has_fpc
    assert np.allclose(design.structure.sampling_fraction, [0.3, 0.5])


def test_fpc_must_be_constant_within_stratum(clustered_table):
    table = clustered_table.copy()
    table["fpc"] = 10.0
    table.loc[0, "fpc"] = 12.0
    with pytest.raises(DesignError, match="constant"):
        build_design(table, "weight", "stratum", "cluster", fpc_col="fpc")


def test_fpc_population_smaller_than_sample_raises(clustered_table):
    table = clustered_table.copy()
    table["fpc"] = 2.0
    with pytest.raises(DesignError, match="smaller"):
        build_design(table, "weight", "stratum", "cluster", fpc_col="fpc")


def test_normalize_weights_rescales_to_mean_one():
    table = pd.DataFrame({"weight": [100.0, 300.0, 200.0]})
    out = normalize_weights(table, "weight")
    assert np.isclose(out["weight"].mean(), 1.0)
    assert np.allclose(out["weight"], [0.5, 1.5, 1.0])
    assert table["weight"].tolist() == [100.0, 300.0, 200.0]
