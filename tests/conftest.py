"""Pytest configuration for repository-relative imports and shared designs."""

import os
import sys

import numpy as np
import pandas as pd
import pytest

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from svyest.design import build_design  # noqa: E402


@pytest.fixture
def clustered_table():
    """Two strata, three clusters each, uneven cluster sizes and weights."""
    rng = np.random.default_rng(7)
    cluster = np.repeat(np.arange(6), [5, 7, 6, 4, 8, 5])
    stratum = np.where(cluster < 3, "A", "B")
    n = len(cluster)
    return pd.DataFrame(
        {
            "y": rng.integers(0, 2, size=n),
            "x": rng.normal(size=n),
            "group": np.where(np.arange(n) % 3 == 0, "g1", "g2"),
            "weight": rng.uniform(0.5, 2.0, size=n),
            "stratum": stratum,
            "cluster": cluster,
        }
    )


@pytest.fixture
def clustered_design(clustered_table):
    return build_design(
        clustered_table, "weight", strata_col="stratum", cluster_col="cluster"
    )
