"""Survey design objects binding sampling structure to an analysis table.

A :class:`SurveyDesign` records which column holds the sampling weight and,
optionally, which columns identify strata, clusters (PSUs) and the finite
population correction. Designs are immutable: :meth:`SurveyDesign.subset`
returns a new design restricted to a domain while keeping the stratum and
cluster layout of the full sample, which is what domain variance
estimation requires (clusters with no domain rows still count towards the
number of clusters in their stratum).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Optional, Union

import numpy as np
import pandas as pd

from .errors import DesignError

logger = logging.getLogger(__name__)

Predicate = Union[Callable[[pd.DataFrame], object], pd.Series, np.ndarray]


def _readonly(values: np.ndarray) -> np.ndarray:
    values = np.asarray(values)
    values.setflags(write=False)
    return values


@dataclass(frozen=True)
class DesignStructure:
    """Stratum/cluster layout of the full sample a design was built from.

    Attributes:
        stratum_labels: Original stratum label for each stratum code.
        clusters_per_stratum: Number of sampled clusters ``n_h`` in each
            stratum of the full sample.
        sampling_fraction: First-stage sampling fraction ``f_h`` per stratum
            (zero when no finite population correction is requested).
    """

    stratum_labels: np.ndarray
    clusters_per_stratum: np.ndarray
    sampling_fraction: np.ndarray

    @property
    def n_strata(self) -> int:
        return int(len(self.stratum_labels))


@dataclass(frozen=True)
class SurveyDesign:
    """Immutable description of a complex sample bound to a table.

    Build instances with :func:`build_design`; the constructor performs no
    validation. ``strata`` and ``clusters`` hold integer codes aligned with
    the rows of ``data``.
    """

    data: pd.DataFrame = field(repr=False)
    weight_col: str
    strata_col: Optional[str]
    cluster_col: Optional[str]
    fpc_col: Optional[str]
    strata: np.ndarray = field(repr=False)
    clusters: np.ndarray = field(repr=False)
    structure: DesignStructure = field(repr=False)

    @property
    def n_rows(self) -> int:
        return int(len(self.data))

    @property
    def is_empty(self) -> bool:
        return self.n_rows == 0

    @property
    def weights(self) -> np.ndarray:
        return self.data[self.weight_col].to_numpy(dtype=float)

    @property
    def total_weight(self) -> float:
        return float(np.sum(self.weights))

    @property
    def n_clusters(self) -> int:
        """Clusters with at least one row in this (possibly restricted) design."""
        return int(len(np.unique(self.clusters)))

    @property
    def n_strata(self) -> int:
        """Strata with at least one row in this (possibly restricted) design."""
        return int(len(np.unique(self.strata)))

    @property
    def degrees_of_freedom(self) -> int:
        return self.n_clusters - self.n_strata

    @property
    def has_fpc(self) -> bool:
        return self.fpc_col is not None

    def column(self, name: str) -> pd.Series:
        if name not in self.data.columns:
            raise KeyError(f"Column '{name}' is not part of the design table.")
        return self.data[name]

    def subset(self, predicate: Predicate) -> "SurveyDesign":
        """Restrict the design to rows matching ``predicate``.

        Args:
            predicate: Boolean mask aligned with ``data`` (array or Series) or
                a callable receiving ``data`` and returning such a mask.

        Returns:
            SurveyDesign: New design over the matching rows. Stratum and
            cluster identities, and the full-sample cluster counts used for
            variance estimation, are carried over unchanged. A predicate
            matching no rows yields an empty design rather than an error.
        """
        mask = predicate(self.data) if callable(predicate) else predicate
        if isinstance(mask, pd.Series) and not mask.index.equals(self.data.index):
            mask = mask.reindex(self.data.index)
        mask = np.asarray(mask)
        if mask.dtype != bool:
            mask = pd.array(mask, dtype="boolean").fillna(False).to_numpy(dtype=bool)
        if mask.shape != (self.n_rows,):
            raise ValueError(
                f"Subset mask has shape {mask.shape}; expected ({self.n_rows},)."
            )
        return SurveyDesign(
            data=self.data.loc[mask],
            weight_col=self.weight_col,
            strata_col=self.strata_col,
            cluster_col=self.cluster_col,
            fpc_col=self.fpc_col,
            strata=_readonly(self.strata[mask]),
            clusters=_readonly(self.clusters[mask]),
            structure=self.structure,
        )


def _sampling_fraction(
    fpc: pd.Series, strata: np.ndarray, clusters_per_stratum: np.ndarray
) -> np.ndarray:
    values = pd.to_numeric(fpc, errors="coerce").to_numpy(dtype=float)
    if not np.all(np.isfinite(values)) or np.any(values <= 0):
        raise DesignError("Finite population correction values must be positive.")

    fractions = np.zeros(len(clusters_per_stratum), dtype=float)
    for code, n_h in enumerate(clusters_per_stratum):
        stratum_values = np.unique(values[strata == code])
        if len(stratum_values) != 1:
            raise DesignError(
                "Finite population correction must be constant within a stratum."
            )
        value = float(stratum_values[0])
        if value <= 1.0:
            fractions[code] = value
        else:
            if value < n_h:
                raise DesignError(
                    f"Population size {value:g} is smaller than the {n_h} "
                    "sampled clusters in its stratum."
                )
            fractions[code] = n_h / value
    return fractions


def build_design(
    table: pd.DataFrame,
    weight_col: str,
    strata_col: Optional[str] = None,
    cluster_col: Optional[str] = None,
    fpc_col: Optional[str] = None,
) -> SurveyDesign:
    """Validate a table and its design columns and return a survey design.

    Args:
        table: Analysis table with one row per sampled unit.
        weight_col: Sampling weight column. Weights are expected to be
            normalized to mean 1; they are used as given.
        strata_col: Stratum identifier. ``None`` treats the sample as a single
            stratum.
        cluster_col: Cluster (PSU) identifier. ``None`` makes every row its own
            cluster.
        fpc_col: Optional finite population correction per stratum, either the
            number of population clusters (values > 1) or the sampling
            fraction (values <= 1). ``None`` disables the correction.

    Returns:
        SurveyDesign: Validated, immutable design over a private copy of
        ``table``.

    Raises:
        DesignError: If a referenced column is absent, the table is empty, a
            weight is missing or not strictly positive, a stratum or cluster
            id is missing, or a cluster id appears in more than one stratum.
    """
    if not isinstance(table, pd.DataFrame):
        table = pd.DataFrame(table)

    referenced = [c for c in (weight_col, strata_col, cluster_col, fpc_col) if c]
    missing = [c for c in referenced if c not in table.columns]
    if missing:
        raise DesignError(
            f"Design columns not found in table: {missing}. "
            f"Available columns: {list(table.columns)}"
        )
    if table.empty:
        raise DesignError("Cannot build a survey design on an empty table.")

    data = table.copy()
    weights = pd.to_numeric(data[weight_col], errors="coerce").to_numpy(dtype=float)
    if not np.all(np.isfinite(weights)):
        raise DesignError(f"Weight column '{weight_col}' contains missing values.")
    if np.any(weights <= 0):
        bad = list(data.index[weights <= 0][:5])
        raise DesignError(
            f"Weights must be strictly positive; offending rows include {bad}."
        )
    data[weight_col] = weights

    if strata_col is None:
        strata = np.zeros(len(data), dtype=int)
        labels = np.array([0])
    else:
        if data[strata_col].isna().any():
            raise DesignError(f"Stratum column '{strata_col}' has missing ids.")
        strata, labels = pd.factorize(data[strata_col], sort=True)
        labels = np.asarray(labels)

    if cluster_col is None:
        clusters = np.arange(len(data))
    else:
        if data[cluster_col].isna().any():
            raise DesignError(f"Cluster column '{cluster_col}' has missing ids.")
        clusters, _ = pd.factorize(data[cluster_col], sort=True)
        strata_per_cluster = (
            pd.DataFrame({"cluster": clusters, "stratum": strata})
            .groupby("cluster")["stratum"]
            .nunique()
        )
        crossing = strata_per_cluster[strata_per_cluster > 1]
        if not crossing.empty:
            raise DesignError(
                f"{len(crossing)} cluster id(s) span more than one stratum; "
                "cluster ids must be nested within strata."
            )

    clusters_per_stratum = (
        pd.Series(clusters)
        .groupby(np.asarray(strata))
        .nunique()
        .reindex(range(len(labels)), fill_value=0)
        .to_numpy(dtype=int)
    )
    if fpc_col is None:
        fractions = np.zeros(len(labels), dtype=float)
    else:
        fractions = _sampling_fraction(data[fpc_col], strata, clusters_per_stratum)

    singletons = int(np.sum(clusters_per_stratum == 1))
    if singletons:
        logger.warning(
            "%d stratum/strata contain a single cluster and contribute no "
            "variance; degrees of freedom are reduced accordingly.",
            singletons,
        )

    mean_weight = float(np.mean(weights))
    logger.debug("Built design: %d rows, mean weight %.4f", len(data), mean_weight)

    return SurveyDesign(
        data=data,
        weight_col=weight_col,
        strata_col=strata_col,
        cluster_col=cluster_col,
        fpc_col=fpc_col,
        strata=_readonly(np.asarray(strata, dtype=int)),
        clusters=_readonly(np.asarray(clusters, dtype=int)),
        structure=DesignStructure(
            stratum_labels=_readonly(labels),
            clusters_per_stratum=_readonly(clusters_per_stratum),
            sampling_fraction=_readonly(fractions),
        ),
    )


def normalize_weights(table: pd.DataFrame, weight_col: str) -> pd.DataFrame:
    """Return a copy of ``table`` with ``weight_col`` rescaled to mean 1."""
    out = table.copy()
    weights = pd.to_numeric(out[weight_col], errors="coerce")
    mean = float(weights.mean())
    if not np.isfinite(mean) or mean <= 0:
        raise DesignError(f"Cannot normalize weights with mean {mean!r}.")
    out[weight_col] = weights / mean
    return out
