"""Taylor-series linearization variance for stratified cluster samples.

A design-consistent statistic is expressed through per-unit linearized
contributions ``u_i`` (the influence of unit ``i`` on the statistic). The
sampling covariance is then estimated with the with-replacement
first-stage approximation:

    V = sum_h (1 - f_h) * n_h / (n_h - 1) * sum_c (z_hc - zbar_h)(z_hc - zbar_h)^T

where ``z_hc`` is the total of ``u_i`` over the rows of cluster ``c`` in
stratum ``h``, ``n_h`` is the number of sampled clusters in the stratum
(of the full sample, so clusters outside a domain enter as zero totals)
and ``f_h`` the optional first-stage sampling fraction.

Strata with a single cluster carry no information about their own
variance. They contribute nothing to ``V`` and are reported through the
degrees of freedom (``#clusters - #strata``) rather than being imputed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LinearizedVariance:
    """Covariance of a linearized statistic and its reference df.

    Attributes:
        covariance: ``p x p`` covariance matrix; all-NaN when undefined.
        degrees_of_freedom: Clusters minus strata among the rows that
            carried contributions.
        n_clusters: Clusters with at least one contributing row.
        n_strata: Strata with at least one contributing row.
        singleton_strata: Strata skipped because the full sample has only
            one cluster in them.
    """

    covariance: np.ndarray
    degrees_of_freedom: int
    n_clusters: int
    n_strata: int
    singleton_strata: int = 0

    @property
    def is_defined(self) -> bool:
        return self.degrees_of_freedom > 0 and bool(
            np.all(np.isfinite(self.covariance))
        )


def stratified_cluster_covariance(
    contributions: np.ndarray,
    strata: np.ndarray,
    clusters: np.ndarray,
    clusters_per_stratum: np.ndarray,
    sampling_fraction: np.ndarray | None = None,
) -> LinearizedVariance:
    """Estimate the covariance of a sum of per-unit contributions.

    Args:
        contributions: Array of shape ``(n,)`` or ``(n, p)`` with the
            linearized contribution of each row.
        strata: Integer stratum code per row, indexing
            ``clusters_per_stratum``.
        clusters: Integer cluster code per row; codes are unique across the
            whole sample.
        clusters_per_stratum: Number of sampled clusters ``n_h`` per stratum in
            the full sample.
        sampling_fraction: Optional first-stage sampling fraction per stratum.

    Returns:
        LinearizedVariance: Covariance and degrees of freedom. The covariance
        is filled with NaN when the degrees of freedom are not positive.

    Raises:
        ValueError: If array lengths do not agree.

    Note:
        Cluster totals are centered on their stratum mean before the outer
        product is accumulated, in double precision, so that large common
        offsets do not cancel catastrophically.
    """
    u = np.asarray(contributions, dtype=float)
    if u.ndim == 1:
        u = u[:, None]
    strata = np.asarray(strata, dtype=int)
    clusters = np.asarray(clusters, dtype=int)
    if not (len(u) == len(strata) == len(clusters)):
        raise ValueError(
            "contributions, strata and clusters must have the same number of rows."
        )
    n_h_all = np.asarray(clusters_per_stratum, dtype=int)
    if sampling_fraction is None:
        f_h_all = np.zeros(len(n_h_all), dtype=float)
    else:
        f_h_all = np.asarray(sampling_fraction, dtype=float)

    p = u.shape[1]
    covariance = np.zeros((p, p), dtype=float)
    if len(u) == 0:
        return LinearizedVariance(np.full((p, p), np.nan), 0, 0, 0, 0)

    cluster_codes, first_row, inverse = np.unique(
        clusters, return_index=True, return_inverse=True
    )
    totals = np.zeros((len(cluster_codes), p), dtype=float)
    np.add.at(totals, inverse.ravel(), u)
    cluster_stratum = strata[first_row]

    present_strata = np.unique(cluster_stratum)
    singletons = 0
    for h in present_strata:
        n_h = int(n_h_all[h])
        if n_h < 2:
            singletons += 1
            continue
        z = totals[cluster_stratum == h]
        # clusters of the stratum without rows here have zero totals
        k_h = len(z)
        zbar = z.sum(axis=0) / n_h
        centered = z - zbar
        ss = centered.T @ centered + (n_h - k_h) * np.outer(zbar, zbar)
        covariance += (1.0 - f_h_all[h]) * (n_h / (n_h - 1.0)) * ss

    n_clusters = int(len(cluster_codes))
    n_strata = int(len(present_strata))
    dof = n_clusters - n_strata
    if singletons:
        logger.debug(
            "%d stratum/strata with a single cluster contributed no variance.",
            singletons,
        )
    if dof <= 0:
        logger.warning(
            "Variance undefined: %d cluster(s) in %d stratum/strata leave no "
            "degrees of freedom.",
            n_clusters,
            n_strata,
        )
        covariance = np.full((p, p), np.nan)

    return LinearizedVariance(
        covariance=covariance,
        degrees_of_freedom=int(dof),
        n_clusters=n_clusters,
        n_strata=n_strata,
        singleton_strata=singletons,
    )


def linearized_covariance(design, contributions: np.ndarray) -> LinearizedVariance:
    """Linearized covariance of a statistic under a survey design.

    Args:
        design: A survey design exposing ``strata``, ``clusters`` and a
            ``structure`` with ``clusters_per_stratum`` and
            ``sampling_fraction`` (see :class:`svyest.design.SurveyDesign`).
        contributions: Per-row linearized contributions aligned with the
            design's rows, shape ``(n,)`` or ``(n, p)``.

    Returns:
        LinearizedVariance: See :func:`stratified_cluster_covariance`.
    """
    u = np.asarray(contributions, dtype=float)
    if len(u) != len(design.strata):
        raise ValueError(
            f"Got {len(u)} contributions for a design with {len(design.strata)} rows."
        )
    return stratified_cluster_covariance(
        u,
        design.strata,
        design.clusters,
        design.structure.clusters_per_stratum,
        design.structure.sampling_fraction,
    )
