"""
Numerical utilities for design-based survey inference.

This subpackage provides the variance machinery shared by the estimators and
the regression solver. All functions operate on arrays and primitive types;
no knowledge of the analysis table or of specific study variables is
included.

Modules:
    linearization:
        Taylor-series linearization of per-unit contributions into a
        stratified, cluster-level covariance matrix with explicit degrees of
        freedom and single-cluster-stratum accounting.

    inference:
        Critical values, Wald intervals and p-values against Student t
        (finite design degrees of freedom) or normal references.

Design Principle:
    This subpackage has no dependencies on the table-level modules. Designs
    are consumed through their ``strata``/``clusters``/``structure``
    attributes only, so the routines can be tested on bare arrays.
"""

from .inference import critical_value, wald_interval, wald_p_value
from .linearization import (
    LinearizedVariance,
    linearized_covariance,
    stratified_cluster_covariance,
)

__all__ = [
    "LinearizedVariance",
    "linearized_covariance",
    "stratified_cluster_covariance",
    "critical_value",
    "wald_interval",
    "wald_p_value",
]
