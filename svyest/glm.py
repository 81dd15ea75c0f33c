"""Survey-weighted quasi-binomial (logit) regression.

The coefficients solve the weighted score equations

    sum_i w_i (y_i - mu_i) x_i = 0,   mu_i = expit(x_i' beta)

by iteratively reweighted least squares. Each step solves the weighted
least-squares problem for the working response through a QR factorization
of ``sqrt(W) X`` rather than by forming and inverting ``X' W X``, which
keeps models with raw calendar years as predictors well conditioned.

Variance is design based. With ``A = (X' W X)^-1`` evaluated at the
solution and ``V`` the linearized covariance of the summed score
contributions ``w_i (y_i - mu_i) x_i`` under the design's strata and
clusters, the reported covariance is the sandwich ``A V A``. The
model-based covariance scaled by the Pearson dispersion is reported
alongside it for comparison only.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from scipy.linalg import solve_triangular
from scipy.special import expit, logit, xlogy

from .config import DEFAULT_LEVEL, DEFAULT_MAX_ITER, DEFAULT_TOL
from .design import Predicate, SurveyDesign
from .errors import ConvergenceError, InsufficientDataError, SeparationError
from .model_matrix import INTERCEPT, build_model_matrix
from .schema import COLUMNS
from .stats import critical_value, linearized_covariance, wald_p_value

logger = logging.getLogger(__name__)

MU_EPS = 1e-10
# |eta| beyond this puts a fitted probability within about 5e-5 of 0 or 1
SEPARATION_ETA = 10.0
SEPARATION_WINDOW = 4


@dataclass(frozen=True)
class GLMFit:
    """Immutable result of :func:`fit_weighted_glm`.

    Arrays are stored read-only; consumers derive new values rather than
    modifying a fit.
    """

    outcome: str
    terms: Tuple[str, ...]
    coefficients: np.ndarray = field(repr=False)
    covariance: np.ndarray = field(repr=False)
    naive_covariance: np.ndarray = field(repr=False)
    dispersion: float
    deviance: float
    iterations: int
    converged: bool
    n_obs: int
    n_excluded: int
    n_clusters: int
    design_df: int
    df_residual: int
    reference_levels: Dict[str, object] = field(default_factory=dict)

    def __post_init__(self) -> None:
        for name in ("coefficients", "covariance", "naive_covariance"):
            values = np.array(getattr(self, name), dtype=float)
            values.setflags(write=False)
            object.__setattr__(self, name, values)

    @property
    def std_errors(self) -> np.ndarray:
        return np.sqrt(np.clip(np.diag(self.covariance), 0.0, None))

    @property
    def naive_std_errors(self) -> np.ndarray:
        return np.sqrt(np.clip(np.diag(self.naive_covariance), 0.0, None))

    @property
    def params(self) -> pd.Series:
        return pd.Series(self.coefficients, index=list(self.terms), name=self.outcome)

    def index(self, term: str) -> int:
        try:
            return self.terms.index(term)
        except ValueError:
            raise KeyError(
                f"Term '{term}' not in model; available terms: {list(self.terms)}"
            ) from None

    def coef(self, term: str) -> float:
        return float(self.coefficients[self.index(term)])

    def std_error(self, term: str) -> float:
        return float(self.std_errors[self.index(term)])

    def p_value(self, term: str) -> float:
        """Two-sided Wald p-value on the residual design degrees of freedom."""
        return wald_p_value(self.coef(term), self.std_error(term), self.df_residual)

    def coefficient_table(
        self, level: float = DEFAULT_LEVEL, exponentiate: bool = False
    ) -> pd.DataFrame:
        """Tidy coefficient table.

        Args:
            level: Confidence level. Intervals and p-values share the t
                reference with ``df_residual`` degrees of freedom, so an
                interval excludes zero exactly when ``p < 1 - level``.
            exponentiate: Report ``exp(estimate)`` and exponentiated interval
                limits (odds ratios). ``std_error`` stays on the log-odds
                scale.

        Returns:
            pandas.DataFrame: One row per term.
        """
        q = critical_value(level, self.df_residual)
        se = self.std_errors
        low = self.coefficients - q * se
        high = self.coefficients + q * se
        estimate = self.coefficients
        if exponentiate:
            estimate, low, high = np.exp(estimate), np.exp(low), np.exp(high)
        return pd.DataFrame(
            {
                COLUMNS.term: list(self.terms),
                COLUMNS.estimate: estimate,
                COLUMNS.std_error: se,
                "statistic": self.coefficients / se,
                COLUMNS.ci_low: low,
                COLUMNS.ci_high: high,
                COLUMNS.p_value: [self.p_value(t) for t in self.terms],
                COLUMNS.dof: self.df_residual,
                "naive_std_error": self.naive_std_errors,
            }
        )


def _diverging(
    steps: Sequence[float], norms: Sequence[float], eta: np.ndarray, y: np.ndarray
) -> bool:
    """Coefficients that keep growing by non-shrinking steps while some
    fitted probabilities run off towards the observed 0 or 1.

    A single high-leverage row can sit far out on the logit scale at a
    finite optimum; there the steps still shrink and nothing is flagged.
    """
    if len(steps) < SEPARATION_WINDOW:
        return False
    recent = steps[-SEPARATION_WINDOW:]
    not_shrinking = all(b >= 0.5 * a for a, b in zip(recent, recent[1:]))
    sizes = norms[-SEPARATION_WINDOW:]
    growing = all(b > a for a, b in zip(sizes, sizes[1:]))
    runaway = ((y >= 1.0) & (eta > SEPARATION_ETA)) | (
        (y <= 0.0) & (eta < -SEPARATION_ETA)
    )
    return not_shrinking and growing and bool(runaway.any())


def _working_qr(
    X: np.ndarray, w: np.ndarray, eta: np.ndarray
) -> Tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
    mu = np.clip(expit(eta), MU_EPS, 1.0 - MU_EPS)
    var = mu * (1.0 - mu)
    sw = np.sqrt(w * var)
    q, r = np.linalg.qr(X * sw[:, None])
    return mu, var, q, r


def _irls(
    X: np.ndarray,
    y: np.ndarray,
    w: np.ndarray,
    beta: np.ndarray,
    terms: Tuple[str, ...],
    max_iter: int,
    tol: float,
) -> Tuple[np.ndarray, int]:
    steps: list[float] = []
    norms: list[float] = []
    for iteration in range(1, max_iter + 1):
        eta = X @ beta
        mu, var, q, r = _working_qr(X, w, eta)
        z = eta + (y - mu) / var
        new_beta = solve_triangular(r, q.T @ (np.sqrt(w * var) * z))
        step = float(np.max(np.abs(new_beta - beta)))
        beta = new_beta
        steps.append(step)
        norms.append(float(np.max(np.abs(beta))))
        logger.debug("IRLS iteration %d: max |step| = %.3e", iteration, step)

        last = pd.Series(beta, index=list(terms))
        if not np.all(np.isfinite(beta)):
            raise ConvergenceError(
                "IRLS produced non-finite coefficients.", last, iteration
            )
        if step < tol:
            return beta, iteration
        if _diverging(steps, norms, X @ beta, y):
            raise SeparationError(
                f"Coefficients keep growing after {iteration} IRLS iterations "
                f"(last step {step:.3g}) while fitted probabilities "
                "approach 0 or 1: a covariate pattern perfectly predicts the "
                "outcome.",
                last,
                iteration,
            )

    raise ConvergenceError(
        f"IRLS did not converge within {max_iter} iterations "
        f"(last max |step| = {steps[-1]:.3g}, tolerance {tol:g}).",
        pd.Series(beta, index=list(terms)),
        max_iter,
    )


def fit_weighted_glm(
    design: SurveyDesign,
    outcome: str,
    predictors: Sequence[str],
    reference_levels: Optional[Mapping[str, object]] = None,
    subset: Optional[Predicate] = None,
    intercept: bool = True,
    max_iter: int = DEFAULT_MAX_ITER,
    tol: float = DEFAULT_TOL,
) -> GLMFit:
    """Fit a survey-weighted logistic (quasi-binomial) regression.

    Args:
        design: Survey design carrying the analysis table.
        outcome: Binary (or proportion) outcome column.
        predictors: Predictor columns; categorical ones are treatment coded.
        reference_levels: Reference level per categorical predictor.
        subset: Optional domain restriction applied with
            :meth:`SurveyDesign.subset` before fitting. Passing an already
            restricted design is equivalent.
        intercept: Include an intercept term.
        max_iter: IRLS iteration cap.
        tol: Convergence tolerance on the largest absolute coefficient step.

    Returns:
        GLMFit: Coefficients with design-based (sandwich) covariance.

    Raises:
        InsufficientDataError: If the (restricted) design has fewer than
            ``#terms + 1`` clusters, leaves no residual degrees of freedom,
            has collinear terms, an outcome without variation, or lacks a
            configured reference level of a predictor.
        SeparationError: If a covariate pattern perfectly predicts the
            outcome, seen as coefficients that keep growing by steps that do
            not shrink while fitted probabilities approach the observed 0 or
            1. A high-leverage row with a finite optimum is not flagged.
        ConvergenceError: If IRLS does not converge within ``max_iter``.
    """
    if subset is not None:
        design = design.subset(subset)
    if design.is_empty:
        raise InsufficientDataError(f"No rows available to fit '{outcome}'.")

    mm = build_model_matrix(
        design.data, outcome, predictors, reference_levels, intercept=intercept
    )
    if mm.n_excluded:
        design = design.subset(mm.mask)
    X, y, terms = mm.X, mm.y, mm.terms
    n, p = X.shape
    if p == 0:
        raise ValueError("Model has no terms to estimate.")

    n_clusters = design.n_clusters
    if n_clusters < p + 1:
        raise InsufficientDataError(
            f"{n_clusters} cluster(s) cannot support a model with {p} terms; "
            f"at least {p + 1} are required."
        )
    design_df = design.degrees_of_freedom
    df_residual = design_df - p + 1
    if df_residual < 1:
        raise InsufficientDataError(
            f"Design degrees of freedom ({design_df}) leave none for "
            f"{p} coefficient(s)."
        )
    if np.linalg.matrix_rank(X) < p:
        raise InsufficientDataError(
            f"Model matrix for '{outcome}' is rank deficient; terms are collinear."
        )

    w = design.weights
    ybar = float(np.sum(w * y) / np.sum(w))
    if ybar <= 0.0 or ybar >= 1.0:
        raise InsufficientDataError(
            f"Outcome '{outcome}' does not vary among the {n} fitted rows."
        )

    beta = np.zeros(p)
    if intercept:
        beta[terms.index(INTERCEPT)] = float(logit(ybar))
    beta, iterations = _irls(X, y, w, beta, terms, max_iter, tol)

    eta = X @ beta
    mu, var, _, r = _working_qr(X, w, eta)
    r_inv = solve_triangular(r, np.eye(p))
    bread = r_inv @ r_inv.T

    scores = (w * (y - mu))[:, None] * X
    meat = linearized_covariance(design, scores)
    covariance = bread @ meat.covariance @ bread
    covariance = 0.5 * (covariance + covariance.T)

    w_norm = w / np.mean(w)
    pearson = float(np.sum(w_norm * (y - mu) ** 2 / var))
    dispersion = pearson / (n - p) if n > p else math.nan
    naive_covariance = dispersion * np.mean(w) * bread
    deviance = 2.0 * float(
        np.sum(w_norm * (xlogy(y, y / mu) + xlogy(1.0 - y, (1.0 - y) / (1.0 - mu))))
    )

    logger.info(
        "Fitted %s ~ %s on %d rows (%d clusters) in %d IRLS iteration(s); "
        "dispersion %.3f.",
        outcome,
        " + ".join(predictors) or "1",
        n,
        n_clusters,
        iterations,
        dispersion,
    )

    return GLMFit(
        outcome=outcome,
        terms=terms,
        coefficients=beta,
        covariance=covariance,
        naive_covariance=naive_covariance,
        dispersion=dispersion,
        deviance=deviance,
        iterations=iterations,
        converged=True,
        n_obs=n,
        n_excluded=mm.n_excluded,
        n_clusters=n_clusters,
        design_df=design_df,
        df_residual=df_residual,
        reference_levels=dict(mm.reference_levels),
    )
